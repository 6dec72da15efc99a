"""
The trigger-matching and reconciliation engine.

* ``intents`` -- what the user wants: classification & matching of changes.
* ``engines`` -- what is done for a match: job rendering, submission, reporting.
* ``reactor`` -- how the changes arrive: watches, caches, queues, workers.
* ``actions`` -- cross-cutting actions, such as per-object logging.
"""
