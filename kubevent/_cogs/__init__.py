"""
Low-level building blocks of the controller: not specific to triggers or jobs.

Cogs know nothing about the reconciliation engine in :mod:`kubevent._core`.
They can be imported by the core, but never the other way around.
"""
