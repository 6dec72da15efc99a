"""
A thin asynchronous client for the Kubernetes API on top of ``aiohttp``.

Only the calls needed by the controller are implemented:
listing, watching, creating, and patching of arbitrary resources.
"""
