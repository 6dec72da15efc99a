"""
Asyncio primitives and task orchestration helpers.
"""
