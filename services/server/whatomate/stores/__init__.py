"""Backend stores.

Stores handle:
- PostgreSQL: engine, session factory, liveness check
- Redis: cache/queue client, liveness check

A store only hands out a handle after the backend answered a ping.
"""
