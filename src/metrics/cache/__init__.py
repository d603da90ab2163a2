"""Incremental range cache.

Modules:
    gaps             — DateRange and the missing-range calculator
    registry         — Record kind → storage adapter routing
    backends         — CacheBackend ABC and the in-memory backend
    postgres_backend — asyncpg backend, one table per record kind
    store            — Lock-guarded, type-routed CacheStore
    wrapper          — CachingClient, the cache-first decorator over a RemoteClient
"""
