"""Cache providers.

MemoryCacheProvider is an in-process TTL cache — fast but not shared across
processes.  For multi-worker deployments, swap in a Redis adapter
implementing ICacheProvider without changing any business logic.
"""

from semantic_kb.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
