"""Abstract base class for cache service providers.

Defines the contract for key-value caching of search responses.
Implementations may use an in-memory TTL map, Redis, or any other backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    All operations are async to allow for network-backed stores (e.g. Redis)
    without blocking the event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve the value stored under *key*.

        Parameters
        ----------
        key:
            The cache key to look up.

        Returns
        -------
        Any or None
            The cached value if present and not expired; ``None`` otherwise.
            Expired entries are evicted by the lookup itself.
        """

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* with the provider's time-to-live."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the entry stored under *key*.  No-op if the key does not exist."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present in the cache and not expired."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """Return the keys of all live entries."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        """Return ``size``, ``max_size``, ``ttl_seconds``, ``hits`` and ``misses``."""
