"""Versioned-prefix cache helpers.

Cache groups (``orders``, ``counts``...) are invalidated in O(1) by bumping a
version counter stored under ``<namespace>_cache_prefix``: every key built
afterwards embeds the new version, so old entries are simply never read again
and expire on their own TTL.

Readers must always resolve the current prefix before building a key; any
writer may bump it concurrently.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from django.core.cache import BaseCache, cache as default_cache

logger = structlog.get_logger(__name__)

_MISSING = object()


class VersionedCache:
    """Namespace-aware wrapper around a Django cache backend."""

    def __init__(self, backend: Optional[BaseCache] = None) -> None:
        self._cache = backend if backend is not None else default_cache

    # ------------------------------------------------------------------
    # Prefixes
    # ------------------------------------------------------------------

    @staticmethod
    def _prefix_key(namespace: str) -> str:
        return f"{namespace}_cache_prefix"

    def get_prefix(self, namespace: str) -> str:
        """Return the current ``<namespace>_<version>_`` key prefix."""
        key = self._prefix_key(namespace)
        version = self._cache.get(key)
        if version is None:
            self._cache.add(key, 1, timeout=None)
            version = self._cache.get(key, 1)
        return f"{namespace}_{version}_"

    def bump_prefix(self, namespace: str) -> int:
        """Invalidate every key under *namespace* by incrementing its version."""
        key = self._prefix_key(namespace)
        try:
            version = self._cache.incr(key)
        except ValueError:
            # No version stored yet: start at 2 so keys built from the
            # implicit version 1 are invalidated as well.
            self._cache.add(key, 1, timeout=None)
            version = self._cache.incr(key)
        logger.info("cache.prefix_bumped", namespace=namespace, version=version)
        return version

    def get_transient_version(self, group: str, refresh: bool = False) -> str:
        """Return (optionally refreshing) the transient version for *group*."""
        key = f"{group}-transient-version"
        version = self._cache.get(key)
        if refresh or version is None:
            version = str(self._cache.get(f"{key}-counter", 0) + 1)
            self._cache.set(f"{key}-counter", int(version), timeout=None)
            self._cache.set(key, version, timeout=None)
        return version

    # ------------------------------------------------------------------
    # Keyed access
    # ------------------------------------------------------------------

    def _key(self, key: str, namespace: str) -> str:
        return f"{namespace}:{key}"

    def get(self, key: str, namespace: str, default: Any = None) -> Any:
        value = self._cache.get(self._key(key, namespace), _MISSING)
        return default if value is _MISSING else value

    def set(
        self,
        key: str,
        value: Any,
        namespace: str,
        timeout: Optional[int] = None,
    ) -> None:
        self._cache.set(self._key(key, namespace), value, timeout=timeout)

    def delete(self, key: str, namespace: str) -> None:
        self._cache.delete(self._key(key, namespace))

    def delete_raw(self, key: str) -> None:
        """Delete an un-namespaced key (report transients owned elsewhere)."""
        self._cache.delete(key)
