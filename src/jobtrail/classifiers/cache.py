"""Content-addressed cache of classification results."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable

from ..store import Store
from ..types import Classification

LOGGER = logging.getLogger(__name__)
CACHE_NAMESPACE = "classification_cache"
SECONDS_PER_DAY = 86_400.0


def content_key(subject: str, body: str, body_chars: int) -> str:
    """Hash of the subject and the first ``body_chars`` characters of the body."""

    digest = hashlib.sha256()
    digest.update(subject.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(body[:body_chars].encode("utf-8"))
    return digest.hexdigest()


class ClassificationCache:
    """TTL-bounded cache persisted through :class:`Store`."""

    def __init__(
        self,
        store: Store,
        *,
        ttl_days: float = 21.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl = ttl_days * SECONDS_PER_DAY
        self._clock = clock

    def get(self, key: str) -> Classification | None:
        if self._ttl <= 0:
            return None
        entry = self._store.get(key, namespace=CACHE_NAMESPACE)
        if not isinstance(entry, dict):
            return None
        stored_at = entry.get("stored_at")
        if not isinstance(stored_at, (int, float)) or self._clock() - stored_at > self._ttl:
            self._store.delete(key, namespace=CACHE_NAMESPACE)
            return None
        try:
            return Classification.from_dict(entry["classification"])
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Dropping unreadable cache entry %s", key)
            self._store.delete(key, namespace=CACHE_NAMESPACE)
            return None

    def put(self, key: str, classification: Classification) -> None:
        if self._ttl <= 0:
            return
        self._store.set(
            key,
            {"stored_at": self._clock(), "classification": classification.to_dict()},
            namespace=CACHE_NAMESPACE,
        )

    def purge_expired(self) -> int:
        """Delete expired entries and return how many were removed."""

        removed = 0
        for key in self._store.keys(namespace=CACHE_NAMESPACE):
            entry = self._store.get(key, namespace=CACHE_NAMESPACE)
            stored_at = entry.get("stored_at") if isinstance(entry, dict) else None
            if not isinstance(stored_at, (int, float)) or self._clock() - stored_at > self._ttl:
                self._store.delete(key, namespace=CACHE_NAMESPACE)
                removed += 1
        return removed


__all__ = ["ClassificationCache", "content_key"]
