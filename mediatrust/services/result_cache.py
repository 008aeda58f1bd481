"""
result_cache.py — Content-addressed per-capability result cache.

Entries are keyed by the SHA-256 of the raw upload bytes and accumulate
results over time: each merge overlays only the capabilities it carries and
never drops capabilities written by earlier (or concurrent) requests.

Two stores share the same find/merge contract:
  - MongoResultCache:    one document per hash; merge is a single atomic
                         update_one with per-field $set, so concurrent writers
                         touching different capabilities cannot lose each
                         other's keys.
  - InMemoryResultCache: dict + per-hash asyncio.Lock around read-merge-write.
                         Used when MongoDB is unavailable, and in tests.

get_result_cache() picks the store for the current connection state.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase

from mediatrust.core.config import settings
from mediatrust.core.database import get_db
from mediatrust.models.analysis import (
    Capability,
    ResultCacheEntry,
    dump_result_map,
    parse_result_map,
)

logger = logging.getLogger(__name__)


def content_hash(buffer: bytes) -> str:
    """Stable digest of the raw bytes — same file always maps to the same entry."""
    return hashlib.sha256(buffer).hexdigest()


def _ordered_union(*groups: Iterable[Capability]) -> list[Capability]:
    seen: dict[Capability, None] = {}
    for group in groups:
        for cap in group:
            seen.setdefault(Capability(cap), None)
    return list(seen)


class ResultCache(Protocol):
    async def find(self, key: str) -> ResultCacheEntry | None: ...

    async def merge(
        self,
        key: str,
        new_results: dict[Capability, Any],
        requested_capabilities: Iterable[Capability],
    ) -> None: ...


class InMemoryResultCache:
    """Process-local store. Safe for concurrent coroutines via per-hash locks."""

    def __init__(self) -> None:
        self._entries: dict[str, ResultCacheEntry] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def find(self, key: str) -> ResultCacheEntry | None:
        entry = self._entries.get(key)
        return entry.model_copy(deep=True) if entry is not None else None

    async def merge(
        self,
        key: str,
        new_results: dict[Capability, Any],
        requested_capabilities: Iterable[Capability],
    ) -> None:
        if not new_results:
            return
        async with self._locks[key]:
            current = self._entries.get(key)
            results = dict(current.results) if current else {}
            results.update(new_results)
            self._entries[key] = ResultCacheEntry(
                content_hash=key,
                results=results,
                requested_capabilities=_ordered_union(
                    current.requested_capabilities if current else [],
                    requested_capabilities,
                ),
                updated_at=datetime.now(timezone.utc),
            )
        logger.debug("Cache merge %s… — wrote %s", key[:12], sorted(c.value for c in new_results))

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()


class MongoResultCache:
    """MongoDB-backed store; `_id` is the content hash."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[settings.result_cache_collection]

    async def find(self, key: str) -> ResultCacheEntry | None:
        doc = await self._collection.find_one({"_id": key})
        if doc is None:
            return None
        return ResultCacheEntry(
            content_hash=doc["_id"],
            results=parse_result_map(doc.get("results")),
            requested_capabilities=doc.get("requested_capabilities", []),
            updated_at=doc.get("updated_at") or datetime.now(timezone.utc),
        )

    async def merge(
        self,
        key: str,
        new_results: dict[Capability, Any],
        requested_capabilities: Iterable[Capability],
    ) -> None:
        if not new_results:
            return
        fields: dict[str, Any] = {
            f"results.{Capability(cap).value}": value
            for cap, value in dump_result_map(new_results).items()
        }
        fields["updated_at"] = datetime.now(timezone.utc)
        await self._collection.update_one(
            {"_id": key},
            {
                "$set": fields,
                "$addToSet": {
                    "requested_capabilities": {
                        "$each": [Capability(c).value for c in requested_capabilities]
                    }
                },
            },
            upsert=True,
        )
        logger.debug("Cache merge %s… — wrote %s", key[:12], sorted(fields))


# Fallback store used while MongoDB is disconnected
memory_cache = InMemoryResultCache()


def get_result_cache() -> ResultCache:
    db = get_db()
    if db is None:
        return memory_cache
    return MongoResultCache(db)
