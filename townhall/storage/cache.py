"""
Version-Tracked Record Cache
============================

Keeps ``id -> (record, version)`` for one bucket and refreshes it from a
directory listing of ``{id: version}`` (mtime_ns in production).

Invalidation is a pure function of the listing and the cached versions,
so it is testable without disk I/O; the listing itself is injected.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from ..contracts.base import ErrorCode, ErrorKind, Result
from ..observability import ObservabilityEngine
from .objects import ObjectStore


# =============================================================================
# PROTOCOLS (Interface contracts)
# =============================================================================

class DirectoryListing(Protocol):
    """Source of ``{id: version}`` maps for a bucket."""

    async def versions(self, bucket: str) -> Result:
        """Result holding ``Dict[str, int]``."""
        ...


class ObjectStoreListing:
    """DirectoryListing backed by ObjectStore.list_versions."""

    def __init__(self, object_store: ObjectStore):
        self._objects = object_store

    async def versions(self, bucket: str) -> Result:
        return await self._objects.list_versions(bucket)


# =============================================================================
# INVALIDATION
# =============================================================================

@dataclass(frozen=True)
class InvalidationPlan:
    """What a refresh must reload (stale, added) and evict (removed)."""
    stale: Tuple[str, ...] = ()
    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.stale or self.added or self.removed)

    @property
    def to_load(self) -> Tuple[str, ...]:
        return tuple(sorted(self.stale + self.added))


def plan_invalidation(listing: Mapping[str, int], cached: Mapping[str, int]) -> InvalidationPlan:
    """
    Compare a fresh listing against cached versions.

    Any version change counts as stale, including a version going
    backwards (a file replaced by an older copy).
    """
    return InvalidationPlan(
        stale=tuple(sorted(
            record_id for record_id, version in listing.items()
            if record_id in cached and cached[record_id] != version
        )),
        added=tuple(sorted(record_id for record_id in listing if record_id not in cached)),
        removed=tuple(sorted(record_id for record_id in cached if record_id not in listing)),
    )


# =============================================================================
# CACHE
# =============================================================================

class RecordCache:
    """Plain ``id -> (value, version)`` map. No I/O."""

    def __init__(self):
        self._entries: Dict[str, Tuple[Any, int]] = {}

    def get(self, record_id: str) -> Optional[Any]:
        entry = self._entries.get(record_id)
        return entry[0] if entry else None

    def put(self, record_id: str, value: Any, version: int):
        self._entries[record_id] = (value, version)

    def evict(self, record_id: str):
        self._entries.pop(record_id, None)

    def versions(self) -> Dict[str, int]:
        return {record_id: entry[1] for record_id, entry in self._entries.items()}

    def values(self) -> List[Any]:
        """Cached values ordered by id."""
        return [self._entries[record_id][0] for record_id in sorted(self._entries)]

    def clear(self):
        self._entries.clear()

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class CachedRecordReader:
    """
    Read-through cache over one bucket of the object store.

    Each read refreshes against the listing first, so callers never see
    a record that has since been replaced or deleted on disk. A corrupted
    record is set aside until its version changes: it fails ``get`` for
    that id only and is left out of ``all``.
    """

    LAYER = "cache"

    def __init__(
        self,
        object_store: ObjectStore,
        bucket: str,
        listing: Optional[DirectoryListing] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._objects = object_store
        self._bucket = bucket
        self._listing = listing or ObjectStoreListing(object_store)
        self._observability = observability or object_store.observability
        self._cache = RecordCache()
        self._failures: Dict[str, Tuple[Result, int]] = {}

    @property
    def cache(self) -> RecordCache:
        return self._cache

    @property
    def corrupted(self) -> List[str]:
        """Ids currently set aside as unreadable."""
        return sorted(self._failures)

    async def refresh(self) -> Result:
        """Apply an invalidation plan. Returns the plan."""
        listed = await self._listing.versions(self._bucket)
        if listed.is_failure:
            return listed

        versions: Dict[str, int] = listed.value
        known = self._cache.versions()
        known.update({record_id: entry[1] for record_id, entry in self._failures.items()})
        plan = plan_invalidation(versions, known)

        for record_id in plan.removed + plan.stale:
            self._cache.evict(record_id)
            self._failures.pop(record_id, None)

        for record_id in plan.to_load:
            loaded = await self._objects.retrieve(self._bucket, record_id)
            if loaded.is_failure:
                # Deleted between listing and read
                if loaded.error.code == ErrorCode.OBJECT_NOT_FOUND:
                    continue
                if loaded.error.kind == ErrorKind.CORRUPTION:
                    self._failures[record_id] = (loaded, versions[record_id])
                    self._observability.collect_metric(
                        "records_set_aside_total", 1, {"bucket": self._bucket}
                    )
                    self._observability.log_error(
                        layer=self.LAYER,
                        action="refresh",
                        error=loaded.error,
                        entity_id=record_id,
                        entity_type=self._bucket
                    )
                    continue
                return loaded
            self._cache.put(record_id, loaded.value, versions[record_id])

        return Result.success(plan)

    async def get(self, record_id: str) -> Result:
        refreshed = await self.refresh()
        if refreshed.is_failure:
            return refreshed

        if record_id in self._failures:
            return self._failures[record_id][0]

        record = self._cache.get(record_id)
        if record is None:
            return Result.fail(
                ErrorCode.OBJECT_NOT_FOUND,
                f"Object not found: {self._bucket}/{record_id}",
                bucket=self._bucket,
                id=record_id
            )
        return Result.success(record)

    async def all(self) -> Result:
        """Every readable record in the bucket, ordered by id."""
        refreshed = await self.refresh()
        if refreshed.is_failure:
            return refreshed
        return Result.success(self._cache.values())
