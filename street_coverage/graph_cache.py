"""
Road graph cache stores.

The cache is an injected collaborator of the graph provider. Two stores
implement the same protocol: an in-memory one (tests, single process) and
a MongoDB one backed by ``GraphCacheEntry``. Concurrent writers of the same
key are allowed; the last write wins since the data is reference data.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from beanie.operators import In
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from date_utils import ensure_utc, get_current_utc_time
from db.models import GraphCacheEntry
from street_coverage.constants import CACHE_COORD_PRECISION
from street_coverage.models import RoadGraph

if TYPE_CHECKING:
    from street_coverage.models import CoverageSettings

logger = logging.getLogger(__name__)


def center_key(lat: float, lng: float) -> str:
    """Centre rounded to ~11 m so nearby traces share entries."""
    precision = CACHE_COORD_PRECISION
    return f"{lat:.{precision}f},{lng:.{precision}f}"


def cache_radius(radius_m: float, settings: CoverageSettings) -> int:
    """Radius rounded up to the configured step and capped."""
    step = settings.graph_radius_step_m
    rounded = int(math.ceil(max(radius_m, 1.0) / step) * step)
    return min(rounded, max(settings.graph_max_radius_m, step))


@dataclass
class CachedGraph:
    center_key: str
    radius_m: int
    graph: RoadGraph
    fetched_at: datetime
    expires_at: datetime | None = None
    source: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or get_current_utc_time()
        return ensure_utc(self.expires_at) <= now


class GraphCache(Protocol):
    async def get(self, key: str, radius_m: int) -> CachedGraph | None: ...

    async def find_larger(
        self,
        key: str,
        radius_m: int,
        now: datetime | None = None,
    ) -> CachedGraph | None: ...

    async def put(
        self,
        key: str,
        radius_m: int,
        graph: RoadGraph,
        *,
        expiry_days: int,
        source: str | None = None,
    ) -> CachedGraph: ...

    async def purge_expired(self, now: datetime | None = None) -> int: ...


def _make_entry(
    key: str,
    radius_m: int,
    graph: RoadGraph,
    expiry_days: int,
    source: str | None,
) -> CachedGraph:
    fetched_at = get_current_utc_time()
    return CachedGraph(
        center_key=key,
        radius_m=radius_m,
        graph=graph,
        fetched_at=fetched_at,
        expires_at=fetched_at + timedelta(days=expiry_days),
        source=source,
    )


class InMemoryGraphCache:
    """Process-local cache keyed by (centre key, radius)."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, int], CachedGraph] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def seed(self, entry: CachedGraph) -> None:
        self._entries[(entry.center_key, entry.radius_m)] = entry

    async def get(self, key: str, radius_m: int) -> CachedGraph | None:
        return self._entries.get((key, radius_m))

    async def find_larger(
        self,
        key: str,
        radius_m: int,
        now: datetime | None = None,
    ) -> CachedGraph | None:
        candidates = sorted(
            (
                entry
                for (entry_key, entry_radius), entry in self._entries.items()
                if entry_key == key and entry_radius > radius_m
            ),
            key=lambda entry: entry.radius_m,
        )
        for entry in candidates:
            if not entry.is_expired(now):
                return entry
        return None

    async def put(
        self,
        key: str,
        radius_m: int,
        graph: RoadGraph,
        *,
        expiry_days: int,
        source: str | None = None,
    ) -> CachedGraph:
        entry = _make_entry(key, radius_m, graph, expiry_days, source)
        self._entries[(key, radius_m)] = entry
        return entry

    async def purge_expired(self, now: datetime | None = None) -> int:
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)


class MongoGraphCache:
    """Shared cache persisted in the ``graph_cache`` collection."""

    @staticmethod
    def _to_cached(doc: GraphCacheEntry) -> CachedGraph:
        return CachedGraph(
            center_key=doc.center_key,
            radius_m=doc.radius_m,
            graph=RoadGraph.from_payload(doc.payload),
            fetched_at=ensure_utc(doc.fetched_at),
            expires_at=ensure_utc(doc.expires_at),
            source=doc.source,
        )

    async def get(self, key: str, radius_m: int) -> CachedGraph | None:
        doc = await GraphCacheEntry.find_one(
            GraphCacheEntry.center_key == key,
            GraphCacheEntry.radius_m == radius_m,
        )
        return self._to_cached(doc) if doc else None

    async def find_larger(
        self,
        key: str,
        radius_m: int,
        now: datetime | None = None,
    ) -> CachedGraph | None:
        now = now or get_current_utc_time()
        docs = (
            await GraphCacheEntry.find(
                GraphCacheEntry.center_key == key,
                GraphCacheEntry.radius_m > radius_m,
            )
            .sort([("radius_m", ASCENDING)])
            .to_list()
        )
        for doc in docs:
            expires_at = ensure_utc(doc.expires_at)
            if expires_at is None or expires_at > now:
                return self._to_cached(doc)
        return None

    async def put(
        self,
        key: str,
        radius_m: int,
        graph: RoadGraph,
        *,
        expiry_days: int,
        source: str | None = None,
    ) -> CachedGraph:
        entry = _make_entry(key, radius_m, graph, expiry_days, source)
        lat_text, lng_text = key.split(",")
        fields = {
            "payload": graph.to_payload(),
            "node_count": len(graph.nodes),
            "way_count": len(graph.ways),
            "source": source,
            "fetched_at": entry.fetched_at,
            "expires_at": entry.expires_at,
        }
        query = GraphCacheEntry.find_one(
            GraphCacheEntry.center_key == key,
            GraphCacheEntry.radius_m == radius_m,
        )
        try:
            await query.upsert(
                {"$set": fields},
                on_insert=GraphCacheEntry(
                    center_key=key,
                    center_lat=float(lat_text),
                    center_lng=float(lng_text),
                    radius_m=radius_m,
                    **fields,
                ),
            )
        except DuplicateKeyError:
            # A concurrent writer inserted first; overwrite with ours.
            await query.update({"$set": fields})
        logger.debug(
            "Cached graph %s r=%dm (%d ways, source=%s)",
            key,
            radius_m,
            len(graph.ways),
            source,
        )
        return entry

    async def purge_expired(self, now: datetime | None = None) -> int:
        now = now or get_current_utc_time()
        expired_ids = [
            doc.id
            for doc in await GraphCacheEntry.find_all().to_list()
            if doc.expires_at is not None and ensure_utc(doc.expires_at) <= now
        ]
        if not expired_ids:
            return 0
        await GraphCacheEntry.find(In(GraphCacheEntry.id, expired_ids)).delete()
        logger.info("Purged %d expired graph cache entries", len(expired_ids))
        return len(expired_ids)
