"""
Per-user coverage persistence.

Every write is keyed by the natural (user, unit) pair and uses commutative
merge operators instead of overwrites:

- ``$inc`` for run counters, guarded by ``activity_keys`` so one activity
  is counted at most once per unit. Only the most recent keys are kept;
  the ``ProcessedActivity`` ledger is the long-term idempotency record
- ``$max`` for percentages and last-seen timestamps
- ``$min`` for first-seen timestamps
- a guarded ``$set`` for the one-way ``ever_completed`` flag

A guarded write runs in two steps: an upsert that only creates the
document when it is missing, then the guarded update. Concurrent writers
for the same key are therefore safe without locks, and re-submitting an
activity leaves the stored state unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from beanie.operators import In
from pymongo.errors import DuplicateKeyError

from date_utils import ensure_utc, get_current_utc_time
from db.models import ProcessedActivity, UserEdge, UserNodeHit, UserStreetProgress
from street_coverage.constants import ACTIVITY_KEY_HISTORY, BULK_WRITE_CONCURRENCY

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable
    from datetime import datetime

    from beanie import Document

    from street_coverage.models import StreetCoverage, ValidatedEdge, Way

logger = logging.getLogger(__name__)


def _timestamp_ops(first_field: str, last_field: str, at: datetime | None) -> dict[str, Any]:
    if at is None:
        return {}
    return {"$min": {first_field: at}, "$max": {last_field: at}}


async def _guarded_upsert(
    model: type[Document],
    key: dict[str, Any],
    on_insert: dict[str, Any],
    update: dict[str, Any],
    guard: dict[str, Any] | None = None,
) -> bool:
    """
    Create the document for ``key`` if missing, then apply ``update``.

    The update only lands where ``guard`` still holds. Returns True when it
    changed a document.
    """
    collection = model.get_pymongo_collection()
    try:
        await collection.update_one(key, {"$setOnInsert": on_insert}, upsert=True)
    except DuplicateKeyError:
        # Another writer created it first; the guarded update still applies.
        logger.debug("Concurrent insert for %s %s", model.__name__, key)
    result = await collection.update_one({**key, **(guard or {})}, update)
    return result.modified_count > 0


class CoveragePersistence:
    def __init__(
        self,
        concurrency: int = BULK_WRITE_CONCURRENCY,
        key_history: int = ACTIVITY_KEY_HISTORY,
    ) -> None:
        self._concurrency = max(concurrency, 1)
        self._key_history = max(key_history, 1)

    def _push_activity_key(self, activity_key: str) -> dict[str, Any]:
        return {"$each": [activity_key], "$slice": -self._key_history}

    async def _run_bounded(self, operations: Iterable[Awaitable[bool]]) -> list[bool]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(operation: Awaitable[bool]) -> bool:
            async with semaphore:
                return await operation

        return await asyncio.gather(*(_bounded(op) for op in operations))

    # ------------------------------------------------------------------
    # Idempotency records
    # ------------------------------------------------------------------

    async def find_processed(self, user_id: str, activity_key: str) -> ProcessedActivity | None:
        return await ProcessedActivity.find_one(
            ProcessedActivity.user_id == user_id,
            ProcessedActivity.activity_key == activity_key,
        )

    async def mark_processed(
        self,
        user_id: str,
        activity_key: str,
        *,
        units_hit: int,
        streets_updated: int,
        area_ids: list[str],
        point_count: int,
        activity_timestamp: datetime | None,
    ) -> None:
        record = ProcessedActivity(
            user_id=user_id,
            activity_key=activity_key,
            units_hit=units_hit,
            streets_updated=streets_updated,
            area_ids=area_ids,
            point_count=point_count,
            activity_timestamp=activity_timestamp,
        )
        try:
            await record.insert()
        except DuplicateKeyError:
            logger.info(
                "Activity %s for user %s was already recorded by another worker",
                activity_key,
                user_id,
            )

    # ------------------------------------------------------------------
    # Unit writes
    # ------------------------------------------------------------------

    async def _record_node_hit(self, user_id: str, node_id: int, hit_at: datetime | None) -> bool:
        query = {"user_id": user_id, "node_id": node_id}
        update = _timestamp_ops("first_hit_at", "last_hit_at", hit_at) or {
            "$setOnInsert": {"first_hit_at": None, "last_hit_at": None},
        }
        collection = UserNodeHit.get_pymongo_collection()
        try:
            result = await collection.update_one(query, update, upsert=True)
        except DuplicateKeyError:
            await collection.update_one(query, update)
            return False
        return result.upserted_id is not None

    async def record_node_hits(
        self,
        user_id: str,
        node_ids: Iterable[int],
        hit_at: datetime | None,
    ) -> int:
        """Upsert node hits; returns how many nodes were hit for the first time."""
        node_ids = sorted({int(n) for n in node_ids})
        if not node_ids:
            return 0
        results = await self._run_bounded(
            self._record_node_hit(user_id, node_id, hit_at) for node_id in node_ids
        )
        new_hits = sum(results)
        logger.debug("Recorded %d node hits (%d new) for user %s", len(node_ids), new_hits, user_id)
        return new_hits

    async def _record_edge(
        self,
        user_id: str,
        validated: ValidatedEdge,
        activity_key: str,
        traversed_at: datetime | None,
    ) -> bool:
        edge = validated.edge
        update: dict[str, Any] = {
            "$inc": {"run_count": 1},
            "$push": {"activity_keys": self._push_activity_key(activity_key)},
            **_timestamp_ops("first_traversed_at", "last_traversed_at", traversed_at),
        }
        return await _guarded_upsert(
            UserEdge,
            {"user_id": user_id, "edge_id": edge.edge_id},
            {
                "node_a": edge.node_a,
                "node_b": edge.node_b,
                "way_id": edge.way_id,
                "way_name": edge.way_name,
                "highway_type": edge.highway_type,
                "length_m": edge.length_m,
                "run_count": 0,
                "activity_keys": [],
            },
            update,
            guard={"activity_keys": {"$ne": activity_key}},
        )

    async def record_edges(
        self,
        user_id: str,
        edges: Iterable[ValidatedEdge],
        activity_key: str,
        traversed_at: datetime | None,
    ) -> int:
        """Upsert validated edges; returns how many were counted for this activity."""
        unique = {validated.edge.edge_id: validated for validated in edges}
        if not unique:
            return 0
        results = await self._run_bounded(
            self._record_edge(user_id, validated, activity_key, traversed_at)
            for validated in unique.values()
        )
        return sum(results)

    # ------------------------------------------------------------------
    # Consistent reads for the street recompute
    # ------------------------------------------------------------------

    async def load_way_node_hits(self, user_id: str, ways: Iterable[Way]) -> dict[int, int]:
        """Cumulative hit-node count per way for a user."""
        ways = list(ways)
        all_nodes = {n for way in ways for n in way.node_ids}
        if not all_nodes:
            return {}
        docs = await UserNodeHit.find(
            UserNodeHit.user_id == user_id,
            In(UserNodeHit.node_id, sorted(all_nodes)),
        ).to_list()
        hit = {doc.node_id for doc in docs}
        return {way.way_id: len(set(way.node_ids) & hit) for way in ways}

    async def load_way_edge_lengths(self, user_id: str, way_ids: Iterable[int]) -> dict[int, float]:
        """Cumulative covered edge length per way for a user."""
        way_ids = sorted(set(way_ids))
        if not way_ids:
            return {}
        docs = await UserEdge.find(
            UserEdge.user_id == user_id,
            In(UserEdge.way_id, way_ids),
        ).to_list()
        lengths: dict[int, float] = defaultdict(float)
        for doc in docs:
            lengths[doc.way_id] += doc.length_m
        return dict(lengths)

    # ------------------------------------------------------------------
    # Street progress
    # ------------------------------------------------------------------

    async def merge_street_progress(
        self,
        user_id: str,
        street: StreetCoverage,
        activity_key: str,
        run_at: datetime | None,
    ) -> bool:
        """
        Max-merge one street's progress for an activity.

        Returns True when this call moved the street into "completed" for
        the first time. ``completion_count`` only grows on that transition.
        """
        run_at = ensure_utc(run_at)
        key = {"user_id": user_id, "street_key": street.street_key}
        update: dict[str, Any] = {
            "$max": {"percentage": street.percentage},
            "$inc": {"run_count": 1},
            "$push": {"activity_keys": self._push_activity_key(activity_key)},
            "$addToSet": {
                "way_ids": {"$each": sorted(s.way_id for s in street.segments)},
            },
            "$set": {
                "name": street.name,
                "total_length_m": street.total_length_m,
                "updated_at": get_current_utc_time(),
            },
        }
        if run_at is not None:
            update["$min"] = {"first_run_date": run_at}
            update["$max"]["last_run_date"] = run_at
        await _guarded_upsert(
            UserStreetProgress,
            key,
            {
                "percentage": 0.0,
                "run_count": 0,
                "activity_keys": [],
                "way_ids": [],
                "ever_completed": False,
                "completion_count": 0,
            },
            update,
            guard={"activity_keys": {"$ne": activity_key}},
        )

        if not street.is_completed:
            return False
        result = await UserStreetProgress.get_pymongo_collection().update_one(
            {**key, "ever_completed": {"$ne": True}},
            {"$set": {"ever_completed": True}, "$inc": {"completion_count": 1}},
        )
        if result.modified_count:
            logger.info("User %s completed street %s", user_id, street.street_key)
            return True
        return False

    async def merge_streets(
        self,
        user_id: str,
        streets: Iterable[StreetCoverage],
        activity_key: str,
        run_at: datetime | None,
    ) -> int:
        """Merge several streets; returns the number of new completions."""
        results = await self._run_bounded(
            self.merge_street_progress(user_id, street, activity_key, run_at)
            for street in streets
        )
        return sum(results)

    async def load_street_progress(
        self,
        user_id: str,
        street_keys: Iterable[str],
    ) -> dict[str, UserStreetProgress]:
        keys = sorted(set(street_keys))
        if not keys:
            return {}
        docs = await UserStreetProgress.find(
            UserStreetProgress.user_id == user_id,
            In(UserStreetProgress.street_key, keys),
        ).to_list()
        return {doc.street_key: doc for doc in docs}
