"""
Way totals catalogue.

A logical street can extend far beyond the local graph of one activity.
Every way the provider loads is recorded here with its node list and
totals, so street progress is computed over all known ways of a street
key instead of only the ways near the trace.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from beanie.operators import In
from pymongo import UpdateOne

from date_utils import get_current_utc_time
from db.models import WayTotal
from street_coverage.models import Way
from street_coverage.street_names import street_key_for

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

WRITE_BATCH_SIZE = 1000


class WayCatalog:
    async def record(self, ways: Iterable[Way]) -> int:
        """Upsert totals for ``ways``; returns how many ways were written."""
        now = get_current_utc_time()
        operations = [
            UpdateOne(
                {"way_id": way.way_id},
                {
                    "$set": {
                        "street_key": street_key_for(way),
                        "name": way.name,
                        "highway_type": way.highway_type,
                        "node_ids": list(way.node_ids),
                        "total_node_count": way.total_node_count,
                        "total_edge_length_m": way.total_edge_length_m,
                        "updated_at": now,
                    },
                },
                upsert=True,
            )
            for way in {way.way_id: way for way in ways}.values()
        ]
        if not operations:
            return 0
        collection = WayTotal.get_pymongo_collection()
        for start in range(0, len(operations), WRITE_BATCH_SIZE):
            await collection.bulk_write(
                operations[start : start + WRITE_BATCH_SIZE],
                ordered=False,
            )
        logger.debug("Recorded totals for %d ways", len(operations))
        return len(operations)

    async def ways_for_streets(self, street_keys: Iterable[str]) -> list[Way]:
        keys = sorted(set(street_keys))
        if not keys:
            return []
        docs = await WayTotal.find(In(WayTotal.street_key, keys)).to_list()
        return [
            Way(
                way_id=doc.way_id,
                name=doc.name,
                highway_type=doc.highway_type,
                node_ids=tuple(doc.node_ids),
                total_node_count=doc.total_node_count,
                total_edge_length_m=doc.total_edge_length_m,
            )
            for doc in docs
        ]
