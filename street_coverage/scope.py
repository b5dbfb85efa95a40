"""
Area scope filtering.

Decides which of a user's coverage areas an activity may credit:

- archived areas never qualify
- with an activity timestamp, only areas created at or before it qualify
  (full datetime comparison in UTC, not calendar date)
- the trace has to enter the area's circle (bounding-box prefilter, then
  haversine point-in-circle)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.spatial import GeometryService
from date_utils import ensure_utc, normalize_to_utc_datetime
from db.models import CoverageArea

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date, datetime

    from street_coverage.models import PreprocessedPoint, TrackPoint

logger = logging.getLogger(__name__)


async def eligible_areas(
    user_id: str,
    activity_timestamp: str | datetime | date | None = None,
) -> list[CoverageArea]:
    """Non-archived areas of a user that existed when the activity happened."""
    areas = await CoverageArea.find(
        {"user_id": user_id, "archived": {"$ne": True}},
    ).to_list()
    activity_at = normalize_to_utc_datetime(activity_timestamp)
    if activity_at is None:
        return areas
    return [
        area
        for area in areas
        if area.created_at is not None and ensure_utc(area.created_at) <= activity_at
    ]


def area_contains_trace(
    area: CoverageArea,
    points: Sequence[PreprocessedPoint | TrackPoint],
    trace_bbox: tuple[float, float, float, float] | None = None,
) -> bool:
    """True when any point of the trace lies inside the area's circle."""
    if not points:
        return False
    trace_bbox = trace_bbox or GeometryService.bounding_box((p.lat, p.lng) for p in points)
    area_bbox = GeometryService.bbox_around_point(area.center_lat, area.center_lng, area.radius_m)
    if trace_bbox is None or not GeometryService.bboxes_intersect(trace_bbox, area_bbox):
        return False
    return any(
        GeometryService.haversine_distance(area.center_lng, area.center_lat, p.lng, p.lat)
        <= area.radius_m
        for p in points
    )


async def scope_areas_for_activity(
    user_id: str,
    points: Sequence[PreprocessedPoint | TrackPoint],
    activity_timestamp: str | datetime | date | None = None,
) -> list[CoverageArea]:
    """Areas this activity is allowed to update."""
    if not points:
        return []
    candidates = await eligible_areas(user_id, activity_timestamp)
    trace_bbox = GeometryService.bounding_box((p.lat, p.lng) for p in points)
    scoped = [area for area in candidates if area_contains_trace(area, points, trace_bbox)]
    logger.debug(
        "Activity for user %s scoped to %d of %d eligible areas",
        user_id,
        len(scoped),
        len(candidates),
    )
    return scoped


async def touch_areas(areas: Sequence[CoverageArea], activity_at: datetime | None) -> None:
    """Max-merge ``last_activity_at`` on each scoped area."""
    activity_at = ensure_utc(activity_at)
    if activity_at is None:
        return
    collection = CoverageArea.get_pymongo_collection()
    for area in areas:
        await collection.update_one(
            {"_id": area.id},
            {"$max": {"last_activity_at": activity_at}},
        )
