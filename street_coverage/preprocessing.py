"""
GPS trace preprocessing.

Cleans a raw trace before matching:

1. Invalid coordinates are dropped.
2. Spatial jumps (a point further than the jump threshold from the last
   kept point) are treated as GPS errors and dropped. When several
   consecutive dropped points agree with each other the device really
   moved, so they start a new segment. Segments are never bridged.
3. Points slower than the stopped-speed threshold are flagged stationary
   but kept; they still count for node proximity.

Everything here is a pure transform and never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from core.spatial import GeometryService
from date_utils import normalize_to_utc_datetime, seconds_between
from street_coverage.models import (
    CoverageSettings,
    PreprocessedPoint,
    PreprocessedTrace,
    TrackPoint,
)

logger = logging.getLogger(__name__)


def coerce_track_point(raw: Any) -> TrackPoint | None:
    """
    Build a TrackPoint from a TrackPoint, mapping or ``(lat, lng[, ts])``.

    Returns None for anything without a valid coordinate pair.
    """
    if isinstance(raw, TrackPoint):
        lat, lng, timestamp = raw.lat, raw.lng, raw.timestamp
    elif isinstance(raw, Mapping):
        lat = raw.get("lat", raw.get("latitude"))
        lng = raw.get("lng", raw.get("lon", raw.get("longitude")))
        timestamp = raw.get("timestamp", raw.get("time"))
    elif isinstance(raw, (list, tuple)) and len(raw) >= 2:
        lat, lng = raw[0], raw[1]
        timestamp = raw[2] if len(raw) > 2 else None
    else:
        return None

    valid, pair = GeometryService.validate_coordinate_pair([lng, lat])
    if not valid or pair is None:
        return None
    if isinstance(timestamp, (datetime, str)):
        timestamp = normalize_to_utc_datetime(timestamp)
    else:
        timestamp = None
    return TrackPoint(lat=pair[1], lng=pair[0], timestamp=timestamp)


def compute_speed_mps(
    distance_m: float,
    start: datetime | None,
    end: datetime | None,
    min_time_delta_s: float,
) -> float | None:
    """Speed over a pair of points, or None when it is undefined."""
    elapsed = seconds_between(start, end)
    if elapsed is None or elapsed < max(min_time_delta_s, 1e-9):
        return None
    return distance_m / elapsed


def _distance(a: TrackPoint | PreprocessedPoint, b: TrackPoint | PreprocessedPoint) -> float:
    return GeometryService.haversine_distance(a.lng, a.lat, b.lng, b.lat)


def _to_preprocessed(
    point: TrackPoint,
    previous: PreprocessedPoint | TrackPoint | None,
    segment_index: int,
    settings: CoverageSettings,
) -> PreprocessedPoint:
    stationary = False
    if previous is not None:
        speed = compute_speed_mps(
            _distance(previous, point),
            previous.timestamp,
            point.timestamp,
            settings.min_time_delta_s,
        )
        stationary = speed is not None and speed < settings.stopped_speed_mps
    return PreprocessedPoint(
        lat=point.lat,
        lng=point.lng,
        timestamp=point.timestamp,
        stationary=stationary,
        segment_index=segment_index,
    )


def preprocess_trace(
    points: Iterable[Any],
    settings: CoverageSettings | None = None,
) -> PreprocessedTrace:
    """Remove jumps and flag stationary points. Empty input gives empty output."""
    settings = settings or CoverageSettings()
    resume_points = max(settings.jump_resume_points, 1)

    kept: list[PreprocessedPoint] = []
    pending: list[TrackPoint] = []
    dropped = 0
    segment_index = 0

    for raw in points:
        point = coerce_track_point(raw)
        if point is None:
            dropped += 1
            continue

        if not kept:
            kept.append(_to_preprocessed(point, None, segment_index, settings))
            continue

        if _distance(kept[-1], point) <= settings.jump_distance_m:
            # Back on track: anything parked after a jump was noise.
            dropped += len(pending)
            pending = []
            kept.append(_to_preprocessed(point, kept[-1], segment_index, settings))
            continue

        if pending and _distance(pending[-1], point) <= settings.jump_distance_m:
            pending.append(point)
        else:
            dropped += len(pending)
            pending = [point]

        if len(pending) >= resume_points:
            segment_index += 1
            previous: TrackPoint | None = None
            for candidate in pending:
                kept.append(_to_preprocessed(candidate, previous, segment_index, settings))
                previous = candidate
            pending = []

    dropped += len(pending)
    if dropped:
        logger.debug(
            "Preprocessing dropped %d points, kept %d in %d segments",
            dropped,
            len(kept),
            segment_index + 1 if kept else 0,
        )
    return PreprocessedTrace(points=kept, dropped_count=dropped)
