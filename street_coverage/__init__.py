"""Street coverage package - per-user street coverage from GPS traces.

An activity trace is cleaned, matched against a cached OSM road graph and
folded into per-user coverage state. Coverage is then read back for any
circular area.

Key modules:
    - models: Settings, trace, graph and result types
    - constants: Tunable thresholds (env-overridable)
    - preprocessing: GPS jump and stationary filtering
    - graph_provider / graph_cache: Road graph fetching and caching
    - way_catalog: Per-way totals so long streets aggregate all their ways
    - matching: Node-proximity and edge (map-matching) matchers
    - aggregation: Per-way and per-street coverage rules
    - persistence: Idempotent upserts of user coverage state
    - scope: Area eligibility for an activity
    - pipeline: process_activity / get_area_coverage

Usage:
    from street_coverage import process_activity, get_area_coverage

    result = await process_activity(user_id, points, activity_timestamp)
    streets = await get_area_coverage(user_id, (lat, lng), 1500)
"""

from __future__ import annotations

from importlib import import_module

from street_coverage.constants import (
    SHORT_WAY_NODE_THRESHOLD,
    SNAP_RADIUS_METERS,
    STANDARD_COMPLETION_THRESHOLD,
    STREET_COMPLETION_THRESHOLD,
)
from street_coverage.models import (
    ActivityResult,
    AreaStreet,
    CoverageSettings,
    RoadGraph,
    TrackPoint,
)

__all__ = [
    # Constants
    "SHORT_WAY_NODE_THRESHOLD",
    "SNAP_RADIUS_METERS",
    "STANDARD_COMPLETION_THRESHOLD",
    "STREET_COMPLETION_THRESHOLD",
    # Models
    "ActivityResult",
    "AreaStreet",
    "CoverageSettings",
    "RoadGraph",
    "TrackPoint",
    # Pipeline
    "StreetCoverageService",
    "aggregate_streets",
    "get_area_coverage",
    "preprocess_trace",
    "process_activity",
    "RoadGraphProvider",
]

_LAZY_IMPORTS: dict[str, tuple[str, str | None]] = {
    "StreetCoverageService": ("street_coverage.pipeline", "StreetCoverageService"),
    "process_activity": ("street_coverage.pipeline", "process_activity"),
    "get_area_coverage": ("street_coverage.pipeline", "get_area_coverage"),
    "preprocess_trace": ("street_coverage.preprocessing", "preprocess_trace"),
    "aggregate_streets": ("street_coverage.aggregation", "aggregate_streets"),
    "RoadGraphProvider": ("street_coverage.graph_provider", "RoadGraphProvider"),
    "matching": ("street_coverage.matching", None),
    "persistence": ("street_coverage.persistence", None),
    "pipeline": ("street_coverage.pipeline", None),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if not target:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)

    module_name, attr_name = target
    module = import_module(module_name)
    return module if attr_name is None else getattr(module, attr_name)


def __dir__():
    return sorted(set(globals()) | set(_LAZY_IMPORTS))
