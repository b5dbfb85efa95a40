"""
Coverage thresholds and limits.

Every value here is a binary-gate threshold, not a sliding score. Defaults
can be overridden through environment variables; invalid overrides fall
back to the default.
"""

from __future__ import annotations

import os


def _get_int_env(name: str, default: int) -> int:
    """Get an integer from environment variable with default."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return max(int(raw), 0)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """Get a non-negative float from environment variable with default."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return default


def _get_set_env(name: str, default: frozenset[str]) -> frozenset[str]:
    """Comma separated set; the literal value "none" yields an empty set."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    if raw.strip().lower() == "none":
        return frozenset()
    return frozenset(item.strip().lower() for item in raw.split(",") if item.strip())


# =============================================================================
# GPS Preprocessing
# =============================================================================
JUMP_DISTANCE_METERS = _get_float_env("COVERAGE_JUMP_DISTANCE_M", 200.0)
# Consecutive mutually-consistent points after a jump that mark a genuine
# relocation (new segment) instead of a GPS error.
JUMP_RESUME_POINTS = _get_int_env("COVERAGE_JUMP_RESUME_POINTS", 3)
STOPPED_SPEED_MPS = _get_float_env("COVERAGE_STOPPED_SPEED_MPS", 0.5)
MIN_TIME_DELTA_SECONDS = _get_float_env("COVERAGE_MIN_TIME_DELTA_S", 1.0)

# =============================================================================
# Node Proximity
# =============================================================================
SNAP_RADIUS_METERS = _get_float_env("COVERAGE_SNAP_RADIUS_M", 25.0)
# Ways with this many nodes or fewer require every node to be hit.
SHORT_WAY_NODE_THRESHOLD = _get_int_env("COVERAGE_SHORT_WAY_NODES", 10)
STANDARD_COMPLETION_THRESHOLD = _get_float_env("COVERAGE_WAY_COMPLETION", 0.9)

# =============================================================================
# Edge Validation Gates
# =============================================================================
MIN_EDGE_LENGTH_METERS = _get_float_env("COVERAGE_MIN_EDGE_LENGTH_M", 5.0)
MAX_SPEED_MPS = _get_float_env("COVERAGE_MAX_SPEED_MPS", 7.0)
DEFAULT_EXCLUDED_HIGHWAY_TYPES = frozenset(
    {
        "service",
        "driveway",
        "parking_aisle",
        "drive-through",
        "drive_through",
        "emergency_access",
    },
)
EXCLUDED_HIGHWAY_TYPES = _get_set_env(
    "COVERAGE_EXCLUDED_HIGHWAYS",
    DEFAULT_EXCLUDED_HIGHWAY_TYPES,
)

# =============================================================================
# Street Aggregation
# =============================================================================
CONNECTOR_MAX_LENGTH_METERS = _get_float_env("COVERAGE_CONNECTOR_MAX_M", 20.0)
CONNECTOR_WEIGHT = _get_float_env("COVERAGE_CONNECTOR_WEIGHT", 0.25)
STREET_COMPLETION_THRESHOLD = _get_float_env("COVERAGE_STREET_COMPLETION", 0.9)

# =============================================================================
# Road Graph Cache
# =============================================================================
CACHE_EXPIRY_DAYS = _get_int_env("COVERAGE_CACHE_EXPIRY_DAYS", 30)
CACHE_COORD_PRECISION = 4  # ~11m
GRAPH_RADIUS_STEP_METERS = _get_int_env("COVERAGE_GRAPH_RADIUS_STEP_M", 100)
GRAPH_BUFFER_METERS = _get_float_env("COVERAGE_GRAPH_BUFFER_M", 50.0)
GRAPH_MAX_RADIUS_METERS = _get_int_env("COVERAGE_GRAPH_MAX_RADIUS_M", 20000)

# =============================================================================
# Remote Dependencies
# =============================================================================
OVERPASS_MAX_RETRIES = _get_int_env("OVERPASS_MAX_RETRIES", 2)
OVERPASS_TIMEOUT_SECONDS = _get_float_env("OVERPASS_TIMEOUT_S", 30.0)
OSRM_MAX_COORDINATES = _get_int_env("OSRM_MAX_COORDINATES", 100)
OSRM_MAX_RETRIES = _get_int_env("OSRM_MAX_RETRIES", 2)
OSRM_TIMEOUT_SECONDS = _get_float_env("OSRM_TIMEOUT_S", 15.0)
RETRY_BASE_DELAY_SECONDS = _get_float_env("COVERAGE_RETRY_DELAY_S", 1.0)
# OSRM rejects chunks that are too small to form a segment.
OSRM_MIN_CHUNK_POINTS = 5

# =============================================================================
# Persistence
# =============================================================================
BULK_WRITE_CONCURRENCY = _get_int_env("COVERAGE_WRITE_CONCURRENCY", 25)
# Recent activity keys kept per edge / street for the run-count guard.
ACTIVITY_KEY_HISTORY = _get_int_env("COVERAGE_ACTIVITY_KEY_HISTORY", 50)
