"""Centralized configuration for environment variables and external APIs.

This module is the single source of truth for endpoint configuration used
across the application. Import constants from here rather than calling
os.getenv directly in multiple places. Coverage thresholds live in
``street_coverage.constants``.
"""

from __future__ import annotations

import os
from typing import Final

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()


def _get_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _get_list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


# --- Overpass (road graph) Configuration ---
OVERPASS_API_URL: Final[str] = os.getenv(
    "OVERPASS_API_URL",
    "https://overpass-api.de/api/interpreter",
)
OVERPASS_FALLBACK_URLS: Final[tuple[str, ...]] = _get_list_env(
    "OVERPASS_FALLBACK_URLS",
    (
        "https://overpass.kumi.systems/api/interpreter",
        "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
    ),
)
# Remote graph queries disabled; only cached/pre-seeded data is used.
SKIP_OVERPASS: Final[bool] = _get_bool_env("SKIP_OVERPASS")
# Optional Overpass-JSON extract used as the offline snapshot source.
GRAPH_SNAPSHOT_PATH: Final[str | None] = os.getenv("GRAPH_SNAPSHOT_PATH") or None


# --- OSRM (map matching) Configuration ---
OSRM_BASE_URL: Final[str] = os.getenv(
    "OSRM_BASE_URL",
    "https://router.project-osrm.org",
)
OSRM_FALLBACK_URLS: Final[tuple[str, ...]] = _get_list_env("OSRM_FALLBACK_URLS", ())
OSRM_PROFILE: Final[str] = os.getenv("OSRM_PROFILE", "foot")


# --- Matching strategy ---
# "node_proximity", "edge", or "both"
MATCHING_STRATEGY: Final[str] = (
    os.getenv("MATCHING_STRATEGY", "node_proximity").strip().lower()
)


__all__ = [
    "GRAPH_SNAPSHOT_PATH",
    "MATCHING_STRATEGY",
    "OSRM_BASE_URL",
    "OSRM_FALLBACK_URLS",
    "OSRM_PROFILE",
    "OVERPASS_API_URL",
    "OVERPASS_FALLBACK_URLS",
    "SKIP_OVERPASS",
]
