"""Beanie ODM document models for MongoDB collections.

Per-user coverage state is keyed by natural (user, unit) pairs with unique
compound indexes, so every write can be an upsert:

- ``UserNodeHit``: (user_id, node_id)
- ``UserEdge``: (user_id, edge_id)
- ``UserStreetProgress``: (user_id, street_key)
- ``ProcessedActivity``: (user_id, activity_key)

``WayTotal`` is shared reference data keyed by ``way_id``.

Usage:
    from db.models import UserStreetProgress

    progress = await UserStreetProgress.find_one(
        UserStreetProgress.user_id == "u1",
        UserStreetProgress.street_key == "elm grove",
    )
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from date_utils import get_current_utc_time


class GraphCacheEntry(Document):
    """Cached road graph for a rounded centre and radius."""

    center_key: str
    center_lat: float
    center_lng: float
    radius_m: int
    payload: dict[str, Any] = Field(default_factory=dict)
    node_count: int = 0
    way_count: int = 0
    source: str | None = None
    fetched_at: datetime = Field(default_factory=get_current_utc_time)
    expires_at: datetime | None = None

    class Settings:
        name = "graph_cache"
        indexes = [
            IndexModel(
                [("center_key", ASCENDING), ("radius_m", ASCENDING)],
                name="graph_cache_center_radius_unique_idx",
                unique=True,
            ),
            IndexModel([("expires_at", ASCENDING)], name="graph_cache_expires_idx"),
        ]

    class Config:
        extra = "allow"


class UserNodeHit(Document):
    """A graph node a user has passed within snapping distance of."""

    user_id: str
    node_id: int
    first_hit_at: datetime | None = None
    last_hit_at: datetime | None = None

    class Settings:
        name = "user_node_hits"
        indexes = [
            IndexModel(
                [("user_id", ASCENDING), ("node_id", ASCENDING)],
                name="user_node_hits_user_node_unique_idx",
                unique=True,
            ),
        ]

    class Config:
        extra = "allow"


class UserEdge(Document):
    """A validated edge traversal, accumulated across activities."""

    user_id: str
    edge_id: str
    node_a: int
    node_b: int
    way_id: int
    way_name: str | None = None
    highway_type: str | None = None
    length_m: float = 0.0
    run_count: int = 0
    activity_keys: list[str] = Field(default_factory=list)
    first_traversed_at: datetime | None = None
    last_traversed_at: datetime | None = None

    class Settings:
        name = "user_edges"
        indexes = [
            IndexModel(
                [("user_id", ASCENDING), ("edge_id", ASCENDING)],
                name="user_edges_user_edge_unique_idx",
                unique=True,
            ),
            IndexModel(
                [("user_id", ASCENDING), ("way_id", ASCENDING)],
                name="user_edges_user_way_idx",
            ),
        ]

    class Config:
        extra = "allow"


class UserStreetProgress(Document):
    """Per-user progress on one logical street."""

    user_id: str
    street_key: str
    name: str | None = None
    way_ids: list[int] = Field(default_factory=list)
    total_length_m: float = 0.0
    percentage: float = 0.0
    ever_completed: bool = False
    completion_count: int = 0
    run_count: int = 0
    activity_keys: list[str] = Field(default_factory=list)
    first_run_date: datetime | None = None
    last_run_date: datetime | None = None
    updated_at: datetime | None = None

    class Settings:
        name = "user_street_progress"
        indexes = [
            IndexModel(
                [("user_id", ASCENDING), ("street_key", ASCENDING)],
                name="user_street_progress_user_street_unique_idx",
                unique=True,
            ),
            IndexModel(
                [("user_id", ASCENDING), ("percentage", DESCENDING)],
                name="user_street_progress_user_percentage_idx",
            ),
        ]

    class Config:
        extra = "allow"


class CoverageArea(Document):
    """A user-defined circular area that activities can credit."""

    user_id: str
    name: str | None = None
    center_lat: float
    center_lng: float
    radius_m: float
    created_at: datetime = Field(default_factory=get_current_utc_time)
    archived: bool = False
    last_activity_at: datetime | None = None

    class Settings:
        name = "coverage_areas"
        indexes = [
            IndexModel(
                [("user_id", ASCENDING), ("archived", ASCENDING)],
                name="coverage_areas_user_archived_idx",
            ),
        ]

    class Config:
        extra = "allow"


class WayTotal(Document):
    """Reference totals for one OSM way, shared by every user."""

    way_id: int
    street_key: str
    name: str | None = None
    highway_type: str = "unknown"
    node_ids: list[int] = Field(default_factory=list)
    total_node_count: int = 0
    total_edge_length_m: float = 0.0
    updated_at: datetime | None = None

    class Settings:
        name = "way_totals"
        indexes = [
            IndexModel([("way_id", ASCENDING)], name="way_totals_way_unique_idx", unique=True),
            IndexModel([("street_key", ASCENDING)], name="way_totals_street_key_idx"),
        ]

    class Config:
        extra = "allow"


class ProcessedActivity(Document):
    """Idempotency record: one per (user, activity) already applied."""

    user_id: str
    activity_key: str
    units_hit: int = 0
    streets_updated: int = 0
    area_ids: list[str] = Field(default_factory=list)
    point_count: int = 0
    activity_timestamp: datetime | None = None
    processed_at: datetime = Field(default_factory=get_current_utc_time)

    class Settings:
        name = "processed_activities"
        indexes = [
            IndexModel(
                [("user_id", ASCENDING), ("activity_key", ASCENDING)],
                name="processed_activities_user_activity_unique_idx",
                unique=True,
            ),
        ]

    class Config:
        extra = "allow"


ALL_DOCUMENT_MODELS = [
    GraphCacheEntry,
    UserNodeHit,
    UserEdge,
    UserStreetProgress,
    CoverageArea,
    ProcessedActivity,
    WayTotal,
]
