"""Database package for MongoDB operations using Beanie ODM.

Modules:
    manager: DatabaseManager singleton for connection handling
    models: Beanie Document models for per-user coverage state
"""

from db.manager import DatabaseManager, db_manager, init_database
from db.models import (
    ALL_DOCUMENT_MODELS,
    CoverageArea,
    GraphCacheEntry,
    ProcessedActivity,
    UserEdge,
    UserNodeHit,
    UserStreetProgress,
    WayTotal,
)

__all__ = [
    "ALL_DOCUMENT_MODELS",
    "CoverageArea",
    "DatabaseManager",
    "GraphCacheEntry",
    "ProcessedActivity",
    "UserEdge",
    "UserNodeHit",
    "UserStreetProgress",
    "WayTotal",
    "db_manager",
    "init_database",
]
