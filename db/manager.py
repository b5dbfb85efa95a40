"""
Database connection manager module.

Provides a singleton DatabaseManager owning the Motor client and the
Beanie initialisation for coverage documents.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import UTC
from typing import Any, Final, Self

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from core.exceptions import StorageError

logger = logging.getLogger(__name__)

DEFAULT_MONGO_URI: Final[str] = "mongodb://localhost:27017"
DEFAULT_DATABASE_NAME: Final[str] = "street_keeper"


class DatabaseManager:
    """
    Singleton class to manage the MongoDB client and database connection.

    Environment Variables:
        MONGODB_URI: MongoDB URI (default: mongodb://localhost:27017)
        MONGODB_DATABASE: Database name (default: street_keeper)
        MONGODB_MAX_POOL_SIZE: Connection pool size (default: 50)
        MONGODB_SERVER_SELECTION_TIMEOUT_MS: Server selection timeout (default: 10000)
    """

    _instance: DatabaseManager | None = None
    _lock = threading.Lock()

    def __new__(cls) -> Self:
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if not getattr(self, "_initialized", False):
            self._client: AsyncIOMotorClient | None = None
            self._db: AsyncIOMotorDatabase | None = None
            self._bound_loop: asyncio.AbstractEventLoop | None = None
            self._beanie_initialized = False
            self._db_name = os.getenv("MONGODB_DATABASE", DEFAULT_DATABASE_NAME)
            self._max_pool_size = int(os.getenv("MONGODB_MAX_POOL_SIZE", "50"))
            self._server_selection_timeout_ms = int(
                os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "10000"),
            )
            self._initialized = True

    def _initialize_client(self) -> None:
        mongo_uri = os.getenv("MONGODB_URI", "").strip() or DEFAULT_MONGO_URI
        client_kwargs: dict[str, Any] = {
            "tz_aware": True,
            "tzinfo": UTC,
            "maxPoolSize": self._max_pool_size,
            "serverSelectionTimeoutMS": self._server_selection_timeout_ms,
            "retryWrites": True,
            "retryReads": True,
            "appname": "StreetKeeper",
        }
        if mongo_uri.startswith("mongodb+srv://"):
            client_kwargs.update(tls=True, tlsCAFile=certifi.where())
        try:
            self._client = AsyncIOMotorClient(mongo_uri, **client_kwargs)
        except PyMongoError as exc:
            msg = f"Unable to create MongoDB client: {exc}"
            raise StorageError(msg) from exc
        self._db = self._client[self._db_name]
        try:
            self._bound_loop = asyncio.get_running_loop()
        except RuntimeError:
            self._bound_loop = None
        logger.info("MongoDB client initialized for database '%s'", self._db_name)

    @property
    def db(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            self._initialize_client()
        return self._db

    async def init_beanie(self, database: AsyncIOMotorDatabase | None = None) -> None:
        """Bind every coverage document model to ``database`` (or the default)."""
        from db.models import ALL_DOCUMENT_MODELS

        current_loop = asyncio.get_running_loop()
        if self._beanie_initialized and database is None and self._bound_loop == current_loop:
            logger.debug("Beanie already initialized, skipping")
            return
        try:
            await init_beanie(
                database=database if database is not None else self.db,
                document_models=ALL_DOCUMENT_MODELS,
            )
        except PyMongoError as exc:
            msg = f"Database initialization failed: {exc}"
            raise StorageError(msg) from exc
        self._beanie_initialized = True
        self._bound_loop = current_loop
        logger.info(
            "Beanie ODM initialized with %d document models",
            len(ALL_DOCUMENT_MODELS),
        )

    async def cleanup_connections(self) -> None:
        """Clean up MongoDB client connections."""
        if self._client:
            logger.info("Closing MongoDB client connections...")
            self._client.close()
        self._client = None
        self._db = None
        self._beanie_initialized = False


# Singleton instance
db_manager = DatabaseManager()


async def init_database(database: AsyncIOMotorDatabase | None = None) -> None:
    """Initialize Beanie (and the indexes it declares) at startup."""
    await db_manager.init_beanie(database)
