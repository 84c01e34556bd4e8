"""MongoDB connection handle for the product store."""

import logging
from typing import Callable, Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database as MongoDatabase
from pymongo.errors import PyMongoError

from config import DatabaseConfig

logger = logging.getLogger(__name__)


class Database:
    """Owns the MongoClient for the lifetime of the service.

    Opened once at startup and closed on shutdown. The client is thread-safe
    and pools connections, so a single instance serves every request.
    """

    def __init__(self, config: DatabaseConfig, client_factory: Callable[..., MongoClient] = MongoClient):
        self._config = config
        self._client_factory = client_factory
        self._client: Optional[MongoClient] = None
        self._db: Optional[MongoDatabase] = None

    def connect(self) -> None:
        """Create the client and verify the server is reachable.

        Raises:
            PyMongoError: If the server cannot be reached within the
                server selection timeout.
        """
        self._client = self._client_factory(
            self._config.uri,
            tz_aware=True,
            serverSelectionTimeoutMS=self._config.server_selection_timeout_ms,
            timeoutMS=self._config.timeout_ms,
        )
        try:
            self._client.admin.command("ping")
        except PyMongoError:
            self.close()
            raise
        self._db = self._client[self._config.name]
        logger.info(f"Connected to MongoDB database '{self._config.name}'")

    def close(self) -> None:
        """Close the MongoDB connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed")

    @property
    def products(self) -> Collection:
        if self._db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._db[self._config.collection]

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
