import logging
from typing import Optional
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from collection_readers.errors import ReaderConnectionError

# Configure logging
logger = logging.getLogger(__name__)

# MongoDB error code for AuthenticationFailed
AUTH_FAILED_CODE = 18


def mask_uri(uri: str) -> str:
    """Drops the credentials part of a connection URI before logging it."""
    if "@" in uri:
        scheme, _, rest = uri.partition("://")
        return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
    return uri


class ReaderMongoClient:
    """
    Wrapper for the MongoDB connection owned by a single reader.
    The client is created on connect() and never shared between readers.
    """

    def __init__(self, uri: str, client: Optional[MongoClient] = None):
        self._uri = uri
        # A pre-built client can be injected (tests, host-managed pools)
        self._client: Optional[MongoClient] = client

    def connect(self) -> None:
        """
        Establishes the MongoDB connection and verifies it with a ping.
        Raises ReaderConnectionError for unreachable hosts, bad URIs and rejected credentials.
        """
        logger.info(f"🔌 Connecting to {mask_uri(self._uri)}")

        try:
            if self._client is None:
                # Fail fast if the server is unreachable
                self._client = MongoClient(
                    self._uri,
                    serverSelectionTimeoutMS=5000,
                    connectTimeoutMS=5000
                )

            # Lightweight verification command
            self._client.admin.command('ping')
            logger.info("✅ Connected to MongoDB successfully.")

        except (ConnectionFailure, ServerSelectionTimeoutError, ConfigurationError) as e:
            logger.critical(f"❌ Failed to connect to MongoDB: {e}")
            self.close()
            raise ReaderConnectionError(f"MongoDB unreachable at {mask_uri(self._uri)}: {e}") from e
        except OperationFailure as e:
            self.close()
            if e.code == AUTH_FAILED_CODE:
                logger.critical(f"❌ MongoDB rejected the credentials: {e}")
                raise ReaderConnectionError(f"Authentication failed for {mask_uri(self._uri)}") from e
            logger.critical(f"❌ MongoDB refused the connection check: {e}")
            raise ReaderConnectionError(f"Connection check failed for {mask_uri(self._uri)}: {e}") from e

    def get_collection(self, db_name: str, collection_name: str) -> Collection:
        """Returns the handle of the collection the reader iterates."""
        if not self._client:
            self.connect()

        collection = self._client.get_database(db_name).get_collection(collection_name)
        logger.info(f"📂 Using collection {db_name}.{collection_name}")
        return collection

    def close(self):
        """Closes the connection. Safe to call repeatedly."""
        if self._client:
            client, self._client = self._client, None
            client.close()
            logger.info("MongoDB connection closed.")
