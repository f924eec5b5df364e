import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional
from bson import json_util
from bson.errors import InvalidBSON
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.command_cursor import CommandCursor
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from collection_readers.config.mongo_client import ReaderMongoClient
from collection_readers.config.settings import MongoReaderConfig
from collection_readers.errors import QueryError, ReaderConnectionError
from collection_readers.extract.base_reader import BaseCollectionReader
from collection_readers.transform.mapping import FieldMapping

logger = logging.getLogger(__name__)

# Keys of the projected documents produced by the pipeline
ID_KEY = "id"
TEXT_KEY = "text"
LANG_KEY = "lang"


def parse_query(raw: Any) -> Dict[str, Any]:
    """
    Parses a MongoDB filter given as extended JSON ('{"status": "published"}').
    Dict filters are passed through.

    Raises:
        QueryError: The string is not valid JSON or not a JSON object.
    """
    if isinstance(raw, Mapping):
        return dict(raw)

    text = (raw or "").strip() or "{}"
    try:
        query = json_util.loads(text)
    except (ValueError, TypeError, InvalidBSON) as e:
        raise QueryError(f"Malformed query {text!r}: {e}") from e

    if not isinstance(query, dict):
        raise QueryError(f"Query must be a JSON object, got {type(query).__name__}: {text!r}")
    return query


def _is_cursor_unsupported(error: OperationFailure) -> bool:
    """Legacy servers reject the 'cursor' option of the aggregate command."""
    message = (error.details or {}).get("errmsg") or str(error)
    return "cursor" in message.lower()


class MongoCollectionReader(BaseCollectionReader):
    """
    Streams documents of a MongoDB collection through an aggregation pipeline:
    $match (query) -> $limit (max_items) -> $project (id/text/lang) -> $sort (id asc).
    """

    def __init__(self, config: MongoReaderConfig, client: Optional[MongoClient] = None):
        # The per-document language field is only projected when no override is set
        lang_key = LANG_KEY if (config.language is None and config.language_field) else None
        super().__init__(
            FieldMapping(ID_KEY, TEXT_KEY, lang_key, config.language),
            max_items=config.max_items
        )
        self.config = config
        self._mongo = ReaderMongoClient(config.uri, client=client)
        self._collection: Optional[Collection] = None
        self._cursor: Optional[CommandCursor] = None
        self._query: Dict[str, Any] = {}
        self.used_fallback = False

    def build_pipeline(self) -> List[Dict[str, Any]]:
        """Builds the ordered aggregation pipeline for the configured selection."""
        pipeline: List[Dict[str, Any]] = [{"$match": self._query}]

        if self.config.max_items is not None:
            pipeline.append({"$limit": self.config.max_items})

        # Build the $project operation
        fields: Dict[str, Any] = {
            "_id": 0,
            ID_KEY: f"${self.config.id_field}",
            TEXT_KEY: f"${self.config.text_field}",
        }
        if self.mapping.language_key:
            fields[LANG_KEY] = f"${self.config.language_field}"
        pipeline.append({"$project": fields})

        # Deterministic order so a later resume sees the same sequence
        pipeline.append({"$sort": {ID_KEY: 1}})
        return pipeline

    def _connect(self) -> None:
        # Reject a malformed filter before spending a connection on it
        self._query = parse_query(self.config.query)
        self._mongo.connect()
        self._collection = self._mongo.get_collection(self.config.database, self.config.collection)

    def _count(self) -> int:
        return self._collection.count_documents(self._query)

    def _execute(self) -> Iterator[Mapping[str, Any]]:
        pipeline = self.build_pipeline()
        logger.info(f"🔍 Performing query {self._query} on {self._collection.full_name}")

        try:
            self._cursor = self._collection.aggregate(
                pipeline,
                batchSize=self.config.batch_size,
                allowDiskUse=True
            )
        except OperationFailure as e:
            if not _is_cursor_unsupported(e):
                raise QueryError(f"Aggregation rejected by server: {e}") from e
            return iter(self._aggregate_inline(pipeline, e))
        except ConnectionFailure as e:
            raise ReaderConnectionError(f"Lost MongoDB connection during aggregate: {e}") from e

        return self._stream(self._cursor)

    def _aggregate_inline(self, pipeline: List[Dict[str, Any]], cause: OperationFailure) -> List[Mapping[str, Any]]:
        """
        Capability-degradation path: the server cannot return an aggregation cursor,
        so the whole result is materialized in memory (16MB reply limit on such servers).
        """
        logger.warning(
            "⚠️ Your MongoDB version doesn't seem to support cursors for aggregation pipelines. "
            "The result set is therefore limited to 16MB. "
            f"Use a version >=2.6 to access larger amounts of data. ({cause})"
        )
        self.used_fallback = True
        try:
            response = self._collection.database.command(
                "aggregate", self._collection.name, pipeline=pipeline
            )
        except OperationFailure as e:
            raise QueryError(f"Aggregation rejected by server: {e}") from e

        if "result" in response:
            return list(response["result"])
        return list(response.get("cursor", {}).get("firstBatch", []))

    def _stream(self, cursor: CommandCursor) -> Iterator[Mapping[str, Any]]:
        try:
            for doc in cursor:
                yield doc
        except OperationFailure as e:
            raise QueryError(f"Server aborted the aggregation cursor: {e}") from e
        except PyMongoError as e:
            raise ReaderConnectionError(f"Lost MongoDB connection while iterating: {e}") from e

    def _release(self) -> None:
        try:
            if self._cursor is not None:
                self._cursor.close()
        finally:
            self._cursor = None
            self._mongo.close()
