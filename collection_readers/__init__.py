from collection_readers.errors import (
    CursorExhaustedError,
    DAOError,
    MappingError,
    QueryError,
    ReaderConnectionError,
    ReaderError,
)
from collection_readers.schemas.records import DocumentRecord, Progress
from collection_readers.config.settings import MongoReaderConfig, SqlReaderConfig
from collection_readers.extract.base_reader import BaseCollectionReader
from collection_readers.extract.mongo_reader import MongoCollectionReader
from collection_readers.extract.sql_reader import SqlCollectionReader

__all__ = [
    "BaseCollectionReader",
    "CursorExhaustedError",
    "DAOError",
    "DocumentRecord",
    "MappingError",
    "MongoCollectionReader",
    "MongoReaderConfig",
    "Progress",
    "QueryError",
    "ReaderConnectionError",
    "ReaderError",
    "SqlCollectionReader",
    "SqlReaderConfig",
]
