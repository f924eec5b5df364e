import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from collection_readers.errors import DAOError

logger = logging.getLogger(__name__)


class DocumentDAO(ABC):
    """
    Data access contract used by the SQL reader.
    The DAO owns its connection; the reader only asks for counts and ordered rows.
    """

    def connect(self) -> None:
        """Acquires the connection. DAOs connected at construction keep the default."""

    @abstractmethod
    def set_sql_sentence(self, sql_sentence: str) -> None:
        """Sets the SELECT sentence every later call is evaluated against."""

    @abstractmethod
    def get_number_of_documents(self) -> int:
        pass

    @abstractmethod
    def get_documents(self, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        """Rows of the sentence, limited then ordered by id ascending."""

    @abstractmethod
    def get_documents_from(self, last_id: Any, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        """Same as get_documents() but only rows whose id is strictly greater than last_id."""

    @abstractmethod
    def close_connection(self) -> None:
        pass


class SqlAlchemyDocumentDAO(DocumentDAO):
    """
    DocumentDAO on top of SQLAlchemy Core.
    The configured sentence is wrapped as a subquery so limit and sort can be applied
    regardless of what it selects.
    """

    def __init__(self, dsn: str, id_column: str):
        self._dsn = dsn
        self._id_column = id_column
        self._sentence: Optional[str] = None
        self._engine: Optional[Engine] = None
        self._connection: Optional[Connection] = None

    def connect(self) -> None:
        """Creates the engine and checks out the single connection this DAO uses."""
        try:
            self._engine = create_engine(self._dsn, pool_pre_ping=True)
            self._connection = self._engine.connect()
        except SQLAlchemyError as e:
            self.close_connection()
            raise DAOError(f"Could not connect: {e}") from e
        logger.info(f"✅ Connected to {self._engine.url.render_as_string(hide_password=True)}")

    def set_sql_sentence(self, sql_sentence: str) -> None:
        self._sentence = sql_sentence

    def _require_sentence(self) -> str:
        if not self._sentence:
            raise DAOError("No SQL sentence set; call set_sql_sentence() first")
        if self._connection is None:
            raise DAOError("DAO is not connected")
        return self._sentence

    def _quoted_id(self) -> str:
        return self._engine.dialect.identifier_preparer.quote(self._id_column)

    def get_number_of_documents(self) -> int:
        sentence = self._require_sentence()
        try:
            result = self._connection.execute(text(f"SELECT COUNT(*) FROM ({sentence}) AS docs"))
            return int(result.scalar_one())
        except SQLAlchemyError as e:
            # Some backends abort the whole transaction on a failed statement
            self._connection.rollback()
            raise DAOError(f"Count failed: {e}") from e

    def get_documents(self, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        return self._select(limit=limit)

    def get_documents_from(self, last_id: Any, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        return self._select(limit=limit, last_id=last_id)

    def _select(self, limit: Optional[int] = None, last_id: Any = None) -> Iterator[Dict[str, Any]]:
        sentence = self._require_sentence()
        id_col = self._quoted_id()
        params: Dict[str, Any] = {}

        # filter -> limit -> sort
        inner = f"SELECT * FROM ({sentence}) AS docs"
        if last_id is not None:
            inner += f" WHERE docs.{id_col} > :last_id"
            params["last_id"] = last_id
        if limit is not None:
            inner += " LIMIT :limit"
            params["limit"] = limit
        statement = f"SELECT * FROM ({inner}) AS page ORDER BY page.{id_col} ASC"

        logger.debug(f"Executing: {statement} {params}")
        try:
            result = self._connection.execution_options(stream_results=True).execute(
                text(statement), params
            )
        except SQLAlchemyError as e:
            raise DAOError(f"Query failed: {e}") from e
        return self._rows(result)

    @staticmethod
    def _rows(result) -> Iterator[Dict[str, Any]]:
        try:
            for row in result.mappings():
                yield dict(row)
        except SQLAlchemyError as e:
            raise DAOError(f"Fetching rows failed: {e}") from e

    def close_connection(self) -> None:
        """Returns the connection and disposes the engine. Safe to call repeatedly."""
        if self._connection is not None:
            connection, self._connection = self._connection, None
            connection.close()
        if self._engine is not None:
            engine, self._engine = self._engine, None
            engine.dispose()
            logger.info("SQL connection closed.")
