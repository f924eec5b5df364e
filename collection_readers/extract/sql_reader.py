import logging
from typing import Any, Iterator, Mapping, Optional

from collection_readers.config.settings import SqlReaderConfig
from collection_readers.errors import DAOError, QueryError, ReaderConnectionError
from collection_readers.extract.base_reader import BaseCollectionReader
from collection_readers.extract.sql_dao import DocumentDAO, SqlAlchemyDocumentDAO
from collection_readers.transform.mapping import FieldMapping

logger = logging.getLogger(__name__)


class SqlCollectionReader(BaseCollectionReader):
    """
    Reads rows of a relational table (or an arbitrary SELECT sentence) through a DocumentDAO.
    Rows are mapped by column name: id_column, text_column and optionally language_column.
    """

    def __init__(self, config: SqlReaderConfig, dao: Optional[DocumentDAO] = None):
        lang_key = config.language_column if config.language is None else None
        super().__init__(
            FieldMapping(config.id_column, config.text_column, lang_key, config.language),
            max_items=config.max_items
        )
        self.config = config
        self._dao: DocumentDAO = dao or SqlAlchemyDocumentDAO(config.dsn, config.id_column)

    def _connect(self) -> None:
        try:
            self._dao.connect()
        except DAOError as e:
            logger.critical(f"❌ Failed to connect to the database: {e}")
            raise ReaderConnectionError(str(e)) from e
        self._dao.set_sql_sentence(self.config.sql_sentence())

    def _count(self) -> int:
        count = self._dao.get_number_of_documents()
        if self.config.resume_after_id is not None:
            # Rows before the resume point are not excluded from the count
            logger.info(f"Resuming after id {self.config.resume_after_id}; total is an upper bound.")
        return count

    def _execute(self) -> Iterator[Mapping[str, Any]]:
        logger.info(f"🔍 Performing query: {self.config.sql_sentence()}")
        try:
            if self.config.resume_after_id is not None:
                rows = self._dao.get_documents_from(self.config.resume_after_id, limit=self.config.max_items)
            else:
                rows = self._dao.get_documents(limit=self.config.max_items)
        except DAOError as e:
            raise QueryError(str(e)) from e
        return self._translate(rows)

    @staticmethod
    def _translate(rows: Iterator[Mapping[str, Any]]) -> Iterator[Mapping[str, Any]]:
        try:
            for row in rows:
                yield row
        except DAOError as e:
            raise QueryError(str(e)) from e

    def _release(self) -> None:
        try:
            self._dao.close_connection()
        except DAOError as e:
            logger.error(f"❌ Error while closing the SQL connection: {e}")
            raise
