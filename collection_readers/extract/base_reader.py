import logging
from abc import ABC, abstractmethod
from typing import Any, Iterator, Mapping, Optional

from collection_readers.errors import CursorExhaustedError, MappingError
from collection_readers.schemas.records import DocumentRecord, Progress
from collection_readers.transform.mapping import FieldMapping

logger = logging.getLogger(__name__)

_EMPTY = object()


class BaseCollectionReader(ABC):
    """
    Abstract Base Class for document-cursor adapters.
    Enforces the pull-based contract every reader exposes to the host pipeline:

        reader.open()
        while reader.has_next():
            record = reader.get_next()
        reader.close()

    Subclasses only supply the connection, the count and the ordered result stream.
    Instances are single-use and not thread-safe.
    """

    def __init__(self, mapping: FieldMapping, max_items: Optional[int] = None):
        self.mapping = mapping
        self.max_items = max_items

        # Cursor state
        self._completed = 0
        self._total: Optional[int] = None
        self._rows: Optional[Iterator[Mapping[str, Any]]] = None
        self._lookahead: Any = _EMPTY
        self._opened = False
        self._closed = False
        # Set once iteration failed; has_next()/get_next() re-raise it from then on
        self._failure: Optional[Exception] = None

    # --- Hooks -----------------------------------------------------------

    @abstractmethod
    def _connect(self) -> None:
        """Establishes the connection. Raises ReaderConnectionError."""

    @abstractmethod
    def _count(self) -> int:
        """Counts documents matching the selection. Any exception degrades to an unknown total."""

    @abstractmethod
    def _execute(self) -> Iterator[Mapping[str, Any]]:
        """
        Starts the filter -> limit -> projection -> sort-by-id retrieval.

        Returns:
            Iterator yielding raw documents ordered by id. Raises QueryError.
        """

    @abstractmethod
    def _release(self) -> None:
        """Releases cursor and connection. Called at most once."""

    # --- Contract --------------------------------------------------------

    def open(self) -> "BaseCollectionReader":
        """
        Connects, counts (best-effort) and starts the retrieval.
        A failure after connecting releases the connection before propagating.
        """
        if self._opened:
            raise RuntimeError(f"{type(self).__name__} was already opened; readers are single-use")
        self._opened = True

        logger.info(f"🚀 Opening {type(self).__name__}...")
        self._connect()
        try:
            self._total = self._estimate_total()
            self._rows = self._execute()
        except Exception:
            self.close()
            raise

        logger.info(f"✅ {type(self).__name__} ready. Expected documents: {self._describe_total()}")
        return self

    def has_next(self) -> bool:
        """
        Whether another document is available. Does not consume it.
        Re-raises the error that aborted iteration, so a failed run never looks finished.
        """
        if self._failure is not None:
            raise self._failure
        if self._closed or self._rows is None:
            return False
        if self.max_items is not None and self._completed >= self.max_items:
            return False
        if self._lookahead is _EMPTY:
            try:
                self._lookahead = next(self._rows, _EMPTY)
            except Exception as e:
                self._failure = e
                raise
        return self._lookahead is not _EMPTY

    def get_next(self) -> DocumentRecord:
        """
        Advances by one document and maps it into a DocumentRecord.
        Raises CursorExhaustedError when has_next() is False, MappingError on an unaddressable document.
        """
        if not self.has_next():
            raise CursorExhaustedError(
                f"{type(self).__name__} has no more documents (completed={self._completed})"
            )

        doc, self._lookahead = self._lookahead, _EMPTY
        try:
            record = self.mapping.to_record(doc)
        except MappingError as e:
            # The run is aborted; later calls keep failing instead of skipping the document
            self._failure = e
            raise
        self._completed += 1
        logger.debug(record.id)
        return record

    def progress(self) -> Progress:
        """(completed, total); total is None when the count was unavailable."""
        total = self._total
        if total is not None and self._completed > total:
            # Source estimate was stale; never report completed > total
            total = self._completed
        return Progress(completed=self._completed, total=total)

    def close(self) -> None:
        """Releases the connection. Idempotent and safe mid-iteration."""
        if self._closed:
            return
        self._closed = True
        self._rows = None
        self._lookahead = _EMPTY
        if self._opened:
            self._release()
            logger.info(f"🔒 {type(self).__name__} closed after {self._completed} documents.")

    # --- Python protocol sugar -------------------------------------------

    def __enter__(self) -> "BaseCollectionReader":
        if not self._opened:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[DocumentRecord]:
        while self.has_next():
            yield self.get_next()

    # --- Internals -------------------------------------------------------

    def _estimate_total(self) -> Optional[int]:
        try:
            total = self._count()
        except Exception as e:
            logger.warning(f"⚠️ Could not count documents, progress total unknown: {e}")
            return None
        if self.max_items is not None:
            total = min(total, self.max_items)
        return total

    def _describe_total(self) -> str:
        return "unknown" if self._total is None else str(self._total)
