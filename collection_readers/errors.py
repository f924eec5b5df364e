class ReaderError(Exception):
    """Base class for every error raised by a collection reader."""


class ReaderConnectionError(ReaderError, ConnectionError):
    """
    The data store is unreachable, the URI/DSN is invalid or the credentials were rejected.
    Raised from open(). Subclasses the builtin ConnectionError so callers can catch either.
    """


class QueryError(ReaderError):
    """The filter, projection or SQL sentence was rejected as malformed."""


class MappingError(ReaderError):
    """A source document could not be mapped to a DocumentRecord (e.g. missing id field)."""


class CursorExhaustedError(ReaderError):
    """get_next() was called with no remaining documents. Check has_next() first."""


class DAOError(ReaderError):
    """Failure inside a DocumentDAO. Translated by the SQL reader into a specific error."""
