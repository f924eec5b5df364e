import logging
from collections.abc import Mapping
from typing import Any, NamedTuple, Optional

from collection_readers.errors import MappingError
from collection_readers.schemas.records import DocumentRecord

# Configure logger for data quality alerts
logger = logging.getLogger(__name__)


def get_field(doc: Mapping[str, Any], path: str) -> Optional[Any]:
    """
    Typed accessor for a (possibly nested) document field.

    Args:
        doc: Raw source document or row mapping.
        path: Field name; dots descend into sub-documents ('meta.lang').

    Returns:
        The value, or None when any step of the path is absent or null.
    """
    if path in doc:
        return doc[path]

    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class FieldMapping(NamedTuple):
    """Which source keys feed the record's id, text and language."""
    id_key: str
    text_key: str
    language_key: Optional[str] = None
    language_override: Optional[str] = None

    def to_record(self, doc: Mapping[str, Any]) -> DocumentRecord:
        """
        Maps one raw source document into a DocumentRecord.

        Policy:
        - id missing/null -> MappingError (every record must be addressable)
        - text missing/null -> empty text
        - language override wins over any per-document value
        """
        raw_id = get_field(doc, self.id_key)
        if raw_id is None:
            raise MappingError(f"Document has no '{self.id_key}' field: {dict(doc)!r:.200}")
        doc_id = _as_text(raw_id)

        raw_text = get_field(doc, self.text_key)
        if raw_text is None:
            logger.debug(f"Document {doc_id} has no '{self.text_key}' field, using empty text")
            text = ""
        else:
            text = _as_text(raw_text)

        if self.language_override is not None:
            language = self.language_override
        elif self.language_key is not None:
            raw_lang = get_field(doc, self.language_key)
            language = _as_text(raw_lang) if raw_lang is not None else None
        else:
            language = None

        return DocumentRecord(id=doc_id, text=text, language=language)
