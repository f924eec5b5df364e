import os
from typing import Any, Dict, Optional, Union
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

# Load environment variables
load_dotenv()

DEFAULT_MONGO_URI = "mongodb://localhost"
DEFAULT_BATCH_SIZE = 100


def _env_optional(name: str) -> Optional[str]:
    """Returns the env value, treating unset and blank the same way."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str) -> Optional[int]:
    value = _env_optional(name)
    return int(value) if value is not None else None


class ReaderConfigBase(BaseModel):
    """
    Options shared by every collection reader.
    Immutable once built; validated a single time at construction.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    language: Optional[str] = Field(
        None,
        description="Literal language tag forced onto every record (overrides the language field)"
    )
    max_items: Optional[int] = Field(None, gt=0, description="Maximum number of items to retrieve")


class MongoReaderConfig(ReaderConfigBase):
    """
    Settings for MongoCollectionReader.
    Field names may be given as aggregation references ('$_id'); the '$' is stripped.
    """
    uri: str = Field(DEFAULT_MONGO_URI, min_length=1, description="URI of MongoDB service")
    database: str = Field(..., min_length=1, description="Name of Mongo DB")
    collection: str = Field(..., min_length=1, description="Name of Mongo collection")
    id_field: str = Field("_id", min_length=1, description="Field that contains the document ID")
    text_field: str = Field("text", min_length=1, description="Field that contains the document text")
    language_field: Optional[str] = Field(None, description="Per-document language field")
    # Raw extended-JSON string or an already-built filter document
    query: Union[str, Dict[str, Any]] = Field("{}", description="The query to select documents")
    batch_size: int = Field(DEFAULT_BATCH_SIZE, gt=0)

    @field_validator("id_field", "text_field", "language_field")
    @classmethod
    def strip_field_reference(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        name = value.strip().lstrip("$")
        if not name:
            raise ValueError("field name must not be empty")
        return name

    @classmethod
    def from_env(cls) -> "MongoReaderConfig":
        """Builds the config from READER_MONGO_* / READER_* environment variables."""
        return cls(
            uri=os.getenv("READER_MONGO_URI", DEFAULT_MONGO_URI),
            database=os.getenv("READER_MONGO_DB", ""),
            collection=os.getenv("READER_MONGO_COLLECTION", ""),
            id_field=os.getenv("READER_ID_FIELD", "_id"),
            text_field=os.getenv("READER_TEXT_FIELD", "text"),
            language_field=_env_optional("READER_LANGUAGE_FIELD"),
            language=_env_optional("READER_LANGUAGE"),
            query=os.getenv("READER_QUERY", "{}"),
            max_items=_env_int("READER_MAX_ITEMS"),
            batch_size=_env_int("READER_BATCH_SIZE") or DEFAULT_BATCH_SIZE,
        )


class SqlReaderConfig(ReaderConfigBase):
    """
    Settings for SqlCollectionReader.
    Either a table (with an optional WHERE clause) or a full SQL sentence must be given.
    """
    dsn: str = Field(..., min_length=1, description="SQLAlchemy database URL")
    table: Optional[str] = None
    where: Optional[str] = Field(None, description="WHERE clause in the database's SQL dialect")
    query: Optional[str] = Field(None, description="Full SQL sentence selecting the documents")
    id_column: str = Field("id", min_length=1)
    text_column: str = Field("text", min_length=1)
    language_column: Optional[str] = None
    resume_after_id: Optional[str] = Field(
        None,
        description="Only read rows whose id sorts strictly after this value"
    )

    @model_validator(mode="after")
    def check_source(self) -> "SqlReaderConfig":
        if bool(self.table) == bool(self.query):
            raise ValueError("exactly one of 'table' or 'query' must be set")
        if self.where and not self.table:
            raise ValueError("'where' only applies together with 'table'")
        return self

    def sql_sentence(self) -> str:
        """The selection sentence the DAO wraps with limit/sort clauses."""
        if self.query:
            return self.query.strip().rstrip(";")
        sentence = f"SELECT * FROM {self.table}"
        if self.where:
            sentence += f" WHERE {self.where}"
        return sentence

    @classmethod
    def from_env(cls) -> "SqlReaderConfig":
        """Builds the config from READER_SQL_* / READER_* environment variables."""
        return cls(
            dsn=os.getenv("READER_SQL_DSN", ""),
            table=_env_optional("READER_SQL_TABLE"),
            where=_env_optional("READER_SQL_WHERE"),
            query=_env_optional("READER_SQL_QUERY"),
            id_column=os.getenv("READER_ID_FIELD", "id"),
            text_column=os.getenv("READER_TEXT_FIELD", "text"),
            language_column=_env_optional("READER_LANGUAGE_FIELD"),
            language=_env_optional("READER_LANGUAGE"),
            max_items=_env_int("READER_MAX_ITEMS"),
            resume_after_id=_env_optional("READER_RESUME_AFTER_ID"),
        )
