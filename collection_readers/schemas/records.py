from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Literal

class ReaderBaseModel(BaseModel):
    """Base configuration for immutable reader output models."""
    model_config = ConfigDict(frozen=True)  # Records are handed off, never mutated

class DocumentRecord(ReaderBaseModel):
    """
    Normalized output unit handed to downstream processing.
    Produced fresh on every get_next() call.
    """
    id: str = Field(..., description="Document identifier, stringified from the source id field")
    text: str = Field("", description="Document text, empty when the source lacks the field")
    language: Optional[str] = Field(None, description="Language override or per-document language")


class Progress(ReaderBaseModel):
    """
    Snapshot of reader progress for monitoring.
    total is None when the source count is unknown (indeterminate).
    """
    completed: int = Field(..., ge=0)
    total: Optional[int] = Field(None, ge=0)
    unit: Literal["entities"] = "entities"

    @property
    def is_indeterminate(self) -> bool:
        return self.total is None

    def as_tuple(self):
        return (self.completed, self.total)
