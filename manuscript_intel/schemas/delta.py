"""Pydantic schemas for change tracking between two snapshots."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class ChangeType(StrEnum):
    INSERT = "insert"
    DELETE = "delete"
    MODIFY = "modify"


class EditEvent(BaseModel):
    """One element of the editor's edit stream, in old-text coordinates."""

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    change_type: ChangeType = ChangeType.MODIFY


class TextChange(BaseModel):
    """A changed range of the previous snapshot.

    ``start``/``end`` are old-text offsets; an insert has ``start == end``.
    """

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    change_type: ChangeType
    old_text: str | None = None
    new_text: str | None = None
    timestamp: float = 0.0

    @property
    def length_delta(self) -> int:
        return len(self.new_text or "") - (self.end - self.start)


class ManuscriptDelta(BaseModel):
    changed_ranges: list[TextChange] = Field(default_factory=list)
    invalidated_sections: list[str] = Field(default_factory=list)
    valid_sections: list[str] = Field(default_factory=list)
    affected_entities: list[str] = Field(default_factory=list)
    shifted_entities: list[str] = Field(default_factory=list)
    affected_promises: list[str] = Field(default_factory=list)
    new_promises: list[str] = Field(default_factory=list)
    resolved_promises: list[str] = Field(default_factory=list)
    content_hash: str = ""
    previous_hash: str | None = None
    full_recompute: bool = False
    processed_at: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.changed_ranges and not self.full_recompute
