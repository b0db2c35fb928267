"""Pydantic schemas for the timeline and causality layer."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class TemporalRelation(StrEnum):
    """Position of an event relative to the one before it."""

    BEFORE = "before"
    AFTER = "after"
    CONCURRENT = "concurrent"
    UNKNOWN = "unknown"


class PromiseType(StrEnum):
    FORESHADOWING = "foreshadowing"
    SETUP = "setup"
    QUESTION = "question"
    CONFLICT = "conflict"
    GOAL = "goal"


class TimelineEvent(BaseModel):
    id: str
    description: str
    offset: int = Field(..., ge=0)
    chapter_id: str = ""
    temporal_marker: str | None = None
    relative_position: TemporalRelation = TemporalRelation.UNKNOWN
    depends_on: list[str] = Field(default_factory=list)


class CausalLink(BaseModel):
    event_id: str
    quote: str
    offset: int = Field(..., ge=0)


class CausalChain(BaseModel):
    """A cause/effect pair joined by a linguistic marker."""

    id: str
    cause: CausalLink
    effect: CausalLink
    confidence: float = Field(..., ge=0.0, le=1.0)
    marker: str


class PlotPromise(BaseModel):
    """A narrative hook waiting for its payoff.

    ``resolved`` only moves from False to True; the one way back is an
    explicit retraction (``services.timeline.retract_resolution``).
    """

    id: str
    type: PromiseType
    description: str
    quote: str
    offset: int = Field(..., ge=0)
    chapter_id: str = ""
    keywords: list[str] = Field(default_factory=list)
    resolved: bool = False
    resolution_offset: int | None = None
    resolution_chapter_id: str | None = None


class Timeline(BaseModel):
    events: list[TimelineEvent] = Field(default_factory=list)
    causal_chains: list[CausalChain] = Field(default_factory=list)
    promises: list[PlotPromise] = Field(default_factory=list)
    processed_at: float = 0.0

    def open_promises(self) -> list[PlotPromise]:
        return [p for p in self.promises if not p.resolved]
