"""Pydantic schemas for manuscript-wide views built from several chapters."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from manuscript_intel.schemas.entities import EntityGraph
from manuscript_intel.schemas.hud import ManuscriptIntelligence
from manuscript_intel.schemas.timeline import PlotPromise


class ChapterSnapshot(BaseModel):
    """One chapter as handed to the cross-chapter operations, in reading order."""

    chapter_id: str
    title: str = ""
    text: str = ""
    intelligence: ManuscriptIntelligence | None = None


class ManuscriptView(BaseModel):
    graph: EntityGraph = Field(default_factory=EntityGraph)
    promises: list[PlotPromise] = Field(default_factory=list)
    chapter_ids: list[str] = Field(default_factory=list)

    def open_promises(self) -> list[PlotPromise]:
        return [p for p in self.promises if not p.resolved]


class EndingMood(StrEnum):
    CLIFFHANGER = "cliffhanger"
    RESOLUTION = "resolution"
    TRANSITION = "transition"
    NEUTRAL = "neutral"


class ContinuityType(StrEnum):
    CHARACTER_PRESENCE = "character_presence"
    TIMELINE_GAP = "timeline_gap"
    SETTING_CHANGE = "setting_change"
    PLOT_THREAD = "plot_thread"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ArcPosition(StrEnum):
    BEGINNING = "beginning"
    RISING_ACTION = "rising_action"
    CLIMAX = "climax"
    FALLING_ACTION = "falling_action"
    RESOLUTION = "resolution"


class ChapterBoundary(BaseModel):
    chapter_id: str
    title: str = ""
    first_paragraph: str = ""
    last_paragraph: str = ""
    ending_mood: EndingMood = EndingMood.NEUTRAL
    active_characters: list[str] = Field(default_factory=list)
    open_plot_threads: list[str] = Field(default_factory=list)


class ContinuityIssue(BaseModel):
    type: ContinuityType
    description: str
    severity: Severity
    suggestion: str | None = None


class NarrativeArc(BaseModel):
    position: ArcPosition = ArcPosition.BEGINNING
    percent_complete: int = Field(default=0, ge=0, le=100)


class CrossChapterContext(BaseModel):
    previous_chapter: ChapterBoundary | None = None
    next_chapter: ChapterBoundary | None = None
    continuity_issues: list[ContinuityIssue] = Field(default_factory=list)
    narrative_arc: NarrativeArc = Field(default_factory=NarrativeArc)
