"""Pydantic schemas for the HUD digest and the full intelligence snapshot.

The HUD only carries summaries (names, counts, truncated quotes), never full
nodes or mention lists, so its serialized size stays bounded.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from manuscript_intel.schemas.delta import ChangeType, ManuscriptDelta
from manuscript_intel.schemas.entities import EntityGraph, EntityType, RelationshipType
from manuscript_intel.schemas.heatmap import AttentionHeatmap, RiskFlag
from manuscript_intel.schemas.structure import ParagraphType, SceneType, StructuralFingerprint
from manuscript_intel.schemas.style import StyleFingerprint
from manuscript_intel.schemas.timeline import PromiseType, TemporalRelation, Timeline


class ProcessingTier(StrEnum):
    INSTANT = "instant"
    DEBOUNCED = "debounced"
    BACKGROUND = "background"
    STALE = "stale"


class TensionLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PacingLabel(StrEnum):
    SLOW = "slow"
    MODERATE = "moderate"
    FAST = "fast"


# --- Summaries ---


class SceneSummary(BaseModel):
    id: str
    type: SceneType
    start_offset: int
    end_offset: int
    pov: str | None = None
    location: str | None = None
    time_marker: str | None = None
    tension: float = 0.0


class ParagraphSummary(BaseModel):
    index: int
    offset: int
    type: ParagraphType
    speaker: str | None = None
    tension: float = 0.0


class NarrativePosition(BaseModel):
    scene_index: int = 0
    total_scenes: int = 0
    percent_complete: float = Field(default=0.0, ge=0.0, le=100.0)


class SituationalAwareness(BaseModel):
    current_scene: SceneSummary | None = None
    current_paragraph: ParagraphSummary | None = None
    narrative_position: NarrativePosition = Field(default_factory=NarrativePosition)
    tension_level: TensionLevel = TensionLevel.LOW
    pacing: PacingLabel = PacingLabel.MODERATE


class EntitySummary(BaseModel):
    id: str
    name: str
    type: EntityType
    mention_count: int
    aliases: list[str] = Field(default_factory=list)


class RelationshipSummary(BaseModel):
    source: str
    target: str
    type: RelationshipType
    co_occurrences: int


class PromiseSummary(BaseModel):
    id: str
    type: PromiseType
    description: str
    offset: int


class EventSummary(BaseModel):
    id: str
    description: str
    offset: int
    relative_position: TemporalRelation


class RelevantContext(BaseModel):
    active_entities: list[EntitySummary] = Field(default_factory=list)
    active_relationships: list[RelationshipSummary] = Field(default_factory=list)
    open_promises: list[PromiseSummary] = Field(default_factory=list)
    recent_events: list[EventSummary] = Field(default_factory=list)


class PrioritizedIssue(BaseModel):
    type: RiskFlag
    description: str
    offset: int
    severity: float = Field(..., ge=0.0, le=1.0)


class ChangeSummary(BaseModel):
    start: int
    end: int
    change_type: ChangeType
    old_text: str | None = None
    new_text: str | None = None


class HUDStats(BaseModel):
    word_count: int = 0
    reading_time: float = 0.0  # minutes
    dialogue_percent: float = 0.0
    avg_sentence_length: float = 0.0
    entity_count: int = 0
    open_promise_count: int = 0


# --- Aggregates ---


class ManuscriptHUD(BaseModel):
    """Size-bounded digest handed to the prompt-building layer."""

    model_config = ConfigDict(frozen=True)

    situational: SituationalAwareness = Field(default_factory=SituationalAwareness)
    context: RelevantContext = Field(default_factory=RelevantContext)
    style_alerts: list[str] = Field(default_factory=list)
    prioritized_issues: list[PrioritizedIssue] = Field(default_factory=list)
    recent_changes: list[ChangeSummary] = Field(default_factory=list)
    stats: HUDStats = Field(default_factory=HUDStats)
    last_full_process: float = 0.0
    processing_tier: ProcessingTier = ProcessingTier.STALE


class ManuscriptIntelligence(BaseModel):
    """Every layer computed for one chapter snapshot."""

    model_config = ConfigDict(frozen=True)

    chapter_id: str
    text_hash: str = ""
    structural: StructuralFingerprint = Field(default_factory=StructuralFingerprint)
    entities: EntityGraph = Field(default_factory=EntityGraph)
    timeline: Timeline = Field(default_factory=Timeline)
    style: StyleFingerprint = Field(default_factory=StyleFingerprint)
    heatmap: AttentionHeatmap = Field(default_factory=AttentionHeatmap)
    delta: ManuscriptDelta = Field(default_factory=ManuscriptDelta)
    hud: ManuscriptHUD = Field(default_factory=ManuscriptHUD)
