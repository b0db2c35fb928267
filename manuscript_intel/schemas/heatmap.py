"""Pydantic schemas for the attention heatmap."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class RiskFlag(StrEnum):
    UNRESOLVED_PROMISE = "unresolved_promise"
    CONTRADICTION_DETECTED = "contradiction_detected"
    PASSIVE_VOICE_HEAVY = "passive_voice_heavy"
    PACING_SLOW = "pacing_slow"
    PACING_RUSHED = "pacing_rushed"
    DIALOGUE_HEAVY = "dialogue_heavy"
    EXPOSITION_DUMP = "exposition_dump"
    FILTER_WORDS = "filter_words"
    ADVERB_OVERUSE = "adverb_overuse"
    LONG_SENTENCES = "long_sentences"
    SHORT_SENTENCES = "short_sentences"
    LOW_TENSION = "low_tension"
    CHARACTER_ABSENT = "character_absent"
    SETTING_UNCLEAR = "setting_unclear"


class RiskScores(BaseModel):
    plot: float = Field(default=0.0, ge=0.0, le=1.0)
    pacing: float = Field(default=0.0, ge=0.0, le=1.0)
    character: float = Field(default=0.0, ge=0.0, le=1.0)
    setting: float = Field(default=0.0, ge=0.0, le=1.0)
    style: float = Field(default=0.0, ge=0.0, le=1.0)


class HeatmapSection(BaseModel):
    section_id: str
    offset: int = Field(..., ge=0)
    length: int = Field(..., ge=0)
    scores: RiskScores = Field(default_factory=RiskScores)
    overall_risk: float = Field(default=0.0, ge=0.0, le=1.0)
    flags: list[RiskFlag] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class Hotspot(BaseModel):
    section_id: str
    offset: int
    reason: str
    severity: float = Field(..., ge=0.0, le=1.0)


class Contradiction(BaseModel):
    """An observed attribute value that disagrees with project lore."""

    entity_id: str
    entity_name: str
    attribute: str
    observed: str
    expected: str
    offset: int = Field(..., ge=0)


class AttentionHeatmap(BaseModel):
    sections: list[HeatmapSection] = Field(default_factory=list)
    hotspots: list[Hotspot] = Field(default_factory=list)
    contradictions: list[Contradiction] = Field(default_factory=list)
    processed_at: float = 0.0
