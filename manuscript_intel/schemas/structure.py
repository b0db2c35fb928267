"""Pydantic schemas for the structural layer of a chapter.

Scene -> Section -> ClassifiedParagraph, plus the dialogue map. All offsets
are character offsets into the analysed snapshot.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class SceneType(StrEnum):
    """Dominant mode of a scene."""

    ACTION = "action"
    DIALOGUE = "dialogue"
    DESCRIPTION = "description"
    INTROSPECTION = "introspection"
    TRANSITION = "transition"


class ParagraphType(StrEnum):
    """Type of a prose paragraph."""

    DIALOGUE = "dialogue"
    ACTION = "action"
    DESCRIPTION = "description"
    INTERNAL = "internal"
    EXPOSITION = "exposition"


class Scene(BaseModel):
    """A run of paragraphs between two scene breaks."""

    id: str
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., ge=0)
    type: SceneType = SceneType.DESCRIPTION
    pov: str | None = None
    location: str | None = None
    time_marker: str | None = None
    tension: float = Field(default=0.0, ge=0.0, le=1.0)
    dialogue_ratio: float = Field(default=0.0, ge=0.0, le=1.0)


class ClassifiedParagraph(BaseModel):
    """A paragraph with its type tag and local scores."""

    index: int = Field(..., ge=0)
    offset: int = Field(..., ge=0)
    length: int = Field(..., ge=0)
    type: ParagraphType
    speaker: str | None = None
    sentiment: float = Field(default=0.0, ge=-1.0, le=1.0)
    tension: float = Field(default=0.0, ge=0.0, le=1.0)
    sentence_count: int = 0
    avg_sentence_length: float = 0.0
    word_count: int = 0
    scene_id: str = ""

    @property
    def end(self) -> int:
        return self.offset + self.length


class DialogueLine(BaseModel):
    """A quoted line of speech and its attributed speaker."""

    id: str
    quote: str
    speaker: str | None = None
    speaker_offset: int | None = None
    offset: int = Field(..., ge=0)
    length: int = Field(..., ge=0)
    reply_to: str | None = None
    sentiment: float = Field(default=0.0, ge=-1.0, le=1.0)


class Section(BaseModel):
    """Unit of heatmap scoring and delta invalidation."""

    id: str
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., ge=0)
    scene_id: str
    paragraph_indexes: list[int] = Field(default_factory=list)


class StructuralStats(BaseModel):
    total_words: int = 0
    total_sentences: int = 0
    total_paragraphs: int = 0
    avg_sentence_length: float = 0.0
    sentence_length_variance: float = 0.0
    dialogue_ratio: float = 0.0
    scene_count: int = 0
    pov_shifts: int = 0
    avg_scene_length: float = 0.0


class StructuralFingerprint(BaseModel):
    """Full structural pass output for one chapter snapshot."""

    scenes: list[Scene] = Field(default_factory=list)
    paragraphs: list[ClassifiedParagraph] = Field(default_factory=list)
    dialogue_map: list[DialogueLine] = Field(default_factory=list)
    sections: list[Section] = Field(default_factory=list)
    stats: StructuralStats = Field(default_factory=StructuralStats)
    processed_at: float = 0.0

    def paragraph_at(self, offset: int) -> ClassifiedParagraph | None:
        """Paragraph containing ``offset``, or the nearest one before it."""
        found: ClassifiedParagraph | None = None
        for paragraph in self.paragraphs:
            if paragraph.offset > offset:
                break
            found = paragraph
        return found

    def scene_at(self, offset: int) -> Scene | None:
        found: Scene | None = None
        for scene in self.scenes:
            if scene.start_offset > offset:
                break
            found = scene
        return found
