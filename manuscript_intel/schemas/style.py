"""Pydantic schemas for the style fingerprint."""

from __future__ import annotations

from pydantic import BaseModel, Field


class WordCount(BaseModel):
    word: str
    count: int


class VocabularyMetrics(BaseModel):
    unique_words: int = 0
    total_words: int = 0
    avg_word_length: float = 0.0
    lexical_diversity: float = 0.0  # type-token ratio
    top_words: list[WordCount] = Field(default_factory=list)
    overused_words: list[str] = Field(default_factory=list)
    rare_words: list[str] = Field(default_factory=list)


class SyntaxMetrics(BaseModel):
    avg_sentence_length: float = 0.0
    sentence_length_variance: float = 0.0
    min_sentence_length: int = 0
    max_sentence_length: int = 0
    paragraph_length_avg: float = 0.0
    dialogue_to_narrative_ratio: float = 0.0
    question_ratio: float = 0.0
    exclamation_ratio: float = 0.0


class RhythmMetrics(BaseModel):
    syllable_pattern: list[float] = Field(default_factory=list)  # rolling mean per sentence
    punctuation_density: float = 0.0  # per 100 words
    avg_clause_count: float = 0.0


class WordInstance(BaseModel):
    word: str
    offset: int


class QuoteInstance(BaseModel):
    quote: str
    offset: int


class RepeatedPhrase(BaseModel):
    phrase: str
    count: int
    offsets: list[int] = Field(default_factory=list)


class StyleFlags(BaseModel):
    passive_voice_ratio: float = 0.0
    passive_voice_instances: list[QuoteInstance] = Field(default_factory=list)
    adverb_density: float = 0.0
    adverb_instances: list[WordInstance] = Field(default_factory=list)
    filter_word_density: float = 0.0
    filter_word_instances: list[WordInstance] = Field(default_factory=list)
    cliche_count: int = 0
    cliche_instances: list[QuoteInstance] = Field(default_factory=list)
    repeated_phrases: list[RepeatedPhrase] = Field(default_factory=list)


class StyleFingerprint(BaseModel):
    vocabulary: VocabularyMetrics = Field(default_factory=VocabularyMetrics)
    syntax: SyntaxMetrics = Field(default_factory=SyntaxMetrics)
    rhythm: RhythmMetrics = Field(default_factory=RhythmMetrics)
    flags: StyleFlags = Field(default_factory=StyleFlags)
    processed_at: float = 0.0
