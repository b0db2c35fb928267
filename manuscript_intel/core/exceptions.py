"""Custom exception hierarchy for the manuscript intelligence engine.

These exceptions are raised inside the engine and caught at its boundary:
public pipeline operations degrade to empty artifacts instead of letting them
escape (see core.resilience).

Hierarchy:
    ManuscriptIntelError (base)
    +-- AnalysisError        a single analysis stage failed
    +-- LexiconError         lexicon extension file is unreadable or malformed
    +-- SchedulerError       tier scheduling misuse (unknown tier, closed scheduler)
    +-- StaleResultError     a tier result was superseded by a newer edit
"""

from __future__ import annotations


class ManuscriptIntelError(Exception):
    """Base exception for all engine errors."""

    detail: str = "Manuscript analysis error"

    def __init__(self, detail: str | None = None, *, context: dict[str, object] | None = None):
        self.detail = detail or self.__class__.detail
        self.context = context or {}
        super().__init__(self.detail)


class AnalysisError(ManuscriptIntelError):
    """An analysis stage could not produce its artifact."""

    detail = "Analysis stage failed"


class LexiconError(ManuscriptIntelError):
    """Lexicon extension file could not be loaded."""

    detail = "Invalid lexicon file"


class SchedulerError(ManuscriptIntelError):
    """Scheduler was used incorrectly."""

    detail = "Scheduler error"


class StaleResultError(ManuscriptIntelError):
    """A tier result belongs to a superseded edit generation."""

    detail = "Result superseded by a newer edit"
