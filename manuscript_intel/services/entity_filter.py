"""Entity quality filter: reject noise before candidates become nodes.

Applies lexicon and shape rules to raw candidates:
  - Pronouns, calendar terms, narrative-structure words, interjections
  - Months that double as given names ("May", "June"), but only where the
    text reads as a date ("in May", "May 3") or "May" as a modal ("May I")
  - Titles on their own ("Captain", "Mr.")
  - Names shorter than 2 or longer than 30 normalized characters
  - Pure numbers

Also owns name normalization, which fixes node identity: two surface
forms with the same ``entity_key`` are the same entity.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from manuscript_intel.core.logging import get_logger

if TYPE_CHECKING:
    from manuscript_intel.core.lexicon import Lexicon
    from manuscript_intel.services.extraction.rules import Candidate

logger = get_logger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 30

_PUNCT_RE = re.compile(r"[.,!?;:'\"“”‘’()\[\]]")
_SPACE_RE = re.compile(r"\s+")
_NUMERIC_RE = re.compile(r"^[\d\s\-/]+$")
_WORD_AFTER_RE = re.compile(r"[\s,]*(\w+)")
_WORD_BEFORE_RE = re.compile(r"(\w+)[\s,]*$")
_MODAL_SUBJECTS = frozenset({"i", "we", "you", "he", "she", "they", "it"})


def normalize_name(name: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace, drop a leading article."""
    name = _SPACE_RE.sub(" ", _PUNCT_RE.sub("", name.lower())).strip()
    for prefix in ("the ", "a ", "an "):
        if name.startswith(prefix):
            name = name[len(prefix) :]
            break
    return name


def strip_title(name: str, lexicon: Lexicon) -> str:
    """Drop leading titles from a normalized name ("mr marcus" -> "marcus")."""
    words = name.split()
    while len(words) > 1 and lexicon.is_title(words[0]):
        words = words[1:]
    return " ".join(words)


def entity_key(name: str, lexicon: Lexicon) -> str:
    """Identity key of an entity name: normalized, untitled."""
    return strip_title(normalize_name(name), lexicon)


def reject_reason(name: str, lexicon: Lexicon) -> str | None:
    """Why a surface form cannot name an entity, or None if it can."""
    normalized = normalize_name(name)
    if not normalized:
        return "empty"
    if _NUMERIC_RE.match(normalized):
        return "numeric"
    if all(lexicon.is_title(w) for w in normalized.split()):
        return "title_only"

    key = strip_title(normalized, lexicon)
    if len(key) < MIN_NAME_LENGTH:
        return "too_short"
    if len(key) > MAX_NAME_LENGTH:
        return "too_long"

    words = key.split()
    if lexicon.is_stopword(words[0]) or all(lexicon.is_stopword(w) for w in words):
        return "stopword"
    return None


def filter_candidates(candidates: list[Candidate], lexicon: Lexicon, text: str = "") -> list[Candidate]:
    """Keep candidates whose name passes every rejection rule.

    With ``text``, a candidate that is a bare month-like name is also checked
    against its surroundings at ``candidate.offset``.
    """
    kept: list[Candidate] = []
    reasons: dict[str, int] = {}
    for candidate in candidates:
        reason = reject_reason(candidate.surface, lexicon)
        end = candidate.offset + len(candidate.name)
        if reason is None and text and calendar_use(text, candidate.offset, end, lexicon):
            reason = "calendar"
        if reason is None:
            kept.append(candidate)
        else:
            reasons[reason] = reasons.get(reason, 0) + 1

    if reasons:
        logger.debug("candidates_filtered", kept=len(kept), rejected=reasons)
    return kept


def calendar_use(text: str, start: int, end: int, lexicon: Lexicon) -> bool:
    """Whether a month-like name at ``text[start:end]`` is used as a common word.

    "in May" and "May 3" are dates, "May I" is a modal; "May smiled" is a name.
    """
    if not lexicon.is_name_month(text[start:end]):
        return False
    after = _WORD_AFTER_RE.match(text, end)
    if after:
        following = after.group(1)
        if following[0].isdigit():
            return True
        if text[start:end].lower() == "may" and following.lower() in _MODAL_SUBJECTS:
            return True
    before = _WORD_BEFORE_RE.search(text, max(0, start - 24), start)
    return bool(before and before.group(1).lower() in lexicon.date_prepositions)
