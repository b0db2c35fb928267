"""Programmatic mention detection.

Finds every exact name and alias mention of known entities in chapter text,
so mention counts do not depend on which rule first proposed a name.

Titles and leading articles are stripped from search terms: "Mr. Marcus"
is found through "Marcus", and the mention offset points at the bare name,
matching the offsets produced by the extraction rules.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from manuscript_intel.core.lexicon import Lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.resilience import capped
from manuscript_intel.services.entity_filter import calendar_use

logger = get_logger(__name__)


@dataclass
class SearchEntity:
    """What the detector needs to know about a node."""

    key: str
    name: str
    aliases: list[str]
    case_sensitive: bool = True


@dataclass
class MentionMatch:
    """A single mention of an entity in text."""

    key: str
    mention_text: str
    mention_type: str  # "direct_name" or "alias"
    char_start: int
    char_end: int


def detect_mentions(
    text: str,
    entities: list[SearchEntity],
    lexicon: Lexicon,
    windows: list[tuple[int, int]] | None = None,
    limit: int = 500,
) -> list[MentionMatch]:
    """Find all name/alias mentions of known entities.

    Args:
        text: Full chapter text.
        entities: Entities to look for.
        lexicon: Used to strip titles from search terms and to skip
            month-like names used as dates ("in May").
        windows: Absolute ``(start, end)`` ranges to search; the whole text
            when omitted.
        limit: Per-term match cap.

    Returns:
        Matches sorted by offset, never overlapping.
    """
    if not text or not entities:
        return []

    search_terms: list[tuple[str, str, str, bool]] = []
    seen: set[tuple[str, str]] = set()
    for entity in entities:
        for surface, mention_type in [(entity.name, "direct_name")] + [(a, "alias") for a in entity.aliases]:
            term = _search_term(surface, lexicon)
            if len(term) < 2 or (term, entity.key) in seen:
                continue
            seen.add((term, entity.key))
            search_terms.append((term, entity.key, mention_type, entity.case_sensitive))

    # Longer terms first so "Marcus Vale" is not also counted as "Marcus"
    search_terms.sort(key=lambda t: (-len(t[0]), t[0], t[1]))

    spans = windows if windows is not None else [(0, len(text))]
    matches: list[MentionMatch] = []
    # One byte per character, set once a mention claims it
    covered = bytearray(len(text))

    for term, key, mention_type, case_sensitive in search_terms:
        flags = 0 if case_sensitive else re.IGNORECASE
        pattern = re.compile(r"\b" + re.escape(term) + r"\b", flags)
        for win_start, win_end in spans:
            for match in capped(pattern.finditer(text, win_start, win_end), limit, "mentions"):
                start, end = match.start(), match.end()
                if covered.find(1, start, end) != -1:
                    continue
                if calendar_use(text, start, end, lexicon):
                    continue
                covered[start:end] = b"\x01" * (end - start)
                matches.append(
                    MentionMatch(
                        key=key,
                        mention_text=match.group(),
                        mention_type=mention_type,
                        char_start=start,
                        char_end=end,
                    )
                )

    matches.sort(key=lambda m: (m.char_start, m.key))
    logger.debug(
        "mention_detection_complete",
        total_entities=len(entities),
        mentions_found=len(matches),
    )
    return matches


def _search_term(surface: str, lexicon: Lexicon) -> str:
    words = surface.split()
    while len(words) > 1 and (words[0].lower() in ("the", "a", "an") or lexicon.is_title(words[0])):
        words = words[1:]
    return " ".join(words)
