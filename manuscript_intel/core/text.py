"""Low-level text helpers shared by every analysis stage.

Paragraph and sentence splitting keep exact character offsets so that every
artifact can point back into the source snapshot.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import NamedTuple


class Span(NamedTuple):
    """A slice of the source text with its absolute offsets."""

    text: str
    start: int
    end: int


WORD_RE = re.compile(r"[A-Za-z][A-Za-z'’]*")

# Sentence terminator, optionally followed by closing quotes/brackets
_SENTENCE_END_RE = re.compile(r"[.!?]+[\"'”’)\]]*(?=\s|$)")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")

ABBREVIATIONS: frozenset[str] = frozenset(
    {"mr.", "mrs.", "ms.", "dr.", "prof.", "st.", "sr.", "jr.", "capt.", "gen.", "col.", "lt.", "sgt.", "vs.", "etc."}
)

# Function words ignored by keyword and frequency metrics
FUNCTION_WORDS: frozenset[str] = frozenset(
    """
    a about above after again against all am an and any are as at be because been before being
    below between both but by can could did do does doing down during each few for from further
    had has have having he her here hers herself him himself his how i if in into is it its itself
    just me more most my myself no nor not now of off on once only or other our ours ourselves out
    over own same she should so some such than that the their theirs them themselves then there
    these they this those through to too under until up very was we were what when where which
    while who whom why will with would you your yours yourself yourselves said says told asked
    one two like into upon went came back still even much many also than them then
    """.split()
)


def clamp(offset: int, length: int) -> int:
    """Clamp an offset into ``[0, length]``."""
    return max(0, min(offset, length))


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def split_paragraphs(text: str) -> list[Span]:
    """Split text on blank lines, returning stripped paragraphs with offsets."""
    paragraphs: list[Span] = []
    current_start = 0

    for match in _PARAGRAPH_BREAK_RE.finditer(text):
        span = _stripped_span(text, current_start, match.start())
        if span:
            paragraphs.append(span)
        current_start = match.end()

    span = _stripped_span(text, current_start, len(text))
    if span:
        paragraphs.append(span)
    return paragraphs


def split_sentences(text: str, base: int = 0) -> list[Span]:
    """Split a block of text into sentences.

    Terminators that follow a known abbreviation ("Mr.", "Dr.") do not end a
    sentence. Offsets are shifted by ``base``.
    """
    sentences: list[Span] = []
    start = 0
    for match in _SENTENCE_END_RE.finditer(text):
        preceding = text[start : match.end()].split()
        if preceding and preceding[-1].lower() in ABBREVIATIONS:
            continue
        span = _stripped_span(text, start, match.end())
        if span:
            sentences.append(Span(span.text, span.start + base, span.end + base))
        start = match.end()

    span = _stripped_span(text, start, len(text))
    if span:
        sentences.append(Span(span.text, span.start + base, span.end + base))
    return sentences


def iter_words(text: str, base: int = 0) -> list[tuple[str, int]]:
    """Return ``(lowercased word, absolute offset)`` pairs."""
    return [(m.group().lower(), m.start() + base) for m in WORD_RE.finditer(text)]


def word_count(text: str) -> int:
    return sum(1 for _ in WORD_RE.finditer(text))


def content_words(text: str) -> set[str]:
    """Distinct lowercase words of four or more letters that carry meaning."""
    return {
        w.strip("'’")
        for w, _ in iter_words(text)
        if len(w) >= 4 and w not in FUNCTION_WORDS
    }


def count_syllables(word: str) -> int:
    """Rough vowel-group syllable count, at least one per word."""
    word = word.lower()
    groups = re.findall(r"[aeiouy]+", word)
    count = len(groups)
    if word.endswith("e") and count > 1 and not word.endswith("le"):
        count -= 1
    return max(count, 1)


def _stripped_span(text: str, start: int, end: int) -> Span | None:
    chunk = text[start:end]
    stripped = chunk.strip()
    if not stripped:
        return None
    lead = len(chunk) - len(chunk.lstrip())
    return Span(stripped, start + lead, start + lead + len(stripped))


def count_terms(text: str, terms: frozenset[str]) -> int:
    """Occurrences of lexicon terms in ``text``; multi-word terms match as phrases."""
    counts = Counter(w for w, _ in iter_words(text))
    total = sum(n for w, n in counts.items() if w in terms)
    lowered = text.lower()
    for term in terms:
        if " " in term:
            total += lowered.count(term)
    return total
