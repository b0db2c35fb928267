"""Timeline, causality and plot-promise detection.

Three rule tables drive the pass, all matched sentence by sentence:

- ``TEMPORAL_MARKERS``: phrases that place an event before, after or
  concurrently with the one before it.
- ``CAUSAL_MARKERS``: connectives that join a cause clause to an effect
  clause, each with a direction and a confidence.
- ``PROMISE_RULES``: phrasing that sets up something the reader expects to
  be paid off (foreshadowing, setup, question, conflict, goal).

A promise is resolved by a later paragraph whose content words cover enough
of the promise keywords. Resolution is monotonic: once a promise id is
resolved it stays resolved in every later timeline built from it, unless
``retract_resolution`` is applied.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.ids import stable_id
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.resilience import capped
from manuscript_intel.core.text import Span, clamp, content_words, split_sentences, truncate
from manuscript_intel.schemas.structure import StructuralFingerprint
from manuscript_intel.schemas.timeline import (
    CausalChain,
    CausalLink,
    PlotPromise,
    PromiseType,
    TemporalRelation,
    Timeline,
    TimelineEvent,
)

logger = get_logger(__name__)

DESCRIPTION_CHARS = 120
QUOTE_CHARS = 300
MAX_KEYWORDS = 10

TEMPORAL_MARKERS: dict[str, TemporalRelation] = {
    # after
    "years later": TemporalRelation.AFTER,
    "months later": TemporalRelation.AFTER,
    "weeks later": TemporalRelation.AFTER,
    "days later": TemporalRelation.AFTER,
    "hours later": TemporalRelation.AFTER,
    "minutes later": TemporalRelation.AFTER,
    "moments later": TemporalRelation.AFTER,
    "later that": TemporalRelation.AFTER,
    "the next day": TemporalRelation.AFTER,
    "the next morning": TemporalRelation.AFTER,
    "the next night": TemporalRelation.AFTER,
    "the following day": TemporalRelation.AFTER,
    "the following morning": TemporalRelation.AFTER,
    "afterward": TemporalRelation.AFTER,
    "afterwards": TemporalRelation.AFTER,
    "after that": TemporalRelation.AFTER,
    "soon after": TemporalRelation.AFTER,
    "eventually": TemporalRelation.AFTER,
    "immediately": TemporalRelation.AFTER,
    "by nightfall": TemporalRelation.AFTER,
    # before
    "years ago": TemporalRelation.BEFORE,
    "years before": TemporalRelation.BEFORE,
    "long ago": TemporalRelation.BEFORE,
    "the day before": TemporalRelation.BEFORE,
    "the night before": TemporalRelation.BEFORE,
    "earlier that": TemporalRelation.BEFORE,
    "previously": TemporalRelation.BEFORE,
    "back then": TemporalRelation.BEFORE,
    "in the past": TemporalRelation.BEFORE,
    # concurrent
    "meanwhile": TemporalRelation.CONCURRENT,
    "at the same time": TemporalRelation.CONCURRENT,
    "at that moment": TemporalRelation.CONCURRENT,
    "simultaneously": TemporalRelation.CONCURRENT,
    "that night": TemporalRelation.CONCURRENT,
    "that morning": TemporalRelation.CONCURRENT,
    "that evening": TemporalRelation.CONCURRENT,
}


@dataclass(frozen=True)
class CausalMarker:
    """``forward``: cause precedes the marker. ``backward``: cause follows it."""

    phrase: str
    direction: str
    confidence: float


CAUSAL_MARKERS: list[CausalMarker] = [
    CausalMarker("as a result", "forward", 0.85),
    CausalMarker("because of", "backward", 0.8),
    CausalMarker("because", "backward", 0.8),
    CausalMarker("therefore", "forward", 0.8),
    CausalMarker("consequently", "forward", 0.8),
    CausalMarker("resulted in", "forward", 0.8),
    CausalMarker("due to", "backward", 0.75),
    CausalMarker("led to", "forward", 0.75),
    CausalMarker("thus", "forward", 0.75),
    CausalMarker("hence", "forward", 0.7),
    CausalMarker("which caused", "forward", 0.7),
    CausalMarker("so that", "forward", 0.6),
    CausalMarker("which meant", "forward", 0.6),
]


@dataclass(frozen=True)
class PromiseRule:
    name: str
    type: PromiseType
    pattern: re.Pattern[str]


def _p(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# First matching rule wins for a sentence
PROMISE_RULES: list[PromiseRule] = [
    PromiseRule("little_did", PromiseType.FORESHADOWING, _p(r"\blittle did (?:he|she|they|i|we) know\b")),
    PromiseRule(
        "would_later",
        PromiseType.FORESHADOWING,
        _p(r"\bwould (?:later|soon|one day) (?:learn|discover|realize|realise|regret|understand)\b"),
    ),
    PromiseRule("had_known", PromiseType.FORESHADOWING, _p(r"\b(?:if only|had (?:he|she|they|i|we) known)\b")),
    PromiseRule(
        "premonition",
        PromiseType.FORESHADOWING,
        _p(r"\b(?:ominous|strange|uneasy|terrible) (?:feeling|sense|premonition|foreboding)\b"),
    ),
    PromiseRule("only_beginning", PromiseType.FORESHADOWING, _p(r"\bwas only the beginning\b")),
    PromiseRule(
        "vengeance",
        PromiseType.CONFLICT,
        _p(r"\b(?:swore|vowed|sworn) (?:revenge|vengeance|to (?:kill|destroy|stop|defeat))\b"),
    ),
    PromiseRule("will_pay", PromiseType.CONFLICT, _p(r"\b(?:would|will) pay for\b")),
    PromiseRule("war_coming", PromiseType.CONFLICT, _p(r"\b(?:war|battle|storm) (?:was|is) coming\b")),
    PromiseRule(
        "in_the_way",
        PromiseType.CONFLICT,
        _p(r"\b(?:stood|stands|standing) in (?:his|her|their|our|my) way\b"),
    ),
    PromiseRule(
        "wondered",
        PromiseType.QUESTION,
        _p(r"\b(?:wondered|wonders|no one knew|nobody knew) (?:who|what|why|where|how|whether|if)\b"),
    ),
    PromiseRule("open_question", PromiseType.QUESTION, _p(r"^(?:who|what|why|where|how)\b[^\"“”]*\?$")),
    PromiseRule(
        "hidden_thing",
        PromiseType.SETUP,
        _p(r"\b(?:secret|legend|rumou?r|prophecy|hidden|locked|sealed) (?:door|room|chest|box|letter|map|passage|key)\b"),
    ),
    PromiseRule(
        "there_was_secret",
        PromiseType.SETUP,
        _p(r"\b(?:there|it) was (?:a|an) (?:secret|legend|rumou?r|prophecy)\b"),
    ),
    PromiseRule(
        "must_do",
        PromiseType.GOAL,
        _p(
            r"\b(?:must|had to|needed to|have to|has to) "
            r"(?:find|reach|stop|save|protect|destroy|discover|recover|escape|return)\b"
        ),
    ),
    PromiseRule(
        "vowed_to",
        PromiseType.GOAL,
        _p(r"\b(?:swore|vowed|promised|resolved|planned|intended|set out) to\b"),
    ),
]


def _alternation(phrases: list[str]) -> re.Pattern[str]:
    ordered = sorted(phrases, key=lambda p: (-len(p), p))
    return re.compile(r"\b(" + "|".join(re.escape(p) for p in ordered) + r")\b", re.IGNORECASE)


_TEMPORAL_RE = _alternation(list(TEMPORAL_MARKERS))
_CAUSAL_RE = _alternation([m.phrase for m in CAUSAL_MARKERS])
_CAUSAL_BY_PHRASE = {m.phrase: m for m in CAUSAL_MARKERS}
_SPACE_RE = re.compile(r"\s+")
_MIN_CLAUSE_WORDS = 2


def build_timeline(
    text: str,
    structure: StructuralFingerprint,
    chapter_id: str = "",
    previous: Timeline | None = None,
    config: Settings | None = None,
) -> Timeline:
    """Detect events, causal chains and promises in one chapter.

    Args:
        text: Chapter text.
        structure: Structural pass output; sentences are read paragraph by paragraph.
        chapter_id: Chapter the artifacts belong to.
        previous: Earlier timeline of the same chapter; promises it resolved
            stay resolved.
    """
    config = config or settings
    if not text.strip():
        return Timeline(processed_at=time.time())

    sentences = [
        sentence
        for paragraph in structure.paragraphs
        for sentence in split_sentences(text[paragraph.offset : paragraph.end], base=paragraph.offset)
    ]
    limit = config.max_matches_per_category

    events = _detect_events(sentences, chapter_id, limit)
    chains = _detect_causal_chains(sentences, events, chapter_id, limit)
    promises = _detect_promises(sentences, chapter_id, limit)

    for promise in promises:
        payoff = find_payoff(promise, text, structure, config, after=promise.offset + len(promise.quote))
        if payoff is not None:
            promise.resolved = True
            promise.resolution_offset = payoff
            promise.resolution_chapter_id = chapter_id

    if previous is not None:
        _carry_resolutions(promises, previous, len(text))

    logger.info(
        "timeline_built",
        events=len(events),
        causal_chains=len(chains),
        promises=len(promises),
        resolved=sum(1 for p in promises if p.resolved),
    )
    return Timeline(events=events, causal_chains=chains, promises=promises, processed_at=time.time())


def find_payoff(
    promise: PlotPromise,
    text: str,
    structure: StructuralFingerprint,
    config: Settings | None = None,
    after: int = 0,
) -> int | None:
    """Offset of the first paragraph at or after ``after`` that pays the promise off."""
    config = config or settings
    keywords = set(promise.keywords)
    if len(keywords) < config.payoff_min_overlap:
        return None
    for paragraph in structure.paragraphs:
        if paragraph.offset < after:
            continue
        overlap = len(keywords & content_words(text[paragraph.offset : paragraph.end]))
        if overlap >= config.payoff_min_overlap and overlap / len(keywords) >= config.payoff_overlap_ratio:
            return paragraph.offset
    return None


def retract_resolution(timeline: Timeline, promise_id: str) -> Timeline:
    """Return a copy of ``timeline`` with one promise explicitly un-resolved."""
    updated = timeline.model_copy(deep=True)
    for promise in updated.promises:
        if promise.id == promise_id:
            promise.resolved = False
            promise.resolution_offset = None
            promise.resolution_chapter_id = None
            logger.info("promise_retracted", promise_id=promise_id)
            return updated
    logger.warning("promise_retract_unknown", promise_id=promise_id)
    return updated


def promise_id(chapter_id: str, kind: PromiseType, quote: str) -> str:
    """Edit-stable promise id: chapter, type and normalized quote, no offset."""
    return stable_id("promise", chapter_id, kind, _SPACE_RE.sub(" ", quote.lower()).strip())


def _detect_events(sentences: list[Span], chapter_id: str, limit: int) -> list[TimelineEvent]:
    events: list[TimelineEvent] = []
    seen: dict[str, int] = {}
    hits = ((s, m) for s in sentences if (m := _TEMPORAL_RE.search(s.text)))
    for sentence, match in capped(hits, limit, "temporal_markers"):
        marker = match.group(1).lower()
        normalized = _SPACE_RE.sub(" ", sentence.text.lower())
        occurrence = seen.get(normalized, 0)
        seen[normalized] = occurrence + 1
        relation = TEMPORAL_MARKERS[marker]
        events.append(
            TimelineEvent(
                id=stable_id("evt", chapter_id, normalized, occurrence),
                description=truncate(sentence.text, DESCRIPTION_CHARS),
                offset=sentence.start,
                chapter_id=chapter_id,
                temporal_marker=marker,
                relative_position=relation,
                depends_on=[events[-1].id] if relation == TemporalRelation.AFTER and events else [],
            )
        )
    return events


def _detect_causal_chains(
    sentences: list[Span],
    events: list[TimelineEvent],
    chapter_id: str,
    limit: int,
) -> list[CausalChain]:
    event_at = {e.offset: e.id for e in events}
    chains: list[CausalChain] = []

    def link(quote: str, offset: int) -> CausalLink:
        return CausalLink(
            event_id=event_at.get(offset, stable_id("evt", chapter_id, offset)),
            quote=truncate(quote, DESCRIPTION_CHARS),
            offset=offset,
        )

    for index, sentence in enumerate(sentences):
        if len(chains) >= limit:
            logger.warning("match_cap_reached", category="causal_markers", limit=limit)
            break
        match = _CAUSAL_RE.search(sentence.text)
        if match is None:
            continue
        marker = _CAUSAL_BY_PHRASE[match.group(1).lower()]
        head = sentence.text[: match.start()].strip(" ,;:-")
        rest_of_sentence = sentence.text[match.end() :]
        tail = rest_of_sentence.lstrip(" ,;:-")
        tail_offset = sentence.start + match.end() + len(rest_of_sentence) - len(tail)
        tail = tail.rstrip(" ,;:-")

        if not head:
            # Marker opens the sentence
            if marker.direction == "forward":
                if index == 0 or not _is_clause(tail):
                    continue
                prior = sentences[index - 1]
                cause, effect = link(prior.text, prior.start), link(tail, tail_offset)
            else:
                clause, sep, rest = tail.partition(",")
                if not sep or not _is_clause(clause) or not _is_clause(rest):
                    continue
                rest_offset = tail_offset + len(clause) + 1 + (len(rest) - len(rest.lstrip()))
                cause, effect = link(clause, tail_offset), link(rest.strip(), rest_offset)
        else:
            if not _is_clause(head) or not _is_clause(tail):
                continue
            first, second = link(head, sentence.start), link(tail, tail_offset)
            cause, effect = (first, second) if marker.direction == "forward" else (second, first)

        chains.append(
            CausalChain(
                id=stable_id("cause", chapter_id, marker.phrase, cause.offset, effect.offset),
                cause=cause,
                effect=effect,
                confidence=marker.confidence,
                marker=marker.phrase,
            )
        )
    return chains


def _detect_promises(sentences: list[Span], chapter_id: str, limit: int) -> list[PlotPromise]:
    promises: list[PlotPromise] = []
    seen: set[str] = set()
    for sentence in sentences:
        if len(promises) >= limit:
            logger.warning("match_cap_reached", category="promises", limit=limit)
            break
        for rule in PROMISE_RULES:
            match = rule.pattern.search(sentence.text)
            if match is None:
                continue
            quote = sentence.text[:QUOTE_CHARS]
            pid = promise_id(chapter_id, rule.type, quote)
            if pid not in seen:
                seen.add(pid)
                promises.append(
                    PlotPromise(
                        id=pid,
                        type=rule.type,
                        description=truncate(sentence.text, DESCRIPTION_CHARS),
                        quote=quote,
                        offset=sentence.start,
                        chapter_id=chapter_id,
                        keywords=_keywords(sentence.text, match.group(0)),
                    )
                )
            break
    return promises


def _keywords(sentence: str, trigger: str) -> list[str]:
    """Content words of the sentence minus the trigger phrase, in reading order."""
    wanted = content_words(sentence) - content_words(trigger)
    ordered: list[str] = []
    for word in re.findall(r"[A-Za-z][A-Za-z'’]*", sentence):
        word = word.lower().strip("'’")
        if word in wanted and word not in ordered:
            ordered.append(word)
    return ordered[:MAX_KEYWORDS]


def _carry_resolutions(promises: list[PlotPromise], previous: Timeline, text_length: int) -> None:
    resolved_before = {p.id: p for p in previous.promises if p.resolved}
    for promise in promises:
        earlier = resolved_before.get(promise.id)
        if earlier is None or promise.resolved:
            continue
        promise.resolved = True
        promise.resolution_offset = (
            clamp(earlier.resolution_offset, text_length) if earlier.resolution_offset is not None else None
        )
        promise.resolution_chapter_id = earlier.resolution_chapter_id


def _is_clause(text: str) -> bool:
    return len(text.split()) >= _MIN_CLAUSE_WORDS
