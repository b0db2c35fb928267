"""Cross-chapter views: promise ledgers, the manuscript view, chapter context.

Chapters are passed in reading order as ``ChapterSnapshot``s. Every
operation works on deep copies of the snapshots' artifacts.
"""

from __future__ import annotations

import re
from collections import Counter

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.lexicon import Lexicon, load_lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.text import split_paragraphs, truncate
from manuscript_intel.schemas.entities import EntityGraph, EntityType
from manuscript_intel.schemas.manuscript import (
    ArcPosition,
    ChapterBoundary,
    ChapterSnapshot,
    ContinuityIssue,
    ContinuityType,
    CrossChapterContext,
    EndingMood,
    ManuscriptView,
    NarrativeArc,
    Severity,
)
from manuscript_intel.schemas.timeline import PlotPromise
from manuscript_intel.services.extraction.merge import merge_entity_graphs
from manuscript_intel.services.timeline import find_payoff

logger = get_logger(__name__)

BOUNDARY_CHARS = 200
BOUNDARY_WINDOW = 2000
MAX_ACTIVE_CHARACTERS = 5
MAX_THREADS = 5
_MIN_PARAGRAPH_CHARS = 20

_CLIFFHANGER_RES = [
    re.compile(p)
    for p in (r"\bsuddenly\b", r"\bout of nowhere\b", r"\bbut then\b", r"\bto be continued\b", r"\?$", r"\.\.\.$", r"\bwhat\b.*\?", r"\bhow\b.*\?")
]
_RESOLUTION_RES = [
    re.compile(p)
    for p in (r"\bfinally\b", r"\bat last\b", r"\bpeace\b", r"\bhappy\b", r"\bresolved\b", r"\bsettled\b", r"\bended\b")
]
_TRANSITION_RES = [
    re.compile(p) for p in (r"\bthe next\b", r"\blater\b", r"\bmeanwhile\b", r"\belsewhere\b", r"\bback at\b")
]
_TIME_GAP_RE = re.compile(
    r"\b(?:years later|months later|weeks later|the next day|that night|immediately)\b", re.IGNORECASE
)
_CONTINUES_RE = re.compile(r"^(?:the next|that|later|when|after)\b", re.IGNORECASE)
_LOCATION_HINT_RE = re.compile(r"\b(?:in|at|into|inside) the (\w+)\b", re.IGNORECASE)
_CAPITALISED_RE = re.compile(r"\b[A-Z][a-z]{2,}\b")


def merge_promise_ledgers(chapters: list[ChapterSnapshot], config: Settings | None = None) -> list[PlotPromise]:
    """All promises of the manuscript, each resolved against the chapters after its own.

    A promise already resolved stays resolved; an open promise of chapter i
    is resolved by the first paragraph of chapter j > i that covers enough of
    its keywords.
    """
    config = config or settings
    ledger: list[PlotPromise] = []
    for index, chapter in enumerate(chapters):
        if chapter.intelligence is None:
            continue
        for promise in chapter.intelligence.timeline.promises:
            promise = promise.model_copy(deep=True)
            if not promise.resolved:
                for later in chapters[index + 1 :]:
                    if later.intelligence is None:
                        continue
                    offset = find_payoff(promise, later.text, later.intelligence.structural, config)
                    if offset is not None:
                        promise.resolved = True
                        promise.resolution_offset = offset
                        promise.resolution_chapter_id = later.chapter_id
                        break
            ledger.append(promise)

    logger.info(
        "promise_ledgers_merged",
        chapters=len(chapters),
        promises=len(ledger),
        open=sum(1 for p in ledger if not p.resolved),
    )
    return ledger


def build_manuscript_view(
    chapters: list[ChapterSnapshot],
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> ManuscriptView:
    """Merged entity graph plus the cross-chapter promise ledger."""
    config = config or settings
    graphs = [c.intelligence.entities for c in chapters if c.intelligence is not None]
    return ManuscriptView(
        graph=merge_entity_graphs(graphs, config, lexicon),
        promises=merge_promise_ledgers(chapters, config),
        chapter_ids=[c.chapter_id for c in chapters],
    )


def build_chapter_context(
    chapters: list[ChapterSnapshot],
    active_id: str,
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> CrossChapterContext:
    """Neighbouring chapter boundaries, continuity warnings and arc position."""
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)

    index = next((i for i, c in enumerate(chapters) if c.chapter_id == active_id), None)
    if index is None:
        logger.warning("chapter_context_unknown_chapter", chapter_id=active_id)
        return CrossChapterContext()

    current = chapters[index]
    previous = _boundary(chapters[index - 1], at_end=True, lexicon=lexicon) if index > 0 else None
    following = _boundary(chapters[index + 1], at_end=False, lexicon=lexicon) if index + 1 < len(chapters) else None

    issues: list[ContinuityIssue] = []
    if previous is not None:
        current_first = _first_paragraph(current.text)
        issues.extend(_character_presence(previous, current, lexicon))
        for issue in (
            _timeline_gap(previous.last_paragraph, current_first),
            _setting_change(previous.last_paragraph, current_first),
            _plot_threads(previous, current.text),
        ):
            if issue is not None:
                issues.append(issue)

    percent = round((index + 1) / len(chapters) * 100)
    context = CrossChapterContext(
        previous_chapter=previous,
        next_chapter=following,
        continuity_issues=issues,
        narrative_arc=NarrativeArc(position=_arc_position(percent), percent_complete=percent),
    )
    logger.debug("chapter_context_built", chapter_id=active_id, issues=len(issues))
    return context


def ending_mood(paragraph: str) -> EndingMood:
    text = paragraph.lower().strip()
    if any(p.search(text) for p in _CLIFFHANGER_RES):
        return EndingMood.CLIFFHANGER
    if any(p.search(text) for p in _RESOLUTION_RES):
        return EndingMood.RESOLUTION
    if any(p.search(text) for p in _TRANSITION_RES):
        return EndingMood.TRANSITION
    return EndingMood.NEUTRAL


def _boundary(chapter: ChapterSnapshot, at_end: bool, lexicon: Lexicon) -> ChapterBoundary:
    last = _last_paragraph(chapter.text)
    intelligence = chapter.intelligence
    if at_end:
        window = (max(len(chapter.text) - BOUNDARY_WINDOW, 0), len(chapter.text))
    else:
        window = (0, BOUNDARY_WINDOW)
    return ChapterBoundary(
        chapter_id=chapter.chapter_id,
        title=chapter.title,
        first_paragraph=_first_paragraph(chapter.text),
        last_paragraph=last,
        ending_mood=ending_mood(last),
        active_characters=_active_characters(
            chapter.text, window, intelligence.entities if intelligence else None, lexicon
        ),
        open_plot_threads=(
            [p.description for p in intelligence.timeline.open_promises()][:MAX_THREADS] if intelligence else []
        ),
    )


def _meaningful_paragraphs(text: str) -> list[str]:
    return [p.text for p in split_paragraphs(text) if len(p.text) > _MIN_PARAGRAPH_CHARS]


def _first_paragraph(text: str) -> str:
    paragraphs = _meaningful_paragraphs(text)
    if not paragraphs:
        return text[:BOUNDARY_CHARS]
    return truncate(paragraphs[0], BOUNDARY_CHARS + 3)


def _last_paragraph(text: str) -> str:
    paragraphs = _meaningful_paragraphs(text)
    if not paragraphs:
        return text[-BOUNDARY_CHARS:]
    last = paragraphs[-1]
    return last if len(last) <= BOUNDARY_CHARS else "..." + last[-BOUNDARY_CHARS:]


def _active_characters(
    text: str,
    window: tuple[int, int],
    graph: EntityGraph | None,
    lexicon: Lexicon,
) -> list[str]:
    start, end = window
    if graph is not None:
        return [
            node.name
            for node in graph.nodes
            if node.type == EntityType.CHARACTER and any(start <= m.offset < end for m in node.mentions)
        ][:MAX_ACTIVE_CHARACTERS]

    counts = Counter(
        word for word in _CAPITALISED_RE.findall(text[start:end]) if not lexicon.is_stopword(word)
    )
    return [name for name, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))][:MAX_ACTIVE_CHARACTERS]


def _character_presence(
    previous: ChapterBoundary,
    current: ChapterSnapshot,
    lexicon: Lexicon,
) -> list[ContinuityIssue]:
    graph = current.intelligence.entities if current.intelligence else None
    opening = {c.lower() for c in _active_characters(current.text, (0, BOUNDARY_WINDOW), graph, lexicon)}
    carried = [c.lower() for c in previous.active_characters]
    missing = [c for c in carried if c not in opening]
    if not missing or len(missing) == len(carried):
        return []
    return [
        ContinuityIssue(
            type=ContinuityType.CHARACTER_PRESENCE,
            description=(
                f"Characters {', '.join(missing)} were present at the end of "
                f'"{previous.title or previous.chapter_id}" but do not appear in this opening.'
            ),
            severity=Severity.MEDIUM,
            suggestion="Mention where these characters are or why they are absent.",
        )
    ]


def _timeline_gap(previous_last: str, current_first: str) -> ContinuityIssue | None:
    if _TIME_GAP_RE.search(current_first):
        return None
    if ending_mood(previous_last) == EndingMood.CLIFFHANGER and not _CONTINUES_RE.match(current_first.strip()):
        return ContinuityIssue(
            type=ContinuityType.TIMELINE_GAP,
            description="The previous chapter ends on a cliffhanger but this chapter does not pick up the action.",
            severity=Severity.HIGH,
            suggestion="Add a transition or address how the cliffhanger resolved.",
        )
    return None


def _setting_change(previous_last: str, current_first: str) -> ContinuityIssue | None:
    before = [m.lower() for m in _LOCATION_HINT_RE.findall(previous_last)]
    after = [m.lower() for m in _LOCATION_HINT_RE.findall(current_first)]
    if before and after and not set(before) & set(after):
        return ContinuityIssue(
            type=ContinuityType.SETTING_CHANGE,
            description=f'Setting appears to change from "{before[0]}" to "{after[0]}" between chapters.',
            severity=Severity.LOW,
            suggestion="If intentional, add a short transition to orient the reader.",
        )
    return None


def _plot_threads(previous: ChapterBoundary, current_text: str) -> ContinuityIssue | None:
    threads = previous.open_plot_threads
    if len(threads) <= 2:
        return None
    lowered = current_text.lower()
    touched = [
        t for t in threads if any(w in lowered for w in t.lower().split() if len(w) > 4)
    ]
    if touched:
        return None
    return ContinuityIssue(
        type=ContinuityType.PLOT_THREAD,
        description=f"The previous chapter leaves {len(threads)} plot threads open that this chapter never touches.",
        severity=Severity.LOW,
        suggestion="Weave in a reference to the ongoing threads.",
    )


def _arc_position(percent: int) -> ArcPosition:
    if percent <= 15:
        return ArcPosition.BEGINNING
    if percent <= 40:
        return ArcPosition.RISING_ACTION
    if percent <= 60:
        return ArcPosition.CLIMAX
    if percent <= 85:
        return ArcPosition.FALLING_ACTION
    return ArcPosition.RESOLUTION
