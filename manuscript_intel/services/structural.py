"""Structural analysis: scenes, classified paragraphs, dialogue lines, sections.

Pipeline position: first stage, no dependencies. Every later stage reads the
fingerprint produced here.

Paragraphs are split on blank lines. Separator paragraphs ("***", "---", "#")
and short POV headers ("Elena") are scene breaks and are not classified.
Paragraphs opening with a large time jump or a location shift also start a
new scene but stay in it.
"""

from __future__ import annotations

import functools
import re
import statistics
import time
from collections import Counter

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.ids import stable_id
from manuscript_intel.core.lexicon import Lexicon, load_lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.resilience import capped
from manuscript_intel.core.text import (
    Span,
    count_terms,
    split_paragraphs,
    split_sentences,
    word_count,
)
from manuscript_intel.schemas.structure import (
    ClassifiedParagraph,
    DialogueLine,
    ParagraphType,
    Scene,
    SceneType,
    Section,
    StructuralFingerprint,
    StructuralStats,
)

logger = get_logger(__name__)

# Decorative separators between scenes
_SEPARATOR_RE = re.compile(r"^\s*(\*\s*\*\s*\*|[*]{2,5}|-{3,5}|[—–]{2,5}|~{2,5}|#{1,5}|⁂)\s*$")

# One to three capitalised words, no terminal punctuation: "Elena", "Marcus Vale"
_POV_HEADER_RE = re.compile(r"^[A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,2}$")

_TIME_JUMP_RE = re.compile(
    r"^(?:(?:a few|several|many|some|two|three|four|five|ten|a|an)\s+"
    r"(?:years|months|weeks|days|hours|year|month|week|day|hour)\s+later"
    r"|(?:years|months|weeks|days|hours)\s+later"
    r"|some time later|much later"
    r"|the (?:next|following) (?:morning|day|evening|night|week|month|year)"
    r"|the morning after|later that (?:day|night|evening|morning))\b",
    re.IGNORECASE,
)

_LOCATION_SHIFT_RE = re.compile(
    r"^(?:meanwhile|elsewhere|back (?:at|in) |across (?:town|the city)|on the other side of)",
    re.IGNORECASE,
)

_TIME_MARKER_RE = re.compile(
    r"\b(?:(?:a few|several|many|some|two|three|four|five|ten|a|an)\s+"
    r"(?:years|months|weeks|days|hours|minutes|year|month|week|day|hour)\s+(?:later|earlier|ago)"
    r"|the (?:next|following|previous) (?:morning|day|evening|night|week)"
    r"|(?:that|this|the) (?:morning|afternoon|evening|night)"
    r"|at (?:dawn|dusk|midnight|noon|sunrise|sunset)"
    r"|later that (?:day|night|evening)|the morning after|meanwhile)\b",
    re.IGNORECASE,
)

_QUOTE_RE = re.compile(r'"([^"\n]{1,2000})"|“([^”\n]{1,2000})”')
_DIALOGUE_STARTERS = ('"', "“", "«")
_LEADING_NAME_RE = re.compile(r"^([A-Z][a-z]+)\b")
_NAME = r"[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?"

# Dialogue lines closer than this are one conversational run
_REPLY_GAP_CHARS = 400
_DIALOGUE_COVERAGE = 0.3
_TRANSITION_MAX_WORDS = 80


@functools.lru_cache(maxsize=8)
def _attribution_patterns(lexicon: Lexicon) -> tuple[re.Pattern[str], ...]:
    """(tag before quote, tag after quote, verb-first tag after quote)."""
    title = rf"(?:\b(?i:{lexicon.alternation('titles')})\.?\s+)?"
    verbs = rf"(?:{lexicon.alternation('speech_verbs')})"
    speaker = rf"\b(?P<speaker>{title}{_NAME})"
    before = re.compile(rf"{speaker}\s+{verbs}\s*[,:]?\s*$")
    after = re.compile(rf"^\s*{speaker}\s+{verbs}\b")
    after_verb_first = re.compile(rf"^\s*,?\s*{verbs}\s+{speaker}\b")
    return before, after, after_verb_first


def analyze_structure(
    text: str,
    chapter_id: str = "",
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> StructuralFingerprint:
    """Segment a chapter snapshot into scenes, paragraphs and dialogue lines.

    Total for any input: empty or whitespace-only text yields an empty
    fingerprint.
    """
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)

    if not text.strip():
        return StructuralFingerprint(processed_at=time.time())

    dialogue_map = _extract_dialogue(text, config, lexicon)

    paragraphs: list[ClassifiedParagraph] = []
    scene_groups: list[tuple[list[ClassifiedParagraph], str | None]] = []
    current: list[ClassifiedParagraph] = []
    pending_pov: str | None = None

    def close_scene() -> None:
        nonlocal current, pending_pov
        if current:
            scene_groups.append((current, pending_pov))
            pending_pov = None
        current = []

    for span in split_paragraphs(text):
        if _SEPARATOR_RE.match(span.text):
            close_scene()
            continue
        if _POV_HEADER_RE.match(span.text):
            close_scene()
            first = span.text.split()[0]
            if not lexicon.is_stopword(first):
                pending_pov = span.text
            continue
        if current and (_TIME_JUMP_RE.match(span.text) or _LOCATION_SHIFT_RE.match(span.text)):
            close_scene()

        paragraph = _classify(span, len(paragraphs), dialogue_map, lexicon)
        paragraphs.append(paragraph)
        current.append(paragraph)
    close_scene()

    scenes: list[Scene] = []
    sections: list[Section] = []
    for group, pov in scene_groups:
        scene = _build_scene(text, group, pov, chapter_id, lexicon)
        for paragraph in group:
            paragraph.scene_id = scene.id
        scenes.append(scene)
        sections.extend(_build_sections(group, scene.id, chapter_id, config.section_max_words))

    fingerprint = StructuralFingerprint(
        scenes=scenes,
        paragraphs=paragraphs,
        dialogue_map=dialogue_map,
        sections=sections,
        stats=_compute_stats(text, paragraphs, scenes),
        processed_at=time.time(),
    )
    logger.debug(
        "structure_analyzed",
        paragraphs=len(paragraphs),
        scenes=len(scenes),
        dialogue_lines=len(dialogue_map),
        sections=len(sections),
    )
    return fingerprint


def reclassify_paragraph(
    text: str,
    offset: int,
    chapter_id: str = "",
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> ClassifiedParagraph | None:
    """Classify only the paragraph around ``offset`` (instant tier).

    Returns None when the offset falls on a scene break or outside any
    paragraph.
    """
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)

    index = 0
    for span in split_paragraphs(text):
        is_break = bool(_SEPARATOR_RE.match(span.text) or _POV_HEADER_RE.match(span.text))
        if span.start <= offset <= span.end:
            if is_break:
                return None
            local = Span(span.text, 0, len(span.text))
            dialogue = _extract_dialogue(span.text, config, lexicon)
            paragraph = _classify(local, index, dialogue, lexicon)
            return paragraph.model_copy(update={"offset": span.start})
        if span.start > offset:
            break
        if not is_break:
            index += 1
    return None


# -- Paragraphs ------------------------------------------------------------


def _classify(
    span: Span,
    index: int,
    dialogue_map: list[DialogueLine],
    lexicon: Lexicon,
) -> ClassifiedParagraph:
    body = span.text
    sentences = split_sentences(body, base=span.start)
    lengths = [word_count(s.text) for s in sentences]
    words = word_count(body)

    inside = [d for d in dialogue_map if span.start <= d.offset < span.end]
    quoted = sum(d.length for d in inside)

    if body.startswith(_DIALOGUE_STARTERS) or (body and quoted / len(body) >= _DIALOGUE_COVERAGE):
        kind = ParagraphType.DIALOGUE
    else:
        kind = _dominant_type(body, lexicon)

    return ClassifiedParagraph(
        index=index,
        offset=span.start,
        length=span.end - span.start,
        type=kind,
        speaker=next((d.speaker for d in inside if d.speaker), None),
        sentiment=_sentiment(body, lexicon),
        tension=_tension(body, lexicon),
        sentence_count=len(sentences),
        avg_sentence_length=round(sum(lengths) / len(lengths), 2) if lengths else 0.0,
        word_count=words,
    )


def _dominant_type(body: str, lexicon: Lexicon) -> ParagraphType:
    # Ordered by tie precedence
    hits = [
        (count_terms(body, lexicon.action_verbs), ParagraphType.ACTION),
        (count_terms(body, lexicon.internal_markers), ParagraphType.INTERNAL),
        (count_terms(body, lexicon.descriptive_markers), ParagraphType.DESCRIPTION),
    ]
    best_count, best_type = hits[0]
    for count, kind in hits[1:]:
        if count > best_count:
            best_count, best_type = count, kind
    return best_type if best_count > 0 else ParagraphType.EXPOSITION


def _sentiment(body: str, lexicon: Lexicon) -> float:
    pos = count_terms(body, lexicon.positive_words)
    neg = count_terms(body, lexicon.negative_words)
    if pos + neg == 0:
        return 0.0
    return round((pos - neg) / (pos + neg), 4)


def _tension(body: str, lexicon: Lexicon) -> float:
    score = 0.15 * count_terms(body, lexicon.tension_words) + 0.1 * body.count("!") + 0.05 * body.count("?")
    return round(min(1.0, score), 4)


# -- Dialogue --------------------------------------------------------------


def _extract_dialogue(text: str, config: Settings, lexicon: Lexicon) -> list[DialogueLine]:
    lines: list[DialogueLine] = []
    previous: DialogueLine | None = None

    for match in capped(_QUOTE_RE.finditer(text), config.max_matches_per_category, "dialogue"):
        quote = match.group(1) if match.group(1) is not None else match.group(2)
        speaker, speaker_offset = _attribute_speaker(
            text, match.start(), match.end(), quote, config.attribution_window_tokens, lexicon
        )
        reply_to = None
        if previous is not None and match.start() - (previous.offset + previous.length) < _REPLY_GAP_CHARS:
            reply_to = previous.id

        line = DialogueLine(
            id=stable_id("dlg", match.start(), quote),
            quote=quote,
            speaker=speaker,
            speaker_offset=speaker_offset,
            offset=match.start(),
            length=match.end() - match.start(),
            reply_to=reply_to,
            sentiment=_sentiment(quote, lexicon),
        )
        lines.append(line)
        previous = line
    return lines


def _attribute_speaker(
    text: str,
    start: int,
    end: int,
    quote: str,
    window_tokens: int,
    lexicon: Lexicon,
) -> tuple[str | None, int | None]:
    """Find ``Name said`` / ``said Name`` near a quote.

    A tag directly before the quote wins. A tag after the quote is only read
    when the quote does not close its own sentence with a period
    ("Hello," she said / "Hello." Elena replied, "...").
    """
    before_re, after_re, after_verb_re = _attribution_patterns(lexicon)

    before_start = _window_start(text, start, window_tokens)
    before_text = text[before_start:start]
    if match := before_re.search(before_text):
        if accepted := _accept_speaker(match.group("speaker"), lexicon):
            name, shift = accepted
            return name, before_start + match.start("speaker") + shift

    if quote.rstrip().endswith("."):
        return None, None

    after_end = _window_end(text, end, window_tokens)
    after_text = text[end:after_end]
    for pattern in (after_verb_re, after_re):
        if match := pattern.search(after_text):
            if accepted := _accept_speaker(match.group("speaker"), lexicon):
                name, shift = accepted
                return name, end + match.start("speaker") + shift
    return None, None


def _accept_speaker(surface: str, lexicon: Lexicon) -> tuple[str, int] | None:
    """Drop leading stopwords ("Then Marcus"); reject pronouns and bare titles.

    Returns the kept surface form and its offset within ``surface``.
    """
    tokens = list(re.finditer(r"\S+", surface))
    while tokens and lexicon.is_stopword(tokens[0].group()) and not lexicon.is_title(tokens[0].group()):
        tokens.pop(0)
    bare = [t.group() for t in tokens if not lexicon.is_title(t.group())]
    if not bare or lexicon.is_stopword(bare[0]):
        return None
    shift = tokens[0].start()
    return surface[shift:], shift


def _window_start(text: str, start: int, tokens: int) -> int:
    cut = start
    for _ in range(tokens):
        cut = text.rfind(" ", 0, cut - 1) if cut > 1 else 0
        if cut <= 0:
            return 0
    # never reach back across a paragraph break
    boundary = text.rfind("\n\n", cut, start)
    return boundary + 2 if boundary != -1 else cut


def _window_end(text: str, end: int, tokens: int) -> int:
    cut = end
    for _ in range(tokens):
        nxt = text.find(" ", cut + 1)
        if nxt == -1:
            return len(text)
        cut = nxt
    boundary = text.find("\n\n", end, cut)
    return boundary if boundary != -1 else cut


# -- Scenes and sections ---------------------------------------------------


def _build_scene(
    text: str,
    group: list[ClassifiedParagraph],
    header_pov: str | None,
    chapter_id: str,
    lexicon: Lexicon,
) -> Scene:
    start, end = group[0].offset, group[-1].end
    body = text[start:end]
    words = sum(p.word_count for p in group)
    dialogue_words = sum(p.word_count for p in group if p.type == ParagraphType.DIALOGUE)
    dialogue_ratio = dialogue_words / words if words else 0.0

    time_match = _TIME_MARKER_RE.search(body)
    time_marker = time_match.group(0) if time_match else None

    if dialogue_ratio >= 0.5:
        scene_type = SceneType.DIALOGUE
    elif words < _TRANSITION_MAX_WORDS and time_marker:
        scene_type = SceneType.TRANSITION
    else:
        scene_type = _majority_scene_type(group)

    return Scene(
        id=stable_id("scene", chapter_id, start),
        start_offset=start,
        end_offset=end,
        type=scene_type,
        pov=header_pov or _leading_pov(text, group, lexicon),
        location=_scene_location(body, lexicon),
        time_marker=time_marker,
        tension=round(sum(p.tension for p in group) / len(group), 4),
        dialogue_ratio=round(dialogue_ratio, 4),
    )


_SCENE_TYPE_FOR = {
    ParagraphType.ACTION: SceneType.ACTION,
    ParagraphType.INTERNAL: SceneType.INTROSPECTION,
    ParagraphType.DESCRIPTION: SceneType.DESCRIPTION,
    ParagraphType.EXPOSITION: SceneType.DESCRIPTION,
    ParagraphType.DIALOGUE: SceneType.DIALOGUE,
}


def _majority_scene_type(group: list[ClassifiedParagraph]) -> SceneType:
    votes = Counter(_SCENE_TYPE_FOR[p.type] for p in group if p.type != ParagraphType.DIALOGUE)
    if not votes:
        return SceneType.DIALOGUE
    order = [SceneType.ACTION, SceneType.INTROSPECTION, SceneType.DESCRIPTION]
    return max(order, key=lambda t: (votes.get(t, 0), -order.index(t)))


def _leading_pov(text: str, group: list[ClassifiedParagraph], lexicon: Lexicon) -> str | None:
    names: Counter[str] = Counter()
    for p in group:
        match = _LEADING_NAME_RE.match(text[p.offset : p.end])
        if match and not lexicon.is_stopword(match.group(1)) and not lexicon.is_title(match.group(1)):
            names[match.group(1)] += 1
    if not names:
        return None
    name, count = min(names.items(), key=lambda kv: (-kv[1], kv[0]))
    return name if count >= 2 or len(group) == 1 else None


def _scene_location(body: str, lexicon: Lexicon) -> str | None:
    preps = lexicon.alternation("location_prepositions")
    places = lexicon.alternation("place_nouns")
    match = re.search(rf"\b(?:{preps})\s+(the\s+(?:[a-z]+\s+)?(?:{places}))\b", body)
    if match:
        return match.group(1)
    for match in re.finditer(rf"\b(?:{preps})\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)", body):
        if not lexicon.is_stopword(match.group(1).split()[0]) and not lexicon.is_name_month(match.group(1)):
            return match.group(1)
    return None


def _build_sections(
    group: list[ClassifiedParagraph],
    scene_id: str,
    chapter_id: str,
    max_words: int,
) -> list[Section]:
    sections: list[Section] = []
    bucket: list[ClassifiedParagraph] = []
    words = 0

    def flush() -> None:
        if bucket:
            start, end = bucket[0].offset, bucket[-1].end
            sections.append(
                Section(
                    id=stable_id("section", chapter_id, start, end),
                    start_offset=start,
                    end_offset=end,
                    scene_id=scene_id,
                    paragraph_indexes=[p.index for p in bucket],
                )
            )

    for paragraph in group:
        if bucket and words + paragraph.word_count > max_words:
            flush()
            bucket, words = [], 0
        bucket.append(paragraph)
        words += paragraph.word_count
    flush()
    return sections


def _compute_stats(
    text: str,
    paragraphs: list[ClassifiedParagraph],
    scenes: list[Scene],
) -> StructuralStats:
    lengths = [
        word_count(s.text)
        for p in paragraphs
        for s in split_sentences(text[p.offset : p.end])
    ]
    total_words = sum(p.word_count for p in paragraphs)
    dialogue_words = sum(p.word_count for p in paragraphs if p.type == ParagraphType.DIALOGUE)

    povs = [s.pov for s in scenes if s.pov]
    pov_shifts = sum(1 for a, b in zip(povs, povs[1:]) if a != b)

    return StructuralStats(
        total_words=total_words,
        total_sentences=len(lengths),
        total_paragraphs=len(paragraphs),
        avg_sentence_length=round(statistics.fmean(lengths), 2) if lengths else 0.0,
        sentence_length_variance=round(statistics.pvariance(lengths), 2) if len(lengths) > 1 else 0.0,
        dialogue_ratio=round(dialogue_words / total_words, 4) if total_words else 0.0,
        scene_count=len(scenes),
        pov_shifts=pov_shifts,
        avg_scene_length=round(total_words / len(scenes), 2) if scenes else 0.0,
    )
