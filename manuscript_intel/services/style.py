"""Style fingerprint: vocabulary, syntax, rhythm metrics and style flags.

Pure function of the chapter text and its structural pass. Densities are
fractions of total words; every instance list is capped at
``INSTANCE_CAP`` entries while the counts and ratios use every hit.
"""

from __future__ import annotations

import math
import re
import statistics
import time
from collections import Counter, defaultdict

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.lexicon import Lexicon, load_lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.text import (
    FUNCTION_WORDS,
    Span,
    count_syllables,
    iter_words,
    split_paragraphs,
    split_sentences,
    truncate,
    word_count,
)
from manuscript_intel.schemas.structure import StructuralFingerprint
from manuscript_intel.schemas.style import (
    QuoteInstance,
    RepeatedPhrase,
    RhythmMetrics,
    StyleFingerprint,
    StyleFlags,
    SyntaxMetrics,
    VocabularyMetrics,
    WordCount,
    WordInstance,
)

logger = get_logger(__name__)

INSTANCE_CAP = 50
TOP_WORDS = 10
WORD_LIST_CAP = 20
SYLLABLE_POINTS = 100
OVERUSE_RATIO = 0.01
OVERUSE_MIN_COUNT = 3
RARE_MIN_LENGTH = 7
REPEAT_MIN_COUNT = 3
QUOTE_CHARS = 80

PASSIVE_RE = re.compile(
    r"\b(?:am|is|are|was|were|be|been|being)\s+(?:[a-z]+ly\s+)?"
    r"(?:[a-z]{3,}ed|known|seen|taken|given|written|done|made|built|broken|chosen|driven|"
    r"forgotten|found|held|hidden|kept|left|lost|paid|sold|sent|shot|spoken|stolen|struck|"
    r"told|thrown|torn|worn|won|born|bound|caught|drawn|led|meant|run|shaken|slain|thought)\b",
    re.IGNORECASE,
)
_PUNCTUATION_RE = re.compile(r"[,;:.!?—–()]|(?<!-)-(?!-)")
_CLAUSE_RE = re.compile(
    r"[,;:]|\b(?:and|but|because|which|while|although|though|whereas|unless|until)\b",
    re.IGNORECASE,
)
_CLOSERS = "\"'”’)]"


def analyze_style(
    text: str,
    structure: StructuralFingerprint,
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> StyleFingerprint:
    """Compute the style fingerprint of one chapter."""
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)

    words = iter_words(text)
    if not words:
        return StyleFingerprint(processed_at=time.time())

    paragraphs = (
        [Span(text[p.offset : p.end], p.offset, p.end) for p in structure.paragraphs]
        if structure.paragraphs
        else split_paragraphs(text)
    )
    sentences = [s for p in paragraphs for s in split_sentences(p.text, base=p.start)]

    fingerprint = StyleFingerprint(
        vocabulary=_vocabulary(words),
        syntax=_syntax(sentences, paragraphs, structure, len(words)),
        rhythm=_rhythm(text, sentences, len(words)),
        flags=_flags(text, words, sentences, lexicon),
        processed_at=time.time(),
    )
    logger.info(
        "style_analyzed",
        words=len(words),
        sentences=len(sentences),
        passive_ratio=fingerprint.flags.passive_voice_ratio,
        cliches=fingerprint.flags.cliche_count,
    )
    return fingerprint


def is_adverb(word: str, lexicon: Lexicon) -> bool:
    """Crude -ly adverb test on a lowercase word."""
    return len(word) > 4 and word.endswith("ly") and word not in lexicon.adverb_exceptions


def _vocabulary(words: list[tuple[str, int]]) -> VocabularyMetrics:
    counts = Counter(w for w, _ in words)
    total = len(words)
    meaningful = [(w, c) for w, c in counts.items() if w not in FUNCTION_WORDS]
    by_frequency = sorted(meaningful, key=lambda wc: (-wc[1], wc[0]))

    overused = [
        w
        for w, c in by_frequency
        if len(w) >= 4 and c >= OVERUSE_MIN_COUNT and c / total > OVERUSE_RATIO
    ]
    rare = sorted(w for w, c in meaningful if c == 1 and len(w) >= RARE_MIN_LENGTH)

    return VocabularyMetrics(
        unique_words=len(counts),
        total_words=total,
        avg_word_length=round(sum(len(w) for w, _ in words) / total, 3),
        lexical_diversity=round(len(counts) / total, 4),
        top_words=[WordCount(word=w, count=c) for w, c in by_frequency[:TOP_WORDS]],
        overused_words=overused[:WORD_LIST_CAP],
        rare_words=rare[:WORD_LIST_CAP],
    )


def _syntax(
    sentences: list[Span],
    paragraphs: list[Span],
    structure: StructuralFingerprint,
    total_words: int,
) -> SyntaxMetrics:
    lengths = [word_count(s.text) for s in sentences] or [0]
    endings = [s.text.rstrip(_CLOSERS)[-1:] for s in sentences]
    dialogue_words = sum(word_count(line.quote) for line in structure.dialogue_map)

    return SyntaxMetrics(
        avg_sentence_length=round(statistics.fmean(lengths), 3),
        sentence_length_variance=round(statistics.pvariance(lengths), 3),
        min_sentence_length=min(lengths),
        max_sentence_length=max(lengths),
        paragraph_length_avg=round(
            statistics.fmean(word_count(p.text) for p in paragraphs) if paragraphs else 0.0, 3
        ),
        dialogue_to_narrative_ratio=round(min(dialogue_words / total_words, 1.0), 4),
        question_ratio=round(endings.count("?") / len(sentences), 4) if sentences else 0.0,
        exclamation_ratio=round(endings.count("!") / len(sentences), 4) if sentences else 0.0,
    )


def _rhythm(text: str, sentences: list[Span], total_words: int) -> RhythmMetrics:
    per_sentence = []
    for sentence in sentences:
        tokens = [w for w, _ in iter_words(sentence.text)]
        if tokens:
            per_sentence.append(sum(count_syllables(w) for w in tokens) / len(tokens))

    # Evenly sampled so long chapters keep a fixed-size pattern
    step = max(1, math.ceil(len(per_sentence) / SYLLABLE_POINTS))
    pattern = [round(v, 3) for v in per_sentence[::step]]

    clauses = [1 + len(_CLAUSE_RE.findall(s.text)) for s in sentences]
    return RhythmMetrics(
        syllable_pattern=pattern[:SYLLABLE_POINTS],
        punctuation_density=round(len(_PUNCTUATION_RE.findall(text)) * 100 / total_words, 3),
        avg_clause_count=round(statistics.fmean(clauses), 3) if clauses else 0.0,
    )


def _flags(
    text: str,
    words: list[tuple[str, int]],
    sentences: list[Span],
    lexicon: Lexicon,
) -> StyleFlags:
    total = len(words)

    passive: list[QuoteInstance] = []
    passive_sentences = 0
    for sentence in sentences:
        matches = list(PASSIVE_RE.finditer(sentence.text))
        if matches:
            passive_sentences += 1
        for match in matches:
            passive.append(QuoteInstance(quote=truncate(match.group(0), QUOTE_CHARS), offset=sentence.start + match.start()))

    adverbs = [
        WordInstance(word=w, offset=o)
        for w, o in words
        if is_adverb(w, lexicon)
    ]
    filters = [WordInstance(word=w, offset=o) for w, o in words if w in lexicon.filter_words]

    cliches: list[QuoteInstance] = []
    lowered = text.lower()
    for phrase in sorted(lexicon.cliches):
        for match in re.finditer(r"\b" + re.escape(phrase) + r"\b", lowered):
            cliches.append(QuoteInstance(quote=text[match.start() : match.end()], offset=match.start()))
    cliches.sort(key=lambda c: c.offset)

    return StyleFlags(
        passive_voice_ratio=round(passive_sentences / len(sentences), 4) if sentences else 0.0,
        passive_voice_instances=passive[:INSTANCE_CAP],
        adverb_density=round(len(adverbs) / total, 4),
        adverb_instances=adverbs[:INSTANCE_CAP],
        filter_word_density=round(len(filters) / total, 4),
        filter_word_instances=filters[:INSTANCE_CAP],
        cliche_count=len(cliches),
        cliche_instances=cliches[:INSTANCE_CAP],
        repeated_phrases=_repeated_trigrams(sentences),
    )


def _repeated_trigrams(sentences: list[Span]) -> list[RepeatedPhrase]:
    """Word trigrams seen at least ``REPEAT_MIN_COUNT`` times, with every offset.

    Trigrams never cross a sentence boundary and must contain a content word.
    """
    offsets: dict[str, list[int]] = defaultdict(list)
    for sentence in sentences:
        tokens = iter_words(sentence.text, base=sentence.start)
        for i in range(len(tokens) - 2):
            gram = tokens[i : i + 3]
            if all(w in FUNCTION_WORDS for w, _ in gram):
                continue
            offsets[" ".join(w for w, _ in gram)].append(gram[0][1])

    repeated = [
        RepeatedPhrase(phrase=phrase, count=len(found), offsets=found)
        for phrase, found in offsets.items()
        if len(found) >= REPEAT_MIN_COUNT
    ]
    repeated.sort(key=lambda r: (-r.count, r.phrase))
    return repeated[:WORD_LIST_CAP]
