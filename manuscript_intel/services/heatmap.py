"""Attention heatmap: per-section risk scores, flags and hotspots.

Each structural section gets five sub-scores in [0, 1]:

- plot: open promises raised in the section, lore contradictions inside it
- pacing: sentence length outliers and paragraph density
- character: protagonist absence, passive voice concentration
- setting: injected external score, anachronism terms from lore, no place
- style: adverb and filter word density, cliches, repeated phrases

``overall_risk`` is their weighted average (``Settings.risk_weights``).
Flags come from ``FLAG_RULES``, a registry of named predicates over the
section facts and scores; each flag carries one canned suggestion.
"""

from __future__ import annotations

import re
import statistics
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.lexicon import Lexicon, load_lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.text import iter_words, split_sentences, word_count
from manuscript_intel.schemas.entities import EntityGraph, EntityNode, EntityType
from manuscript_intel.schemas.heatmap import (
    AttentionHeatmap,
    Contradiction,
    HeatmapSection,
    Hotspot,
    RiskFlag,
    RiskScores,
)
from manuscript_intel.schemas.lore import LoreContext
from manuscript_intel.schemas.structure import ParagraphType, Section, StructuralFingerprint
from manuscript_intel.schemas.style import StyleFingerprint
from manuscript_intel.schemas.timeline import Timeline
from manuscript_intel.services.entity_filter import entity_key
from manuscript_intel.services.style import PASSIVE_RE, is_adverb

logger = get_logger(__name__)

# Lore attribute names accepted for the attributes the extractor observes
_ATTRIBUTE_ALIASES = {
    "eyes": "eye_color",
    "eye_colour": "eye_color",
    "hair": "hair_color",
    "hair_colour": "hair_color",
    "occupation": "role",
    "title": "role",
}


@dataclass
class SectionFacts:
    """Everything the scorer and the flag rules know about one section."""

    section: Section
    words: int = 0
    sentences: int = 0
    avg_sentence_length: float = 0.0
    long_sentence_share: float = 0.0
    short_sentence_share: float = 0.0
    avg_paragraph_words: float = 0.0
    dialogue_ratio: float = 0.0
    exposition_share: float = 0.0
    tension: float = 0.0
    passive_ratio: float = 0.0
    adverb_density: float = 0.0
    filter_density: float = 0.0
    cliches: int = 0
    repeated_phrases: int = 0
    open_promises: int = 0
    contradictions: int = 0
    anachronisms: list[str] = field(default_factory=list)
    protagonist_known: bool = False
    protagonist_present: bool = True
    has_location: bool = False


@dataclass(frozen=True)
class FlagRule:
    flag: RiskFlag
    suggestion: str
    check: Callable[[SectionFacts, RiskScores], bool]


FLAG_RULES: list[FlagRule] = []


def flag_rule(flag: RiskFlag, suggestion: str) -> Callable[[Callable[[SectionFacts, RiskScores], bool]], Callable[[SectionFacts, RiskScores], bool]]:
    """Register a flag predicate with its canned suggestion."""

    def decorator(func: Callable[[SectionFacts, RiskScores], bool]) -> Callable[[SectionFacts, RiskScores], bool]:
        FLAG_RULES.append(FlagRule(flag=flag, suggestion=suggestion, check=func))
        return func

    return decorator


@flag_rule(RiskFlag.UNRESOLVED_PROMISE, "Pay off or deliberately keep alive the setup raised here.")
def _unresolved_promise(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.open_promises > 0 and scores.plot >= 0.3


@flag_rule(RiskFlag.CONTRADICTION_DETECTED, "Check this passage against the character bible.")
def _contradiction(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.contradictions > 0


@flag_rule(RiskFlag.PASSIVE_VOICE_HEAVY, "Recast passive sentences so the characters act.")
def _passive_heavy(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.sentences >= 2 and facts.passive_ratio > 0.3


@flag_rule(RiskFlag.PACING_SLOW, "Split long sentences or cut description to speed this up.")
def _pacing_slow(facts: SectionFacts, scores: RiskScores) -> bool:
    return scores.pacing > 0.6 and facts.avg_sentence_length > 25


@flag_rule(RiskFlag.PACING_RUSHED, "Let this moment breathe with a beat of reaction or detail.")
def _pacing_rushed(facts: SectionFacts, scores: RiskScores) -> bool:
    return scores.pacing > 0.6 and facts.sentences >= 3 and facts.avg_sentence_length < 8


@flag_rule(RiskFlag.DIALOGUE_HEAVY, "Ground the exchange with action beats or setting.")
def _dialogue_heavy(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.dialogue_ratio > 0.7


@flag_rule(RiskFlag.EXPOSITION_DUMP, "Dramatize this information or spread it across scenes.")
def _exposition_dump(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.words >= 150 and facts.exposition_share > 0.6 and facts.dialogue_ratio == 0


@flag_rule(RiskFlag.FILTER_WORDS, "Remove filter words and show the perception directly.")
def _filter_words(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.filter_density > 0.03


@flag_rule(RiskFlag.ADVERB_OVERUSE, "Replace adverbs with stronger verbs.")
def _adverb_overuse(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.adverb_density > 0.03


@flag_rule(RiskFlag.LONG_SENTENCES, "Vary sentence length; most sentences here run long.")
def _long_sentences(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.sentences >= 2 and facts.long_sentence_share >= 0.5


@flag_rule(RiskFlag.SHORT_SENTENCES, "Combine some short sentences to avoid a choppy rhythm.")
def _short_sentences(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.sentences >= 4 and facts.short_sentence_share >= 0.6


@flag_rule(RiskFlag.LOW_TENSION, "Raise the stakes or add friction to this passage.")
def _low_tension(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.words >= 200 and facts.tension < 0.05


@flag_rule(RiskFlag.CHARACTER_ABSENT, "Bring the protagonist back on stage or tie this to them.")
def _character_absent(facts: SectionFacts, scores: RiskScores) -> bool:
    return facts.protagonist_known and not facts.protagonist_present


@flag_rule(RiskFlag.SETTING_UNCLEAR, "Anchor the reader in place and period.")
def _setting_unclear(facts: SectionFacts, scores: RiskScores) -> bool:
    return scores.setting > 0.5


def score_heatmap(
    text: str,
    structure: StructuralFingerprint,
    entities: EntityGraph,
    timeline: Timeline,
    style: StyleFingerprint,
    lore: LoreContext | None = None,
    setting_scores: dict[str, float] | None = None,
    contradictions: list[Contradiction] | None = None,
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> AttentionHeatmap:
    """Score every section of the chapter and pick the hotspots.

    Args:
        setting_scores: Externally computed setting risk per section id.
        contradictions: Precomputed contradictions; derived from ``lore``
            when omitted.
    """
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)
    if contradictions is None:
        contradictions = detect_lore_contradictions(entities, lore, lexicon) if lore else []

    protagonists = _protagonists(entities, lore, lexicon)
    weights = config.risk_weights
    sections: list[HeatmapSection] = []

    for section in structure.sections:
        facts = _section_facts(text, structure, section, entities, timeline, style, lore, contradictions, protagonists, lexicon)
        injected = (setting_scores or {}).get(section.id, 0.0)
        scores = _score(facts, injected)
        overall = (
            weights.plot * scores.plot
            + weights.pacing * scores.pacing
            + weights.character * scores.character
            + weights.setting * scores.setting
            + weights.style * scores.style
        )
        fired = [rule for rule in FLAG_RULES if rule.check(facts, scores)]
        sections.append(
            HeatmapSection(
                section_id=section.id,
                offset=section.start_offset,
                length=section.end_offset - section.start_offset,
                scores=scores,
                overall_risk=round(_unit(overall), 4),
                flags=[rule.flag for rule in fired],
                suggestions=[rule.suggestion for rule in fired],
            )
        )

    ranked = sorted((s for s in sections if s.overall_risk > 0), key=lambda s: (-s.overall_risk, s.offset))
    hotspots = [
        Hotspot(
            section_id=s.section_id,
            offset=s.offset,
            reason=", ".join(s.flags) if s.flags else f"high {_worst_dimension(s.scores)} risk",
            severity=s.overall_risk,
        )
        for s in ranked[: config.hotspot_count]
    ]

    logger.info(
        "heatmap_scored",
        sections=len(sections),
        hotspots=len(hotspots),
        contradictions=len(contradictions),
        flags=sum(len(s.flags) for s in sections),
    )
    return AttentionHeatmap(
        sections=sections,
        hotspots=hotspots,
        contradictions=contradictions,
        processed_at=time.time(),
    )


def detect_lore_contradictions(
    graph: EntityGraph,
    lore: LoreContext | None,
    lexicon: Lexicon | None = None,
) -> list[Contradiction]:
    """Observed attribute values that disagree with the lore's character sheets.

    A value agrees when either string contains the other ("brown" vs
    "dark brown"). Each disagreement is reported at the entity's first mention.
    """
    if lore is None:
        return []
    lexicon = lexicon or load_lexicon(settings.lexicon_path)

    found: list[Contradiction] = []
    for character in lore.characters:
        node = _lore_node(graph, character.name, character.aliases, lexicon)
        if node is None:
            continue
        for raw_name, expected in character.attributes.items():
            attribute = _attribute_name(raw_name)
            wanted = expected.strip().lower()
            for observed in node.attributes.get(attribute, []):
                seen = observed.strip().lower()
                if not wanted or not seen or seen in wanted or wanted in seen:
                    continue
                found.append(
                    Contradiction(
                        entity_id=node.id,
                        entity_name=node.name,
                        attribute=attribute,
                        observed=observed,
                        expected=expected,
                        offset=node.first_mention,
                    )
                )
    if found:
        logger.info("lore_contradictions_found", count=len(found))
    return found


def _section_facts(
    text: str,
    structure: StructuralFingerprint,
    section: Section,
    entities: EntityGraph,
    timeline: Timeline,
    style: StyleFingerprint,
    lore: LoreContext | None,
    contradictions: list[Contradiction],
    protagonists: list[EntityNode],
    lexicon: Lexicon,
) -> SectionFacts:
    start, end = section.start_offset, section.end_offset
    facts = SectionFacts(section=section)
    by_index = {p.index: p for p in structure.paragraphs}
    paragraphs = [by_index[i] for i in section.paragraph_indexes if i in by_index]

    lengths: list[int] = []
    passive = 0
    for paragraph in paragraphs:
        for sentence in split_sentences(text[paragraph.offset : paragraph.end], base=paragraph.offset):
            lengths.append(word_count(sentence.text))
            if PASSIVE_RE.search(sentence.text):
                passive += 1

    words = iter_words(text[start:end], base=start)
    facts.words = len(words)
    facts.sentences = len(lengths)
    if lengths:
        facts.avg_sentence_length = statistics.fmean(lengths)
        facts.long_sentence_share = sum(1 for n in lengths if n > 35) / len(lengths)
        facts.short_sentence_share = sum(1 for n in lengths if n < 6) / len(lengths)
        facts.passive_ratio = passive / len(lengths)
    if paragraphs:
        facts.avg_paragraph_words = statistics.fmean(p.word_count for p in paragraphs)
        total = sum(p.word_count for p in paragraphs) or 1
        facts.dialogue_ratio = sum(p.word_count for p in paragraphs if p.type == ParagraphType.DIALOGUE) / total
        facts.exposition_share = (
            sum(p.word_count for p in paragraphs if p.type in (ParagraphType.EXPOSITION, ParagraphType.DESCRIPTION))
            / total
        )
        facts.tension = statistics.fmean(p.tension for p in paragraphs)
    if words:
        facts.adverb_density = sum(1 for w, _ in words if is_adverb(w, lexicon)) / len(words)
        facts.filter_density = sum(1 for w, _ in words if w in lexicon.filter_words) / len(words)

    facts.cliches = sum(1 for c in style.flags.cliche_instances if start <= c.offset < end)
    facts.repeated_phrases = sum(
        1 for r in style.flags.repeated_phrases for o in r.offsets if start <= o < end
    )
    facts.open_promises = sum(1 for p in timeline.promises if not p.resolved and start <= p.offset < end)
    facts.contradictions = sum(1 for c in contradictions if start <= c.offset < end)

    if lore is not None:
        lowered = text[start:end].lower()
        facts.anachronisms = sorted(
            term for term in lore.anachronisms if re.search(r"\b" + re.escape(term.lower()) + r"\b", lowered)
        )

    facts.protagonist_known = bool(protagonists)
    facts.protagonist_present = any(
        start <= m.offset < end for node in protagonists for m in node.mentions
    )

    scene = next((s for s in structure.scenes if s.id == section.scene_id), None)
    facts.has_location = (scene is not None and scene.location is not None) or any(
        node.type == EntityType.LOCATION and any(start <= m.offset < end for m in node.mentions)
        for node in entities.nodes
    )
    return facts


def _score(facts: SectionFacts, injected_setting: float) -> RiskScores:
    plot = 0.35 * facts.open_promises + 0.5 * facts.contradictions

    long_risk = (facts.avg_sentence_length - 20) / 20
    short_risk = (10 - facts.avg_sentence_length) / 10 if facts.sentences >= 3 else 0.0
    density_risk = (facts.avg_paragraph_words - 150) / 150
    pacing = max(long_risk, short_risk, density_risk, 0.0)

    character = (0.6 if facts.protagonist_known and not facts.protagonist_present else 0.0) + facts.passive_ratio

    setting = max(
        injected_setting,
        0.4 * len(facts.anachronisms),
        0.0 if facts.has_location else 0.2,
    )

    style = (
        0.4 * min(facts.adverb_density / 0.04, 1.0)
        + 0.3 * min(facts.filter_density / 0.04, 1.0)
        + 0.2 * min(facts.cliches, 1)
        + 0.1 * min(facts.repeated_phrases / 3, 1.0)
    )
    return RiskScores(
        plot=round(_unit(plot), 4),
        pacing=round(_unit(pacing), 4),
        character=round(_unit(character), 4),
        setting=round(_unit(setting), 4),
        style=round(_unit(style), 4),
    )


def _protagonists(graph: EntityGraph, lore: LoreContext | None, lexicon: Lexicon) -> list[EntityNode]:
    if lore is not None and lore.protagonists():
        nodes = [_lore_node(graph, c.name, c.aliases, lexicon) for c in lore.protagonists()]
        return [n for n in nodes if n is not None]
    # Without lore the most mentioned recurring character stands in
    characters = [n for n in graph.nodes if n.type == EntityType.CHARACTER and n.mention_count >= 3]
    return characters[:1]


def _lore_node(graph: EntityGraph, name: str, aliases: list[str], lexicon: Lexicon) -> EntityNode | None:
    for surface in (name, *aliases):
        node = graph.node_by_name(surface)
        if node is not None:
            return node
    keys = {entity_key(s, lexicon) for s in (name, *aliases)}
    for node in graph.nodes:
        if entity_key(node.name, lexicon) in keys:
            return node
    return None


def _attribute_name(raw: str) -> str:
    name = raw.strip().lower().replace(" ", "_").replace("-", "_")
    return _ATTRIBUTE_ALIASES.get(name, name)


def _worst_dimension(scores: RiskScores) -> str:
    values = scores.model_dump()
    return max(sorted(values), key=lambda k: values[k])


def _unit(value: float) -> float:
    return max(0.0, min(value, 1.0))
