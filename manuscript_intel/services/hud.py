"""HUD aggregation: one size-bounded digest of every intelligence layer.

Every list in the HUD is capped by a ``Settings.hud_*`` limit and every
free-text field is truncated to ``hud_text_chars``, so the serialized HUD of
a 50,000-word chapter is no larger than that of a 5,000-word one.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.text import clamp, truncate
from manuscript_intel.schemas.delta import ManuscriptDelta
from manuscript_intel.schemas.entities import EntityGraph, EntityNode
from manuscript_intel.schemas.heatmap import AttentionHeatmap, RiskFlag
from manuscript_intel.schemas.hud import (
    ChangeSummary,
    EntitySummary,
    EventSummary,
    HUDStats,
    ManuscriptHUD,
    NarrativePosition,
    PacingLabel,
    ParagraphSummary,
    PrioritizedIssue,
    ProcessingTier,
    PromiseSummary,
    RelationshipSummary,
    RelevantContext,
    SceneSummary,
    SituationalAwareness,
    TensionLevel,
)
from manuscript_intel.schemas.structure import StructuralFingerprint
from manuscript_intel.schemas.style import StyleFingerprint
from manuscript_intel.schemas.timeline import Timeline

logger = get_logger(__name__)

WORDS_PER_MINUTE = 250
MAX_ALIASES = 5
RECENCY_WEIGHT = 2
CONTRADICTION_SEVERITY = 0.9


def tension_label(tension: float) -> TensionLevel:
    if tension < 0.33:
        return TensionLevel.LOW
    if tension < 0.66:
        return TensionLevel.MEDIUM
    return TensionLevel.HIGH


def pacing_label(avg_sentence_length: float) -> PacingLabel:
    if avg_sentence_length > 22:
        return PacingLabel.SLOW
    if 0 < avg_sentence_length < 12:
        return PacingLabel.FAST
    return PacingLabel.MODERATE


def build_hud(
    structure: StructuralFingerprint,
    entities: EntityGraph,
    timeline: Timeline,
    style: StyleFingerprint,
    heatmap: AttentionHeatmap,
    delta: ManuscriptDelta,
    cursor: int | None = None,
    tier: ProcessingTier = ProcessingTier.BACKGROUND,
    config: Settings | None = None,
    clock: Callable[[], float] = time.time,
    text_length: int | None = None,
    last_full_process: float | None = None,
) -> ManuscriptHUD:
    """Aggregate the layers of one chapter around the cursor.

    Args:
        cursor: Caret offset; the end of the chapter when omitted.
        tier: Tier that produced the layers, recorded on the HUD.
        text_length: Chapter length; inferred from the last paragraph when omitted.
        last_full_process: Time of the last background pass; a background
            HUD stamps ``clock()``.
    """
    config = config or settings
    length = text_length if text_length is not None else (structure.paragraphs[-1].end if structure.paragraphs else 0)
    cursor = clamp(length if cursor is None else cursor, length)
    chars = config.hud_text_chars

    if last_full_process is None:
        last_full_process = clock() if tier == ProcessingTier.BACKGROUND else 0.0

    hud = ManuscriptHUD(
        situational=_situational(structure, cursor, length, chars),
        context=_context(entities, timeline, cursor, config),
        style_alerts=_style_alerts(style, config),
        prioritized_issues=_issues(heatmap, config),
        recent_changes=[
            ChangeSummary(
                start=c.start,
                end=c.end,
                change_type=c.change_type,
                old_text=truncate(c.old_text, chars) if c.old_text else None,
                new_text=truncate(c.new_text, chars) if c.new_text else None,
            )
            for c in sorted(delta.changed_ranges, key=lambda c: (-c.timestamp, c.start))[: config.hud_max_changes]
        ],
        stats=HUDStats(
            word_count=structure.stats.total_words,
            reading_time=round(structure.stats.total_words / WORDS_PER_MINUTE, 1),
            dialogue_percent=round(structure.stats.dialogue_ratio * 100, 1),
            avg_sentence_length=structure.stats.avg_sentence_length,
            entity_count=len(entities.nodes),
            open_promise_count=len(timeline.open_promises()),
        ),
        last_full_process=last_full_process,
        processing_tier=tier,
    )
    logger.debug(
        "hud_built",
        tier=tier,
        entities=len(hud.context.active_entities),
        issues=len(hud.prioritized_issues),
    )
    return hud


def _situational(structure: StructuralFingerprint, cursor: int, length: int, chars: int) -> SituationalAwareness:
    scene = structure.scene_at(cursor) or (structure.scenes[0] if structure.scenes else None)
    paragraph = structure.paragraph_at(cursor) or (structure.paragraphs[0] if structure.paragraphs else None)

    if scene is None:
        return SituationalAwareness(pacing=pacing_label(structure.stats.avg_sentence_length))

    scene_paragraphs = [p for p in structure.paragraphs if p.scene_id == scene.id]
    sentences = sum(p.sentence_count for p in scene_paragraphs)
    words = sum(p.avg_sentence_length * p.sentence_count for p in scene_paragraphs)
    index = structure.scenes.index(scene)

    return SituationalAwareness(
        current_scene=SceneSummary(
            id=scene.id,
            type=scene.type,
            start_offset=scene.start_offset,
            end_offset=scene.end_offset,
            pov=truncate(scene.pov, chars) if scene.pov else None,
            location=truncate(scene.location, chars) if scene.location else None,
            time_marker=truncate(scene.time_marker, chars) if scene.time_marker else None,
            tension=scene.tension,
        ),
        current_paragraph=(
            ParagraphSummary(
                index=paragraph.index,
                offset=paragraph.offset,
                type=paragraph.type,
                speaker=truncate(paragraph.speaker, chars) if paragraph.speaker else None,
                tension=paragraph.tension,
            )
            if paragraph is not None
            else None
        ),
        narrative_position=NarrativePosition(
            scene_index=index,
            total_scenes=len(structure.scenes),
            percent_complete=round(100 * cursor / length, 1) if length else 0.0,
        ),
        tension_level=tension_label(scene.tension),
        pacing=pacing_label(words / sentences if sentences else 0.0),
    )


def _context(entities: EntityGraph, timeline: Timeline, cursor: int, config: Settings) -> RelevantContext:
    chars = config.hud_text_chars
    window = config.hud_cursor_window

    def weight(node: EntityNode) -> int:
        near = sum(1 for m in node.mentions if abs(m.offset - cursor) <= window)
        return node.mention_count + RECENCY_WEIGHT * near

    ranked = sorted(entities.nodes, key=lambda n: (-weight(n), n.name, n.id))[: config.hud_max_entities]
    active_ids = {n.id: n.name for n in ranked}

    relationships = sorted(
        (e for e in entities.edges if e.source in active_ids and e.target in active_ids),
        key=lambda e: (-e.type.rank, -e.co_occurrences, e.id),
    )[: config.hud_max_relationships]

    promises = sorted(
        (p for p in timeline.open_promises() if p.offset <= cursor),
        key=lambda p: (-p.offset, p.id),
    )[: config.hud_max_promises]

    events = sorted(
        (e for e in timeline.events if e.offset <= cursor),
        key=lambda e: (-e.offset, e.id),
    )[: config.hud_max_events]

    return RelevantContext(
        active_entities=[
            EntitySummary(
                id=n.id,
                name=truncate(n.name, chars),
                type=n.type,
                mention_count=n.mention_count,
                aliases=[truncate(a, chars) for a in n.aliases[:MAX_ALIASES]],
            )
            for n in ranked
        ],
        active_relationships=[
            RelationshipSummary(
                source=truncate(active_ids[e.source], chars),
                target=truncate(active_ids[e.target], chars),
                type=e.type,
                co_occurrences=e.co_occurrences,
            )
            for e in relationships
        ],
        open_promises=[
            PromiseSummary(id=p.id, type=p.type, description=truncate(p.description, chars), offset=p.offset)
            for p in promises
        ],
        recent_events=[
            EventSummary(
                id=e.id,
                description=truncate(e.description, chars),
                offset=e.offset,
                relative_position=e.relative_position,
            )
            for e in events
        ],
    )


def _style_alerts(style: StyleFingerprint, config: Settings) -> list[str]:
    flags = style.flags
    alerts: list[str] = []
    if flags.passive_voice_ratio > 0.2:
        alerts.append(f"Passive voice in {flags.passive_voice_ratio:.0%} of sentences")
    if flags.adverb_density > 0.02:
        alerts.append(f"Adverb density {flags.adverb_density:.1%}")
    if flags.filter_word_density > 0.02:
        alerts.append(f"Filter word density {flags.filter_word_density:.1%}")
    if flags.cliche_count:
        example = flags.cliche_instances[0].quote if flags.cliche_instances else ""
        alerts.append(f"{flags.cliche_count} cliche(s), e.g. '{example}'")
    for phrase in flags.repeated_phrases[:2]:
        alerts.append(f"Repeated phrase '{phrase.phrase}' ({phrase.count} times)")
    if style.vocabulary.overused_words:
        alerts.append("Overused: " + ", ".join(style.vocabulary.overused_words[:5]))
    return [truncate(a, config.hud_text_chars) for a in alerts[: config.hud_max_style_alerts]]


def _issues(heatmap: AttentionHeatmap, config: Settings) -> list[PrioritizedIssue]:
    issues = [
        PrioritizedIssue(
            type=flag,
            description=truncate(suggestion, config.hud_text_chars),
            offset=section.offset,
            severity=section.overall_risk,
        )
        for section in heatmap.sections
        for flag, suggestion in zip(section.flags, section.suggestions, strict=False)
    ]
    issues.extend(
        PrioritizedIssue(
            type=RiskFlag.CONTRADICTION_DETECTED,
            description=truncate(
                f"{c.entity_name}: {c.attribute} is '{c.observed}', lore says '{c.expected}'",
                config.hud_text_chars,
            ),
            offset=c.offset,
            severity=CONTRADICTION_SEVERITY,
        )
        for c in heatmap.contradictions
    )
    issues.sort(key=lambda i: (-i.severity, i.offset, i.type))
    return issues[: config.hud_max_issues]
