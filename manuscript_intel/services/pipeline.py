"""Analysis pipeline: composes the stages for each processing tier.

  instant     reclassify the paragraph under the caret, refresh the HUD
  debounced   structure, delta, incremental entities, timeline
  background  every stage from scratch, heatmap and lore checks included

Each stage is wrapped with ``guarded`` so a failing stage degrades to its
empty artifact, and each public entry point returns a best-effort
``ManuscriptIntelligence`` whatever happens inside it. Nothing here mutates
the ``previous`` snapshot.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.ids import content_hash
from manuscript_intel.core.lexicon import Lexicon, load_lexicon
from manuscript_intel.core.logging import get_logger, pipeline_context
from manuscript_intel.core.resilience import guarded
from manuscript_intel.schemas.delta import EditEvent, ManuscriptDelta
from manuscript_intel.schemas.entities import EntityGraph
from manuscript_intel.schemas.heatmap import AttentionHeatmap
from manuscript_intel.schemas.hud import ManuscriptHUD, ManuscriptIntelligence, ProcessingTier
from manuscript_intel.schemas.lore import LoreContext
from manuscript_intel.schemas.structure import ClassifiedParagraph, StructuralFingerprint
from manuscript_intel.schemas.style import StyleFingerprint
from manuscript_intel.schemas.timeline import Timeline
from manuscript_intel.services.delta import compute_delta
from manuscript_intel.services.extraction import extract_entities, update_entity_graph
from manuscript_intel.services.heatmap import score_heatmap
from manuscript_intel.services.hud import build_hud
from manuscript_intel.services.structural import analyze_structure, reclassify_paragraph
from manuscript_intel.services.style import analyze_style
from manuscript_intel.services.timeline import build_timeline

logger = get_logger(__name__)

safe_structure = guarded("structure", StructuralFingerprint)(analyze_structure)
safe_reclassify = guarded("reclassify", lambda: None)(reclassify_paragraph)
safe_entities = guarded("entities", EntityGraph)(extract_entities)
safe_update_entities = guarded("entities", EntityGraph)(update_entity_graph)
safe_timeline = guarded("timeline", Timeline)(build_timeline)
safe_style = guarded("style", StyleFingerprint)(analyze_style)
safe_heatmap = guarded("heatmap", AttentionHeatmap)(score_heatmap)
safe_delta = guarded("delta", lambda: ManuscriptDelta(full_recompute=True))(compute_delta)
safe_hud = guarded("hud", ManuscriptHUD)(build_hud)


def analyze_chapter(
    text: str,
    chapter_id: str = "",
    previous: ManuscriptIntelligence | None = None,
    previous_text: str | None = None,
    lore: LoreContext | None = None,
    setting_scores: dict[str, float] | None = None,
    edits: list[EditEvent] | None = None,
    cursor: int | None = None,
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
    clock: Callable[[], float] = time.time,
) -> ManuscriptIntelligence:
    """Full analysis of one chapter snapshot (background quality).

    Every layer is recomputed. ``previous`` and ``previous_text`` feed the
    delta, the monotonic promise resolution and the upgrade-only edge types.
    """

    def run() -> ManuscriptIntelligence:
        return _full_pass(
            text, chapter_id, previous, previous_text, lore, setting_scores, edits, cursor, config, lexicon, clock
        )

    return _total(chapter_id, previous, ProcessingTier.BACKGROUND, run)


def run_instant(
    text: str,
    offset: int,
    chapter_id: str = "",
    previous: ManuscriptIntelligence | None = None,
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
    clock: Callable[[], float] = time.time,
) -> ManuscriptIntelligence:
    """Paragraph-local refresh: reclassify under the caret, rebuild the HUD.

    Every other layer is carried over from ``previous`` unchanged.
    """

    def run() -> ManuscriptIntelligence:
        config_ = config or settings
        paragraph = safe_reclassify(text, offset, chapter_id, config_, lexicon)
        base = previous.model_copy(deep=True) if previous else ManuscriptIntelligence(chapter_id=chapter_id)
        structure = _with_paragraph(base.structural, paragraph)
        hud = safe_hud(
            structure,
            base.entities,
            base.timeline,
            base.style,
            base.heatmap,
            base.delta,
            cursor=offset,
            tier=ProcessingTier.INSTANT,
            config=config_,
            clock=clock,
            text_length=len(text),
            last_full_process=base.hud.last_full_process,
        )
        return base.model_copy(update={"structural": structure, "hud": hud})

    return _total(chapter_id, previous, ProcessingTier.INSTANT, run)


def run_debounced(
    text: str,
    chapter_id: str = "",
    previous: ManuscriptIntelligence | None = None,
    previous_text: str | None = None,
    edits: list[EditEvent] | None = None,
    cursor: int | None = None,
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
    clock: Callable[[], float] = time.time,
) -> ManuscriptIntelligence:
    """Structure, delta, delta-scoped entity update and timeline.

    Style and heatmap are carried over from ``previous``; they belong to the
    background tier.
    """

    def run() -> ManuscriptIntelligence:
        config_ = config or settings
        lexicon_ = lexicon or load_lexicon(config_.lexicon_path)
        structure = safe_structure(text, chapter_id, config_, lexicon_)
        timeline = safe_timeline(
            text, structure, chapter_id, previous.timeline if previous else None, config_
        )
        delta = safe_delta(previous_text, text, previous, timeline, edits, clock, config_)
        entities = safe_update_entities(
            previous.entities if previous else None, text, structure, delta, chapter_id, config_, lexicon_
        )
        style = previous.style.model_copy(deep=True) if previous else StyleFingerprint()
        heatmap = previous.heatmap.model_copy(deep=True) if previous else AttentionHeatmap()
        hud = safe_hud(
            structure,
            entities,
            timeline,
            style,
            heatmap,
            delta,
            cursor=cursor,
            tier=ProcessingTier.DEBOUNCED,
            config=config_,
            clock=clock,
            text_length=len(text),
            last_full_process=previous.hud.last_full_process if previous else 0.0,
        )
        return ManuscriptIntelligence(
            chapter_id=chapter_id,
            text_hash=content_hash(text),
            structural=structure,
            entities=entities,
            timeline=timeline,
            style=style,
            heatmap=heatmap,
            delta=delta,
            hud=hud,
        )

    return _total(chapter_id, previous, ProcessingTier.DEBOUNCED, run)


def run_background(
    text: str,
    chapter_id: str = "",
    previous: ManuscriptIntelligence | None = None,
    previous_text: str | None = None,
    lore: LoreContext | None = None,
    setting_scores: dict[str, float] | None = None,
    edits: list[EditEvent] | None = None,
    cursor: int | None = None,
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
    clock: Callable[[], float] = time.time,
) -> ManuscriptIntelligence:
    """Full recompute of every layer; same as ``analyze_chapter``."""
    return analyze_chapter(
        text,
        chapter_id,
        previous=previous,
        previous_text=previous_text,
        lore=lore,
        setting_scores=setting_scores,
        edits=edits,
        cursor=cursor,
        config=config,
        lexicon=lexicon,
        clock=clock,
    )


def _full_pass(
    text: str,
    chapter_id: str,
    previous: ManuscriptIntelligence | None,
    previous_text: str | None,
    lore: LoreContext | None,
    setting_scores: dict[str, float] | None,
    edits: list[EditEvent] | None,
    cursor: int | None,
    config: Settings | None,
    lexicon: Lexicon | None,
    clock: Callable[[], float],
) -> ManuscriptIntelligence:
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)
    started = time.perf_counter()

    structure = safe_structure(text, chapter_id, config, lexicon)
    entities = safe_entities(
        text, structure, chapter_id, config, lexicon, previous_edges=previous.entities.edges if previous else None
    )
    timeline = safe_timeline(text, structure, chapter_id, previous.timeline if previous else None, config)
    style = safe_style(text, structure, config, lexicon)
    heatmap = safe_heatmap(
        text, structure, entities, timeline, style, lore, setting_scores, config=config, lexicon=lexicon
    )
    delta = safe_delta(previous_text, text, previous, timeline, edits, clock, config)
    hud = safe_hud(
        structure,
        entities,
        timeline,
        style,
        heatmap,
        delta,
        cursor=cursor,
        tier=ProcessingTier.BACKGROUND,
        config=config,
        clock=clock,
        text_length=len(text),
    )
    intelligence = ManuscriptIntelligence(
        chapter_id=chapter_id,
        text_hash=content_hash(text),
        structural=structure,
        entities=entities,
        timeline=timeline,
        style=style,
        heatmap=heatmap,
        delta=delta,
        hud=hud,
    )
    logger.info(
        "chapter_analyzed",
        words=structure.stats.total_words,
        entities=len(entities.nodes),
        promises=len(timeline.promises),
        hotspots=len(heatmap.hotspots),
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return intelligence


def _with_paragraph(
    structure: StructuralFingerprint,
    paragraph: ClassifiedParagraph | None,
) -> StructuralFingerprint:
    """Structure with one paragraph replaced by its reclassified version."""
    if paragraph is None:
        return structure
    paragraphs = list(structure.paragraphs)
    for i, existing in enumerate(paragraphs):
        if existing.index == paragraph.index:
            paragraphs[i] = paragraph.model_copy(update={"scene_id": existing.scene_id})
            break
    else:
        paragraphs.append(paragraph)
        paragraphs.sort(key=lambda p: p.offset)
    return structure.model_copy(update={"paragraphs": paragraphs})


def _total(
    chapter_id: str,
    previous: ManuscriptIntelligence | None,
    tier: ProcessingTier,
    run: Callable[[], ManuscriptIntelligence],
) -> ManuscriptIntelligence:
    with pipeline_context(chapter_id, tier):
        try:
            return run()
        except Exception as exc:
            # Stages are guarded individually; this catches assembly failures
            logger.exception("pipeline_failed", error_type=type(exc).__name__, error=str(exc))
            if previous is not None:
                return previous.model_copy(deep=True)
            return ManuscriptIntelligence(chapter_id=chapter_id)
