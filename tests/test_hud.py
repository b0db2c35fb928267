"""Tests for manuscript_intel.services.hud."""

from __future__ import annotations

import pytest

from manuscript_intel.schemas.delta import ChangeType, ManuscriptDelta, TextChange
from manuscript_intel.schemas.entities import EntityEdge, EntityGraph, EntityNode, EntityType, Mention
from manuscript_intel.schemas.heatmap import AttentionHeatmap, Contradiction, HeatmapSection, RiskFlag
from manuscript_intel.schemas.hud import PacingLabel, ProcessingTier, TensionLevel
from manuscript_intel.schemas.structure import (
    ClassifiedParagraph,
    ParagraphType,
    Scene,
    StructuralFingerprint,
    StructuralStats,
)
from manuscript_intel.schemas.style import StyleFingerprint
from manuscript_intel.schemas.timeline import PlotPromise, PromiseType, Timeline, TimelineEvent
from manuscript_intel.services.hud import CONTRADICTION_SEVERITY, build_hud, pacing_label, tension_label
from manuscript_intel.services.structural import analyze_structure

LONG = "x" * 600
HUD_BYTES = 16_000


def _layers(words: int):
    """Synthetic layers whose volume grows with the chapter's word count."""
    length = words * 6
    paragraphs = [
        ClassifiedParagraph(
            index=i,
            offset=i * 300,
            length=290,
            type=ParagraphType.EXPOSITION,
            sentence_count=3,
            avg_sentence_length=16.0,
            word_count=50,
        )
        for i in range(words // 50)
    ]
    scenes = [
        Scene(id=f"scene_{i}", start_offset=i * 3000, end_offset=i * 3000 + 2990, pov=LONG, tension=0.5)
        for i in range(max(words // 500, 1))
    ]
    nodes = [
        EntityNode(
            id=f"ent_{i}",
            name=f"Name{i}{LONG}",
            type=EntityType.CHARACTER,
            aliases=[f"Alias{j}" for j in range(20)],
            mention_count=3,
            mentions=[Mention(offset=(i * 37 + k * 101) % length) for k in range(3)],
        )
        for i in range(words // 10)
    ]
    edges = [
        EntityEdge(id=f"rel_{i}", source=f"ent_{i}", target=f"ent_{i + 1}", co_occurrences=i % 5)
        for i in range(len(nodes) - 1)
    ]
    timeline = Timeline(
        events=[TimelineEvent(id=f"evt_{i}", description=LONG, offset=i * 120) for i in range(words // 50)],
        promises=[
            PlotPromise(id=f"p_{i}", type=PromiseType.SETUP, description=LONG, quote=LONG, offset=i * 120)
            for i in range(words // 50)
        ],
    )
    heatmap = AttentionHeatmap(
        sections=[
            HeatmapSection(
                section_id=f"section_{i}",
                offset=i * 1800,
                length=1790,
                overall_risk=0.5,
                flags=[RiskFlag.PACING_SLOW, RiskFlag.ADVERB_OVERUSE],
                suggestions=[LONG, LONG],
            )
            for i in range(words // 300)
        ]
    )
    delta = ManuscriptDelta(
        changed_ranges=[
            TextChange(start=i, end=i + 1, change_type=ChangeType.MODIFY, old_text=LONG, new_text=LONG, timestamp=i)
            for i in range(words // 100)
        ]
    )
    structure = StructuralFingerprint(
        scenes=scenes,
        paragraphs=paragraphs,
        stats=StructuralStats(total_words=words, avg_sentence_length=16.0),
    )
    return structure, EntityGraph(nodes=nodes, edges=edges), timeline, StyleFingerprint(), heatmap, delta, length


class TestHudSize:

    @pytest.mark.parametrize("words", [500, 5_000, 50_000])
    def test_serialized_size_is_bounded(self, config, words):
        structure, graph, timeline, style, heatmap, delta, length = _layers(words)
        hud = build_hud(
            structure, graph, timeline, style, heatmap, delta, cursor=length // 2, config=config, text_length=length
        )
        assert len(hud.model_dump_json()) < HUD_BYTES
        assert len(hud.context.active_entities) <= config.hud_max_entities
        assert len(hud.context.active_relationships) <= config.hud_max_relationships
        assert len(hud.context.open_promises) <= config.hud_max_promises
        assert len(hud.context.recent_events) <= config.hud_max_events
        assert len(hud.prioritized_issues) <= config.hud_max_issues
        assert len(hud.recent_changes) <= config.hud_max_changes
        assert all(len(e.aliases) <= 5 for e in hud.context.active_entities)
        assert all(len(e.name) <= config.hud_text_chars for e in hud.context.active_entities)
        assert hud.stats.word_count == words


class TestBuildHud:

    def test_tier_and_clock(self, config, fixed_clock):
        empty = (StructuralFingerprint(), EntityGraph(), Timeline(), StyleFingerprint(), AttentionHeatmap(), ManuscriptDelta())
        background = build_hud(*empty, config=config, clock=fixed_clock)
        assert background.processing_tier == ProcessingTier.BACKGROUND
        assert background.last_full_process == 1_700_000_000.0

        instant = build_hud(*empty, tier=ProcessingTier.INSTANT, config=config, clock=fixed_clock)
        assert instant.last_full_process == 0.0
        carried = build_hud(
            *empty, tier=ProcessingTier.INSTANT, config=config, clock=fixed_clock, last_full_process=5.0
        )
        assert carried.last_full_process == 5.0

    def test_mentions_near_cursor_rank_first(self, config):
        far = EntityNode(
            id="ent_far",
            name="Farran",
            type=EntityType.CHARACTER,
            mention_count=3,
            mentions=[Mention(offset=o) for o in (0, 10, 20)],
        )
        near = EntityNode(
            id="ent_near",
            name="Nearly",
            type=EntityType.CHARACTER,
            mention_count=2,
            mentions=[Mention(offset=o) for o in (9000, 9010)],
        )
        hud = build_hud(
            StructuralFingerprint(),
            EntityGraph(nodes=[far, near]),
            Timeline(),
            StyleFingerprint(),
            AttentionHeatmap(),
            ManuscriptDelta(),
            cursor=9005,
            config=config,
            text_length=10_000,
        )
        assert [e.name for e in hud.context.active_entities] == ["Nearly", "Farran"]

    def test_only_promises_before_cursor(self, config):
        timeline = Timeline(
            promises=[
                PlotPromise(id="early", type=PromiseType.GOAL, description="a", quote="a", offset=10),
                PlotPromise(id="late", type=PromiseType.GOAL, description="b", quote="b", offset=900),
                PlotPromise(id="done", type=PromiseType.GOAL, description="c", quote="c", offset=5, resolved=True),
            ]
        )
        hud = build_hud(
            StructuralFingerprint(),
            EntityGraph(),
            timeline,
            StyleFingerprint(),
            AttentionHeatmap(),
            ManuscriptDelta(),
            cursor=100,
            config=config,
            text_length=1000,
        )
        assert [p.id for p in hud.context.open_promises] == ["early"]
        assert hud.stats.open_promise_count == 2

    def test_contradictions_become_top_issues(self, config):
        heatmap = AttentionHeatmap(
            sections=[
                HeatmapSection(
                    section_id="s",
                    offset=0,
                    length=10,
                    overall_risk=0.4,
                    flags=[RiskFlag.PACING_SLOW],
                    suggestions=["Split long sentences."],
                )
            ],
            contradictions=[
                Contradiction(
                    entity_id="ent_e",
                    entity_name="Elena",
                    attribute="eye_color",
                    observed="green",
                    expected="blue",
                    offset=3,
                )
            ],
        )
        hud = build_hud(
            StructuralFingerprint(), EntityGraph(), Timeline(), StyleFingerprint(), heatmap, ManuscriptDelta(), config=config
        )
        assert [i.type for i in hud.prioritized_issues] == [RiskFlag.CONTRADICTION_DETECTED, RiskFlag.PACING_SLOW]
        assert hud.prioritized_issues[0].severity == CONTRADICTION_SEVERITY == 0.9
        assert "Elena" in hud.prioritized_issues[0].description

    def test_situational_awareness(self, config, scene_break_chapter):
        structure = analyze_structure(scene_break_chapter, "ch1", config)
        cursor = scene_break_chapter.index("sharpened")
        hud = build_hud(
            structure,
            EntityGraph(),
            Timeline(),
            StyleFingerprint(),
            AttentionHeatmap(),
            ManuscriptDelta(),
            cursor=cursor,
            config=config,
            text_length=len(scene_break_chapter),
        )
        situational = hud.situational
        assert situational.current_scene.pov == "Marcus"
        assert situational.narrative_position.scene_index == 1
        assert situational.narrative_position.total_scenes == 3
        assert situational.current_paragraph.offset <= cursor
        assert 0 < situational.narrative_position.percent_complete < 100


class TestLabels:

    @pytest.mark.parametrize(
        ("tension", "label"),
        [(0.0, TensionLevel.LOW), (0.4, TensionLevel.MEDIUM), (0.9, TensionLevel.HIGH)],
    )
    def test_tension_label(self, tension, label):
        assert tension_label(tension) == label

    @pytest.mark.parametrize(
        ("length", "label"),
        [(0.0, PacingLabel.MODERATE), (8.0, PacingLabel.FAST), (15.0, PacingLabel.MODERATE), (30.0, PacingLabel.SLOW)],
    )
    def test_pacing_label(self, length, label):
        assert pacing_label(length) == label
