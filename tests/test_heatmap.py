"""Tests for manuscript_intel.services.heatmap."""

from __future__ import annotations

import pytest

from manuscript_intel.schemas.entities import EntityGraph, EntityNode, EntityType
from manuscript_intel.schemas.heatmap import RiskFlag
from manuscript_intel.schemas.lore import LoreCharacter, LoreContext
from manuscript_intel.schemas.style import StyleFingerprint
from manuscript_intel.schemas.timeline import Timeline
from manuscript_intel.services.extraction import extract_entities
from manuscript_intel.services.heatmap import FLAG_RULES, detect_lore_contradictions, score_heatmap
from manuscript_intel.services.structural import analyze_structure
from manuscript_intel.services.style import analyze_style
from manuscript_intel.services.timeline import build_timeline

SLOW_SENTENCE = "The caravan crawled " + "through the dust and the heat of the long dry valley " * 4 + "until the light failed."

TWO_SCENES = (
    "Elena crossed the courtyard in the rain. Elena smiled at the guards.\n\n"
    "Marcus sharpened his sword in the armory. Marcus thought about the war."
)


def _heatmap(text: str, config, lore=None, setting_scores=None):
    structure = analyze_structure(text, "ch1", config)
    entities = extract_entities(text, structure, "ch1", config)
    timeline = build_timeline(text, structure, "ch1", None, config)
    style = analyze_style(text, structure, config)
    return structure, entities, score_heatmap(
        text, structure, entities, timeline, style, lore, setting_scores, config=config
    )


class TestScoreHeatmap:

    def test_long_sentences_flag_slow_pacing(self, config):
        text = " ".join([SLOW_SENTENCE] * 3)
        _, _, heatmap = _heatmap(text, config)
        assert len(heatmap.sections) == 1
        section = heatmap.sections[0]
        assert RiskFlag.PACING_SLOW in section.flags
        assert RiskFlag.LONG_SENTENCES in section.flags
        assert RiskFlag.DIALOGUE_HEAVY not in section.flags
        assert section.scores.pacing == 1.0
        assert len(section.suggestions) == len(section.flags)

    def test_sections_mirror_structure(self, small_sections, dialogue_chapter):
        structure, _, heatmap = _heatmap(dialogue_chapter, small_sections)
        assert [s.section_id for s in heatmap.sections] == [s.id for s in structure.sections]
        for scored, section in zip(heatmap.sections, structure.sections):
            assert scored.offset == section.start_offset
            assert scored.length == section.end_offset - section.start_offset
            assert 0.0 <= scored.overall_risk <= 1.0

    def test_injected_setting_score(self, config):
        structure = analyze_structure(TWO_SCENES, "ch1", config)
        scores = {structure.sections[0].id: 0.9}
        _, _, heatmap = _heatmap(TWO_SCENES, config, setting_scores=scores)
        assert heatmap.sections[0].scores.setting == pytest.approx(0.9)
        assert RiskFlag.SETTING_UNCLEAR in heatmap.sections[0].flags

    def test_missing_protagonist(self, small_sections):
        lore = LoreContext(characters=[LoreCharacter(name="Elena", is_protagonist=True)])
        _, entities, heatmap = _heatmap(TWO_SCENES, small_sections, lore=lore)
        assert entities.node_by_name("Elena") is not None
        assert len(heatmap.sections) == 2
        assert RiskFlag.CHARACTER_ABSENT not in heatmap.sections[0].flags
        assert RiskFlag.CHARACTER_ABSENT in heatmap.sections[1].flags
        assert heatmap.sections[1].scores.character >= 0.6

    def test_anachronism_raises_setting_risk(self, config):
        lore = LoreContext(anachronisms=["telephone"])
        text = "Elena picked up the telephone in the tavern. Elena listened."
        _, _, heatmap = _heatmap(text, config, lore=lore)
        assert heatmap.sections[0].scores.setting >= 0.4

    def test_hotspots_ranked_and_capped(self, small_sections, dialogue_chapter):
        _, _, heatmap = _heatmap(dialogue_chapter, small_sections)
        severities = [h.severity for h in heatmap.hotspots]
        assert severities == sorted(severities, reverse=True)
        assert len(heatmap.hotspots) <= small_sections.hotspot_count
        assert all(h.severity > 0 for h in heatmap.hotspots)

    def test_empty_chapter(self, config):
        heatmap = score_heatmap("", analyze_structure("", "ch1", config), EntityGraph(), Timeline(), StyleFingerprint())
        assert heatmap.sections == []
        assert heatmap.hotspots == []

    def test_every_flag_has_one_rule(self):
        assert sorted(r.flag for r in FLAG_RULES) == sorted(RiskFlag)


class TestLoreContradictions:

    def test_contradiction_flagged(self, config):
        lore = LoreContext(characters=[LoreCharacter(name="Elena", attributes={"eyes": "blue"})])
        _, _, heatmap = _heatmap("Elena had green eyes. Elena smiled.", config, lore=lore)
        assert len(heatmap.contradictions) == 1
        contradiction = heatmap.contradictions[0]
        assert (contradiction.attribute, contradiction.observed, contradiction.expected) == (
            "eye_color",
            "green",
            "blue",
        )
        assert contradiction.offset == 0
        assert RiskFlag.CONTRADICTION_DETECTED in heatmap.sections[0].flags

    def test_contained_values_agree(self):
        node = EntityNode(
            id="ent_e", name="Elena", type=EntityType.CHARACTER, attributes={"eye_color": ["brown"]}
        )
        lore = LoreContext(characters=[LoreCharacter(name="Elena", attributes={"eye colour": "dark brown"})])
        assert detect_lore_contradictions(EntityGraph(nodes=[node]), lore) == []

    def test_lore_alias_matches_node(self):
        node = EntityNode(
            id="ent_m", name="Marcus", type=EntityType.CHARACTER, first_mention=7, attributes={"age": ["42"]}
        )
        lore = LoreContext(characters=[LoreCharacter(name="Marcus Vale", aliases=["Marcus"], attributes={"age": "30"})])
        found = detect_lore_contradictions(EntityGraph(nodes=[node]), lore)
        assert [(c.entity_id, c.offset) for c in found] == [("ent_m", 7)]

    def test_no_lore(self):
        assert detect_lore_contradictions(EntityGraph(), None) == []
