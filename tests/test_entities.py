"""Tests for manuscript_intel.services.extraction.entities."""

from __future__ import annotations

from manuscript_intel.schemas.delta import ManuscriptDelta
from manuscript_intel.schemas.entities import EntityType, RelationshipType
from manuscript_intel.services.delta import diff_texts
from manuscript_intel.services.extraction import extract_entities, update_entity_graph
from manuscript_intel.services.structural import analyze_structure


def _extract(text: str, config, chapter_id: str = "ch1"):
    structure = analyze_structure(text, chapter_id, config)
    return extract_entities(text, structure, chapter_id, config)


def _offsets(graph) -> dict[str, list[int]]:
    return {n.id: [m.offset for m in n.mentions] for n in graph.nodes}


class TestExtractEntities:

    def test_dialogue_speakers_and_one_interaction(self, config):
        text = 'Mr. Marcus said, "Hello." Elena replied, "Hi, Marcus."'
        graph = _extract(text, config)

        assert {n.name for n in graph.nodes} == {"Marcus", "Elena"}
        assert all(n.type == EntityType.CHARACTER for n in graph.nodes)
        marcus = graph.node_by_name("Marcus")
        assert "Mr. Marcus" in marcus.aliases
        assert marcus.mention_count == 2

        assert len(graph.edges) == 1
        edge = graph.edges[0]
        assert edge.type == RelationshipType.INTERACTS
        assert edge.co_occurrences == 1
        assert {edge.source, edge.target} == {n.id for n in graph.nodes}

    def test_calendar_word_is_not_an_entity(self, config):
        text = "The Monday meeting started early. Elena laughed. Elena waited."
        graph = _extract(text, config)
        assert graph.node_by_name("Monday") is None
        assert all("monday" not in n.name.lower() for n in graph.nodes)
        assert graph.node_by_name("Elena") is not None

    def test_month_name_kept_as_character_outside_dates(self, config):
        text = "In May the river rose. June laughed. June waited by the door."
        graph = _extract(text, config)
        assert graph.node_by_name("May") is None
        june = graph.node_by_name("June")
        assert june is not None
        assert june.mention_count == 2

    def test_single_weak_sighting_is_dropped(self, config):
        graph = _extract("Tobias left.", config)
        assert graph.nodes == []

    def test_empty_text(self, config):
        graph = _extract("", config)
        assert graph.nodes == []
        assert graph.edges == []

    def test_alias_binds_to_existing_entity(self, config):
        text = "Marcus, known as the Hawk, drew his sword. Marcus laughed. The Hawk never missed."
        graph = _extract(text, config)
        marcus = graph.node_by_name("Marcus")
        assert marcus is not None
        assert "the Hawk" in marcus.aliases
        assert graph.node_by_name("the hawk") is marcus
        assert marcus.mention_count == 4
        assert {text[m.offset : m.offset + m.length] for m in marcus.mentions} == {"Marcus", "Hawk"}

    def test_attributes_observed(self, config):
        graph = _extract("Elena had green eyes. Elena smiled.", config)
        elena = graph.node_by_name("Elena")
        assert elena.attributes == {"eye_color": ["green"]}

    def test_location_typed_by_votes(self, config):
        graph = _extract("They rode into the Iron Keep. The Iron Keep was silent.", config)
        keep = graph.node_by_name("Iron Keep")
        assert keep is not None
        assert keep.type == EntityType.LOCATION
        assert keep.mention_count == 2

    def test_mentions_sorted_and_counted(self, config, dialogue_chapter):
        graph = _extract(dialogue_chapter, config)
        for node in graph.nodes:
            offsets = [m.offset for m in node.mentions]
            assert offsets == sorted(offsets)
            assert node.mention_count == len(offsets)
            assert node.first_mention == offsets[0]
            assert all(m.chapter_id == "ch1" for m in node.mentions)

    def test_ids_deterministic(self, config, dialogue_chapter):
        first = _extract(dialogue_chapter, config)
        second = _extract(dialogue_chapter, config)
        assert [n.id for n in first.nodes] == [n.id for n in second.nodes]
        assert [e.id for e in first.edges] == [e.id for e in second.edges]


class TestUpdateEntityGraph:

    BEFORE = "Marcus walked to the gate. Marcus waited.\n\nElena slept. Elena dreamed."
    INSERTED = "Tobias arrived. Tobias laughed.\n\n"

    def test_insert_matches_full_extraction(self, config):
        previous = _extract(self.BEFORE, config)
        after = self.INSERTED + self.BEFORE
        structure = analyze_structure(after, "ch1", config)
        delta = ManuscriptDelta(changed_ranges=diff_texts(self.BEFORE, after, config))

        updated = update_entity_graph(previous, after, structure, delta, "ch1", config)
        full = extract_entities(after, structure, "ch1", config)

        assert _offsets(updated) == _offsets(full)
        assert {n.name for n in updated.nodes} == {"Tobias", "Marcus", "Elena"}

    def test_previous_graph_not_mutated(self, config):
        previous = _extract(self.BEFORE, config)
        snapshot = previous.model_dump()
        after = self.INSERTED + self.BEFORE
        structure = analyze_structure(after, "ch1", config)
        delta = ManuscriptDelta(changed_ranges=diff_texts(self.BEFORE, after, config))

        update_entity_graph(previous, after, structure, delta, "ch1", config)
        assert previous.model_dump() == snapshot

    def test_no_changes_returns_copy(self, config):
        previous = _extract(self.BEFORE, config)
        structure = analyze_structure(self.BEFORE, "ch1", config)
        updated = update_entity_graph(previous, self.BEFORE, structure, ManuscriptDelta(), "ch1", config)
        assert updated == previous
        assert updated is not previous

    def test_full_recompute_without_previous(self, config):
        structure = analyze_structure(self.BEFORE, "ch1", config)
        updated = update_entity_graph(
            None, self.BEFORE, structure, ManuscriptDelta(full_recompute=True), "ch1", config
        )
        assert _offsets(updated) == _offsets(_extract(self.BEFORE, config))
