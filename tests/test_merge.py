"""Tests for manuscript_intel.services.extraction.merge."""

from __future__ import annotations

import pytest

from manuscript_intel.schemas.entities import (
    EntityEdge,
    EntityGraph,
    EntityNode,
    EntityType,
    Mention,
    RelationshipType,
)
from manuscript_intel.services.extraction import entities_in_range, merge_entity_graphs, related_entities


def _node(node_id, name, count, chapter, kind=EntityType.CHARACTER, aliases=(), attributes=None, start=0):
    return EntityNode(
        id=node_id,
        name=name,
        type=kind,
        aliases=list(aliases),
        first_mention=start,
        mention_count=count,
        mentions=[Mention(offset=start + 10 * i, chapter_id=chapter) for i in range(count)],
        attributes=attributes or {},
    )


@pytest.fixture
def chapter_one():
    marcus = _node("ent_m1", "Marcus", 3, "ch1", aliases=["Mr. Marcus"], attributes={"eye_color": ["grey"]})
    elena = _node("ent_e1", "Elena", 2, "ch1", start=5)
    return EntityGraph(
        nodes=[marcus, elena],
        edges=[
            EntityEdge(
                id="rel_1",
                source="ent_e1",
                target="ent_m1",
                type=RelationshipType.INTERACTS,
                co_occurrences=2,
                sentiment=0.5,
                chapters=["ch1"],
                evidence=["They met at the gate."],
            )
        ],
    )


@pytest.fixture
def chapter_two():
    marcus = _node("ent_m2", "Marcus", 2, "ch2", aliases=["the Hawk"], attributes={"age": ["42"]})
    elena = _node("ent_e2", "Elena", 1, "ch2")
    return EntityGraph(
        nodes=[marcus, elena],
        edges=[
            EntityEdge(
                id="rel_2",
                source="ent_e2",
                target="ent_m2",
                type=RelationshipType.OPPOSES,
                co_occurrences=1,
                sentiment=-1.0,
                chapters=["ch2"],
                evidence=["Marcus attacked Elena"],
            )
        ],
    )


class TestMergeEntityGraphs:

    def test_mention_counts_sum_and_aliases_union(self, chapter_one, chapter_two):
        merged = merge_entity_graphs([chapter_one, chapter_two])
        marcus = merged.node_by_name("Marcus")
        assert marcus.mention_count == 5
        assert marcus.aliases == ["Mr. Marcus", "the Hawk"]
        assert len(marcus.mentions) == 5
        assert {m.chapter_id for m in marcus.mentions} == {"ch1", "ch2"}

    def test_attributes_union(self, chapter_one, chapter_two):
        marcus = merge_entity_graphs([chapter_one, chapter_two]).node_by_name("Marcus")
        assert marcus.attributes == {"age": ["42"], "eye_color": ["grey"]}

    def test_edges_remapped_and_strongest_type(self, chapter_one, chapter_two):
        merged = merge_entity_graphs([chapter_one, chapter_two])
        assert len(merged.nodes) == 2
        assert len(merged.edges) == 1
        edge = merged.edges[0]
        ids = {n.id for n in merged.nodes}
        assert {edge.source, edge.target} == ids
        assert edge.type == RelationshipType.OPPOSES
        assert edge.co_occurrences == 3
        assert edge.chapters == ["ch1", "ch2"]
        assert edge.sentiment == pytest.approx(0.0)

    def test_commutative(self, chapter_one, chapter_two, strip_clock):
        forward = merge_entity_graphs([chapter_one, chapter_two])
        backward = merge_entity_graphs([chapter_two, chapter_one])
        assert strip_clock(forward.model_dump()) == strip_clock(backward.model_dump())

    def test_inputs_not_mutated(self, chapter_one, chapter_two):
        before = (chapter_one.model_dump(), chapter_two.model_dump())
        merge_entity_graphs([chapter_one, chapter_two])
        assert (chapter_one.model_dump(), chapter_two.model_dump()) == before

    def test_alias_name_joins_nodes(self):
        hawk = _node("ent_h", "Hawk", 2, "ch2")
        marcus = _node("ent_m", "Marcus", 3, "ch1", aliases=["the Hawk"])
        merged = merge_entity_graphs([EntityGraph(nodes=[marcus]), EntityGraph(nodes=[hawk])])
        assert len(merged.nodes) == 1
        assert merged.nodes[0].name == "Marcus"
        assert merged.nodes[0].mention_count == 5

    def test_type_by_mention_weight(self):
        as_place = _node("ent_1", "Ashford", 4, "ch1", kind=EntityType.LOCATION)
        as_person = _node("ent_2", "Ashford", 1, "ch2")
        merged = merge_entity_graphs([EntityGraph(nodes=[as_place]), EntityGraph(nodes=[as_person])])
        assert merged.nodes[0].type == EntityType.LOCATION

    def test_type_tie_uses_precedence(self):
        a = _node("ent_1", "Ashford", 2, "ch1", kind=EntityType.LOCATION)
        b = _node("ent_2", "Ashford", 2, "ch2", kind=EntityType.CHARACTER)
        merged = merge_entity_graphs([EntityGraph(nodes=[a]), EntityGraph(nodes=[b])])
        assert merged.nodes[0].type == EntityType.CHARACTER

    def test_empty(self):
        merged = merge_entity_graphs([])
        assert merged.nodes == []
        assert merged.edges == []


class TestQueries:

    def test_entities_in_range(self, chapter_one):
        found = entities_in_range(chapter_one, 0, 4)
        assert [n.name for n in found] == ["Marcus"]
        assert entities_in_range(chapter_one, 0, 100, chapter_id="ch9") == []

    def test_related_entities(self, chapter_one, chapter_two):
        merged = merge_entity_graphs([chapter_one, chapter_two])
        marcus = merged.node_by_name("Marcus")
        related = related_entities(merged, marcus.id)
        assert [(n.name, e.type) for n, e in related] == [("Elena", RelationshipType.OPPOSES)]
        assert related_entities(merged, marcus.id, {RelationshipType.ALLIED_WITH}) == []
