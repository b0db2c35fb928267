"""Cross-chapter merge of entity graphs and small read-only graph queries.

Merging works on deep copies of the inputs and is order-free: every field of
a merged node or edge is derived with a commutative rule (sums, sorted
unions, minimums, the strongest relationship type, precedence-ordered
tie-breaks), so ``merge([A, B])`` and ``merge([B, A])`` agree.
"""

from __future__ import annotations

import time
from collections import defaultdict

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.ids import stable_id
from manuscript_intel.core.lexicon import Lexicon, load_lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.schemas.entities import (
    ENTITY_TYPE_PRECEDENCE,
    EntityEdge,
    EntityGraph,
    EntityNode,
    EntityType,
    Mention,
    RelationshipType,
)
from manuscript_intel.services.entity_filter import entity_key

logger = get_logger(__name__)


def merge_entity_graphs(
    graphs: list[EntityGraph],
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> EntityGraph:
    """Fold per-chapter graphs into one manuscript-wide graph.

    Nodes merge by normalized name, and a node whose name is another node's
    alias joins it. Edges are remapped onto the merged ids and merged by
    sorted id pair.
    """
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)
    graphs = [g.model_copy(deep=True) for g in graphs]
    nodes = [n for g in graphs for n in g.nodes]
    if not nodes:
        return EntityGraph(processed_at=time.time())

    parent: dict[str, str] = {}

    def find(key: str) -> str:
        while parent.get(key, key) != key:
            key = parent[key]
        return key

    def union(a: str, b: str) -> None:
        ra, rb = find(a), find(b)
        if ra != rb:
            # Smaller key becomes the root so the result is order-free
            parent[max(ra, rb)] = min(ra, rb)

    node_keys = {n.id: entity_key(n.name, lexicon) for n in nodes}
    name_keys = set(node_keys.values())
    for node in nodes:
        parent.setdefault(node_keys[node.id], node_keys[node.id])
    for node in nodes:
        for alias in node.aliases:
            alias_key = entity_key(alias, lexicon)
            if alias_key in name_keys:
                union(node_keys[node.id], alias_key)

    clusters: dict[str, list[EntityNode]] = defaultdict(list)
    for node in nodes:
        clusters[find(node_keys[node.id])].append(node)

    merged_nodes: list[EntityNode] = []
    remap: dict[str, str] = {}
    for key, members in clusters.items():
        merged = _merge_nodes(key, members)
        merged_nodes.append(merged)
        for member in members:
            remap[member.id] = merged.id

    merged_edges = _merge_edges([e for g in graphs for e in g.edges], remap, config.evidence_cap)
    merged_nodes.sort(key=lambda n: (-n.mention_count, n.name, n.id))

    logger.info(
        "entity_graphs_merged",
        graphs=len(graphs),
        nodes_in=len(nodes),
        nodes_out=len(merged_nodes),
        edges_out=len(merged_edges),
    )
    return EntityGraph(nodes=merged_nodes, edges=merged_edges, processed_at=time.time())


def _merge_nodes(key: str, members: list[EntityNode]) -> EntityNode:
    type_counts: dict[EntityType, int] = defaultdict(int)
    for member in members:
        type_counts[member.type] += member.mention_count
    kind = max(
        ENTITY_TYPE_PRECEDENCE,
        key=lambda t: (type_counts.get(t, 0), -ENTITY_TYPE_PRECEDENCE.index(t)),
    )

    lead = min(members, key=lambda n: (-n.mention_count, n.name))
    surfaces = {n.name for n in members} | {a for n in members for a in n.aliases}

    lengths: dict[tuple[str, int], int] = {}
    for member in members:
        for m in member.mentions:
            slot = (m.chapter_id, m.offset)
            lengths[slot] = max(lengths.get(slot, 0), m.length)
    attributes: dict[str, list[str]] = {}
    for member in members:
        for attribute, values in member.attributes.items():
            attributes[attribute] = sorted(set(attributes.get(attribute, [])) | set(values))

    return EntityNode(
        id=stable_id("ent", key, kind),
        name=lead.name,
        type=kind,
        aliases=sorted(surfaces - {lead.name}),
        first_mention=min(n.first_mention for n in members),
        mention_count=sum(n.mention_count for n in members),
        mentions=[
            Mention(chapter_id=c, offset=o, length=n) for (c, o), n in sorted(lengths.items())
        ],
        attributes=dict(sorted(attributes.items())),
    )


def _merge_edges(edges: list[EntityEdge], remap: dict[str, str], evidence_cap: int) -> list[EntityEdge]:
    grouped: dict[tuple[str, str], list[EntityEdge]] = defaultdict(list)
    for edge in edges:
        a = remap.get(edge.source, edge.source)
        b = remap.get(edge.target, edge.target)
        if a == b:
            continue
        grouped[(a, b) if a < b else (b, a)].append(edge)

    merged: list[EntityEdge] = []
    for (source, target), members in grouped.items():
        members.sort(key=lambda e: (sorted(e.chapters), e.id, e.co_occurrences))
        co_occurrences = sum(e.co_occurrences for e in members)
        weighted = sum(e.sentiment * e.co_occurrences for e in members)
        evidence: list[str] = []
        for member in members:
            for snippet in member.evidence:
                if snippet not in evidence and len(evidence) < evidence_cap:
                    evidence.append(snippet)
        merged.append(
            EntityEdge(
                id=stable_id("rel", source, target),
                source=source,
                target=target,
                type=RelationshipType.strongest(*(e.type for e in members)),
                co_occurrences=co_occurrences,
                sentiment=round(weighted / co_occurrences, 4) if co_occurrences else 0.0,
                chapters=sorted({c for e in members for c in e.chapters}),
                evidence=evidence,
            )
        )
    merged.sort(key=lambda e: (-e.co_occurrences, e.id))
    return merged


def entities_in_range(
    graph: EntityGraph,
    start: int,
    end: int,
    chapter_id: str | None = None,
) -> list[EntityNode]:
    """Nodes with at least one mention in ``[start, end)``, in graph order."""
    return [
        node
        for node in graph.nodes
        if any(
            start <= m.offset < end and (chapter_id is None or m.chapter_id == chapter_id)
            for m in node.mentions
        )
    ]


def related_entities(
    graph: EntityGraph,
    entity_id: str,
    types: set[RelationshipType] | None = None,
) -> list[tuple[EntityNode, EntityEdge]]:
    """Neighbours of a node with the connecting edge, strongest ties first."""
    pairs: list[tuple[EntityNode, EntityEdge]] = []
    for edge in graph.edges:
        if entity_id not in edge.pair or (types and edge.type not in types):
            continue
        other = graph.node(edge.target if edge.source == entity_id else edge.source)
        if other is not None:
            pairs.append((other, edge))
    pairs.sort(key=lambda p: (-p[1].type.rank, -p[1].co_occurrences, p[0].name))
    return pairs
