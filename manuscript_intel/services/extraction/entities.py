"""Entity consolidation: raw rule candidates -> EntityGraph.

Flow for one chapter:

  rules (rules.py) -> filter (entity_filter.py) -> group by entity key
  -> alias binding -> mention detection -> nodes -> relationships

``extract_entities`` runs the flow over the whole chapter.
``update_entity_graph`` (debounced tier) keeps the previous graph's
mentions outside the changed ranges, re-runs candidate rules over the dirty
paragraphs only, and consolidates again with the previous nodes as seeds.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.ids import stable_id
from manuscript_intel.core.lexicon import Lexicon, load_lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.schemas.delta import ManuscriptDelta
from manuscript_intel.schemas.entities import (
    ENTITY_TYPE_PRECEDENCE,
    EntityEdge,
    EntityGraph,
    EntityNode,
    EntityType,
    Mention,
)
from manuscript_intel.schemas.structure import StructuralFingerprint
from manuscript_intel.services.delta import map_offset
from manuscript_intel.services.entity_filter import entity_key, filter_candidates, reject_reason
from manuscript_intel.services.extraction.mention_detector import SearchEntity, detect_mentions
from manuscript_intel.services.extraction.relationships import detect_relationships
from manuscript_intel.services.extraction.rules import (
    AliasLink,
    AttributeObservation,
    Candidate,
    RuleContext,
    run_rules,
)

logger = get_logger(__name__)

CANDIDATE_KINDS = ("character", "location", "object", "faction", "concept")
LINK_KINDS = ("alias", "attribute")

# Minimum support for an unseeded node: one sentence-start sighting (0.4)
# is not enough, a sighting plus one more mention is.
_MIN_SUPPORT = 0.5
_EXTRA_MENTION_SUPPORT = 0.5


@dataclass
class _Group:
    key: str
    votes: dict[EntityType, float] = field(default_factory=dict)
    names: Counter[str] = field(default_factory=Counter)
    surfaces: set[str] = field(default_factory=set)
    offsets: set[int] = field(default_factory=set)
    lengths: dict[int, int] = field(default_factory=dict)
    support: float = 0.0
    seed: EntityNode | None = None

    def absorb(self, other: _Group) -> None:
        for kind, weight in other.votes.items():
            self.votes[kind] = self.votes.get(kind, 0.0) + weight
        self.names.update(other.names)
        self.surfaces |= other.surfaces | set(other.names)
        self.offsets |= other.offsets
        for offset, length in other.lengths.items():
            _note_length(self.lengths, offset, length)
        self.support += other.support
        if self.seed is None:
            self.seed = other.seed
        elif other.seed is not None:
            self.surfaces |= {other.seed.name, *other.seed.aliases}


def extract_entities(
    text: str,
    structure: StructuralFingerprint,
    chapter_id: str = "",
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
    previous_edges: list[EntityEdge] | None = None,
) -> EntityGraph:
    """Build the entity graph of one chapter snapshot.

    ``previous_edges`` are the edges of an earlier snapshot of this chapter;
    a specific type they carry is kept while both endpoints still exist, so
    a full recompute never downgrades a relationship.
    """
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)

    if not text.strip():
        return EntityGraph(processed_at=time.time())

    context = RuleContext(lexicon=lexicon, structure=structure, limit=config.max_matches_per_category)
    raw = run_rules(text, context)
    graph = _assemble(
        text=text,
        structure=structure,
        chapter_id=chapter_id,
        raw=raw,
        seeds=[],
        kept={},
        windows=None,
        previous_edges=previous_edges,
        config=config,
        lexicon=lexicon,
    )
    logger.info(
        "entities_extracted",
        nodes=len(graph.nodes),
        edges=len(graph.edges),
        candidates=sum(1 for r in raw if isinstance(r, Candidate)),
    )
    return graph


def update_entity_graph(
    previous_graph: EntityGraph | None,
    text: str,
    structure: StructuralFingerprint,
    delta: ManuscriptDelta,
    chapter_id: str = "",
    config: Settings | None = None,
    lexicon: Lexicon | None = None,
) -> EntityGraph:
    """Incrementally refresh a chapter graph after an edit.

    Falls back to a full extraction when there is no previous graph or the
    delta asks for a full recompute. The previous graph is never mutated.
    """
    config = config or settings
    lexicon = lexicon or load_lexicon(config.lexicon_path)

    if previous_graph is None or delta.full_recompute:
        edges = previous_graph.edges if previous_graph is not None else None
        return extract_entities(text, structure, chapter_id, config, lexicon, previous_edges=edges)
    if not delta.changed_ranges:
        return previous_graph.model_copy(deep=True)

    changes = sorted(delta.changed_ranges, key=lambda c: (c.start, c.end))
    touched: list[tuple[int, int]] = []
    shift = 0
    for change in changes:
        new_start = change.start + shift
        touched.append((new_start, new_start + len(change.new_text or "")))
        shift += change.length_delta

    windows = _merge_ranges(
        [
            (p.offset, p.end)
            for p in structure.paragraphs
            if any(p.offset <= end and p.end >= start for start, end in touched)
        ]
    )

    kept: dict[str, dict[int, int]] = {}
    for node in previous_graph.nodes:
        offsets: dict[int, int] = {}
        for mention in node.mentions:
            if mention.chapter_id != chapter_id:
                continue
            if any(c.start <= mention.offset < c.end for c in changes):
                continue
            moved = map_offset(mention.offset, changes)
            if any(start <= moved < end for start, end in windows):
                continue
            offsets[moved] = mention.length
        kept[node.id] = offsets

    raw: list[object] = []
    for start, end in windows:
        context = RuleContext(
            lexicon=lexicon, structure=structure, base=start, limit=config.max_matches_per_category
        )
        raw.extend(run_rules(text[start:end], context, kinds=CANDIDATE_KINDS))
    # Alias and attribute links are cheap and not positional: rescan everything
    full_context = RuleContext(lexicon=lexicon, structure=structure, limit=config.max_matches_per_category)
    raw.extend(run_rules(text, full_context, kinds=LINK_KINDS))

    graph = _assemble(
        text=text,
        structure=structure,
        chapter_id=chapter_id,
        raw=raw,
        seeds=[n.model_copy(deep=True) for n in previous_graph.nodes],
        kept=kept,
        windows=windows,
        previous_edges=previous_graph.edges,
        config=config,
        lexicon=lexicon,
    )
    logger.info(
        "entities_updated",
        dirty_windows=len(windows),
        nodes=len(graph.nodes),
        edges=len(graph.edges),
    )
    return graph


def _assemble(
    *,
    text: str,
    structure: StructuralFingerprint,
    chapter_id: str,
    raw: list[object],
    seeds: list[EntityNode],
    kept: dict[str, dict[int, int]],
    windows: list[tuple[int, int]] | None,
    previous_edges: list[EntityEdge] | None,
    config: Settings,
    lexicon: Lexicon,
) -> EntityGraph:
    candidates = filter_candidates([r for r in raw if isinstance(r, Candidate)], lexicon, text)
    links = [r for r in raw if isinstance(r, AliasLink)]
    observations = [r for r in raw if isinstance(r, AttributeObservation)]

    groups = _group_candidates(candidates, lexicon)

    for seed in seeds:
        key = entity_key(seed.name, lexicon)
        group = groups.setdefault(key, _Group(key=key))
        seed_offsets = kept.get(seed.id, {})
        group.votes[seed.type] = group.votes.get(seed.type, 0.0) + 1.0 + 0.5 * len(seed_offsets)
        group.offsets |= set(seed_offsets)
        for offset, length in seed_offsets.items():
            _note_length(group.lengths, offset, length)
        group.surfaces |= set(seed.aliases)
        if group.seed is None:
            group.seed = seed

    alias_of = _bind_aliases(groups, links, lexicon)

    # Mention detection over the searched ranges
    search = []
    for group in groups.values():
        name = _display_name(group)
        search.append(
            SearchEntity(
                key=group.key,
                name=name,
                aliases=sorted(s for s in group.surfaces if s != name),
                case_sensitive=_vote_type(group.votes) == EntityType.CHARACTER,
            )
        )
    detected: dict[str, set[int]] = {}
    for match in detect_mentions(text, search, lexicon, windows, config.max_matches_per_category):
        detected.setdefault(match.key, set()).add(match.char_start)
        _note_length(groups[match.key].lengths, match.char_start, match.char_end - match.char_start)

    nodes: list[EntityNode] = []
    node_for_key: dict[str, EntityNode] = {}
    for group in groups.values():
        found = detected.get(group.key, set())
        offsets = sorted(found | group.offsets)
        if not offsets:
            continue
        if group.seed is None:
            support = group.support + _EXTRA_MENTION_SUPPORT * len(found - group.offsets)
            if support < _MIN_SUPPORT:
                continue

        kind = _vote_type(group.votes)
        name = _display_name(group)
        node = EntityNode(
            id=stable_id("ent", group.key, kind),
            name=name,
            type=kind,
            aliases=sorted({s for s in group.surfaces if s != name and entity_key(s, lexicon) != ""}),
            first_mention=offsets[0],
            mention_count=len(offsets),
            mentions=[Mention(offset=o, chapter_id=chapter_id, length=group.lengths.get(o, 0)) for o in offsets],
        )
        nodes.append(node)
        node_for_key[group.key] = node

    for obs in observations:
        key = entity_key(obs.name, lexicon)
        node = node_for_key.get(alias_of.get(key, key))
        if node is None:
            continue
        values = node.attributes.setdefault(obs.attribute, [])
        if obs.value not in values:
            values.append(obs.value)
            values.sort()

    nodes.sort(key=lambda n: (-n.mention_count, n.name, n.id))

    term_index: dict[str, str] = {}
    case_insensitive: set[str] = set()
    for node in nodes:
        for surface in (node.name, *node.aliases):
            term = _bare(surface, lexicon)
            if len(term) < 2:
                continue
            term_index.setdefault(term, node.id)
            if node.type != EntityType.CHARACTER:
                case_insensitive.add(term)

    edges = detect_relationships(
        text,
        structure,
        nodes,
        chapter_id,
        config,
        term_index,
        case_insensitive,
        previous_edges=previous_edges,
        explicit_windows=windows,
    )
    return EntityGraph(nodes=nodes, edges=edges, processed_at=time.time())


def _group_candidates(candidates: list[Candidate], lexicon: Lexicon) -> dict[str, _Group]:
    # One vote per (key, offset, kind): the strongest rule that saw it
    best: dict[tuple[str, int, EntityType], Candidate] = {}
    for candidate in candidates:
        key = entity_key(candidate.surface, lexicon)
        slot = (key, candidate.offset, candidate.kind)
        if slot not in best or candidate.weight > best[slot].weight:
            best[slot] = candidate

    groups: dict[str, _Group] = {}
    for (key, offset, kind), candidate in sorted(best.items(), key=lambda kv: (kv[0][0], kv[0][1], kv[0][2])):
        group = groups.setdefault(key, _Group(key=key))
        group.votes[kind] = group.votes.get(kind, 0.0) + candidate.weight
        group.names[candidate.name] += 1
        if candidate.surface != candidate.name:
            group.surfaces.add(candidate.surface)
        group.offsets.add(offset)
        _note_length(group.lengths, offset, len(candidate.name))
        group.support += candidate.weight
    return groups


def _bind_aliases(groups: dict[str, _Group], links: list[AliasLink], lexicon: Lexicon) -> dict[str, str]:
    """Attach alias surfaces to existing groups, merging groups that alias each other.

    Returns a map from alias key to canonical key.
    """
    alias_of: dict[str, str] = {}

    def canonical(key: str) -> str:
        while key in alias_of:
            key = alias_of[key]
        return key

    for link in sorted(links, key=lambda l: (l.offset, l.name, l.alias)):
        if reject_reason(link.name, lexicon) or reject_reason(link.alias, lexicon):
            continue
        name_key = canonical(entity_key(link.name, lexicon))
        alias_key = canonical(entity_key(link.alias, lexicon))
        if name_key == alias_key:
            continue
        if name_key in groups:
            target, source, surface = name_key, alias_key, link.alias
        elif alias_key in groups:
            target, source, surface = alias_key, name_key, link.name
        else:
            continue
        groups[target].surfaces.add(surface)
        if source in groups:
            groups[target].absorb(groups.pop(source))
        alias_of[source] = target
    return {key: canonical(key) for key in alias_of}


def _vote_type(votes: dict[EntityType, float]) -> EntityType:
    return max(
        ENTITY_TYPE_PRECEDENCE,
        key=lambda t: (votes.get(t, 0.0), -ENTITY_TYPE_PRECEDENCE.index(t)),
    )


def _display_name(group: _Group) -> str:
    if group.seed is not None:
        return group.seed.name
    if not group.names:
        return min(group.surfaces) if group.surfaces else group.key
    name, _ = min(group.names.items(), key=lambda kv: (-kv[1], kv[0]))
    return name


def _bare(surface: str, lexicon: Lexicon) -> str:
    words = surface.split()
    while len(words) > 1 and (words[0].lower() in ("the", "a", "an") or lexicon.is_title(words[0])):
        words = words[1:]
    return " ".join(words)


def _in_windows(offset: int, windows: list[tuple[int, int]] | None) -> bool:
    if windows is None:
        return True
    return any(start <= offset < end for start, end in windows)


def _merge_ranges(ranges: list[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _note_length(lengths: dict[int, int], offset: int, length: int) -> None:
    if length > lengths.get(offset, 0):
        lengths[offset] = length
