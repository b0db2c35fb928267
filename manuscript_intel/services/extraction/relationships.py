"""Relationship detection between consolidated entities.

Two independent passes feed one accumulator keyed by the sorted node-id pair:

  a. co-occurrence: two entities mentioned in the same paragraph get (or
     increment) a generic ``interacts`` edge;
  b. explicit verb rules: a registry of named patterns ("X attacked Y",
     "X drew the Dawn Sword") that assign a specific type.

Typing is upgrade-only and order-free: the final type is the strongest of
every type observed for the pair (``RelationshipType.strongest``), so an
explicit match always beats co-occurrence whichever pass runs first.
"""

from __future__ import annotations

import bisect
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from manuscript_intel.config import Settings
from manuscript_intel.core.ids import stable_id
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.resilience import capped
from manuscript_intel.core.text import truncate
from manuscript_intel.schemas.entities import EntityEdge, EntityNode, EntityType, RelationshipType
from manuscript_intel.schemas.structure import StructuralFingerprint

logger = get_logger(__name__)

_DETERMINER = r"(?:(?:a|an|the|his|her|their|its|my|our)[ \t]+)?"


@dataclass(frozen=True)
class RelationshipRule:
    """``{a}`` and ``{b}`` are replaced by the known-entity alternation."""

    name: str
    type: RelationshipType
    template: str


RELATIONSHIP_RULES: list[RelationshipRule] = [
    RelationshipRule("romance", RelationshipType.RELATED_TO, r"{a}[ \t]+(?:loved|kissed|embraced|married)[ \t]+{b}"),
    RelationshipRule("violence", RelationshipType.OPPOSES, r"{a}[ \t]+(?:attacked|fought|killed|struck|hit|betrayed)[ \t]+{b}"),
    RelationshipRule("aid", RelationshipType.ALLIED_WITH, r"{a}[ \t]+(?:helped|saved|protected|defended)[ \t]+{b}"),
    RelationshipRule(
        "companionship",
        RelationshipType.ALLIED_WITH,
        r"{a}[ \t]+and[ \t]+{b}[ \t]+(?:worked|traveled|travelled|walked|ran|fought)[ \t]+together",
    ),
    RelationshipRule("enmity", RelationshipType.OPPOSES, r"{a}[ \t]+(?:hated|despised|feared)[ \t]+{b}"),
    RelationshipRule("loyalty", RelationshipType.ALLIED_WITH, r"{a}[ \t]+(?:trusted|believed|followed)[ \t]+{b}"),
    RelationshipRule(
        "possession",
        RelationshipType.POSSESSES,
        r"{a}[ \t]+(?:held|carried|drew|wielded|clutched|owned|raised)[ \t]+" + _DETERMINER + "{b}",
    ),
    RelationshipRule(
        "residence",
        RelationshipType.LOCATED_AT,
        r"{a}[ \t]+(?:lived|waited|arrived|stayed|lingered|hid|slept|dwelt)[ \t]+(?:in|at|inside)[ \t]+(?:the[ \t]+)?{b}",
    ),
]

# Owner part of a possessive-object node name ("Marcus's Sword")
_POSSESSIVE_NAME_RE = re.compile(r"^(.+?)['’]s\s+\S+$")


@dataclass
class _EdgeDraft:
    source: str
    target: str
    types: set[RelationshipType] = field(default_factory=lambda: {RelationshipType.INTERACTS})
    co_occurrences: int = 0
    sentiment_sum: float = 0.0
    evidence: list[str] = field(default_factory=list)

    def add_evidence(self, snippet: str, cap: int, first: bool = False) -> None:
        if not snippet or snippet in self.evidence:
            return
        if first:
            self.evidence.insert(0, snippet)
            del self.evidence[cap:]
        elif len(self.evidence) < cap:
            self.evidence.append(snippet)


def detect_relationships(
    text: str,
    structure: StructuralFingerprint,
    nodes: list[EntityNode],
    chapter_id: str,
    config: Settings,
    term_index: dict[str, str],
    case_insensitive_terms: set[str],
    previous_edges: list[EntityEdge] | None = None,
    explicit_windows: list[tuple[int, int]] | None = None,
) -> list[EntityEdge]:
    """Build the edge list for one chapter.

    Args:
        text: Chapter text.
        structure: Structural pass output (paragraph boundaries, sentiment).
        nodes: Consolidated nodes with their mentions for this chapter.
        chapter_id: Chapter the mentions belong to.
        config: Evidence cap, snippet size and match cap.
        term_index: Search term as written -> node id.
        case_insensitive_terms: Terms matched without case (non-character nodes).
        previous_edges: Earlier edges of this chapter; their types are kept
            (upgrade-only) when both endpoints survive.
        explicit_windows: Ranges scanned by the explicit rules; whole text
            when omitted.
    """
    drafts: dict[tuple[str, str], _EdgeDraft] = {}
    node_ids = {n.id for n in nodes}

    def draft_for(a: str, b: str) -> _EdgeDraft:
        pair = (a, b) if a < b else (b, a)
        if pair not in drafts:
            drafts[pair] = _EdgeDraft(source=pair[0], target=pair[1])
        return drafts[pair]

    _co_occurrence_pass(text, structure, nodes, chapter_id, config, draft_for)
    explicit = _explicit_pass(
        text, config, term_index, case_insensitive_terms, explicit_windows, draft_for
    )
    explicit += _possessive_pass(nodes, term_index, config, draft_for)

    for edge in previous_edges or []:
        if edge.source in node_ids and edge.target in node_ids and edge.type != RelationshipType.INTERACTS:
            draft_for(edge.source, edge.target).types.add(edge.type)

    edges = [
        EntityEdge(
            id=stable_id("rel", d.source, d.target),
            source=d.source,
            target=d.target,
            type=RelationshipType.strongest(*d.types),
            co_occurrences=d.co_occurrences,
            sentiment=round(d.sentiment_sum / d.co_occurrences, 4) if d.co_occurrences else 0.0,
            chapters=[chapter_id],
            evidence=d.evidence,
        )
        for d in drafts.values()
        if d.source != d.target
    ]
    edges.sort(key=lambda e: (-e.co_occurrences, e.id))
    logger.debug("relationships_detected", edges=len(edges), explicit_matches=explicit)
    return edges


def _co_occurrence_pass(
    text: str,
    structure: StructuralFingerprint,
    nodes: list[EntityNode],
    chapter_id: str,
    config: Settings,
    draft_for: Callable[[str, str], _EdgeDraft],
) -> None:
    offsets = {
        n.id: sorted(m.offset for m in n.mentions if m.chapter_id == chapter_id)
        for n in nodes
    }
    for paragraph in structure.paragraphs:
        present = sorted(
            node_id
            for node_id, positions in offsets.items()
            if _any_between(positions, paragraph.offset, paragraph.end)
        )
        if len(present) < 2:
            continue
        snippet = truncate(text[paragraph.offset : paragraph.end], config.evidence_snippet_chars)
        for i, a in enumerate(present):
            for b in present[i + 1 :]:
                draft = draft_for(a, b)
                draft.co_occurrences += 1
                draft.sentiment_sum += paragraph.sentiment
                draft.add_evidence(snippet, config.evidence_cap)


def _explicit_pass(
    text: str,
    config: Settings,
    term_index: dict[str, str],
    case_insensitive_terms: set[str],
    windows: list[tuple[int, int]] | None,
    draft_for: Callable[[str, str], _EdgeDraft],
) -> int:
    if not term_index:
        return 0
    lookup = {t.lower(): node_id for t, node_id in term_index.items()}
    terms = sorted(term_index, key=lambda t: (-len(t), t))
    known = "|".join(rf"(?i:{re.escape(t)})" if t in case_insensitive_terms else re.escape(t) for t in terms)
    spans = windows if windows is not None else [(0, len(text))]
    hits = 0
    for rule in RELATIONSHIP_RULES:
        pattern = re.compile(
            r"\b" + rule.template.format(a=rf"(?P<a>{known})", b=rf"(?P<b>{known})") + r"\b"
        )
        for start, end in spans:
            for match in capped(pattern.finditer(text, start, end), config.max_matches_per_category, rule.name):
                a = lookup.get(match.group("a").lower())
                b = lookup.get(match.group("b").lower())
                if not a or not b or a == b:
                    continue
                draft = draft_for(a, b)
                draft.types.add(rule.type)
                draft.add_evidence(truncate(match.group(0), config.evidence_snippet_chars), config.evidence_cap, first=True)
                hits += 1
    return hits


def _possessive_pass(
    nodes: list[EntityNode],
    term_index: dict[str, str],
    config: Settings,
    draft_for: Callable[[str, str], _EdgeDraft],
) -> int:
    lookup = {t.lower(): node_id for t, node_id in term_index.items()}
    hits = 0
    for node in nodes:
        if node.type != EntityType.OBJECT:
            continue
        match = _POSSESSIVE_NAME_RE.match(node.name)
        owner = lookup.get(match.group(1).lower()) if match else None
        if owner and owner != node.id:
            draft = draft_for(owner, node.id)
            draft.types.add(RelationshipType.POSSESSES)
            draft.add_evidence(node.name, config.evidence_cap, first=True)
            hits += 1
    return hits


def _any_between(positions: list[int], start: int, end: int) -> bool:
    i = bisect.bisect_left(positions, start)
    return i < len(positions) and positions[i] < end
