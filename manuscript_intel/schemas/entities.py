"""Pydantic schemas for the entity graph.

The graph is an arena of nodes plus an edge list referencing node ids; edges
never hold node objects.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class EntityType(StrEnum):
    CHARACTER = "character"
    LOCATION = "location"
    OBJECT = "object"
    FACTION = "faction"
    CONCEPT = "concept"


# Tie-break order when candidate votes for a node's type are equal
ENTITY_TYPE_PRECEDENCE: tuple[EntityType, ...] = (
    EntityType.CHARACTER,
    EntityType.LOCATION,
    EntityType.OBJECT,
    EntityType.FACTION,
    EntityType.CONCEPT,
)


class RelationshipType(StrEnum):
    INTERACTS = "interacts"
    LOCATED_AT = "located_at"
    POSSESSES = "possesses"
    RELATED_TO = "related_to"
    OPPOSES = "opposes"
    ALLIED_WITH = "allied_with"

    @property
    def rank(self) -> int:
        return _RELATIONSHIP_RANK[self]

    @classmethod
    def strongest(cls, *types: RelationshipType) -> RelationshipType:
        """Winning type among candidates; ``interacts`` only if nothing else."""
        return max(types, key=lambda t: t.rank, default=cls.INTERACTS)


# Higher wins. INTERACTS is the floor, so an edge can only be upgraded.
_RELATIONSHIP_RANK: dict[RelationshipType, int] = {
    RelationshipType.INTERACTS: 0,
    RelationshipType.LOCATED_AT: 1,
    RelationshipType.POSSESSES: 2,
    RelationshipType.RELATED_TO: 3,
    RelationshipType.ALLIED_WITH: 4,
    RelationshipType.OPPOSES: 5,
}


class Mention(BaseModel):
    offset: int = Field(..., ge=0)
    chapter_id: str = ""
    length: int = Field(default=0, ge=0)  # matched surface form; 0 when unknown


class EntityNode(BaseModel):
    """A consolidated entity and every place it was seen."""

    id: str
    name: str
    type: EntityType
    aliases: list[str] = Field(default_factory=list)
    first_mention: int = Field(default=0, ge=0)
    mention_count: int = Field(default=0, ge=0)
    mentions: list[Mention] = Field(default_factory=list)
    attributes: dict[str, list[str]] = Field(default_factory=dict)


class EntityEdge(BaseModel):
    """Relationship between two nodes, keyed by the sorted id pair."""

    id: str
    source: str
    target: str
    type: RelationshipType = RelationshipType.INTERACTS
    co_occurrences: int = Field(default=0, ge=0)
    sentiment: float = Field(default=0.0, ge=-1.0, le=1.0)
    chapters: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)

    @property
    def pair(self) -> tuple[str, str]:
        return (self.source, self.target)


class EntityGraph(BaseModel):
    nodes: list[EntityNode] = Field(default_factory=list)
    edges: list[EntityEdge] = Field(default_factory=list)
    processed_at: float = 0.0

    def node(self, node_id: str) -> EntityNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_by_name(self, name: str) -> EntityNode | None:
        """Case-insensitive lookup by canonical name or alias."""
        needle = name.lower()
        for node in self.nodes:
            if node.name.lower() == needle or any(a.lower() == needle for a in node.aliases):
                return node
        return None
