"""Heuristic entity extraction.

Builds a chapter's entity graph from raw text plus the structural pass:

  rules -> filter -> consolidate (aliases, attributes, mentions) -> relationships

Usage:
    graph = extract_entities(text, structure, chapter_id="ch1")
    graph = update_entity_graph(graph, new_text, new_structure, delta, chapter_id="ch1")
    book = merge_entity_graphs([graph_ch1, graph_ch2])
"""

from __future__ import annotations

from manuscript_intel.services.extraction.entities import extract_entities, update_entity_graph
from manuscript_intel.services.extraction.merge import (
    entities_in_range,
    merge_entity_graphs,
    related_entities,
)
from manuscript_intel.services.extraction.relationships import RELATIONSHIP_RULES, detect_relationships
from manuscript_intel.services.extraction.rules import RULES, run_rules

__all__ = [
    "RELATIONSHIP_RULES",
    "RULES",
    "detect_relationships",
    "entities_in_range",
    "extract_entities",
    "merge_entity_graphs",
    "related_entities",
    "run_rules",
    "update_entity_graph",
]
