"""Document-type relationship table.

Which document types commonly support the generation of which others. The
table is symmetric: if a charter supports a risk register, a risk register
is related to a charter too. An undirected graph gives that for free.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

import networkx as nx

DEFAULT_RELATIONSHIPS: dict[str, list[str]] = {
    "benefits-realization-plan": [
        "strategic-business-case",
        "project-charter",
        "requirements-specification",
        "stakeholder-register",
        "risk-register",
    ],
    "technical-specification": [
        "requirements-specification",
        "architecture-document",
        "project-charter",
        "risk-register",
    ],
    "project-charter": [
        "strategic-business-case",
        "stakeholder-register",
        "requirements-specification",
    ],
    "risk-register": [
        "project-charter",
        "requirements-specification",
        "stakeholder-register",
    ],
    "communication-plan": [
        "stakeholder-register",
        "project-charter",
    ],
    "quality-plan": [
        "requirements-specification",
        "project-plan",
    ],
}


class RelationshipTable:
    """Symmetric document-type relationships backed by a networkx graph."""

    def __init__(self, relationships: Mapping[str, Iterable[str]] | None = None) -> None:
        self.graph = nx.Graph()
        self.update(DEFAULT_RELATIONSHIPS if relationships is None else relationships)

    def update(self, relationships: Mapping[str, Iterable[str]]) -> None:
        for doc_type, related in relationships.items():
            self.graph.add_node(doc_type)
            for other in related:
                if other != doc_type:
                    self.graph.add_edge(doc_type, other)

    def add(self, doc_type: str, other: str) -> None:
        if doc_type != other:
            self.graph.add_edge(doc_type, other)

    def related_to(self, doc_type: str) -> frozenset[str]:
        if not self.graph.has_node(doc_type):
            return frozenset()
        return frozenset(self.graph.neighbors(doc_type))

    def are_related(self, a: str, b: str) -> bool:
        return self.graph.has_edge(a, b)

    def __contains__(self, doc_type: object) -> bool:
        return self.graph.has_node(doc_type)
