"""Relation constraint registry.

Maps each relation type of the ontology to its allowed source types,
allowed target types and cardinality class. The YAML ontology is the only
place these values are declared; human-readable cardinality descriptions
are derived from it here rather than declared a second time.
"""

from __future__ import annotations

import enum
import functools
from collections.abc import Iterable
from dataclasses import dataclass

from organograph.core.exceptions import (
    CardinalityViolation,
    DuplicateRelation,
    TypeMismatch,
    UnknownRelationType,
)
from organograph.ontology.loader import get_relation_type_definitions


class Cardinality(enum.StrEnum):
    """Endpoint-uniqueness rule attached to a relation type."""

    ONE_TO_ONE = "1:1"
    ONE_TO_MANY = "1:N"
    MANY_TO_ONE = "N:1"
    MANY_TO_MANY = "N:N"


_CARDINALITY_TEXT = {
    Cardinality.ONE_TO_ONE: "each source and each target takes part in at most one edge",
    Cardinality.ONE_TO_MANY: "a source may link to many targets",
    Cardinality.MANY_TO_ONE: "a source links to at most one target",
    Cardinality.MANY_TO_MANY: "no endpoint restriction",
}


@dataclass(frozen=True)
class RelationConstraint:
    """Constraint table entry for one relation type.

    Attributes:
        name: Relation type (also the Neo4j relationship type).
        sources: Entity types allowed at the source endpoint.
        targets: Entity types allowed at the target endpoint.
        cardinality: Cardinality class enforced at creation time.
        description: Human-readable description.
    """

    name: str
    sources: frozenset[str]
    targets: frozenset[str]
    cardinality: Cardinality
    description: str = ""

    @property
    def summary(self) -> str:
        """Description with the cardinality rule derived from this entry."""
        return f"{self.description} ({self.cardinality}: {_CARDINALITY_TEXT[self.cardinality]})"

    def touches(self, entity_type: str) -> bool:
        return entity_type in self.sources or entity_type in self.targets

    def check_endpoints(self, source_type: str | None, target_type: str | None) -> None:
        """Validate endpoint entity types against this constraint.

        Raises:
            TypeMismatch: If the source or target type is not permitted.
        """
        if source_type not in self.sources:
            raise TypeMismatch(
                f"{self.name} source must be one of {sorted(self.sources)}, got {source_type}"
            )
        if target_type not in self.targets:
            raise TypeMismatch(
                f"{self.name} target must be one of {sorted(self.targets)}, got {target_type}"
            )

    def check_cardinality(
        self,
        source_id: str,
        target_id: str,
        existing_edges: Iterable[tuple[str, str]],
    ) -> None:
        """Check a new (source, target) edge against existing edges of this type.

        Args:
            source_id: Source entity ID of the edge being created.
            target_id: Target entity ID of the edge being created.
            existing_edges: (from_id, to_id) pairs of every existing edge of
                this relation type that touches either endpoint.

        Raises:
            DuplicateRelation: If the exact edge already exists.
            CardinalityViolation: If the edge would break the cardinality class.
        """
        edges = list(existing_edges)
        if (source_id, target_id) in edges:
            raise DuplicateRelation(f"Relation {self.name} already exists between {source_id} and {target_id}")

        if self.cardinality == Cardinality.ONE_TO_ONE:
            endpoints = {source_id, target_id}
            if any(from_id in endpoints or to_id in endpoints for from_id, to_id in edges):
                raise CardinalityViolation(
                    f"Relation {self.name} is 1:1 and an endpoint already takes part in one"
                )
        elif self.cardinality == Cardinality.MANY_TO_ONE:
            if any(from_id == source_id and to_id != target_id for from_id, to_id in edges):
                raise CardinalityViolation(
                    f"Relation {self.name} is N:1 and source {source_id} already has a target"
                )


@functools.cache
def get_constraint_registry() -> dict[str, RelationConstraint]:
    """Build (once) the constraint table from the ontology."""
    return {
        name: RelationConstraint(
            name=name,
            sources=frozenset(defn.get("from", [])),
            targets=frozenset(defn.get("to", [])),
            cardinality=Cardinality(defn["cardinality"]),
            description=defn.get("description", ""),
        )
        for name, defn in get_relation_type_definitions().items()
    }


def describe_relation_type(relation_type: str | None) -> RelationConstraint:
    """Look up a relation type.

    Raises:
        UnknownRelationType: If the type is not registered.
    """
    constraint = get_constraint_registry().get(relation_type or "")
    if constraint is None:
        raise UnknownRelationType(str(relation_type))
    return constraint


def relation_type_names() -> tuple[str, ...]:
    """Registered relation types, in declaration order."""
    return tuple(get_constraint_registry())


def relations_from(entity_type: str) -> list[RelationConstraint]:
    """Relation types whose source may be ``entity_type``."""
    return [c for c in get_constraint_registry().values() if entity_type in c.sources]


def relations_to(entity_type: str) -> list[RelationConstraint]:
    """Relation types whose target may be ``entity_type``."""
    return [c for c in get_constraint_registry().values() if entity_type in c.targets]
