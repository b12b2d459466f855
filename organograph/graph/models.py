"""Value types returned by the repository, relation manager and query engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from organograph.ontology.entities import display_name_for, get_entity_registry, resolve_entity_type

# Cypher projection shared by every query returning whole entities.
ENTITY_PROJECTION = "{id: elementId(%(v)s), labels: labels(%(v)s), props: properties(%(v)s)}"


def entity_map(variable: str) -> str:
    """Cypher map expression projecting node ``variable`` as an entity."""
    return ENTITY_PROJECTION % {"v": variable}


def path_columns(variable: str) -> str:
    """Cypher RETURN columns projecting path ``variable`` for ``GraphPath.from_maps``."""
    return (
        f"[x IN nodes({variable}) | {entity_map('x')}] AS nodes, "
        f"[r IN relationships({variable}) | {{type: type(r), start: elementId(startNode(r))}}] AS rels, "
        f"length({variable}) AS hops"
    )


@dataclass
class Entity:
    """A typed node of the knowledge graph.

    Attributes:
        id: Store-assigned opaque identifier (Neo4j element ID).
        type: Entity type name, resolved from the node labels.
        properties: Property bag, shaped by the type's field struct.
        labels: All labels carried by the node.
    """

    id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    labels: list[str] = field(default_factory=list)

    @classmethod
    def from_map(cls, data: Mapping[str, Any]) -> Entity:
        """Build an entity from an ``entity_map`` projection."""
        labels = list(data.get("labels") or [])
        entity_type = resolve_entity_type(labels) or (labels[0] if labels else "Unknown")
        return cls(
            id=str(data["id"]),
            type=entity_type,
            properties=dict(data.get("props") or {}),
            labels=labels,
        )

    @property
    def display_name(self) -> str:
        return display_name_for(self.type, self.properties, self.id)

    @property
    def name(self) -> Any:
        """Value of the type's unique name field, if the type is registered."""
        spec = get_entity_registry().get(self.type)
        if spec is None:
            return None
        return self.properties.get(spec.name_field)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "display_name": self.display_name,
            "properties": dict(self.properties),
        }


@dataclass
class Relation:
    """A directed, typed edge with both endpoints resolved."""

    type: str
    source: Entity
    target: Entity
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
        }


@dataclass
class RelatedEntity:
    """An entity adjacent to another one, with the connecting relation.

    Attributes:
        relation_type: Type of the connecting edge.
        direction: "out" when the edge leaves the anchor, "in" otherwise.
        entity: The adjacent entity.
    """

    relation_type: str
    direction: str
    entity: Entity


@dataclass
class EntityRelations:
    """All outgoing and incoming relations of one entity."""

    entity: Entity
    outgoing: list[RelatedEntity] = field(default_factory=list)
    incoming: list[RelatedEntity] = field(default_factory=list)


@dataclass
class EntityPage:
    """One page of a filtered listing."""

    items: list[Entity]
    returned_count: int
    limit: int
    offset: int


@dataclass
class DeletionResult:
    """Outcome of an entity deletion, with the prior snapshot."""

    deleted: bool
    entity: Entity


@dataclass
class EntityStatistics:
    """Totals for one entity type.

    Attributes:
        entity_type: Type the statistics describe.
        total: Number of entities of the type.
        targets: Sorted distinct target names per outgoing relation type.
    """

    entity_type: str
    total: int = 0
    targets: dict[str, list[str]] = field(default_factory=dict)

    @property
    def target_counts(self) -> dict[str, int]:
        return {relation_type: len(names) for relation_type, names in self.targets.items()}


@dataclass
class RelationValidation:
    """Outcome of a dry-run relation check.

    Attributes:
        valid: True when the relation could be created now.
        reason: Message of the first failed check, if any.
        code: Error code of the first failed check, if any.
    """

    valid: bool
    reason: str | None = None
    code: str | None = None


@dataclass
class RelationStatistics:
    """Edge counts per relation type.

    Attributes:
        total: Total number of edges.
        counts: Edge count per relation type, zero for unused known types.
        relation_types: Every relation type known to the ontology.
    """

    total: int = 0
    counts: dict[str, int] = field(default_factory=dict)
    relation_types: list[str] = field(default_factory=list)


@dataclass
class PathSegment:
    """One hop of a path; ``direction`` is "out" when the edge runs start -> end."""

    start: Entity
    relation_type: str
    end: Entity
    direction: str = "out"


@dataclass
class GraphPath:
    """Ordered sequence of segments connecting two entities."""

    segments: list[PathSegment] = field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.segments)

    @classmethod
    def from_maps(cls, nodes: list[Mapping[str, Any]], rels: list[Mapping[str, Any]]) -> GraphPath:
        """Build a path from projected node and relationship lists.

        Each relationship map carries ``type`` and ``start`` (element ID of
        the edge's start node).
        """
        entities = [Entity.from_map(n) for n in nodes]
        segments = []
        for i, rel in enumerate(rels):
            start, end = entities[i], entities[i + 1]
            direction = "out" if rel.get("start") == start.id else "in"
            segments.append(PathSegment(start=start, relation_type=rel["type"], end=end, direction=direction))
        return cls(segments=segments)


@dataclass
class SearchHit:
    """A global search result."""

    entity: Entity
    type: str
    name: str


@dataclass
class LocationMatch:
    """A location within the search radius and what is located there."""

    location: Entity
    distance_km: float
    related: dict[str, list[Entity]] = field(default_factory=dict)

    @property
    def instruments(self) -> list[Entity]:
        return self.related.get("Instrument", [])

    @property
    def groups(self) -> list[Entity]:
        return self.related.get("GroupeEthnique", [])

    @property
    def rhythms(self) -> list[Entity]:
        return self.related.get("Rythme", [])


@dataclass
class SimilarEntity:
    """A similarity candidate with its score and shared-neighbour counts."""

    entity: Entity
    score: float
    shared: dict[str, int] = field(default_factory=dict)


@dataclass
class CulturalPattern:
    """Aggregated view of one (heritage, group, location) triple."""

    heritage: str
    group: str
    location: str
    instruments: list[str] = field(default_factory=list)
    rhythms: list[str] = field(default_factory=list)
    materials: list[str] = field(default_factory=list)
    families: list[str] = field(default_factory=list)


@dataclass
class Recommendation:
    """An entity near the anchor, ranked by connection count."""

    entity: Entity
    connections: int
    context: dict[str, str | None] = field(default_factory=dict)


@dataclass
class CentralityEntry:
    """An entity and its unweighted degree."""

    entity: Entity
    degree: int
