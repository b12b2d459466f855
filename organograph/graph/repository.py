"""Generic entity repository.

One ``EntityRepository`` is instantiated per entity type at startup. Each
exposes the same schema-validated CRUD and listing capability against the
graph store; labels and property keys interpolated into Cypher always come
from the registry, never from caller input.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from organograph.core.exceptions import NotFound, UniquenessConflict, ValidationError
from organograph.core.neo4j import GraphStore, StoreTransaction
from organograph.graph.models import (
    DeletionResult,
    Entity,
    EntityPage,
    EntityStatistics,
    RelatedEntity,
    entity_map,
)
from organograph.ontology.constraints import RelationConstraint, describe_relation_type, relations_from
from organograph.ontology.entities import (
    EntityTypeSpec,
    describe_entity_type,
    entity_type_names,
    get_entity_registry,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DIRECTIONS = ("out", "in", "both")


def _name_fields(entity_types: frozenset[str]) -> list[str]:
    registry = get_entity_registry()
    return sorted({registry[t].name_field for t in entity_types if t in registry})


class EntityRepository:
    """Schema-validated CRUD for one entity type."""

    def __init__(self, store: GraphStore, entity_type: str) -> None:
        """Initialize the repository.

        Args:
            store: Shared graph store handle.
            entity_type: Registered entity type served by this repository.

        Raises:
            UnknownEntityType: If the type is not registered.
        """
        self._store = store
        self._spec = describe_entity_type(entity_type)
        self._max_page_size = store.settings.max_page_size

    @property
    def entity_type(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> EntityTypeSpec:
        return self._spec

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    def _check_paging(self, limit: int, offset: int = 0) -> None:
        if not isinstance(limit, int) or not 1 <= limit <= self._max_page_size:
            raise ValidationError("limit", f"must be an integer between 1 and {self._max_page_size}")
        if not isinstance(offset, int) or offset < 0:
            raise ValidationError("offset", "must be a non-negative integer")

    def _check_field(self, field: str) -> None:
        if field not in self._spec.field_names:
            raise ValidationError(field, f"not a field of {self.entity_type}")

    def _build_filters(self, filters: Mapping[str, Any] | None) -> tuple[list[str], dict[str, Any]]:
        """Translate field filters into WHERE clauses.

        Strings match case-insensitively by containment; anything else by
        equality.
        """
        clauses: list[str] = []
        params: dict[str, Any] = {}
        for i, (key, value) in enumerate((filters or {}).items()):
            self._check_field(key)
            param = f"filter_{i}"
            if isinstance(value, str):
                clauses.append(f"toLower(toString(n.{key})) CONTAINS toLower(${param})")
            else:
                clauses.append(f"n.{key} = ${param}")
            params[param] = value
        return clauses, params

    def _related_clause(self, constraint: RelationConstraint, var: str, name_param: str, fields_param: str) -> str:
        """EXISTS clause matching a neighbour through ``constraint`` by name.

        The neighbour's candidate name fields come from the entity types on
        the opposite side of the constraint.
        """
        if not constraint.touches(self.entity_type):
            raise ValidationError("relation_type", f"{constraint.name} does not connect {self.entity_type}")
        if self.entity_type in constraint.sources:
            pattern = f"(n)-[:{constraint.name}]->({var})"
        else:
            pattern = f"(n)<-[:{constraint.name}]-({var})"
        return (
            f"EXISTS {{ MATCH {pattern} "
            f"WHERE any(f IN ${fields_param} WHERE toLower(toString({var}[f])) = toLower(${name_param})) }}"
        )

    def _related_params(self, constraint: RelationConstraint) -> list[str]:
        if self.entity_type in constraint.sources:
            return _name_fields(constraint.targets)
        return _name_fields(constraint.sources)

    @staticmethod
    def _where(clauses: list[str]) -> str:
        return f"WHERE {' AND '.join(clauses)}" if clauses else ""

    # -----------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------

    async def create(self, payload: Mapping[str, Any]) -> Entity:
        """Validate and persist a new entity.

        Raises:
            ValidationError: If the payload violates the field schema or the
                name is already taken.
        """
        props = self._spec.validate(payload)
        labels = ":".join(self._spec.labels_for(props))
        query = f"CREATE (n:{labels}) SET n = $props RETURN {entity_map('n')} AS entity"
        try:
            records = await self._store.write(query, {"props": props})
        except UniquenessConflict as exc:
            raise ValidationError(self._spec.name_field, "already exists") from exc

        entity = Entity.from_map(records[0]["entity"])
        logger.info("Created %s %s (%s)", self.entity_type, entity.id, entity.display_name)
        return entity

    async def find_by_id(self, entity_id: str) -> Entity:
        """Return the entity with this ID.

        Raises:
            NotFound: If no entity of this type has this ID.
        """
        query = f"""
        MATCH (n:{self._spec.label})
        WHERE elementId(n) = $id
        RETURN {entity_map('n')} AS entity
        """
        records = await self._store.read(query, {"id": entity_id})
        if not records:
            raise NotFound(f"{self.entity_type} not found: {entity_id}")
        return Entity.from_map(records[0]["entity"])

    async def find_by_name(self, name: str) -> Entity:
        """Return the entity whose unique name field equals ``name``.

        Raises:
            NotFound: If no entity has this name.
        """
        query = f"""
        MATCH (n:{self._spec.label})
        WHERE n.{self._spec.name_field} = $name
        RETURN {entity_map('n')} AS entity
        LIMIT 1
        """
        records = await self._store.read(query, {"name": name})
        if not records:
            raise NotFound(f"{self.entity_type} not found: {name!r}")
        return Entity.from_map(records[0]["entity"])

    async def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> EntityPage:
        """List entities matching field filters, ordered by name.

        Args:
            filters: Field predicates (string containment or equality).
            limit: Page size.
            offset: Number of entities to skip.

        Returns:
            The requested page.
        """
        self._check_paging(limit, offset)
        clauses, params = self._build_filters(filters)
        query = f"""
        MATCH (n:{self._spec.label})
        {self._where(clauses)}
        RETURN {entity_map('n')} AS entity
        ORDER BY n.{self._spec.name_field}
        SKIP $offset
        LIMIT $limit
        """
        records = await self._store.read(query, {**params, "limit": limit, "offset": offset})
        items = [Entity.from_map(r["entity"]) for r in records]
        return EntityPage(items=items, returned_count=len(items), limit=limit, offset=offset)

    async def count(self, filters: Mapping[str, Any] | None = None) -> int:
        """Count entities matching field filters (same semantics as find_all)."""
        clauses, params = self._build_filters(filters)
        query = f"MATCH (n:{self._spec.label}) {self._where(clauses)} RETURN count(n) AS total"
        records = await self._store.read(query, params)
        return records[0]["total"] if records else 0

    async def update(self, entity_id: str, payload: Mapping[str, Any]) -> Entity:
        """Replace an entity's property bag with a complete, valid payload.

        Partial patches are rejected by full re-validation.

        Raises:
            NotFound: If the entity does not exist.
            ValidationError: If the payload violates the field schema.
        """
        props = self._spec.validate(payload)
        new_labels = self._spec.labels_for(props)

        async def _work(tx: StoreTransaction) -> dict[str, Any] | None:
            rows = await tx.run(
                f"MATCH (n:{self._spec.label}) WHERE elementId(n) = $id RETURN labels(n) AS labels",
                {"id": entity_id},
            )
            if not rows:
                return None
            stale = [label for label in rows[0]["labels"] if label not in new_labels]
            relabel = ""
            if stale:
                relabel += f" REMOVE n:{':'.join(stale)}"
            relabel += f" SET n:{':'.join(new_labels)}"
            records = await tx.run(
                f"MATCH (n:{self._spec.label}) WHERE elementId(n) = $id"
                f"{relabel} SET n = $props RETURN {entity_map('n')} AS entity",
                {"id": entity_id, "props": props},
            )
            return records[0]["entity"]

        try:
            record = await self._store.execute_write(_work)
        except UniquenessConflict as exc:
            raise ValidationError(self._spec.name_field, "already exists") from exc
        if record is None:
            raise NotFound(f"{self.entity_type} not found: {entity_id}")

        entity = Entity.from_map(record)
        logger.info("Updated %s %s", self.entity_type, entity_id)
        return entity

    async def delete(self, entity_id: str) -> DeletionResult:
        """Delete an entity together with every relation incident to it.

        The snapshot and the detach-delete run in one write transaction.

        Raises:
            NotFound: If the entity does not exist.
        """

        async def _work(tx: StoreTransaction) -> tuple[dict[str, Any], int] | None:
            rows = await tx.run(
                f"MATCH (n:{self._spec.label}) WHERE elementId(n) = $id RETURN {entity_map('n')} AS entity",
                {"id": entity_id},
            )
            if not rows:
                return None
            deleted = await tx.run(
                f"MATCH (n:{self._spec.label}) WHERE elementId(n) = $id DETACH DELETE n RETURN count(n) AS deleted",
                {"id": entity_id},
            )
            return rows[0]["entity"], deleted[0]["deleted"] if deleted else 0

        outcome = await self._store.execute_write(_work)
        if outcome is None:
            raise NotFound(f"{self.entity_type} not found: {entity_id}")

        snapshot, deleted = outcome
        logger.info("Deleted %s %s and its relations", self.entity_type, entity_id)
        return DeletionResult(deleted=deleted > 0, entity=Entity.from_map(snapshot))

    async def get_relations(
        self,
        entity_id: str,
        relation_type: str | None = None,
        direction: str = "both",
    ) -> list[RelatedEntity]:
        """Return adjacent entities and the relation type connecting them.

        Args:
            entity_id: Anchor entity.
            relation_type: Optional relation type filter.
            direction: "out", "in" or "both".

        Raises:
            UnknownRelationType: If ``relation_type`` is not registered.
            ValidationError: If ``direction`` is not recognised.
            NotFound: If the anchor does not exist.
        """
        direction = direction.lower()
        if direction not in DIRECTIONS:
            raise ValidationError("direction", f"must be one of {DIRECTIONS}")
        rel_filter = f":{describe_relation_type(relation_type).name}" if relation_type else ""

        if direction == "out":
            pattern = f"(n)-[r{rel_filter}]->(m)"
        elif direction == "in":
            pattern = f"(n)<-[r{rel_filter}]-(m)"
        else:
            pattern = f"(n)-[r{rel_filter}]-(m)"

        query = f"""
        MATCH (n:{self._spec.label})
        WHERE elementId(n) = $id
        OPTIONAL MATCH {pattern}
        RETURN elementId(n) AS id,
               collect(CASE WHEN r IS NULL THEN null ELSE {{
                   relation_type: type(r),
                   outgoing: startNode(r) = n,
                   related: {entity_map('m')}
               }} END) AS relations
        """
        records = await self._store.read(query, {"id": entity_id})
        if not records:
            raise NotFound(f"{self.entity_type} not found: {entity_id}")

        return [
            RelatedEntity(
                relation_type=rel["relation_type"],
                direction="out" if rel["outgoing"] else "in",
                entity=Entity.from_map(rel["related"]),
            )
            for rel in records[0]["relations"]
        ]

    # -----------------------------------------------------------------
    # Search
    # -----------------------------------------------------------------

    async def search(
        self,
        term: str,
        fields: list[str] | None = None,
        limit: int = 50,
    ) -> list[Entity]:
        """Case-insensitive containment search over text fields.

        A blank term returns the first page of the unfiltered listing.
        """
        if not term or not term.strip():
            page = await self.find_all(limit=limit)
            return page.items

        self._check_paging(limit)
        search_fields = fields or list(self._spec.search_fields)
        for field in search_fields:
            self._check_field(field)
        conditions = " OR ".join(f"toLower(toString(n.{f})) CONTAINS toLower($term)" for f in search_fields)
        query = f"""
        MATCH (n:{self._spec.label})
        WHERE {conditions}
        RETURN {entity_map('n')} AS entity
        ORDER BY n.{self._spec.name_field}
        LIMIT $limit
        """
        records = await self._store.read(query, {"term": term.strip(), "limit": limit})
        return [Entity.from_map(r["entity"]) for r in records]

    async def find_by_related(
        self,
        relation_type: str,
        related_name: str,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[Entity]:
        """Entities linked through ``relation_type`` to an entity named ``related_name``.

        Raises:
            UnknownRelationType: If the relation type is not registered.
            ValidationError: If the relation type does not touch this entity type.
        """
        self._check_paging(limit)
        constraint = describe_relation_type(relation_type)
        clause = self._related_clause(constraint, "m", "related_name", "name_fields")
        query = f"""
        MATCH (n:{self._spec.label})
        WHERE {clause}
        RETURN {entity_map('n')} AS entity
        ORDER BY n.{self._spec.name_field}
        LIMIT $limit
        """
        params = {
            "related_name": related_name,
            "name_fields": self._related_params(constraint),
            "limit": limit,
        }
        records = await self._store.read(query, params)
        return [Entity.from_map(r["entity"]) for r in records]

    async def advanced_search(
        self,
        name: str | None = None,
        related: Mapping[str, str] | None = None,
        ranges: Mapping[str, tuple[float | None, float | None]] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[Entity]:
        """Combine name, related-entity and numeric range filters.

        Args:
            name: Case-insensitive containment on the name field.
            related: Mapping of relation type to the related entity's name.
            ranges: Mapping of numeric field to an inclusive (min, max) pair;
                either bound may be None.
            limit: Maximum number of results.

        Returns:
            Distinct matching entities ordered by name.
        """
        self._check_paging(limit)
        clauses: list[str] = []
        params: dict[str, Any] = {"limit": limit}

        if name:
            clauses.append(f"toLower(n.{self._spec.name_field}) CONTAINS toLower($name)")
            params["name"] = name

        for i, (relation_type, related_name) in enumerate((related or {}).items()):
            constraint = describe_relation_type(relation_type)
            clauses.append(self._related_clause(constraint, f"m{i}", f"related_{i}", f"related_{i}_fields"))
            params[f"related_{i}"] = related_name
            params[f"related_{i}_fields"] = self._related_params(constraint)

        for i, (field, (low, high)) in enumerate((ranges or {}).items()):
            self._check_field(field)
            if low is not None:
                clauses.append(f"n.{field} >= $range_{i}_min")
                params[f"range_{i}_min"] = low
            if high is not None:
                clauses.append(f"n.{field} <= $range_{i}_max")
                params[f"range_{i}_max"] = high

        query = f"""
        MATCH (n:{self._spec.label})
        {self._where(clauses)}
        RETURN DISTINCT {entity_map('n')} AS entity, n.{self._spec.name_field} AS sort_name
        ORDER BY sort_name
        LIMIT $limit
        """
        records = await self._store.read(query, params)
        return [Entity.from_map(r["entity"]) for r in records]

    # -----------------------------------------------------------------
    # Statistics
    # -----------------------------------------------------------------

    async def get_statistics(self) -> EntityStatistics:
        """Count the entities of this type and the distinct entities they reach.

        Every relation type that accepts this type as its source contributes
        the sorted names of its distinct targets, read in one transaction.
        """
        label = self._spec.label
        constraints = relations_from(self.entity_type)

        async def _work(tx: StoreTransaction) -> tuple[int, dict[str, list[dict[str, Any]]]]:
            rows = await tx.run(f"MATCH (n:{label}) RETURN count(n) AS total")
            reached: dict[str, list[dict[str, Any]]] = {}
            for constraint in constraints:
                reached[constraint.name] = await tx.run(
                    f"MATCH (n:{label})-[:{constraint.name}]->(t) RETURN DISTINCT {entity_map('t')} AS reached"
                )
            return (rows[0]["total"] if rows else 0), reached

        total, reached = await self._store.execute_read(_work)
        targets = {
            relation_type: sorted(
                {Entity.from_map(r["reached"]).display_name for r in records}, key=str.casefold
            )
            for relation_type, records in reached.items()
        }
        return EntityStatistics(entity_type=self.entity_type, total=total, targets=targets)


def build_repositories(store: GraphStore) -> dict[str, EntityRepository]:
    """Instantiate one repository per registered entity type."""
    return {entity_type: EntityRepository(store, entity_type) for entity_type in entity_type_names()}
