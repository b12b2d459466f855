"""Relation manager.

Creates and removes typed edges under the constraint registry, and answers
the relation-centric read queries (adjacency, listings, bounded paths,
statistics). Every Cypher relationship type interpolated here has been
looked up in the registry first.
"""

from __future__ import annotations

import logging
from typing import Any

from organograph.core.exceptions import (
    ConstraintViolation,
    NotFound,
    TypeMismatch,
    UnknownRelationType,
    ValidationError,
)
from organograph.core.neo4j import GraphStore, StoreTransaction
from organograph.graph.models import (
    Entity,
    EntityRelations,
    GraphPath,
    Relation,
    RelatedEntity,
    RelationStatistics,
    RelationValidation,
    entity_map,
    path_columns,
)
from organograph.ontology.constraints import (
    RelationConstraint,
    describe_relation_type,
    get_constraint_registry,
    relation_type_names,
    relations_from,
    relations_to,
)
from organograph.ontology.entities import get_entity_registry

logger = logging.getLogger(__name__)

# Write lock on both endpoints: a no-op property write held until commit.
_LOCK_ENDPOINTS = """
MATCH (n)
WHERE elementId(n) IN [$source_id, $target_id]
SET n._lock = true
REMOVE n._lock
"""

_LOAD_ENDPOINTS = f"""
MATCH (n)
WHERE elementId(n) IN [$source_id, $target_id]
RETURN {entity_map('n')} AS endpoint
"""

_RELATION_COLUMNS = f"elementId(r) AS id, type(r) AS type, {entity_map('a')} AS source, {entity_map('b')} AS target"


def _relation_from_row(row: dict[str, Any]) -> Relation:
    return Relation(
        type=row["type"],
        source=Entity.from_map(row["source"]),
        target=Entity.from_map(row["target"]),
        id=row.get("id"),
    )


class RelationManager:
    """Constraint-checked relation creation and relation-centric reads."""

    def __init__(self, store: GraphStore) -> None:
        self._store = store
        self._settings = store.settings

    # -----------------------------------------------------------------
    # Constraint checks
    # -----------------------------------------------------------------

    async def _check(
        self,
        tx: StoreTransaction,
        constraint: RelationConstraint,
        source_id: str,
        target_id: str,
    ) -> tuple[Entity, Entity]:
        """Load both endpoints and run the endpoint and cardinality checks.

        Returns:
            The resolved (source, target) entities.

        Raises:
            NotFound: If either endpoint does not exist.
            TypeMismatch: If an endpoint type is not permitted.
            DuplicateRelation: If the edge already exists.
            CardinalityViolation: If the edge would break the cardinality class.
        """
        rows = await tx.run(_LOAD_ENDPOINTS, {"source_id": source_id, "target_id": target_id})
        endpoints = {e.id: e for e in (Entity.from_map(r["endpoint"]) for r in rows)}
        source = endpoints.get(source_id)
        if source is None:
            raise NotFound(f"Source entity not found: {source_id}")
        target = endpoints.get(target_id)
        if target is None:
            raise NotFound(f"Target entity not found: {target_id}")

        constraint.check_endpoints(source.type, target.type)

        existing = await tx.run(
            f"""
            MATCH (a)-[r:{constraint.name}]->(b)
            WHERE elementId(a) IN $ids OR elementId(b) IN $ids
            RETURN elementId(a) AS from_id, elementId(b) AS to_id
            """,
            {"ids": [source_id, target_id]},
        )
        constraint.check_cardinality(source_id, target_id, [(r["from_id"], r["to_id"]) for r in existing])
        return source, target

    async def create_relation(self, source_id: str, target_id: str, relation_type: str) -> Relation:
        """Create a directed edge after enforcing the relation's constraints.

        Locking, checks and creation happen in one write transaction, so two
        concurrent creations sharing an endpoint are serialised.

        Raises:
            UnknownRelationType: If the relation type is not registered.
            NotFound: If either endpoint does not exist.
            TypeMismatch: If an endpoint type is not permitted.
            DuplicateRelation: If the edge already exists.
            CardinalityViolation: If the edge would break the cardinality class.
        """
        constraint = describe_relation_type(relation_type)

        async def _work(tx: StoreTransaction) -> Relation:
            params = {"source_id": source_id, "target_id": target_id}
            await tx.run(_LOCK_ENDPOINTS, params)
            source, target = await self._check(tx, constraint, source_id, target_id)
            rows = await tx.run(
                f"""
                MATCH (a), (b)
                WHERE elementId(a) = $source_id AND elementId(b) = $target_id
                CREATE (a)-[r:{constraint.name}]->(b)
                RETURN elementId(r) AS relation_id
                """,
                params,
            )
            return Relation(type=constraint.name, source=source, target=target, id=rows[0]["relation_id"])

        relation = await self._store.execute_write(_work)
        logger.info(
            "Created relation %s: %s -> %s",
            relation.type,
            relation.source.display_name,
            relation.target.display_name,
        )
        return relation

    async def validate_relation(self, source_id: str, target_id: str, relation_type: str) -> RelationValidation:
        """Dry-run the creation checks without writing.

        Store failures still propagate as ``StoreError``.
        """
        try:
            constraint = describe_relation_type(relation_type)

            async def _work(tx: StoreTransaction) -> None:
                await self._check(tx, constraint, source_id, target_id)

            await self._store.execute_read(_work)
        except (UnknownRelationType, NotFound, TypeMismatch, ConstraintViolation) as exc:
            return RelationValidation(valid=False, reason=str(exc), code=exc.code)
        return RelationValidation(valid=True)

    async def delete_relation(self, source_id: str, target_id: str, relation_type: str) -> bool:
        """Delete the (source, target, type) edge.

        Returns:
            True if an edge was removed, False if none existed.
        """
        constraint = describe_relation_type(relation_type)
        query = f"""
        MATCH (a)-[r:{constraint.name}]->(b)
        WHERE elementId(a) = $source_id AND elementId(b) = $target_id
        DELETE r
        RETURN count(r) AS deleted
        """
        records = await self._store.write(query, {"source_id": source_id, "target_id": target_id})
        deleted = bool(records and records[0]["deleted"])
        if deleted:
            logger.info("Deleted relation %s: %s -> %s", constraint.name, source_id, target_id)
        return deleted

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    async def get_entity_relations(self, entity_id: str) -> EntityRelations:
        """Return every outgoing and incoming relation of one entity.

        Raises:
            NotFound: If the entity does not exist.
        """
        query = f"""
        MATCH (n)
        WHERE elementId(n) = $id
        OPTIONAL MATCH (n)-[r]-(m)
        RETURN {entity_map('n')} AS entity,
               collect(CASE WHEN r IS NULL THEN null ELSE {{
                   relation_type: type(r),
                   outgoing: startNode(r) = n,
                   related: {entity_map('m')}
               }} END) AS relations
        """
        records = await self._store.read(query, {"id": entity_id})
        if not records:
            raise NotFound(f"Entity not found: {entity_id}")

        result = EntityRelations(entity=Entity.from_map(records[0]["entity"]))
        for rel in records[0]["relations"]:
            related = RelatedEntity(
                relation_type=rel["relation_type"],
                direction="out" if rel["outgoing"] else "in",
                entity=Entity.from_map(rel["related"]),
            )
            (result.outgoing if rel["outgoing"] else result.incoming).append(related)
        return result

    async def get_relations_by_type(self, relation_type: str, limit: int = 100) -> list[Relation]:
        """List edges of one relation type."""
        constraint = describe_relation_type(relation_type)
        self._check_limit(limit)
        query = f"""
        MATCH (a)-[r:{constraint.name}]->(b)
        RETURN {_RELATION_COLUMNS}
        ORDER BY id
        LIMIT $limit
        """
        records = await self._store.read(query, {"limit": limit})
        return [_relation_from_row(r) for r in records]

    async def list_relations(self, limit: int = 100, offset: int = 0) -> list[Relation]:
        """List all edges, ordered by relation type."""
        self._check_limit(limit)
        if offset < 0:
            raise ValidationError("offset", "must be a non-negative integer")
        query = f"""
        MATCH (a)-[r]->(b)
        RETURN {_RELATION_COLUMNS}
        ORDER BY type, id
        SKIP $offset
        LIMIT $limit
        """
        records = await self._store.read(query, {"limit": limit, "offset": offset})
        return [_relation_from_row(r) for r in records]

    def _check_limit(self, limit: int) -> None:
        if not 1 <= limit <= self._settings.max_page_size:
            raise ValidationError("limit", f"must be between 1 and {self._settings.max_page_size}")

    def _check_depth(self, max_depth: int) -> int:
        ceiling = self._settings.max_path_depth
        if not isinstance(max_depth, int) or not 1 <= max_depth <= ceiling:
            raise ValidationError("max_depth", f"must be an integer between 1 and {ceiling}")
        return max_depth

    async def find_paths(self, source_id: str, target_id: str, max_depth: int = 3) -> list[GraphPath]:
        """Find paths of bounded length between two entities.

        Any relation type is followed in either direction. At most
        ``max_path_results`` paths are returned, shortest first.

        Raises:
            ValidationError: If ``max_depth`` is outside 1..max_path_depth.
        """
        depth = self._check_depth(max_depth)
        if source_id == target_id:
            return []

        # Variable-length bounds cannot be parameters; depth is validated above.
        query = f"""
        MATCH (a), (b)
        WHERE elementId(a) = $source_id AND elementId(b) = $target_id
        MATCH p = (a)-[*1..{depth}]-(b)
        RETURN {path_columns('p')}
        ORDER BY hops
        LIMIT $limit
        """
        records = await self._store.read(
            query,
            {"source_id": source_id, "target_id": target_id, "limit": self._settings.max_path_results},
        )
        return [GraphPath.from_maps(r["nodes"], r["rels"]) for r in records]

    async def get_relation_statistics(self) -> RelationStatistics:
        """Count edges per relation type, including zero for unused types."""
        records = await self._store.read(
            "MATCH ()-[r]->() RETURN type(r) AS relation_type, count(r) AS count"
        )
        known = list(relation_type_names())
        counts = {name: 0 for name in known}
        for record in records:
            counts[record["relation_type"]] = record["count"]
        return RelationStatistics(total=sum(counts.values()), counts=counts, relation_types=known)

    async def describe_ontology(self) -> dict[str, Any]:
        """Return the entity and relation registries with live counts."""
        label_rows = await self._store.read(
            "MATCH (n) UNWIND labels(n) AS label RETURN label, count(*) AS count"
        )
        label_counts = {r["label"]: r["count"] for r in label_rows}
        statistics = await self.get_relation_statistics()

        entity_types = [
            {
                "name": spec.name,
                "description": spec.description,
                "name_field": spec.name_field,
                "fields": sorted(spec.field_names),
                "outgoing": [c.name for c in relations_from(spec.name)],
                "incoming": [c.name for c in relations_to(spec.name)],
                "count": label_counts.get(spec.label, 0),
            }
            for spec in get_entity_registry().values()
        ]
        relation_types = [
            {
                "name": c.name,
                "from": sorted(c.sources),
                "to": sorted(c.targets),
                "cardinality": str(c.cardinality),
                "description": c.summary,
                "count": statistics.counts.get(c.name, 0),
            }
            for c in get_constraint_registry().values()
        ]
        return {"entity_types": entity_types, "relation_types": relation_types}
