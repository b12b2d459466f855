"""Read-only graph analytics.

Federated search, geographic search, similarity scoring, cultural-pattern
aggregation, recommendations, degree centrality and shortest paths. Which
types and relations each analysis covers is read from the ``analytics``
section of the ontology.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from organograph.core.exceptions import NotFound, ValidationError
from organograph.core.neo4j import GraphStore, StoreTransaction
from organograph.graph.models import (
    CentralityEntry,
    CulturalPattern,
    Entity,
    GraphPath,
    LocationMatch,
    Recommendation,
    SearchHit,
    SimilarEntity,
    entity_map,
    path_columns,
)
from organograph.ontology.constraints import describe_relation_type
from organograph.ontology.entities import describe_entity_type, get_entity_registry
from organograph.ontology.loader import get_analytics_config

logger = logging.getLogger(__name__)

SHORTEST_PATH_LIMIT = 5


def _optional_map(variable: str) -> str:
    return f"CASE WHEN {variable} IS NULL THEN null ELSE {entity_map(variable)} END"


def _names(maps: list[dict[str, Any]]) -> list[str]:
    return sorted({Entity.from_map(m).display_name for m in maps if m})


class GraphQueryEngine:
    """Analytics over the whole graph. Never writes."""

    def __init__(self, store: GraphStore) -> None:
        self._store = store
        self._settings = store.settings
        self._analytics = get_analytics_config()

    def _check_limit(self, limit: int) -> int:
        if not isinstance(limit, int) or not 1 <= limit <= self._settings.max_page_size:
            raise ValidationError("limit", f"must be an integer between 1 and {self._settings.max_page_size}")
        return limit

    async def _require_entity(self, tx: StoreTransaction, entity_id: str, label: str | None = None) -> None:
        pattern = f"(n:{label})" if label else "(n)"
        rows = await tx.run(f"MATCH {pattern} WHERE elementId(n) = $id RETURN elementId(n) AS id", {"id": entity_id})
        if not rows:
            raise NotFound(f"{label or 'Entity'} not found: {entity_id}")

    # -----------------------------------------------------------------
    # Search
    # -----------------------------------------------------------------

    async def global_search(self, term: str, limit: int | None = None) -> list[SearchHit]:
        """Search every entity type's searchable fields.

        Each type contributes its first ``limit`` hits by name; the hits are
        then merged across types, sorted by display name and capped.

        Raises:
            ValidationError: If the term is blank.
        """
        if not term or not term.strip():
            raise ValidationError("term", "must not be blank")
        limit = self._check_limit(limit or self._settings.default_search_limit)

        branches = []
        for spec in get_entity_registry().values():
            condition = " OR ".join(f"toLower(toString(n.{f})) CONTAINS toLower($term)" for f in spec.search_fields)
            branches.append(
                f"MATCH (n:{spec.label}) WHERE {condition} "
                f"RETURN n ORDER BY toLower(toString(n.{spec.name_field})) LIMIT $limit"
            )
        query = f"""
        CALL {{
            {' UNION ALL '.join(branches)}
        }}
        RETURN {entity_map('n')} AS entity
        """
        records = await self._store.read(query, {"term": term.strip(), "limit": limit})

        hits = [
            SearchHit(entity=entity, type=entity.type, name=entity.display_name)
            for entity in (Entity.from_map(r["entity"]) for r in records)
        ]
        hits.sort(key=lambda hit: hit.name.casefold())
        return hits[:limit]

    async def search_by_location(self, latitude: float, longitude: float, radius_km: float = 50.0) -> list[LocationMatch]:
        """Locations within ``radius_km`` (WGS-84) and what is located there.

        Raises:
            ValidationError: On out-of-range coordinates or a non-positive radius.
        """
        if not -90 <= latitude <= 90:
            raise ValidationError("latitude", "must be between -90 and 90")
        if not -180 <= longitude <= 180:
            raise ValidationError("longitude", "must be between -180 and 180")
        if radius_km <= 0:
            raise ValidationError("radius_km", "must be positive")

        config = self._analytics["location"]
        location = describe_entity_type(config["entity_type"])
        relation = describe_relation_type(config["relation"])
        lat_field, lng_field = config["latitude_field"], config["longitude_field"]
        query = f"""
        MATCH (l:{location.label})
        WHERE l.{lat_field} IS NOT NULL AND l.{lng_field} IS NOT NULL
        WITH l, point.distance(
                 point({{latitude: l.{lat_field}, longitude: l.{lng_field}}}),
                 point({{latitude: $latitude, longitude: $longitude}})
             ) / 1000.0 AS distance_km
        WHERE distance_km <= $radius_km
        OPTIONAL MATCH (e)-[:{relation.name}]->(l)
        RETURN {entity_map('l')} AS location,
               distance_km,
               collect(DISTINCT {_optional_map('e')}) AS related
        ORDER BY distance_km
        """
        records = await self._store.read(
            query, {"latitude": latitude, "longitude": longitude, "radius_km": radius_km}
        )

        matches = []
        for record in records:
            related: dict[str, list[Entity]] = defaultdict(list)
            for data in record["related"]:
                entity = Entity.from_map(data)
                related[entity.type].append(entity)
            matches.append(
                LocationMatch(
                    location=Entity.from_map(record["location"]),
                    distance_km=round(record["distance_km"], 3),
                    related=dict(related),
                )
            )
        return matches

    # -----------------------------------------------------------------
    # Similarity and patterns
    # -----------------------------------------------------------------

    async def find_similar_entities(self, entity_id: str, entity_type: str, limit: int = 10) -> list[SimilarEntity]:
        """Rank same-type entities by weighted shared neighbours.

        A candidate shares a neighbour with the anchor when both reach it
        through the same comparison relation. The score is the sum over
        relation types of weight times shared-neighbour count; zero-weight
        relations still make an entity a candidate.

        Args:
            entity_id: Anchor entity.
            entity_type: Type of the anchor and of the candidates.
            limit: Maximum number of results.

        Returns:
            Candidates ordered by score descending, then name.

        Raises:
            UnknownEntityType: If the type is not registered.
            ValidationError: If the type has no comparison relations.
            NotFound: If the anchor does not exist.
        """
        spec = describe_entity_type(entity_type)
        weights: dict[str, float] = self._analytics.get("similarity", {}).get(spec.name) or {}
        if not weights:
            raise ValidationError("entity_type", f"no comparison relations defined for {spec.name}")
        self._check_limit(limit)

        async def _work(tx: StoreTransaction) -> list[dict[str, Any]]:
            await self._require_entity(tx, entity_id, spec.label)
            return await tx.run(
                f"""
                MATCH (a:{spec.label})-[r1]-(shared)-[r2]-(c:{spec.label})
                WHERE elementId(a) = $id AND c <> a
                  AND type(r1) = type(r2) AND type(r1) IN $relation_types
                RETURN {entity_map('c')} AS candidate,
                       type(r1) AS relation_type,
                       count(DISTINCT shared) AS shared_count
                """,
                {"id": entity_id, "relation_types": list(weights)},
            )

        records = await self._store.execute_read(_work)

        candidates: dict[str, SimilarEntity] = {}
        for record in records:
            entity = Entity.from_map(record["candidate"])
            similar = candidates.setdefault(entity.id, SimilarEntity(entity=entity, score=0))
            similar.shared[record["relation_type"]] = record["shared_count"]
            similar.score += weights[record["relation_type"]] * record["shared_count"]

        ranked = sorted(candidates.values(), key=lambda s: (-s.score, s.entity.display_name.casefold()))
        return ranked[:limit]

    async def find_cultural_patterns(self) -> list[CulturalPattern]:
        """Aggregate instruments, rhythms, materials and families per
        (heritage, group, location) triple.

        Only triples whose group is used by at least one instrument are
        reported.
        """
        config = self._analytics["cultural_patterns"]
        heritage = describe_entity_type(config["heritage_type"])
        group = describe_entity_type(config["group_type"])
        location = describe_entity_type(config["location_type"])
        heritage_rel = describe_relation_type(config["heritage_relation"]).name
        usage_rel = describe_relation_type(config["usage_relation"]).name
        location_rel = describe_relation_type(config["location_relation"]).name
        instrument_rels = {key: describe_relation_type(rel).name for key, rel in config["instrument_relations"].items()}

        optional = "\n".join(
            f"OPTIONAL MATCH (i)-[:{rel}]->({key})" for key, rel in instrument_rels.items()
        )
        collected = ",\n".join(
            f"collect(DISTINCT {_optional_map(key)}) AS {key}" for key in instrument_rels
        )
        query = f"""
        MATCH (h:{heritage.label})-[:{heritage_rel}]->(g:{group.label})-[:{location_rel}]->(l:{location.label})
        MATCH (i)-[:{usage_rel}]->(g)
        {optional}
        RETURN {entity_map('h')} AS heritage,
               {entity_map('g')} AS grp,
               {entity_map('l')} AS location,
               collect(DISTINCT {entity_map('i')}) AS instruments,
               {collected}
        """
        records = await self._store.read(query)

        patterns = [
            CulturalPattern(
                heritage=Entity.from_map(r["heritage"]).display_name,
                group=Entity.from_map(r["grp"]).display_name,
                location=Entity.from_map(r["location"]).display_name,
                instruments=_names(r["instruments"]),
                rhythms=_names(r.get("rhythms", [])),
                materials=_names(r.get("materials", [])),
                families=_names(r.get("families", [])),
            )
            for r in records
        ]
        patterns.sort(key=lambda p: (p.heritage.casefold(), p.group.casefold(), p.location.casefold()))
        return patterns

    # -----------------------------------------------------------------
    # Ranking
    # -----------------------------------------------------------------

    async def get_recommendations(self, entity_id: str, limit: int = 5) -> list[Recommendation]:
        """Entities one or two hops away, ranked by connection count.

        Ties are broken randomly. Each recommendation carries the names of
        its family, location and group when present.

        Raises:
            NotFound: If the anchor does not exist.
        """
        self._check_limit(limit)
        context_rels = {
            key: describe_relation_type(rel).name
            for key, rel in self._analytics.get("recommendation_context", {}).items()
        }
        # One OPTIONAL MATCH per context key, collapsed to a single node each.
        carried = ["rec", "connections"]
        steps = []
        for key, rel in context_rels.items():
            var = f"ctx_{key}"
            steps.append(f"OPTIONAL MATCH (rec)-[:{rel}]->({var})")
            steps.append(f"WITH {', '.join(carried)}, head(collect({var})) AS {var}")
            carried.append(var)
        context_steps = "\n".join(steps)
        context_columns = "".join(f", {_optional_map(f'ctx_{key}')} AS ctx_{key}" for key in context_rels)

        async def _work(tx: StoreTransaction) -> list[dict[str, Any]]:
            await self._require_entity(tx, entity_id)
            return await tx.run(
                f"""
                MATCH (n)-[*1..2]-(rec)
                WHERE elementId(n) = $id AND rec <> n
                  AND any(label IN labels(rec) WHERE label IN $types)
                WITH rec, count(*) AS connections
                {context_steps}
                RETURN {entity_map('rec')} AS entity,
                       connections{context_columns}
                ORDER BY connections DESC, rand()
                LIMIT $limit
                """,
                {"id": entity_id, "types": self._analytics.get("recommendable_types", []), "limit": limit},
            )

        records = await self._store.execute_read(_work)
        return [
            Recommendation(
                entity=Entity.from_map(r["entity"]),
                connections=r["connections"],
                context={
                    key: Entity.from_map(r[f"ctx_{key}"]).display_name if r.get(f"ctx_{key}") else None
                    for key in context_rels
                },
            )
            for r in records
        ]

    async def get_centrality_analysis(self, limit: int = 20) -> list[CentralityEntry]:
        """Rank allow-listed entity types by unweighted degree."""
        self._check_limit(limit)
        query = f"""
        MATCH (n)
        WHERE any(label IN labels(n) WHERE label IN $types)
        OPTIONAL MATCH (n)-[r]-()
        WITH n, count(r) AS degree
        RETURN {entity_map('n')} AS entity, degree
        ORDER BY degree DESC
        LIMIT $limit
        """
        records = await self._store.read(
            query, {"types": self._analytics.get("centrality_types", []), "limit": limit}
        )
        entries = [CentralityEntry(entity=Entity.from_map(r["entity"]), degree=r["degree"]) for r in records]
        entries.sort(key=lambda e: -e.degree)
        return entries

    # -----------------------------------------------------------------
    # Paths and counts
    # -----------------------------------------------------------------

    async def find_shortest_paths(self, source_id: str, target_id: str, max_depth: int | None = None) -> list[GraphPath]:
        """All shortest paths between two entities, up to ``max_depth`` hops.

        Raises:
            ValidationError: If ``max_depth`` is outside 1..max_path_depth.
        """
        ceiling = self._settings.max_path_depth
        depth = ceiling if max_depth is None else max_depth
        if not isinstance(depth, int) or not 1 <= depth <= ceiling:
            raise ValidationError("max_depth", f"must be an integer between 1 and {ceiling}")
        if source_id == target_id:
            return []

        query = f"""
        MATCH (a), (b)
        WHERE elementId(a) = $source_id AND elementId(b) = $target_id
        MATCH p = allShortestPaths((a)-[*..{depth}]-(b))
        RETURN {path_columns('p')}
        LIMIT $limit
        """
        records = await self._store.read(
            query, {"source_id": source_id, "target_id": target_id, "limit": SHORTEST_PATH_LIMIT}
        )
        return [GraphPath.from_maps(r["nodes"], r["rels"]) for r in records]

    async def count_entities_by_type(self) -> dict[str, int]:
        """Node count per registered entity type, zero for empty types."""
        registry = get_entity_registry()
        labels = {spec.label: name for name, spec in registry.items()}
        records = await self._store.read(
            """
            MATCH (n)
            UNWIND labels(n) AS label
            WITH label WHERE label IN $labels
            RETURN label, count(*) AS count
            """,
            {"labels": list(labels)},
        )
        counts = {name: 0 for name in registry}
        for record in records:
            counts[labels[record["label"]]] = record["count"]
        return counts
