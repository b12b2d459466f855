"""Engine facade wiring the store, repositories, relations and queries."""

from __future__ import annotations

import logging

from organograph.core.config import Settings, get_settings
from organograph.core.neo4j import GraphStore
from organograph.graph.queries import GraphQueryEngine
from organograph.graph.relations import RelationManager
from organograph.graph.repository import EntityRepository, build_repositories
from organograph.ontology.entities import describe_entity_type

logger = logging.getLogger(__name__)


class OrganographEngine:
    """Entry point for callers of the ontology engine.

    Built once at process start around a single ``GraphStore``; every
    component shares that store.

    Attributes:
        store: Graph store handle.
        repositories: One repository per registered entity type.
        relations: Relation manager.
        queries: Graph analytics.
    """

    def __init__(self, store: GraphStore) -> None:
        self.store = store
        self.repositories: dict[str, EntityRepository] = build_repositories(store)
        self.relations = RelationManager(store)
        self.queries = GraphQueryEngine(store)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> OrganographEngine:
        """Build an engine (not yet connected) from application settings."""
        return cls(GraphStore(settings or get_settings()))

    def repository(self, entity_type: str) -> EntityRepository:
        """Return the repository for an entity type.

        Raises:
            UnknownEntityType: If the type is not registered.
        """
        return self.repositories[describe_entity_type(entity_type).name]

    async def connect(self) -> None:
        await self.store.connect()
        logger.info("Organograph engine ready (%d entity types)", len(self.repositories))

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> OrganographEngine:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
