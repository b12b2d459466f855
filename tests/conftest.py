"""Shared test fixtures for the Organograph test suite.

Provides test settings, a fake Neo4j driver whose transactions answer from
a scripted queue, and a store backed by the in-memory ``FakeGraph``.
"""

from __future__ import annotations

import pytest
from fakes import FakeDriver, FakeGraph

from organograph.core.config import Settings
from organograph.core.neo4j import GraphStore
from organograph.engine import OrganographEngine


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that don't read the environment's .env file."""
    return Settings(
        app_env="testing",
        neo4j_uri="bolt://localhost:7687",
        neo4j_user="neo4j",
        neo4j_password="test_password",
        neo4j_query_timeout_seconds=5.0,
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
def fake_driver() -> FakeDriver:
    """Driver answering from a queue of scripted responses."""
    return FakeDriver()


@pytest.fixture
def scripted_store(test_settings: Settings, fake_driver: FakeDriver) -> GraphStore:
    return GraphStore(test_settings, driver=fake_driver)


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def graph_driver(graph: FakeGraph) -> FakeDriver:
    return FakeDriver(graph.run)


@pytest.fixture
def graph_store(test_settings: Settings, graph_driver: FakeDriver) -> GraphStore:
    """Store backed by the in-memory graph."""
    return GraphStore(test_settings, driver=graph_driver)


@pytest.fixture
def engine(graph_store: GraphStore) -> OrganographEngine:
    return OrganographEngine(graph_store)


@pytest.fixture
def catalogue(graph: FakeGraph) -> dict[str, str]:
    """A small West African catalogue; returns node IDs by name."""
    ids = {
        "Djembe": graph.add_node("Instrument", nomInstrument="Djembe", description="Goblet drum"),
        "Balafon": graph.add_node("Instrument", nomInstrument="Balafon", description="Wooden xylophone"),
        "Kora": graph.add_node("Instrument", nomInstrument="Kora", description="21-string harp lute"),
        "Tama": graph.add_node("Instrument", nomInstrument="Tama", description="Talking drum"),
        "Percussions": graph.add_node("Famille", nomFamille="Percussions"),
        "Cordes": graph.add_node("Famille", nomFamille="Cordes"),
        "Malinke": graph.add_node("GroupeEthnique", nomGroupe="Malinke", langue="Maninka"),
        "Wolof": graph.add_node("GroupeEthnique", nomGroupe="Wolof", langue="Wolof"),
        "Bois": graph.add_node("Materiau", nomMateriau="Bois", typeMateriau="Vegetal"),
        "Bamako": graph.add_node("Localite", nomLocalite="Bamako", latitude=12.6392, longitude=-8.0029),
        "Dununba": graph.add_node("Rythme", nomRythme="Dununba", tempoBPM=110),
        "Frappe": graph.add_node("TechniqueDeJeu", nomTechnique="Frappe"),
        "Pincement": graph.add_node("TechniqueDeJeu", nomTechnique="Pincement"),
    }
    return ids
