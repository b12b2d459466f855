"""Ontology loader for the Organograph knowledge graph.

Loads the YAML ontology schema and provides typed accessors over its raw
sections. The schema is loaded once and cached; the typed registries in
``organograph.ontology.entities`` and ``organograph.ontology.constraints``
are built on top of these accessors.
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Any

import yaml

_ONTOLOGY_PATH = Path(__file__).parent / "organology.yaml"


@functools.cache
def _load_ontology() -> dict[str, Any]:
    """Load and cache the YAML ontology schema."""
    with open(_ONTOLOGY_PATH, encoding="utf-8") as f:
        return yaml.safe_load(f)


def get_ontology() -> dict[str, Any]:
    """Return the full ontology dict (cached after first load)."""
    return _load_ontology()


def get_entity_type_definitions() -> dict[str, dict[str, Any]]:
    """Return the raw entity type section, keyed by entity type name."""
    return _load_ontology()["entity_types"]


def get_relation_type_definitions() -> dict[str, dict[str, Any]]:
    """Return the raw relation type section, keyed by relation type name."""
    return _load_ontology()["relation_types"]


def get_analytics_config() -> dict[str, Any]:
    """Return the analytics section (allow-lists, similarity weights, ...)."""
    return _load_ontology().get("analytics", {})
