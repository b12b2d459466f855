"""Ontology consistency checks.

Validates the YAML ontology against the per-type field structs and,
optionally, checks that a live Neo4j database only holds labels and
relationship types the ontology knows about. Run through the
``organograph validate-ontology`` command.
"""

from __future__ import annotations

from typing import get_args

from organograph.core.neo4j import GraphStore
from organograph.ontology.constraints import Cardinality
from organograph.ontology.entities import FIELD_MODELS, get_entity_registry
from organograph.ontology.loader import get_analytics_config, get_ontology


def validate_schema() -> list[str]:
    """Validate the ontology YAML for internal consistency.

    Returns:
        List of error messages (empty = valid).
    """
    errors: list[str] = []
    ontology = get_ontology()

    for key in ("entity_types", "relation_types"):
        if key not in ontology:
            errors.append(f"Missing required top-level key: {key}")

    if errors:
        return errors

    entity_types = set(ontology["entity_types"])
    relation_types = set(ontology["relation_types"])

    for name, defn in ontology["entity_types"].items():
        model = FIELD_MODELS.get(name)
        if model is None:
            errors.append(f"Entity type '{name}' has no field struct")
            continue
        fields = set(model.model_fields)
        if defn.get("name_field") not in fields:
            errors.append(f"Entity type '{name}' name_field '{defn.get('name_field')}' is not a field")
        elif not model.model_fields[defn["name_field"]].is_required():
            errors.append(f"Entity type '{name}' name_field '{defn['name_field']}' must be required")
        for key in ("display_fields", "search_fields", "sublabel_field"):
            value = defn.get(key) or []
            for field in [value] if isinstance(value, str) else value:
                if field not in fields:
                    errors.append(f"Entity type '{name}' {key} references unknown field '{field}'")
        for group in defn.get("indexes") or []:
            for field in group:
                if field not in fields:
                    errors.append(f"Entity type '{name}' index references unknown field '{field}'")

    for name in set(FIELD_MODELS) - entity_types:
        errors.append(f"Field struct '{name}' has no entity type")

    for name, defn in ontology["relation_types"].items():
        if "description" not in defn:
            errors.append(f"Relation type '{name}' missing 'description'")
        if defn.get("cardinality") not in set(Cardinality):
            errors.append(f"Relation type '{name}' has invalid cardinality {defn.get('cardinality')!r}")
        for endpoint_key in ("from", "to"):
            endpoints = defn.get(endpoint_key) or []
            if not endpoints:
                errors.append(f"Relation type '{name}' has no '{endpoint_key}' types")
            for endpoint in endpoints:
                if endpoint not in entity_types:
                    errors.append(
                        f"Relation type '{name}' {endpoint_key} references unknown entity type '{endpoint}'"
                    )

    analytics = get_analytics_config()
    for key in ("centrality_types", "recommendable_types"):
        for name in analytics.get(key, []):
            if name not in entity_types:
                errors.append(f"analytics.{key} references unknown entity type '{name}'")
    for key, rel in analytics.get("recommendation_context", {}).items():
        if rel not in relation_types:
            errors.append(f"analytics.recommendation_context.{key} references unknown relation type '{rel}'")
    for name, weights in analytics.get("similarity", {}).items():
        if name not in entity_types:
            errors.append(f"analytics.similarity references unknown entity type '{name}'")
            continue
        for rel, weight in weights.items():
            rel_defn = ontology["relation_types"].get(rel)
            if rel_defn is None:
                errors.append(f"analytics.similarity.{name} references unknown relation type '{rel}'")
            elif name not in rel_defn.get("from", []) and name not in rel_defn.get("to", []):
                errors.append(f"analytics.similarity.{name}: relation '{rel}' does not connect {name}")
            if not isinstance(weight, (int, float)) or weight < 0:
                errors.append(f"analytics.similarity.{name}.{rel} weight must be a non-negative number")

    return errors


def known_labels() -> set[str]:
    """Every label a node may carry, sub-labels included."""
    labels: set[str] = set()
    for spec in get_entity_registry().values():
        labels.add(spec.label)
        if spec.sublabel_field:
            annotation = spec.fields_model.model_fields[spec.sublabel_field].annotation
            labels.update(str(value) for value in get_args(annotation))
    return labels


async def validate_neo4j(store: GraphStore) -> list[str]:
    """Check that a live Neo4j database conforms to the ontology.

    Returns:
        List of warning messages about schema drift.
    """
    warnings: list[str] = []
    valid_labels = known_labels()
    valid_rels = set(get_ontology()["relation_types"])

    for record in await store.read("CALL db.labels()"):
        label = record.get("label", "")
        if label and label not in valid_labels:
            warnings.append(f"Neo4j has unknown node label: '{label}'")

    for record in await store.read("CALL db.relationshipTypes()"):
        rel_type = record.get("relationshipType", "")
        if rel_type and rel_type not in valid_rels:
            warnings.append(f"Neo4j has unknown relationship type: '{rel_type}'")

    return warnings
