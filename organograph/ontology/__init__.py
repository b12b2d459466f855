"""Ontology schema: entity type registry and relation constraint table."""
