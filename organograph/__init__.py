"""Organograph: ontology-constrained knowledge graph of musical instruments and their cultural context."""
