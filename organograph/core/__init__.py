"""Core infrastructure: configuration, error taxonomy and the Neo4j store."""
