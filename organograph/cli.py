"""Organograph command-line interface.

Usage::

    # Schema-only validation (no Neo4j required)
    organograph validate-ontology

    # Also check live Neo4j data
    organograph validate-ontology --live

    # Create uniqueness constraints and indexes
    organograph setup-schema

    # Relation statistics and entity counts as JSON
    organograph stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from organograph.core.config import get_settings
from organograph.core.neo4j import GraphStore, setup_neo4j_constraints
from organograph.engine import OrganographEngine
from organograph.ontology.constraints import relation_type_names
from organograph.ontology.entities import entity_type_names, schema_statements
from organograph.ontology.validate import validate_neo4j, validate_schema

logger = logging.getLogger(__name__)


async def _check_live() -> list[str]:
    async with GraphStore(get_settings()) as store:
        return await validate_neo4j(store)


async def _setup_schema() -> int:
    async with GraphStore(get_settings()) as store:
        return await setup_neo4j_constraints(store, schema_statements())


async def _stats() -> dict:
    async with OrganographEngine.from_settings() as engine:
        statistics = await engine.relations.get_relation_statistics()
        counts = await engine.queries.count_entities_by_type()
    return {
        "entities": counts,
        "relations": {"total": statistics.total, "counts": statistics.counts},
    }


def cmd_validate_ontology(args: argparse.Namespace) -> int:
    print("Validating Organograph ontology schema...")
    errors = validate_schema()
    if errors:
        print(f"FAILED: {len(errors)} error(s):")
        for err in errors:
            print(f"  - {err}")
        return 1

    entity_types = entity_type_names()
    relation_types = relation_type_names()
    print(f"Schema OK: {len(entity_types)} entity types, {len(relation_types)} relation types")
    print(f"  Entity types: {sorted(entity_types)}")
    print(f"  Relation types: {sorted(relation_types)}")

    if args.live:
        print()
        print(f"Checking Neo4j at {get_settings().neo4j_uri}...")
        warnings = asyncio.run(_check_live())
        if warnings:
            print(f"  {len(warnings)} warning(s):")
            for w in warnings:
                print(f"    - {w}")
        else:
            print("  Neo4j schema matches ontology.")
    return 0


def cmd_setup_schema(args: argparse.Namespace) -> int:
    executed = asyncio.run(_setup_schema())
    print(f"Neo4j schema setup complete ({executed} statements).")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    print(json.dumps(asyncio.run(_stats()), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="organograph", description="Organograph knowledge graph tools")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (e.g. DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate-ontology", help="Validate the ontology schema")
    validate.add_argument("--live", action="store_true", help="Also check the configured Neo4j database")
    validate.set_defaults(func=cmd_validate_ontology)

    setup = sub.add_parser("setup-schema", help="Create Neo4j constraints and indexes")
    setup.set_defaults(func=cmd_setup_schema)

    stats = sub.add_parser("stats", help="Print relation statistics and entity counts")
    stats.set_defaults(func=cmd_stats)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``organograph`` console script."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=(args.log_level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
