#!/usr/bin/env python
"""
Reconcile outstanding provider batches for a single tenant schema.

Usage:
  python -m scripts.reconcile_schema <schema_name> [--max-age-hours N]

  Or from project root:
  python scripts/reconcile_schema.py <schema_name>

Requires DATABASE_URL. Uses deterministic providers when ENV=test or EMBED_PROVIDER=deterministic.
"""

import argparse
import logging
import os
import sys

# Ensure project root is on path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from apps.embedding.db import Database
from apps.embedding.services.embedding_provider import build_provider_registry
from apps.embedding.services.reconcile import reconcile
from apps.embedding.services.tenant_guard import InvalidSchemaNameError, require_schema_name

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile provider batches for one tenant schema")
    parser.add_argument("schema_name", help="Tenant schema to reconcile")
    parser.add_argument(
        "--max-age-hours",
        type=float,
        default=None,
        help="Fail processing rows older than this (default PROCESSING_MAX_AGE_HOURS; 0 disables)",
    )
    args = parser.parse_args(argv)

    try:
        schema_name = require_schema_name(args.schema_name)
    except InvalidSchemaNameError as e:
        logger.error("%s", e)
        return 1

    db = Database()
    try:
        result = reconcile(db, schema_name, build_provider_registry(), max_age_hours=args.max_age_hours)
    finally:
        db.dispose()
    logger.info(
        "reconcile done: schema=%s batches=%d completed=%d failed=%d stale=%d reviewed=%d",
        schema_name,
        result["batches"],
        result["completed"],
        result["failed"],
        result["stale"],
        result["reviewed"],
    )
    print(
        f"Reconciled {schema_name}: {result['completed']} completed, "
        f"{result['failed']} failed, {result['batches_pending']} batches still pending"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
