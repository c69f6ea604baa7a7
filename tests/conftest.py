"""Pytest fixtures for root-level tests (Postgres integration, repo structure, no-network guards)."""

import os

import pytest

# Ensure ENV=test (root conftest also does this; redundant but safe for tests/ only runs)
os.environ.setdefault("ENV", "test")
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("EMBED_PROVIDER", "deterministic")

from tests._db_bootstrap import postgres_reachable


def _db_available_for_tests() -> bool:
    """True if DATABASE_TEST_URL is set and Postgres is reachable (short timeout)."""
    url = os.environ.get("DATABASE_TEST_URL")
    if not url:
        return False
    return postgres_reachable(url)


# Marker for DB tests: skip if DATABASE_TEST_URL not set or Postgres not reachable
requires_db = pytest.mark.skipif(
    not _db_available_for_tests(),
    reason="DATABASE_TEST_URL not set or Postgres not reachable",
)


@pytest.fixture
def pg_db():
    """Database bound to DATABASE_TEST_URL. Tables are truncated before each test."""
    from sqlalchemy import text

    from apps.embedding.db import Database
    from tests._db_bootstrap import TEST_TENANT_SCHEMAS

    database = Database(os.environ["DATABASE_TEST_URL"])
    with database.engine.begin() as conn:
        conn.execute(
            text("TRUNCATE public.company_requests, public.company_modifications, public.modification_requests, public.models_details CASCADE")
        )
        for schema_name in TEST_TENANT_SCHEMAS:
            conn.execute(
                text(
                    f'TRUNCATE "{schema_name}".product_embeddings, "{schema_name}".document_embeddings, '
                    f'"{schema_name}".product_details, "{schema_name}".products, "{schema_name}".product_categories, '
                    f'"{schema_name}".documents, "{schema_name}".ai_config CASCADE'
                )
            )
    yield database
    database.dispose()
