"""Postgres integration: generate + reconcile passes against real tenant schemas. Requires DATABASE_TEST_URL."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from apps.embedding.models import (
    AIConfig,
    CompanyModification,
    CompanyRequest,
    Document,
    DocumentEmbedding,
    ModelDetails,
    ModificationRequest,
    Product,
    ProductCategory,
    ProductDetail,
    ProductEmbedding,
)
from apps.embedding.services import repo
from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry, build_provider_registry
from apps.embedding.services.generate import generate_embeddings
from apps.embedding.services.reconcile import check_batch_status
from apps.embedding.services.tenant_guard import InvalidSchemaNameError
from apps.embedding.tests.fakes import FakeBatchProvider
from tests.conftest import requires_db

ACME = "tenant_acme"
GLOBEX = "tenant_globex"
SMALL = "text-embedding-3-small"


def _seed_model(db, name: str = SMALL, dims: int = 1536) -> None:
    with db.session() as s:
        s.add(ModelDetails(name=name, vector_number=dims))


def _seed_config(db, schema: str, *, model: str = SMALL, batch: bool = False) -> None:
    with db.tenant_session(schema) as s:
        s.add(AIConfig(embedding_model=model, batch_embedding=batch))


def _seed_product(db, schema: str, name: str = "Widget") -> uuid.UUID:
    """Product with category + details and a pending embedding row. Returns the embedding row id."""
    with db.tenant_session(schema) as s:
        cat = ProductCategory(name="Tools", description="Hand tools")
        s.add(cat)
        s.flush()
        product = Product(name=name, type="product", description=f"{name} description", category_id=cat.id)
        s.add(product)
        s.flush()
        s.add(ProductDetail(product_id=product.id, price=Decimal("12.50"), currency="USD"))
        row = ProductEmbedding(product_id=product.id)
        s.add(row)
        s.flush()
        return row.id


def _seed_document(db, schema: str, name: str = "Handbook") -> uuid.UUID:
    with db.tenant_session(schema) as s:
        doc = Document(name=name, type="url", url="https://example.com/handbook")
        s.add(doc)
        s.flush()
        row = DocumentEmbedding(document_id=doc.id)
        s.add(row)
        s.flush()
        return row.id


def _seed_modification(db, schema: str, table: str) -> uuid.UUID:
    with db.session() as s:
        mr = ModificationRequest(schema_name=schema, table_name=table, status="PENDING")
        s.add(mr)
        s.flush()
        s.add(CompanyModification(modification_request_id=mr.id))
        return mr.id


def _row(db, schema: str, model: type, row_id: uuid.UUID):
    with db.tenant_session(schema) as s:
        row = s.get(model, row_id)
        s.expunge(row)
        return row


def _modification_status(db, mr_id: uuid.UUID) -> str:
    with db.session() as s:
        return s.get(ModificationRequest, mr_id).status


def _fake_registry(dims: int = 8) -> tuple[FakeBatchProvider, EmbeddingProviderRegistry]:
    provider = FakeBatchProvider(model_name=SMALL, dimensions=dims)
    return provider, EmbeddingProviderRegistry([provider])


@requires_db
def test_tenant_session_scopes_search_path(pg_db):
    """Unqualified tenant tables resolve to the session's schema only."""
    _seed_product(pg_db, ACME, "Acme Widget")
    with pg_db.tenant_session(GLOBEX) as s:
        assert list(s.scalars(select(Product))) == []
    with pg_db.tenant_session(ACME) as s:
        names = [p.name for p in s.scalars(select(Product))]
    assert names == ["Acme Widget"]


@requires_db
def test_tenant_session_rejects_bad_schema_name(pg_db):
    with pytest.raises(InvalidSchemaNameError):
        with pg_db.tenant_session('acme"; DROP SCHEMA public; --'):
            pass


@requires_db
def test_tenant_session_rolls_back_on_error(pg_db):
    with pytest.raises(RuntimeError):
        with pg_db.tenant_session(ACME) as s:
            s.add(Product(name="Ghost", type="product"))
            s.flush()
            raise RuntimeError("boom")
    with pg_db.tenant_session(ACME) as s:
        assert list(s.scalars(select(Product))) == []


@requires_db
def test_direct_generate_completes_rows_and_reviews_request(pg_db):
    _seed_model(pg_db)
    _seed_config(pg_db, ACME)
    row_id = _seed_product(pg_db, ACME)
    mr_id = _seed_modification(pg_db, ACME, "product_embeddings")

    summary = generate_embeddings(pg_db, build_provider_registry())

    assert summary["completed"] == 1
    assert summary["tenants_failed"] == 0
    row = _row(pg_db, ACME, ProductEmbedding, row_id)
    assert row.embedding_status == "completed"
    assert row.batch_id is None
    assert row.embedding_model == SMALL
    assert len(row.embedding) == 1536
    assert "# Widget" in row.content_markdown
    assert "USD 12.5" in row.content_markdown
    with pg_db.tenant_session(ACME) as s:
        assert s.get(Product, row.product_id).is_embedded is True
    assert _modification_status(pg_db, mr_id) == "REVIEWED"


@requires_db
def test_generate_leaves_other_tenant_untouched(pg_db):
    _seed_model(pg_db)
    _seed_config(pg_db, ACME)
    _seed_config(pg_db, GLOBEX)
    acme_row = _seed_product(pg_db, ACME)
    globex_row = _seed_product(pg_db, GLOBEX)
    _seed_modification(pg_db, ACME, "product_embeddings")

    generate_embeddings(pg_db, build_provider_registry())

    assert _row(pg_db, ACME, ProductEmbedding, acme_row).embedding_status == "completed"
    assert _row(pg_db, GLOBEX, ProductEmbedding, globex_row).embedding_status == "pending"


@requires_db
def test_batch_generate_then_reconcile(pg_db):
    _seed_model(pg_db, dims=8)
    _seed_config(pg_db, ACME, batch=True)
    row_id = _seed_document(pg_db, ACME)
    mr_id = _seed_modification(pg_db, ACME, "document_embeddings")
    provider, registry = _fake_registry()

    summary = generate_embeddings(pg_db, registry)

    assert summary["processing"] == 1
    assert summary["batch_requests"] == 1
    row = _row(pg_db, ACME, DocumentEmbedding, row_id)
    assert row.embedding_status == "processing"
    assert row.batch_id == "batch_1"
    assert row.embedding is None
    assert _modification_status(pg_db, mr_id) == "REVIEWED"
    with pg_db.session() as s:
        requests = list(s.scalars(select(CompanyRequest)))
    assert len(requests) == 1

    # Still in flight: nothing changes, request stays pending
    summary = check_batch_status(pg_db, registry)
    assert summary["completed"] == 0
    assert _row(pg_db, ACME, DocumentEmbedding, row_id).embedding_status == "processing"

    provider.complete_batch("batch_1")
    summary = check_batch_status(pg_db, registry)
    assert summary["completed"] == 1
    assert summary["reviewed"] == 1
    row = _row(pg_db, ACME, DocumentEmbedding, row_id)
    assert row.embedding_status == "completed"
    assert row.batch_id is None
    assert len(row.embedding) == 8
    assert _modification_status(pg_db, requests[0].modification_request_id) == "REVIEWED"

    # Second reconcile is a no-op
    summary = check_batch_status(pg_db, registry)
    assert summary["tenants"] == 0


@requires_db
def test_failed_batch_marks_rows_failed(pg_db):
    _seed_model(pg_db, dims=8)
    _seed_config(pg_db, ACME, batch=True)
    row_id = _seed_product(pg_db, ACME)
    _seed_modification(pg_db, ACME, "product_embeddings")
    provider, registry = _fake_registry()

    generate_embeddings(pg_db, registry)
    provider.fail_batch("batch_1", "expired")
    summary = check_batch_status(pg_db, registry)

    assert summary["failed"] == 1
    row = _row(pg_db, ACME, ProductEmbedding, row_id)
    assert row.embedding_status == "failed"
    assert row.batch_id is None
    assert "expired" in row.metadata_["last_error"]


@requires_db
def test_stale_processing_rows_are_failed(pg_db):
    _seed_model(pg_db, dims=8)
    _seed_config(pg_db, ACME, batch=True)
    row_id = _seed_product(pg_db, ACME)
    _seed_modification(pg_db, ACME, "product_embeddings")
    _, registry = _fake_registry()
    generate_embeddings(pg_db, registry)

    with pg_db.tenant_session(ACME) as s:
        row = s.get(ProductEmbedding, row_id)
        row.updated_at = datetime.now(timezone.utc) - timedelta(hours=72)

    summary = check_batch_status(pg_db, registry)

    assert summary["stale"] == 1
    assert _row(pg_db, ACME, ProductEmbedding, row_id).embedding_status == "failed"


@requires_db
def test_mark_modification_reviewed_is_noop_when_already_reviewed(pg_db):
    mr_id = _seed_modification(pg_db, ACME, "product_embeddings")
    with pg_db.session() as s:
        assert repo.mark_modification_reviewed(s, mr_id) is True
    with pg_db.session() as s:
        assert repo.mark_modification_reviewed(s, mr_id) is False
    assert _modification_status(pg_db, mr_id) == "REVIEWED"


@requires_db
def test_store_embeddings_skips_rows_no_longer_pending(pg_db):
    _seed_model(pg_db)
    _seed_config(pg_db, ACME)
    row_id = _seed_product(pg_db, ACME)
    _seed_modification(pg_db, ACME, "product_embeddings")
    generate_embeddings(pg_db, build_provider_registry())

    from apps.embedding.schemas.processing import EmbeddingResult

    late = EmbeddingResult([0.0] * 1536, "late text", str(row_id), "product_embeddings", ACME)
    with pg_db.tenant_session(ACME) as s:
        counts = repo.store_embeddings(s, "product_embeddings", [late], SMALL)
    assert counts["skipped"] == 1
    assert _row(pg_db, ACME, ProductEmbedding, row_id).content_markdown != "late text"


@requires_db
def test_mark_company_request_reviewed_marks_backing_request_once(pg_db):
    with pg_db.session() as s:
        cr_id = repo.ensure_company_request(s, ACME, "product_embeddings")
    with pg_db.session() as s:
        assert repo.ensure_company_request(s, ACME, "product_embeddings") == cr_id
        assert repo.mark_company_request_reviewed(s, cr_id) is True
    with pg_db.session() as s:
        assert repo.mark_company_request_reviewed(s, cr_id) is False
        assert repo.mark_company_request_reviewed(s, uuid.uuid4()) is False
        mr_id = s.get(CompanyRequest, cr_id).modification_request_id
    assert _modification_status(pg_db, mr_id) == "REVIEWED"
