"""Generate pass against the in-memory gateway: direct and batch scenarios, re-embedding, isolation."""

from decimal import Decimal

from apps.embedding.schemas.embedding import ProductDetailRecord
from apps.embedding.services.embedding_provider import build_provider_registry
from apps.embedding.services.generate import generate_embeddings
from apps.embedding.services.processing_mode import BatchProcessingMode, DirectProcessingMode, ProcessingModeRegistry
from apps.embedding.tests.fakes import make_document, make_product

PRODUCTS = "product_embeddings"
DOCUMENTS = "document_embeddings"
SMALL = "text-embedding-3-small"


def _modes(batch_size: int = 100) -> ProcessingModeRegistry:
    direct = DirectProcessingMode(max_batch_size=batch_size)
    return ProcessingModeRegistry([direct, BatchProcessingMode(max_batch_size=batch_size, fallback=direct)])


def test_direct_mode_single_product_completed(store, db) -> None:
    """acme, direct, 1536 dims, one pending product -> completed row, full-width vector, no batch id."""
    store.set_config("acme", SMALL, batch=False, dims=1536)
    product = make_product("Blue Mug")
    row_id = store.add_row("acme", PRODUCTS, product)
    mr_id = store.add_modification("acme", PRODUCTS)

    summary = generate_embeddings(db, build_provider_registry())

    row = store.row("acme", PRODUCTS, row_id)
    assert row["embedding_status"] == "completed"
    assert len(row["embedding"]) == 1536
    assert row["batch_id"] is None
    assert row["embedding_model"] == SMALL
    assert row["content_markdown"].startswith("# Blue Mug")
    assert product.id in store.state["embedded"]
    assert store.modification(mr_id)["status"] == "REVIEWED"
    assert summary["completed"] == 1 and summary["reviewed"] == 1 and summary["tenants_failed"] == 0


def test_batch_mode_fifty_documents_three_batches(store, db, batch_provider, batch_registry) -> None:
    """50 documents, batch size 20 -> 3 batches (20/20/10), all rows processing, no vectors yet."""
    store.set_config("acme", SMALL, batch=True, dims=8)
    for i in range(50):
        store.add_row("acme", DOCUMENTS, make_document(f"Doc {i}", type="pdf"))
    mr_id = store.add_modification("acme", DOCUMENTS)

    summary = generate_embeddings(db, batch_registry, _modes(20))

    rows = store.rows("acme", DOCUMENTS)
    assert all(r["embedding_status"] == "processing" for r in rows)
    assert all(r["embedding"] is None for r in rows)
    batch_ids = [r["batch_id"] for r in rows]
    assert sorted(batch_ids.count(b) for b in set(batch_ids)) == [10, 20, 20]
    assert summary["processing"] == 50
    # generate-track request is done; a batch-track request now waits for reconciliation
    assert store.modification(mr_id)["status"] == "REVIEWED"
    batch_requests = store.company_request_modifications()
    assert len(batch_requests) == 1
    assert batch_requests[0]["status"] == "PENDING"
    assert batch_requests[0]["table_name"] == DOCUMENTS


def test_batch_submission_failure_keeps_request_pending(store, db, batch_provider, batch_registry) -> None:
    store.set_config("acme", SMALL, batch=True, dims=8)
    for i in range(30):
        store.add_row("acme", DOCUMENTS, make_document(f"Doc {i}"))
    mr_id = store.add_modification("acme", DOCUMENTS)
    batch_provider.submit_error_on = {2}

    summary = generate_embeddings(db, batch_registry, _modes(20))

    statuses = [r["embedding_status"] for r in store.rows("acme", DOCUMENTS)]
    assert statuses.count("processing") == 20
    assert statuses.count("pending") == 10
    assert summary["deferred"] == 10
    assert store.modification(mr_id)["status"] == "PENDING"


def test_edited_entity_is_re_embedded(store, db) -> None:
    """A completed row reset to pending by an edit is regenerated and overwritten on the next request."""
    store.set_config("acme", SMALL, batch=False, dims=1536)
    product = make_product("Blue Mug", details=ProductDetailRecord(price=Decimal("10"), currency="USD"))
    row_id = store.add_row("acme", PRODUCTS, product)
    store.add_modification("acme", PRODUCTS)
    registry = build_provider_registry()
    generate_embeddings(db, registry)
    first = dict(store.row("acme", PRODUCTS, row_id))
    assert "USD 10" in first["content_markdown"]

    # the change-detection trigger resets the row and files a new request
    edited = product.model_copy(update={"details": ProductDetailRecord(price=Decimal("12"), currency="USD")})
    store.row("acme", PRODUCTS, row_id).update(entity=edited, embedding_status="pending", embedding=None)
    mr_id = store.add_modification("acme", PRODUCTS)

    generate_embeddings(db, registry)

    row = store.row("acme", PRODUCTS, row_id)
    assert row["embedding_status"] == "completed"
    assert "USD 12" in row["content_markdown"]
    assert row["embedding"] != first["embedding"]
    assert store.modification(mr_id)["status"] == "REVIEWED"


def test_dimension_mismatch_marks_failed(store, db) -> None:
    store.set_config("acme", SMALL, batch=False, dims=42)
    row_id = store.add_row("acme", PRODUCTS, make_product())
    store.add_modification("acme", PRODUCTS)

    summary = generate_embeddings(db, build_provider_registry())

    row = store.row("acme", PRODUCTS, row_id)
    assert row["embedding_status"] == "failed"
    assert "dimension mismatch" in row["metadata"]["last_error"]
    assert summary["failed"] == 1


def test_one_tenant_failure_does_not_block_others(store, db, monkeypatch) -> None:
    store.set_config("acme", SMALL, batch=False, dims=1536)
    store.set_config("globex", SMALL, batch=False, dims=1536)
    acme_row = store.add_row("acme", PRODUCTS, make_product("A"))
    globex_row = store.add_row("globex", PRODUCTS, make_product("G"))
    acme_mr = store.add_modification("acme", PRODUCTS)
    globex_mr = store.add_modification("globex", PRODUCTS)

    real_store = store.store_embeddings

    def _store(session, table_name, results, model):
        if session.schema_name == "acme":
            real_store(session, table_name, results, model)
            raise RuntimeError("connection dropped mid-write")
        return real_store(session, table_name, results, model)

    import apps.embedding.services.repo as repo_module

    monkeypatch.setattr(repo_module, "store_embeddings", _store)

    summary = generate_embeddings(db, build_provider_registry())

    # acme rolled back as a unit, globex committed
    assert store.row("acme", PRODUCTS, acme_row)["embedding_status"] == "pending"
    assert store.modification(acme_mr)["status"] == "PENDING"
    assert store.row("globex", PRODUCTS, globex_row)["embedding_status"] == "completed"
    assert store.modification(globex_mr)["status"] == "REVIEWED"
    assert summary["tenants_failed"] == 1


def test_unsupported_table_request_left_pending(store, db) -> None:
    store.set_config("acme", SMALL, batch=False, dims=1536)
    mr_id = store.add_modification("acme", "orders")

    generate_embeddings(db, build_provider_registry())

    assert store.modification(mr_id)["status"] == "PENDING"


def test_table_with_no_pending_rows_is_reviewed(store, db) -> None:
    store.set_config("acme", SMALL, batch=False, dims=1536)
    mr_id = store.add_modification("acme", DOCUMENTS)

    summary = generate_embeddings(db, build_provider_registry())

    assert store.modification(mr_id)["status"] == "REVIEWED"
    assert summary["completed"] == 0
