"""
Generate pass: discovered work -> pending rows -> markdown -> provider -> stored results.

Per tenant: one read transaction, provider calls with no connection held, one write transaction
(stores, REVIEWED marking, CompanyRequest for submitted batches). A failing tenant is logged and
the pass continues with the next one.
"""

import logging
from collections import OrderedDict

from apps.embedding.db import Database
from apps.embedding.schemas.embedding import STATUS_PROCESSING, SUPPORTED_TABLES, EmbeddingConfig
from apps.embedding.schemas.processing import EmbeddingProcessingItem, EmbeddingResult
from apps.embedding.services import repo
from apps.embedding.services.discovery import PendingWork, discover_pending_work
from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry
from apps.embedding.services.markdown import UnsupportedTableError, render
from apps.embedding.services.processing_mode import ProcessingModeRegistry

logger = logging.getLogger(__name__)

SUMMARY_KEYS = ("completed", "processing", "failed", "skipped", "deferred", "reviewed", "batch_requests")


def _empty_summary() -> dict[str, int]:
    return {k: 0 for k in SUMMARY_KEYS}


def check_dimensions(results: list[EmbeddingResult], expected: int) -> list[EmbeddingResult]:
    """Vectors whose width differs from the tenant's configured width become failed results."""
    out: list[EmbeddingResult] = []
    for r in results:
        if r.embedding is not None and len(r.embedding) != expected:
            logger.warning(
                "dimension mismatch schema=%s entity_id=%s got=%d expected=%d",
                r.schema_name,
                r.entity_id,
                len(r.embedding),
                expected,
            )
            r = EmbeddingResult(
                embedding=None,
                original_text=r.original_text,
                entity_id=r.entity_id,
                entity_type=r.entity_type,
                schema_name=r.schema_name,
                batch_id=r.batch_id,
                error=f"dimension mismatch: got {len(r.embedding)}, expected {expected}",
            )
        out.append(r)
    return out


def build_items(schema_name: str, table_name: str, rows) -> list[EmbeddingProcessingItem]:
    """Render pending rows into processing items. Rows whose entity cannot be rendered are left pending."""
    items: list[EmbeddingProcessingItem] = []
    for row in rows:
        if row.entity is None:
            continue
        try:
            markdown = render(table_name, row.entity)
        except (UnsupportedTableError, ValueError) as e:
            logger.warning("render failed schema=%s table=%s id=%s err=%s", schema_name, table_name, row.id, e)
            continue
        items.append(
            EmbeddingProcessingItem(
                markdown=markdown,
                entity_id=str(row.id),
                entity_type=table_name,
                schema_name=schema_name,
                record=row,
            )
        )
    return items


def process_tenant(
    db: Database,
    schema_name: str,
    work: list[PendingWork],
    providers: EmbeddingProviderRegistry,
    modes: ProcessingModeRegistry,
) -> dict[str, int]:
    """One tenant pass over every table named by its pending modifications."""
    summary = _empty_summary()
    config: EmbeddingConfig = work[0].config
    provider = providers.get(config.embedding_model)
    mode = modes.for_config(config)

    tables: list[str] = []
    for w in work:
        table = w.modification.table_name
        if table not in SUPPORTED_TABLES:
            logger.warning("unsupported table schema=%s table=%s, request left pending", schema_name, table)
            continue
        if table not in tables:
            tables.append(table)

    with db.tenant_session(schema_name) as session:
        rows_by_table = {t: repo.get_pending_embeddings(session, t) for t in tables}

    results_by_table: dict[str, list[EmbeddingResult]] = {}
    deferred_tables: set[str] = set()
    for table in tables:
        rows = rows_by_table[table]
        items = build_items(schema_name, table, rows)
        if len(items) < len(rows):
            summary["deferred"] += len(rows) - len(items)
            deferred_tables.add(table)
        if not items:
            results_by_table[table] = []
            continue
        results = check_dimensions(mode.process_embeddings(items, provider), config.vector_dimensions)
        missing = len(items) - len({r.entity_id for r in results})
        if missing:
            summary["deferred"] += missing
            deferred_tables.add(table)
        results_by_table[table] = results
        logger.info(
            "tenant=%s table=%s mode=%s model=%s items=%d results=%d",
            schema_name,
            table,
            mode.name,
            config.embedding_model,
            len(items),
            len(results),
        )

    with db.tenant_session(schema_name) as session:
        for table, results in results_by_table.items():
            counts = repo.store_embeddings(session, table, results, config.embedding_model)
            for key, n in counts.items():
                summary[key] += n
            if counts[STATUS_PROCESSING]:
                repo.ensure_company_request(session, schema_name, table)
                summary["batch_requests"] += 1
        for w in work:
            table = w.modification.table_name
            if table not in results_by_table or table in deferred_tables:
                continue
            if repo.mark_modification_reviewed(session, w.modification.modification_request_id):
                summary["reviewed"] += 1

    return summary


def generate_embeddings(
    db: Database,
    providers: EmbeddingProviderRegistry,
    modes: ProcessingModeRegistry | None = None,
) -> dict[str, int]:
    """Run one generate pass over every tenant with pending modifications. Oldest requests first."""
    modes = modes or ProcessingModeRegistry()
    work = discover_pending_work(db, providers)

    by_schema: "OrderedDict[str, list[PendingWork]]" = OrderedDict()
    for w in work:
        by_schema.setdefault(w.modification.schema_name, []).append(w)

    summary = _empty_summary()
    summary.update(tenants=len(by_schema), tenants_failed=0, modifications=len(work))
    for schema_name, tenant_work in by_schema.items():
        try:
            tenant_summary = process_tenant(db, schema_name, tenant_work, providers, modes)
        except Exception as e:
            logger.exception("tenant=%s generate failed: %s", schema_name, e)
            summary["tenants_failed"] += 1
            continue
        for key in SUMMARY_KEYS:
            summary[key] += tenant_summary[key]
        logger.info("tenant=%s generate done %s", schema_name, tenant_summary)

    logger.info("generate_embeddings done %s", summary)
    return summary
