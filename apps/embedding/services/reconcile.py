"""
Status reconciler: polls outstanding provider batches and writes results back.

Per tenant: read processing rows, poll each (table, batch_id, model) group with no connection
held, then one write transaction for completed vectors, failed items, stale rows, and REVIEWED
marking of CompanyRequests whose table has nothing left in processing.
"""

import logging
from collections import OrderedDict
from typing import NamedTuple

from pydantic import ValidationError

from apps.embedding.config import config
from apps.embedding.db import Database
from apps.embedding.schemas.embedding import SUPPORTED_TABLES, EmbeddingConfig
from apps.embedding.schemas.processing import EmbeddingResult
from apps.embedding.services import repo
from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry
from apps.embedding.services.errors import BatchJobFailedError, ProviderError, UnknownEmbeddingModelError
from apps.embedding.services.generate import check_dimensions
from apps.embedding.services.tenant_guard import require_schema_name

logger = logging.getLogger(__name__)


class BatchOutcome(NamedTuple):
    table_name: str
    model: str
    ready: list[EmbeddingResult]
    failed: list[EmbeddingResult]


def _failed_results(batch_id: str, item_ids: list[str], schema_name: str, table_name: str, error: str):
    return [
        EmbeddingResult(
            embedding=None,
            original_text="",
            entity_id=entity_id,
            entity_type=table_name,
            schema_name=schema_name,
            batch_id=batch_id,
            error=error,
        )
        for entity_id in item_ids
    ]


def reconcile(
    db: Database,
    schema_name: str,
    providers: EmbeddingProviderRegistry,
    *,
    max_age_hours: float | None = None,
) -> dict[str, int]:
    """Reconcile one tenant. Rows the provider has not finished stay processing for the next pass."""
    schema_name = require_schema_name(schema_name)
    max_age_hours = config.PROCESSING_MAX_AGE_HOURS if max_age_hours is None else max_age_hours

    with db.tenant_session(schema_name) as session:
        raw_config = repo.get_embedding_config(session, schema_name)
        rows = {t: repo.get_processing_embeddings_with_batch_id(session, t) for t in SUPPORTED_TABLES}

    expected_dim: int | None = None
    if raw_config is not None:
        try:
            expected_dim = EmbeddingConfig.model_validate(raw_config).vector_dimensions
        except ValidationError:
            logger.warning("invalid embedding config schema=%s, dimension check disabled", schema_name)

    groups: "OrderedDict[tuple[str, str, str | None], list[str]]" = OrderedDict()
    for table, table_rows in rows.items():
        for row in table_rows:
            groups.setdefault((table, row.batch_id, row.embedding_model), []).append(str(row.id))

    summary = {"batches": len(groups), "batches_pending": 0, "completed": 0, "failed": 0, "stale": 0, "reviewed": 0}
    outcomes: list[BatchOutcome] = []
    for (table, batch_id, model), item_ids in groups.items():
        try:
            provider = providers.get(model)
        except UnknownEmbeddingModelError as e:
            logger.warning("schema=%s batch_id=%s unknown model: %s", schema_name, batch_id, e)
            summary["batches_pending"] += 1
            continue
        try:
            results = provider.get_batch_embeddings(batch_id, item_ids, schema_name, table)
        except BatchJobFailedError as e:
            logger.warning("schema=%s batch_id=%s failed status=%s: %s", schema_name, batch_id, e.status, e)
            outcomes.append(BatchOutcome(table, model, [], _failed_results(batch_id, item_ids, schema_name, table, str(e))))
            continue
        except ProviderError as e:
            logger.warning("schema=%s batch_id=%s poll failed, retrying next pass: %s", schema_name, batch_id, e)
            summary["batches_pending"] += 1
            continue

        if expected_dim is not None:
            results = check_dimensions(results, expected_dim)
        for r in results:
            r.batch_id = r.batch_id or batch_id
        ready = [r for r in results if r.is_ready]
        failed = [r for r in results if r.is_failed]
        if not ready and not failed:
            summary["batches_pending"] += 1
        outcomes.append(BatchOutcome(table, model, ready, failed))

    with db.tenant_session(schema_name) as session:
        for outcome in outcomes:
            summary["completed"] += repo.update_completed_embeddings(
                session, outcome.table_name, outcome.ready, outcome.model
            )
            summary["failed"] += repo.mark_embeddings_failed(session, outcome.table_name, outcome.failed)
        remaining: dict[str, int] = {}
        for table in SUPPORTED_TABLES:
            summary["stale"] += repo.fail_stale_processing_embeddings(session, table, max_age_hours)
            remaining[table] = repo.count_processing_embeddings(session, table)
        for request in repo.list_pending_company_requests(session):
            if request.schema_name != schema_name:
                continue
            if request.table_name not in remaining:
                logger.warning("company request for unsupported table schema=%s table=%s", schema_name, request.table_name)
                continue
            if remaining[request.table_name] == 0 and repo.mark_company_request_reviewed(
                session, request.company_request_id
            ):
                summary["reviewed"] += 1

    logger.info("tenant=%s reconcile done %s", schema_name, summary)
    return summary


def check_batch_status(db: Database, providers: EmbeddingProviderRegistry) -> dict[str, int]:
    """Reconcile every tenant with a pending CompanyRequest, oldest request first."""
    with db.session() as session:
        requests = repo.list_pending_company_requests(session)

    schemas = list(OrderedDict.fromkeys(r.schema_name for r in requests))
    summary = {"tenants": len(schemas), "tenants_failed": 0, "completed": 0, "failed": 0, "stale": 0, "reviewed": 0}
    for schema_name in schemas:
        try:
            tenant_summary = reconcile(db, schema_name, providers)
        except Exception as e:
            logger.exception("tenant=%s reconcile failed: %s", schema_name, e)
            summary["tenants_failed"] += 1
            continue
        for key in ("completed", "failed", "stale", "reviewed"):
            summary[key] += tenant_summary[key]

    logger.info("check_embedding_status done %s", summary)
    return summary
