"""
Persistence gateway. The only module that reads/writes pipeline tables.

Every function takes a Session as first argument. Registry functions expect a plain session
(Database.session); tenant functions expect a session already pinned to the tenant schema
(Database.tenant_session). Status transitions are optimistic: each UPDATE is guarded on the
state it expects, so overlapping passes cannot apply the same transition twice.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from apps.embedding.models.registry import CompanyModification, CompanyRequest, ModelDetails, ModificationRequest
from apps.embedding.models.tenant import AIConfig
from apps.embedding.repositories.embedding_tables import (
    embedding_table,
    select_pending_document_embeddings,
    select_pending_product_embeddings,
    select_processing,
)
from apps.embedding.schemas.embedding import (
    DOCUMENT_EMBEDDINGS,
    MODIFICATION_PENDING,
    MODIFICATION_REVIEWED,
    PRODUCT_EMBEDDINGS,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    CategoryRecord,
    DocumentRecord,
    EmbeddingRowRecord,
    PendingCompanyRequest,
    PendingModification,
    ProductDetailRecord,
    ProductRecord,
)
from apps.embedding.schemas.processing import EmbeddingResult

logger = logging.getLogger(__name__)

MAX_ERROR_LEN = 1000


def _as_uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _error_metadata(model: type, error: str):
    """metadata || {"last_error": error}; NULL metadata treated as {}."""
    return func.coalesce(model.metadata_, func.jsonb_build_object()).op("||")(
        func.jsonb_build_object("last_error", (error or "")[:MAX_ERROR_LEN])
    )


# ---------------------------------------------------------------------------
# Registry (public schema)
# ---------------------------------------------------------------------------


def list_pending_company_modifications(session: Session) -> list[PendingModification]:
    """CompanyModifications whose ModificationRequest is PENDING, neither soft-deleted. Oldest request first."""
    stmt = (
        select(
            CompanyModification.id.label("company_modification_id"),
            ModificationRequest.id.label("modification_request_id"),
            ModificationRequest.schema_name,
            ModificationRequest.table_name,
            ModificationRequest.status,
            ModificationRequest.created_at,
        )
        .join(ModificationRequest, CompanyModification.modification_request_id == ModificationRequest.id)
        .where(ModificationRequest.status == MODIFICATION_PENDING)
        .where(ModificationRequest.deleted_at.is_(None))
        .where(CompanyModification.deleted_at.is_(None))
        .order_by(ModificationRequest.created_at.asc())
    )
    out: list[PendingModification] = []
    for row in session.execute(stmt).mappings():
        try:
            out.append(PendingModification.model_validate(dict(row)))
        except ValidationError as e:
            logger.warning("skipping malformed modification row id=%s err=%s", row.get("modification_request_id"), e)
    return out


def list_pending_company_requests(session: Session) -> list[PendingCompanyRequest]:
    """CompanyRequests whose ModificationRequest is PENDING. Oldest request first."""
    stmt = (
        select(
            CompanyRequest.id.label("company_request_id"),
            ModificationRequest.id.label("modification_request_id"),
            ModificationRequest.schema_name,
            ModificationRequest.table_name,
            ModificationRequest.created_at,
        )
        .join(ModificationRequest, CompanyRequest.modification_request_id == ModificationRequest.id)
        .where(ModificationRequest.status == MODIFICATION_PENDING)
        .where(ModificationRequest.deleted_at.is_(None))
        .where(CompanyRequest.deleted_at.is_(None))
        .order_by(ModificationRequest.created_at.asc())
    )
    out: list[PendingCompanyRequest] = []
    for row in session.execute(stmt).mappings():
        try:
            out.append(PendingCompanyRequest.model_validate(dict(row)))
        except ValidationError as e:
            logger.warning("skipping malformed company request id=%s err=%s", row.get("company_request_id"), e)
    return out


def mark_modification_reviewed(session: Session, modification_request_id: uuid.UUID | str) -> bool:
    """PENDING -> REVIEWED. False (no-op) if the request was already REVIEWED or is gone."""
    stmt = (
        update(ModificationRequest)
        .where(ModificationRequest.id == _as_uuid(modification_request_id))
        .where(ModificationRequest.status == MODIFICATION_PENDING)
        .values(status=MODIFICATION_REVIEWED, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    changed = session.execute(stmt).rowcount > 0
    if not changed:
        logger.info("modification request already reviewed id=%s", modification_request_id)
    return changed


def mark_company_request_reviewed(session: Session, company_request_id: uuid.UUID | str) -> bool:
    """Mark the ModificationRequest behind a CompanyRequest REVIEWED. Same no-op semantics."""
    mr_id = session.execute(
        select(CompanyRequest.modification_request_id).where(CompanyRequest.id == _as_uuid(company_request_id))
    ).scalar_one_or_none()
    if mr_id is None:
        logger.warning("company request not found id=%s", company_request_id)
        return False
    return mark_modification_reviewed(session, mr_id)


def ensure_company_request(session: Session, schema_name: str, table_name: str) -> uuid.UUID:
    """
    Return the pending CompanyRequest for (schema, table), creating a PENDING ModificationRequest
    + CompanyRequest if none exists. Reconciliation marks it REVIEWED once no rows are processing.
    """
    existing = session.execute(
        select(CompanyRequest.id)
        .join(ModificationRequest, CompanyRequest.modification_request_id == ModificationRequest.id)
        .where(ModificationRequest.schema_name == schema_name)
        .where(ModificationRequest.table_name == table_name)
        .where(ModificationRequest.status == MODIFICATION_PENDING)
        .where(ModificationRequest.deleted_at.is_(None))
        .where(CompanyRequest.deleted_at.is_(None))
        .order_by(ModificationRequest.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    mr = ModificationRequest(schema_name=schema_name, table_name=table_name, status=MODIFICATION_PENDING)
    session.add(mr)
    session.flush()
    cr = CompanyRequest(modification_request_id=mr.id)
    session.add(cr)
    session.flush()
    logger.info("company request created schema=%s table=%s id=%s", schema_name, table_name, cr.id)
    return cr.id


# ---------------------------------------------------------------------------
# Tenant config
# ---------------------------------------------------------------------------


def get_embedding_config(session: Session, schema_name: str) -> dict[str, Any] | None:
    """
    First non-deleted ai_config row LEFT JOIN public.models_details on model name.
    Raw dict (validated by the caller into EmbeddingConfig) or None when the tenant has no config.
    """
    stmt = (
        select(AIConfig.embedding_model, AIConfig.batch_embedding, ModelDetails.vector_number)
        .outerjoin(ModelDetails, AIConfig.embedding_model == ModelDetails.name)
        .where(AIConfig.deleted_at.is_(None))
        .order_by(AIConfig.created_at.asc())
        .limit(1)
    )
    row = session.execute(stmt).mappings().first()
    if row is None:
        return None
    return {
        "schema_name": schema_name,
        "embedding_model": row["embedding_model"],
        "batch_embedding": bool(row["batch_embedding"]),
        "vector_dimensions": row["vector_number"],
    }


# ---------------------------------------------------------------------------
# Tenant embedding rows
# ---------------------------------------------------------------------------


def _product_record(product, detail, category) -> ProductRecord:
    return ProductRecord(
        id=product.id,
        name=product.name,
        type=product.type,
        description=product.description,
        image_url=product.image_url,
        is_featured=bool(product.is_featured),
        category=CategoryRecord.model_validate(category) if category is not None else None,
        details=ProductDetailRecord.model_validate(detail) if detail is not None else None,
    )


def _row_record(table_name: str, row, parent_id: uuid.UUID, entity=None) -> EmbeddingRowRecord:
    return EmbeddingRowRecord(
        id=row.id,
        table_name=table_name,
        parent_id=parent_id,
        embedding_status=row.embedding_status,
        embedding_model=row.embedding_model,
        batch_id=row.batch_id,
        metadata=row.metadata_,
        created_at=row.created_at,
        updated_at=row.updated_at,
        entity=entity,
    )


def get_pending_embeddings(session: Session, table_name: str) -> list[EmbeddingRowRecord]:
    """pending rows (no batch_id) for a table, each with the entity to render. Oldest first."""
    embedding_table(table_name)
    out: list[EmbeddingRowRecord] = []
    if table_name == PRODUCT_EMBEDDINGS:
        for emb, product, detail, category in session.execute(select_pending_product_embeddings()).all():
            try:
                out.append(_row_record(table_name, emb, product.id, _product_record(product, detail, category)))
            except ValidationError as e:
                logger.warning("skipping malformed product row id=%s err=%s", emb.id, e)
    elif table_name == DOCUMENT_EMBEDDINGS:
        for emb, document in session.execute(select_pending_document_embeddings()).all():
            try:
                out.append(_row_record(table_name, emb, document.id, DocumentRecord.model_validate(document)))
            except ValidationError as e:
                logger.warning("skipping malformed document row id=%s err=%s", emb.id, e)
    return out


def get_processing_embeddings_with_batch_id(session: Session, table_name: str) -> list[EmbeddingRowRecord]:
    """processing rows awaiting batch results. No entity join; the reconciler never re-renders."""
    table = embedding_table(table_name)
    rows = session.execute(select_processing(table_name)).scalars().all()
    return [_row_record(table_name, row, getattr(row, table.parent_fk.key)) for row in rows]


def count_processing_embeddings(session: Session, table_name: str) -> int:
    model = embedding_table(table_name).model
    stmt = select(func.count()).select_from(model).where(model.embedding_status == STATUS_PROCESSING)
    return int(session.execute(stmt).scalar_one())


def _mark_parent_embedded(session: Session, table_name: str, row_id: uuid.UUID) -> None:
    table = embedding_table(table_name)
    parent_id = select(table.parent_fk).where(table.model.id == row_id).scalar_subquery()
    session.execute(
        update(table.parent)
        .where(table.parent.id == parent_id)
        .values(is_embedded=True, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


def store_embeddings(
    session: Session,
    table_name: str,
    results: list[EmbeddingResult],
    model: str,
) -> dict[str, int]:
    """
    Write generate-pass results onto pending rows: vector => completed, batch_id => processing,
    error => failed. content_markdown is set to the text that was embedded.

    Only rows still pending with no batch_id are touched; rows that lost a race count as skipped.
    """
    table = embedding_table(table_name)
    emb = table.model
    counts = {STATUS_COMPLETED: 0, STATUS_PROCESSING: 0, STATUS_FAILED: 0, "skipped": 0}
    for result in results:
        row_id = _as_uuid(result.entity_id)
        values: dict[str, Any] = {
            "content_markdown": result.original_text,
            "embedding_model": model,
            "updated_at": func.now(),
        }
        if result.is_ready:
            values.update(embedding=result.embedding, embedding_status=STATUS_COMPLETED, batch_id=None)
            status = STATUS_COMPLETED
        elif result.is_submitted:
            values.update(embedding=None, embedding_status=STATUS_PROCESSING, batch_id=result.batch_id)
            status = STATUS_PROCESSING
        else:
            values.update(
                embedding=None,
                embedding_status=STATUS_FAILED,
                batch_id=None,
                metadata_=_error_metadata(emb, result.error or "no embedding returned"),
            )
            status = STATUS_FAILED

        stmt = (
            update(emb)
            .where(emb.id == row_id)
            .where(emb.embedding_status == STATUS_PENDING)
            .where(emb.batch_id.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount == 0:
            logger.info("row no longer pending, skipped table=%s id=%s", table_name, row_id)
            counts["skipped"] += 1
            continue
        counts[status] += 1
        if status == STATUS_COMPLETED:
            _mark_parent_embedded(session, table_name, row_id)
    return counts


def update_completed_embeddings(
    session: Session,
    table_name: str,
    results: list[EmbeddingResult],
    model: str,
) -> int:
    """
    Reconciler write: processing -> completed for results with a vector. Vector columns only;
    content_markdown is never touched. Guarded on (processing, same batch_id).
    """
    emb = embedding_table(table_name).model
    updated = 0
    for result in results:
        if not result.is_ready:
            continue
        row_id = _as_uuid(result.entity_id)
        stmt = (
            update(emb)
            .where(emb.id == row_id)
            .where(emb.embedding_status == STATUS_PROCESSING)
            .where(emb.batch_id == result.batch_id)
            .values(
                embedding=result.embedding,
                embedding_model=model,
                embedding_status=STATUS_COMPLETED,
                batch_id=None,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount == 0:
            logger.info("row not processing for batch, skipped table=%s id=%s batch_id=%s", table_name, row_id, result.batch_id)
            continue
        updated += 1
        _mark_parent_embedded(session, table_name, row_id)
    return updated


def mark_embeddings_failed(session: Session, table_name: str, results: list[EmbeddingResult]) -> int:
    """processing -> failed for results carrying an error. Guarded on (processing, same batch_id)."""
    emb = embedding_table(table_name).model
    failed = 0
    for result in results:
        stmt = (
            update(emb)
            .where(emb.id == _as_uuid(result.entity_id))
            .where(emb.embedding_status == STATUS_PROCESSING)
            .where(emb.batch_id == result.batch_id)
            .values(
                embedding_status=STATUS_FAILED,
                batch_id=None,
                metadata_=_error_metadata(emb, result.error or "batch item failed"),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        failed += session.execute(stmt).rowcount
    return failed


def fail_stale_processing_embeddings(session: Session, table_name: str, max_age_hours: float) -> int:
    """processing rows not updated within max_age_hours -> failed. max_age_hours <= 0 disables."""
    if max_age_hours <= 0:
        return 0
    emb = embedding_table(table_name).model
    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    stmt = (
        update(emb)
        .where(emb.embedding_status == STATUS_PROCESSING)
        .where(emb.updated_at < cutoff)
        .values(
            embedding_status=STATUS_FAILED,
            batch_id=None,
            metadata_=_error_metadata(emb, f"batch not completed within {max_age_hours:g}h"),
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    stale = session.execute(stmt).rowcount
    if stale:
        logger.warning("stale processing rows failed table=%s count=%d max_age_hours=%s", table_name, stale, max_age_hours)
    return stale
