"""Embedding-table SQL helpers. All per-table statements MUST come from these.

Provides:
  - embedding_table(table_name): ORM classes + parent FK for an embedding table
  - select_pending_*(): pending rows joined with the entity they embed, oldest first
  - select_processing(table_name): rows submitted to a provider batch and awaiting results
"""

from typing import NamedTuple

from sqlalchemy import Select, and_, select
from sqlalchemy.orm import InstrumentedAttribute

from apps.embedding.models.tenant import (
    Document,
    DocumentEmbedding,
    Product,
    ProductCategory,
    ProductDetail,
    ProductEmbedding,
)
from apps.embedding.schemas.embedding import (
    DOCUMENT_EMBEDDINGS,
    PRODUCT_EMBEDDINGS,
    STATUS_PENDING,
    STATUS_PROCESSING,
)
from apps.embedding.services.markdown import UnsupportedTableError


class EmbeddingTable(NamedTuple):
    name: str
    model: type
    parent: type
    parent_fk: InstrumentedAttribute


_TABLES: dict[str, EmbeddingTable] = {
    PRODUCT_EMBEDDINGS: EmbeddingTable(PRODUCT_EMBEDDINGS, ProductEmbedding, Product, ProductEmbedding.product_id),
    DOCUMENT_EMBEDDINGS: EmbeddingTable(DOCUMENT_EMBEDDINGS, DocumentEmbedding, Document, DocumentEmbedding.document_id),
}


def embedding_table(table_name: str) -> EmbeddingTable:
    """Resolve an embedding table by name. Raises UnsupportedTableError for anything else."""
    table = _TABLES.get((table_name or "").strip())
    if table is None:
        raise UnsupportedTableError(f"Unsupported embedding table {table_name!r}")
    return table


def select_pending_product_embeddings() -> Select:
    """pending + no batch_id, live product, LEFT JOIN details and category. Oldest first."""
    return (
        select(ProductEmbedding, Product, ProductDetail, ProductCategory)
        .join(Product, ProductEmbedding.product_id == Product.id)
        .outerjoin(ProductDetail, ProductDetail.product_id == Product.id)
        .outerjoin(
            ProductCategory,
            and_(Product.category_id == ProductCategory.id, ProductCategory.deleted_at.is_(None)),
        )
        .where(ProductEmbedding.embedding_status == STATUS_PENDING)
        .where(ProductEmbedding.batch_id.is_(None))
        .where(Product.deleted_at.is_(None))
        .order_by(ProductEmbedding.created_at.asc(), ProductEmbedding.id.asc())
    )


def select_pending_document_embeddings() -> Select:
    """pending + no batch_id, live document. Oldest first."""
    return (
        select(DocumentEmbedding, Document)
        .join(Document, DocumentEmbedding.document_id == Document.id)
        .where(DocumentEmbedding.embedding_status == STATUS_PENDING)
        .where(DocumentEmbedding.batch_id.is_(None))
        .where(Document.deleted_at.is_(None))
        .order_by(DocumentEmbedding.created_at.asc(), DocumentEmbedding.id.asc())
    )


def select_processing(table_name: str) -> Select:
    """processing rows with a batch_id and no vector yet. Oldest first."""
    model = embedding_table(table_name).model
    return (
        select(model)
        .where(model.embedding_status == STATUS_PROCESSING)
        .where(model.embedding.is_(None))
        .where(model.batch_id.is_not(None))
        .order_by(model.created_at.asc(), model.id.asc())
    )
