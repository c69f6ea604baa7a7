"""SQLAlchemy models. Registry tables live in public; tenant tables resolve via search_path."""

from apps.embedding.models.base import Base, TenantBase
from apps.embedding.models.registry import CompanyModification, CompanyRequest, ModelDetails, ModificationRequest
from apps.embedding.models.tenant import (
    EMBEDDING_STATUSES,
    AIConfig,
    Document,
    DocumentEmbedding,
    Product,
    ProductCategory,
    ProductDetail,
    ProductEmbedding,
)

__all__ = [
    "EMBEDDING_STATUSES",
    "AIConfig",
    "Base",
    "CompanyModification",
    "CompanyRequest",
    "Document",
    "DocumentEmbedding",
    "ModelDetails",
    "ModificationRequest",
    "Product",
    "ProductCategory",
    "ProductDetail",
    "ProductEmbedding",
    "TenantBase",
]
