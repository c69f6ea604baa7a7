"""Pydantic schemas for registry rows, tenant config, and entity records read from tenant schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MODIFICATION_PENDING = "PENDING"
MODIFICATION_REVIEWED = "REVIEWED"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

PRODUCT_EMBEDDINGS = "product_embeddings"
DOCUMENT_EMBEDDINGS = "document_embeddings"
SUPPORTED_TABLES = (PRODUCT_EMBEDDINGS, DOCUMENT_EMBEDDINGS)

EmbeddingStatus = Literal["pending", "processing", "completed", "failed"]


# ---------------------------------------------------------------------------
# Registry (public schema)
# ---------------------------------------------------------------------------


class PendingModification(BaseModel):
    """CompanyModification joined with its PENDING ModificationRequest."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    company_modification_id: uuid.UUID
    modification_request_id: uuid.UUID
    schema_name: str
    table_name: str
    status: Literal["PENDING", "REVIEWED"]
    created_at: datetime


class PendingCompanyRequest(BaseModel):
    """CompanyRequest joined with its PENDING ModificationRequest."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    company_request_id: uuid.UUID
    modification_request_id: uuid.UUID
    schema_name: str
    table_name: str
    created_at: datetime


class EmbeddingConfig(BaseModel):
    """Tenant embedding settings: ai_config joined with models_details. Invalid => tenant skipped."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_name: str = Field(min_length=1)
    embedding_model: str = Field(min_length=1)
    batch_embedding: bool = False
    vector_dimensions: int = Field(gt=0)

    @field_validator("schema_name", "embedding_model", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Tenant entity records
# ---------------------------------------------------------------------------


class CategoryRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    name: str
    description: str | None = None


class ProductDetailRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    price: Decimal | None = None
    currency: str | None = None
    detailed_description: str | None = None


class ProductRecord(BaseModel):
    """Product with optional category and pricing details (LEFT JOINs)."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: uuid.UUID
    name: str
    type: Literal["product", "service"] = "product"
    description: str | None = None
    image_url: str | None = None
    is_featured: bool = False
    category: CategoryRecord | None = None
    details: ProductDetailRecord | None = None


class DocumentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: uuid.UUID
    name: str
    type: Literal["pdf", "url"] | None = None
    url: str | None = None


class EmbeddingRowRecord(BaseModel):
    """An embedding row plus the entity it embeds. entity is a ProductRecord or DocumentRecord."""

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    table_name: str
    parent_id: uuid.UUID
    embedding_status: EmbeddingStatus
    embedding_model: str | None = None
    batch_id: str | None = None
    metadata: dict | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    entity: ProductRecord | DocumentRecord | None = None


# ---------------------------------------------------------------------------
# Trigger surface
# ---------------------------------------------------------------------------


class TriggerRequest(BaseModel):
    """POST /events body. action selects the pipeline cycle."""

    model_config = ConfigDict(extra="forbid")

    action: Literal["generate_embeddings", "check_embedding_status"]


class TriggerResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: str
    summary: dict
