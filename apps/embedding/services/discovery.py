"""
Tenant discovery: pending CompanyModifications joined with each tenant's EmbeddingConfig.

Read-only. Each tenant config lookup runs in its own tenant-scoped transaction, so a bad tenant
(missing schema, invalid config, unknown model) is logged and skipped without affecting the rest.
"""

import logging
from typing import NamedTuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from apps.embedding.db import Database
from apps.embedding.schemas.embedding import EmbeddingConfig, PendingModification
from apps.embedding.services import repo
from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry
from apps.embedding.services.errors import ConfigurationError
from apps.embedding.services.tenant_guard import InvalidSchemaNameError

logger = logging.getLogger(__name__)


class PendingWork(NamedTuple):
    modification: PendingModification
    config: EmbeddingConfig


def load_embedding_config(db: Database, schema_name: str) -> EmbeddingConfig | None:
    """Validated config for a tenant, or None when the tenant has no usable ai_config row."""
    with db.tenant_session(schema_name) as session:
        raw = repo.get_embedding_config(session, schema_name)
    if raw is None:
        return None
    return EmbeddingConfig.model_validate(raw)


def discover_pending_work(db: Database, providers: EmbeddingProviderRegistry) -> list[PendingWork]:
    """Pending modifications with a valid config whose model resolves in the registry. Oldest first."""
    with db.session() as session:
        modifications = repo.list_pending_company_modifications(session)

    work: list[PendingWork] = []
    configs: dict[str, EmbeddingConfig | None] = {}
    for mod in modifications:
        if mod.schema_name not in configs:
            configs[mod.schema_name] = _safe_load_config(db, mod.schema_name, providers)
        cfg = configs[mod.schema_name]
        if cfg is None:
            continue
        work.append(PendingWork(mod, cfg))

    logger.info("discovery pending=%d usable=%d tenants=%d", len(modifications), len(work), len(configs))
    return work


def _safe_load_config(
    db: Database, schema_name: str, providers: EmbeddingProviderRegistry
) -> EmbeddingConfig | None:
    try:
        cfg = load_embedding_config(db, schema_name)
        if cfg is None:
            logger.warning("no ai_config schema=%s, skipping", schema_name)
            return None
        providers.get(cfg.embedding_model)
        return cfg
    except InvalidSchemaNameError as e:
        logger.warning("invalid schema name schema=%r err=%s", schema_name, e)
    except ValidationError as e:
        logger.warning("invalid embedding config schema=%s err=%s", schema_name, e.errors(include_url=False))
    except ConfigurationError as e:
        logger.warning("unusable embedding config schema=%s err=%s", schema_name, e)
    except SQLAlchemyError as e:
        logger.warning("config lookup failed schema=%s err=%s", schema_name, e)
    return None
