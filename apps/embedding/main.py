"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from apps.embedding.db import Database
from apps.embedding.routes import events, health
from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry, build_provider_registry

logging.basicConfig(level=logging.INFO)


def create_app(db: Database | None = None, providers: EmbeddingProviderRegistry | None = None) -> FastAPI:
    """Composition root for the HTTP surface: one Database and one provider registry per process."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.db = db or Database()
        app.state.providers = providers or build_provider_registry()
        yield
        if db is None:
            app.state.db.dispose()

    app = FastAPI(title="Tenant Embedding Pipeline", version="0.1.0", lifespan=lifespan)
    app.include_router(health.router, tags=["health"])
    app.include_router(events.router, tags=["events"])
    return app


app = create_app()
