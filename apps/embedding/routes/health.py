"""Health check endpoint. No auth required."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from apps.embedding.config import config
from apps.embedding.schemas.health import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Returns version (GIT_SHA or dev), current time (ISO), and whether the database answers."""
    database = request.app.state.db.ping()
    return HealthResponse(
        ok=database,
        version=config.GIT_SHA,
        time=datetime.now(timezone.utc).isoformat(),
        database=database,
    )
