"""Health check response schema."""

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """ok is false when the database ping fails; the process itself is up either way."""

    model_config = ConfigDict(extra="forbid")

    ok: bool
    version: str
    time: str
    database: bool
