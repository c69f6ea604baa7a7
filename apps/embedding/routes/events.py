"""Trigger endpoint: run one pipeline cycle selected by action."""

import logging

from fastapi import APIRouter, HTTPException, Request

from apps.embedding.schemas.embedding import TriggerRequest, TriggerResponse
from apps.embedding.services.actions import UnknownActionError, run_action

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/events", response_model=TriggerResponse)
def trigger(body: TriggerRequest, request: Request) -> TriggerResponse:
    """Runs synchronously and returns the pass summary. Per-tenant failures are inside the summary."""
    state = request.app.state
    try:
        summary = run_action(body.action, state.db, state.providers)
    except UnknownActionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    logger.info("event action=%s summary=%s", body.action, summary)
    return TriggerResponse(action=body.action, summary=summary)
