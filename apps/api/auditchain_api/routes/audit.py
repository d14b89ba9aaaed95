"""Audit log endpoints."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from auditchain_api.exceptions import PersistenceUnavailable, ValidationError
from auditchain_api.ledger.service import IngestionService
from auditchain_api.schemas import (
    IngestRequest,
    IngestResponse,
    LogActionRequest,
    LogActionResponse,
    VerifyResponse,
)
from auditchain_api.utils.metrics import ingest_duration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/audit", tags=["audit"])


def get_ingestion_service(request: Request) -> IngestionService:
    """Get the ingestion service built at application start."""
    return request.app.state.ingestion_service


@router.post(
    "/events",
    response_model=IngestResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
async def ingest_events(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Ingest a batch of audit events.

    The body is parsed as JSON whatever its Content-Type, since page
    teardown transports usually send text/plain.
    """
    raw = await request.body()
    try:
        payload = IngestRequest.model_validate(json.loads(raw or b"{}"))
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Body must be a JSON object with an 'events' list: {e}",
        )

    with ingest_duration.time():
        return await run_in_threadpool(service.ingest, payload.events)


@router.post("/action", response_model=LogActionResponse, status_code=status.HTTP_200_OK)
async def log_action(
    action: LogActionRequest,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Log a single action stamped with the server clock."""
    try:
        result, timestamp = await run_in_threadpool(
            service.log_action,
            action.event_type,
            action.session_id,
            action.event_data,
            action.user_id,
            action.iep_id,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return LogActionResponse(hash=result.hash, timestamp=timestamp, source=result.source)


@router.get("/sessions/{session_id}/verify", response_model=VerifyResponse)
async def verify_session(
    session_id: str,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Walk a session's stored chain and report the first break, if any."""
    try:
        valid, count, error = await run_in_threadpool(service.verify_session, session_id)
    except PersistenceUnavailable as e:
        logger.error(f"Chain verification unavailable for session {session_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Audit store unavailable",
        )

    if not valid:
        logger.warning(f"Chain verification failed for session {session_id}: {error}")
    return VerifyResponse(session_id=session_id, valid=valid, entries=count, error=error)
