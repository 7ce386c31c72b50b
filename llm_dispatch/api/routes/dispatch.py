"""Dispatch API routes: submit a job and await its result, poll stats."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from llm_dispatch.core.exceptions import (
    DispatcherShutdown,
    FinalDispatchFailure,
    RateLimitExceeded,
    SystemBusy,
)
from llm_dispatch.queue.dispatcher import Dispatcher
from llm_dispatch.queue.schemas import DispatchStats, JobKind

logger = structlog.get_logger(__name__)

router = APIRouter()


class SubmitRequest(BaseModel):
    """Request model for a dispatched job. The caller is authenticated upstream."""

    user_id: str = Field(..., min_length=1)
    payload: dict[str, Any]


class SubmitResponse(BaseModel):
    job_kind: JobKind
    result: Any


def get_dispatcher(request: Request) -> Dispatcher:
    """Dispatcher owned by the application (set in the lifespan handler)."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Dispatcher not initialized")
    return dispatcher


@router.get("/stats", response_model=DispatchStats)
async def get_stats(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Utilization snapshot, intended to be polled by a monitoring surface."""
    return dispatcher.get_stats()


@router.post("/{kind}", response_model=SubmitResponse)
async def submit_job(
    kind: JobKind,
    request: SubmitRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Submit a job and wait for its outcome.

    Raises:
        HTTPException(422): If the payload does not match the kind
        HTTPException(429): If the user's rate limit for this kind is hit
        HTTPException(503): If the system-wide ceiling is hit or the dispatcher is stopping
        HTTPException(502): If the job failed after exhausting its retries
    """
    try:
        future = dispatcher.submit(request.user_id, kind, request.payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    try:
        result = await future
    except RateLimitExceeded as exc:
        raise HTTPException(status_code=429, detail=str(exc))
    except (SystemBusy, DispatcherShutdown) as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except FinalDispatchFailure as exc:
        logger.warning("dispatch_request_failed", kind=kind.value, attempts=exc.attempts)
        raise HTTPException(status_code=502, detail="Something went wrong, please try again.")

    return SubmitResponse(job_kind=kind, result=result)
