from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from wagate.apps.api.deps import get_runtime
from wagate.domain.types import DeliveryOutcome
from wagate.services.delivery import sanitize_payload, validate_target_url
from wagate.services.runtime import Runtime

router = APIRouter(prefix="/sessions/{session_id}/messages", tags=["messages"])


class ForwardRequest(BaseModel):
    webhook: str
    ids: list[str] | None = None


class RetryRequest(BaseModel):
    ids: list[str] | None = None
    webhook: str | None = None


class UndeliveredResponse(BaseModel):
    sessionId: str
    count: int
    messages: list[dict[str, Any]]


class BatchResponse(BaseModel):
    sessionId: str
    total: int
    delivered: int
    results: list[dict[str, Any]]


def _batch_response(session_id: str, outcomes: list[DeliveryOutcome]) -> BatchResponse:
    return BatchResponse(
        sessionId=session_id,
        total=len(outcomes),
        delivered=sum(1 for outcome in outcomes if outcome.status == "delivered"),
        results=[outcome.to_json() for outcome in outcomes],
    )


@router.get("/undelivered", response_model=UndeliveredResponse)
async def list_undelivered(
    session_id: str,
    webhook: str | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> UndeliveredResponse:
    target_url = validate_target_url(webhook) if webhook else None
    rows = await runtime.ledger.query_undelivered(session_id, target_url)
    return UndeliveredResponse(
        sessionId=session_id,
        count=len(rows),
        messages=[sanitize_payload(row) for row in rows],
    )


@router.post("/forward", response_model=BatchResponse)
async def forward_messages(
    session_id: str,
    payload: ForwardRequest,
    runtime: Runtime = Depends(get_runtime),
) -> BatchResponse:
    outcomes = await runtime.ledger.forward(session_id, payload.webhook, payload.ids)
    return _batch_response(session_id, outcomes)


@router.post("/retry", response_model=BatchResponse)
async def retry_messages(
    session_id: str,
    payload: RetryRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> BatchResponse:
    payload = payload or RetryRequest()
    outcomes = await runtime.ledger.retry_pending(session_id, payload.ids, payload.webhook)
    return _batch_response(session_id, outcomes)
