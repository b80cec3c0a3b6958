from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from wagate.apps.api.deps import get_runtime
from wagate.core.errors import DatabaseError, InvalidInputError, NotFoundError, WagateError
from wagate.domain.types import ConnectionState, WebhookConfig
from wagate.services.credentials import blob_files, has_usable_credentials
from wagate.services.runtime import Runtime
from wagate.services.supervisor import validate_session_id

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    id: str | None = None


class CreateSessionResponse(BaseModel):
    id: str
    initialized: bool
    error: str | None = None


class SessionSummary(BaseModel):
    id: str
    state: str
    createdAt: str | None = None
    updatedAt: str | None = None


class SessionStatusResponse(BaseModel):
    id: str
    state: str
    connected: bool
    hasAuth: bool
    webhooks: dict[str, str | None]
    lastStatus: dict[str, Any] | None = None


class PairRequest(BaseModel):
    number: str


class PairResponse(BaseModel):
    success: bool = True
    pairingCode: str
    message: str = "Enter this code in WhatsApp to pair your device"


class SendMessageRequest(BaseModel):
    to: str
    message: str


class SendMessageResponse(BaseModel):
    success: bool = True
    messageId: str | None
    timestamp: Any = None


class WebhookConfigBody(BaseModel):
    incoming: str | None = None
    group: str | None = None
    status: str | None = None

    model_config = {"extra": "forbid"}


@router.post("", response_model=CreateSessionResponse, status_code=201)
async def create_session(
    payload: CreateSessionRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> CreateSessionResponse:
    session_id = validate_session_id(payload.id if payload is not None else None)
    try:
        await runtime.supervisor.create(session_id)
    except (InvalidInputError, DatabaseError):
        raise
    except WagateError as exc:
        # The durable row exists already; the caller can retry the connection later.
        return CreateSessionResponse(id=session_id, initialized=False, error=str(exc))
    return CreateSessionResponse(id=session_id, initialized=True)


@router.get("", response_model=list[SessionSummary])
async def list_sessions(runtime: Runtime = Depends(get_runtime)) -> list[SessionSummary]:
    records = await runtime.gateway.list_sessions()
    return [
        SessionSummary(
            id=record.id,
            state=runtime.supervisor.state_of(record.id).value,
            createdAt=record.created_at.isoformat() if record.created_at else None,
            updatedAt=record.updated_at.isoformat() if record.updated_at else None,
        )
        for record in records
    ]


@router.get("/{session_id}", response_model=SessionStatusResponse)
async def get_session_status(session_id: str, runtime: Runtime = Depends(get_runtime)) -> SessionStatusResponse:
    if not await runtime.gateway.session_exists(session_id):
        raise NotFoundError(f"session {session_id} not found")
    view = runtime.supervisor.get(session_id)
    blob = await runtime.gateway.load_credentials(session_id)
    webhooks = await runtime.gateway.load_webhook_config(session_id)
    last_status = view.last_status if view is not None and view.last_status is not None else None
    if last_status is None:
        last_status = await runtime.gateway.load_last_status(session_id)
    state = view.state if view is not None else ConnectionState.DISCONNECTED
    return SessionStatusResponse(
        id=session_id,
        state=state.value,
        connected=state is ConnectionState.CONNECTED,
        hasAuth=has_usable_credentials(blob_files(blob)),
        webhooks=webhooks.to_json(),
        lastStatus=last_status,
    )


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, runtime: Runtime = Depends(get_runtime)) -> Response:
    await runtime.supervisor.delete(session_id)
    return Response(status_code=204)


@router.post("/{session_id}/pair-request", response_model=PairResponse)
async def pair_request(
    session_id: str,
    payload: PairRequest,
    runtime: Runtime = Depends(get_runtime),
) -> PairResponse:
    code = await runtime.supervisor.pair_request(session_id, payload.number)
    return PairResponse(pairingCode=code)


@router.post("/{session_id}/send-message", response_model=SendMessageResponse)
async def send_message(
    session_id: str,
    payload: SendMessageRequest,
    runtime: Runtime = Depends(get_runtime),
) -> SendMessageResponse:
    receipt = await runtime.supervisor.send_text(session_id, payload.to, payload.message)
    return SendMessageResponse(messageId=receipt.message_id, timestamp=receipt.timestamp)


@router.get("/{session_id}/webhooks", response_model=WebhookConfigBody)
async def get_webhooks(session_id: str, runtime: Runtime = Depends(get_runtime)) -> WebhookConfigBody:
    if not await runtime.gateway.session_exists(session_id):
        raise NotFoundError(f"session {session_id} not found")
    config = await runtime.gateway.load_webhook_config(session_id)
    return WebhookConfigBody(**config.to_json())


@router.put("/{session_id}/webhooks", response_model=WebhookConfigBody)
async def put_webhooks(
    session_id: str,
    payload: WebhookConfigBody,
    runtime: Runtime = Depends(get_runtime),
) -> WebhookConfigBody:
    config = WebhookConfig.from_json(payload.model_dump())
    # Backlog redelivery continues in the background after the response.
    await runtime.ledger.on_webhook_config_change(session_id, config)
    return WebhookConfigBody(**config.to_json())
