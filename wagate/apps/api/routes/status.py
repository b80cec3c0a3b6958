from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from wagate.apps.api.deps import get_runtime
from wagate.core.errors import InvalidInputError
from wagate.services.runtime import Runtime
from wagate.services.status import StatusContent

router = APIRouter(prefix="/sessions/{session_id}", tags=["status"])

_DATA_URI = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)


class StatusSendRequest(BaseModel):
    type: str = "image"
    text: str | None = None
    caption: str | None = None
    url: str | None = None
    base64: str | None = None
    backgroundColor: str | None = None
    font: int | None = None
    statusJidList: list[str] | str | None = None


class StatusSendResponse(BaseModel):
    success: bool = True
    result: dict[str, Any]


class BroadcastInfoResponse(BaseModel):
    success: bool = True
    info: dict[str, Any]


def decode_media(value: str | None) -> bytes | None:
    if not value:
        return None
    match = _DATA_URI.match(value.strip())
    encoded = match.group(2) if match else value.strip()
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("base64 media is not valid base64") from exc


def parse_status_jid_list(value: list[str] | str | None) -> list[str]:
    # Accepts a list, a JSON-encoded list, or one bare address.
    if not value:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    try:
        parsed = json.loads(value)
    except ValueError:
        return [value]
    if isinstance(parsed, list):
        return [str(item) for item in parsed]
    return [value]


@router.post("/status/send", response_model=StatusSendResponse)
async def send_status(
    session_id: str,
    payload: StatusSendRequest,
    runtime: Runtime = Depends(get_runtime),
) -> StatusSendResponse:
    if payload.type not in ("text", "image", "video"):
        raise InvalidInputError("invalid type; supported: text, image, video")
    content = StatusContent(
        type=payload.type,  # type: ignore[arg-type]
        text=payload.text,
        caption=payload.caption,
        media=decode_media(payload.base64),
        url=payload.url,
        background_color=payload.backgroundColor,
        font=payload.font,
        status_jid_list=parse_status_jid_list(payload.statusJidList),
    )
    result = await runtime.status.send_status(session_id, content)
    return StatusSendResponse(result=result)


@router.get("/broadcast/{jid}", response_model=BroadcastInfoResponse)
async def broadcast_info(
    session_id: str,
    jid: str,
    runtime: Runtime = Depends(get_runtime),
) -> BroadcastInfoResponse:
    info = await runtime.status.broadcast_list_info(session_id, jid)
    return BroadcastInfoResponse(info=info if isinstance(info, dict) else {"value": info})
