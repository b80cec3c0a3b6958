from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    # Summarize one POST attempt; errors never propagate past this boundary.
    ok: bool
    status_code: int | None
    error: str | None
    latency_ms: float


def serialize_payload(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def _response_error_reason(response: httpx.Response) -> str:
    reason = f"HTTP {response.status_code}"
    if response.reason_phrase:
        reason = f"{reason} {response.reason_phrase}"
    return reason


async def post_webhook(
    url: str,
    payload: dict[str, Any],
    *,
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> WebhookResult:
    """POST ``payload`` as JSON; any non-2xx, timeout or network error is a failure."""
    body = serialize_payload(payload)
    headers = {"Content-Type": "application/json"}
    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
            response = await client.post(url, content=body, headers=headers)
    except httpx.TimeoutException as exc:
        error = f"timeout after {timeout_s:g}s"
        logger.info("webhook_post_failed url=%s error=%s", url, error, exc_info=exc)
        return WebhookResult(ok=False, status_code=None, error=error, latency_ms=_elapsed_ms(start))
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        # InvalidURL/ValueError cover malformed targets rejected before any request is sent.
        error = str(exc) or exc.__class__.__name__
        logger.info("webhook_post_failed url=%s error=%s", url, error)
        return WebhookResult(ok=False, status_code=None, error=error, latency_ms=_elapsed_ms(start))

    if not 200 <= response.status_code < 300:
        error = _response_error_reason(response)
        logger.info("webhook_post_rejected url=%s status_code=%s", url, response.status_code)
        return WebhookResult(
            ok=False,
            status_code=response.status_code,
            error=error,
            latency_ms=_elapsed_ms(start),
        )
    return WebhookResult(ok=True, status_code=response.status_code, error=None, latency_ms=_elapsed_ms(start))


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000.0
