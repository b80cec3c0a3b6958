from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from wagate.apps.api.deps import get_runtime
from wagate.domain.types import ConnectionState
from wagate.services.runtime import Runtime

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    sessions: int
    connected: int


@router.get("/health", response_model=HealthResponse)
async def health(runtime: Runtime = Depends(get_runtime)) -> HealthResponse:
    states = runtime.supervisor.snapshot()
    return HealthResponse(
        status="ok",
        sessions=len(states),
        connected=sum(1 for state in states.values() if state is ConnectionState.CONNECTED),
    )
