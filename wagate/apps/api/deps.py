from __future__ import annotations

from fastapi import Request

from wagate.core.errors import NotInitializedError
from wagate.services.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise NotInitializedError("service is starting up")
    return runtime
