from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from wagate.apps.api.errors import (
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
    wagate_exception_handler,
)
from wagate.apps.api.routes.health import router as health_router
from wagate.apps.api.routes.messages import router as messages_router
from wagate.apps.api.routes.sessions import router as sessions_router
from wagate.apps.api.routes.status import router as status_router
from wagate.core.config import get_settings
from wagate.core.errors import WagateError
from wagate.core.logging import configure_logging
from wagate.persistence.db import SessionLocal
from wagate.services.runtime import Runtime, build_runtime


logger = logging.getLogger(__name__)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the HTTP adapter; an injected runtime skips startup restore."""
    configure_logging()
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = getattr(app.state, "runtime", None) is None
        if owned:
            app.state.runtime = build_runtime(SessionLocal, settings=settings)
            if settings.restore_on_startup:
                restored = await app.state.runtime.supervisor.restore_all()
                logger.info("startup_restore_finished restored=%s", len(restored))
        try:
            yield
        finally:
            await app.state.runtime.shutdown()
            if owned:
                app.state.runtime = None

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.runtime = runtime

    @app.exception_handler(WagateError)
    async def _wagate_exception_handler(request: Request, exc: WagateError):
        return await wagate_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(messages_router)
    app.include_router(status_router)
    return app


app = create_app()
