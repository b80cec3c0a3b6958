from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from wagate.core.config import Settings
from wagate.persistence.db import init_models
from wagate.persistence.gateway import PersistenceGateway
from wagate.protocol.fake import FakeConnectionFactory
from wagate.services.runtime import Runtime, build_runtime
from wagate.services.working_state import InMemoryWorkingStateStore


@dataclass
class WebhookRecorder:
    """Records webhook POSTs and answers them with per-URL canned outcomes."""

    requests: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    statuses: dict[str, int] = field(default_factory=dict)
    errors: dict[str, type[httpx.TransportError]] = field(default_factory=dict)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append((url, json.loads(request.content)))
        error = self.errors.get(url)
        if error is not None:
            raise error("simulated transport failure", request=request)
        return httpx.Response(self.statuses.get(url, 200))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def posted_to(self, url: str) -> list[dict[str, Any]]:
        return [payload for target, payload in self.requests if target == url]


@pytest.fixture
async def session_factory(tmp_path):
    # One sqlite file per test keeps persistence isolated without a database server.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wagate.db'}")
    await init_models(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def gateway(session_factory) -> PersistenceGateway:
    return PersistenceGateway(session_factory)


@pytest.fixture
def webhooks() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def factory() -> FakeConnectionFactory:
    return FakeConnectionFactory()


@pytest.fixture
def working_state() -> InMemoryWorkingStateStore:
    return InMemoryWorkingStateStore()


def settings_for_tests(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "reconnect_delay_s": 0.01,
        "webhook_timeout_s": 1.0,
        "restore_on_startup": False,
        "working_state_backend": "memory",
        "connection_provider": "fake",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
async def make_runtime(session_factory, webhooks):
    created: list[Runtime] = []

    def _make(
        *,
        factory: FakeConnectionFactory | None = None,
        working_state: InMemoryWorkingStateStore | None = None,
        **overrides: Any,
    ) -> Runtime:
        runtime = build_runtime(
            session_factory,
            settings=settings_for_tests(**overrides),
            factory=factory or FakeConnectionFactory(),
            working_state=working_state or InMemoryWorkingStateStore(),
            transport=webhooks.transport,
        )
        created.append(runtime)
        return runtime

    yield _make
    for runtime in created:
        await runtime.shutdown()


@pytest.fixture
def runtime(make_runtime: Callable[..., Runtime], factory, working_state) -> Runtime:
    return make_runtime(factory=factory, working_state=working_state)
