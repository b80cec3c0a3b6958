from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wagate.core.config import Settings, get_settings
from wagate.persistence.gateway import PersistenceGateway
from wagate.protocol.base import ConnectionFactory
from wagate.protocol.factory import connection_config_from_settings, get_connection_factory
from wagate.services.credentials import CredentialSynchronizer
from wagate.services.delivery import DeliveryLedger
from wagate.services.status import StatusPublisher
from wagate.services.supervisor import ConnectionSupervisor
from wagate.services.working_state import WorkingStateStore, get_working_state_store


@dataclass(frozen=True)
class Runtime:
    gateway: PersistenceGateway
    synchronizer: CredentialSynchronizer
    ledger: DeliveryLedger
    supervisor: ConnectionSupervisor
    status: StatusPublisher

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()
        await self.ledger.drain()


def build_runtime(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings | None = None,
    factory: ConnectionFactory | None = None,
    working_state: WorkingStateStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    """Wire the session core; every collaborator can be swapped for tests."""
    settings = settings or get_settings()
    gateway = PersistenceGateway(session_factory)
    synchronizer = CredentialSynchronizer(gateway, working_state or get_working_state_store(settings))
    ledger = DeliveryLedger(
        gateway,
        timeout_s=settings.webhook_timeout_s,
        forward_limit=settings.forward_default_limit,
        transport=transport,
    )
    supervisor = ConnectionSupervisor(
        gateway=gateway,
        synchronizer=synchronizer,
        ledger=ledger,
        factory=factory or get_connection_factory(settings),
        config=connection_config_from_settings(settings),
        reconnect_delay_s=settings.reconnect_delay_s,
    )
    status = StatusPublisher(supervisor, gateway, timeout_s=settings.webhook_timeout_s, transport=transport)
    return Runtime(
        gateway=gateway,
        synchronizer=synchronizer,
        ledger=ledger,
        supervisor=supervisor,
        status=status,
    )
