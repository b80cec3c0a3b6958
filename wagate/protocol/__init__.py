from wagate.protocol.base import (
    ConnectionConfig,
    ConnectionFactory,
    ConnectionHandle,
    ConnectionUpdate,
)
from wagate.protocol.fake import FakeConnection, FakeConnectionFactory

__all__ = [
    "ConnectionConfig",
    "ConnectionFactory",
    "ConnectionHandle",
    "ConnectionUpdate",
    "FakeConnection",
    "FakeConnectionFactory",
]
