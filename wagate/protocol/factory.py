from __future__ import annotations

from importlib import import_module

from wagate.core.config import Settings, get_settings
from wagate.core.errors import ProtocolConfigError
from wagate.protocol.base import ConnectionConfig, ConnectionFactory
from wagate.protocol.fake import FakeConnectionFactory


def connection_config_from_settings(settings: Settings | None = None) -> ConnectionConfig:
    settings = settings or get_settings()
    return ConnectionConfig(
        browser=settings.protocol_browser,
        mark_online_on_connect=settings.protocol_mark_online_on_connect,
        sync_full_history=settings.protocol_sync_full_history,
        keep_alive_interval_ms=settings.protocol_keep_alive_interval_ms,
        connect_timeout_ms=settings.protocol_connect_timeout_ms,
        default_query_timeout_ms=settings.protocol_default_query_timeout_ms,
    )


def get_connection_factory(settings: Settings | None = None) -> ConnectionFactory:
    settings = settings or get_settings()
    provider = (settings.connection_provider or "").strip()
    if not provider:
        raise ProtocolConfigError("connection_provider is not configured; set a 'module:attribute' import path")
    if provider.lower() == "fake":
        return FakeConnectionFactory(auto_open=True)
    module_name, _, attribute = provider.partition(":")
    if not module_name or not attribute:
        raise ProtocolConfigError(
            f"connection_provider must be 'fake' or 'module:attribute', got {provider!r}"
        )
    try:
        target = getattr(import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise ProtocolConfigError(f"cannot load connection provider {provider!r}") from exc
    # Accept either a factory instance or a zero-argument callable producing one.
    if isinstance(target, type) or not hasattr(target, "connect"):
        target = target()
    if not hasattr(target, "connect"):
        raise ProtocolConfigError(f"connection provider {provider!r} has no connect()")
    return target
