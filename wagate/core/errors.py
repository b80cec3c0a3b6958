from __future__ import annotations


class WagateError(Exception):
    """Base error for wagate."""


class InvalidInputError(WagateError):
    """Malformed caller-supplied data; never retried."""


class NotFoundError(WagateError):
    """Unknown session id."""


class NotInitializedError(WagateError):
    """Session exists but has no active connection handle."""


class NotConnectedError(WagateError):
    """Session has a handle but the connection is not open."""


class RecipientUnregisteredError(WagateError):
    """Destination address does not exist on the network."""


class UpstreamFailureError(WagateError):
    """Protocol layer returned an error."""


class WorkingStateError(WagateError):
    """Working-state allocation or materialization failure."""


class DatabaseError(WagateError):
    """Database layer failure."""


class ProtocolConfigError(WagateError):
    """Missing or invalid connection provider configuration."""
