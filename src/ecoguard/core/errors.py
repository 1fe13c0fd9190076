"""Exception hierarchy for the ingestion, risk and alerting pipeline.

- ``UpstreamError``: a feed was unreachable or returned an unparseable payload.
- ``ValidationError``: caller input was rejected before touching the store.
- ``StoreError``: the persistence layer failed.
- ``QueryError``: a read-path store failure surfaced by the risk engine.
- ``DispatchError``: one recipient/channel delivery failed.
"""

from __future__ import annotations


class EcoGuardError(Exception):
    """Base exception for all EcoGuard errors."""


class UpstreamError(EcoGuardError):
    """An upstream feed could not be fetched or parsed."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class ValidationError(EcoGuardError):
    """Input failed validation."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class StoreError(EcoGuardError):
    """A persistence operation failed."""


class QueryError(StoreError):
    """A risk query could not read from the store."""


class DispatchError(EcoGuardError):
    """Delivering an alert to one subscription over one channel failed."""

    def __init__(self, subscription_id: str, channel: str, message: str) -> None:
        super().__init__(f"{channel} dispatch to {subscription_id} failed: {message}")
        self.subscription_id = subscription_id
        self.channel = channel
        self.message = message
