"""Error taxonomy.

Ingress side:
- AuthenticityFailure  -> 401, no mutation, never retried
- MalformedEvent       -> acknowledged (200), no mutation
- NoCustomizations     -> acknowledged (200), no mutation (a filter, not a fault)

Shared:
- StorageError         -> propagated; ingress still acknowledges the sender

Worker side:
- NotYetSynced          -> expected transient state, retried every cycle
- DownstreamCallFailure -> retried until the attempt ceiling, then terminal
"""

from __future__ import annotations


class ShipnoteError(Exception):
    """Base class for all relay errors."""


class AuthenticityFailure(ShipnoteError):
    """Webhook signature did not verify."""


class MalformedEvent(ShipnoteError):
    """Webhook body could not be parsed into an order."""


class NoCustomizations(ShipnoteError):
    """Order carries no customer-entered customizations."""


class StorageError(ShipnoteError):
    """Order store I/O or constraint failure."""


class NotYetSynced(ShipnoteError):
    """Order has not appeared in ShipStation yet."""

    def __init__(self, order_number: str):
        super().__init__("Order not yet synced")
        self.order_number = order_number


class DownstreamCallFailure(ShipnoteError):
    """A ShipStation call failed (network, timeout, 4xx/5xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
