"""Exception types shared across the headshots service."""

from __future__ import annotations


class HeadshotsError(Exception):
    """Base exception for the headshots service."""


class PayloadError(HeadshotsError):
    """Inbound webhook body could not be decoded into a provider event."""


class AssetCopyError(HeadshotsError):
    """Copying one generated image into owned storage failed."""

    def __init__(self, source_url: str, key: str, reason: str):
        self.source_url = source_url
        self.key = key
        self.reason = reason
        super().__init__(f"Asset copy failed for {key}: {reason}")


class InvalidTransitionError(HeadshotsError):
    """Requested order status change would move the order backwards."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id}: cannot move from {current} to {requested}"
        )


class NotificationError(HeadshotsError):
    """Sending the customer completion notice failed."""
