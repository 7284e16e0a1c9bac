"""
Purpose: Error taxonomy shared by every capability.
What it does:
- Defines one exception per failure the core can report.
- Per-event errors carry the order id so callers (and the audit trail)
  can attribute them.

Rule: Nothing here decides whether an error is fatal. The bus records and
re-raises per-event errors; only ConfigValidationError stops startup.
"""

from __future__ import annotations

from typing import Optional


class KitchenSignalError(Exception):
    """Base class for all errors raised by the estimation core."""

    def __init__(self, message: str, *, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class StaleEventError(KitchenSignalError):
    """Event timestamp is earlier than the order's placement time."""


class UnknownOrderError(KitchenSignalError):
    """Event targets an order that was never placed."""


class InvalidStageTransitionError(KitchenSignalError):
    """Kitchen-display stage tried to move backwards."""


class DuplicateMarkError(KitchenSignalError):
    """Merchant marked an order ready more than once."""


class TerminalStateError(KitchenSignalError):
    """Event arrived for an order that is already picked up or abandoned."""


class ContentionError(KitchenSignalError):
    """A per-key critical section could not be entered in time. Retryable."""


class NotFoundError(KitchenSignalError):
    """Query for an order id the service has never seen."""


class ServiceStoppedError(KitchenSignalError):
    """Submission after shutdown has started."""


class ConfigValidationError(KitchenSignalError, ValueError):
    """Configuration is inconsistent; the service must not start with it."""
