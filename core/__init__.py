#Shared plumbing for every capability: error taxonomy, per-key locks, clock.
#No business logic.

from .errors import (
    KitchenSignalError,
    StaleEventError,
    UnknownOrderError,
    InvalidStageTransitionError,
    DuplicateMarkError,
    TerminalStateError,
    ContentionError,
    NotFoundError,
    ServiceStoppedError,
    ConfigValidationError,
)
from .locks import KeyedLocks
from .clock import Clock, utc_now

__all__ = [
    "KitchenSignalError",
    "StaleEventError",
    "UnknownOrderError",
    "InvalidStageTransitionError",
    "DuplicateMarkError",
    "TerminalStateError",
    "ContentionError",
    "NotFoundError",
    "ServiceStoppedError",
    "ConfigValidationError",
    "KeyedLocks",
    "Clock",
    "utc_now",
]
