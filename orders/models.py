"""
Purpose: Domain models for the Orders capability.
What it does:
- Defines core data structures:
- Order (id, restaurant, source, placement time, ready signals, derived estimate, status)
- AuditEntry (one line of the order's audit trail)
- OrderEstimate (read-only view served to dashboard / dispatch)

Defines enums/constants:
- OrderSource = zomato | in-store | competitor
- KdsStage = none | started | plating | ready (ordered)
- OrderStatus = placed | preparing | manually_marked | validated | bias_flagged | picked_up | abandoned

Rule: No signal routing, no correction math. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class OrderSource(str, Enum):
    """
    Which channel the order came through. Picks the rush-index bucket.
    """
    ZOMATO = "zomato"
    IN_STORE = "in-store"
    COMPETITOR = "competitor"


class KdsStage(str, Enum):
    NONE = "none"
    STARTED = "started"
    PLATING = "plating"
    READY = "ready"

    @property
    def rank(self) -> int:
        return _KDS_ORDER.index(self)


_KDS_ORDER = [KdsStage.NONE, KdsStage.STARTED, KdsStage.PLATING, KdsStage.READY]


class OrderStatus(str, Enum):
    PLACED = "placed"
    PREPARING = "preparing"
    MANUALLY_MARKED = "manually_marked"
    VALIDATED = "validated"
    BIAS_FLAGGED = "bias_flagged"
    PICKED_UP = "picked_up"
    ABANDONED = "abandoned"


# "ready" sub-states: the manual mark has been resolved either way
READY_STATES = frozenset([OrderStatus.VALIDATED, OrderStatus.BIAS_FLAGGED])

TERMINAL_STATES = frozenset([OrderStatus.PICKED_UP, OrderStatus.ABANDONED])


@dataclass(frozen=True)
class AuditEntry:
    """
    One line of an order's audit trail.
    `error` holds the exception class name when the event was rejected.
    """
    at: datetime
    kind: str
    detail: str
    error: Optional[str] = None


@dataclass
class Order:
    """
    A single order as seen by the kitchen-ready estimator.

    id / restaurant_id / source / placed_at never change after creation.
    Everything else is mutated only by the order's OrderEstimator.
    """

    id: str
    restaurant_id: str
    source: OrderSource
    placed_at: datetime

    manual_ready_at: Optional[datetime] = None
    kds_stage: KdsStage = KdsStage.NONE
    kds_stage_at_mark: Optional[KdsStage] = None
    rider_proximity_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None

    #derived by the correction algorithm
    corrected_ready_at: Optional[datetime] = None
    bias_detected: bool = False

    status: OrderStatus = OrderStatus.PLACED
    last_signal_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None  # pickup or abandonment time
    anomaly: Optional[str] = None
    audit: List[AuditEntry] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.last_signal_at is None:
            self.last_signal_at = self.placed_at

    @property
    def is_terminal(self) -> bool:
        # pickup-before-ready ends in BIAS_FLAGGED, so picked_up_at counts too
        return self.status in TERMINAL_STATES or self.picked_up_at is not None

    @property
    def is_active(self) -> bool:
        """Counts toward the restaurant's rush index."""
        return not self.is_terminal

    def record(self, at: datetime, kind: str, detail: str, error: Optional[BaseException] = None) -> None:
        self.audit.append(
            AuditEntry(at=at, kind=kind, detail=detail, error=type(error).__name__ if error else None)
        )


@dataclass(frozen=True)
class OrderEstimate:
    """
    Read model returned by get_order_estimate and SignalBus.submit.
    """
    order_id: str
    restaurant_id: str
    corrected_ready_at: Optional[datetime]
    bias_detected: bool
    status: OrderStatus

    @staticmethod
    def of(order: Order) -> OrderEstimate:
        return OrderEstimate(
            order_id=order.id,
            restaurant_id=order.restaurant_id,
            corrected_ready_at=order.corrected_ready_at,
            bias_detected=order.bias_detected,
            status=order.status,
        )

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "restaurant_id": self.restaurant_id,
            "corrected_ready_at": self.corrected_ready_at.isoformat() if self.corrected_ready_at else None,
            "bias_detected": self.bias_detected,
            "status": self.status.value,
        }
