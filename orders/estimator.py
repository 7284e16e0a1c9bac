"""
Purpose: Per-order state machine that fuses ready signals into one estimate.
What it does:
- Owns one Order and applies SignalBus-routed events to it:

  PLACED -> PREPARING -> MANUALLY_MARKED -> VALIDATED | BIAS_FLAGGED -> PICKED_UP
  any non-terminal --(no signal for abandon_timeout)--> ABANDONED

- Runs the correction algorithm when the merchant marks the order ready
  (and again if a rider-proximity signal shows up after the mark).
- Records every applied or rejected event on the order's audit trail.

Rule: Not thread-safe on its own. The SignalBus guarantees a single writer per
order; the estimator assumes it.
"""

from __future__ import annotations

import logging
from datetime import datetime

from core.errors import (
    DuplicateMarkError,
    InvalidStageTransitionError,
    KitchenSignalError,
    StaleEventError,
    TerminalStateError,
)
from signals.models import SignalEvent, SignalKind

from .correction import correct_ready_time
from .models import (
    READY_STATES,
    KdsStage,
    Order,
    OrderEstimate,
    OrderStatus,
)
from .policy import EstimationPolicy

logger = logging.getLogger(__name__)


class OrderEstimator:
    """
    Single-order signal fusion.

    Build one with `OrderEstimator.place(event, policy)` from an OrderPlaced event.
    """

    def __init__(self, order: Order, policy: EstimationPolicy):
        self.order = order
        self.policy = policy
        self._handlers = {
            SignalKind.ORDER_PLACED: self._on_placed,
            SignalKind.KDS_STAGE_UPDATED: self._on_kds_stage,
            SignalKind.RIDER_PROXIMITY_DETECTED: self._on_rider_proximity,
            SignalKind.MANUAL_READY_MARKED: self._on_manual_ready,
            SignalKind.ORDER_PICKED_UP: self._on_picked_up,
        }
        #immutable view, swapped after every change so readers never see a half-applied event
        self.latest = OrderEstimate.of(order)

    @classmethod
    def place(cls, event: SignalEvent, policy: EstimationPolicy) -> OrderEstimator:
        if event.kind is not SignalKind.ORDER_PLACED:
            raise ValueError(f"cannot create order {event.order_id} from {event.kind.value}")
        order = Order(
            id=event.order_id,
            restaurant_id=event.restaurant_id,
            source=event.source,
            placed_at=event.timestamp,
        )
        order.record(event.timestamp, event.kind.value, f"placed via {order.source.value}")
        logger.debug(f"Order {order.id} placed at restaurant {order.restaurant_id} ({order.source.value})")
        return cls(order, policy)

    def estimate(self) -> OrderEstimate:
        return self.latest

    # --- Public API ---

    def apply(self, event: SignalEvent) -> None:
        """
        Apply one event. Raises (after recording) if the event is rejected;
        the order is left exactly as it was in that case.
        """
        order = self.order
        if order.is_terminal:
            raise self.reject(
                event,
                TerminalStateError(
                    f"Order {order.id} is {order.status.value}; {event.kind.value} not accepted",
                    order_id=order.id,
                ),
            )
        if event.timestamp < order.placed_at:
            raise self.reject(
                event,
                StaleEventError(
                    f"{event.kind.value} at {event.timestamp.isoformat()} precedes placement of order {order.id}",
                    order_id=order.id,
                ),
            )

        self._handlers[event.kind](event)
        if event.timestamp > order.last_signal_at:
            order.last_signal_at = event.timestamp
        self.latest = OrderEstimate.of(order)

    def reject(self, event: SignalEvent, error: KitchenSignalError) -> KitchenSignalError:
        """
        Attach a rejected event to the audit trail. Returns the error so the
        caller can `raise estimator.reject(...)`.
        """
        self.order.record(event.timestamp, event.kind.value, str(error), error=error)
        logger.warning(f"Rejected {event.kind.value} for order {self.order.id}: {error}")
        return error

    def abandon_if_idle(self, now: datetime) -> bool:
        """
        Move a non-terminal order to ABANDONED if it has been silent for longer
        than the abandon timeout. Returns True if the order was abandoned.
        """
        order = self.order
        if order.is_terminal:
            return False
        idle = now - order.last_signal_at
        if idle <= self.policy.abandon_timeout:
            return False
        previous = order.status
        order.status = OrderStatus.ABANDONED
        order.closed_at = now
        order.record(now, "Timeout", f"no signal for {int(idle.total_seconds())}s while {previous.value}")
        self.latest = OrderEstimate.of(order)
        logger.info(f"Order {order.id} abandoned after {int(idle.total_seconds())}s idle in {previous.value}")
        return True

    # --- Transition handlers ---

    def _on_placed(self, event: SignalEvent) -> None:
        #idempotency : dont re-create a live order
        self.order.record(event.timestamp, event.kind.value, "duplicate placement ignored")

    def _on_kds_stage(self, event: SignalEvent) -> None:
        order = self.order
        stage: KdsStage = event.stage
        if stage.rank < order.kds_stage.rank:
            raise self.reject(
                event,
                InvalidStageTransitionError(
                    f"Order {order.id} cannot go from {order.kds_stage.value} back to {stage.value}",
                    order_id=order.id,
                ),
            )
        if stage is order.kds_stage:
            order.record(event.timestamp, event.kind.value, f"stage already {stage.value}")
            return

        order.kds_stage = stage
        if order.status is OrderStatus.PLACED:
            order.status = OrderStatus.PREPARING
        order.record(event.timestamp, event.kind.value, f"stage -> {stage.value}")

    def _on_rider_proximity(self, event: SignalEvent) -> None:
        order = self.order
        distance = event.distance_m
        if distance is not None and distance > self.policy.proximity_distance_m:
            order.record(event.timestamp, event.kind.value, f"rider at {distance:.0f}m, outside threshold")
            return
        if order.rider_proximity_at is not None:
            order.record(event.timestamp, event.kind.value, "repeat proximity ignored")
            return

        order.rider_proximity_at = event.timestamp
        order.record(event.timestamp, event.kind.value, "rider within proximity threshold")

        # proximity can be reported after the mark was resolved; re-resolve
        if order.status in READY_STATES:
            self._resolve_mark(event.timestamp)

    def _on_manual_ready(self, event: SignalEvent) -> None:
        order = self.order
        if order.manual_ready_at is not None:
            raise self.reject(
                event,
                DuplicateMarkError(
                    f"Order {order.id} already marked ready at {order.manual_ready_at.isoformat()}",
                    order_id=order.id,
                ),
            )

        order.manual_ready_at = event.timestamp
        order.kds_stage_at_mark = order.kds_stage
        order.status = OrderStatus.MANUALLY_MARKED
        order.record(event.timestamp, event.kind.value, f"marked ready with kds at {order.kds_stage.value}")
        self._resolve_mark(event.timestamp)

    def _on_picked_up(self, event: SignalEvent) -> None:
        order = self.order
        order.picked_up_at = event.timestamp
        order.closed_at = event.timestamp

        if order.manual_ready_at is None:
            # no ready signal was ever trustworthy: pickup time is the only evidence
            order.corrected_ready_at = max(event.timestamp, order.placed_at)
            order.bias_detected = True
            order.status = OrderStatus.BIAS_FLAGGED
            order.anomaly = "picked up before any ready mark"
            order.record(event.timestamp, event.kind.value, order.anomaly)
            logger.info(f"Order {order.id} picked up before ready mark; flagged")
            return

        order.status = OrderStatus.PICKED_UP
        order.record(event.timestamp, event.kind.value, "picked up")

    # --- Correction ---

    def _resolve_mark(self, at: datetime) -> None:
        order = self.order
        result = correct_ready_time(
            order.placed_at,
            order.manual_ready_at,
            kds_stage_at_mark=order.kds_stage_at_mark or KdsStage.NONE,
            rider_proximity_at=order.rider_proximity_at,
            policy=self.policy,
        )
        order.corrected_ready_at = result.corrected_ready_at
        order.bias_detected = result.bias_detected
        order.status = OrderStatus.BIAS_FLAGGED if result.bias_detected else OrderStatus.VALIDATED

        reasons = ", ".join(result.reasons) or "corroborated"
        order.record(at, "Correction", f"{order.status.value} ({reasons}); corrected {result.corrected_ready_at.isoformat()}")
        logger.debug(f"Order {order.id} resolved to {order.status.value} ({reasons})")
