"""
Purpose: Orchestrator / public surface (the "glue").
What it does:
Composes SignalBus + OrderEstimator + RushAggregator and exposes what the
transport layer (HTTP, message consumer) calls:

- submit(event)                  -> OrderEstimate   (per-event errors raised)
- get_order_estimate(order_id)   -> OrderEstimate   (NotFoundError if unknown)
- get_rush_index(restaurant_id)  -> RushSnapshot    (zero state, never an error)
- subscribe(restaurant_id)       -> RushSubscription (iterable stream)
- audit_trail(order_id), stats(), sweep(), start(), shutdown()

Transport mapping: NotFoundError -> "not found", ContentionError -> retryable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from core.clock import Clock, minutes_between, utc_now
from core.errors import NotFoundError
from orders.estimator import OrderEstimator
from orders.models import AuditEntry, OrderEstimate, OrderStatus
from rush.aggregator import RushAggregator, RushSnapshot
from signals.bus import SignalBus
from signals.models import SignalEvent

from .config import ServiceConfig, default_config
from .subscriptions import RushSubscription, SubscriptionHub
from .sweeper import AbandonSweeper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceStats:
    """
    Dashboard headline numbers.
    """
    order_volume: int
    active_orders: int
    active_merchants: int
    bias_rate_pct: float
    avg_rider_wait_min: float
    abandoned_orders: int

    def to_dict(self) -> dict:
        return {
            "orderVolume": self.order_volume,
            "activeOrders": self.active_orders,
            "activeMerchants": self.active_merchants,
            "biasRatePct": round(self.bias_rate_pct, 1),
            "avgRiderWait": round(self.avg_rider_wait_min, 1),
            "abandonedOrders": self.abandoned_orders,
        }


class EstimationService:
    """
    Kitchen-ready estimation and rush index, in process.

    Use as a context manager to get the background sweep started and the
    shutdown sequence run:

        with EstimationService(load_config("kpt.json")) as service:
            service.submit(SignalEvent.order_placed("O-1", "R-1", "zomato", now))
    """

    def __init__(self, config: Optional[ServiceConfig] = None, *, clock: Clock = utc_now):
        # refuse to start with an inconsistent model
        config = config or default_config()
        config.validate()
        self.config = config
        self._clock = clock

        self._hub = SubscriptionHub(buffer_size=config.service.subscriber_buffer)
        self._aggregator = RushAggregator(
            config.rush,
            publisher=self._hub.publish,
            lock_timeout_sec=config.service.lock_timeout_sec,
            clock=clock,
        )
        self._bus = SignalBus(self._new_estimator, lock_timeout_sec=config.service.lock_timeout_sec)
        self._bus.add_listener(self._aggregator.observe)
        self._sweeper = AbandonSweeper(self.sweep, interval_sec=config.service.sweep_interval_sec)
        self._started = False
        self._stopped = False

    # --- lifecycle ---

    def start(self) -> EstimationService:
        if not self._started:
            self._sweeper.start()
            self._started = True
            logger.info("Estimation service started")
        return self

    def shutdown(self) -> None:
        """
        Stop accepting signals, let in-flight ones drain, stop the sweep,
        then end every subscriber stream.
        """
        if self._stopped:
            return
        self._stopped = True
        self._bus.close(drain_timeout_sec=self.config.service.drain_timeout_sec)
        if self._started:
            self._sweeper.stop(join=True, timeout=self.config.service.drain_timeout_sec)
        self._hub.close_all()
        logger.info("Estimation service stopped")

    def __enter__(self) -> EstimationService:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # --- commands ---

    def submit(self, event: SignalEvent) -> OrderEstimate:
        return self._bus.submit(event)

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        One abandonment pass, any deferred rush recomputes, then eviction of
        orders closed longer ago than the retention period.
        Returns the ids of orders abandoned in this pass.
        """
        now = now or self._clock()
        abandoned = self._bus.expire_idle(now)
        self._aggregator.flush()
        self._bus.evict_closed(now - timedelta(seconds=self.config.service.retention_sec))
        if abandoned:
            logger.info(f"Sweep abandoned {len(abandoned)} order(s)")
        return abandoned

    # --- queries ---

    def get_order_estimate(self, order_id: str) -> OrderEstimate:
        estimator = self._bus.get_estimator(order_id)
        if estimator is None:
            raise NotFoundError(f"order {order_id} not found", order_id=order_id)
        return estimator.estimate()

    def audit_trail(self, order_id: str) -> List[AuditEntry]:
        estimator = self._bus.get_estimator(order_id)
        if estimator is None:
            raise NotFoundError(f"order {order_id} not found", order_id=order_id)
        return list(estimator.order.audit)

    def get_rush_index(self, restaurant_id: str) -> RushSnapshot:
        return self._aggregator.snapshot(restaurant_id)

    def subscribe(self, restaurant_id: str) -> RushSubscription:
        """
        Stream of snapshots for one restaurant, starting with the current one.
        Each call returns a fresh, independent stream.
        Raises ContentionError if the restaurant stays busy past the lock timeout.
        """
        # no publish for this restaurant can land between the read and the registration
        with self._aggregator.holding(restaurant_id) as current:
            return self._hub.subscribe(restaurant_id, initial=current)

    def stats(self) -> ServiceStats:
        estimators = [self._bus.get_estimator(order_id) for order_id in self._bus.order_ids()]
        estimators = [e for e in estimators if e is not None]

        resolved = 0
        biased = 0
        abandoned = 0
        waits: List[float] = []
        for estimator in estimators:
            estimate = estimator.estimate()
            if estimate.status is OrderStatus.ABANDONED:
                abandoned += 1
            if estimate.corrected_ready_at is None:
                continue
            resolved += 1
            if estimate.bias_detected:
                biased += 1
            arrived = estimator.order.rider_proximity_at
            if arrived is not None:
                waits.append(max(0.0, minutes_between(arrived, estimate.corrected_ready_at)))

        active_by_restaurant = self._aggregator.active_counts()
        return ServiceStats(
            order_volume=len(estimators),
            active_orders=sum(active_by_restaurant.values()),
            active_merchants=sum(1 for count in active_by_restaurant.values() if count > 0),
            bias_rate_pct=(biased / resolved * 100.0) if resolved else 0.0,
            avg_rider_wait_min=(sum(waits) / len(waits)) if waits else 0.0,
            abandoned_orders=abandoned,
        )

    # --- internals ---

    def _new_estimator(self, event: SignalEvent) -> OrderEstimator:
        return OrderEstimator.place(event, self.config.estimation)
