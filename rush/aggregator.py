"""
Purpose: Live per-restaurant congestion index.
What it does:
- Keeps, per restaurant, the set of active orders (placed, not yet picked up
  or abandoned) and their source.
- Recomputes the rush index whenever an order enters or leaves that set.
- Publishes a RushSnapshot only when the published value actually changes.

Concurrency:
- One exclusive section per restaurant (KeyedLocks); recomputes for the same
  restaurant serialize, different restaurants run in parallel.
- observe() is called from inside an order's critical section. If the
  restaurant lock is busy the order is parked and applied by the next
  recompute/flush for that restaurant, so a busy restaurant never fails an
  event that was already applied to its order.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from core.clock import Clock, utc_now
from core.errors import ContentionError
from core.locks import KeyedLocks
from orders.models import Order, OrderSource

from .index import RushStatus, SourceVolume, compute_rush_index
from .policy import RushPolicy, Weights

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RushSnapshot:
    """
    Published congestion value for one restaurant.
    """
    restaurant_id: str
    index: int
    status: RushStatus
    by_source: Tuple[SourceVolume, ...]
    computed_at: Optional[datetime] = None

    @property
    def total_active(self) -> int:
        return sum(row.active_orders for row in self.by_source)

    def same_value(self, other: Optional[RushSnapshot]) -> bool:
        if other is None:
            return False
        return (self.index, self.status, self.by_source) == (other.index, other.status, other.by_source)

    def to_dict(self) -> dict:
        return {
            "restaurant_id": self.restaurant_id,
            "index": self.index,
            "status": self.status.value,
            "sources": [row.to_dict() for row in self.by_source],
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }


def zero_snapshot(restaurant_id: str, weights: Weights) -> RushSnapshot:
    return RushSnapshot(
        restaurant_id=restaurant_id,
        index=0,
        status=RushStatus.LOW,
        by_source=tuple(
            SourceVolume(source=source, active_orders=0, volume_pct=0.0, weight=weights.get(source, 0.0))
            for source in OrderSource
        ),
    )


@dataclass
class RestaurantWindow:
    restaurant_id: str
    source_weights: Weights
    active: Dict[str, OrderSource] = field(default_factory=dict)  # order id -> source
    published: Optional[RushSnapshot] = None

    @property
    def source_counts(self) -> Dict[OrderSource, int]:
        counts = {source: 0 for source in OrderSource}
        for source in self.active.values():
            counts[source] += 1
        return counts

    @property
    def index(self) -> int:
        return self.published.index if self.published else 0

    @property
    def status(self) -> RushStatus:
        return self.published.status if self.published else RushStatus.LOW


class RushAggregator:
    """
    Args:
        policy: weights and status bands (already validated)
        publisher: called with every changed snapshot; must not block
        lock_timeout_sec: bound on per-restaurant lock waits
        clock: stamps computed_at
    """

    def __init__(
        self,
        policy: RushPolicy,
        *,
        publisher: Optional[Callable[[RushSnapshot], None]] = None,
        lock_timeout_sec: float = 1.0,
        clock: Clock = utc_now,
    ):
        self.policy = policy
        self._publisher = publisher
        self._clock = clock
        self._locks = KeyedLocks("restaurant", timeout_sec=lock_timeout_sec)
        self._guard = threading.Lock()
        self._windows: Dict[str, RestaurantWindow] = {}
        self._parked: Dict[str, Dict[str, Order]] = {}  # restaurant id -> order id -> order

    # --- Public API ---

    def observe(self, order: Order) -> Optional[RushSnapshot]:
        """
        Track an order's membership in its restaurant's active set.
        Recomputes (and maybe publishes) only when membership changed.
        """
        restaurant_id = order.restaurant_id
        try:
            with self._locks.hold(restaurant_id):
                window = self._window(restaurant_id)
                changed = self._apply_parked(window)
                changed = self._track(window, order) or changed
                if not changed:
                    return None
                return self._recompute_locked(window)
        except ContentionError:
            with self._guard:
                self._parked.setdefault(restaurant_id, {})[order.id] = order
            logger.debug(f"Restaurant {restaurant_id} busy; parked order {order.id}")
            return None

    def recompute(self, restaurant_id: str) -> RushSnapshot:
        """
        Recompute from the current active set. Idempotent for an unchanged set.
        Raises ContentionError if the restaurant stays busy past the lock timeout.
        """
        with self._locks.hold(restaurant_id):
            window = self._window(restaurant_id)
            self._apply_parked(window)
            return self._recompute_locked(window)

    def flush(self) -> List[RushSnapshot]:
        """
        Apply parked membership changes for every restaurant that has some.
        Called by the background sweep.
        """
        with self._guard:
            restaurant_ids = list(self._parked)
        snapshots = []
        for restaurant_id in restaurant_ids:
            try:
                snapshots.append(self.recompute(restaurant_id))
            except ContentionError:
                logger.debug(f"Flush skipped busy restaurant {restaurant_id}")
        return snapshots

    def snapshot(self, restaurant_id: str) -> RushSnapshot:
        """
        Last published snapshot; the zero state for a restaurant never seen.
        """
        with self._guard:
            window = self._windows.get(restaurant_id)
        if window is None or window.published is None:
            return zero_snapshot(restaurant_id, self.policy.weights_for(restaurant_id))
        return window.published

    @contextmanager
    def holding(self, restaurant_id: str) -> Iterator[RushSnapshot]:
        """
        Current snapshot, with the restaurant lock held for the duration of the
        block so nothing is published for it in between.
        Raises ContentionError if the restaurant stays busy past the lock timeout.
        """
        with self._locks.hold(restaurant_id):
            yield self.snapshot(restaurant_id)

    def restaurant_ids(self) -> List[str]:
        with self._guard:
            return list(self._windows)

    def active_counts(self) -> Dict[str, int]:
        return {rid: self.snapshot(rid).total_active for rid in self.restaurant_ids()}

    # --- internals (caller holds the restaurant lock) ---

    def _window(self, restaurant_id: str) -> RestaurantWindow:
        with self._guard:
            window = self._windows.get(restaurant_id)
            if window is None:
                window = RestaurantWindow(
                    restaurant_id=restaurant_id,
                    source_weights=self.policy.weights_for(restaurant_id),
                )
                self._windows[restaurant_id] = window
            return window

    def _apply_parked(self, window: RestaurantWindow) -> bool:
        with self._guard:
            parked = self._parked.pop(window.restaurant_id, {})
        changed = False
        for order in parked.values():
            changed = self._track(window, order) or changed
        return changed

    @staticmethod
    def _track(window: RestaurantWindow, order: Order) -> bool:
        present = order.id in window.active
        if order.is_active and not present:
            window.active[order.id] = order.source
            return True
        if not order.is_active and present:
            del window.active[order.id]
            return True
        return False

    def _recompute_locked(self, window: RestaurantWindow) -> RushSnapshot:
        result = compute_rush_index(window.source_counts, window.source_weights, self.policy)
        snapshot = RushSnapshot(
            restaurant_id=window.restaurant_id,
            index=result.index,
            status=result.status,
            by_source=result.by_source,
            computed_at=self._clock(),
        )
        if snapshot.same_value(window.published):
            return window.published

        window.published = snapshot
        logger.debug(
            f"Rush index {window.restaurant_id}: {snapshot.index} ({snapshot.status.value}), "
            f"{snapshot.total_active} active"
        )
        if self._publisher is not None:
            self._publisher(snapshot)
        return snapshot
