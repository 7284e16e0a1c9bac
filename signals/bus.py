"""
Purpose: Ordered ingestion point for signal events (no business logic).
What it does:
- Accepts SignalEvents from any number of threads.
- Routes each one to the owning order's OrderEstimator.
- Keeps events for the same order in submission order (FIFO per order key)
  and never applies two of them at once; different orders run in parallel.
- Creates the estimator on OrderPlaced; anything else for an unknown order
  fails with UnknownOrderError.
- Notifies listeners (the rush aggregator) after every applied event, still
  inside the order's critical section.

How FIFO is kept:
  submit() appends an envelope to the order's mailbox under a short global
  guard - that fixes the submission order. Then it enters the order's lock and
  drains the mailbox from the head. Whoever holds the lock applies queued
  events in order; each submitter waits on its own envelope's future.

Rule: Estimators are only touched while holding their order's lock.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Deque, Dict, List, Optional

from core.errors import ContentionError, ServiceStoppedError, UnknownOrderError
from core.locks import KeyedLocks
from orders.models import Order, OrderEstimate

from .models import SignalEvent, SignalKind

if TYPE_CHECKING:
    from orders.estimator import OrderEstimator

logger = logging.getLogger(__name__)

EstimatorFactory = Callable[[SignalEvent], "OrderEstimator"]
OrderListener = Callable[[Order], None]


@dataclass(eq=False)
class _Envelope:
    event: SignalEvent
    future: Future = field(default_factory=Future)


class SignalBus:
    """
    Per-order serialized router.

    Args:
        estimator_factory: builds an OrderEstimator from an OrderPlaced event
        lock_timeout_sec: bound on every per-order lock wait (ContentionError past it)
    """

    def __init__(self, estimator_factory: EstimatorFactory, *, lock_timeout_sec: float = 1.0):
        self._factory = estimator_factory
        self._locks = KeyedLocks("order", timeout_sec=lock_timeout_sec)

        self._guard = threading.Lock()
        self._idle = threading.Condition(self._guard)
        self._mailboxes: Dict[str, Deque[_Envelope]] = {}
        self._estimators: Dict[str, OrderEstimator] = {}
        self._listeners: List[OrderListener] = []
        self._in_flight = 0
        self._closed = False

    # --- Public API ---

    def add_listener(self, listener: OrderListener) -> None:
        self._listeners.append(listener)

    def submit(self, event: SignalEvent) -> OrderEstimate:
        """
        Deliver one event to its order.

        Returns the order's estimate after the event was applied.
        Raises the per-event error (UnknownOrderError, StaleEventError,
        TerminalStateError, ...) for this event only; other orders and later
        events for the same order are unaffected.
        """
        envelope = _Envelope(event)
        with self._guard:
            if self._closed:
                raise ServiceStoppedError("signal bus is shut down", order_id=event.order_id)
            self._mailboxes.setdefault(event.order_id, deque()).append(envelope)
            self._in_flight += 1

        try:
            try:
                with self._locks.hold(event.order_id):
                    self._drain(event.order_id)
            except ContentionError:
                if self._withdraw(envelope):
                    raise ContentionError(
                        f"order {event.order_id} busy; {event.kind.value} not applied",
                        order_id=event.order_id,
                    )
                # the lock holder already took our envelope, so it is committed:
                # it will be applied and the holder always resolves the future

            return envelope.future.result()
        finally:
            with self._guard:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._idle.notify_all()

    def get_estimator(self, order_id: str) -> Optional[OrderEstimator]:
        with self._guard:
            return self._estimators.get(order_id)

    def order_ids(self) -> List[str]:
        with self._guard:
            return list(self._estimators)

    def expire_idle(self, now: datetime) -> List[str]:
        """
        One abandonment pass over every known order.

        Orders whose lock is busy are skipped this round; they are active
        anyway. A failure on one order is logged and does not stop the pass.
        Returns the ids that were abandoned.
        """
        _require_aware(now)
        abandoned: List[str] = []
        for order_id in self.order_ids():
            estimator = self.get_estimator(order_id)
            if estimator is None or estimator.order.is_terminal:
                continue
            try:
                with self._locks.hold(order_id):
                    if estimator.abandon_if_idle(now):
                        abandoned.append(order_id)
                        self._notify(estimator.order)
            except ContentionError:
                logger.debug(f"Sweep skipped busy order {order_id}")
            except Exception:
                logger.exception(f"Sweep failed for order {order_id}; continuing")
        return abandoned

    def evict_closed(self, before: datetime) -> List[str]:
        """
        Forget terminal orders closed at or before `before`, along with their
        locks. Later events for them are unknown-order events.
        Returns the evicted ids.
        """
        _require_aware(before)
        evicted: List[str] = []
        for order_id in self.order_ids():
            estimator = self.get_estimator(order_id)
            if estimator is None:
                continue
            closed_at = estimator.order.closed_at
            if closed_at is None or closed_at > before:
                continue
            try:
                with self._locks.hold(order_id):
                    with self._guard:
                        #events still queued for it keep it around one more round
                        if self._mailboxes.get(order_id):
                            continue
                        del self._estimators[order_id]
                    self._locks.discard(order_id)
                    evicted.append(order_id)
            except ContentionError:
                logger.debug(f"Eviction skipped busy order {order_id}")
        if evicted:
            logger.info(f"Evicted {len(evicted)} closed order(s)")
        return evicted

    def close(self, drain_timeout_sec: Optional[float] = None) -> bool:
        """
        Stop accepting submissions and wait for in-flight ones to finish.
        Returns False if the drain timed out.
        """
        with self._guard:
            self._closed = True
            drained = self._idle.wait_for(lambda: self._in_flight == 0, timeout=drain_timeout_sec)
        if not drained:
            logger.warning("Signal bus closed with submissions still in flight")
        return drained

    @property
    def closed(self) -> bool:
        with self._guard:
            return self._closed

    # --- internals ---

    def _withdraw(self, envelope: _Envelope) -> bool:
        order_id = envelope.event.order_id
        with self._guard:
            mailbox = self._mailboxes.get(order_id)
            if mailbox is None or envelope not in mailbox:
                return False
            mailbox.remove(envelope)
            if not mailbox:
                del self._mailboxes[order_id]
            return True

    def _next(self, order_id: str) -> Optional[_Envelope]:
        with self._guard:
            mailbox = self._mailboxes.get(order_id)
            if not mailbox:
                self._mailboxes.pop(order_id, None)
                return None
            return mailbox.popleft()

    def _drain(self, order_id: str) -> None:
        # caller holds the order lock
        while True:
            envelope = self._next(order_id)
            if envelope is None:
                return
            try:
                envelope.future.set_result(self._route(envelope.event))
            except Exception as exc:
                # belongs to the submitter of that event, not to the drainer
                envelope.future.set_exception(exc)
            except BaseException as exc:
                # a committed submitter waits without a timeout; never leave it hanging
                envelope.future.set_exception(exc)
                raise

    def _route(self, event: SignalEvent) -> OrderEstimate:
        estimator = self.get_estimator(event.order_id)
        if estimator is None:
            if event.kind is not SignalKind.ORDER_PLACED:
                logger.warning(f"Rejected {event.kind.value} for unknown order {event.order_id}")
                raise UnknownOrderError(f"order {event.order_id} was never placed", order_id=event.order_id)
            estimator = self._factory(event)
            with self._guard:
                self._estimators[event.order_id] = estimator
        else:
            estimator.apply(event)

        self._notify(estimator.order)
        return estimator.estimate()

    def _notify(self, order: Order) -> None:
        for listener in self._listeners:
            listener(order)


def _require_aware(moment: datetime) -> None:
    if moment.tzinfo is None or moment.utcoffset() is None:
        raise ValueError(f"sweep time {moment.isoformat()} must be timezone-aware")
