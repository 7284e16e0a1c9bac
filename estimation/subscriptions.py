"""
Purpose: Fan-out of rush snapshots to subscribers (dashboard, dispatch).
What it does:
- RushSubscription: one subscriber's bounded buffer + blocking iterator.
  When the buffer is full the OLDEST snapshot is dropped; only the latest
  congestion value matters.
- SubscriptionHub: routes published snapshots to the subscribers of that
  restaurant. publish() never blocks on a slow subscriber.

Rule: a stream ends only on close() (unsubscribe) or hub shutdown, never because
no new data arrived.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, Iterator, List, Optional

from rush.aggregator import RushSnapshot

logger = logging.getLogger(__name__)


class RushSubscription:
    """
    Iterable stream of RushSnapshots for one restaurant.

        for snapshot in service.subscribe("R-1"):
            ...

    Iteration blocks until a snapshot arrives or the subscription is closed;
    snapshots buffered before close are still delivered.
    """

    def __init__(
        self,
        restaurant_id: str,
        buffer_size: int,
        on_close: Optional[Callable[[RushSubscription], None]] = None,
    ):
        self.restaurant_id = restaurant_id
        self._buffer: Deque[RushSnapshot] = deque(maxlen=buffer_size)
        self._cond = threading.Condition()
        self._closed = False
        self._on_close = on_close
        self.dropped = 0

    def push(self, snapshot: RushSnapshot) -> None:
        with self._cond:
            if self._closed:
                return
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped += 1  # deque(maxlen) evicts the oldest on append
            self._buffer.append(snapshot)
            self._cond.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[RushSnapshot]:
        """
        Next snapshot, waiting up to `timeout` seconds (forever if None).
        Returns None on timeout or once the subscription is closed and drained.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._buffer or self._closed, timeout=timeout)
            if self._buffer:
                return self._buffer.popleft()
            return None

    def __iter__(self) -> Iterator[RushSnapshot]:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._buffer or self._closed)
                if not self._buffer:
                    return
                snapshot = self._buffer.popleft()
            yield snapshot

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        if self._on_close is not None:
            self._on_close(self)

    unsubscribe = close

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def pending(self) -> int:
        with self._cond:
            return len(self._buffer)

    def __enter__(self) -> RushSubscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SubscriptionHub:
    def __init__(self, buffer_size: int = 16):
        self.buffer_size = buffer_size
        self._guard = threading.Lock()
        self._subscribers: Dict[str, List[RushSubscription]] = {}
        self._closed = False

    def subscribe(self, restaurant_id: str, initial: Optional[RushSnapshot] = None) -> RushSubscription:
        subscription = RushSubscription(restaurant_id, self.buffer_size, on_close=self._remove)
        with self._guard:
            if self._closed:
                subscription.close()
                return subscription
            self._subscribers.setdefault(restaurant_id, []).append(subscription)
        # send the current value on connect so a new subscriber is never blank
        if initial is not None:
            subscription.push(initial)
        logger.debug(f"New rush subscriber for {restaurant_id}")
        return subscription

    def publish(self, snapshot: RushSnapshot) -> int:
        """
        Deliver to every subscriber of the snapshot's restaurant. Returns how many.
        """
        with self._guard:
            targets = list(self._subscribers.get(snapshot.restaurant_id, ()))
        for subscription in targets:
            subscription.push(snapshot)
        return len(targets)

    def subscriber_count(self, restaurant_id: Optional[str] = None) -> int:
        with self._guard:
            if restaurant_id is not None:
                return len(self._subscribers.get(restaurant_id, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def close_all(self) -> None:
        with self._guard:
            self._closed = True
            subscriptions = [s for subs in self._subscribers.values() for s in subs]
        for subscription in subscriptions:
            subscription.close()

    def _remove(self, subscription: RushSubscription) -> None:
        with self._guard:
            subs = self._subscribers.get(subscription.restaurant_id)
            if subs and subscription in subs:
                subs.remove(subscription)
                if not subs:
                    del self._subscribers[subscription.restaurant_id]
