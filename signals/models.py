"""
Purpose: Signal event model consumed by the SignalBus.
What it does:
- SignalKind: the closed set of five event kinds
- SignalEvent: {order_id, restaurant_id, kind, timestamp, payload}
- Factory methods build well-formed events for each kind

Payload conventions:
- ORDER_PLACED:             {"source": "zomato" | "in-store" | "competitor"}
- KDS_STAGE_UPDATED:        {"stage": "started" | "plating" | "ready"}
- RIDER_PROXIMITY_DETECTED: {"distance_m": float (optional), "rider_id": str (optional)}
- MANUAL_READY_MARKED, ORDER_PICKED_UP: no payload

Timestamps must be timezone-aware; they are normalized to UTC.

Rule: validation of the payload shape happens here, at construction.
Whether the event is legal for the order's current state is the estimator's call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from orders.models import KdsStage, OrderSource


class SignalKind(str, Enum):
    ORDER_PLACED = "OrderPlaced"
    MANUAL_READY_MARKED = "ManualReadyMarked"
    KDS_STAGE_UPDATED = "KdsStageUpdated"
    RIDER_PROXIMITY_DETECTED = "RiderProximityDetected"
    ORDER_PICKED_UP = "OrderPickedUp"


@dataclass(frozen=True)
class SignalEvent:
    """
    A timestamped signal for one order. Timestamps come from the service clock
    of the transport layer, not from the client.
    """

    order_id: str
    restaurant_id: str
    kind: SignalKind
    timestamp: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.order_id:
            raise ValueError("order_id is required")
        if not self.restaurant_id:
            raise ValueError("restaurant_id is required")
        if not isinstance(self.timestamp, datetime):
            raise ValueError(f"timestamp must be a datetime, got {type(self.timestamp).__name__}")
        if self.timestamp.tzinfo is None or self.timestamp.utcoffset() is None:
            raise ValueError(f"timestamp for order {self.order_id} must be timezone-aware")
        object.__setattr__(self, "timestamp", self.timestamp.astimezone(timezone.utc))

        # accept raw strings from the transport layer
        if not isinstance(self.kind, SignalKind):
            object.__setattr__(self, "kind", SignalKind(self.kind))

        payload = dict(self.payload or {})
        if self.kind is SignalKind.ORDER_PLACED:
            if "source" not in payload:
                raise ValueError("OrderPlaced requires a 'source' in the payload")
            payload["source"] = OrderSource(payload["source"])
        elif self.kind is SignalKind.KDS_STAGE_UPDATED:
            if "stage" not in payload:
                raise ValueError("KdsStageUpdated requires a 'stage' in the payload")
            payload["stage"] = KdsStage(payload["stage"])
        elif self.kind is SignalKind.RIDER_PROXIMITY_DETECTED:
            if payload.get("distance_m") is not None:
                payload["distance_m"] = float(payload["distance_m"])
        object.__setattr__(self, "payload", payload)

    @property
    def source(self) -> OrderSource:
        return self.payload["source"]

    @property
    def stage(self) -> KdsStage:
        return self.payload["stage"]

    @property
    def distance_m(self) -> Optional[float]:
        return self.payload.get("distance_m")

    # --- factories ---

    @classmethod
    def order_placed(cls, order_id: str, restaurant_id: str, source: str | OrderSource, at: datetime) -> SignalEvent:
        return cls(order_id, restaurant_id, SignalKind.ORDER_PLACED, at, {"source": source})

    @classmethod
    def manual_ready(cls, order_id: str, restaurant_id: str, at: datetime) -> SignalEvent:
        return cls(order_id, restaurant_id, SignalKind.MANUAL_READY_MARKED, at)

    @classmethod
    def kds_stage(cls, order_id: str, restaurant_id: str, stage: str | KdsStage, at: datetime) -> SignalEvent:
        return cls(order_id, restaurant_id, SignalKind.KDS_STAGE_UPDATED, at, {"stage": stage})

    @classmethod
    def rider_proximity(
        cls,
        order_id: str,
        restaurant_id: str,
        at: datetime,
        distance_m: Optional[float] = None,
        rider_id: Optional[str] = None,
    ) -> SignalEvent:
        payload: Dict[str, Any] = {}
        if distance_m is not None:
            payload["distance_m"] = distance_m
        if rider_id is not None:
            payload["rider_id"] = rider_id
        return cls(order_id, restaurant_id, SignalKind.RIDER_PROXIMITY_DETECTED, at, payload)

    @classmethod
    def picked_up(cls, order_id: str, restaurant_id: str, at: datetime) -> SignalEvent:
        return cls(order_id, restaurant_id, SignalKind.ORDER_PICKED_UP, at)
