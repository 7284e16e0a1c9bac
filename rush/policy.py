"""
Purpose: Central configuration for the rush index (single source of truth).
What it does:

Stores source weights and status bands:

DEFAULT_WEIGHTS = zomato 0.40 / competitor 0.35 / in-store 0.25

MODERATE_THRESHOLD = 40

HIGH_THRESHOLD = 70

Per-restaurant weights override the defaults.

Rule: Parameters only, validated once at load; tune them without touching code.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping

from core.errors import ConfigValidationError
from orders.models import OrderSource

WEIGHT_TOLERANCE = 1e-6

Weights = Mapping[OrderSource, float]


def _default_weights() -> Dict[OrderSource, float]:
    return {
        OrderSource.ZOMATO: 0.40,
        OrderSource.COMPETITOR: 0.35,
        OrderSource.IN_STORE: 0.25,
    }


@dataclass(frozen=True)
class RushPolicy:
    """
    Central configuration for per-restaurant congestion scoring.

    Notes:
    - index = round(sum(volume_pct[source] * weight[source])), 0..100
    - status = High if index > high_threshold,
               Moderate if index > moderate_threshold, else Low
    """

    default_weights: Dict[OrderSource, float] = field(default_factory=_default_weights)

    # restaurant_id -> weights for that restaurant only
    restaurant_weights: Dict[str, Dict[OrderSource, float]] = field(default_factory=dict)

    # --- Status bands ---
    moderate_threshold: int = 40
    high_threshold: int = 70

    def weights_for(self, restaurant_id: str) -> Weights:
        return self.restaurant_weights.get(restaurant_id, self.default_weights)

    def validate(self) -> None:
        """
        Weights must cover every source and sum to 1.0; bands must be ordered.
        """
        _validate_weights("default", self.default_weights)
        for restaurant_id, weights in self.restaurant_weights.items():
            _validate_weights(f"restaurant {restaurant_id}", weights)

        if not 0 <= self.moderate_threshold < self.high_threshold <= 100:
            raise ConfigValidationError(
                "thresholds must satisfy 0 <= moderate_threshold < high_threshold <= 100"
            )


def _validate_weights(label: str, weights: Mapping) -> None:
    for source, weight in weights.items():
        if not isinstance(source, OrderSource):
            raise ConfigValidationError(f"{label} weights: unknown source {source!r}")
        if not isinstance(weight, (int, float)) or math.isnan(weight) or weight < 0:
            raise ConfigValidationError(f"{label} weights: {source.value} weight must be a number >= 0")

    missing = set(OrderSource) - set(weights)
    if missing:
        names = ", ".join(sorted(s.value for s in missing))
        raise ConfigValidationError(f"{label} weights: missing sources {names}")

    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigValidationError(f"{label} weights sum to {total:.6f}, expected 1.0")


def default_rush_policy() -> RushPolicy:
    """
    Convenience factory for the default policy.
    """
    p = RushPolicy()
    p.validate()
    return p
