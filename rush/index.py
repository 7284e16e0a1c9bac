"""
Purpose: Rush-index math (pure functions).
What it does:
- volume_pct[source] = active[source] / total_active * 100   (0 when idle)
- index = round(sum(volume_pct[source] * weight[source])), clamped to [0, 100]
- status band from the policy thresholds

The index is a function of normalized volumes and weights only; it does not
look at absolute order counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Tuple

from orders.models import OrderSource

from .policy import RushPolicy, Weights


class RushStatus(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


@dataclass(frozen=True)
class SourceVolume:
    """
    One row of the per-source breakdown (name / volume / weight on the dashboard).
    """
    source: OrderSource
    active_orders: int
    volume_pct: float
    weight: float

    def to_dict(self) -> dict:
        return {
            "source": self.source.value,
            "active_orders": self.active_orders,
            "volume_pct": round(self.volume_pct, 1),
            "weight": self.weight,
        }


@dataclass(frozen=True)
class RushIndex:
    index: int
    status: RushStatus
    by_source: Tuple[SourceVolume, ...]


def volume_percentages(counts: Mapping[OrderSource, int]) -> Dict[OrderSource, float]:
    total = sum(counts.get(source, 0) for source in OrderSource)
    if total == 0:
        return {source: 0.0 for source in OrderSource}
    return {source: counts.get(source, 0) / total * 100.0 for source in OrderSource}


def status_for(index: int, policy: RushPolicy) -> RushStatus:
    if index > policy.high_threshold:
        return RushStatus.HIGH
    if index > policy.moderate_threshold:
        return RushStatus.MODERATE
    return RushStatus.LOW


def compute_rush_index(
        counts: Mapping[OrderSource, int],
        weights: Weights,
        policy: RushPolicy,
) -> RushIndex:
    """
    Turn active-order counts per source into the 0-100 congestion index.
    """
    pct = volume_percentages(counts)
    raw = sum(pct[source] * weights.get(source, 0.0) for source in OrderSource)
    index = min(100, max(0, int(round(raw))))

    by_source = tuple(
        SourceVolume(
            source=source,
            active_orders=counts.get(source, 0),
            volume_pct=pct[source],
            weight=weights.get(source, 0.0),
        )
        for source in OrderSource
    )
    return RushIndex(index=index, status=status_for(index, policy), by_source=by_source)
