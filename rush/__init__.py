"""
Rush index package.

Public API:
- RushAggregator, RushSnapshot, RestaurantWindow
- RushPolicy, default_rush_policy
- compute_rush_index, RushStatus, SourceVolume
"""
from .policy import RushPolicy, default_rush_policy
from .index import RushIndex, RushStatus, SourceVolume, compute_rush_index
from .aggregator import RestaurantWindow, RushAggregator, RushSnapshot, zero_snapshot

__all__ = [
    "RushPolicy",
    "default_rush_policy",
    "RushIndex",
    "RushStatus",
    "SourceVolume",
    "compute_rush_index",
    "RestaurantWindow",
    "RushAggregator",
    "RushSnapshot",
    "zero_snapshot",
]
