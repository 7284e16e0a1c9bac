"""
Purpose: Central configuration for ready-time estimation (single source of truth).
What it does:

Stores all tunable thresholds for the per-order estimator:

PROXIMITY_BIAS_WINDOW_SEC = 300

CORRECTION_FACTOR = 1.2

ABANDON_TIMEOUT_SEC = 3600

PROXIMITY_DISTANCE_M = 50

Rule: Parameters only, validated once at load; tune them without touching code.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from core.errors import ConfigValidationError


@dataclass(frozen=True)
class EstimationPolicy:
    """
    Central configuration for the bias-correction algorithm and order lifecycle.

    Notes:
    - a rider proximity signal that lands within `proximity_bias_window_sec`
      before the merchant's ready mark flags the mark as biased and stretches
      the elapsed prep time by `correction_factor`:
        corrected = placed_at + (manual_ready_at - placed_at) * correction_factor
    - these are deterministic defaults, not learned values.
    """

    # --- Bias correction ---
    proximity_bias_window_sec: int = 300  # 5 minutes
    correction_factor: float = 1.2

    # --- Rider proximity ---
    # A proximity ping further away than this is not a crossing.
    proximity_distance_m: float = 50.0

    # --- Lifecycle ---
    # No signal for this long while non-terminal -> ABANDONED.
    abandon_timeout_sec: int = 3600

    @property
    def proximity_bias_window(self) -> timedelta:
        return timedelta(seconds=self.proximity_bias_window_sec)

    @property
    def abandon_timeout(self) -> timedelta:
        return timedelta(seconds=self.abandon_timeout_sec)

    def validate(self) -> None:
        """
        Basic sanity checks. Called once at startup.
        """
        if self.proximity_bias_window_sec <= 0:
            raise ConfigValidationError("proximity_bias_window_sec must be > 0")

        if self.correction_factor <= 1.0:
            raise ConfigValidationError("correction_factor must be > 1.0")

        if self.proximity_distance_m <= 0:
            raise ConfigValidationError("proximity_distance_m must be > 0")

        if self.abandon_timeout_sec <= 0:
            raise ConfigValidationError("abandon_timeout_sec must be > 0")


def default_estimation_policy() -> EstimationPolicy:
    """
    Convenience factory for the default policy.
    """
    p = EstimationPolicy()
    p.validate()
    return p
