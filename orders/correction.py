"""
Purpose: Bias-correction of the merchant's manual "food ready" mark.
What it does:
- Takes the mark plus the two independent corroborating signals
  (rider proximity, kitchen-display stage at mark time)
- Returns the corrected ready time, the bias flag and why it was raised.

Rules:
1. rider seen at the pickup inside the window before the mark
   -> flag + stretch elapsed prep time by the correction factor
2. KDS not at READY when the mark was made -> flag only (no numeric change)
Rule 1's adjustment wins when both fire. Either signal alone is enough to flag.

Pure function: no I/O, no clock, no state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from .models import KdsStage
from .policy import EstimationPolicy

REASON_RIDER_PROXIMITY = "rider_proximity"
REASON_KDS_NOT_READY = "kds_not_ready"


@dataclass(frozen=True)
class CorrectionResult:
    corrected_ready_at: datetime
    bias_detected: bool
    reasons: Tuple[str, ...] = ()


def correct_ready_time(
        placed_at: datetime,
        manual_ready_at: datetime,
        *,
        kds_stage_at_mark: KdsStage,
        rider_proximity_at: Optional[datetime],
        policy: EstimationPolicy,
) -> CorrectionResult:
    """
    Resolve a manual ready mark into a corrected estimate.

    Args:
        placed_at: order placement time
        manual_ready_at: merchant's FOR mark
        kds_stage_at_mark: kitchen-display stage when the mark was applied
        rider_proximity_at: first rider-proximity crossing, if any
        policy: window + correction factor

    Returns:
        CorrectionResult; corrected_ready_at is never earlier than placed_at.
    """
    corrected = manual_ready_at
    reasons = []

    if rider_proximity_at is not None and rider_proximity_at < manual_ready_at:
        lead = manual_ready_at - rider_proximity_at
        if lead <= policy.proximity_bias_window:
            #stretch the elapsed prep time instead of trusting the raw mark
            corrected = placed_at + (manual_ready_at - placed_at) * policy.correction_factor
            reasons.append(REASON_RIDER_PROXIMITY)

    if kds_stage_at_mark is not KdsStage.READY:
        reasons.append(REASON_KDS_NOT_READY)

    return CorrectionResult(
        corrected_ready_at=max(corrected, placed_at),
        bias_detected=bool(reasons),
        reasons=tuple(reasons),
    )
