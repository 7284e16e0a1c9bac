#Service clock. Timestamps are timezone-aware UTC so that event times,
#sweep times and config durations can be compared without surprises.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0
