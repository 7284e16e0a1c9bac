import pytest
from datetime import datetime, timedelta, timezone

from estimation import EstimationService, config_from_dict
from orders.policy import EstimationPolicy

T0 = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    """T0 + minutes."""
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def policy():
    # 5 minute proximity window, 1.2x stretch (the repository defaults)
    return EstimationPolicy(proximity_bias_window_sec=300, correction_factor=1.2, abandon_timeout_sec=3600)


@pytest.fixture
def service():
    svc = EstimationService(
        config_from_dict({"service": {"lock_timeout_sec": 2.0, "subscriber_buffer": 4}}),
        clock=lambda: at(0),
    )
    yield svc
    svc.shutdown()
