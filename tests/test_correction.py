from orders.correction import REASON_KDS_NOT_READY, REASON_RIDER_PROXIMITY, correct_ready_time
from orders.models import KdsStage

from conftest import T0, at


def test_rider_seen_inside_window_stretches_prep_time(policy):
    """
    Placed at t0, marked at t0+10m, rider at the pickup at t0+9m:
    the mark is flagged and the elapsed 10 minutes is stretched to 12.
    """
    result = correct_ready_time(
        T0, at(10),
        kds_stage_at_mark=KdsStage.READY,
        rider_proximity_at=at(9),
        policy=policy,
    )

    assert result.bias_detected is True
    assert result.corrected_ready_at == at(12)
    assert result.reasons == (REASON_RIDER_PROXIMITY,)


def test_kds_ready_and_no_rider_keeps_manual_mark(policy):
    result = correct_ready_time(
        T0, at(10),
        kds_stage_at_mark=KdsStage.READY,
        rider_proximity_at=None,
        policy=policy,
    )

    assert result.bias_detected is False
    assert result.corrected_ready_at == at(10)
    assert result.reasons == ()


def test_rider_seen_long_before_mark_is_outside_window(policy):
    # 8 minutes ahead of the mark, window is 5
    result = correct_ready_time(
        T0, at(10),
        kds_stage_at_mark=KdsStage.READY,
        rider_proximity_at=at(2),
        policy=policy,
    )

    assert result.bias_detected is False
    assert result.corrected_ready_at == at(10)


def test_window_boundary_is_inclusive(policy):
    result = correct_ready_time(
        T0, at(10),
        kds_stage_at_mark=KdsStage.READY,
        rider_proximity_at=at(5),
        policy=policy,
    )

    assert result.bias_detected is True
    assert result.corrected_ready_at == at(12)


def test_rider_after_mark_does_not_dispute_it(policy):
    result = correct_ready_time(
        T0, at(10),
        kds_stage_at_mark=KdsStage.READY,
        rider_proximity_at=at(11),
        policy=policy,
    )

    assert result.bias_detected is False
    assert result.corrected_ready_at == at(10)


def test_kds_mismatch_alone_only_flags(policy):
    result = correct_ready_time(
        T0, at(10),
        kds_stage_at_mark=KdsStage.PLATING,
        rider_proximity_at=None,
        policy=policy,
    )

    assert result.bias_detected is True
    assert result.corrected_ready_at == at(10)
    assert result.reasons == (REASON_KDS_NOT_READY,)


def test_proximity_adjustment_wins_when_both_fire(policy):
    result = correct_ready_time(
        T0, at(20),
        kds_stage_at_mark=KdsStage.STARTED,
        rider_proximity_at=at(18),
        policy=policy,
    )

    assert result.bias_detected is True
    assert result.corrected_ready_at == at(24)
    assert set(result.reasons) == {REASON_RIDER_PROXIMITY, REASON_KDS_NOT_READY}


def test_corrected_never_before_placement(policy):
    # marked the instant it was placed, rider pinged even earlier
    result = correct_ready_time(
        T0, T0,
        kds_stage_at_mark=KdsStage.NONE,
        rider_proximity_at=at(-1),
        policy=policy,
    )

    assert result.corrected_ready_at >= T0
