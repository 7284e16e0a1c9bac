import pytest

from core.errors import (
    DuplicateMarkError,
    InvalidStageTransitionError,
    StaleEventError,
    TerminalStateError,
)
from orders.estimator import OrderEstimator
from orders.models import KdsStage, OrderSource, OrderStatus
from signals.models import SignalEvent

from conftest import T0, at


@pytest.fixture
def estimator(policy):
    return OrderEstimator.place(SignalEvent.order_placed("O-1", "R-1", "zomato", T0), policy)


def kds(stage, minutes):
    return SignalEvent.kds_stage("O-1", "R-1", stage, at(minutes))


def test_place_creates_order_in_placed_state(estimator):
    order = estimator.order
    assert order.status == OrderStatus.PLACED
    assert order.source == OrderSource.ZOMATO
    assert order.placed_at == T0
    assert order.kds_stage == KdsStage.NONE
    assert order.corrected_ready_at is None
    assert len(order.audit) == 1


def test_place_rejects_other_kinds(policy):
    with pytest.raises(ValueError):
        OrderEstimator.place(SignalEvent.manual_ready("O-1", "R-1", T0), policy)


def test_kds_started_moves_placed_to_preparing(estimator):
    estimator.apply(kds("started", 1))

    assert estimator.order.status == OrderStatus.PREPARING
    assert estimator.order.kds_stage == KdsStage.STARTED


def test_repeat_stage_is_a_silent_noop(estimator):
    estimator.apply(kds("started", 1))
    estimator.apply(kds("started", 2))

    assert estimator.order.kds_stage == KdsStage.STARTED
    assert all(entry.error is None for entry in estimator.order.audit)


def test_stage_regression_rejected_and_stage_kept(estimator):
    estimator.apply(kds("plating", 3))

    with pytest.raises(InvalidStageTransitionError):
        estimator.apply(kds("started", 4))

    assert estimator.order.kds_stage == KdsStage.PLATING
    assert estimator.order.audit[-1].error == "InvalidStageTransitionError"


def test_mark_with_kds_ready_and_no_rider_is_validated(estimator):
    estimator.apply(kds("ready", 8))
    estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(10)))

    order = estimator.order
    assert order.status == OrderStatus.VALIDATED
    assert order.bias_detected is False
    assert order.corrected_ready_at == at(10)
    assert order.kds_stage_at_mark == KdsStage.READY


def test_mark_with_rider_already_waiting_is_flagged_and_corrected(estimator):
    estimator.apply(kds("ready", 8))
    estimator.apply(SignalEvent.rider_proximity("O-1", "R-1", at(9), distance_m=20))
    estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(10)))

    order = estimator.order
    assert order.status == OrderStatus.BIAS_FLAGGED
    assert order.bias_detected is True
    assert order.corrected_ready_at == at(12)


def test_mark_without_kds_support_is_flagged_but_not_moved(estimator):
    estimator.apply(kds("started", 2))
    estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(10)))

    assert estimator.order.status == OrderStatus.BIAS_FLAGGED
    assert estimator.order.corrected_ready_at == at(10)


def test_second_mark_is_duplicate(estimator):
    estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(10)))

    with pytest.raises(DuplicateMarkError):
        estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(11)))

    # first mark stays for the audit
    assert estimator.order.manual_ready_at == at(10)


def test_rider_proximity_does_not_move_state(estimator):
    estimator.apply(SignalEvent.rider_proximity("O-1", "R-1", at(4)))

    assert estimator.order.status == OrderStatus.PLACED
    assert estimator.order.rider_proximity_at == at(4)


def test_only_first_rider_proximity_is_kept(estimator):
    estimator.apply(SignalEvent.rider_proximity("O-1", "R-1", at(4)))
    estimator.apply(SignalEvent.rider_proximity("O-1", "R-1", at(6)))

    assert estimator.order.rider_proximity_at == at(4)


def test_rider_outside_distance_threshold_is_ignored(estimator):
    estimator.apply(SignalEvent.rider_proximity("O-1", "R-1", at(4), distance_m=400))

    assert estimator.order.rider_proximity_at is None


def test_late_rider_report_re_resolves_the_mark(estimator):
    estimator.apply(kds("ready", 8))
    estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(10)))
    assert estimator.order.status == OrderStatus.VALIDATED

    # proximity that happened at t0+9m, delivered after the mark
    estimator.apply(SignalEvent.rider_proximity("O-1", "R-1", at(9)))

    assert estimator.order.status == OrderStatus.BIAS_FLAGGED
    assert estimator.order.corrected_ready_at == at(12)
    assert estimator.estimate().status == OrderStatus.BIAS_FLAGGED


def test_pickup_after_mark_ends_in_picked_up(estimator):
    estimator.apply(kds("ready", 8))
    estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(10)))
    estimator.apply(SignalEvent.picked_up("O-1", "R-1", at(14)))

    order = estimator.order
    assert order.status == OrderStatus.PICKED_UP
    assert order.corrected_ready_at == at(10)
    assert order.is_active is False


def test_pickup_before_any_mark_is_retroactively_flagged(estimator):
    estimator.apply(kds("started", 2))
    assert estimator.order.status == OrderStatus.PREPARING

    estimator.apply(SignalEvent.picked_up("O-1", "R-1", at(17)))

    order = estimator.order
    assert order.status == OrderStatus.BIAS_FLAGGED
    assert order.bias_detected is True
    assert order.corrected_ready_at == at(17)
    assert order.anomaly is not None
    assert order.is_terminal is True
    # anomaly, not an error
    assert order.audit[-1].error is None


def test_events_after_pickup_hit_terminal_state(estimator):
    estimator.apply(SignalEvent.picked_up("O-1", "R-1", at(17)))

    with pytest.raises(TerminalStateError):
        estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(18)))


def test_event_before_placement_is_stale(estimator):
    with pytest.raises(StaleEventError):
        estimator.apply(SignalEvent.manual_ready("O-1", "R-1", at(-2)))

    assert estimator.order.manual_ready_at is None
    assert estimator.order.audit[-1].error == "StaleEventError"


def test_duplicate_placement_is_ignored(estimator):
    estimator.apply(SignalEvent.order_placed("O-1", "R-1", "competitor", at(1)))

    assert estimator.order.source == OrderSource.ZOMATO
    assert estimator.order.status == OrderStatus.PLACED


def test_idle_order_is_abandoned_after_timeout(estimator):
    estimator.apply(kds("started", 5))

    assert estimator.abandon_if_idle(at(60)) is False  # 55 min idle, timeout is 60
    assert estimator.abandon_if_idle(at(66)) is True

    assert estimator.order.status == OrderStatus.ABANDONED
    with pytest.raises(TerminalStateError):
        estimator.apply(kds("plating", 67))


def test_terminal_orders_are_not_abandoned_again(estimator):
    estimator.apply(SignalEvent.picked_up("O-1", "R-1", at(5)))

    assert estimator.abandon_if_idle(at(500)) is False
    assert estimator.order.status == OrderStatus.BIAS_FLAGGED
