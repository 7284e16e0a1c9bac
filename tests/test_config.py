import json

import pytest

from core.errors import ConfigValidationError
from estimation import EstimationService, ServiceConfig, config_from_dict, default_config, load_config
from orders.models import OrderSource
from rush.policy import RushPolicy


def test_defaults_are_valid():
    cfg = default_config()

    assert cfg.estimation.correction_factor == 1.2
    assert cfg.estimation.proximity_bias_window_sec == 300
    assert cfg.rush.moderate_threshold == 40
    assert cfg.rush.high_threshold == 70
    assert cfg.rush.default_weights[OrderSource.ZOMATO] == 0.40


def test_full_document_is_parsed():
    cfg = config_from_dict({
        "estimation": {"proximity_bias_window_sec": 240, "correction_factor": 1.3, "abandon_timeout_sec": 1800},
        "rush": {
            "default_weights": {"zomato": 0.5, "competitor": 0.3, "in-store": 0.2},
            "restaurant_weights": {"R-7": {"zomato": 0.2, "competitor": 0.2, "in-store": 0.6}},
            "high_threshold": 75,
        },
        "service": {"lock_timeout_sec": 0.5, "subscriber_buffer": 8},
    })

    assert cfg.estimation.correction_factor == 1.3
    assert cfg.rush.weights_for("R-7")[OrderSource.IN_STORE] == 0.6
    assert cfg.rush.weights_for("R-1")[OrderSource.ZOMATO] == 0.5
    assert cfg.rush.high_threshold == 75
    assert cfg.service.subscriber_buffer == 8


def test_weights_summing_to_point_nine_fail_at_load():
    with pytest.raises(ConfigValidationError):
        config_from_dict({"rush": {"restaurant_weights": {"R-1": {"zomato": 0.4, "competitor": 0.3, "in-store": 0.2}}}})


def test_weights_within_tolerance_accepted():
    cfg = config_from_dict({"rush": {"default_weights": {"zomato": 0.4, "competitor": 0.35, "in-store": 0.2500000001}}})

    assert cfg.rush.default_weights[OrderSource.IN_STORE] == pytest.approx(0.25)


@pytest.mark.parametrize("document", [
    {"estimation": {"correction_factor": 1.0}},
    {"estimation": {"correction_factor": 0.8}},
    {"estimation": {"proximity_bias_window_sec": 0}},
    {"estimation": {"abandon_timeout_sec": -5}},
    {"estimation": {"correction_factor": "fast"}},
    {"estimation": {"no_such_knob": 1}},
    {"rush": {"default_weights": {"zomato": 0.5, "swiggy": 0.5}}},
    {"rush": {"default_weights": {"zomato": "0.4", "competitor": 0.35, "in-store": 0.25}}},
    {"rush": {"moderate_threshold": 80}},
    {"service": {"subscriber_buffer": 0}},
    {"metrics": {}},
    ["not", "an", "object"],
])
def test_inconsistent_config_rejected(document):
    with pytest.raises(ConfigValidationError):
        config_from_dict(document)


def test_config_error_is_also_a_value_error():
    with pytest.raises(ValueError):
        config_from_dict({"estimation": {"correction_factor": 1.0}})


def test_load_config_from_json_file(tmp_path):
    path = tmp_path / "kpt.json"
    path.write_text(json.dumps({"estimation": {"abandon_timeout_sec": 900}}))

    cfg = load_config(path)

    assert cfg.estimation.abandon_timeout_sec == 900


def test_load_config_missing_or_broken_file(tmp_path):
    with pytest.raises(ConfigValidationError):
        load_config(tmp_path / "absent.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ConfigValidationError):
        load_config(broken)


def test_service_refuses_to_start_with_bad_weights():
    bad = ServiceConfig(rush=RushPolicy(default_weights={
        OrderSource.ZOMATO: 0.4, OrderSource.COMPETITOR: 0.3, OrderSource.IN_STORE: 0.2,
    }))

    with pytest.raises(ConfigValidationError):
        EstimationService(bad)
