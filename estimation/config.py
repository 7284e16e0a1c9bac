"""
Purpose: Startup configuration for the estimation service.
What it does:
- ServicePolicy: runtime knobs (lock timeout, sweep interval, subscriber buffer,
  drain timeout, closed-order retention)
- ServiceConfig: EstimationPolicy + RushPolicy + ServicePolicy, validated together
- config_from_dict / load_config: build a ServiceConfig from a JSON document

Document shape (every section and key is optional; missing keys use defaults):

    {
      "estimation": {"proximity_bias_window_sec": 300, "correction_factor": 1.2,
                     "abandon_timeout_sec": 3600, "proximity_distance_m": 50},
      "rush": {"default_weights": {"zomato": 0.4, "competitor": 0.35, "in-store": 0.25},
               "restaurant_weights": {"R-1": {...}},
               "moderate_threshold": 40, "high_threshold": 70},
      "service": {"lock_timeout_sec": 1.0, "sweep_interval_sec": 30,
                  "subscriber_buffer": 16, "drain_timeout_sec": 5.0,
                  "retention_sec": 86400}
    }

Rule: anything inconsistent raises ConfigValidationError; the service refuses to start.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from core.errors import ConfigValidationError
from orders.models import OrderSource
from orders.policy import EstimationPolicy
from rush.policy import RushPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServicePolicy:
    """
    Runtime knobs for the service itself (not the algorithms).
    """

    # Every per-order / per-restaurant lock wait is bounded by this.
    lock_timeout_sec: float = 1.0

    # How often the background sweep looks for abandoned orders.
    sweep_interval_sec: float = 30.0

    # Per-subscriber snapshot buffer; the oldest snapshot is dropped when full.
    subscriber_buffer: int = 16

    # How long shutdown waits for in-flight submissions.
    drain_timeout_sec: float = 5.0

    # Picked-up and abandoned orders are forgotten this long after closing.
    retention_sec: float = 86400.0

    def validate(self) -> None:
        if self.lock_timeout_sec <= 0:
            raise ConfigValidationError("lock_timeout_sec must be > 0")

        if self.sweep_interval_sec <= 0:
            raise ConfigValidationError("sweep_interval_sec must be > 0")

        if self.subscriber_buffer < 1:
            raise ConfigValidationError("subscriber_buffer must be >= 1")

        if self.drain_timeout_sec < 0:
            raise ConfigValidationError("drain_timeout_sec must be >= 0")

        if self.retention_sec <= 0:
            raise ConfigValidationError("retention_sec must be > 0")


@dataclass(frozen=True)
class ServiceConfig:
    estimation: EstimationPolicy = field(default_factory=EstimationPolicy)
    rush: RushPolicy = field(default_factory=RushPolicy)
    service: ServicePolicy = field(default_factory=ServicePolicy)

    def validate(self) -> None:
        self.estimation.validate()
        self.rush.validate()
        self.service.validate()


def default_config() -> ServiceConfig:
    cfg = ServiceConfig()
    cfg.validate()
    return cfg


def config_from_dict(data: Mapping[str, Any]) -> ServiceConfig:
    """
    Build and validate a ServiceConfig from a plain mapping (parsed JSON).
    """
    if not isinstance(data, Mapping):
        raise ConfigValidationError("configuration must be a JSON object")

    unknown = set(data) - {"estimation", "rush", "service"}
    if unknown:
        raise ConfigValidationError(f"unknown configuration sections: {', '.join(sorted(unknown))}")

    estimation = _build(EstimationPolicy, data.get("estimation", {}), "estimation")

    rush_section = dict(data.get("rush", {}))
    if "default_weights" in rush_section:
        rush_section["default_weights"] = _parse_weights(rush_section["default_weights"], "rush.default_weights")
    if "restaurant_weights" in rush_section:
        per_restaurant = rush_section["restaurant_weights"]
        if not isinstance(per_restaurant, Mapping):
            raise ConfigValidationError("rush.restaurant_weights must be an object")
        rush_section["restaurant_weights"] = {
            str(restaurant_id): _parse_weights(weights, f"rush.restaurant_weights.{restaurant_id}")
            for restaurant_id, weights in per_restaurant.items()
        }
    rush = _build(RushPolicy, rush_section, "rush")

    service = _build(ServicePolicy, data.get("service", {}), "service")

    cfg = ServiceConfig(estimation=estimation, rush=rush, service=service)
    try:
        cfg.validate()
    except TypeError as exc:
        # e.g. a string where a number was expected
        raise ConfigValidationError(f"invalid value type: {exc}") from exc
    return cfg


def load_config(path: str | Path) -> ServiceConfig:
    """
    Read a JSON config file. Missing file or bad JSON is a ConfigValidationError too.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigValidationError(f"config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f"config file {path} is not valid JSON: {exc}") from exc

    cfg = config_from_dict(data)
    logger.info(f"Loaded configuration from {path}")
    return cfg


def _build(cls, section: Any, label: str):
    if not isinstance(section, Mapping):
        raise ConfigValidationError(f"{label} must be an object")
    try:
        return cls(**section)
    except TypeError as exc:
        raise ConfigValidationError(f"{label}: {exc}") from exc


def _parse_weights(raw: Any, label: str) -> Dict[OrderSource, float]:
    if not isinstance(raw, Mapping):
        raise ConfigValidationError(f"{label} must be an object")
    weights: Dict[OrderSource, float] = {}
    for key, value in raw.items():
        try:
            source = OrderSource(key)
        except ValueError as exc:
            raise ConfigValidationError(f"{label}: unknown source {key!r}") from exc
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigValidationError(f"{label}: weight for {key} must be a number")
        weights[source] = float(value)
    return weights
