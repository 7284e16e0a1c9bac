"""
Purpose: Package entry + stable exports.

Estimation service package (the façade other systems call).

Public API:
- EstimationService, ServiceStats
- ServiceConfig, ServicePolicy, config_from_dict, load_config, default_config
- RushSubscription
"""
from .config import ServiceConfig, ServicePolicy, config_from_dict, default_config, load_config
from .subscriptions import RushSubscription, SubscriptionHub
from .service import EstimationService, ServiceStats

__all__ = [
    "ServiceConfig",
    "ServicePolicy",
    "config_from_dict",
    "default_config",
    "load_config",
    "RushSubscription",
    "SubscriptionHub",
    "EstimationService",
    "ServiceStats",
]
