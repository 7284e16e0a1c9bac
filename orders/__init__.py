"""
Purpose: Package entry + stable exports.
What it does:

Marks orders as a Python package.

Re-exports the public API so other modules can do:

from orders import Order, OrderStatus, correct_ready_time

Should not contain business logic.

Orders domain package.

Public API:
- Domain models: Order, OrderEstimate, OrderSource, KdsStage, OrderStatus, AuditEntry
- Policy: EstimationPolicy, default_estimation_policy
- Correction: correct_ready_time, CorrectionResult
- (orders.estimator) OrderEstimator - imported directly to keep signals <-> orders acyclic
"""
from .models import (
    AuditEntry,
    KdsStage,
    Order,
    OrderEstimate,
    OrderSource,
    OrderStatus,
    READY_STATES,
    TERMINAL_STATES,
)
from .policy import EstimationPolicy, default_estimation_policy
from .correction import CorrectionResult, correct_ready_time

__all__ = ["AuditEntry",
           "KdsStage",
             "Order",
               "OrderEstimate",
               "OrderSource",
               "OrderStatus",
               "READY_STATES",
               "TERMINAL_STATES",
               "EstimationPolicy",
               "default_estimation_policy",
               "CorrectionResult",
               "correct_ready_time",
               ]
