from .events import BillingEvent, Unrecognized, parse_event
from .reconciliation import Outcome, ReconciliationEngine, ReconciliationResult
from .state_machine import SubscriptionStateMachine, Transition

__all__ = [
    "BillingEvent",
    "Outcome",
    "ReconciliationEngine",
    "ReconciliationResult",
    "SubscriptionStateMachine",
    "Transition",
    "Unrecognized",
    "parse_event",
]
