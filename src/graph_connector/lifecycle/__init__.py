"""Connector lifecycle: signal parsing, token validation, reconciliation, webhook."""

from .reconciler import LifecycleReconciler
from .signals import DesiredState, LifecycleSignal, ReconciliationResult, SignalDiscarded

__all__ = [
    "DesiredState",
    "LifecycleReconciler",
    "LifecycleSignal",
    "ReconciliationResult",
    "SignalDiscarded",
]
