"""Outbound queue, connectivity gate and reconciliation engine."""

from .connectivity import ConnectivityGate, HttpHealthProbe, StaticNetworkStatus
from .engine import ReconciliationEngine
from .queue import SyncQueue, make_entry

__all__ = [
    "ConnectivityGate",
    "HttpHealthProbe",
    "ReconciliationEngine",
    "StaticNetworkStatus",
    "SyncQueue",
    "make_entry",
]
