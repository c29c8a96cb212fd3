"""
Gate ledger: append-only, per-work-item event history.

Components:
- events: GateEvent and the ordered gate types
- ledger: GateLedger storage (one JSON file per work item, archive on reset)
- state: phase projection by folding events
"""

from .events import GATE_ORDER, GateEvent, create_event
from .ledger import GateLedger, RefinementRecord, WorkItemLog
from .state import GateStatus, fold_phase, project_status

__all__ = [
    "GATE_ORDER",
    "GateEvent",
    "create_event",
    "GateLedger",
    "RefinementRecord",
    "WorkItemLog",
    "GateStatus",
    "fold_phase",
    "project_status",
]
