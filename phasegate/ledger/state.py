"""
Phase projection from a work item's event stream.

Phase is computed state: derived by folding the active events, never stored.
The fold walks gate types in required order and stops at the first gate that
is missing or whose latest event predates the latest event of the gate before
it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .events import (
    ACKNOWLEDGE,
    APPEND,
    COMMIT,
    GATE_ORDER,
    PREPARE,
    PRESENT_REPORT,
    REFINEMENT,
    SIGNATURE,
    GateEvent,
)
from .ledger import WorkItemLog

# Phases
PHASE_NEW = "NEW"
PHASE_REFINED = "REFINED"
PHASE_SIGNED = "SIGNED"
PHASE_PREPARED = "PREPARED"
PHASE_APPENDED = "APPENDED"
PHASE_REPORTED = "REPORTED"
PHASE_ACKNOWLEDGED = "ACKNOWLEDGED"
PHASE_COMMITTED = "COMMITTED"

PHASE_FOR_GATE = {
    REFINEMENT: PHASE_REFINED,
    SIGNATURE: PHASE_SIGNED,
    PREPARE: PHASE_PREPARED,
    APPEND: PHASE_APPENDED,
    PRESENT_REPORT: PHASE_REPORTED,
    ACKNOWLEDGE: PHASE_ACKNOWLEDGED,
    COMMIT: PHASE_COMMITTED,
}

PHASE_ORDER = (PHASE_NEW, *(PHASE_FOR_GATE[g] for g in GATE_ORDER))

NEXT_ACTION = {
    PHASE_NEW: "refine",
    PHASE_REFINED: "sign (after the minimum interval)",
    PHASE_SIGNED: "prepare",
    PHASE_PREPARED: "append",
    PHASE_APPENDED: "present-report",
    PHASE_REPORTED: "acknowledge",
    PHASE_ACKNOWLEDGED: "commit",
    PHASE_COMMITTED: "done",
}


def prerequisites(gate: str) -> tuple[str, ...]:
    """All gates that must precede ``gate``, in required order."""
    return GATE_ORDER[: GATE_ORDER.index(gate)]


def fold_phase(latest: dict[str, GateEvent]) -> str:
    phase = PHASE_NEW
    previous: GateEvent | None = None
    for gate in GATE_ORDER:
        event = latest.get(gate)
        if event is None:
            break
        if previous is not None and event.timestamp < previous.timestamp:
            break
        phase = PHASE_FOR_GATE[gate]
        previous = event
    return phase


@dataclass
class GateStatus:
    """Computed view of one work item: current phase plus full history."""

    work_item_id: str
    phase: str
    events: list[GateEvent] = field(default_factory=list)
    latest: dict[str, GateEvent] = field(default_factory=dict)
    review_status: str | None = None
    signature: str | None = None
    archived_sessions: int = 0
    source: str = "new"

    @property
    def verdict(self) -> str | None:
        for gate in (PRESENT_REPORT, APPEND):
            event = self.latest.get(gate)
            if event is not None and event.verdict:
                return event.verdict
        return None

    @property
    def next_action(self) -> str:
        if self.phase == PHASE_APPENDED and self.verdict == "FAIL":
            return "fix and append again, or present-report FAIL"
        if self.phase == PHASE_ACKNOWLEDGED and self.verdict != "PASS":
            return "reset (only PASS verdicts may be committed)"
        return NEXT_ACTION[self.phase]

    @property
    def inferred_gates(self) -> list[str]:
        return sorted({e.event_type for e in self.events if e.inferred})

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_item_id": self.work_item_id,
            "phase": self.phase,
            "next_action": self.next_action,
            "verdict": self.verdict,
            "review_status": self.review_status,
            "signature": self.signature,
            "archived_sessions": self.archived_sessions,
            "source": self.source,
            "events": [e.to_dict() for e in self.events],
        }


def project_status(log: WorkItemLog) -> GateStatus:
    latest = log.latest_by_type()
    refinement = log.refinement
    return GateStatus(
        work_item_id=log.work_item_id,
        phase=fold_phase(latest),
        events=list(log.events),
        latest=latest,
        review_status=refinement.review_status if refinement else None,
        signature=refinement.signature if refinement else None,
        archived_sessions=len(log.archived_sessions),
        source=log.source,
    )
