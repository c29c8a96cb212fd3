"""
Immutable gate events.

Events are the atomic unit of a work item's gate ledger. Current phase is
computed by folding events, never by mutating prior entries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..errors import ValidationError

# Gate types, in required order
REFINEMENT = "REFINEMENT"
SIGNATURE = "SIGNATURE"
PREPARE = "PREPARE"
APPEND = "APPEND"
PRESENT_REPORT = "PRESENT_REPORT"
ACKNOWLEDGE = "ACKNOWLEDGE"
COMMIT = "COMMIT"

GATE_ORDER: tuple[str, ...] = (
    REFINEMENT,
    SIGNATURE,
    PREPARE,
    APPEND,
    PRESENT_REPORT,
    ACKNOWLEDGE,
    COMMIT,
)

GATE_TYPES = frozenset(GATE_ORDER)

VERDICTS = frozenset({"PASS", "FAIL"})

# Documentation: payload fields carried by each gate type
EVENT_PAYLOAD_FIELDS: dict[str, tuple[str, ...]] = {
    REFINEMENT: ("artifact_ref", "artifact_sha256"),
    SIGNATURE: ("signature",),
    PREPARE: ("packet_ref", "packet_sha256"),
    APPEND: ("verdict", "checks"),
    PRESENT_REPORT: ("verdict",),
    ACKNOWLEDGE: (),
    COMMIT: ("checks",),
}


def gate_index(event_type: str) -> int:
    return GATE_ORDER.index(event_type)


def normalize_gate_name(name: str) -> str:
    """``present-report`` -> ``PRESENT_REPORT``."""
    return name.strip().upper().replace("-", "_")


@dataclass(frozen=True)
class GateEvent:
    """
    Immutable event in a work item's gate ledger.

    Events are append-only: once written they are never modified. A confirmed
    reset moves them to the archive instead of deleting them.
    """

    work_item_id: str
    event_type: str  # One of GATE_TYPES
    timestamp: datetime
    actor: str = "system"

    # Machine-inferred steps skip the momentum check and are tagged for audit
    inferred: bool = False

    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.event_type not in GATE_TYPES:
            raise ValidationError(f"Invalid gate type: {self.event_type}")
        if self.timestamp.tzinfo is None:
            raise ValidationError("Gate event timestamps must be timezone-aware")
        verdict = self.payload.get("verdict")
        if verdict is not None and verdict not in VERDICTS:
            raise ValidationError(f"Invalid verdict: {verdict}")

    @property
    def verdict(self) -> str | None:
        return self.payload.get("verdict")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result: dict[str, Any] = {
            "work_item_id": self.work_item_id,
            "type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
        }
        if self.inferred:
            result["inferred"] = True
        if self.payload:
            result["payload"] = self.payload
        return result

    def to_json(self) -> str:
        """Serialize to JSON string (single line)."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GateEvent:
        """Reconstruct from JSON dict."""
        try:
            return cls(
                work_item_id=data["work_item_id"],
                event_type=data["type"],
                timestamp=datetime.fromisoformat(data["timestamp"]),
                actor=data.get("actor", "system"),
                inferred=bool(data.get("inferred", False)),
                payload=dict(data.get("payload") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed gate event: {e}") from e

    @classmethod
    def from_legacy(cls, entry: dict[str, Any]) -> GateEvent:
        """
        Reconstruct from a consolidated-ledger ``gate_logs`` entry.

        Legacy entries are flat: ``{"wpId", "type", "timestamp", ...}``; any
        extra keys become the payload.
        """
        try:
            timestamp = datetime.fromisoformat(str(entry["timestamp"]).replace("Z", "+00:00"))
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Malformed legacy gate entry: {e}") from e
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        payload = {k: v for k, v in entry.items() if k not in {"wpId", "type", "timestamp", "actor"}}
        return cls(
            work_item_id=str(entry.get("wpId", "")),
            event_type=str(entry.get("type", "")),
            timestamp=timestamp,
            actor=str(entry.get("actor", "legacy")),
            payload=payload,
        )


def create_event(
    event_type: str,
    work_item_id: str,
    *,
    actor: str = "system",
    inferred: bool = False,
    payload: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> GateEvent:
    """Create a gate event, timestamped now (UTC) unless given."""
    return GateEvent(
        work_item_id=work_item_id,
        event_type=event_type,
        timestamp=timestamp or datetime.now(timezone.utc),
        actor=actor,
        inferred=inferred,
        payload=payload or {},
    )
