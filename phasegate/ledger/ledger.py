"""
Per-work-item gate ledger.

The ledger is the source of truth for phase history. Each work item owns one
JSON file holding its active event list, its refinement record, and the
archive of sessions cleared by confirmed resets:

    .gov/gates/WP-42.json

Events are never rewritten in place: appends add to the end and resets move
the whole active session into ``archived_sessions``. A consolidated legacy
ledger (``.gov/GATES.json``) is read as a fallback for work items that have no
file of their own yet; it is never written.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Literal

from ..errors import SequenceError, ValidationError
from .events import GATE_ORDER, GateEvent

logger = logging.getLogger(__name__)

LEDGER_SCHEMA_VERSION = 1

REVIEW_PENDING = "PENDING"
REVIEW_APPROVED = "APPROVED"

# Work item ids double as file names.
_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class RefinementRecord:
    """
    The refinement a work item is bound to.

    Created PENDING at REFINEMENT, approved exactly once at SIGNATURE, frozen
    after that until a reset archives it.
    """

    work_item_id: str
    artifact_ref: str
    artifact_sha256: str
    review_status: str = REVIEW_PENDING
    signature: str | None = None
    signed_at: datetime | None = None

    @property
    def frozen(self) -> bool:
        return self.review_status == REVIEW_APPROVED

    def approve(self, signature: str, signed_at: datetime) -> RefinementRecord:
        if self.frozen:
            raise SequenceError(
                f"Refinement for {self.work_item_id} is already signed and frozen",
                code="REFINEMENT_FROZEN",
            )
        return replace(self, review_status=REVIEW_APPROVED, signature=signature, signed_at=signed_at)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "work_item_id": self.work_item_id,
            "artifact_ref": self.artifact_ref,
            "artifact_sha256": self.artifact_sha256,
            "review_status": self.review_status,
        }
        if self.signature is not None:
            result["signature"] = self.signature
        if self.signed_at is not None:
            result["signed_at"] = self.signed_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefinementRecord:
        signed_at = data.get("signed_at")
        return cls(
            work_item_id=data["work_item_id"],
            artifact_ref=data["artifact_ref"],
            artifact_sha256=data["artifact_sha256"],
            review_status=data.get("review_status", REVIEW_PENDING),
            signature=data.get("signature"),
            signed_at=datetime.fromisoformat(signed_at) if signed_at else None,
        )


@dataclass(frozen=True)
class ArchivedSession:
    archived_at: datetime
    reason: str
    events: tuple[GateEvent, ...]
    refinement: RefinementRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "archived_at": self.archived_at.isoformat(),
            "archive_reason": self.reason,
            "events": [e.to_dict() for e in self.events],
        }
        if self.refinement is not None:
            result["refinement"] = self.refinement.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArchivedSession:
        refinement = data.get("refinement")
        return cls(
            archived_at=datetime.fromisoformat(data["archived_at"]),
            reason=data.get("archive_reason", ""),
            events=tuple(GateEvent.from_dict(e) for e in data.get("events", [])),
            refinement=RefinementRecord.from_dict(refinement) if refinement else None,
        )


@dataclass
class WorkItemLog:
    """Everything the ledger knows about one work item."""

    work_item_id: str
    events: list[GateEvent] = field(default_factory=list)
    refinement: RefinementRecord | None = None
    archived_sessions: list[ArchivedSession] = field(default_factory=list)
    source: Literal["ledger", "legacy", "new"] = "new"

    def latest(self, event_type: str) -> GateEvent | None:
        """Most recent event of a type (by position; the log is append-only)."""
        for event in reversed(self.events):
            if event.event_type == event_type:
                return event
        return None

    def latest_by_type(self) -> dict[str, GateEvent]:
        found: dict[str, GateEvent] = {}
        for gate in GATE_ORDER:
            event = self.latest(gate)
            if event is not None:
                found[gate] = event
        return found

    @property
    def last_event(self) -> GateEvent | None:
        return self.events[-1] if self.events else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": LEDGER_SCHEMA_VERSION,
            "work_item_id": self.work_item_id,
            "events": [e.to_dict() for e in self.events],
            "refinement": self.refinement.to_dict() if self.refinement else None,
            "archived_sessions": [s.to_dict() for s in self.archived_sessions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, source: Literal["ledger", "legacy", "new"] = "ledger") -> WorkItemLog:
        version = data.get("schema_version")
        if version != LEDGER_SCHEMA_VERSION:
            raise ValidationError(f"Unsupported ledger schema_version: {version!r}")
        try:
            refinement = data.get("refinement")
            return cls(
                work_item_id=data["work_item_id"],
                events=[GateEvent.from_dict(e) for e in data.get("events", [])],
                refinement=RefinementRecord.from_dict(refinement) if refinement else None,
                archived_sessions=[ArchivedSession.from_dict(s) for s in data.get("archived_sessions", [])],
                source=source,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed ledger record: {e}") from e


class GateLedger:
    """
    Gate ledger keyed by work item id.

    Every read goes to disk; nothing is cached between calls. Writes replace
    the work item's file atomically, so a failed operation leaves the previous
    content intact.
    """

    def __init__(self, ledger_dir: Path, legacy_path: Path | None = None):
        self.ledger_dir = ledger_dir
        self.legacy_path = legacy_path

    def path_for(self, work_item_id: str) -> Path:
        if not _SAFE_ID.match(work_item_id):
            raise ValidationError(f"Work item id is not usable as a ledger key: {work_item_id!r}")
        return self.ledger_dir / f"{work_item_id}.json"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, work_item_id: str) -> WorkItemLog:
        path = self.path_for(work_item_id)
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ValidationError(f"Ledger file is not valid JSON: {path}", details=[str(e)]) from e
            log = WorkItemLog.from_dict(data)
            if log.work_item_id != work_item_id:
                raise ValidationError(
                    f"Ledger file {path.name} belongs to {log.work_item_id}, not {work_item_id}"
                )
            return log

        legacy_events = self._legacy_events(work_item_id)
        if legacy_events:
            logger.info("Reading %s from legacy ledger %s", work_item_id, self.legacy_path)
            return WorkItemLog(work_item_id=work_item_id, events=legacy_events, source="legacy")
        return WorkItemLog(work_item_id=work_item_id)

    def _legacy_data(self) -> dict[str, Any]:
        if self.legacy_path is None or not self.legacy_path.exists():
            return {}
        try:
            data = json.loads(self.legacy_path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Legacy ledger is not valid JSON: {self.legacy_path}", details=[str(e)]) from e
        return data if isinstance(data, dict) else {}

    def _legacy_events(self, work_item_id: str) -> list[GateEvent]:
        logs = self._legacy_data().get("gate_logs", [])
        if not isinstance(logs, list):
            return []
        return [
            GateEvent.from_legacy(entry)
            for entry in logs
            if isinstance(entry, dict) and entry.get("wpId") == work_item_id
        ]

    def work_item_ids(self) -> list[str]:
        """Ids with a ledger file or legacy entries, sorted."""
        ids: set[str] = set()
        if self.ledger_dir.exists():
            ids.update(p.stem for p in self.ledger_dir.glob("*.json") if p.is_file())
        logs = self._legacy_data().get("gate_logs", [])
        if isinstance(logs, list):
            ids.update(str(e["wpId"]) for e in logs if isinstance(e, dict) and e.get("wpId"))
        return sorted(ids)

    def iter_logs(self) -> Iterator[WorkItemLog]:
        for work_item_id in self.work_item_ids():
            yield self.load(work_item_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        work_item_id: str,
        event: GateEvent,
        *,
        refinement: RefinementRecord | None = None,
    ) -> WorkItemLog:
        """
        Append one event, optionally replacing the refinement record in the same write.

        Legacy events for the work item are carried into its new file on the
        first append.
        """
        if event.work_item_id != work_item_id:
            raise ValidationError(f"Event belongs to {event.work_item_id}, not {work_item_id}")
        log = self.load(work_item_id)
        log.events.append(event)
        if refinement is not None:
            log.refinement = refinement
        self._write(log)
        return log

    def archive(self, work_item_id: str, *, reason: str, archived_at: datetime) -> ArchivedSession:
        """Move the active session into the archive and clear it."""
        log = self.load(work_item_id)
        session = ArchivedSession(
            archived_at=archived_at,
            reason=reason,
            events=tuple(log.events),
            refinement=log.refinement,
        )
        log.archived_sessions.append(session)
        log.events = []
        log.refinement = None
        self._write(log)
        return session

    def _write(self, log: WorkItemLog) -> None:
        path = self.path_for(log.work_item_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(log.to_dict(), indent=2) + "\n"
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        log.source = "ledger"
