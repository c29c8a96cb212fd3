"""
Operations audit log.

Every state-changing operation (gate transitions, resets, snapshot writes)
appends one JSON line to ``<state_dir>/audit.log``. The log is append-only
and independent of the gate ledger: it records what the tool did, including
what a reset archived.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ArchiveSummary:
    """What a reset moved out of the active session."""

    events: int = 0
    refinement: bool = False


@dataclass
class WriteSummary:
    """Files written by an operation."""

    files: list[str] = field(default_factory=list)
    bytes_written: int = 0


@dataclass
class AuditEntry:
    """A single audit log entry."""

    timestamp: str
    operation: str
    work_item_id: str | None = None
    archived: ArchiveSummary = field(default_factory=ArchiveSummary)
    written: WriteSummary = field(default_factory=WriteSummary)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "work_item_id": self.work_item_id,
            "archived": asdict(self.archived),
            "written": asdict(self.written),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEntry:
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            work_item_id=data.get("work_item_id"),
            archived=ArchiveSummary(**data.get("archived", {})),
            written=WriteSummary(**data.get("written", {})),
            metadata=data.get("metadata", {}),
        )


def log_operation(
    log_path: Path,
    operation: str,
    *,
    work_item_id: str | None = None,
    archived: ArchiveSummary | None = None,
    written: WriteSummary | None = None,
    metadata: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> AuditEntry:
    """
    Append an operation to the audit log.

    Args:
        log_path: Audit log file (created with its directory when missing)
        operation: Operation name, e.g. "gate-signature", "gate-reset", "snapshot-write"
        work_item_id: Work item the operation applied to, if any
        archived: What a reset archived
        written: Files the operation wrote
        metadata: Additional context

    Returns:
        The appended entry
    """
    entry = AuditEntry(
        timestamp=(timestamp or datetime.now(timezone.utc)).isoformat(),
        operation=operation,
        work_item_id=work_item_id,
        archived=archived or ArchiveSummary(),
        written=written or WriteSummary(),
        metadata=metadata or {},
    )
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # JSON Lines: one object per line
    with log_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict(), sort_keys=True) + "\n")
    return entry


def read_audit_log(log_path: Path, last_n: int | None = None) -> list[AuditEntry]:
    """
    Read entries from the audit log, oldest first.

    Args:
        log_path: Audit log file
        last_n: If given, only the last N entries
    """
    if not log_path.exists():
        return []

    entries = []
    with log_path.open("r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(AuditEntry.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning("Skipping malformed audit log line %d in %s: %s", number, log_path, e)

    if last_n is not None:
        return entries[-last_n:]
    return entries


def format_audit_entry(entry: AuditEntry) -> str:
    """Human-readable rendering of one entry."""
    head = f"[{entry.timestamp}] {entry.operation}"
    if entry.work_item_id:
        head += f" {entry.work_item_id}"
    lines = [head]

    if entry.archived.events or entry.archived.refinement:
        parts = [f"{entry.archived.events} events"]
        if entry.archived.refinement:
            parts.append("refinement record")
        lines.append(f"  Archived: {', '.join(parts)}")

    if entry.written.files:
        lines.append(f"  Wrote: {', '.join(entry.written.files)} ({entry.written.bytes_written} bytes)")

    for key, value in entry.metadata.items():
        lines.append(f"  {key}: {value}")

    return "\n".join(lines)
