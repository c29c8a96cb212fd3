from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from phasegate.audit_log import ArchiveSummary, WriteSummary, format_audit_entry, log_operation, read_audit_log


def test_log_and_read_round_trip(tmp_path: Path) -> None:
    log_path = tmp_path / "state" / "audit.log"
    when = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    log_operation(
        log_path,
        "gate-reset",
        work_item_id="WP-42",
        archived=ArchiveSummary(events=3, refinement=True),
        written=WriteSummary(files=[".gov/gates/WP-42.json"], bytes_written=512),
        metadata={"reason": "manual_reset"},
        timestamp=when,
    )
    log_operation(log_path, "snapshot-write", timestamp=when)

    entries = read_audit_log(log_path)
    assert [e.operation for e in entries] == ["gate-reset", "snapshot-write"]
    assert entries[0].archived == ArchiveSummary(events=3, refinement=True)
    assert entries[0].timestamp == "2026-10-19T12:00:00+00:00"
    assert [e.operation for e in read_audit_log(log_path, last_n=1)] == ["snapshot-write"]

    text = format_audit_entry(entries[0])
    assert text.splitlines()[0] == "[2026-10-19T12:00:00+00:00] gate-reset WP-42"
    assert "  Archived: 3 events, refinement record" in text
    assert "  Wrote: .gov/gates/WP-42.json (512 bytes)" in text
    assert "  reason: manual_reset" in text


def test_malformed_lines_are_skipped(tmp_path: Path, caplog) -> None:
    log_path = tmp_path / "audit.log"
    log_path.write_text(
        "not json\n\n" + json.dumps({"timestamp": "t", "operation": "gate-commit"}) + "\n",
        encoding="utf-8",
    )

    entries = read_audit_log(log_path)

    assert [e.operation for e in entries] == ["gate-commit"]
    assert "Skipping malformed audit log line 1" in caplog.text


def test_missing_log_is_empty(tmp_path: Path) -> None:
    assert read_audit_log(tmp_path / "absent.log") == []
