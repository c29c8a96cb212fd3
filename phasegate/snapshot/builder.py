"""
Deterministic governance snapshot.

The snapshot is a projection: re-derivable at any time from the whitelisted
inputs, never a source of truth. Identical inputs produce identical bytes:

- every collection is sorted by an explicit key;
- no wall-clock value is read; ledger timestamps and the HEAD commit appear
  only when explicitly requested;
- output is ``json.dumps(snapshot, indent=2, sort_keys=True) + "\\n"``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from ..config import GateConfig
from ..errors import IntegrityError, InputMissing, MalformedSubDocument, ValidationError
from ..ledger import GATE_ORDER, GateEvent, WorkItemLog, project_status
from ..ledger.events import SIGNATURE
from ..report import CheckReport
from ..vcs import GitRepo
from .parsers import (
    parse_consumed_signatures,
    parse_ledger_file,
    parse_legacy_ledger,
    parse_task_board,
    parse_traceability,
)
from .reader import WhitelistReader, normalize_rel_path, resolve_inputs

logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA_VERSION = "phasegate.governance_snapshot@1"

FORBIDDEN_KEYS = re.compile(r"^(timestamp|started|completed|recorded_at)$", re.IGNORECASE)
TIMESTAMP_TEXT = (
    re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}"),
    re.compile(r"\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}"),
)
HEX_SHA256 = re.compile(r"^[0-9a-f]{64}$")
HEX_SHA1 = re.compile(r"^[0-9a-f]{40}$")
SNAPSHOT_OPTIONS = ("include_head_sha", "include_timestamps")


def render_snapshot(snapshot: dict[str, Any]) -> str:
    return json.dumps(snapshot, indent=2, sort_keys=True) + "\n"


class SnapshotBuilder:
    """
    Builds the governance snapshot for one repository.

    Args:
        config: Gate configuration (input locations, pointer rule, output path)
        git: Only consulted when the HEAD commit is requested
    """

    def __init__(self, config: GateConfig, git: GitRepo | None = None):
        self.config = config
        self.git = git

    def build(self, *, include_head_sha: bool = False, include_timestamps: bool = False) -> dict[str, Any]:
        reader, target = resolve_inputs(self.config)
        inputs = reader.paths
        policy = self.config.snapshot

        logs = self._ledger_logs(reader, inputs)

        snapshot: dict[str, Any] = {
            "schema_version": SNAPSHOT_SCHEMA_VERSION,
            "options": {
                "include_head_sha": include_head_sha,
                "include_timestamps": include_timestamps,
            },
            "policy": {"target": target, "sha1": reader.sha1(target)},
            "git": self._git_section(include_head_sha),
            "inputs": [{"path": rel, "sha256": reader.sha256(rel)} for rel in inputs],
            "task_board": {"entries": []},
            "traceability": {"mappings": []},
            "signatures": {"consumed": []},
            "gates": {
                "latest_by_type": _latest_by_type(logs, include_timestamps),
                "work_items": [_work_item_summary(log, include_timestamps) for log in logs],
            },
        }

        for rel in (normalize_rel_path(p) for p in policy.whitelist):
            text = reader.read_text(rel)
            name = Path(rel).name.upper()
            if "TASK_BOARD" in name:
                snapshot["task_board"]["entries"] = parse_task_board(text)
            elif "TRACEABILITY" in name:
                snapshot["traceability"]["mappings"] = parse_traceability(text)
            elif "SIGNATURE" in name:
                snapshot["signatures"]["consumed"] = parse_consumed_signatures(text)

        logger.debug("Snapshot built from %d input(s), %d read(s)", len(inputs), reader.reads())
        return snapshot

    def render(self, **options: bool) -> str:
        return render_snapshot(self.build(**options))

    def self_check(self, **options: bool) -> str:
        """Build twice and byte-compare; returns the rendered snapshot."""
        first = self.render(**options)
        second = self.render(**options)
        if first != second:
            raise IntegrityError("snapshot is not deterministic: two builds differ", code="NOT_DETERMINISTIC")
        return first

    def output_path(self, out: str | None = None) -> Path:
        return self.config.root / normalize_rel_path(out or self.config.snapshot.output)

    def write(self, out: str | None = None, **options: bool) -> tuple[Path, str]:
        content = self.self_check(**options)
        path = self.output_path(out)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info("Wrote snapshot %s", path)
        return path, content

    def check(self, out: str | None = None) -> CheckReport:
        """Validate a written snapshot and confirm it matches a fresh build with the same options."""
        path = self.output_path(out)
        if not path.is_file():
            raise InputMissing(f"snapshot not found: {path}")
        written = _read_snapshot_text(path)
        report = validate_snapshot_text(written)
        if not report.ok:
            return report

        data = json.loads(written)
        options = data.get("options", {})
        fresh = self.self_check(**options)
        if fresh != written:
            report.error("STALE_SNAPSHOT", "written snapshot differs from a fresh build of the same inputs", str(path))
        return report

    # ------------------------------------------------------------------

    def _git_section(self, include_head_sha: bool) -> dict[str, str]:
        if not include_head_sha:
            return {}
        if self.git is None:
            logger.warning("HEAD commit requested but no git repository is available")
            return {}
        head = self.git.rev_parse("HEAD")
        if head is None:
            logger.warning("HEAD commit requested but could not be resolved")
            return {}
        return {"head_sha": head.lower()}

    def _ledger_logs(self, reader: WhitelistReader, inputs: list[str]) -> list[WorkItemLog]:
        ledger_prefix = self.config.ledger_dir.relative_to(self.config.root).as_posix() + "/"
        logs: dict[str, WorkItemLog] = {}
        for rel in inputs:
            if rel.startswith(ledger_prefix) and rel.lower().endswith(".json"):
                log = parse_ledger_file(reader.read_text(rel), rel)
                logs[log.work_item_id] = log

        legacy_rel = self.config.legacy_ledger_path.relative_to(self.config.root).as_posix()
        if legacy_rel in inputs:
            for work_item_id, events in parse_legacy_ledger(reader.read_text(legacy_rel), legacy_rel).items():
                if work_item_id not in logs:
                    logs[work_item_id] = WorkItemLog(work_item_id=work_item_id, events=events, source="legacy")
        return [logs[k] for k in sorted(logs)]


def _latest_by_type(logs: list[WorkItemLog], include_timestamps: bool) -> dict[str, dict[str, Any]]:
    """Most recent event of each gate type across all work items."""
    latest: dict[str, GateEvent] = {}
    for log in logs:
        for gate, event in log.latest_by_type().items():
            current = latest.get(gate)
            if current is None or (event.timestamp, event.work_item_id) > (current.timestamp, current.work_item_id):
                latest[gate] = event

    return {gate: _event_summary(latest[gate], include_timestamps) for gate in GATE_ORDER if gate in latest}


def _event_summary(event: GateEvent, include_timestamps: bool) -> dict[str, Any]:
    item: dict[str, Any] = {"work_item_id": event.work_item_id}
    if event.event_type == SIGNATURE and event.payload.get("signature"):
        item["signature"] = str(event.payload["signature"])
    if event.verdict:
        item["verdict"] = event.verdict
    if event.inferred:
        item["inferred"] = True
    if include_timestamps:
        item["timestamp"] = event.timestamp.isoformat()
    return item


def _work_item_summary(log: WorkItemLog, include_timestamps: bool) -> dict[str, Any]:
    status = project_status(log)
    confirmed = sorted({e.event_type for e in log.events if not e.inferred})
    summary: dict[str, Any] = {
        "work_item_id": log.work_item_id,
        "phase": status.phase,
        "gates_passed": confirmed,
        "inferred_gates": status.inferred_gates,
        "archived_sessions": len(log.archived_sessions),
        "latest_by_type": {
            gate: _event_summary(event, include_timestamps) for gate, event in log.latest_by_type().items()
        },
    }
    if status.verdict:
        summary["verdict"] = status.verdict
    if status.review_status:
        summary["review_status"] = status.review_status
    return summary


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


def _check_sorted(report: CheckReport, items: list[Any], key, label: str) -> None:
    try:
        keys = [key(item) for item in items]
    except (KeyError, TypeError):
        report.error("SCHEMA_INVALID", f"{label} has entries without the sort key")
        return
    for index in range(1, len(keys)):
        if keys[index - 1] > keys[index]:
            report.error("NOT_SORTED", f"{label} not sorted ascending at index {index}")
            return


def _walk_keys(value: Any):
    if isinstance(value, dict):
        for k, v in value.items():
            yield k
            yield from _walk_keys(v)
    elif isinstance(value, list):
        for item in value:
            yield from _walk_keys(item)


def _list_at(report: CheckReport, snapshot: dict[str, Any], section: str, field: str) -> list[Any]:
    container = snapshot.get(section)
    if not isinstance(container, dict) or not isinstance(container.get(field), list):
        report.error("SCHEMA_INVALID", f"{section}.{field} must be a list")
        return []
    return container[field]


def validate_snapshot(snapshot: Any, *, text: str | None = None) -> CheckReport:
    """
    Structural and determinism checks on a parsed snapshot.

    Rejects unknown schema versions, unsorted collections, a HEAD commit or
    timestamp fields that were not opted into, and timestamp-like text.
    """
    report = CheckReport(gate="snapshot")
    if not isinstance(snapshot, dict):
        report.error("SCHEMA_INVALID", "snapshot must be a JSON object")
        return report
    version = snapshot.get("schema_version")
    if version != SNAPSHOT_SCHEMA_VERSION:
        report.error("SCHEMA_VERSION", f"unknown schema_version {version!r} (expected {SNAPSHOT_SCHEMA_VERSION})")
        return report

    options = snapshot.get("options", {})
    if not isinstance(options, dict):
        report.error("SCHEMA_INVALID", "options must be an object")
        options = {}
    for key in sorted(options, key=str):
        if key not in SNAPSHOT_OPTIONS:
            report.error("SCHEMA_INVALID", f"unknown option {key!r}")
        elif not isinstance(options[key], bool):
            report.error("SCHEMA_INVALID", f"option {key} must be true or false")
    include_timestamps = options.get("include_timestamps") is True

    policy = snapshot.get("policy")
    if not isinstance(policy, dict) or not isinstance(policy.get("target"), str) or not policy["target"].strip():
        report.error("SCHEMA_INVALID", "policy.target must be a non-empty string")
    elif not HEX_SHA1.match(str(policy.get("sha1", ""))):
        report.error("SCHEMA_INVALID", "policy.sha1 must be a 40-char hex digest")

    git = snapshot.get("git")
    if not isinstance(git, dict):
        report.error("SCHEMA_INVALID", "git must be an object")
    elif "head_sha" in git and not options.get("include_head_sha"):
        report.error("UNREQUESTED_HEAD_SHA", "git.head_sha present without include_head_sha")

    inputs = snapshot.get("inputs")
    if not isinstance(inputs, list):
        report.error("SCHEMA_INVALID", "inputs must be a list")
        inputs = []
    for index, item in enumerate(inputs):
        if not isinstance(item, dict) or not isinstance(item.get("path"), str):
            report.error("SCHEMA_INVALID", f"inputs[{index}].path must be a string")
        elif not HEX_SHA256.match(str(item.get("sha256", ""))):
            report.error("SCHEMA_INVALID", f"inputs[{index}].sha256 must be a 64-char hex digest")
    _check_sorted(report, inputs, lambda x: x["path"], "inputs")

    _check_sorted(
        report,
        _list_at(report, snapshot, "task_board", "entries"),
        lambda x: (x["wp_id"], x["status_token"]),
        "task_board.entries",
    )
    _check_sorted(
        report,
        _list_at(report, snapshot, "traceability", "mappings"),
        lambda x: (x["base_wp_id"], x["active_packet_path"]),
        "traceability.mappings",
    )
    _check_sorted(
        report,
        _list_at(report, snapshot, "signatures", "consumed"),
        lambda x: (x["signature"], x["purpose"]),
        "signatures.consumed",
    )
    work_items = _list_at(report, snapshot, "gates", "work_items")
    _check_sorted(report, work_items, lambda x: x["work_item_id"], "gates.work_items")
    for item in work_items:
        if not isinstance(item, dict):
            continue
        for field in ("gates_passed", "inferred_gates"):
            values = item.get(field, [])
            if not isinstance(values, list) or values != sorted(set(values)):
                report.error("NOT_SORTED", f"gates.work_items[{item.get('work_item_id')}].{field} must be sorted and unique")

    if not include_timestamps:
        for key in _walk_keys(snapshot):
            if FORBIDDEN_KEYS.match(str(key)):
                report.error("TIMESTAMP_FIELD", f"forbidden key present: {key}")
        body = text if text is not None else render_snapshot(snapshot)
        for pattern in TIMESTAMP_TEXT:
            if pattern.search(body):
                report.error("TIMESTAMP_TEXT", f"timestamp-like text present (pattern {pattern.pattern})")
    return report


def validate_snapshot_text(text: str) -> CheckReport:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError("snapshot is not valid JSON", details=[str(e)]) from e
    report = validate_snapshot(data, text=text)
    if report.ok and render_snapshot(data) != text:
        report.error("NOT_CANONICAL", "snapshot bytes are not in canonical form")
    return report


def load_snapshot(path: Path) -> dict[str, Any]:
    """Read and validate a snapshot file; raises on any finding."""
    if not path.is_file():
        raise InputMissing(f"snapshot not found: {path}")
    text = _read_snapshot_text(path)
    validate_snapshot_text(text).raise_for_errors()
    return json.loads(text)


def _read_snapshot_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedSubDocument(f"snapshot is not valid UTF-8: {path}", details=[str(e)]) from e
