"""Parsers for the governance documents a snapshot summarizes."""

from __future__ import annotations

import json
import re
from typing import Any

from ..errors import MalformedSubDocument, ValidationError
from ..gates.signatures import parse_signature_table
from ..ledger import GateEvent, WorkItemLog

TASK_BOARD_ENTRY = re.compile(r"^\s*-\s+\*\*\[([^\]]+)\]\*\*\s+-\s+\[([^\]]+)\]")


def parse_task_board(text: str) -> list[dict[str, str]]:
    """``- **[WP-1]** - [READY] ...`` lines, sorted by (wp_id, status_token)."""
    entries = []
    for line in text.splitlines():
        m = TASK_BOARD_ENTRY.match(line)
        if m is None:
            continue
        wp_id, token = m.group(1).strip(), m.group(2).strip()
        if wp_id and token:
            entries.append({"wp_id": wp_id, "status_token": token})
    entries.sort(key=lambda e: (e["wp_id"], e["status_token"]))
    return entries


def parse_traceability(text: str) -> list[dict[str, str]]:
    """Rows of the traceability table mapping a base work item to its active packet."""
    mappings = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line.startswith("|"):
            continue
        if "Base WP ID" in line or "---" in line:
            continue
        cols = [c.strip() for c in line.strip("|").split("|")]
        if len(cols) < 2:
            continue
        base, packet = cols[0].strip("`"), cols[1].strip("`")
        if base and packet:
            mappings.append({"base_wp_id": base, "active_packet_path": packet})
    mappings.sort(key=lambda m: (m["base_wp_id"], m["active_packet_path"]))
    return mappings


def parse_consumed_signatures(text: str) -> list[dict[str, str]]:
    consumed = []
    for row in parse_signature_table(text):
        item = {"signature": row.signature, "purpose": row.purpose}
        if row.work_item_id:
            item["wp_id"] = row.work_item_id
        consumed.append(item)
    consumed.sort(key=lambda c: (c["signature"], c["purpose"]))
    return consumed


def _load_json(text: str, rel_path: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedSubDocument(f"{rel_path} is not valid JSON", details=[str(e)]) from e


def parse_ledger_file(text: str, rel_path: str) -> WorkItemLog:
    data = _load_json(text, rel_path)
    if not isinstance(data, dict):
        raise MalformedSubDocument(f"{rel_path} must contain a JSON object")
    try:
        return WorkItemLog.from_dict(data)
    except ValidationError as e:
        raise MalformedSubDocument(f"{rel_path}: {e.message}", details=e.details) from e


def parse_legacy_ledger(text: str, rel_path: str) -> dict[str, list[GateEvent]]:
    """Legacy consolidated ledger grouped by work item, in file order."""
    data = _load_json(text, rel_path)
    logs = data.get("gate_logs", []) if isinstance(data, dict) else None
    if not isinstance(logs, list):
        raise MalformedSubDocument(f"{rel_path}: gate_logs must be a list")
    grouped: dict[str, list[GateEvent]] = {}
    for entry in logs:
        if not isinstance(entry, dict) or not entry.get("wpId"):
            continue
        try:
            event = GateEvent.from_legacy(entry)
        except ValidationError as e:
            raise MalformedSubDocument(f"{rel_path}: {e.message}") from e
        grouped.setdefault(event.work_item_id, []).append(event)
    return grouped
