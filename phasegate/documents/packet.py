"""
Work packets: the descriptive document for an implemented work item.

A packet declares which paths the work may touch, optional waivers, and one
manifest block per touched file inside its ``## VALIDATION`` section.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import ValidationError
from ..manifest.model import EditManifestEntry
from .fields import LabeledDocument, load_document, parse_document, strip_code

CHECKBOX_PATTERN = re.compile(r"^\s*[-*]\s+\[(?P<mark>[ xX])\]\s+(?P<gate>[A-Za-z0-9_.-]+)")
TARGET_LABEL = "TARGET_FILE"


@dataclass(frozen=True)
class WorkPacket:
    work_item_id: str | None
    in_scope_paths: tuple[str, ...]
    merge_base_sha: str | None
    waivers: tuple[str, ...]
    manifests: tuple[EditManifestEntry, ...]
    path: Path | None = None

    def waiver_matching(self, markers: tuple[str, ...]) -> str | None:
        """First waiver whose text mentions one of ``markers`` (case-insensitive)."""
        for waiver in self.waivers:
            lowered = waiver.lower()
            if any(m.lower() in lowered for m in markers):
                return waiver
        return None


def _parse_waivers(doc: LabeledDocument) -> tuple[str, ...]:
    section = doc.section("WAIVERS GRANTED")
    if not section:
        return ()
    waivers: list[str] = []
    for line in section.splitlines():
        m = re.match(r"^\s*[-*]\s+(.+?)\s*$", line)
        if not m:
            continue
        text = m.group(1)
        if text.strip().upper() in {"NONE", "N/A"}:
            continue
        waivers.append(text)
    return tuple(waivers)


def _parse_int(value: str, what: str, label: str) -> int:
    try:
        return int(strip_code(value))
    except ValueError:
        raise ValidationError(f"{label}: {what} must be an integer (got {value!r})") from None


def _path_item(item: str) -> str:
    """``src/a.py`` or `` `src/a.py` (note) `` -> ``src/a.py``."""
    m = re.match(r"^`([^`]+)`", item.strip())
    if m:
        return m.group(1).strip()
    return item.strip().split()[0] if item.strip() else ""


def _split_blocks(section: str) -> list[list[str]]:
    """Split a VALIDATION section into blocks, each starting at a Target File field."""
    blocks: list[list[str]] = []
    current: list[str] | None = None
    for line in section.splitlines():
        if re.match(r"^\s*[-*]\s+\*\*Target File\*\*\s*:", line, re.IGNORECASE) or re.match(
            r"^\s*[-*]\s+TARGET_FILE\s*:", line
        ):
            current = [line]
            blocks.append(current)
        elif current is not None:
            current.append(line)
    return blocks


def _parse_manifest_block(lines: list[str], index: int) -> EditManifestEntry:
    label = f"manifest[{index}]"
    block = parse_document("\n".join(lines))

    def required(name: str) -> str:
        value = block.get(name)
        if value is None or not strip_code(value):
            raise ValidationError(f"{label}: missing field {name}")
        return strip_code(value)

    target = required(TARGET_LABEL)
    label = f"manifest[{index}] {target}"

    checklist: dict[str, bool] = {}
    for line in lines:
        m = CHECKBOX_PATTERN.match(line)
        if m:
            checklist[m.group("gate")] = m.group("mark").lower() == "x"

    return EditManifestEntry(
        target_path=target.replace("\\", "/"),
        start=_parse_int(required("START"), "Start", label),
        end=_parse_int(required("END"), "End", label),
        pre_hash=required("PRE_SHA1").lower(),
        post_hash=required("POST_SHA1").lower(),
        line_delta=_parse_int(required("LINE_DELTA"), "Line Delta", label),
        checklist=checklist,
        label=label,
    )


def parse_packet(doc: LabeledDocument) -> WorkPacket:
    section = doc.section("VALIDATION") or ""
    manifests = tuple(
        _parse_manifest_block(lines, i) for i, lines in enumerate(_split_blocks(section), start=1)
    )
    merge_base = strip_code(doc.get("MERGE_BASE_SHA") or "") or None
    work_item_id = strip_code(doc.get("WP_ID") or doc.get("WORK_ITEM_ID") or "") or None
    return WorkPacket(
        work_item_id=work_item_id,
        in_scope_paths=tuple(
            _path_item(p).replace("\\", "/") for p in doc.list_after("IN_SCOPE_PATHS") if _path_item(p)
        ),
        merge_base_sha=merge_base,
        waivers=_parse_waivers(doc),
        manifests=manifests,
        path=doc.path,
    )


def load_packet(path: Path) -> WorkPacket:
    return parse_packet(load_document(path))
