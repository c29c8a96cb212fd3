from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from phasegate.config import GateConfig
from phasegate.errors import InputMissing, MalformedSubDocument, UnparseablePointer, ValidationError, WhitelistViolation
from phasegate.ledger import GateLedger
from phasegate.ledger.events import PREPARE, REFINEMENT, SIGNATURE, create_event
from phasegate.snapshot.builder import (
    SNAPSHOT_SCHEMA_VERSION,
    SnapshotBuilder,
    render_snapshot,
    validate_snapshot,
    validate_snapshot_text,
)
from phasegate.snapshot.parsers import parse_task_board, parse_traceability
from phasegate.snapshot.reader import WhitelistReader, normalize_rel_path, resolve_inputs, resolve_pointer

T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

TASK_BOARD = """\
# Task Board

- **[WP-9]** - [READY] Wire the banner
- **[WP-2]** - [DONE] Rename greeting
- **[WP-2]** - [BLOCKED] Old entry
Notes are ignored.
"""

TRACEABILITY = """\
| Base WP ID | Active Packet | Notes |
|------------|---------------|-------|
| `WP-9` | `.gov/packets/WP-9-v2.md` | second revision |
| WP-2 | .gov/packets/WP-2.md | |
"""

SIGNATURES = """\
| Signature | Actor | Consumed | Purpose |
|-----------|-------|----------|---------|
| bob191020260900 | bob | 2026-10-19 09:00 UTC | Refinement approval for WP-9 |
| alice191020260800 | alice | 2026-10-19 08:00 UTC | Refinement approval for WP-2 |
"""


@pytest.fixture
def gov(repo: Path) -> GateConfig:
    """A repository with every whitelisted governance document and two ledgers."""
    state = repo / ".gov"
    (state / "POLICY_CURRENT.md").write_text("Current policy: **docs/POLICY_v3.md**\n", encoding="utf-8")
    (repo / "docs").mkdir()
    (repo / "docs" / "POLICY_v3.md").write_text("# Policy v3\n\nAll changes are gated.\n", encoding="utf-8")
    (state / "TASK_BOARD.md").write_text(TASK_BOARD, encoding="utf-8")
    (state / "TRACEABILITY.md").write_text(TRACEABILITY, encoding="utf-8")
    (state / "SIGNATURE_AUDIT.md").write_text(SIGNATURES, encoding="utf-8")

    config = GateConfig(root=repo)
    ledger = GateLedger(config.ledger_dir, config.legacy_ledger_path)
    ledger.append("WP-9", create_event(REFINEMENT, "WP-9", timestamp=T0))
    ledger.append(
        "WP-9",
        create_event(SIGNATURE, "WP-9", payload={"signature": "bob191020260900"}, timestamp=T0 + timedelta(minutes=1)),
    )
    ledger.append(
        "WP-9", create_event(PREPARE, "WP-9", inferred=True, timestamp=T0 + timedelta(minutes=2))
    )
    ledger.append("WP-2", create_event(REFINEMENT, "WP-2", timestamp=T0 - timedelta(hours=1)))
    return config


def test_builds_are_byte_identical(gov: GateConfig) -> None:
    builder = SnapshotBuilder(gov)
    assert builder.render() == builder.render()
    assert builder.self_check() == builder.render()


def test_snapshot_content(gov: GateConfig) -> None:
    snapshot = SnapshotBuilder(gov).build()

    assert snapshot["schema_version"] == SNAPSHOT_SCHEMA_VERSION
    assert snapshot["policy"]["target"] == "docs/POLICY_v3.md"
    assert snapshot["git"] == {}
    assert [i["path"] for i in snapshot["inputs"]] == [
        ".gov/POLICY_CURRENT.md",
        ".gov/SIGNATURE_AUDIT.md",
        ".gov/TASK_BOARD.md",
        ".gov/TRACEABILITY.md",
        ".gov/gates/WP-2.json",
        ".gov/gates/WP-9.json",
        "docs/POLICY_v3.md",
    ]
    assert snapshot["task_board"]["entries"] == [
        {"wp_id": "WP-2", "status_token": "BLOCKED"},
        {"wp_id": "WP-2", "status_token": "DONE"},
        {"wp_id": "WP-9", "status_token": "READY"},
    ]
    assert snapshot["traceability"]["mappings"] == [
        {"base_wp_id": "WP-2", "active_packet_path": ".gov/packets/WP-2.md"},
        {"base_wp_id": "WP-9", "active_packet_path": ".gov/packets/WP-9-v2.md"},
    ]
    assert [c["signature"] for c in snapshot["signatures"]["consumed"]] == ["alice191020260800", "bob191020260900"]
    assert snapshot["signatures"]["consumed"][0]["wp_id"] == "WP-2"

    latest = snapshot["gates"]["latest_by_type"]
    assert latest["REFINEMENT"] == {"work_item_id": "WP-9"}
    assert latest["SIGNATURE"] == {"work_item_id": "WP-9", "signature": "bob191020260900"}
    assert latest["PREPARE"] == {"work_item_id": "WP-9", "inferred": True}

    wp9 = snapshot["gates"]["work_items"][1]
    assert wp9["work_item_id"] == "WP-9"
    assert wp9["phase"] == "PREPARED"
    assert wp9["gates_passed"] == ["REFINEMENT", "SIGNATURE"]
    assert wp9["inferred_gates"] == ["PREPARE"]


def test_no_timestamps_unless_requested(gov: GateConfig) -> None:
    builder = SnapshotBuilder(gov)
    text = builder.render()
    assert "2026-10-19" not in text
    assert validate_snapshot_text(text).ok

    with_times = builder.render(include_timestamps=True)
    data = json.loads(with_times)
    assert data["gates"]["latest_by_type"]["PREPARE"]["timestamp"] == "2026-10-19T09:02:00+00:00"
    assert validate_snapshot_text(with_times).ok


def test_validator_rejects_timestamps_not_opted_into(gov: GateConfig) -> None:
    data = SnapshotBuilder(gov).build(include_timestamps=True)
    data["options"]["include_timestamps"] = False
    codes = {f.code for f in validate_snapshot(data).errors}
    assert codes == {"TIMESTAMP_FIELD", "TIMESTAMP_TEXT"}


def test_validator_rejects_unknown_version_and_unsorted(gov: GateConfig) -> None:
    data = SnapshotBuilder(gov).build()

    unknown = dict(data, schema_version="phasegate.governance_snapshot@0")
    assert [f.code for f in validate_snapshot(unknown).errors] == ["SCHEMA_VERSION"]

    data["inputs"] = list(reversed(data["inputs"]))
    assert validate_snapshot(data).has_code("NOT_SORTED")


def test_validator_rejects_unrequested_head_sha(gov: GateConfig) -> None:
    data = SnapshotBuilder(gov).build()
    data["git"] = {"head_sha": "a" * 40}
    assert validate_snapshot(data).has_code("UNREQUESTED_HEAD_SHA")


def test_non_canonical_bytes(gov: GateConfig) -> None:
    data = SnapshotBuilder(gov).build()
    assert validate_snapshot_text(json.dumps(data, sort_keys=True)).has_code("NOT_CANONICAL")
    with pytest.raises(ValidationError, match="not valid JSON"):
        validate_snapshot_text("{")


def test_write_then_check(gov: GateConfig) -> None:
    builder = SnapshotBuilder(gov)
    path, content = builder.write()

    assert path == gov.root / ".gov" / "GOVERNANCE_SNAPSHOT.json"
    assert path.read_text(encoding="utf-8") == content
    assert builder.check().ok

    board = gov.root / ".gov" / "TASK_BOARD.md"
    board.write_text(board.read_text(encoding="utf-8") + "- **[WP-10]** - [READY] New\n", encoding="utf-8")
    report = builder.check()
    assert [f.code for f in report.errors] == ["STALE_SNAPSHOT"]


def test_written_snapshot_is_not_an_input(gov: GateConfig) -> None:
    builder = SnapshotBuilder(gov)
    before = builder.render()
    builder.write()
    assert builder.render() == before


def test_legacy_ledger_is_summarized(gov: GateConfig) -> None:
    gov.legacy_ledger_path.write_text(
        json.dumps(
            {
                "gate_logs": [
                    {"wpId": "WP-1", "type": "REFINEMENT", "timestamp": "2026-10-18T10:00:00Z"},
                    {"wpId": "WP-9", "type": "REFINEMENT", "timestamp": "2026-10-18T10:00:00Z"},
                ]
            }
        ),
        encoding="utf-8",
    )
    snapshot = SnapshotBuilder(gov).build()

    assert ".gov/GATES.json" in [i["path"] for i in snapshot["inputs"]]
    items = {i["work_item_id"]: i for i in snapshot["gates"]["work_items"]}
    assert items["WP-1"]["phase"] == "REFINED"
    # A per-item ledger file wins over legacy entries.
    assert items["WP-9"]["phase"] == "PREPARED"


def test_missing_whitelisted_input(gov: GateConfig) -> None:
    (gov.root / ".gov" / "TRACEABILITY.md").unlink()
    with pytest.raises(InputMissing, match="TRACEABILITY"):
        SnapshotBuilder(gov).build()


def test_pointer_without_target(gov: GateConfig) -> None:
    (gov.root / ".gov" / "POLICY_CURRENT.md").write_text("No policy named here.\n", encoding="utf-8")
    with pytest.raises(UnparseablePointer):
        SnapshotBuilder(gov).build()


def test_pointer_to_missing_document(gov: GateConfig) -> None:
    (gov.root / ".gov" / "POLICY_CURRENT.md").write_text("Use **docs/POLICY_v4.md**\n", encoding="utf-8")
    with pytest.raises(InputMissing, match="POLICY_v4"):
        SnapshotBuilder(gov).build()


def test_malformed_ledger_file(gov: GateConfig) -> None:
    (gov.ledger_dir / "WP-3.json").write_text("[1, 2", encoding="utf-8")
    with pytest.raises(MalformedSubDocument, match="WP-3.json"):
        SnapshotBuilder(gov).build()


def test_malformed_signature_row(gov: GateConfig) -> None:
    (gov.root / ".gov" / "SIGNATURE_AUDIT.md").write_text("| carol191020261000 | carol |\n", encoding="utf-8")
    with pytest.raises(MalformedSubDocument):
        SnapshotBuilder(gov).build()


def test_reader_refuses_paths_outside_whitelist(tmp_path: Path) -> None:
    (tmp_path / "allowed.md").write_text("ok\n", encoding="utf-8")
    (tmp_path / "secret.md").write_text("no\n", encoding="utf-8")
    reader = WhitelistReader(tmp_path, ["allowed.md", "./missing.md"])

    assert reader.read_text("allowed.md") == "ok\n"
    with pytest.raises(WhitelistViolation):
        reader.read_bytes("secret.md")
    with pytest.raises(InputMissing):
        reader.read_bytes("missing.md")
    assert reader.reads() == 1


def test_normalize_rel_path() -> None:
    assert normalize_rel_path(".gov\\gates/../TASK_BOARD.md") == ".gov/TASK_BOARD.md"
    with pytest.raises(ValidationError):
        normalize_rel_path("/etc/passwd")
    with pytest.raises(ValidationError):
        normalize_rel_path("docs/../../outside.md")


def test_resolve_pointer() -> None:
    assert resolve_pointer("See **POLICY_v2.md** and **POLICY_v1.md**", r"\*\*([^*\s]+\.md)\*\*") == "POLICY_v2.md"
    with pytest.raises(UnparseablePointer):
        resolve_pointer("See **../POLICY.md**", r"\*\*([^*\s]+\.md)\*\*")


def test_document_parsers_sort() -> None:
    assert [e["wp_id"] for e in parse_task_board(TASK_BOARD)] == ["WP-2", "WP-2", "WP-9"]
    assert [m["base_wp_id"] for m in parse_traceability(TRACEABILITY)] == ["WP-2", "WP-9"]


def test_render_is_canonical() -> None:
    assert render_snapshot({"b": 1, "a": [2]}) == '{\n  "a": [\n    2\n  ],\n  "b": 1\n}\n'


def test_work_items_carry_their_own_latest_gates(gov: GateConfig) -> None:
    items = {i["work_item_id"]: i for i in SnapshotBuilder(gov).build()["gates"]["work_items"]}
    assert items["WP-2"]["latest_by_type"] == {"REFINEMENT": {"work_item_id": "WP-2"}}
    assert items["WP-9"]["latest_by_type"]["PREPARE"] == {"work_item_id": "WP-9", "inferred": True}


def test_pointer_is_read_through_the_whitelist_reader(gov: GateConfig) -> None:
    reader, target = resolve_inputs(gov)
    assert target == "docs/POLICY_v3.md"
    # Only the pointer has been read so far; its bytes are cached for the build.
    assert reader.reads() == 1
    assert ".gov/POLICY_CURRENT.md" in reader.paths
    assert "docs/POLICY_v3.md" in reader.paths


@pytest.mark.parametrize(
    "options, message",
    [
        ({"include_head_sha": False, "include_timestamps": False, "compress": True}, "unknown option 'compress'"),
        ({"include_head_sha": "yes", "include_timestamps": False}, "option include_head_sha must be true or false"),
        (["include_timestamps"], "options must be an object"),
    ],
)
def test_check_rejects_malformed_options(gov: GateConfig, options, message: str) -> None:
    builder = SnapshotBuilder(gov)
    data = builder.build()
    data["options"] = options
    builder.output_path().write_text(render_snapshot(data), encoding="utf-8")

    report = builder.check()

    assert [f.code for f in report.errors] == ["SCHEMA_INVALID"]
    assert report.errors[0].message == message


def test_undecodable_input(gov: GateConfig) -> None:
    (gov.root / ".gov" / "TASK_BOARD.md").write_bytes(b"- **[WP-9]** - [READY] caf\xe9\n")
    with pytest.raises(MalformedSubDocument, match="not valid UTF-8: .gov/TASK_BOARD.md"):
        SnapshotBuilder(gov).build()


def test_undecodable_written_snapshot(gov: GateConfig) -> None:
    builder = SnapshotBuilder(gov)
    builder.output_path().write_bytes(b"\xff{}")
    with pytest.raises(MalformedSubDocument, match="snapshot is not valid UTF-8"):
        builder.check()
