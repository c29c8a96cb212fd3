from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from phasegate.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_repo(repo: Path) -> Path:
    (repo / ".phasegate.yml").write_text("corpus_search: off\ntransition_checks: {}\n", encoding="utf-8")
    return repo


def _invoke(runner: CliRunner, repo: Path, *args: str):
    return runner.invoke(cli, ["--repo", str(repo), *args])


def test_status_of_new_work_item(runner: CliRunner, cli_repo: Path) -> None:
    result = _invoke(runner, cli_repo, "status", "WP-42")
    assert result.exit_code == 0, result.output
    assert "WP-42: NEW (next: refine)" in result.output


def test_refine_then_immediate_sign_is_rejected(runner: CliRunner, cli_repo: Path, make_refinement) -> None:
    make_refinement("WP-42")

    result = _invoke(runner, cli_repo, "refine", "WP-42", ".gov/refinements/WP-42.md")
    assert result.exit_code == 0, result.output
    assert (cli_repo / ".gov" / "gates" / "WP-42.json").is_file()

    result = _invoke(runner, cli_repo, "sign", "WP-42", "alice191020261200")
    assert result.exit_code == 1
    assert "MOMENTUM_VIOLATION" in result.output
    assert not (cli_repo / ".gov" / "SIGNATURE_AUDIT.md").exists()

    result = _invoke(runner, cli_repo, "status", "WP-42", "--json")
    assert result.exit_code == 0
    status = json.loads(result.stdout)
    assert status["phase"] == "REFINED"
    assert [e["type"] for e in status["events"]] == ["REFINEMENT"]


def test_refine_writes_audit_log(runner: CliRunner, cli_repo: Path, make_refinement) -> None:
    make_refinement("WP-42")
    _invoke(runner, cli_repo, "refine", "WP-42", ".gov/refinements/WP-42.md")

    result = _invoke(runner, cli_repo, "log", "--wp", "WP-42")
    assert result.exit_code == 0
    assert "gate-refinement WP-42" in result.output
    assert "artifact_ref: .gov/refinements/WP-42.md" in result.output


def test_invalid_refinement_lists_problems(runner: CliRunner, cli_repo: Path, make_refinement) -> None:
    make_refinement("WP-42", verdict="FAIL", enrichment="NO")
    result = _invoke(runner, cli_repo, "refine", "WP-42", ".gov/refinements/WP-42.md")
    assert result.exit_code == 1
    assert "CLEARLY_COVERS_VERDICT=FAIL requires ENRICHMENT_NEEDED=YES" in result.output


def test_reset_requires_confirm(runner: CliRunner, cli_repo: Path, make_refinement) -> None:
    make_refinement("WP-42")
    _invoke(runner, cli_repo, "refine", "WP-42", ".gov/refinements/WP-42.md")

    result = _invoke(runner, cli_repo, "reset", "WP-42")
    assert result.exit_code == 1
    assert "confirmation" in result.output

    result = _invoke(runner, cli_repo, "reset", "WP-42", "--confirm")
    assert result.exit_code == 0, result.output
    status = json.loads(_invoke(runner, cli_repo, "status", "WP-42", "--json").stdout)
    assert status["phase"] == "NEW"
    assert status["archived_sessions"] == 1


def test_digest_normalizes_crlf(runner: CliRunner, tmp_path: Path) -> None:
    path = tmp_path / "crlf.txt"
    path.write_bytes(b"one\r\ntwo\r\n")
    result = runner.invoke(cli, ["--repo", str(tmp_path), "digest", str(path)])
    assert result.exit_code == 0
    assert hashlib.sha1(b"one\ntwo\n").hexdigest() in result.output


def test_verify_manifest_options_are_exclusive(runner: CliRunner, cli_repo: Path) -> None:
    result = _invoke(runner, cli_repo, "verify-manifest", "WP-42", "--staged", "--worktree")
    assert result.exit_code == 2
    assert "mutually exclusive" in result.output


def test_unknown_config_key_is_reported(runner: CliRunner, repo: Path) -> None:
    (repo / ".phasegate.yml").write_text("min_intervall_seconds: 5\n", encoding="utf-8")
    result = _invoke(runner, repo, "status", "WP-42")
    assert result.exit_code == 1
    assert "unknown config key" in result.output


def test_snapshot_dry_run_without_inputs(runner: CliRunner, cli_repo: Path) -> None:
    result = _invoke(runner, cli_repo, "snapshot", "build", "--dry-run")
    assert result.exit_code == 1
    assert "INPUT_MISSING" in result.output


def test_refine_with_undecodable_artifact(runner: CliRunner, cli_repo: Path) -> None:
    (cli_repo / ".gov" / "refinements" / "WP-42.md").write_bytes(b"\xff\xfe- WP_ID: WP-42\n")
    result = _invoke(runner, cli_repo, "refine", "WP-42", ".gov/refinements/WP-42.md")
    assert result.exit_code == 1
    assert "validation error [MALFORMED_SUBDOCUMENT]" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)


SIX_LINES = "".join(f"line {n}\n" for n in range(1, 7))
BANNER = SIX_LINES.replace("line 2\n", "banner one\nbanner two\nbanner three\n")


def test_fail_verdict_is_recorded_over_a_failing_manifest(
    runner: CliRunner, git_state_repo, make_refinement, make_packet
) -> None:
    root = git_state_repo.root
    git_state_repo.write("src/greeting.txt", SIX_LINES)
    git_state_repo.commit("initial")
    git_state_repo.write("src/greeting.txt", BANNER)
    git_state_repo.commit("banner")

    (root / ".phasegate.yml").write_text("corpus_search: off\nmin_interval_seconds: 0\n", encoding="utf-8")
    make_refinement("WP-9")
    # The window names lines 5-6; the edit is at line 2.
    make_packet(
        "WP-9",
        "\n".join(
            [
                "- WP_ID: WP-9",
                "- IN_SCOPE_PATHS:",
                "  - `src/greeting.txt`",
                "",
                "## VALIDATION",
                "- **Target File**: `src/greeting.txt`",
                "- **Start**: 5",
                "- **End**: 6",
                f"- **Pre SHA1**: `{hashlib.sha1(SIX_LINES.encode()).hexdigest()}`",
                f"- **Post SHA1**: `{hashlib.sha1(BANNER.encode()).hexdigest()}`",
                "- **Line Delta**: +2",
                "- **Gate Verdicts**:",
                "  - [x] tests_executed",
                "  - [x] compilation_clean",
                "",
            ]
        ),
    )

    for args in (
        ("refine", "WP-9", ".gov/refinements/WP-9.md"),
        ("sign", "WP-9", "alice191020261200"),
        ("prepare", "WP-9"),
    ):
        result = _invoke(runner, root, *args)
        assert result.exit_code == 0, result.output

    result = _invoke(runner, root, "append", "WP-9", "PASS")
    assert result.exit_code == 1
    assert "integrity error [RAILS_VIOLATION]" in result.output

    result = _invoke(runner, root, "append", "WP-9", "FAIL")
    assert result.exit_code == 0, result.output

    status = json.loads(_invoke(runner, root, "status", "WP-9", "--json").stdout)
    assert status["phase"] == "APPENDED"
    assert status["verdict"] == "FAIL"
    assert status["events"][-1]["payload"] == {"verdict": "FAIL", "checks": {"manifest": "FAIL"}}
