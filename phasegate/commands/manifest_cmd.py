"""Manifest verification and digest helper commands."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..config import GateConfig
from ..digest import is_binary, manifest_digest
from ..errors import GateError
from ..gates.checks import verify_work_packet
from ..vcs import GitRepo
from .common import print_findings, print_gate_error, print_summary


def run_verify_manifest(
    config: GateConfig,
    work_item_id: str,
    *,
    range_spec: str | None = None,
    rev: str | None = None,
    staged: bool = False,
    worktree: bool = False,
    output_json: bool = False,
) -> int:
    err = Console(stderr=True)
    git = GitRepo(config.root)
    try:
        report = verify_work_packet(
            config,
            git,
            work_item_id,
            range_spec=range_spec,
            rev=rev,
            staged=staged,
            worktree=worktree,
        )
    except GateError as e:
        print_gate_error(err, e)
        return 1

    if output_json:
        print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
        return 0 if report.ok else 1

    console = Console()
    if report.comparison is not None:
        console.print(f"Comparing {report.comparison.describe()}", style="dim")

    table = Table(title=f"Edit manifest: {work_item_id}")
    table.add_column("file", style="cyan")
    table.add_column("result")
    table.add_column("hunks", justify="right")
    table.add_column("delta", justify="right")
    table.add_column("inferred gates", style="yellow")
    for entry in report.entries:
        table.add_row(
            entry.target_path,
            "[green]PASS[/green]" if entry.passed else "[red]FAIL[/red]",
            str(entry.hunks),
            "" if entry.actual_delta is None else f"{entry.actual_delta:+d}",
            ", ".join(sorted(entry.inferred_gates)),
        )
    console.print(table)

    print_findings(err, report)
    print_summary(err, report)
    return 0 if report.ok else 1


def run_digest(path: Path) -> int:
    """Print the manifest digest of a file (LF-normalized sha1, raw for binary files)."""
    err = Console(stderr=True)
    if not path.is_file():
        err.print(f"File not found: {path}", style="bold red")
        return 1
    data = path.read_bytes()
    console = Console()
    console.print(manifest_digest(data), markup=False, highlight=False)
    if not is_binary(data):
        err.print(f"{len(data.splitlines())} line(s)", style="dim")
    return 0
