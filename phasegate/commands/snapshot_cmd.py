"""Governance snapshot commands."""

from __future__ import annotations

import json

from rich.console import Console

from ..audit_log import WriteSummary, log_operation
from ..config import GateConfig
from ..errors import GateError
from ..snapshot import SnapshotBuilder
from ..vcs import GitRepo
from .common import print_findings, print_gate_error, print_summary


def run_snapshot_build(
    config: GateConfig,
    *,
    out: str | None = None,
    include_head_sha: bool = False,
    include_timestamps: bool = False,
    dry_run: bool = False,
) -> int:
    err = Console(stderr=True)
    builder = SnapshotBuilder(config, GitRepo(config.root))
    options = {"include_head_sha": include_head_sha, "include_timestamps": include_timestamps}
    try:
        if dry_run:
            print(builder.self_check(**options), end="")
            return 0
        path, content = builder.write(out, **options)
    except GateError as e:
        print_gate_error(err, e)
        return 1

    rel = path.relative_to(config.root).as_posix()
    log_operation(
        config.audit_log_path,
        "snapshot-write",
        written=WriteSummary(files=[rel], bytes_written=len(content.encode("utf-8"))),
        metadata={"inputs": len(json.loads(content)["inputs"]), **options},
    )
    err.print(f"Wrote: {rel}", style="green")
    return 0


def run_snapshot_check(config: GateConfig, *, out: str | None = None) -> int:
    err = Console(stderr=True)
    builder = SnapshotBuilder(config, GitRepo(config.root))
    try:
        report = builder.check(out)
    except GateError as e:
        print_gate_error(err, e)
        return 1
    print_findings(err, report)
    print_summary(err, report)
    return 0 if report.ok else 1
