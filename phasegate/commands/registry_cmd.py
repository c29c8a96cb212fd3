"""Capability/contract registry drift command."""

from __future__ import annotations

import json

from rich.console import Console

from ..config import GateConfig
from ..errors import GateError
from ..gates.checks import check_registry
from ..vcs import GitRepo
from .common import print_findings, print_gate_error, print_summary


def run_registry_check(config: GateConfig, *, baseline_ref: str | None = None, output_json: bool = False) -> int:
    err = Console(stderr=True)
    try:
        report = check_registry(config, GitRepo(config.root), baseline_ref=baseline_ref)
    except GateError as e:
        print_gate_error(err, e)
        return 1

    if output_json:
        print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
        return 0 if report.ok else 1

    baseline = report.baseline_ref or "none (empty baseline)"
    err.print(
        f"{config.registry.path}: {report.capabilities} capabilities, {report.contracts} contracts; baseline {baseline}",
        style="dim",
    )
    print_findings(err, report)
    print_summary(err, report)
    return 0 if report.ok else 1
