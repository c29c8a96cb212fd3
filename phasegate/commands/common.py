"""Rendering helpers shared by the command modules."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from ..errors import GateError
from ..report import CheckReport


def print_gate_error(err: Console, exc: GateError) -> None:
    err.print(f"{exc.kind} error [{exc.code}]: {escape(exc.message)}", style="bold red")
    for detail in exc.details:
        err.print(f"  - {escape(detail)}", style="red")


def print_findings(err: Console, report: CheckReport) -> None:
    for finding in report.errors:
        err.print(f"  ERROR {escape(finding.render())}", style="red")
    for finding in report.warnings:
        err.print(f"  WARN  {escape(finding.render())}", style="yellow")


def print_summary(err: Console, report: CheckReport) -> None:
    err.print(report.summary(), style="green" if report.ok else "bold red")
