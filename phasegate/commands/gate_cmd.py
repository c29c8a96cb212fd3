"""Gate transition, status and reset commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.table import Table

from ..audit_log import ArchiveSummary, WriteSummary, format_audit_entry, log_operation, read_audit_log
from ..config import GateConfig
from ..errors import GateError
from ..gates.checks import build_transition_checks
from ..gates.machine import PhaseStateMachine, TransitionCheck
from ..ledger.events import (
    ACKNOWLEDGE,
    APPEND,
    COMMIT,
    PREPARE,
    PRESENT_REPORT,
    REFINEMENT,
    SIGNATURE,
    GateEvent,
)
from ..vcs import GitRepo
from .common import print_gate_error


def _machine(config: GateConfig) -> PhaseStateMachine:
    return PhaseStateMachine(config, git=GitRepo(config.root))


def _written(config: GateConfig, *paths: Path) -> WriteSummary:
    files = []
    size = 0
    for path in paths:
        if path.exists():
            files.append(path.relative_to(config.root).as_posix())
            size += path.stat().st_size
    return WriteSummary(files=files, bytes_written=size)


def _run_transition(
    config: GateConfig,
    work_item_id: str,
    gate: str,
    record: Callable[[PhaseStateMachine, list[TransitionCheck]], GateEvent],
) -> int:
    err = Console(stderr=True)
    machine = _machine(config)
    try:
        checks = build_transition_checks(config, machine.git, gate, work_item_id)
        event = record(machine, checks)
    except GateError as e:
        print_gate_error(err, e)
        return 1

    touched = [machine.ledger.path_for(work_item_id)]
    if gate == SIGNATURE:
        touched.append(config.signature_audit_path)
    log_operation(
        config.audit_log_path,
        f"gate-{gate.lower().replace('_', '-')}",
        work_item_id=work_item_id,
        written=_written(config, *touched),
        metadata={"actor": event.actor, "inferred": event.inferred, **_public_payload(event)},
        timestamp=event.timestamp,
    )

    suffix = " (inferred)" if event.inferred else ""
    err.print(f"{work_item_id}: {gate} recorded{suffix}", style="green")
    checks_run = event.payload.get("checks")
    if checks_run:
        err.print(f"  checks: {', '.join(f'{k}={v}' for k, v in sorted(checks_run.items()))}", style="dim")
    return 0


def _public_payload(event: GateEvent) -> dict[str, str]:
    return {k: str(v) for k, v in event.payload.items() if k in {"verdict", "signature", "artifact_ref", "packet_ref"}}


def run_refine(config: GateConfig, work_item_id: str, artifact: Path, *, actor: str) -> int:
    return _run_transition(
        config,
        work_item_id,
        REFINEMENT,
        lambda m, _checks: m.record_refinement(work_item_id, artifact, actor=actor),
    )


def run_sign(config: GateConfig, work_item_id: str, token: str, *, actor: str | None = None) -> int:
    return _run_transition(
        config,
        work_item_id,
        SIGNATURE,
        lambda m, _checks: m.record_signature(work_item_id, token, actor=actor),
    )


def run_prepare(
    config: GateConfig,
    work_item_id: str,
    *,
    packet: Path | None = None,
    actor: str,
    inferred: bool = False,
) -> int:
    return _run_transition(
        config,
        work_item_id,
        PREPARE,
        lambda m, checks: m.record_prepare(work_item_id, packet, actor=actor, inferred=inferred, checks=checks),
    )


def run_append(config: GateConfig, work_item_id: str, verdict: str, *, actor: str, inferred: bool = False) -> int:
    return _run_transition(
        config,
        work_item_id,
        APPEND,
        lambda m, checks: m.record_append(work_item_id, verdict, actor=actor, inferred=inferred, checks=checks),
    )


def run_present_report(
    config: GateConfig,
    work_item_id: str,
    *,
    verdict: str | None = None,
    actor: str,
    inferred: bool = False,
) -> int:
    return _run_transition(
        config,
        work_item_id,
        PRESENT_REPORT,
        lambda m, checks: m.record_present_report(
            work_item_id, verdict, actor=actor, inferred=inferred, checks=checks
        ),
    )


def run_acknowledge(config: GateConfig, work_item_id: str, *, actor: str, inferred: bool = False) -> int:
    return _run_transition(
        config,
        work_item_id,
        ACKNOWLEDGE,
        lambda m, checks: m.record_acknowledge(work_item_id, actor=actor, inferred=inferred, checks=checks),
    )


def run_commit(config: GateConfig, work_item_id: str, *, actor: str, inferred: bool = False) -> int:
    return _run_transition(
        config,
        work_item_id,
        COMMIT,
        lambda m, checks: m.record_commit(work_item_id, actor=actor, inferred=inferred, checks=checks),
    )


def run_status(config: GateConfig, work_item_id: str, *, output_json: bool = False) -> int:
    err = Console(stderr=True)
    try:
        status = _machine(config).status(work_item_id)
    except GateError as e:
        print_gate_error(err, e)
        return 1

    if output_json:
        print(json.dumps(status.to_dict(), indent=2, sort_keys=True))
        return 0

    console = Console()
    console.print(f"{status.work_item_id}: {status.phase} (next: {status.next_action})")
    if status.verdict:
        console.print(f"  verdict: {status.verdict}", style="dim")
    if status.review_status:
        console.print(f"  refinement: {status.review_status} {status.signature or ''}".rstrip(), style="dim")
    if status.inferred_gates:
        console.print(f"  inferred: {', '.join(status.inferred_gates)}", style="yellow")
    if status.archived_sessions:
        console.print(f"  archived sessions: {status.archived_sessions}", style="dim")
    if status.source == "legacy":
        console.print("  read from the legacy consolidated ledger", style="dim")

    if not status.events:
        return 0

    table = Table(title=f"Gate history: {status.work_item_id}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("gate", style="cyan", no_wrap=True)
    table.add_column("timestamp")
    table.add_column("actor", style="magenta")
    table.add_column("details")
    for index, event in enumerate(status.events, start=1):
        details = ", ".join(f"{k}={v}" for k, v in sorted(event.payload.items()) if k != "checks")
        if event.inferred:
            details = f"[inferred] {details}".strip()
        table.add_row(str(index), event.event_type, event.timestamp.isoformat(), event.actor, details)
    console.print(table)
    return 0


def run_reset(config: GateConfig, work_item_id: str, *, confirm: bool, reason: str) -> int:
    err = Console(stderr=True)
    machine = _machine(config)
    try:
        session = machine.reset(work_item_id, confirm=confirm, reason=reason)
    except GateError as e:
        print_gate_error(err, e)
        return 1

    log_operation(
        config.audit_log_path,
        "gate-reset",
        work_item_id=work_item_id,
        archived=ArchiveSummary(events=len(session.events), refinement=session.refinement is not None),
        written=_written(config, machine.ledger.path_for(work_item_id)),
        metadata={"reason": reason},
        timestamp=session.archived_at,
    )
    err.print(f"{work_item_id}: reset to NEW; archived {len(session.events)} event(s)", style="yellow")
    return 0


def run_log(config: GateConfig, *, last: int | None = None, work_item_id: str | None = None) -> int:
    console = Console()
    entries = read_audit_log(config.audit_log_path)
    if work_item_id:
        entries = [e for e in entries if e.work_item_id == work_item_id]
    if last is not None:
        entries = entries[-last:]
    if not entries:
        console.print("No audit log entries.", style="dim")
        return 0
    for entry in entries:
        console.print(format_audit_entry(entry), markup=False, highlight=False)
    return 0
