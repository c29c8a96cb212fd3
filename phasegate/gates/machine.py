"""
Phase state machine over the gate ledger.

Required order:

    NEW -> REFINED -> SIGNED -> PREPARED -> APPENDED -> REPORTED
        -> ACKNOWLEDGED -> COMMITTED

plus a confirmed reset back to NEW that archives the active session.

Every operation runs all of its checks first and appends exactly one event as
its last step, so a failed operation leaves the ledger untouched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

from ..config import GateConfig
from ..digest import sha256_hex
from ..documents.packet import load_packet
from ..documents.refinement import validate_refinement
from ..errors import (
    DuplicateSignature,
    GateError,
    MissingRefinement,
    MomentumViolation,
    SequenceError,
    ValidationError,
)
from ..ledger.events import (
    ACKNOWLEDGE,
    APPEND,
    COMMIT,
    PREPARE,
    PRESENT_REPORT,
    REFINEMENT,
    SIGNATURE,
    VERDICTS,
    GateEvent,
    create_event,
)
from ..ledger.ledger import ArchivedSession, GateLedger, RefinementRecord, WorkItemLog
from ..ledger.state import GateStatus, prerequisites, project_status
from ..report import CheckReport
from ..vcs import GitRepo
from .signatures import SignatureAudit, SignatureToken, corpus_mentions

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TransitionCheck:
    """An independent gate (manifest, registry) run before a transition is accepted."""

    name: str
    run: Callable[[], CheckReport]


class PhaseStateMachine:
    """
    Validates and records gate transitions for work items.

    Args:
        config: Gate policy and repository locations
        ledger: Ledger to use (defaults to the configured ledger directory)
        audit: Consumed-token audit table (defaults to the configured path)
        git: Repository used for the advisory corpus search
        clock: Source of "now"; injectable for tests
    """

    def __init__(
        self,
        config: GateConfig,
        *,
        ledger: GateLedger | None = None,
        audit: SignatureAudit | None = None,
        git: GitRepo | None = None,
        clock: Clock = utc_now,
    ):
        self.config = config
        self.ledger = ledger or GateLedger(config.ledger_dir, config.legacy_ledger_path)
        self.audit = audit or SignatureAudit(config.signature_audit_path)
        self.git = git or GitRepo(config.root)
        self.clock = clock
        self.min_interval = timedelta(seconds=config.min_interval_seconds)
        self._work_item_re = re.compile(config.work_item_pattern)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def status(self, work_item_id: str) -> GateStatus:
        self._validate_id(work_item_id)
        return project_status(self.ledger.load(work_item_id))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def record_refinement(self, work_item_id: str, artifact_ref: str | Path, *, actor: str = "orchestrator") -> GateEvent:
        self._validate_id(work_item_id)
        log = self.ledger.load(work_item_id)
        if log.refinement is not None and log.refinement.frozen:
            raise SequenceError(
                f"Refinement for {work_item_id} is signed and frozen; reset to start over",
                code="REFINEMENT_FROZEN",
            )
        if log.latest(SIGNATURE) is not None:
            raise SequenceError(
                f"{work_item_id} already has a SIGNATURE; reset to start over",
                code="REFINEMENT_FROZEN",
            )

        path = self._resolve(artifact_ref)
        validate_refinement(
            path,
            expected_work_item_id=work_item_id,
            required_sections=self.config.refinement_required_sections,
        )
        digest = sha256_hex(path.read_bytes())
        ref = self._relative(path)

        now = self.clock()
        event = create_event(
            REFINEMENT,
            work_item_id,
            actor=actor,
            payload={"artifact_ref": ref, "artifact_sha256": digest},
            timestamp=now,
        )
        record = RefinementRecord(work_item_id=work_item_id, artifact_ref=ref, artifact_sha256=digest)
        self.ledger.append(work_item_id, event, refinement=record)
        logger.info("%s: REFINEMENT recorded from %s", work_item_id, ref)
        return event

    def record_signature(self, work_item_id: str, token: str, *, actor: str | None = None) -> GateEvent:
        self._validate_id(work_item_id)
        log = self.ledger.load(work_item_id)

        refinement_event = log.latest(REFINEMENT)
        if refinement_event is None:
            raise MissingRefinement(f"SIGNATURE requires a REFINEMENT for {work_item_id}")
        signature_event = log.latest(SIGNATURE)
        if signature_event is not None or (log.refinement is not None and log.refinement.frozen):
            raise DuplicateSignature(f"{work_item_id} is already signed; refinements are not re-signable")

        now = self.clock()
        elapsed = now - refinement_event.timestamp
        if elapsed < self.min_interval:
            raise MomentumViolation(
                f"SIGNATURE for {work_item_id} recorded {elapsed.total_seconds():.1f}s after REFINEMENT; "
                f"minimum interval is {self.min_interval.total_seconds():g}s",
            )

        parsed = SignatureToken.parse(token, self.config.signature_pattern)
        self.audit.ensure_unused(parsed.raw)
        if self.config.corpus_search == "advisory":
            hits = corpus_mentions(self.git, parsed.raw, exclude=[self.config.state_dir])
            if hits:
                logger.warning(
                    "Signature token %s already appears in tracked files (advisory): %s",
                    parsed.raw,
                    ", ".join(hits),
                )

        record = log.refinement or RefinementRecord(
            work_item_id=work_item_id,
            artifact_ref=str(refinement_event.payload.get("artifact_ref", "")),
            artifact_sha256=str(refinement_event.payload.get("artifact_sha256", "")),
        )
        self._ensure_refinement_unchanged(record)
        approved = record.approve(parsed.raw, now)

        event = create_event(
            SIGNATURE,
            work_item_id,
            actor=actor or parsed.actor,
            payload={"signature": parsed.raw},
            timestamp=now,
        )
        # The token is only consumed together with its SIGNATURE event.
        previous_audit = self.audit.read_text()
        self.audit.record(parsed, purpose=f"Refinement approval for {work_item_id}", consumed_at=now)
        try:
            self.ledger.append(work_item_id, event, refinement=approved)
        except Exception:
            self.audit.restore(previous_audit)
            raise
        logger.info("%s: SIGNATURE recorded (%s)", work_item_id, parsed.raw)
        return event

    def record_prepare(
        self,
        work_item_id: str,
        packet_ref: str | Path | None = None,
        *,
        actor: str = "orchestrator",
        inferred: bool = False,
        checks: Sequence[TransitionCheck] = (),
    ) -> GateEvent:
        self._validate_id(work_item_id)
        path = self._resolve(packet_ref) if packet_ref is not None else self.config.packet_path(work_item_id)
        if not path.is_file():
            raise ValidationError(f"Work packet not found for {work_item_id}: {self._relative(path)}")
        packet = load_packet(path)
        if packet.work_item_id != work_item_id:
            raise ValidationError(
                f"Work packet {path.name} declares WP_ID {packet.work_item_id or '<missing>'}, expected {work_item_id}"
            )
        payload = {"packet_ref": self._relative(path), "packet_sha256": sha256_hex(path.read_bytes())}
        return self._record_gate(work_item_id, PREPARE, payload, actor=actor, inferred=inferred, checks=checks)

    def record_append(
        self,
        work_item_id: str,
        verdict: str,
        *,
        actor: str = "validator",
        inferred: bool = False,
        checks: Sequence[TransitionCheck] = (),
    ) -> GateEvent:
        verdict = self._verdict(verdict)
        return self._record_gate(
            work_item_id,
            APPEND,
            {"verdict": verdict},
            actor=actor,
            inferred=inferred,
            checks=checks,
            blocking=verdict == "PASS",
        )

    def record_present_report(
        self,
        work_item_id: str,
        verdict: str | None = None,
        *,
        actor: str = "validator",
        inferred: bool = False,
        checks: Sequence[TransitionCheck] = (),
    ) -> GateEvent:
        self._validate_id(work_item_id)
        appended = self.ledger.load(work_item_id).latest(APPEND)
        appended_verdict = appended.verdict if appended is not None else None
        if verdict is None:
            verdict = appended_verdict
        elif appended_verdict is not None and self._verdict(verdict) != appended_verdict:
            raise ValidationError(
                f"Reported verdict {verdict.upper()} does not match appended verdict {appended_verdict}"
            )
        payload = {"verdict": self._verdict(verdict)} if verdict else {}
        return self._record_gate(
            work_item_id, PRESENT_REPORT, payload, actor=actor, inferred=inferred, checks=checks
        )

    def record_acknowledge(
        self,
        work_item_id: str,
        *,
        actor: str = "operator",
        inferred: bool = False,
        checks: Sequence[TransitionCheck] = (),
    ) -> GateEvent:
        return self._record_gate(work_item_id, ACKNOWLEDGE, {}, actor=actor, inferred=inferred, checks=checks)

    def record_commit(
        self,
        work_item_id: str,
        *,
        actor: str = "validator",
        inferred: bool = False,
        checks: Sequence[TransitionCheck] = (),
    ) -> GateEvent:
        self._validate_id(work_item_id)
        status = project_status(self.ledger.load(work_item_id))
        if status.verdict is not None and status.verdict != "PASS":
            raise SequenceError(
                f"Only PASS verdicts may be committed ({work_item_id} is {status.verdict})",
                code="VERDICT_NOT_PASS",
            )
        return self._record_gate(work_item_id, COMMIT, {}, actor=actor, inferred=inferred, checks=checks)

    def reset(self, work_item_id: str, *, confirm: bool = False, reason: str = "manual_reset") -> ArchivedSession:
        """Archive the active session and return the work item to NEW."""
        self._validate_id(work_item_id)
        if not confirm:
            raise ValidationError(f"Reset of {work_item_id} requires explicit confirmation")
        log = self.ledger.load(work_item_id)
        if not log.events and log.refinement is None:
            raise ValidationError(f"{work_item_id} has no active session to reset")
        session = self.ledger.archive(work_item_id, reason=reason, archived_at=self.clock())
        logger.warning("%s: reset; archived %d event(s)", work_item_id, len(session.events))
        return session

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record_gate(
        self,
        work_item_id: str,
        gate: str,
        payload: dict[str, Any],
        *,
        actor: str,
        inferred: bool,
        checks: Sequence[TransitionCheck],
        blocking: bool = True,
    ) -> GateEvent:
        """
        Append one ``gate`` event after the sequence, momentum and transition checks.

        With ``blocking=False`` (a FAIL verdict) failing checks are recorded in the
        event payload instead of refusing the transition.
        """
        self._validate_id(work_item_id)
        log = self.ledger.load(work_item_id)
        self._require_sequence(log, gate)

        now = self.clock()
        previous = log.last_event
        if inferred:
            logger.warning("%s: %s recorded as machine-inferred; momentum check skipped", work_item_id, gate)
        elif previous is not None:
            elapsed = now - previous.timestamp
            if elapsed < self.min_interval:
                raise MomentumViolation(
                    f"{gate} for {work_item_id} recorded {elapsed.total_seconds():.1f}s after "
                    f"{previous.event_type}; minimum interval is {self.min_interval.total_seconds():g}s",
                )

        check_summary = self._run_checks(checks, blocking=blocking)
        if check_summary:
            payload = {**payload, "checks": check_summary}

        event = create_event(gate, work_item_id, actor=actor, inferred=inferred, payload=payload, timestamp=now)
        self.ledger.append(work_item_id, event)
        logger.info("%s: %s recorded", work_item_id, gate)
        return event

    def _require_sequence(self, log: WorkItemLog, gate: str) -> None:
        deps = prerequisites(gate)
        latest = log.latest_by_type()

        missing = [d for d in deps if d not in latest]
        if missing:
            details = [f"missing {d}" for d in missing]
            if missing[0] == REFINEMENT:
                raise MissingRefinement(f"{gate} requires a REFINEMENT for {log.work_item_id}", details=details)
            raise SequenceError(
                f"{gate} requires {deps[-1]} for {log.work_item_id}",
                details=details,
                code="MISSING_PREREQUISITE",
            )

        for earlier, later in zip(deps, deps[1:]):
            if latest[later].timestamp < latest[earlier].timestamp:
                raise SequenceError(
                    f"{later} predates {earlier} for {log.work_item_id}",
                    code="OUT_OF_ORDER",
                )

        current = latest.get(gate)
        if current is None or not deps:
            return
        if current.timestamp < latest[deps[-1]].timestamp:
            return
        # A failed validation may be appended again after fixes.
        if gate == APPEND and current.verdict == "FAIL":
            return
        raise SequenceError(f"{gate} is already recorded for {log.work_item_id}", code="ALREADY_RECORDED")

    def _run_checks(self, checks: Sequence[TransitionCheck], *, blocking: bool = True) -> dict[str, str]:
        summary: dict[str, str] = {}
        for check in checks:
            try:
                report = check.run()
            except GateError as e:
                if blocking:
                    raise
                logger.warning("%s check could not run (recorded with FAIL verdict): %s", check.name, e)
                summary[check.name] = "FAIL"
                continue
            for finding in report.warnings:
                logger.warning("%s check: %s", check.name, finding.render())
            if blocking:
                report.raise_for_errors()
            elif not report.ok:
                for finding in report.errors:
                    logger.warning("%s check (recorded with FAIL verdict): %s", check.name, finding.render())
                summary[check.name] = "FAIL"
                continue
            summary[check.name] = "PASS"
        return summary

    def _ensure_refinement_unchanged(self, record: RefinementRecord) -> None:
        if not record.artifact_ref or not record.artifact_sha256:
            return
        path = self._resolve(record.artifact_ref)
        if not path.is_file():
            raise ValidationError(f"Refinement artifact {record.artifact_ref} no longer exists")
        if sha256_hex(path.read_bytes()) != record.artifact_sha256:
            raise ValidationError(
                f"Refinement artifact {record.artifact_ref} changed after REFINEMENT; record the refinement again"
            )

    def _validate_id(self, work_item_id: str) -> None:
        if not self._work_item_re.match(work_item_id or ""):
            raise ValidationError(f"Invalid work item id: {work_item_id!r}")

    @staticmethod
    def _verdict(verdict: str) -> str:
        value = verdict.strip().upper()
        if value not in VERDICTS:
            raise ValidationError(f"Verdict must be PASS or FAIL (got {verdict!r})")
        return value

    def _resolve(self, ref: str | Path) -> Path:
        path = Path(ref)
        return path if path.is_absolute() else self.config.root / path

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.config.root.resolve()).as_posix()
        except ValueError:
            return path.as_posix()
