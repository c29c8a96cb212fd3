"""
Mechanical verification of edit manifests.

For each entry, every step must pass:

1. the target exists in the "after" state;
2. ``pre_hash`` matches the "before" content (LF-normalized; CRLF tolerated
   with a warning);
3. ``post_hash`` matches the "after" content under the same rule;
4. every hunk lies inside the declared window on both sides (rails);
5. the net line delta equals ``line_delta``;
6. the named checklist is complete. Unticked mechanical items are inferred
   as passed (with a warning, and tagged as inferred) when steps 1-5 passed;
   unticked judgment items fail the entry.

Then a scope guard checks the whole range: every touched file needs an entry,
and files outside the declared scope fail unless a waiver downgrades them.

The verifier only reads from git; it never changes repository state.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..config import ManifestPolicy
from ..digest import is_binary, is_manifest_digest, match_digest
from ..report import CheckReport
from ..vcs import GitRepo, require
from .comparison import Comparison
from .diff import is_binary_diff, net_delta, parse_hunks
from .model import EditManifestEntry

logger = logging.getLogger(__name__)


@dataclass
class EntryResult:
    target_path: str
    passed: bool
    hunks: int = 0
    actual_delta: int | None = None
    confirmed_gates: list[str] = field(default_factory=list)
    inferred_gates: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_path": self.target_path,
            "passed": self.passed,
            "hunks": self.hunks,
            "actual_delta": self.actual_delta,
            "confirmed_gates": sorted(self.confirmed_gates),
            "inferred_gates": sorted(self.inferred_gates),
        }


@dataclass
class ManifestReport(CheckReport):
    comparison: Comparison | None = None
    entries: list[EntryResult] = field(default_factory=list)
    changed_files: list[str] = field(default_factory=list)
    waiver: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["comparison"] = self.comparison.to_dict() if self.comparison else None
        result["entries"] = [e.to_dict() for e in self.entries]
        result["changed_files"] = list(self.changed_files)
        if self.waiver is not None:
            result["waiver"] = self.waiver
        return result


def path_in_scope(path: str, scope: Sequence[str]) -> bool:
    for pattern in scope:
        pattern = pattern.strip().rstrip("/")
        if not pattern:
            continue
        if path == pattern or path.startswith(pattern + "/") or fnmatch.fnmatch(path, pattern):
            return True
    return False


class ManifestVerifier:
    """
    Checks manifest entries against a resolved comparison.

    Args:
        git: Repository to read blobs and diffs from
        policy: Checklist gate names and waiver markers
        exempt_prefixes: Paths that never need manifest coverage
    """

    def __init__(self, git: GitRepo, policy: ManifestPolicy, *, exempt_prefixes: Sequence[str] = ()):
        self.git = git
        self.policy = policy
        self.exempt_prefixes = tuple(exempt_prefixes)

    def verify(
        self,
        entries: Sequence[EditManifestEntry],
        comparison: Comparison,
        *,
        in_scope_paths: Sequence[str] = (),
        waiver: str | None = None,
    ) -> ManifestReport:
        report = ManifestReport(gate="manifest", comparison=comparison, waiver=waiver)
        logger.info("Verifying %d manifest entr(y/ies) against %s", len(entries), comparison.describe())

        seen: set[str] = set()
        for entry in entries:
            if entry.target_path in seen:
                report.error("DUPLICATE_ENTRY", "more than one manifest entry for this file", entry.target_path)
                continue
            seen.add(entry.target_path)
            report.entries.append(self._verify_entry(entry, comparison, report))

        self._scope_guard(entries, comparison, report, in_scope_paths=in_scope_paths, waiver=waiver)
        return report

    # ------------------------------------------------------------------
    # Per-entry checks
    # ------------------------------------------------------------------

    def _verify_entry(self, entry: EditManifestEntry, comparison: Comparison, report: ManifestReport) -> EntryResult:
        path = entry.target_path
        errors_before = len(report.errors)
        result = EntryResult(target_path=path, passed=False)

        after = comparison.after(self.git, path)
        if after is None:
            report.error("TARGET_MISSING", f"target does not exist in the after state ({comparison.mode})", path)

        # Pre-image
        if not is_manifest_digest(entry.pre_hash):
            report.error("PRE_HASH_FORMAT", f"pre_hash is not a 40-char hex digest: {entry.pre_hash!r}", path)
        else:
            before = comparison.before(self.git, path)
            if before is None:
                report.warn("PRE_IMAGE_UNAVAILABLE", "no before content (new file); pre_hash not checked", path)
            else:
                self._check_digest(report, "PRE_IMAGE_MISMATCH", "pre_hash", entry.pre_hash, before, path)

        # Post-image
        if not is_manifest_digest(entry.post_hash):
            report.error("POST_HASH_FORMAT", f"post_hash is not a 40-char hex digest: {entry.post_hash!r}", path)
        elif after is not None:
            self._check_digest(report, "POST_IMAGE_MISMATCH", "post_hash", entry.post_hash, after, path)

        # Rails and delta
        diff_text = require(
            self.git.diff(comparison.diff_args(), paths=[path], extra=["--unified=0"]),
            f"the diff for {path}",
        )
        if is_binary_diff(diff_text):
            report.warn("BINARY_DIFF", "binary change; window and line delta cannot be checked", path)
        else:
            hunks = parse_hunks(diff_text)
            result.hunks = len(hunks)
            for hunk in hunks:
                if hunk.outside(entry.start, entry.end):
                    report.error(
                        "RAILS_VIOLATION",
                        f"hunk {hunk.describe()} extends outside window [{entry.start},{entry.end}]",
                        path,
                    )
            result.actual_delta = net_delta(hunks)
            if result.actual_delta != entry.line_delta:
                report.error(
                    "LINE_DELTA_MISMATCH",
                    f"line_delta {entry.line_delta:+d} does not match diff delta {result.actual_delta:+d}",
                    path,
                )

        mechanical_ok = len(report.errors) == errors_before
        self._check_checklist(entry, report, result, infer=mechanical_ok)
        result.passed = len(report.errors) == errors_before
        return result

    @staticmethod
    def _check_digest(report: CheckReport, code: str, what: str, declared: str, data: bytes, path: str) -> None:
        match = match_digest(declared, data)
        if not match.matched:
            report.error(code, f"{what} {declared} does not match the file content", path)
        elif match.variant == "crlf" or (match.variant == "raw" and not is_binary(data)):
            report.warn("LINE_ENDINGS", f"{what} matched only the {match.variant} line-ending variant", path)

    def _check_checklist(self, entry: EditManifestEntry, report: CheckReport, result: EntryResult, *, infer: bool) -> None:
        path = entry.target_path
        if not entry.checklist:
            report.error("CHECKLIST_MISSING", "manifest entry has no gate checklist", path)
            return

        ticked = entry.checked()
        for gate in self.policy.inferable_gates:
            if gate in ticked:
                result.confirmed_gates.append(gate)
            elif infer:
                result.inferred_gates.append(gate)
                report.warn("GATE_INFERRED", f"{gate} not ticked; inferred as passed from mechanical checks", path)
            else:
                report.error("GATE_UNCHECKED", f"{gate} not ticked and mechanical checks failed", path)

        for gate in self.policy.judgment_gates:
            if gate in ticked:
                result.confirmed_gates.append(gate)
            else:
                report.error("GATE_UNCHECKED", f"{gate} must be explicitly ticked", path)

        unknown = sorted(set(entry.checklist) - set(self.policy.required_gates))
        for gate in unknown:
            report.warn("GATE_UNKNOWN", f"unrecognized checklist item: {gate}", path)

    # ------------------------------------------------------------------
    # Scope guard
    # ------------------------------------------------------------------

    def _exempt(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.exempt_prefixes)

    def _scope_guard(
        self,
        entries: Sequence[EditManifestEntry],
        comparison: Comparison,
        report: ManifestReport,
        *,
        in_scope_paths: Sequence[str],
        waiver: str | None,
    ) -> None:
        changed = require(self.git.changed_files(comparison.diff_args()), "the list of changed files")
        report.changed_files = changed
        if not changed:
            report.error("NO_CHANGES", f"no files changed in {comparison.describe()}")
            return

        covered = {e.target_path for e in entries}
        for path in changed:
            if self._exempt(path):
                continue
            if path not in covered:
                report.error("MISSING_COVERAGE", "changed file has no manifest entry", path)
            if in_scope_paths and not path_in_scope(path, in_scope_paths):
                if waiver:
                    report.warn("OUT_OF_SCOPE_WAIVED", f"outside declared scope; waived: {waiver}", path)
                else:
                    report.error("OUT_OF_SCOPE", "changed file is outside the declared scope", path)

        changed_set = set(changed)
        for entry in entries:
            if entry.target_path not in changed_set:
                report.warn("ENTRY_UNCHANGED", "manifest entry for a file the range does not change", entry.target_path)
