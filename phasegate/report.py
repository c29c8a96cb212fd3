"""
Structured results for the independent verification gates.

Verifiers never raise on individual findings. They collect every error and
warning into a report so the caller sees the full picture in one run, then
decide whether to enforce it with ``raise_for_errors``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import dedupe, integrity_error_for

Severity = Literal["error", "warning"]


@dataclass(frozen=True)
class Finding:
    """One error or warning produced by a verifier."""

    severity: Severity
    code: str
    message: str
    path: str | None = None

    def render(self) -> str:
        prefix = f"{self.path}: " if self.path else ""
        return f"[{self.code}] {prefix}{self.message}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
        }
        if self.path is not None:
            result["path"] = self.path
        return result


@dataclass
class CheckReport:
    """Base class for verifier output: pass/fail plus findings."""

    gate: str
    findings: list[Finding] = field(default_factory=list)

    def error(self, code: str, message: str, path: str | None = None) -> None:
        self._add(Finding("error", code, message, path))

    def warn(self, code: str, message: str, path: str | None = None) -> None:
        self._add(Finding("warning", code, message, path))

    def _add(self, finding: Finding) -> None:
        if finding not in self.findings:
            self.findings.append(finding)

    @property
    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == "error"]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == "warning"]

    @property
    def ok(self) -> bool:
        return not self.errors

    def has_code(self, code: str) -> bool:
        return any(f.code == code for f in self.findings)

    def summary(self) -> str:
        status = "PASS" if self.ok else "FAIL"
        return f"{self.gate}: {status} ({len(self.errors)} errors, {len(self.warnings)} warnings)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "gate": self.gate,
            "ok": self.ok,
            "errors": [f.to_dict() for f in self.errors],
            "warnings": [f.to_dict() for f in self.warnings],
        }

    def raise_for_errors(self) -> None:
        """Raise the most specific integrity error for the failing findings, carrying all of them."""
        errors = self.errors
        if not errors:
            return
        exc_type, code = integrity_error_for([f.code for f in errors])
        raise exc_type(
            f"{self.gate} failed with {len(errors)} error(s)",
            details=dedupe(f.render() for f in errors),
            code=code,
        )
