"""
Error kinds raised by gate operations and verifiers.

Every failure belongs to one of four kinds:

- validation: an input artifact is malformed, incomplete or inconsistent;
  the caller fixes it and retries.
- sequence: a required prior gate is missing or a timing rule was broken;
  recoverable by performing the missing gate or waiting.
- integrity: repository state disagrees with a declaration (hash, window,
  delta, registry); must halt and is never auto-corrected.
- environment: git or the filesystem is unavailable; retryable by the caller.
"""

from __future__ import annotations

from typing import Iterable, Sequence


def dedupe(messages: Iterable[str]) -> list[str]:
    """Drop repeated messages while keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for msg in messages:
        if msg in seen:
            continue
        seen.add(msg)
        out.append(msg)
    return out


class GateError(Exception):
    """Base class for all phasegate failures."""

    kind = "error"
    code = "GATE_ERROR"

    def __init__(self, message: str, *, details: Iterable[str] = (), code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dedupe(details)
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "details": list(self.details),
        }


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


class ValidationError(GateError):
    kind = "validation"
    code = "VALIDATION_FAILED"


class DuplicateSignature(ValidationError):
    """A signature token was already consumed, or the work item is already signed."""

    code = "DUPLICATE_SIGNATURE"


class InputMissing(ValidationError):
    code = "INPUT_MISSING"


class UnparseablePointer(ValidationError):
    code = "POINTER_UNPARSEABLE"


class MalformedSubDocument(ValidationError):
    code = "MALFORMED_SUBDOCUMENT"


# -----------------------------------------------------------------------------
# Sequence
# -----------------------------------------------------------------------------


class SequenceError(GateError):
    kind = "sequence"
    code = "SEQUENCE_VIOLATION"


class MissingRefinement(SequenceError):
    code = "MISSING_REFINEMENT"


class MomentumViolation(SequenceError):
    """Two gate events recorded closer together than the minimum interval."""

    code = "MOMENTUM_VIOLATION"


# -----------------------------------------------------------------------------
# Integrity
# -----------------------------------------------------------------------------


class IntegrityError(GateError):
    kind = "integrity"
    code = "INTEGRITY_VIOLATION"


class RailsViolation(IntegrityError):
    """A diff hunk falls outside its declared line window."""

    code = "RAILS_VIOLATION"


class MissingCoverage(IntegrityError):
    code = "MISSING_COVERAGE"


class RegistryDrift(IntegrityError):
    code = "REGISTRY_DRIFT"


class WhitelistViolation(IntegrityError):
    code = "WHITELIST_VIOLATION"


# -----------------------------------------------------------------------------
# Environment
# -----------------------------------------------------------------------------


class GateEnvironmentError(GateError):
    """git or the filesystem could not provide data a hard gate requires."""

    kind = "environment"
    code = "ENVIRONMENT_UNAVAILABLE"


# Finding codes produced by the verifiers, in the order they decide which
# exception a failing report raises.
INTEGRITY_PRIORITY: tuple[tuple[str, type[IntegrityError]], ...] = (
    ("RAILS_VIOLATION", RailsViolation),
    ("MISSING_COVERAGE", MissingCoverage),
    ("OUT_OF_SCOPE", MissingCoverage),
)


def integrity_error_for(codes: Sequence[str]) -> tuple[type[IntegrityError], str]:
    """Exception class and code for a set of failing finding codes."""
    for code, exc_type in INTEGRITY_PRIORITY:
        if code in codes:
            return exc_type, code
    for code in codes:
        if code.startswith("RR-"):
            return RegistryDrift, code
    return IntegrityError, codes[0] if codes else IntegrityError.code
