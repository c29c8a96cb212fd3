"""Declared per-file edit scope and content transition."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError


@dataclass(frozen=True)
class EditManifestEntry:
    """
    One file's declared edit window and content transition.

    Every diff hunk touching ``target_path`` between the before and after
    states must fall inside ``[start, end]`` (1-based, inclusive).
    ``checklist`` maps gate names to whether the author ticked them.
    """

    target_path: str
    start: int
    end: int
    pre_hash: str
    post_hash: str
    line_delta: int
    checklist: dict[str, bool] = field(default_factory=dict)
    label: str = ""

    def __post_init__(self) -> None:
        name = self.label or self.target_path or "manifest entry"
        if not self.target_path.strip():
            raise ValidationError(f"{name}: target path is empty")
        if self.start < 1:
            raise ValidationError(f"{name}: window start must be >= 1 (got {self.start})")
        if self.start > self.end:
            raise ValidationError(f"{name}: window start {self.start} is after end {self.end}")

    @property
    def window(self) -> tuple[int, int]:
        return (self.start, self.end)

    @property
    def name(self) -> str:
        return self.label or self.target_path

    def checked(self) -> set[str]:
        return {gate for gate, ticked in self.checklist.items() if ticked}

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_path": self.target_path,
            "window": [self.start, self.end],
            "pre_hash": self.pre_hash,
            "post_hash": self.post_hash,
            "line_delta": self.line_delta,
            "checklist": dict(sorted(self.checklist.items())),
        }
