"""Hunks from ``git diff --unified=0`` output."""

from __future__ import annotations

import re
from dataclasses import dataclass

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass(frozen=True)
class Hunk:
    """
    One diff hunk.

    A side with length 0 is a pure insertion (old side) or pure deletion
    (new side) and touches no lines on that side.
    """

    old_start: int
    old_len: int
    new_start: int
    new_len: int

    @property
    def old_end(self) -> int:
        return self.old_start + self.old_len - 1

    @property
    def new_end(self) -> int:
        return self.new_start + self.new_len - 1

    @property
    def delta(self) -> int:
        return self.new_len - self.old_len

    def outside(self, start: int, end: int) -> bool:
        """True when either touched side extends beyond ``[start, end]``."""
        old_out = self.old_len > 0 and (self.old_start < start or self.old_end > end)
        new_out = self.new_len > 0 and (self.new_start < start or self.new_end > end)
        return old_out or new_out

    def describe(self) -> str:
        return f"-{self.old_start},{self.old_len} +{self.new_start},{self.new_len}"


def parse_hunks(diff_text: str) -> list[Hunk]:
    hunks: list[Hunk] = []
    for line in diff_text.splitlines():
        m = HUNK_HEADER.match(line)
        if m is None:
            continue
        old_start, old_len, new_start, new_len = m.groups()
        hunks.append(
            Hunk(
                old_start=int(old_start),
                # An omitted length means one line.
                old_len=int(old_len) if old_len is not None else 1,
                new_start=int(new_start),
                new_len=int(new_len) if new_len is not None else 1,
            )
        )
    return hunks


def net_delta(hunks: list[Hunk]) -> int:
    return sum(h.delta for h in hunks)


def is_binary_diff(diff_text: str) -> bool:
    return any(line.startswith("Binary files ") for line in diff_text.splitlines())
