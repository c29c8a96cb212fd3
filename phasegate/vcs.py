"""
Thin synchronous wrapper around the git command line.

Every query returns ``None`` (or an empty result) when git cannot answer,
after logging why. Callers that need the data for a hard gate use
``require`` to turn that into a GateEnvironmentError.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Sequence, TypeVar

from .errors import GateEnvironmentError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def require(value: T | None, what: str) -> T:
    """Return ``value`` or raise when git could not provide it."""
    if value is None:
        raise GateEnvironmentError(f"git could not provide {what}")
    return value


class GitRepo:
    """Read-only access to a git working copy."""

    def __init__(self, root: Path, *, git: str = "git", timeout: float = 60.0):
        self.root = root
        self.git = git
        self.timeout = timeout

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[bytes] | None:
        cmd = [self.git, "-C", str(self.root), *args]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("git unavailable (%s): %s", " ".join(args[:2]), e)
            return None
        if result.returncode != 0:
            logger.debug(
                "git %s exited %d: %s",
                " ".join(args),
                result.returncode,
                result.stderr.decode("utf-8", errors="replace").strip(),
            )
        return result

    def _text(self, args: Sequence[str]) -> str | None:
        result = self._run(args)
        if result is None or result.returncode != 0:
            return None
        return result.stdout.decode("utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Revisions
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        out = self._text(["rev-parse", "--is-inside-work-tree"])
        return out is not None and out.strip() == "true"

    def rev_parse(self, rev: str) -> str | None:
        out = self._text(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        return out.strip() if out else None

    def first_parent(self, rev: str) -> str | None:
        return self.rev_parse(f"{rev}^1")

    def merge_base(self, a: str, b: str) -> str | None:
        out = self._text(["merge-base", a, b])
        return out.strip() if out else None

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def show(self, rev: str, path: str) -> bytes | None:
        """Blob content of ``path`` at ``rev``; ``None`` when absent."""
        result = self._run(["show", f"{rev}:{path}"])
        if result is None or result.returncode != 0:
            return None
        return result.stdout

    def show_index(self, path: str) -> bytes | None:
        """Staged blob content of ``path``; ``None`` when not in the index."""
        result = self._run(["show", f":{path}"])
        if result is None or result.returncode != 0:
            return None
        return result.stdout

    def read_worktree(self, path: str) -> bytes | None:
        target = self.root / path
        if not target.is_file():
            return None
        return target.read_bytes()

    # ------------------------------------------------------------------
    # Diffs
    # ------------------------------------------------------------------

    def diff(self, diff_args: Sequence[str], *, paths: Sequence[str] = (), extra: Sequence[str] = ()) -> str | None:
        args = ["diff", "--no-color", "--no-ext-diff", *extra, *diff_args]
        if paths:
            args += ["--", *paths]
        return self._text(args)

    def changed_files(self, diff_args: Sequence[str]) -> list[str] | None:
        """Paths touched by a diff, excluding deletions."""
        out = self.diff(diff_args, extra=["--name-only", "--diff-filter=d"])
        if out is None:
            return None
        return sorted({line.strip() for line in out.splitlines() if line.strip()})

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def grep_fixed(self, needle: str, *, exclude: Sequence[str] = ()) -> list[str] | None:
        """Tracked files containing ``needle`` verbatim."""
        args = ["grep", "-l", "-F", "-e", needle, "--", "."]
        args += [f":(exclude){p}" for p in exclude]
        result = self._run(args)
        if result is None:
            return None
        # Exit status 1 means "no match".
        if result.returncode == 1:
            return []
        if result.returncode != 0:
            return None
        text = result.stdout.decode("utf-8", errors="replace")
        return sorted(line.strip() for line in text.splitlines() if line.strip())
