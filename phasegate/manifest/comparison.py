"""
Which "before" and "after" states a manifest is verified against.

Precedence: explicit range > explicit single revision > staged changes >
working-tree changes > implicit since-last-commit (packet merge base, then
merge-base with the main branch, then the parent of HEAD).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from ..errors import GateEnvironmentError, ValidationError
from ..vcs import GitRepo

logger = logging.getLogger(__name__)

# git's well-known empty tree, used as the base of a root commit
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

Mode = Literal["range", "staged", "worktree"]


@dataclass(frozen=True)
class Comparison:
    mode: Mode
    base: str
    head: str | None = None
    source: str = ""

    def diff_args(self) -> list[str]:
        if self.mode == "range":
            return [self.base, self.head or "HEAD"]
        if self.mode == "staged":
            return ["--cached", self.base]
        return [self.base]

    def before(self, git: GitRepo, path: str) -> bytes | None:
        if self.base == EMPTY_TREE:
            return None
        return git.show(self.base, path)

    def after(self, git: GitRepo, path: str) -> bytes | None:
        if self.mode == "range":
            return git.show(self.head or "HEAD", path)
        if self.mode == "staged":
            return git.show_index(path)
        return git.read_worktree(path)

    def describe(self) -> str:
        if self.mode == "range":
            return f"{self.base[:12]}..{(self.head or 'HEAD')[:12]} ({self.source})"
        return f"{self.mode} vs {self.base[:12]} ({self.source})"

    def to_dict(self) -> dict[str, str | None]:
        return {"mode": self.mode, "base": self.base, "head": self.head, "source": self.source}


def _resolve_rev(git: GitRepo, rev: str) -> str:
    sha = git.rev_parse(rev)
    if sha is None:
        raise ValidationError(f"Cannot resolve revision: {rev}")
    return sha


def resolve_comparison(
    git: GitRepo,
    *,
    range_spec: str | None = None,
    rev: str | None = None,
    staged: bool = False,
    worktree: bool = False,
    merge_base_sha: str | None = None,
    main_ref: str = "main",
) -> Comparison:
    """Pick the comparison range by precedence."""
    if not git.is_repository():
        raise GateEnvironmentError(f"Not a git repository: {git.root}")

    if range_spec:
        if ".." not in range_spec:
            raise ValidationError(f"Range must be BASE..HEAD (got {range_spec!r})")
        base, head = range_spec.split("..", 1)
        return Comparison("range", _resolve_rev(git, base), _resolve_rev(git, head or "HEAD"), "explicit range")

    if rev:
        head = _resolve_rev(git, rev)
        base = git.first_parent(head) or EMPTY_TREE
        return Comparison("range", base, head, f"revision {rev}")

    if staged:
        return Comparison("staged", "HEAD", source="staged (requested)")
    if worktree:
        return Comparison("worktree", "HEAD", source="working tree (requested)")

    if git.changed_files(["--cached", "HEAD"]):
        return Comparison("staged", "HEAD", source="staged changes")
    if git.changed_files(["HEAD"]):
        return Comparison("worktree", "HEAD", source="working-tree changes")

    head = git.rev_parse("HEAD")
    if head is None:
        raise GateEnvironmentError("No changes and no HEAD commit to compare against")

    if merge_base_sha:
        base = git.rev_parse(merge_base_sha)
        if base is not None and base != head:
            return Comparison("range", base, head, "packet merge base")
        logger.warning("Packet MERGE_BASE_SHA %s not usable; falling back", merge_base_sha)

    base = git.merge_base(main_ref, "HEAD")
    if base is not None and base != head:
        return Comparison("range", base, head, f"merge-base with {main_ref}")

    parent = git.first_parent(head)
    if parent is None:
        raise GateEnvironmentError("No changes, no merge base and HEAD has no parent")
    return Comparison("range", parent, head, "last commit")
