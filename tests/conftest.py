"""Pytest configuration and fixtures."""

from __future__ import annotations

import shutil
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from phasegate.config import GateConfig

REFINEMENT_TEMPLATE = """\
# Technical Refinement: {wp}

- WP_ID: {wp}
- CLEARLY_COVERS_VERDICT: {verdict}
- CLEARLY_COVERS_REASON: The current policy already covers a text-only change.
- ENRICHMENT_NEEDED: {enrichment}
- REASON_NO_ENRICHMENT: Existing anchors and windows are sufficient.

## TECHNICAL_REFINEMENT
Replace the greeting line with a three-line banner.

## GAPS_IDENTIFIED
None.

## RED_TEAM_ADVISORY
Low risk; single file.

## PRIMITIVES
- text edit
"""

PACKET_TEMPLATE = """\
# Work Packet: {wp}

- WP_ID: {wp}
- IN_SCOPE_PATHS:
  - `src/greeting.txt`
"""


class FakeClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """Repository root with an empty governance state directory."""
    root = tmp_path / "repo"
    (root / ".gov" / "gates").mkdir(parents=True)
    (root / ".gov" / "packets").mkdir(parents=True)
    (root / ".gov" / "refinements").mkdir(parents=True)
    return root


@pytest.fixture
def config(repo: Path) -> GateConfig:
    return GateConfig(root=repo, corpus_search="off")


@pytest.fixture
def make_refinement(repo: Path) -> Callable[..., Path]:
    """Write a refinement document and return its path."""

    def _make(wp: str = "WP-42", *, verdict: str = "PASS", enrichment: str = "NO") -> Path:
        path = repo / ".gov" / "refinements" / f"{wp}.md"
        path.write_text(REFINEMENT_TEMPLATE.format(wp=wp, verdict=verdict, enrichment=enrichment), encoding="utf-8")
        return path

    return _make


@pytest.fixture
def make_packet(repo: Path) -> Callable[..., Path]:
    """Write a minimal work packet (no manifest blocks) and return its path."""

    def _make(wp: str = "WP-42", body: str | None = None) -> Path:
        path = repo / ".gov" / "packets" / f"{wp}.md"
        path.write_text(body if body is not None else PACKET_TEMPLATE.format(wp=wp), encoding="utf-8")
        return path

    return _make


class GitSandbox:
    """A throwaway git repository driven through subprocess."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.git("init", "-q")
        self.git("symbolic-ref", "HEAD", "refs/heads/main")
        self.git("config", "core.autocrlf", "false")

    def git(self, *args: str) -> str:
        result = subprocess.run(
            [
                "git",
                "-c",
                "user.name=Gate Test",
                "-c",
                "user.email=gate-test@example.com",
                "-c",
                "commit.gpgsign=false",
                *args,
            ],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout

    def write(self, rel: str, content: str | bytes) -> Path:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_bytes(content.encode("utf-8"))
        return path

    def commit(self, message: str) -> str:
        self.git("add", "-A")
        self.git("commit", "-q", "-m", message)
        return self.git("rev-parse", "HEAD").strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> GitSandbox:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return GitSandbox(tmp_path / "gitrepo")


@pytest.fixture
def git_state_repo(repo: Path) -> GitSandbox:
    """The governed ``repo`` itself as a git repository."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return GitSandbox(repo)
