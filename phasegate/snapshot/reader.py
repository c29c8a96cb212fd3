"""
Whitelist-only file access for snapshot generation.

The input set is fixed before anything is parsed: the pointer file, the
document it names, the configured whitelist, the legacy ledger when present,
and every ``*.json`` file in the ledger directory (sorted). Any read outside
that set raises ``WhitelistViolation``. Each file is read from disk once.
"""

from __future__ import annotations

import logging
import posixpath
import re
from pathlib import Path, PurePosixPath

from ..config import GateConfig
from ..digest import sha1_hex, sha256_hex
from ..errors import InputMissing, MalformedSubDocument, UnparseablePointer, ValidationError, WhitelistViolation

logger = logging.getLogger(__name__)


def normalize_rel_path(raw: str) -> str:
    """Repository-relative POSIX path; absolute or escaping paths are rejected."""
    value = (raw or "").strip().replace("\\", "/")
    if not value:
        raise ValidationError("empty input path")
    if PurePosixPath(value).is_absolute() or re.match(r"^[A-Za-z]:/", value):
        raise ValidationError(f"absolute paths are not allowed: {raw}")
    normalized = posixpath.normpath(value)
    if normalized == ".." or normalized.startswith("../"):
        raise ValidationError(f"path escapes the repository root: {raw}")
    return normalized


def resolve_pointer(text: str, pattern: str) -> str:
    """Path named by a pointer file (first match of ``pattern``)."""
    m = re.search(pattern, text or "")
    if m is None:
        raise UnparseablePointer(f"pointer file names no document (pattern {pattern})")
    try:
        return normalize_rel_path(m.group(1))
    except ValidationError as e:
        raise UnparseablePointer(f"pointer target is not a valid path: {m.group(1)}", details=[e.message]) from e


class WhitelistReader:
    """
    Cached, whitelist-enforcing reader rooted at the repository.

    Args:
        root: Repository root
        paths: Repository-relative paths that may be read
    """

    def __init__(self, root: Path, paths: list[str]):
        self.root = root
        self.paths = sorted({normalize_rel_path(p) for p in paths})
        self._allowed = set(self.paths)
        self._cache: dict[str, bytes] = {}

    def read_bytes(self, rel_path: str) -> bytes:
        rel = normalize_rel_path(rel_path)
        if rel not in self._allowed:
            raise WhitelistViolation(f"attempted read of non-whitelisted path: {rel}")
        if rel not in self._cache:
            path = self.root / rel
            if not path.is_file():
                raise InputMissing(f"snapshot input is missing: {rel}")
            self._cache[rel] = path.read_bytes()
        return self._cache[rel]

    def read_text(self, rel_path: str) -> str:
        try:
            return self.read_bytes(rel_path).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSubDocument(f"snapshot input is not valid UTF-8: {rel_path}", details=[str(e)]) from e

    def sha256(self, rel_path: str) -> str:
        return sha256_hex(self.read_bytes(rel_path))

    def sha1(self, rel_path: str) -> str:
        return sha1_hex(self.read_bytes(rel_path))

    def allow(self, paths: list[str]) -> None:
        """Extend the whitelist; used once the pointer target is known."""
        self._allowed.update(normalize_rel_path(p) for p in paths)
        self.paths = sorted(self._allowed)

    def reads(self) -> int:
        return len(self._cache)


def _rel_to_root(config: GateConfig, path: Path) -> str:
    return path.relative_to(config.root).as_posix()


def ledger_input_paths(config: GateConfig) -> list[str]:
    """Per-work-item ledger files, sorted by name."""
    if not config.ledger_dir.is_dir():
        return []
    files = sorted(p for p in config.ledger_dir.iterdir() if p.is_file() and p.name.lower().endswith(".json"))
    return [_rel_to_root(config, p) for p in files]


def resolve_inputs(config: GateConfig) -> tuple[WhitelistReader, str]:
    """
    Compute the snapshot input set.

    The pointer is read through the returned reader, so it is read from disk
    once for the whole build.

    Returns:
        (reader over the sorted input paths, path of the document the pointer names)
    """
    policy = config.snapshot
    pointer = normalize_rel_path(policy.pointer)
    reader = WhitelistReader(config.root, [pointer])
    target = resolve_pointer(reader.read_text(pointer), policy.pointer_pattern)

    fixed = [target, *(normalize_rel_path(p) for p in policy.whitelist)]
    for rel in fixed:
        if not (config.root / rel).is_file():
            raise InputMissing(f"snapshot input is missing: {rel}")

    optional = []
    if config.legacy_ledger_path.is_file():
        optional.append(_rel_to_root(config, config.legacy_ledger_path))

    reader.allow(fixed + optional + ledger_input_paths(config))
    logger.debug("Snapshot inputs: %s", ", ".join(reader.paths))
    return reader, target
