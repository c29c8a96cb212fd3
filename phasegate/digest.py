"""
Content digests.

Manifest pre/post images use sha1 over line-ending-normalized bytes (LF is
canonical). Snapshot inputs and registry schemas use sha256; registry schemas
are hashed over canonical JSON so formatting changes never alter the digest.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any

_HEX40 = re.compile(r"^[0-9a-f]{40}$")


def is_binary(data: bytes) -> bool:
    return b"\x00" in data


def normalize_lf(data: bytes) -> bytes:
    return data.replace(b"\r\n", b"\n")


def to_crlf(data: bytes) -> bytes:
    return normalize_lf(data).replace(b"\n", b"\r\n")


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def manifest_digest(data: bytes) -> str:
    """Digest used in manifests: sha1 of LF-normalized text, raw bytes for binaries."""
    if is_binary(data):
        return sha1_hex(data)
    return sha1_hex(normalize_lf(data))


def is_manifest_digest(value: str) -> bool:
    return bool(_HEX40.match(value))


@dataclass(frozen=True)
class DigestMatch:
    """Outcome of comparing a declared digest against file content."""

    matched: bool
    variant: str | None = None  # "lf" | "crlf" | "raw"

    @property
    def exact(self) -> bool:
        return self.matched and self.variant == "lf"


def match_digest(declared: str, data: bytes) -> DigestMatch:
    """
    Compare a declared manifest digest with content.

    The LF-normalized digest is the canonical match. A CRLF rendering or the
    raw bytes are tolerated so a checkout with platform line endings still
    verifies, but the caller reports those as warnings.
    """
    declared = declared.strip().lower()
    if is_binary(data):
        return DigestMatch(sha1_hex(data) == declared, "raw")
    if sha1_hex(normalize_lf(data)) == declared:
        return DigestMatch(True, "lf")
    if sha1_hex(to_crlf(data)) == declared:
        return DigestMatch(True, "crlf")
    if sha1_hex(data) == declared:
        return DigestMatch(True, "raw")
    return DigestMatch(False)


def canonical_json(value: Any) -> str:
    """Canonical JSON serialization for deterministic hashing."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_digest(value: Any) -> str:
    return sha256_hex(canonical_json(value).encode("utf-8"))
