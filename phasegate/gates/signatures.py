"""
Signature tokens and the consumed-token audit table.

A token is ``{actor}{DDMMYYYYHHMM}``, e.g. ``alice191020261405``. Tokens are
globally one-time-use. The audit table is the authoritative record of consumed
tokens; rows are only ever appended:

    | Signature | Actor | Consumed | Purpose |
    |-----------|-------|----------|---------|
    | alice191020261405 | alice | 2026-10-19 14:05 UTC | Refinement approval for WP-42 |

A search of the tracked corpus is an advisory backstop: a hit is logged but
never blocks a signature.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence

from ..documents.fields import table_rows
from ..errors import DuplicateSignature, MalformedSubDocument, ValidationError
from ..vcs import GitRepo

logger = logging.getLogger(__name__)

WORK_ITEM_IN_TEXT = re.compile(r"\bWP-[A-Za-z0-9][A-Za-z0-9-]*\b")

AUDIT_HEADER = (
    "# Signature Audit\n"
    "\n"
    "Consumed signature tokens. Append only: never edit or remove rows.\n"
    "\n"
    "| Signature | Actor | Consumed | Purpose |\n"
    "|-----------|-------|----------|---------|\n"
)


@dataclass(frozen=True)
class SignatureToken:
    raw: str
    actor: str
    signed_for: datetime

    @classmethod
    def parse(cls, token: str, pattern: str = r"^([a-z]+)([0-9]{12})$") -> SignatureToken:
        token = token.strip()
        m = re.match(pattern, token)
        if m is None:
            raise ValidationError(
                f"Invalid signature token {token!r}: expected {{actor}}{{DDMMYYYYHHMM}}",
                code="SIGNATURE_FORMAT",
            )
        actor, digits = m.group(1), m.group(2)
        try:
            signed_for = datetime.strptime(digits, "%d%m%Y%H%M")
        except ValueError:
            raise ValidationError(
                f"Invalid signature token {token!r}: {digits} is not a real DDMMYYYYHHMM time",
                code="SIGNATURE_FORMAT",
            ) from None
        return cls(raw=token, actor=actor, signed_for=signed_for)


@dataclass(frozen=True)
class ConsumedSignature:
    signature: str
    actor: str
    consumed: str
    purpose: str

    @property
    def work_item_id(self) -> str | None:
        m = WORK_ITEM_IN_TEXT.search(self.purpose)
        return m.group(0) if m else None


def parse_signature_table(text: str) -> list[ConsumedSignature]:
    """Rows of a signature audit table; rows with fewer than four cells are malformed."""
    consumed: list[ConsumedSignature] = []
    for cells in table_rows(text):
        if cells and cells[0].lower() == "signature":
            continue
        if len(cells) < 4:
            raise MalformedSubDocument(f"signature audit row has {len(cells)} cells, expected 4: {cells}")
        signature, actor, when, purpose = (c.strip("`") for c in cells[:4])
        if not signature or not purpose:
            raise MalformedSubDocument(f"signature audit row missing signature or purpose: {cells}")
        consumed.append(ConsumedSignature(signature, actor, when, purpose))
    return consumed


class SignatureAudit:
    """Append-only table of consumed tokens."""

    def __init__(self, path: Path):
        self.path = path

    def read_text(self) -> str:
        if not self.path.exists():
            return ""
        try:
            return self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSubDocument(f"signature audit is not valid UTF-8: {self.path}", details=[str(e)]) from e

    def entries(self) -> list[ConsumedSignature]:
        return parse_signature_table(self.read_text())

    def is_consumed(self, token: str) -> bool:
        # A whole-token mention anywhere counts, so a hand-mangled row cannot hide a token.
        mention = re.compile(rf"(?<![A-Za-z0-9]){re.escape(token)}(?![0-9])")
        if mention.search(self.read_text()):
            return True
        return any(e.signature == token for e in self.entries())

    def ensure_unused(self, token: str) -> None:
        if self.is_consumed(token):
            raise DuplicateSignature(f"Signature token {token} was already consumed ({self.path.name})")

    def record(self, token: SignatureToken, *, purpose: str, consumed_at: datetime) -> ConsumedSignature:
        row = ConsumedSignature(
            signature=token.raw,
            actor=token.actor,
            consumed=consumed_at.strftime("%Y-%m-%d %H:%M UTC"),
            purpose=purpose,
        )
        text = self.read_text()
        if not text.strip():
            text = AUDIT_HEADER
        elif not text.endswith("\n"):
            text += "\n"
        text += f"| {row.signature} | {row.actor} | {row.consumed} | {row.purpose} |\n"
        self._write(text)
        return row

    def restore(self, text: str) -> None:
        """Put back the table as read before a ``record`` whose gate event was not written."""
        if text:
            self._write(text)
        else:
            self.path.unlink(missing_ok=True)

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def corpus_mentions(git: GitRepo, token: str, *, exclude: Sequence[str] = ()) -> list[str]:
    """
    Tracked files that already mention ``token``.

    Advisory only: an empty list when git is unavailable.
    """
    hits = git.grep_fixed(token, exclude=exclude)
    if hits is None:
        logger.warning("Corpus search for signature token skipped: git unavailable")
        return []
    return hits
