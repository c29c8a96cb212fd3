"""
Labeled-field extraction from human-facing markdown documents.

Only a few labeled fields are machine-read; free prose is ignored. A field is
a list item of the form ``- LABEL: value`` or ``- **Label**: value``. Labels
are normalized to upper snake case so ``**Target File**`` and ``TARGET_FILE``
name the same field. YAML front matter, when present, is read with
python-frontmatter and takes precedence over body fields.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import frontmatter
import yaml

from ..errors import MalformedSubDocument, ValidationError

# - **Label**: value   |   - LABEL: value
FIELD_PATTERN = re.compile(
    r"^\s*[-*]\s+(?:\*\*(?P<bold>[^*]+?)\*\*|(?P<plain>[A-Z][A-Z0-9_]*(?: \([^)]*\))*))\s*:\s*(?P<value>.*?)\s*$"
)
HEADING_PATTERN = re.compile(r"^#{2,6}\s+(?P<title>.+?)\s*#*\s*$")
FENCE_PATTERN = re.compile(r"^```[A-Za-z0-9_-]*\s*$")

PLACEHOLDER_PATTERNS = (
    re.compile(r"^PENDING$"),
    re.compile(r"^<fill", re.IGNORECASE),
    re.compile(r"^<paste", re.IGNORECASE),
    re.compile(r"^<pending>$", re.IGNORECASE),
)


def normalize_label(label: str) -> str:
    label = re.sub(r"\([^)]*\)", "", label)
    return re.sub(r"[\s\-]+", "_", label.strip()).upper().strip("_")


def is_placeholder(value: str | None) -> bool:
    """True for empty values and template placeholders left unfilled."""
    v = (value or "").strip().strip("`").strip()
    if not v:
        return True
    return any(p.search(v) for p in PLACEHOLDER_PATTERNS)


def strip_code(value: str) -> str:
    """Remove surrounding inline-code backticks and whitespace."""
    return value.strip().strip("`").strip()


def extract_section(content: str, header: str) -> str | None:
    """Extract content between ## header and next ## or EOF.

    Args:
        content: Markdown content
        header: Section header text (without ##)

    Returns:
        Section content or None if not found
    """
    pattern = rf"^## {re.escape(header)}\s*\n(.*?)(?=^## |\Z)"
    match = re.search(pattern, content, re.MULTILINE | re.DOTALL)
    return match.group(1).strip() if match else None


def table_rows(content: str) -> list[list[str]]:
    """
    Cells of every pipe-table row in ``content``.

    Separator rows (``|---|``) are dropped; header rows are returned like any
    other row and left to the caller to recognize.
    """
    rows: list[list[str]] = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line.startswith("|"):
            continue
        cells = [c.strip() for c in line.strip("|").split("|")]
        if cells and all(re.fullmatch(r":?-{3,}:?", c) for c in cells if c):
            continue
        rows.append(cells)
    return rows


@dataclass(frozen=True)
class LabeledField:
    label: str
    value: str
    line: int  # 1-based line number within the body


@dataclass
class LabeledDocument:
    """A parsed document: front matter, headings and labeled fields in order."""

    path: Path | None
    metadata: dict[str, Any]
    body: str
    fields: list[LabeledField] = field(default_factory=list)
    headings: list[str] = field(default_factory=list)

    @property
    def lines(self) -> list[str]:
        return self.body.splitlines()

    def get(self, label: str, default: str | None = None) -> str | None:
        """First value for ``label``; front matter wins over body fields."""
        key = normalize_label(label)
        for meta_key, meta_value in self.metadata.items():
            if normalize_label(str(meta_key)) == key and meta_value is not None:
                return str(meta_value).strip()
        for f in self.fields:
            if f.label == key:
                return f.value
        return default

    def has_heading(self, name: str) -> bool:
        pattern = re.compile(rf"^{re.escape(name)}\b", re.IGNORECASE)
        return any(pattern.match(h) for h in self.headings)

    def section(self, header: str) -> str | None:
        return extract_section(self.body, header)

    def fenced_block_after(self, label: str) -> str | None:
        """Body of the fenced code block following ``- LABEL:``; None if the label is absent."""
        key = normalize_label(label)
        lines = self.lines
        for f in self.fields:
            if f.label != key:
                continue
            i = f.line
            while i < len(lines) and not lines[i].strip():
                i += 1
            if i >= len(lines) or not FENCE_PATTERN.match(lines[i].strip()):
                return ""
            block: list[str] = []
            for line in lines[i + 1:]:
                if line.strip() == "```":
                    break
                block.append(line)
            return "\n".join(block).strip()
        return None

    def list_after(self, label: str) -> list[str]:
        """Nested list items under ``- LABEL:`` (or its inline comma-separated value)."""
        key = normalize_label(label)
        lines = self.lines
        for f in self.fields:
            if f.label != key:
                continue
            if f.value:
                return [v.strip() for v in f.value.split(",") if v.strip()]
            items: list[str] = []
            indent = len(lines[f.line - 1]) - len(lines[f.line - 1].lstrip())
            for line in lines[f.line:]:
                if not line.strip():
                    continue
                cur_indent = len(line) - len(line.lstrip())
                m = re.match(r"^\s*[-*]\s+(.*)$", line)
                if m is None or cur_indent <= indent:
                    break
                items.append(m.group(1).strip())
            return items
        return []


def parse_document(text: str, path: Path | None = None) -> LabeledDocument:
    """Parse markdown text with optional front matter into a LabeledDocument."""
    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        where = str(path) if path else "document"
        raise ValidationError(f"invalid front matter in {where}", details=[str(e)]) from e

    body = post.content
    fields: list[LabeledField] = []
    headings: list[str] = []
    in_fence = False
    for idx, line in enumerate(body.splitlines(), start=1):
        if line.strip().startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        h = HEADING_PATTERN.match(line)
        if h:
            headings.append(h.group("title"))
            continue
        m = FIELD_PATTERN.match(line)
        if m:
            label = m.group("bold") or m.group("plain") or ""
            fields.append(LabeledField(normalize_label(label), m.group("value"), idx))

    return LabeledDocument(
        path=path,
        metadata=dict(post.metadata),
        body=body,
        fields=fields,
        headings=headings,
    )


def load_document(path: Path) -> LabeledDocument:
    if not path.is_file():
        raise ValidationError(f"document not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedSubDocument(f"document is not valid UTF-8: {path}", details=[str(e)]) from e
    return parse_document(text, path)
