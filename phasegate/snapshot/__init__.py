"""
Governance snapshot: a deterministic, whitelist-only audit document.

Components:
- reader: input set resolution and whitelist-enforcing cached reads
- parsers: task board, traceability, signature audit and ledger parsers
- builder: snapshot assembly, rendering, self-check and validation
"""

from .builder import (
    SNAPSHOT_SCHEMA_VERSION,
    SnapshotBuilder,
    load_snapshot,
    render_snapshot,
    validate_snapshot,
    validate_snapshot_text,
)
from .reader import WhitelistReader, resolve_inputs

__all__ = [
    "SNAPSHOT_SCHEMA_VERSION",
    "SnapshotBuilder",
    "WhitelistReader",
    "load_snapshot",
    "render_snapshot",
    "resolve_inputs",
    "validate_snapshot",
    "validate_snapshot_text",
]
