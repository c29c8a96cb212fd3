"""
Manifest verification: declared edit windows against real repository diffs.

Each touched file carries an EditManifestEntry. The verifier re-derives the
before/after content, hunks and line delta from git and reports every
disagreement; it never changes repository state.
"""

from .model import EditManifestEntry

__all__ = ["EditManifestEntry"]
