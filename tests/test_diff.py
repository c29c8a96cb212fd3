from __future__ import annotations

import hashlib

from phasegate.digest import canonical_digest, manifest_digest, match_digest
from phasegate.manifest.diff import Hunk, is_binary_diff, net_delta, parse_hunks

DIFF = """\
diff --git a/src/greeting.txt b/src/greeting.txt
index 1111111..2222222 100644
--- a/src/greeting.txt
+++ b/src/greeting.txt
@@ -2 +2,3 @@ line one
-line two
+banner one
+banner two
+banner three
@@ -10,2 +11,0 @@
-gone
-also gone
@@ -20,0 +19 @@
+inserted
"""


def test_parse_hunks() -> None:
    assert parse_hunks(DIFF) == [
        Hunk(old_start=2, old_len=1, new_start=2, new_len=3),
        Hunk(old_start=10, old_len=2, new_start=11, new_len=0),
        Hunk(old_start=20, old_len=0, new_start=19, new_len=1),
    ]


def test_net_delta() -> None:
    assert net_delta(parse_hunks(DIFF)) == 2 - 2 + 1
    assert net_delta([]) == 0


def test_window_checks_touched_sides_only() -> None:
    replace = Hunk(old_start=2, old_len=1, new_start=2, new_len=3)
    assert not replace.outside(1, 5)
    assert replace.outside(3, 5)
    # new side runs to line 4
    assert replace.outside(1, 3)

    insertion = Hunk(old_start=20, old_len=0, new_start=21, new_len=1)
    assert not insertion.outside(21, 21)

    deletion = Hunk(old_start=10, old_len=2, new_start=9, new_len=0)
    assert not deletion.outside(10, 11)
    assert deletion.outside(10, 10)


def test_binary_diff() -> None:
    assert is_binary_diff("diff --git a/x.png b/x.png\nBinary files a/x.png and b/x.png differ\n")
    assert not is_binary_diff(DIFF)


def test_manifest_digest_normalizes_line_endings() -> None:
    lf = b"one\ntwo\n"
    crlf = b"one\r\ntwo\r\n"
    assert manifest_digest(lf) == manifest_digest(crlf) == hashlib.sha1(lf).hexdigest()

    binary = b"\x00\x01\r\n"
    assert manifest_digest(binary) == hashlib.sha1(binary).hexdigest()


def test_match_digest_variants() -> None:
    lf = b"one\ntwo\n"
    assert match_digest(hashlib.sha1(lf).hexdigest().upper(), lf).exact

    crlf_digest = hashlib.sha1(b"one\r\ntwo\r\n").hexdigest()
    match = match_digest(crlf_digest, lf)
    assert match.matched and match.variant == "crlf"

    mixed = b"one\r\ntwo\n"
    match = match_digest(hashlib.sha1(mixed).hexdigest(), mixed)
    assert match.matched and match.variant == "raw"

    assert not match_digest("0" * 40, lf).matched


def test_canonical_digest_ignores_key_order() -> None:
    assert canonical_digest({"a": 1, "b": [1, 2]}) == canonical_digest({"b": [1, 2], "a": 1})
    assert canonical_digest({"a": 1}) != canonical_digest({"a": 2})
