"""
Rendering changesets to mailbox patches and parsing ``git diff`` output.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import List, Optional, Tuple

from . import __version__
from .models import Changeset, DiffEntry


SUBPROJECT_COMMIT_OLD = "-Subproject commit "
SUBPROJECT_COMMIT_NEW = "+Subproject commit "

_QUOTED_PATH = r'"(?:[^"\\]|\\.)*"'
_DIFF_HEADER_RE = re.compile(
    rf"^diff --git (?P<old>{_QUOTED_PATH}|a/.+?) (?P<new>{_QUOTED_PATH}|b/.+)$"
)

_C_ESCAPES = {
    "a": b"\a", "b": b"\b", "f": b"\f", "n": b"\n", "r": b"\r",
    "t": b"\t", "v": b"\v", '"': b'"', "\\": b"\\",
}


def unquote_path(path: str) -> str:
    """Undo git's C-style quoting of a path (``"b/caf\\303\\251.txt"``).

    Unquoted paths are returned as-is. Octal escapes are raw bytes and are
    decoded as UTF-8, keeping undecodable bytes as surrogates.
    """
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    inner = path[1:-1]
    raw = bytearray()
    i = 0
    while i < len(inner):
        char = inner[i]
        if char != "\\" or i + 1 >= len(inner):
            raw += char.encode("utf-8", errors="surrogateescape")
            i += 1
            continue
        escape = inner[i + 1]
        octal = inner[i + 1:i + 4]
        if len(octal) == 3 and all(c in "01234567" for c in octal):
            raw.append(int(octal, 8) & 0xFF)
            i += 4
        else:
            raw += _C_ESCAPES.get(escape, escape.encode("utf-8", errors="surrogateescape"))
            i += 2
    return raw.decode("utf-8", errors="surrogateescape")


def render_patch(changeset: Changeset) -> str:
    """Render a changeset as a patch that ``git am`` accepts."""
    timestamp = changeset.timestamp or datetime.fromtimestamp(0, tz=timezone.utc)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    patch = (
        f"From {changeset.id} Mon Sep 17 00:00:00 2001\n"
        f"From: {changeset.author}\n"
        f"Date: {format_datetime(timestamp)}\n"
        f"Subject: [PATCH] {changeset.subject}\n\n"
        f"{changeset.message}\n---\n\n"
    )
    for diff in changeset.diffs:
        patch += f"diff --git a/{diff.path} b/{diff.path}\n{diff.body}"
    patch += f"--\nimportit {__version__}\n"
    return patch


def parse_patch(text: str) -> List[DiffEntry]:
    """Split ``git diff`` output into per-file entries, keeping their order.

    The entry path is the post-image (``b/``) path, unquoted when git quoted
    it. Anything before the first header is ignored.
    """
    diffs: List[DiffEntry] = []
    path: Optional[str] = None
    body: List[str] = []

    def _flush() -> None:
        if path is None:
            return
        joined = "".join(body)
        if joined and not joined.endswith("\n"):
            # Command output loses its final newline
            joined += "\n"
        diffs.append(DiffEntry(path=path, body=joined))

    for line in text.splitlines(keepends=True):
        match = _DIFF_HEADER_RE.match(line.rstrip("\n"))
        if match:
            _flush()
            path = unquote_path(match.group("new"))[len("b/"):]
            body = []
        elif path is not None:
            body.append(line)
    _flush()
    return diffs


def parse_submodule_revisions(body: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (old, new) submodule commits recorded in a gitlink diff body.

    Every line is scanned since index and header lines precede the markers;
    the first occurrence of each marker wins.
    """
    old_rev: Optional[str] = None
    new_rev: Optional[str] = None
    for line in body.split("\n"):
        if old_rev is None and line.startswith(SUBPROJECT_COMMIT_OLD):
            old_rev = line[len(SUBPROJECT_COMMIT_OLD):].strip()
        elif new_rev is None and line.startswith(SUBPROJECT_COMMIT_NEW):
            new_rev = line[len(SUBPROJECT_COMMIT_NEW):].strip()
    return old_rev, new_rev
