"""
Composable changeset filters.

A filter is any callable taking a Changeset and returning a new one. Pipelines
are assembled from the helpers here and handed to the import phase.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Sequence, Tuple

from .models import Changeset, DiffEntry
from .submodule_filter import move_submodule_commit_to_text_file


logger = logging.getLogger(__name__)

ChangesetFilter = Callable[[Changeset], Changeset]


def identity(changeset: Changeset) -> Changeset:
    return changeset


def compose(*filters: ChangesetFilter) -> ChangesetFilter:
    """Chain filters, applying them left to right."""

    def _composed(changeset: Changeset) -> Changeset:
        for fn in filters:
            changeset = fn(changeset)
        return changeset

    return _composed


def move_directories(
    changeset: Changeset, mapping: Sequence[Tuple[str, str]]
) -> Changeset:
    """Rewrite path prefixes between repository layouts.

    Only the first matching prefix applies to a given diff, so more specific
    prefixes must come first. The ``--- a/`` and ``+++ b/`` header lines of the
    body are rewritten along with the path.
    """
    diffs: List[DiffEntry] = []
    for diff in changeset.diffs:
        for src, dst in mapping:
            if not diff.path.startswith(src):
                continue
            new_path = dst + diff.path[len(src):]
            header_re = re.compile(
                r"^(?P<marker>---|\+\+\+) (?P<side>[ab])/" + re.escape(src), re.MULTILINE
            )
            body = header_re.sub(
                lambda m: f"{m.group('marker')} {m.group('side')}/{dst}", diff.body
            )
            logger.debug(f"Moved {diff.path} -> {new_path}")
            diff = DiffEntry(path=new_path, body=body)
            break
        diffs.append(diff)
    return changeset.with_diffs(diffs)


def directory_filter(mapping: Sequence[Tuple[str, str]]) -> ChangesetFilter:
    mapping = list(mapping)
    return lambda changeset: move_directories(changeset, mapping)


def submodule_text_file_filter(submodule_path: str, text_file_path: str) -> ChangesetFilter:
    return lambda changeset: move_submodule_commit_to_text_file(
        changeset, submodule_path, text_file_path
    )
