"""
Rewrite submodule pointer diffs into diffs of a plain text file.
"""

from __future__ import annotations

import logging
from typing import List

from .models import Changeset, DiffEntry
from .patch import parse_submodule_revisions


logger = logging.getLogger(__name__)


def make_submodule_diff(path: str, old_rev: str, new_rev: str) -> str:
    return (
        f"--- a/{path}\n"
        f"+++ b/{path}\n"
        "@@ -1 +1 @@\n"
        f"-Subproject commit {old_rev}\n"
        f"+Subproject commit {new_rev}\n"
    )


def move_submodule_commit_to_text_file(
    changeset: Changeset, submodule_path: str, text_file_with_rev: str
) -> Changeset:
    """
    Convert a subproject commit change into a change of a text file containing:

        Subproject commit deadbeef

    Diffs for other paths are passed through in place. Every diff at
    ``submodule_path`` is rewritten on its own; if a diff lacks either the
    old or the new commit line it is forwarded untouched, which makes the
    eventual patch application fail for a human to look at.
    """
    diffs: List[DiffEntry] = []
    for diff in changeset.diffs:
        if diff.path != submodule_path:
            diffs.append(diff)
            continue

        old_rev, new_rev = parse_submodule_revisions(diff.body)
        if old_rev is None or new_rev is None:
            logger.warning(
                f"Skipping change to '{submodule_path}' (-> {text_file_with_rev}); "
                "this will certainly fail."
            )
            diffs.append(diff)
            continue

        changeset = changeset.with_debug_message(
            "Updating submodule at %s (external path %s) to %s (from %s)",
            text_file_with_rev,
            submodule_path,
            new_rev,
            old_rev,
        )
        diffs.append(
            DiffEntry(
                path=text_file_with_rev,
                body=make_submodule_diff(text_file_with_rev, old_rev, new_rev),
            )
        )

    return changeset.with_diffs(diffs)
