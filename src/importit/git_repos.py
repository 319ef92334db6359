"""
GitPython-backed source and destination repositories.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .git_manager import GitManager
from .models import Changeset, DiffEntry, GitRepositoryError
from .patch import parse_patch, parse_submodule_revisions, render_patch
from .repo_interface import DestinationRepo, SourceRepo


logger = logging.getLogger(__name__)

# Commit message trailer linking an exported commit to its destination revision
SOURCE_ID_MARKER = "sync-source-id"
PULL_REQUEST_BRANCH_PREFIX = "importit/pull-request"
DEFAULT_REMOTE = "origin"


class _GitRepo:
    """Shared plumbing for both repository roles."""

    def __init__(self, lock: Any, path: Path, branch: str) -> None:
        # The lock is owned and held by the caller for the whole run
        self.lock = lock
        self.branch = branch
        self.git_manager = GitManager(Path(path))

    def get_path(self) -> str:
        return self.git_manager.working_dir

    def update_branch_to(self, revision: str) -> None:
        self.git_manager.reset_branch_to(self.branch, revision)


class GitSourceRepo(_GitRepo, SourceRepo):
    """Resolves pull requests in the repository they were opened against."""

    def __init__(
        self,
        lock: Any,
        path: Path,
        branch: str,
        remote_name: str = DEFAULT_REMOTE,
        marker: str = SOURCE_ID_MARKER,
    ) -> None:
        super().__init__(lock, path, branch)
        self.remote_name = remote_name
        self.marker = marker

    def get_changeset_and_base_revision_for_pull_request(
        self,
        pr_number: Optional[str],
        expected_head_rev: str,
        source_default_branch: str,
        apply_to_latest: bool,
    ) -> Tuple[Changeset, Optional[str]]:
        gm = self.git_manager
        if pr_number is not None:
            head = self._fetch_pull_request_head(pr_number)
            if not head.startswith(expected_head_rev.lower()):
                raise GitRepositoryError(
                    f"Expected pull request {pr_number} to be at {expected_head_rev}, "
                    f"but it is at {head}"
                )
        else:
            head = gm.rev_parse(expected_head_rev)

        merge_base = gm.merge_base(head, source_default_branch)
        logger.info(f"Merge base of {head[:8]} and {source_default_branch}: {merge_base[:8]}")

        changeset = self.get_changeset_between(merge_base, head)
        if pr_number is not None:
            changeset = changeset.with_debug_message("Imported from pull request #%s", pr_number)

        if apply_to_latest:
            return changeset, None
        return changeset, self.find_destination_base_revision(merge_base)

    def _fetch_pull_request_head(self, pr_number: str) -> str:
        local_branch = f"{PULL_REQUEST_BRANCH_PREFIX}-{pr_number}"
        self.git_manager.fetch_ref(
            self.remote_name, f"+refs/pull/{pr_number}/head:refs/heads/{local_branch}"
        )
        return self.git_manager.rev_parse(local_branch)

    def get_changeset_between(self, base: str, head: str) -> Changeset:
        """Squash base..head into a single changeset carrying head's metadata."""
        commit = self.git_manager.get_commit(head)
        diffs = parse_patch(self.git_manager.diff_between(base, head))
        subject, _, body = commit.message.partition("\n")
        changeset = Changeset(
            id=commit.hexsha,
            diffs=diffs,
            author=f"{commit.author.name} <{commit.author.email}>",
            subject=subject.strip(),
            message=body.strip(),
            timestamp=commit.authored_datetime,
        )
        return changeset.with_debug_message(
            "Squashed %s..%s into %d diff(s)", base[:12], head[:12], len(diffs)
        )

    def find_destination_base_revision(self, merge_base: str) -> str:
        revision = self.git_manager.find_marker_in_history(merge_base, self.marker)
        if revision is None:
            raise GitRepositoryError(
                f"Could not find a '{self.marker}:' line in the history of {merge_base}; "
                "use --apply-to-latest to import onto the latest revision instead"
            )
        return revision


class GitDestinationRepo(_GitRepo, DestinationRepo):
    """Applies changesets with ``git am`` and records submodule pointers."""

    def render_patch(self, changeset: Changeset) -> str:
        return render_patch(changeset)

    def commit_patch(self, changeset: Changeset, do_submodules: bool = True) -> str:
        gm = self.git_manager
        if gm.get_current_branch() != self.branch:
            gm.checkout_branch(self.branch)

        if changeset.is_empty:
            logger.info(f"Changeset {changeset.id} has no diffs; nothing to commit")
            return gm.head_sha()

        pointer_diffs, file_diffs = self._split_submodule_diffs(changeset.diffs)

        committed = False
        if file_diffs:
            gm.apply_mailbox(self.render_patch(changeset.with_diffs(file_diffs)))
            committed = True

        if pointer_diffs and not do_submodules:
            for diff in pointer_diffs:
                logger.info(f"Skipping submodule change to {diff.path}")
            if not committed:
                logger.warning(
                    f"Nothing committed for changeset {changeset.id}: it only changes "
                    f"submodules and submodule sync is off; {self.branch} stays at "
                    f"{gm.head_sha()[:12]}"
                )
        elif pointer_diffs:
            for diff in pointer_diffs:
                _, new_rev = parse_submodule_revisions(diff.body)
                gm.set_gitlink(diff.path, new_rev)
            gm.commit_index(
                self._commit_message(changeset),
                author=changeset.author,
                date=changeset.timestamp,
                amend=committed,
            )

        return gm.head_sha()

    def _split_submodule_diffs(
        self, diffs: Tuple[DiffEntry, ...]
    ) -> Tuple[List[DiffEntry], List[DiffEntry]]:
        pointer_diffs: List[DiffEntry] = []
        file_diffs: List[DiffEntry] = []
        for diff in diffs:
            old_rev, new_rev = parse_submodule_revisions(diff.body)
            if old_rev and new_rev and self.git_manager.is_gitlink(diff.path):
                pointer_diffs.append(diff)
            else:
                file_diffs.append(diff)
        return pointer_diffs, file_diffs

    @staticmethod
    def _commit_message(changeset: Changeset) -> str:
        if changeset.message:
            return f"{changeset.subject}\n\n{changeset.message}"
        return changeset.subject or f"Import {changeset.id}"
