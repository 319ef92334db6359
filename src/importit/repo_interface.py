"""
VCS-agnostic repository interfaces used by the import phase.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .models import Changeset, WiringError


class ImportRepo(ABC):
    """Abstract interface shared by source and destination repositories."""

    @abstractmethod
    def get_path(self) -> str:
        """Return the working directory of the repository."""
        pass

    @abstractmethod
    def update_branch_to(self, revision: str) -> None:
        """
        Point the working branch at ``revision`` and check it out.

        Args:
            revision: Commit-ish to move the branch to
        """
        pass


class SourceRepo(ImportRepo):
    """Repository the pull request is imported from."""

    @abstractmethod
    def get_changeset_and_base_revision_for_pull_request(
        self,
        pr_number: Optional[str],
        expected_head_rev: str,
        source_default_branch: str,
        apply_to_latest: bool,
    ) -> Tuple[Changeset, Optional[str]]:
        """
        Resolve what to import and onto which destination revision.

        Args:
            pr_number: Pull request to fetch, or None to use expected_head_rev locally
            expected_head_rev: Revision the pull request head must match
            source_default_branch: Branch the pull request was opened against
            apply_to_latest: Skip base resolution and apply onto the latest revision

        Returns:
            Tuple of (changeset, destination base revision or None to leave the
            destination branch where it is)
        """
        pass


class DestinationRepo(ImportRepo):
    """Repository that can render and commit changesets."""

    @abstractmethod
    def commit_patch(self, changeset: Changeset, do_submodules: bool = True) -> str:
        """
        Apply and commit a changeset.

        Args:
            changeset: The changeset to commit
            do_submodules: Whether submodule pointer changes are synced

        Returns:
            The new revision identifier
        """
        pass

    @abstractmethod
    def render_patch(self, changeset: Changeset) -> str:
        """Render the changeset as patch text."""
        pass


def as_destination_repo(repo: ImportRepo) -> DestinationRepo:
    """Return ``repo`` typed as a DestinationRepo or fail with a WiringError."""
    if not isinstance(repo, DestinationRepo):
        raise WiringError("The destination repository must implement DestinationRepo!")
    return repo
