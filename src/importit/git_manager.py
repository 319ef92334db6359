"""
Git repository management and operations.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from git import Commit, Repo, InvalidGitRepositoryError, NoSuchPathError
from git.exc import GitCommandError

from .models import GitRepositoryError, PatchApplyError


logger = logging.getLogger(__name__)

GITLINK_MODE = "160000"


class GitManager:
    """Manages Git operations for a single repository."""

    def __init__(self, repo_path: Optional[Path] = None) -> None:
        """Initialize Git manager with optional repository path."""
        self.repo_path = Path(repo_path or Path.cwd()).resolve()
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        """Get the Git repository instance."""
        if self._repo is None:
            self._repo = self._open_repository()
        return self._repo

    @property
    def working_dir(self) -> str:
        return str(self.repo.working_dir)

    def _open_repository(self) -> Repo:
        logger.debug(f"Opening repository in: {self.repo_path}")
        try:
            repo = Repo(self.repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitRepositoryError(f"No Git repository found at {self.repo_path}") from e
        logger.info(f"Found Git repository at: {repo.working_dir}")
        return repo

    def get_current_branch(self) -> Optional[str]:
        """Get the current branch name, or None with a detached HEAD."""
        try:
            return self.repo.active_branch.name
        except TypeError:
            return None

    def rev_parse(self, ref: str) -> str:
        """Resolve a commit-ish to its full hash."""
        try:
            return self.repo.git.rev_parse("--verify", f"{ref}^{{commit}}").strip()
        except GitCommandError as e:
            logger.error(f"Error resolving {ref} in {self.repo_path}: {e}")
            raise GitRepositoryError(f"Could not resolve revision {ref}: {e}") from e

    def merge_base(self, first: str, second: str) -> str:
        try:
            return self.repo.git.merge_base(first, second).strip()
        except GitCommandError as e:
            logger.error(f"Error computing merge base of {first} and {second}: {e}")
            raise GitRepositoryError(f"No merge base between {first} and {second}: {e}") from e

    def fetch_ref(self, remote_name: str, refspec: str) -> None:
        """Fetch a single refspec from a remote."""
        try:
            self.repo.git.fetch(remote_name, refspec)
            logger.info(f"Fetched {refspec} from {remote_name} in {self.repo_path}")
        except GitCommandError as e:
            logger.error(f"Failed to fetch {refspec} from {remote_name}: {e}")
            raise GitRepositoryError(f"Failed to fetch {refspec} from {remote_name}: {e}") from e

    def checkout_branch(self, branch_name: str) -> None:
        """Checkout a specific branch."""
        try:
            self.repo.git.checkout(branch_name)
            logger.info(f"Checked out branch: {branch_name}")
        except GitCommandError as e:
            logger.error(f"Error checking out branch {branch_name}: {e}")
            raise GitRepositoryError(f"Failed to checkout branch {branch_name}: {e}") from e

    def reset_branch_to(self, branch_name: str, target: str) -> None:
        """Create or force-move a branch to target (commit-ish) and check it out."""
        try:
            self.repo.git.checkout("-B", branch_name, target)
            logger.info(f"Updated branch {branch_name} -> {target}")
        except GitCommandError as e:
            logger.error(f"Error updating branch {branch_name} to {target}: {e}")
            raise GitRepositoryError(f"Failed to update branch {branch_name} to {target}: {e}") from e

    def diff_between(self, base: str, head: str) -> str:
        """Return the full binary-safe diff from base to head."""
        try:
            return self.repo.git(c="core.quotePath=false").diff(
                "--binary",
                "--no-color",
                "--no-renames",
                "--src-prefix=a/",
                "--dst-prefix=b/",
                base,
                head,
            )
        except GitCommandError as e:
            logger.error(f"Error diffing {base}..{head}: {e}")
            raise GitRepositoryError(f"Failed to diff {base}..{head}: {e}") from e

    def get_commit(self, revision: str) -> Commit:
        try:
            return self.repo.commit(revision)
        except (GitCommandError, ValueError) as e:
            raise GitRepositoryError(f"Unknown commit {revision}: {e}") from e

    def find_marker_in_history(
        self, start: str, marker: str, max_count: int = 1000
    ) -> Optional[str]:
        """Walk first-parent history from start for a ``<marker>: <value>`` line.

        Returns the value from the most recent commit carrying the marker.
        """
        marker_re = re.compile(rf"^\s*{re.escape(marker)}:\s*(\S+)\s*$", re.MULTILINE)
        try:
            for commit in self.repo.iter_commits(start, first_parent=True, max_count=max_count):
                match = marker_re.search(commit.message)
                if match:
                    logger.debug(f"Found {marker} in {commit.hexsha[:8]}: {match.group(1)}")
                    return match.group(1)
        except GitCommandError as e:
            logger.error(f"Error walking history from {start}: {e}")
            raise GitRepositoryError(f"Failed to read history from {start}: {e}") from e
        return None

    def is_gitlink(self, path: str) -> bool:
        """Return True if path is recorded as a submodule (gitlink) in the index."""
        try:
            output = self.repo.git.ls_files("-s", "--", path)
        except GitCommandError:
            return False
        return output.strip().startswith(GITLINK_MODE)

    def apply_mailbox(self, patch: str) -> None:
        """Apply a mailbox-format patch with ``git am``, aborting on failure."""
        fd, patch_path = tempfile.mkstemp(prefix="importit-", suffix=".patch")
        try:
            with os.fdopen(
                fd, "w", encoding="utf-8", errors="surrogateescape", newline=""
            ) as handle:
                handle.write(patch)
            self.repo.git.am("--keep-non-patch", "--keep-cr", patch_path)
            logger.info(f"Applied patch in {self.repo_path}")
        except GitCommandError as e:
            logger.error(f"Failed to apply patch in {self.repo_path}: {e}")
            self._abort_am()
            raise PatchApplyError(f"Failed to apply patch: {e}") from e
        finally:
            os.unlink(patch_path)

    def _abort_am(self) -> None:
        try:
            self.repo.git.am("--abort")
        except GitCommandError as e:
            # Nothing to abort when am bailed out before starting a session
            logger.debug(f"git am --abort: {e}")

    def set_gitlink(self, path: str, revision: str) -> None:
        """Stage a submodule pointer without touching the submodule checkout."""
        try:
            self.repo.git.update_index("--add", "--cacheinfo", f"{GITLINK_MODE},{revision},{path}")
            logger.info(f"Staged submodule {path} at {revision}")
        except GitCommandError as e:
            logger.error(f"Failed to stage submodule {path} at {revision}: {e}")
            raise GitRepositoryError(f"Failed to update submodule {path}: {e}") from e

    def commit_index(
        self,
        message: str,
        author: str = "",
        date: Optional[datetime] = None,
        amend: bool = False,
    ) -> str:
        """Commit the staged index (or amend HEAD) and return the new hash."""
        args = ["--amend", "--no-edit"] if amend else ["-m", message]
        if author and not amend:
            args.append(f"--author={author}")
        if date is not None and not amend:
            args.append(f"--date={date.isoformat()}")
        try:
            self.repo.git.commit(*args)
        except GitCommandError as e:
            logger.error(f"Failed to commit in {self.repo_path}: {e}")
            raise GitRepositoryError(f"Failed to commit: {e}") from e
        return self.head_sha()

    def head_sha(self) -> str:
        try:
            return self.repo.head.commit.hexsha
        except ValueError as e:
            raise GitRepositoryError(f"Repository {self.repo_path} has no commits") from e
