"""
The import phase: bring one pull request into the destination repository.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from rich.console import Console

from .filters import ChangesetFilter, identity
from .git_repos import GitDestinationRepo, GitSourceRepo
from .models import Changeset, ImportConfig, SyncManifest
from .repo_interface import DestinationRepo, ImportRepo, SourceRepo, as_destination_repo


logger = logging.getLogger(__name__)

# (lock, path, branch) -> repository
SourceRepoFactory = Callable[[Any, Path, str], SourceRepo]
DestinationRepoFactory = Callable[[Any, Path, str], ImportRepo]


class ImportSyncPhase:
    """Resolves a pull request, filters it and commits it to the destination."""

    readable_name = "Import Commits"

    def __init__(
        self,
        config: ImportConfig,
        filter_fn: ChangesetFilter = identity,
        source_repo_factory: SourceRepoFactory = GitSourceRepo,
        destination_repo_factory: DestinationRepoFactory = GitDestinationRepo,
        console: Optional[Console] = None,
    ) -> None:
        self.config = config
        self.filter_fn = filter_fn
        self.source_repo_factory = source_repo_factory
        self.destination_repo_factory = destination_repo_factory
        self.console = console or Console()

    def run(self, manifest: SyncManifest) -> str:
        """Run the phase and return the revision committed in the destination."""
        logger.info(f"Running phase: {self.readable_name}")
        changeset, destination_base_rev = self.get_source_changeset_and_destination_base_revision(
            manifest
        )
        return self.apply_patch_to_destination(manifest, changeset, destination_base_rev)

    def get_source_changeset_and_destination_base_revision(
        self, manifest: SyncManifest
    ) -> Tuple[Changeset, Optional[str]]:
        config = self.config
        if config.skip_pull_request and config.pull_request_number is not None:
            logger.warning(
                f"Ignoring pull request {config.pull_request_number}: --skip-pull-request is set"
            )
        source_repo = self.source_repo_factory(
            manifest.source_lock, Path(manifest.source_path), manifest.source_branch
        )
        return source_repo.get_changeset_and_base_revision_for_pull_request(
            config.pull_request_number_for_resolution,
            config.expected_head_revision,
            manifest.source_branch,
            config.apply_to_latest,
        )

    def apply_patch_to_destination(
        self,
        manifest: SyncManifest,
        changeset: Changeset,
        base_rev: Optional[str],
    ) -> str:
        repo = self.destination_repo_factory(
            manifest.destination_lock,
            Path(manifest.destination_path),
            manifest.destination_branch,
        )
        if base_rev is not None:
            self.console.print("  Updating destination branch to new base revision...")
            repo.update_branch_to(base_rev)
        destination_repo = as_destination_repo(repo)

        self.console.print("  Filtering...")
        changeset = self.filter_fn(changeset)
        if manifest.verbose:
            changeset.dump_debug_messages(self.console)

        self.console.print("  Exporting...")
        changeset, patch_file = self.maybe_save_patch(destination_repo, changeset)
        try:
            rev = destination_repo.commit_patch(changeset, self.config.should_do_submodules)
        except Exception:
            if patch_file is not None:
                self.console.print(
                    f"  Failure to apply patch at {patch_file}", markup=False, highlight=False
                )
            else:
                self.console.print(
                    f"  Failure to apply patch:\n{destination_repo.render_patch(changeset)}",
                    markup=False,
                    highlight=False,
                )
            raise

        self.console.print(
            f"  Done.  {rev} committed in {destination_repo.get_path()}",
            markup=False,
            highlight=False,
        )
        return rev

    def maybe_save_patch(
        self, destination_repo: DestinationRepo, changeset: Changeset
    ) -> Tuple[Changeset, Optional[Path]]:
        """Persist the rendered patch when a patches directory is configured.

        Returns the changeset (with a debug note when saved) and the written
        file, or None when nothing was written.
        """
        if self.config.patches_directory is None:
            return changeset, None

        patches_directory = Path(self.config.patches_directory)
        if not patches_directory.exists():
            patches_directory.mkdir(mode=0o755, parents=True, exist_ok=True)
        elif not patches_directory.is_dir():
            logger.error(
                f"Cannot log to {patches_directory}: the path exists and is not a directory."
            )
            return changeset, None

        patch_file = self.get_patch_location_for_changeset(changeset)
        with patch_file.open(
            "w", encoding="utf-8", errors="surrogateescape", newline=""
        ) as handle:
            handle.write(destination_repo.render_patch(changeset))
        logger.info(f"Saved patch file: {patch_file}")
        return changeset.with_debug_message("Saved patch file: %s", patch_file), patch_file

    def get_patch_location_for_changeset(self, changeset: Changeset) -> Path:
        return Path(self.config.patches_directory) / f"{changeset.id}.patch"
