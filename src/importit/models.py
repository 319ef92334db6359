"""
Data models for the pull request import tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Optional, Tuple

from rich.console import Console


@dataclass(frozen=True)
class DiffEntry:
    """A single file-level diff.

    ``body`` holds everything after the ``diff --git`` header line.
    """

    path: str
    body: str


@dataclass(frozen=True)
class Changeset:
    """One logical commit flowing through the import pipeline.

    Changesets are immutable: every ``with_*`` helper returns a new value.
    """

    id: str
    diffs: Tuple[DiffEntry, ...] = ()
    debug_messages: Tuple[str, ...] = ()
    author: str = ""
    subject: str = ""
    message: str = ""
    timestamp: Optional[datetime] = None

    def __post_init__(self) -> None:
        # Accept any iterable at construction, store tuples
        object.__setattr__(self, "diffs", tuple(self.diffs))
        object.__setattr__(self, "debug_messages", tuple(self.debug_messages))

    @property
    def is_empty(self) -> bool:
        return not self.diffs

    def with_diffs(self, diffs: Iterable[DiffEntry]) -> Changeset:
        return replace(self, diffs=tuple(diffs))

    def with_debug_message(self, fmt: str, *args: Any) -> Changeset:
        message = fmt % args if args else fmt
        return replace(self, debug_messages=self.debug_messages + (message,))

    def dump_debug_messages(self, console: Optional[Console] = None) -> None:
        """Print the accumulated debug log for this changeset."""
        console = console or Console()
        console.print(f"  DEBUG {self.id}", markup=False, highlight=False)
        for message in self.debug_messages:
            console.print(f"    {message}", markup=False, highlight=False)


@dataclass(frozen=True)
class ImportConfig:
    """Validated, immutable configuration for a single import run.

    Construction fails with ConfigurationError when the flag combination
    cannot identify what to import.
    """

    expected_head_revision: Optional[str] = None
    pull_request_number: Optional[str] = None
    patches_directory: Optional[str] = None
    skip_pull_request: bool = False
    apply_to_latest: bool = False
    should_do_submodules: bool = True

    def __post_init__(self) -> None:
        if self.skip_pull_request:
            if not self.expected_head_revision:
                raise ConfigurationError("--expected-head-revision must be set!")
        elif not self.pull_request_number or not self.expected_head_revision:
            raise ConfigurationError(
                "--expected-head-revision must be set! "
                "And either --pull-request-number or --skip-pull-request must be set"
            )

    @property
    def pull_request_number_for_resolution(self) -> Optional[str]:
        """Pull request to fetch, or None when importing the local head directly."""
        if self.skip_pull_request:
            return None
        return self.pull_request_number


class ImportConfigBuilder:
    """Mutable collector for CLI flag values; ``build`` yields an ImportConfig."""

    def __init__(self) -> None:
        self.expected_head_revision: Optional[str] = None
        self.pull_request_number: Optional[str] = None
        self.patches_directory: Optional[str] = None
        self.skip_pull_request = False
        self.apply_to_latest = False
        self.should_do_submodules = True

    def set_expected_head_revision(self, revision: Optional[str]) -> ImportConfigBuilder:
        self.expected_head_revision = revision
        return self

    def set_pull_request_number(self, number: Optional[str]) -> ImportConfigBuilder:
        self.pull_request_number = number
        return self

    def set_patches_directory(self, directory: Optional[str]) -> ImportConfigBuilder:
        self.patches_directory = directory
        return self

    def skip_pull_request_fetch(self) -> ImportConfigBuilder:
        self.skip_pull_request = True
        return self

    def apply_to_latest_revision(self) -> ImportConfigBuilder:
        self.apply_to_latest = True
        return self

    def skip_submodules(self) -> ImportConfigBuilder:
        self.should_do_submodules = False
        return self

    def build(self) -> ImportConfig:
        return ImportConfig(
            expected_head_revision=self.expected_head_revision,
            pull_request_number=self.pull_request_number,
            patches_directory=self.patches_directory,
            skip_pull_request=self.skip_pull_request,
            apply_to_latest=self.apply_to_latest,
            should_do_submodules=self.should_do_submodules,
        )


@dataclass
class SyncManifest:
    """Repository locations shared by every phase of a sync run.

    The lock handles are opaque; they are held by the caller for the whole
    run and handed to the repository factories untouched.
    """

    source_path: str
    destination_path: str
    source_branch: str = "main"
    destination_branch: str = "main"
    verbose: bool = False
    source_lock: Any = field(default=None, repr=False)
    destination_lock: Any = field(default=None, repr=False)


class ImportItError(Exception):
    """Base exception for import operations."""

    pass


class ConfigurationError(ImportItError):
    """Exception raised for missing or contradictory options."""

    pass


class WiringError(ImportItError):
    """Exception raised when a repository lacks a capability the pipeline needs."""

    pass


class GitRepositoryError(ImportItError):
    """Exception raised for Git repository related errors."""

    pass


class PatchApplyError(GitRepositoryError):
    """Exception raised when the destination repository rejects a patch."""

    pass
