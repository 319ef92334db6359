"""
ImportIt - Import pull requests from an external repository into an internal one.

This package resolves a single pull request, runs it through a configurable
filter pipeline (path remapping, submodule rewriting) and commits it onto the
matching revision of the destination repository.
"""

__version__ = "0.1.0"

from .models import (
    Changeset,
    DiffEntry,
    ImportConfig,
    ImportConfigBuilder,
    SyncManifest,
    ImportItError,
    ConfigurationError,
    WiringError,
    GitRepositoryError,
    PatchApplyError,
)
from .submodule_filter import move_submodule_commit_to_text_file
from .filters import compose, identity, move_directories
from .repo_interface import SourceRepo, DestinationRepo
from .git_manager import GitManager
from .git_repos import GitSourceRepo, GitDestinationRepo
from .import_phase import ImportSyncPhase

__all__ = [
    "Changeset",
    "DiffEntry",
    "ImportConfig",
    "ImportConfigBuilder",
    "SyncManifest",
    "ImportItError",
    "ConfigurationError",
    "WiringError",
    "GitRepositoryError",
    "PatchApplyError",
    "move_submodule_commit_to_text_file",
    "compose",
    "identity",
    "move_directories",
    "SourceRepo",
    "DestinationRepo",
    "GitManager",
    "GitSourceRepo",
    "GitDestinationRepo",
    "ImportSyncPhase",
]
