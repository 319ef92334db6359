"""
Tests for the import phase orchestration.
"""

from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from rich.console import Console

from importit.import_phase import ImportSyncPhase
from importit.models import (
    Changeset, DiffEntry, ImportConfig, SyncManifest, PatchApplyError, WiringError,
)
from importit.repo_interface import DestinationRepo, ImportRepo, SourceRepo
from importit.submodule_filter import move_submodule_commit_to_text_file


class FakeSourceRepo(SourceRepo):
    def __init__(self, changeset: Changeset, base_rev: Optional[str], calls: list) -> None:
        self.changeset = changeset
        self.base_rev = base_rev
        self.calls = calls

    def get_path(self) -> str:
        return "/src"

    def update_branch_to(self, revision: str) -> None:
        raise AssertionError("source branch must not move")

    def get_changeset_and_base_revision_for_pull_request(
        self, pr_number, expected_head_rev, source_default_branch, apply_to_latest
    ) -> Tuple[Changeset, Optional[str]]:
        self.calls.append(
            ("resolve", pr_number, expected_head_rev, source_default_branch, apply_to_latest)
        )
        return self.changeset, None if apply_to_latest else self.base_rev


class FakeDestinationRepo(DestinationRepo):
    def __init__(self, calls: list, commit_error: Optional[Exception] = None) -> None:
        self.calls = calls
        self.commit_error = commit_error
        self.committed: List[Changeset] = []

    def get_path(self) -> str:
        return "/dst/repo"

    def update_branch_to(self, revision: str) -> None:
        self.calls.append(("update_branch_to", revision))

    def render_patch(self, changeset: Changeset) -> str:
        return "PATCH " + " ".join(d.path for d in changeset.diffs) + "\n"

    def commit_patch(self, changeset: Changeset, do_submodules: bool = True) -> str:
        self.calls.append(("commit_patch", do_submodules))
        self.committed.append(changeset)
        if self.commit_error is not None:
            raise self.commit_error
        return "newrev456"


class PlainRepo(ImportRepo):
    """A repository lacking the destination capability."""

    def get_path(self) -> str:
        return "/plain"

    def update_branch_to(self, revision: str) -> None:
        pass


CHANGESET = Changeset(
    id="deadbeef",
    diffs=[DiffEntry("src/a.txt", "--- a/src/a.txt\n+++ b/src/a.txt\n@@ -1 +1 @@\n-a\n+b\n")],
)


@pytest.fixture()
def console():
    return Console(record=True, width=300)


@pytest.fixture()
def manifest():
    return SyncManifest(
        source_path="/src",
        destination_path="/dst/repo",
        source_branch="main",
        destination_branch="master",
        source_lock="source-lock",
        destination_lock="destination-lock",
    )


def make_phase(config, console, calls, *, changeset=CHANGESET, base_rev="base123",
               commit_error=None, filter_fn=None):
    destination = FakeDestinationRepo(calls, commit_error)
    opened = {}

    def source_factory(lock, path, branch):
        opened["source"] = (lock, path, branch)
        return FakeSourceRepo(changeset, base_rev, calls)

    def destination_factory(lock, path, branch):
        opened["destination"] = (lock, path, branch)
        return destination

    kwargs = {}
    if filter_fn is not None:
        kwargs["filter_fn"] = filter_fn
    phase = ImportSyncPhase(
        config,
        source_repo_factory=source_factory,
        destination_repo_factory=destination_factory,
        console=console,
        **kwargs,
    )
    return phase, destination, opened


class TestResolution:
    """Test resolving the changeset and base revision."""

    def test_pull_request_resolution_arguments(self, console, manifest):
        calls = []
        config = ImportConfig(expected_head_revision="deadbeef", pull_request_number="42")
        phase, _, opened = make_phase(config, console, calls)

        changeset, base = phase.get_source_changeset_and_destination_base_revision(manifest)

        assert changeset is CHANGESET
        assert base == "base123"
        assert calls == [("resolve", "42", "deadbeef", "main", False)]
        assert opened["source"] == ("source-lock", Path("/src"), "main")

    def test_skip_pull_request_resolves_locally(self, console, manifest):
        calls = []
        config = ImportConfig(
            expected_head_revision="deadbeef", pull_request_number="42", skip_pull_request=True
        )
        phase, _, _ = make_phase(config, console, calls)

        phase.get_source_changeset_and_destination_base_revision(manifest)

        assert calls == [("resolve", None, "deadbeef", "main", False)]

    def test_apply_to_latest_leaves_branch_alone(self, console, manifest):
        calls = []
        config = ImportConfig(
            expected_head_revision="deadbeef", pull_request_number="42", apply_to_latest=True
        )
        phase, _, _ = make_phase(config, console, calls)

        phase.run(manifest)

        assert calls[0] == ("resolve", "42", "deadbeef", "main", True)
        assert not any(call[0] == "update_branch_to" for call in calls)

    def test_source_failure_propagates(self, console, manifest):
        error = RuntimeError("fetch failed")

        def source_factory(lock, path, branch):
            raise error

        phase = ImportSyncPhase(
            ImportConfig(expected_head_revision="x", pull_request_number="1"),
            source_repo_factory=source_factory,
            console=console,
        )

        with pytest.raises(RuntimeError) as exc_info:
            phase.run(manifest)
        assert exc_info.value is error


class TestApplyAndCommit:
    """Test applying the changeset to the destination."""

    def test_end_to_end_success(self, console, manifest, tmp_path, monkeypatch):
        """Branch moves to the base before committing and the result is reported."""
        monkeypatch.chdir(tmp_path)
        calls = []
        config = ImportConfig(expected_head_revision="deadbeef", pull_request_number="42")
        phase, destination, opened = make_phase(config, console, calls)

        rev = phase.run(manifest)

        assert rev == "newrev456"
        assert calls == [
            ("resolve", "42", "deadbeef", "main", False),
            ("update_branch_to", "base123"),
            ("commit_patch", True),
        ]
        assert opened["destination"] == ("destination-lock", Path("/dst/repo"), "master")
        output = console.export_text()
        assert "Updating destination branch to new base revision..." in output
        assert "Done.  newrev456 committed in /dst/repo" in output
        assert list(tmp_path.iterdir()) == []

    def test_commit_failure_with_patches_directory(self, console, manifest, tmp_path):
        """The patch is saved, its location reported and the error re-raised."""
        calls = []
        patches = tmp_path / "patches"
        error = PatchApplyError("patch does not apply")
        config = ImportConfig(
            expected_head_revision="deadbeef",
            pull_request_number="42",
            patches_directory=str(patches),
        )
        phase, destination, _ = make_phase(config, console, calls, commit_error=error)

        with pytest.raises(PatchApplyError) as exc_info:
            phase.run(manifest)

        assert exc_info.value is error
        patch_file = patches / "deadbeef.patch"
        assert patch_file.read_text(encoding="utf-8") == "PATCH src/a.txt\n"
        assert f"Failure to apply patch at {patch_file}" in console.export_text()
        assert destination.committed[0].debug_messages[-1] == f"Saved patch file: {patch_file}"

    def test_commit_failure_without_patches_directory_prints_patch(self, console, manifest):
        calls = []
        config = ImportConfig(expected_head_revision="deadbeef", pull_request_number="42")
        phase, _, _ = make_phase(config, console, calls, commit_error=ValueError("bad"))

        with pytest.raises(ValueError):
            phase.run(manifest)

        assert "Failure to apply patch:\nPATCH src/a.txt" in console.export_text()

    def test_successful_run_saves_patch(self, console, manifest, tmp_path):
        calls = []
        patches = tmp_path / "nested" / "patches"
        config = ImportConfig(
            expected_head_revision="deadbeef",
            pull_request_number="42",
            patches_directory=str(patches),
        )
        phase, _, _ = make_phase(config, console, calls)

        phase.run(manifest)

        assert (patches / "deadbeef.patch").is_file()

    def test_saved_patch_keeps_undecodable_bytes(self, console, manifest, tmp_path):
        """Bytes git output could not decode as UTF-8 are written back unchanged."""
        calls = []
        patches = tmp_path / "patches"
        config = ImportConfig(
            expected_head_revision="deadbeef",
            pull_request_number="42",
            patches_directory=str(patches),
        )
        changeset = Changeset(
            id="deadbeef",
            diffs=[DiffEntry("caf\udce9.txt", "@@ -0,0 +1 @@\n+caf\udce9\n")],
        )
        phase, _, _ = make_phase(config, console, calls, changeset=changeset)

        assert phase.run(manifest) == "newrev456"
        assert (patches / "deadbeef.patch").read_bytes() == b"PATCH caf\xe9.txt\n"

    def test_patches_path_is_a_file(self, console, manifest, tmp_path, caplog):
        """Persistence is skipped with an error log and the commit still runs."""
        calls = []
        not_a_dir = tmp_path / "patches"
        not_a_dir.write_text("occupied")
        config = ImportConfig(
            expected_head_revision="deadbeef",
            pull_request_number="42",
            patches_directory=str(not_a_dir),
        )
        phase, destination, _ = make_phase(config, console, calls)

        rev = phase.run(manifest)

        assert rev == "newrev456"
        assert not_a_dir.read_text() == "occupied"
        assert "the path exists and is not a directory" in caplog.text
        assert destination.committed[0].debug_messages == ()

    def test_patches_path_is_a_file_and_commit_fails(self, console, manifest, tmp_path):
        calls = []
        not_a_dir = tmp_path / "patches"
        not_a_dir.write_text("occupied")
        config = ImportConfig(
            expected_head_revision="deadbeef",
            pull_request_number="42",
            patches_directory=str(not_a_dir),
        )
        phase, _, _ = make_phase(config, console, calls, commit_error=PatchApplyError("no"))

        with pytest.raises(PatchApplyError):
            phase.run(manifest)

        assert "Failure to apply patch:\nPATCH src/a.txt" in console.export_text()

    def test_skip_submodules_passed_to_commit(self, console, manifest):
        calls = []
        config = ImportConfig(
            expected_head_revision="deadbeef",
            pull_request_number="42",
            should_do_submodules=False,
        )
        phase, _, _ = make_phase(config, console, calls)

        phase.run(manifest)

        assert ("commit_patch", False) in calls

    def test_filter_result_is_committed(self, console, manifest):
        calls = []
        submodule = Changeset(
            id="deadbeef",
            diffs=[DiffEntry("deps/lib", "-Subproject commit 111\n+Subproject commit 222\n")],
        )
        config = ImportConfig(expected_head_revision="deadbeef", pull_request_number="42")
        phase, destination, _ = make_phase(
            config,
            console,
            calls,
            changeset=submodule,
            filter_fn=lambda c: move_submodule_commit_to_text_file(c, "deps/lib", "deps/lib-rev.txt"),
        )

        phase.run(manifest)

        committed = destination.committed[0]
        assert [d.path for d in committed.diffs] == ["deps/lib-rev.txt"]
        assert committed.diffs[0].body == (
            "--- a/deps/lib-rev.txt\n"
            "+++ b/deps/lib-rev.txt\n"
            "@@ -1 +1 @@\n"
            "-Subproject commit 111\n"
            "+Subproject commit 222\n"
        )

    def test_verbose_dumps_debug_messages(self, console, manifest):
        calls = []
        manifest.verbose = True
        config = ImportConfig(expected_head_revision="deadbeef", pull_request_number="42")
        phase, _, _ = make_phase(
            config, console, calls, filter_fn=lambda c: c.with_debug_message("filtered [ok]")
        )

        phase.run(manifest)

        output = console.export_text()
        assert "DEBUG deadbeef" in output
        assert "filtered [ok]" in output

    def test_debug_messages_hidden_when_not_verbose(self, console, manifest):
        calls = []
        config = ImportConfig(expected_head_revision="deadbeef", pull_request_number="42")
        phase, _, _ = make_phase(
            config, console, calls, filter_fn=lambda c: c.with_debug_message("filtered")
        )

        phase.run(manifest)

        assert "filtered" not in console.export_text()

    def test_destination_without_capability(self, console, manifest):
        phase = ImportSyncPhase(
            ImportConfig(expected_head_revision="x", pull_request_number="1"),
            destination_repo_factory=lambda lock, path, branch: PlainRepo(),
            console=console,
        )

        with pytest.raises(WiringError):
            phase.apply_patch_to_destination(manifest, CHANGESET, None)

    def test_patch_location(self, console):
        phase = ImportSyncPhase(
            ImportConfig(
                expected_head_revision="x",
                pull_request_number="1",
                patches_directory="/tmp/patches",
            ),
            console=console,
        )
        assert phase.get_patch_location_for_changeset(CHANGESET) == Path(
            "/tmp/patches/deadbeef.patch"
        )
