from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeBackend, raw_commit

from keryx.utils.errors import NetworkError, RollbackFailedError
from keryx.utils.executor import CommitResult, commit_and_tag, push_with_tags, rollback, stage_files
from keryx.utils.git_backend import GitError
from keryx.utils.vcs_models import ChangedFile, FileStatus


def _backend(tmp_path: Path) -> FakeBackend:
    return FakeBackend(tmp_path, [raw_commit(1, "chore: init")])


def test_stage_files_handles_deletions_and_renames(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    stage_files(backend, [
        ChangedFile(path="src/new.py", status=FileStatus.ADDED),
        ChangedFile(path="src/gone.py", status=FileStatus.DELETED),
        ChangedFile(path="src/b.py", status=FileStatus.RENAMED, old_path="src/a.py"),
        tmp_path / "CHANGELOG.md",
    ])
    assert ("remove", ["src/gone.py", "src/a.py"]) in backend.calls
    assert ("stage", ["src/new.py", "src/b.py", "CHANGELOG.md"]) in backend.calls


def test_stage_files_rejects_empty_list(tmp_path: Path) -> None:
    with pytest.raises(GitError) as exc:
        stage_files(_backend(tmp_path), [])
    assert exc.value.code == "NOTHING_TO_STAGE"


def test_commit_and_tag(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    head = backend.head_sha()
    result = commit_and_tag(backend, "chore(release): v0.1.0", "v0.1.0", ["Cargo.toml"])
    assert result.commit_created
    assert result.previous_head == head
    assert backend.tags["v0.1.0"] == result.commit_sha
    assert ("tag", "v0.1.0", "Release v0.1.0") in backend.calls


def test_nothing_staged_tags_current_head(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.stage = lambda paths: backend.calls.append(("stage", list(paths)))
    result = commit_and_tag(backend, "chore(release): v0.1.0", "v0.1.0", ["Cargo.toml"])
    assert not result.commit_created
    assert "commit" not in backend.call_names()
    assert backend.tags["v0.1.0"] == backend.head_sha()


def test_tag_failure_resets_new_commit(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.fail["create_annotated_tag"] = GitError("tag exists")
    with pytest.raises(GitError):
        commit_and_tag(backend, "chore(release): v0.1.0", "v0.1.0", ["Cargo.toml"])
    assert backend.call_names()[-1] == "reset_soft"


def test_push_failure_is_a_network_error(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.fail["push_with_tags"] = GitError("remote rejected")
    with pytest.raises(NetworkError) as exc:
        push_with_tags(backend, "origin", "main")
    assert exc.value.code == "PUSH_FAILED"
    assert exc.value.exit_code == 6


def test_rollback_deletes_tag_and_resets(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.tags["v0.1.0"] = "x"
    rollback(backend, CommitResult(tag_name="v0.1.0", commit_created=True))
    assert "v0.1.0" not in backend.tags
    assert backend.calls[-2:] == [("delete_tag", "v0.1.0"), ("reset_soft", "HEAD~1")]


def test_rollback_attempts_every_step_and_reports_failures(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.fail["delete_tag"] = GitError("locked")
    primary = NetworkError("push failed", code="PUSH_FAILED")
    with pytest.raises(RollbackFailedError) as exc:
        rollback(backend, CommitResult(tag_name="v0.1.0", commit_created=True), primary=primary)
    assert ("reset_soft", "HEAD~1") in backend.calls
    assert exc.value.primary is primary
    assert exc.value.exit_code == 8
    assert exc.value.hint == "Manual cleanup may be needed: git tag -d v0.1.0 && git reset --soft HEAD~1"
