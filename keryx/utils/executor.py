#!/usr/bin/env python3
"""Release execution: stage, commit, tag, push, and undo the local part on failure.

1. stage the release files (deleted paths are removed, renamed paths drop their old path)
2. ``git commit -m "chore(release): vX.Y.Z"`` (skipped when nothing is staged)
3. ``git tag -a vX.Y.Z -m "Release vX.Y.Z"``
4. ``git push <remote> HEAD:<branch> --follow-tags --atomic``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from keryx.utils.errors import NetworkError, RollbackFailedError
from keryx.utils.git_backend import GitError
from keryx.utils.vcs_models import ChangedFile, FileStatus

logger = logging.getLogger(__name__)

StagePath = Union[str, Path, ChangedFile]


@dataclass
class CommitResult:
    tag_name: str
    commit_created: bool
    commit_sha: Optional[str] = None
    previous_head: Optional[str] = None


def _relative(backend, path: Union[str, Path]) -> str:
    path = Path(path)
    if path.is_absolute():
        try:
            return str(path.relative_to(backend.repo_root()))
        except ValueError:
            return str(path)
    return str(path)


def stage_files(backend, files: Sequence[StagePath]) -> None:
    """Stage plain paths and ChangedFile records.

    Raises:
        GitError: If there is nothing to stage or git refuses a path
    """
    if not files:
        raise GitError("No files to stage", code="NOTHING_TO_STAGE")
    add: List[str] = []
    remove: List[str] = []
    for item in files:
        if isinstance(item, ChangedFile):
            if item.status is FileStatus.DELETED:
                remove.append(item.path)
                continue
            if item.status is FileStatus.RENAMED and item.old_path:
                remove.append(item.old_path)
            add.append(item.path)
        else:
            add.append(_relative(backend, item))
    backend.remove(remove)
    backend.stage(add)


def commit_and_tag(backend, message: str, tag_name: str, files: Sequence[StagePath]) -> CommitResult:
    """Stage ``files``, commit if anything is staged, then create an annotated tag.

    A tag failure after a new commit rolls the commit back before re-raising.
    """
    previous_head = backend.head_sha()
    stage_files(backend, files)

    commit_sha = None
    commit_created = False
    if backend.has_staged_changes():
        commit_sha = backend.commit(message)
        commit_created = True
        logger.info(f"✓ Created commit {commit_sha[:7]}: {message}")
    else:
        logger.info("No staged changes; tagging current HEAD")

    try:
        backend.create_annotated_tag(tag_name, f"Release {tag_name}")
    except GitError as e:
        if commit_created:
            try:
                backend.reset_soft("HEAD~1")
            except GitError as reset_error:
                raise RollbackFailedError(
                    f"Failed to reset commit: {reset_error}",
                    primary=e,
                    hint="Manual cleanup may be needed: git reset --soft HEAD~1",
                ) from reset_error
        raise
    logger.info(f"✓ Created tag {tag_name}")
    return CommitResult(
        tag_name=tag_name,
        commit_created=commit_created,
        commit_sha=commit_sha,
        previous_head=previous_head,
    )


def push_with_tags(backend, remote: str, branch: str) -> None:
    """Push the branch and its annotated tags atomically.

    Raises:
        NetworkError: PUSH_FAILED with the git error output
    """
    try:
        backend.push_with_tags(remote, branch)
    except GitError as e:
        raise NetworkError(
            f"Push to {remote}/{branch} failed: {e}",
            code="PUSH_FAILED",
            hint="Check your network connection and push permissions, then run ship again.",
        ) from e
    logger.info(f"✓ Pushed to {remote}/{branch}")


def manual_cleanup_hint(tag_name: str, commit_created: bool) -> str:
    if commit_created:
        return f"Manual cleanup may be needed: git tag -d {tag_name} && git reset --soft HEAD~1"
    return f"Manual cleanup may be needed: git tag -d {tag_name}"


def rollback(backend, result: CommitResult, primary: Optional[BaseException] = None) -> None:
    """Delete the local tag and, if a commit was made, soft-reset it.

    The release edits stay staged. Both steps are attempted even if the first fails.

    Raises:
        RollbackFailedError: If any step failed; carries the manual cleanup hint
    """
    failures = []
    try:
        backend.delete_tag(result.tag_name)
        logger.info(f"✓ Deleted tag {result.tag_name}")
    except GitError as e:
        failures.append(f"Failed to delete tag {result.tag_name}: {e}")

    if result.commit_created:
        try:
            backend.reset_soft("HEAD~1")
            logger.info("✓ Reset release commit")
        except GitError as e:
            failures.append(f"Failed to reset commit: {e}")

    if failures:
        raise RollbackFailedError(
            "; ".join(failures),
            primary=primary,
            hint=manual_cleanup_hint(result.tag_name, result.commit_created),
        )
