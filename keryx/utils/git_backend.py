#!/usr/bin/env python3
"""Thin git backend used by every stage that reads or mutates the repository.

All access goes through the ``git`` executable (no shell). Read-only queries
that have a "not found" answer return None/False instead of raising; anything
else that fails raises GitError with the command output attached.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from keryx.utils.errors import ExternalToolError
from keryx.utils.vcs_models import ChangedFile, FileStatus

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


class GitError(ExternalToolError):
    def __init__(self, message: str, code: str = "GIT_FAILED", hint: Optional[str] = None) -> None:
        super().__init__(message, code=code, hint=hint)


@dataclass
class RawCommit:
    id: str
    author_time: datetime
    message: str


def _run_git(args: List[str], cwd: Path, check: bool = True) -> subprocess.CompletedProcess:
    """
    Run git command in cwd and return CompletedProcess. Raises GitError on failure if check=True.
    """
    cmd = ["git"] + args
    logger.debug(f"$ {' '.join(cmd)}")
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except FileNotFoundError as e:
        raise GitError("git is not installed or not available in PATH.", code="NOT_INSTALLED") from e

    if check and proc.returncode != 0:
        raise GitError(
            f"Git command failed: {' '.join(cmd)}\n"
            f"stdout:\n{proc.stdout}\n"
            f"stderr:\n{proc.stderr.strip()}"
        )
    return proc


class GitBackend:
    """Repository operations needed by preflight, history and the executor."""

    def __init__(self, cwd: Union[str, Path] = "."):
        self.cwd = Path(cwd)

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return _run_git(list(args), self.cwd, check=check)

    def _out(self, *args: str) -> str:
        return self._git(*args).stdout.strip()

    # --- repository / HEAD ---

    def repo_root(self) -> Path:
        proc = self._git("rev-parse", "--show-toplevel", check=False)
        if proc.returncode != 0:
            raise GitError(
                "Not a git repository. Run keryx from within a git repository.",
                code="NOT_A_REPO",
            )
        return Path(proc.stdout.strip())

    def head_sha(self) -> Optional[str]:
        return self.rev_parse("HEAD")

    def current_branch(self) -> Optional[str]:
        """Short branch name, or None when HEAD is detached."""
        proc = self._git("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def get_config(self, key: str) -> Optional[str]:
        proc = self._git("config", "--get", key, check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def rev_parse(self, ref: str) -> Optional[str]:
        """Resolve ``ref`` to a commit SHA, or None if it does not exist."""
        proc = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        proc = self._git("merge-base", "--is-ancestor", ancestor, descendant, check=False)
        if proc.returncode == 0:
            return True
        if proc.returncode == 1:
            return False
        raise GitError(f"git merge-base --is-ancestor failed: {proc.stderr.strip()}")

    def root_commit(self, ref: str = "HEAD") -> str:
        out = self._out("rev-list", "--max-parents=0", ref)
        roots = out.splitlines()
        if not roots:
            raise GitError(f"Could not find a root commit for {ref}", code="NO_COMMITS")
        return roots[-1]

    def status_porcelain(self) -> str:
        return self._git("status", "--porcelain").stdout

    def remote_url(self, remote: str = "origin") -> Optional[str]:
        return self.get_config(f"remote.{remote}.url")

    # --- tags ---

    def list_tags(self) -> List[str]:
        return [t for t in self._out("tag", "--list").splitlines() if t]

    def reachable_tags(self, ref: str = "HEAD") -> List[str]:
        return [t for t in self._out("tag", "--merged", ref).splitlines() if t]

    def describe_reachable_tag(self, ref: str = "HEAD") -> Optional[str]:
        """Nearest tag reachable from ``ref`` that looks like a version."""
        proc = self._git(
            "describe", "--tags", "--abbrev=0", "--match", "v*.*.*", "--match", "*.*.*", ref,
            check=False,
        )
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def tag_exists(self, name: str) -> bool:
        proc = self._git("rev-parse", "--verify", "--quiet", f"refs/tags/{name}", check=False)
        return proc.returncode == 0

    def create_annotated_tag(self, name: str, message: str) -> None:
        self._git("tag", "-a", name, "-m", message)

    def delete_tag(self, name: str) -> None:
        self._git("tag", "-d", name)

    # --- history ---

    def log(self, to_ref: str, exclude_ref: Optional[str] = None) -> List[RawCommit]:
        """Commits reachable from ``to_ref`` but not from ``exclude_ref``, newest first."""
        rev = f"{exclude_ref}..{to_ref}" if exclude_ref else to_ref
        out = self._git("log", f"--format=%H{_FIELD_SEP}%at{_FIELD_SEP}%B{_RECORD_SEP}", rev).stdout
        commits = []
        for record in out.split(_RECORD_SEP):
            record = record.strip("\n")
            if not record:
                continue
            sha, ts, message = record.split(_FIELD_SEP, 2)
            commits.append(RawCommit(
                id=sha.strip(),
                author_time=datetime.fromtimestamp(int(ts), tz=timezone.utc),
                message=message.strip(),
            ))
        return commits

    def show_commit(self, ref: str) -> RawCommit:
        out = self._git("show", "-s", f"--format=%H{_FIELD_SEP}%at{_FIELD_SEP}%B", ref).stdout
        sha, ts, message = out.strip("\n").split(_FIELD_SEP, 2)
        return RawCommit(sha.strip(), datetime.fromtimestamp(int(ts), tz=timezone.utc), message.strip())

    # --- working tree ---

    def changed_files(self) -> List[ChangedFile]:
        """Staged, unstaged and untracked changes, sorted by path."""
        out = self._git("status", "--porcelain=v1", "-z", "--untracked-files=all").stdout
        tokens = out.split("\0")
        files = {}
        i = 0
        while i < len(tokens):
            token = tokens[i]
            i += 1
            if len(token) < 4:
                continue
            xy, path = token[:2], token[3:]
            old_path = None
            if "R" in xy:
                status = FileStatus.RENAMED
                old_path = tokens[i] if i < len(tokens) else None
                i += 1
            elif "D" in xy:
                status = FileStatus.DELETED
            elif xy in ("??", "A ", "AM") or "A" in xy:
                status = FileStatus.ADDED
            else:
                status = FileStatus.MODIFIED
            files[path] = ChangedFile(path=path, status=status, old_path=old_path)
        return [files[p] for p in sorted(files)]

    def diff_text(self, paths: Sequence[str] = ()) -> str:
        base = ["diff", "--no-color", "HEAD"] if self.head_sha() else ["diff", "--no-color", "--cached"]
        args = base + (["--", *paths] if paths else [])
        return self._git(*args).stdout

    def diff_numstat(self, paths: Sequence[str] = ()) -> tuple:
        base = ["diff", "--numstat", "HEAD"] if self.head_sha() else ["diff", "--numstat", "--cached"]
        args = base + (["--", *paths] if paths else [])
        additions = deletions = 0
        for line in self._git(*args).stdout.splitlines():
            parts = line.split("\t")
            if len(parts) >= 2 and parts[0].isdigit() and parts[1].isdigit():
                additions += int(parts[0])
                deletions += int(parts[1])
        return additions, deletions

    def stage(self, paths: Sequence[str]) -> None:
        if paths:
            self._git("add", "--", *paths)

    def remove(self, paths: Sequence[str]) -> None:
        if paths:
            self._git("rm", "--cached", "--quiet", "--ignore-unmatch", "--", *paths)

    def has_staged_changes(self) -> bool:
        proc = self._git("diff", "--cached", "--quiet", check=False)
        if proc.returncode == 0:
            return False
        if proc.returncode == 1:
            return True
        raise GitError(f"git check for staged changes failed: {proc.stderr.strip()}")

    def commit(self, message: str) -> str:
        self._git("commit", "-m", message)
        return self._out("rev-parse", "HEAD")

    def reset_soft(self, ref: str = "HEAD~1") -> None:
        self._git("reset", "--soft", ref)

    # --- remote ---

    def fetch(self, remote: str) -> None:
        proc = self._git("fetch", remote, check=False)
        if proc.returncode != 0:
            raise GitError(f"git fetch {remote} failed: {proc.stderr.strip()}", code="FETCH_FAILED")
        if proc.stderr.strip():
            logger.debug(f"git fetch output: {proc.stderr.strip()}")

    def push_with_tags(self, remote: str, branch: str) -> None:
        self._git("push", remote, f"HEAD:refs/heads/{branch}", "--follow-tags", "--atomic")
