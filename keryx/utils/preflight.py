#!/usr/bin/env python3
"""Release preflight: the repository must be clean, tracked, in sync and have something to ship."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from keryx.utils.commit_history import TagInfo, fetch_commits, find_latest_reachable_tag, resolve_range
from keryx.utils.errors import PreconditionError
from keryx.utils.git_backend import GitError
from keryx.utils.semver import SemVer
from keryx.utils.vcs_models import ClassifiedCommit

logger = logging.getLogger(__name__)


@dataclass
class PreflightResult:
    current_branch: str
    remote_name: str
    upstream_branch: str
    latest_tag: Optional[TagInfo]
    commits_since_tag: List[ClassifiedCommit] = field(default_factory=list)
    llm_available: bool = False

    @property
    def base_version(self) -> Optional[SemVer]:
        return self.latest_tag.version if self.latest_tag else None

    @property
    def tag_display(self) -> str:
        return self.latest_tag.name if self.latest_tag else "(none)"


def check_clean_working_tree(backend, verbose: bool = False) -> None:
    status = backend.status_porcelain()
    if status.strip():
        if verbose:
            print(f"Uncommitted changes:\n{status}", file=sys.stderr)
        raise PreconditionError(
            "Working tree has uncommitted changes",
            code="DIRTY_TREE",
            hint="Commit or stash your changes before shipping.",
        )


def get_current_branch(backend) -> str:
    branch = backend.current_branch()
    if branch is None:
        raise PreconditionError(
            "HEAD is detached; ship must run on a branch",
            code="DETACHED_HEAD",
            hint="Check out the branch you want to release (git checkout main).",
        )
    return branch


def get_tracking_branch(backend, branch: str):
    """(remote, upstream branch) from ``branch.<name>.remote`` / ``.merge``."""
    remote = backend.get_config(f"branch.{branch}.remote")
    merge_ref = backend.get_config(f"branch.{branch}.merge")
    upstream = merge_ref[len("refs/heads/"):] if merge_ref and merge_ref.startswith("refs/heads/") else merge_ref
    if not remote or not remote.strip() or not upstream or not upstream.strip():
        raise PreconditionError(
            f"Branch '{branch}' has no upstream tracking branch",
            code="MISSING_UPSTREAM",
            hint=f"Set one with: git push -u origin {branch}",
        )
    return remote, upstream


def check_remote_sync(backend, remote: str, upstream: str) -> None:
    """Local HEAD may equal or be ahead of the upstream, never behind or diverged."""
    backend.fetch(remote)
    local = backend.head_sha()
    if local is None:
        raise GitError("Could not determine HEAD", code="NO_COMMITS")
    upstream_ref = f"refs/remotes/{remote}/{upstream}"
    upstream_sha = backend.rev_parse(upstream_ref)
    if upstream_sha is None:
        raise GitError(f"Could not resolve upstream ref {upstream_ref}", code="UPSTREAM_NOT_FOUND")
    if not backend.is_ancestor(upstream_sha, local):
        raise PreconditionError(
            f"Local branch is behind {remote}/{upstream}",
            code="BEHIND_REMOTE",
            hint=f"Pull the latest changes first: git pull {remote} {upstream}",
        )


def check_llm_available(router, verbose: bool = False) -> bool:
    """At least one provider CLI is on PATH; an absent primary is only reported."""
    found = False
    for provider in (router.primary, router.fallback):
        installed = router.adapters[provider].is_installed()
        if verbose:
            state = "found" if installed else "not found"
            print(f"  LLM provider {provider.display_name} CLI {state}", file=sys.stderr)
        found = found or installed
    return found


def run_checks(backend, router, verbose: bool = False) -> PreflightResult:
    """Run every check in order; the first failing one raises.

    Raises:
        PreconditionError: DIRTY_TREE, DETACHED_HEAD, MISSING_UPSTREAM,
            BEHIND_REMOTE or NO_COMMITS_SINCE_TAG
        GitError: If git itself fails
    """
    check_clean_working_tree(backend, verbose)
    branch = get_current_branch(backend)
    remote, upstream = get_tracking_branch(backend, branch)
    check_remote_sync(backend, remote, upstream)

    latest_tag = find_latest_reachable_tag(backend, "HEAD")
    commit_range = resolve_range(backend, latest_tag.name if latest_tag else None, "HEAD")
    commits = fetch_commits(backend, commit_range)
    if not commits:
        tag_ref = latest_tag.name if latest_tag else "(initial)"
        raise PreconditionError(
            f"No commits since {tag_ref}",
            code="NO_COMMITS_SINCE_TAG",
            hint="Nothing to release. Make some commits first.",
        )

    llm_available = check_llm_available(router, verbose)
    logger.debug(f"✓ Preflight passed on {branch} ({len(commits)} commits, llm_available={llm_available})")
    return PreflightResult(
        current_branch=branch,
        remote_name=remote,
        upstream_branch=upstream,
        latest_tag=latest_tag,
        commits_since_tag=commits,
        llm_available=llm_available,
    )


def find_next_available_version(backend, version: SemVer, max_attempts: int = 1000) -> SemVer:
    """Next patch version whose ``v`` tag is free."""
    candidate = SemVer(version.major, version.minor, version.patch + 1)
    for _ in range(max_attempts):
        if not backend.tag_exists(candidate.tag):
            return candidate
        candidate = SemVer(candidate.major, candidate.minor, candidate.patch + 1)
    raise GitError(f"Failed to find an available tag after {max_attempts} attempts", code="NO_FREE_TAG")
