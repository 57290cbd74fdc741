#!/usr/bin/env python3
"""Commit range resolution and Conventional Commits classification."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from keryx.utils.errors import UserInputError
from keryx.utils.git_backend import RawCommit
from keryx.utils.semver import SemVer, version_from_tag
from keryx.utils.vcs_models import ClassifiedCommit, CommitRange, CommitType

logger = logging.getLogger(__name__)

CONVENTIONAL_RE = re.compile(r"^(\w+)(?:\(([^)]+)\))?(!)?\s*:\s*")
_FULL_SHA_RE = re.compile(r"^[0-9a-fA-F]{40}$")


class ReferenceNotFoundError(UserInputError):
    def __init__(self, ref: str) -> None:
        super().__init__(
            f"Reference not found: {ref}",
            code="REFERENCE_NOT_FOUND",
            hint="Pass a commit SHA, branch or tag that exists in this repository.",
        )


@dataclass
class TagInfo:
    name: str
    commit_id: str
    version: Optional[SemVer]


def parse_commit_message(message: str) -> Tuple[Optional[CommitType], Optional[str], bool]:
    """Classify a commit message.

    Returns:
        (type, scope, breaking). Breaking is set by ``!`` before the colon or by a
        ``BREAKING CHANGE:`` / ``BREAKING-CHANGE:`` footer anywhere in the message.
    """
    first_line = message.split("\n", 1)[0]
    breaking_footer = "BREAKING CHANGE:" in message or "BREAKING-CHANGE:" in message
    match = CONVENTIONAL_RE.match(first_line)
    if not match:
        return None, None, breaking_footer
    return CommitType.from_str(match.group(1)), match.group(2), bool(match.group(3)) or breaking_footer


def classify_commit(raw: RawCommit) -> ClassifiedCommit:
    kind, scope, breaking = parse_commit_message(raw.message)
    return ClassifiedCommit(
        id=raw.id,
        author_time=raw.author_time,
        raw_message=raw.message,
        kind=kind,
        scope=scope,
        is_breaking=breaking,
    )


def resolve_reference(backend, ref: str) -> str:
    if _FULL_SHA_RE.match(ref):
        sha = backend.rev_parse(ref)
        if sha:
            return sha
    sha = backend.rev_parse(ref)
    if not sha:
        raise ReferenceNotFoundError(ref)
    return sha


def find_latest_reachable_tag(backend, ref: str = "HEAD") -> Optional[TagInfo]:
    """Most recent semver tag in the ancestry of ``ref``.

    Tags on branches that ``ref`` does not contain are never considered, so a
    maintenance branch resolves to its own line of releases.
    """
    name = backend.describe_reachable_tag(ref)
    if name and version_from_tag(name) is None:
        logger.debug(f"Nearest tag {name} is not a semantic version; scanning reachable tags")
        name = None
    if name is None:
        best: Optional[Tuple[SemVer, str]] = None
        for tag in backend.reachable_tags(ref):
            version = version_from_tag(tag)
            if version is not None and (best is None or version > best[0]):
                best = (version, tag)
        name = best[1] if best else None
    if name is None:
        return None
    commit_id = backend.rev_parse(name)
    if commit_id is None:
        return None
    return TagInfo(name=name, commit_id=commit_id, version=version_from_tag(name))


def resolve_range(backend, from_ref: Optional[str] = None, to_ref: Optional[str] = None) -> CommitRange:
    to_label = to_ref or "HEAD"
    to_id = resolve_reference(backend, to_label)
    if from_ref:
        return CommitRange(
            from_id=resolve_reference(backend, from_ref),
            to_id=to_id,
            from_label=from_ref,
            to_label=to_label,
        )
    tag = find_latest_reachable_tag(backend, to_label)
    if tag is not None:
        return CommitRange(from_id=tag.commit_id, to_id=to_id, from_label=tag.name, to_label=to_label)
    return CommitRange(
        from_id=backend.root_commit(to_label),
        to_id=to_id,
        from_label="root",
        to_label=to_label,
        from_is_root=True,
    )


def fetch_commits(backend, commit_range: CommitRange) -> List[ClassifiedCommit]:
    """Classified commits in ``from..to``; the root commit is included for initial releases."""
    if commit_range.from_is_root:
        raw = backend.log(commit_range.to_id)
    else:
        raw = backend.log(commit_range.to_id, exclude_ref=commit_range.from_id)
    commits = [classify_commit(r) for r in raw]
    logger.debug(f"✓ Read {len(commits)} commits in {commit_range.from_label}..{commit_range.to_label}")
    return commits
