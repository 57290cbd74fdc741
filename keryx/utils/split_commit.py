#!/usr/bin/env python3
"""Working-tree diff collection, commit message generation and split analysis."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from keryx.configs.config import Config
from keryx.utils.changelog_models import CommitMessage, SplitAnalysis
from keryx.utils.errors import PreconditionError, print_warning
from keryx.utils.json_sanitizer import JSONSanitizerError, parse_model
from keryx.utils.prompt_builder import build_commit_prompt, build_split_prompt
from keryx.utils.prompt_sanitizer import truncate_utf8
from keryx.utils.vcs_models import DiffSummary

logger = logging.getLogger(__name__)


def collect_diff(backend, paths: Sequence[str] = (), max_bytes: int = Config.DIFF_MAX_BYTES) -> DiffSummary:
    """Staged, unstaged and untracked changes, optionally limited to ``paths``.

    Raises:
        PreconditionError: NO_CHANGES when the working tree is clean
    """
    changed = backend.changed_files()
    if paths:
        wanted = set(paths)
        changed = [f for f in changed if f.path in wanted]
    if not changed:
        raise PreconditionError("No changes to commit (working tree is clean)", code="NO_CHANGES")

    scope = [f.path for f in changed] if paths else []
    diff_text = backend.diff_text(scope)
    additions, deletions = backend.diff_numstat(scope)
    truncated_text = truncate_utf8(diff_text, max_bytes)
    return DiffSummary(
        changed_files=changed,
        diff_text=truncated_text,
        truncated=len(truncated_text) < len(diff_text),
        additions=additions,
        deletions=deletions,
    )


def validate_split(analysis: SplitAnalysis, changed_files: Sequence[str]) -> Optional[str]:
    """Problem with a proposed split, or None if every file is in exactly one group."""
    known = set(changed_files)
    seen = set()
    for group in analysis.groups:
        if not group.files:
            return f"Empty group: '{group.label}'"
        for path in group.files:
            if path not in known:
                return f"Unknown file in group '{group.label}': {path}"
            if path in seen:
                return f"Duplicate file across groups: {path}"
            seen.add(path)
    for path in changed_files:
        if path not in seen:
            return f"File not assigned to any group: {path}"
    return None


def analyze_split(
    router,
    diff: DiffSummary,
    branch: str,
    verbose: bool = False,
    warn: Callable[[str], None] = print_warning,
) -> Optional[SplitAnalysis]:
    """Ask the LLM whether the changes should become several commits.

    Returns the analysis only when it proposes two or more valid groups. Parse
    and validation problems fall back to a single commit; LLM errors propagate.
    """
    completion = router.generate_raw(build_split_prompt(diff, branch))
    try:
        analysis = parse_model(completion.output, SplitAnalysis)
    except JSONSanitizerError as e:
        logger.warning(f"Failed to parse split analysis JSON: {e}")
        warn("⚠ Split analysis response could not be parsed, falling back to single commit")
        logger.debug(f"Raw response: {str(completion.output)[:500]}")
        return None

    if len(analysis.groups) <= 1:
        return None

    problem = validate_split(analysis, diff.paths())
    if problem:
        logger.warning(f"Split analysis validation failed: {problem}")
        warn("⚠ Split analysis failed validation, falling back to single commit")
        if verbose:
            warn(f"  Details: {problem}")
        return None
    return analysis


def generate_commit_message(router, diff: DiffSummary, branch: str) -> CommitMessage:
    """Conventional Commits message for ``diff``.

    Raises:
        JSONSanitizerError: If the response is not a commit message object
        LlmError: If both providers fail
    """
    prompt = build_commit_prompt(diff, branch)
    logger.debug(
        f"Commit prompt: {len(prompt)} chars; {len(diff.changed_files)} files, "
        f"{diff.additions} additions, {diff.deletions} deletions, truncated={diff.truncated}"
    )
    completion = router.generate_raw(prompt)
    try:
        return parse_model(completion.output, CommitMessage)
    except JSONSanitizerError as e:
        logger.debug(f"Raw response: {str(completion.output)[:500]}")
        raise JSONSanitizerError(
            f"Could not parse commit message JSON: {e.message}. Response: {str(completion.output)[:200]}",
            code=e.code,
        ) from e
