#!/usr/bin/env python3
"""Next-version resolution: algorithmic from commit types, or LLM-assisted with fallback."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from keryx.utils.changelog_models import VersionBumpResponse
from keryx.utils.errors import KeryxError, print_warning
from keryx.utils.json_sanitizer import JSONSanitizerError, parse_model
from keryx.utils.prompt_builder import build_version_bump_prompt
from keryx.utils.semver import BumpType, SemVer, apply_bump
from keryx.utils.vcs_models import ClassifiedCommit, CommitType, PullRequestRecord

logger = logging.getLogger(__name__)


def determine_bump_type(commits: List[ClassifiedCommit]) -> BumpType:
    """Breaking wins, then any feat, otherwise patch (including no commits)."""
    if any(c.is_breaking for c in commits):
        return BumpType.MAJOR
    if any(c.kind is CommitType.FEAT for c in commits):
        return BumpType.MINOR
    return BumpType.PATCH


def calculate_next_version(base: Optional[SemVer], commits: List[ClassifiedCommit]) -> SemVer:
    return apply_bump(base, determine_bump_type(commits))


def parse_version_bump_response(raw: str) -> Optional[Tuple[BumpType, str]]:
    """Decode ``{"bump_type", "reasoning"}``; None if unusable."""
    try:
        parsed = parse_model(raw, VersionBumpResponse)
    except JSONSanitizerError:
        return None
    try:
        bump = BumpType[parsed.bump_type.strip().upper()]
    except KeyError:
        return None
    return bump, parsed.reasoning


def determine_version_with_llm(
    router,
    base: Optional[SemVer],
    commits: List[ClassifiedCommit],
    pull_requests: List[PullRequestRecord],
    repo_name: str,
    warn: Callable[[str], None] = print_warning,
) -> Tuple[SemVer, Optional[str]]:
    """Ask the LLM for the bump kind; never fails.

    Returns:
        (next_version, reasoning). Reasoning is None whenever the algorithmic
        result was used instead of the LLM's answer.
    """
    fallback = calculate_next_version(base, commits)
    try:
        prompt = build_version_bump_prompt(commits, pull_requests, str(base) if base else None, repo_name)
        completion = router.generate_raw(prompt)
    except KeryxError as e:
        warn(f"⚠ LLM version bump failed: {e}. Using algorithmic bump.")
        return fallback, None

    parsed = parse_version_bump_response(completion.output)
    if parsed is None:
        warn(
            "⚠ Could not parse LLM version bump response. Using algorithmic bump. "
            f"Response: {str(completion.output)[:200]}"
        )
        return fallback, None

    bump, reasoning = parsed
    logger.info(f"✓ LLM chose a {bump} bump via {completion.provider.value}")
    return apply_bump(base, bump), reasoning
