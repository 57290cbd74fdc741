#!/usr/bin/env python3
"""Commit helper: write Conventional Commits messages for the working tree, optionally split into groups."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from keryx.clients.llm_router import LlmError, LlmRouter, fallback_notice
from keryx.configs.config import Config
from keryx.utils.changelog_models import CommitMessage, SplitAnalysis
from keryx.utils.errors import print_warning
from keryx.utils.executor import stage_files
from keryx.utils.split_commit import analyze_split, collect_diff, generate_commit_message
from keryx.utils.vcs_models import ChangedFile, DiffSummary

logger = logging.getLogger(__name__)


@dataclass
class CommitOutcome:
    messages: List[str] = field(default_factory=list)
    commits: List[str] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return bool(self.commits)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


class CommitAgent:
    def __init__(self, backend, router: LlmRouter, out: Callable[[str], None] = print, verbose: bool = False):
        self.backend = backend
        self.router = router
        self.out = out
        self.verbose = verbose

    def _generate(self, diff: DiffSummary, branch: str) -> CommitMessage:
        message = generate_commit_message(self.router, diff, branch)
        notice = fallback_notice(self.router.last_completion) if self.router.last_completion else None
        if notice:
            print_warning(notice)
        return message

    def display(self, message: CommitMessage) -> None:
        self.out("")
        self.out(message.subject)
        if message.body and message.body.strip():
            self.out("")
            self.out(message.body.strip())
        if message.breaking:
            self.out("")
            self.out("⚠ BREAKING CHANGE")
        if message.changelog_category and message.changelog_description:
            self.out("")
            self.out(f"Changelog ({message.changelog_category.lower()}): {message.changelog_description}")
        elif self.verbose:
            self.out("")
            self.out("Internal change (excluded from changelog)")
        self.out("")

    def _maybe_split(self, diff: DiffSummary, branch: str, no_split: bool) -> Optional[SplitAnalysis]:
        count = len(diff.changed_files)
        if no_split or count < Config.SPLIT_ANALYSIS_THRESHOLD:
            if not no_split:
                logger.debug(f"Skipping split analysis ({count} files < threshold {Config.SPLIT_ANALYSIS_THRESHOLD})")
            return None
        self.out("Checking if changes should be split into multiple commits...")
        try:
            return analyze_split(self.router, diff, branch, verbose=self.verbose)
        except LlmError as e:
            logger.warning(f"Split analysis failed: {e}")
            print_warning("⚠ Split analysis failed, falling back to single commit")
            if self.verbose:
                print_warning(f"  Details: {e.detailed()}")
            return None

    def run(self, no_split: bool = False, message_only: bool = False, dry_run: bool = False) -> CommitOutcome:
        """Generate message(s) for the pending changes and commit them.

        Raises:
            PreconditionError: NO_CHANGES when there is nothing to commit
            LlmError: If message generation fails on both providers
        """
        diff = collect_diff(self.backend)
        logger.debug(
            f"Found {len(diff.changed_files)} changed files ({diff.additions} additions, "
            f"{diff.deletions} deletions, truncated={diff.truncated})"
        )
        self.out(f"Analyzing {_plural(len(diff.changed_files), 'changed file')}...")
        branch = self.backend.current_branch() or "HEAD"

        analysis = self._maybe_split(diff, branch, no_split)
        if analysis is not None:
            return self._run_split(diff, analysis, branch, message_only, dry_run)
        return self._run_single(diff, branch, message_only, dry_run)

    def _run_single(self, diff: DiffSummary, branch: str, message_only: bool, dry_run: bool) -> CommitOutcome:
        self.out(
            f"Generating commit message with {self.router.primary.display_name} "
            f"(fallback: {self.router.fallback.display_name})..."
        )
        message = self._generate(diff, branch)
        self.display(message)
        formatted = message.format()
        if message_only or dry_run:
            if message_only:
                self.out(formatted)
            return CommitOutcome(messages=[formatted])

        stage_files(self.backend, diff.changed_files)
        sha = self.backend.commit(formatted)
        self.out(f"✓ Created commit {sha[:7]}")
        return CommitOutcome(messages=[formatted], commits=[sha])

    def _run_split(
        self, diff: DiffSummary, analysis: SplitAnalysis, branch: str, message_only: bool, dry_run: bool,
    ) -> CommitOutcome:
        self.out("")
        self.out(f"Proposed split into {len(analysis.groups)} commits:")
        for i, group in enumerate(analysis.groups, 1):
            self.out(f"  {i}. {group.label} ({_plural(len(group.files), 'file')})")
            if self.verbose:
                for path in group.files:
                    self.out(f"     - {path}")
        self.out("")

        by_path: Dict[str, ChangedFile] = {f.path: f for f in diff.changed_files}
        # All group diffs are taken against the original HEAD, before any commit moves it
        group_diffs = [collect_diff(self.backend, group.files) for group in analysis.groups]

        outcome = CommitOutcome()
        total = len(analysis.groups)
        for i, (group, group_diff) in enumerate(zip(analysis.groups, group_diffs), 1):
            self.out(f"[{i}/{total}] {group.label}")
            self.out(
                f"  Generating message with {self.router.primary.display_name} "
                f"(fallback: {self.router.fallback.display_name})..."
            )
            message = self._generate(group_diff, branch)
            self.display(message)
            formatted = message.format()
            outcome.messages.append(formatted)
            if message_only or dry_run:
                continue
            stage_files(self.backend, [by_path[path] for path in group.files])
            sha = self.backend.commit(formatted)
            self.out(f"  ✓ Created commit {sha[:7]}")
            outcome.commits.append(sha)

        if message_only:
            self.out("\n---\n".join(outcome.messages))
        elif outcome.commits:
            self.out("")
            self.out(f"✓ Created {len(outcome.commits)} commits:")
            for sha, group in zip(outcome.commits, analysis.groups):
                self.out(f"  {sha[:7]} -- {group.label}")
        return outcome
