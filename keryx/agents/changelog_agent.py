#!/usr/bin/env python3
"""Changelog agent: draft entries from history, verify them against the code, write them.

Used by the ``generate`` and ``init`` subcommands and by the ship pipeline.
"""

from __future__ import annotations

import logging
import sys
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

from keryx.clients.github_client import GitHubClient, get_github_token, parse_github_remote
from keryx.clients.llm_router import LlmCompletion, LlmRouter, fallback_notice
from keryx.configs.config import Config
from keryx.utils.changelog_models import VERIFIED_CHANGELOG_SCHEMA, ChangelogOutput
from keryx.utils.changelog_writer import (
    format_version_section,
    generate_summary,
    read_changelog,
    render_unreleased,
    write_changelog,
    write_text,
)
from keryx.utils.commit_history import fetch_commits, find_latest_reachable_tag, resolve_range
from keryx.utils.errors import KeryxError, NetworkError, UserInputError, print_degradation, print_warning
from keryx.utils.manifest_updater import read_project_description
from keryx.utils.metrics import Timer
from keryx.utils.prompt_builder import build_changelog_prompt, build_verification_prompt
from keryx.utils.semver import SemVer
from keryx.utils.vcs_models import ClassifiedCommit, CommitRange, PullRequestRecord
from keryx.utils.verification_models import VerificationEvidence
from keryx.utils.verification_scanner import check_ripgrep_installed, gather_verification_evidence
from keryx.utils.version_bump import calculate_next_version, determine_version_with_llm

logger = logging.getLogger(__name__)


def _shorten(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len - 3] + "..."


def _default_github_factory() -> GitHubClient:
    return GitHubClient(token=get_github_token())


class ChangelogAgent:
    """Turns a commit range into verified changelog entries."""

    def __init__(
        self,
        backend,
        router: LlmRouter,
        repo_path: Optional[Path] = None,
        github_factory: Callable[[], GitHubClient] = _default_github_factory,
        rg=None,
        out: Callable[[str], None] = print,
        verbose: bool = False,
    ):
        """Initialize the agent.

        Args:
            backend: Git backend for the repository
            router: LLM router shared with the rest of the run
            repo_path: Working tree to verify against (defaults to the repo root)
            github_factory: Builds the GitHub client; called only when PRs are fetched
            rg: Optional ripgrep runner override
            out: Where progress lines go
            verbose: Show extra verification detail
        """
        self.backend = backend
        self.router = router
        self._repo_path = repo_path
        self._github_factory = github_factory
        self._rg = rg
        self.out = out
        self.verbose = verbose

    @property
    def repo_path(self) -> Path:
        if self._repo_path is None:
            self._repo_path = self.backend.repo_root()
        return self._repo_path

    def repo_name(self) -> str:
        url = self.backend.remote_url("origin")
        if url:
            try:
                return parse_github_remote(url)[1]
            except NetworkError:
                pass
        return "repository"

    # --- pull requests ---

    def fetch_pull_requests(
        self,
        since=None,
        limit: Optional[int] = None,
        strict: bool = False,
    ) -> List[PullRequestRecord]:
        """Merged PRs for the origin remote; degrades to an empty list unless strict.

        Raises:
            NetworkError: In strict mode, when anything about the fetch fails
        """
        client = None
        try:
            url = self.backend.remote_url("origin")
            if not url:
                raise NetworkError("No 'origin' remote found", code="NO_REMOTE")
            owner, repo = parse_github_remote(url)
            client = self._github_factory()
            with Timer("github.fetch_prs", repo=f"{owner}/{repo}"):
                prs = client.fetch_merged_prs(owner, repo, since=since, limit=limit)
        except KeryxError as e:
            if strict:
                raise NetworkError(
                    f"GitHub API error: {e.message}",
                    code=e.code,
                    hint="Use --no-prs to skip PR fetching, or check your GitHub token.",
                ) from e
            logger.warning(f"GitHub API error: {e}")
            print_degradation(
                "Could not fetch pull requests",
                "Changelog will be generated from commits only (may be incomplete)",
                "Set GITHUB_TOKEN or run `gh auth login`",
                hint="Use --strict to fail instead of continuing with partial data",
            )
            print(f"  Error: {e.message}", file=sys.stderr)
            return []
        finally:
            if client is not None:
                client.close()
        self.out(f"Found {len(prs)} merged PRs")
        return prs

    def pull_requests_for_range(
        self, commit_range: CommitRange, no_prs: bool, strict: bool, limit: Optional[int] = None,
    ) -> List[PullRequestRecord]:
        if no_prs:
            return []
        since = None
        if not commit_range.from_is_root:
            since = self.backend.show_commit(commit_range.from_id).author_time
        return self.fetch_pull_requests(since=since, limit=limit, strict=strict)

    # --- LLM passes ---

    def _report_fallback(self, completion: LlmCompletion) -> None:
        notice = fallback_notice(completion)
        if notice:
            print_warning(notice)

    def draft(
        self,
        commits: List[ClassifiedCommit],
        pull_requests: List[PullRequestRecord],
        previous_version: Optional[SemVer],
        project_description: Optional[str] = None,
    ) -> ChangelogOutput:
        prompt = build_changelog_prompt(
            commits,
            pull_requests,
            str(previous_version) if previous_version else None,
            self.repo_name(),
            project_description,
        )
        self.out(
            f"Generating release notes with {self.router.primary.display_name} "
            f"(fallback: {self.router.fallback.display_name})..."
        )
        with Timer("llm.generate", commits=len(commits)):
            completion = self.router.generate(prompt)
        self._report_fallback(completion)
        return completion.output

    def report_evidence(self, evidence: VerificationEvidence) -> None:
        low = evidence.low_confidence_entries()
        if low:
            lines = [f"⚠ Found {len(low)} entries with low confidence:"]
            for entry in low:
                lines.append(f"  • {_shorten(entry.original_description, 60)}")
                lines.extend(f"    └─ {issue}" for issue in entry.issues())
            print_warning("\n".join(lines))
        total_failures = sum(len(e.failed_searches) for e in evidence.entries)
        if total_failures:
            print_warning(
                f"⚠ Note: {total_failures} keyword search(es) failed during verification. "
                "Confidence scores may be affected."
            )
        for entry in evidence.entries:
            logger.debug(
                f"Entry: {_shorten(entry.original_description, 40)} | Confidence: {entry.confidence} | "
                f"Keywords: {len(entry.keyword_matches)} | Stubs: {len(entry.stub_indicators)}"
            )

    def verify(self, draft: ChangelogOutput) -> ChangelogOutput:
        """Second LLM pass that keeps, corrects or drops each draft entry based on code evidence.

        Raises:
            VerificationError: If ripgrep is not installed
            LlmError: If both providers fail
        """
        check_ripgrep_installed()
        self.out("Verifying entries against codebase...")
        with Timer("verification.gather", entries=len(draft.entries)):
            evidence = gather_verification_evidence(draft.entries, self.repo_path, rg=self._rg)
        self.report_evidence(evidence)

        self.out(
            f"Running verification agent with {self.router.primary.display_name} "
            f"(fallback: {self.router.fallback.display_name})..."
        )
        with Timer("llm.verify", entries=len(draft.entries)):
            completion = self.router.generate(
                build_verification_prompt(draft, evidence), schema=VERIFIED_CHANGELOG_SCHEMA,
            )
        self._report_fallback(completion)
        verified: ChangelogOutput = completion.output

        original, kept = len(draft.entries), len(verified.entries)
        if kept < original:
            print_warning(f"⚠ Verification removed {original - kept} potentially inaccurate entries")
        elif kept == original:
            self.out(f"✓ All {kept} entries verified")
        if self.verbose:
            for entry in verified.entries:
                if entry.note:
                    self.out(f"  [{entry.category.value}] {_shorten(entry.description, 50)}: {entry.note}")
        return verified

    def build(
        self,
        commits: List[ClassifiedCommit],
        pull_requests: List[PullRequestRecord],
        previous_version: Optional[SemVer],
        no_verify: bool = False,
        project_description: Optional[str] = None,
    ) -> ChangelogOutput:
        """Draft, then verify unless disabled. May return an empty output."""
        output = self.draft(commits, pull_requests, previous_version, project_description)
        if not output.entries:
            return output
        if no_verify:
            logger.debug("Skipping verification (--no-verify flag)")
            return output
        return self.verify(output)

    # --- subcommands ---

    def generate(
        self,
        output_path: Path,
        from_ref: Optional[str] = None,
        to_ref: str = "HEAD",
        set_version: Optional[SemVer] = None,
        no_prs: bool = False,
        pr_limit: Optional[int] = None,
        no_llm_bump: bool = False,
        no_verify: bool = False,
        dry_run: bool = False,
        force: bool = False,
        strict: bool = False,
        today: Optional[date] = None,
    ) -> Optional[ChangelogOutput]:
        """Add a section for the next version to ``output_path``.

        Returns:
            The entries that were written (or previewed), or None when there was nothing to add

        Raises:
            UserInputError: If the version already exists and ``force`` is not set
        """
        commit_range = resolve_range(self.backend, from_ref, to_ref)
        self.out(f"Analyzing commits from {commit_range.from_label} to {commit_range.to_label}...")
        commits = fetch_commits(self.backend, commit_range)
        if not commits:
            self.out(f"No changes found since {commit_range.from_label}. Nothing to add.")
            return None
        self.out(f"Found {len(commits)} commits")

        pull_requests = self.pull_requests_for_range(commit_range, no_prs, strict, pr_limit)

        latest = find_latest_reachable_tag(self.backend, to_ref)
        base_version = latest.version if latest else None
        reasoning = None
        if set_version is not None:
            next_version = set_version
        elif no_llm_bump:
            next_version = calculate_next_version(base_version, commits)
        else:
            next_version, reasoning = determine_version_with_llm(
                self.router, base_version, commits, pull_requests, self.repo_name(),
            )
        self.out(f"Version: {base_version or 'none'} -> {next_version}")
        if self.verbose and reasoning:
            self.out(f"  LLM bump reasoning: {reasoning}")

        existing = read_changelog(output_path)
        replace_existing = False
        if existing is not None and existing.has_version(next_version):
            if not force:
                raise UserInputError(
                    f"Version {next_version} already exists in {output_path}. Use --force to overwrite, "
                    "or use --set-version to specify a different version.",
                    code="VERSION_EXISTS",
                )
            print_warning(f"⚠ Warning: Version {next_version} already exists in changelog, overwriting due to --force")
            replace_existing = True

        description = read_project_description(self.repo_path) if base_version is None else None
        draft = self.draft(commits, pull_requests, base_version, description)
        if not draft.entries:
            self.out("No changelog entries generated. Nothing to add.")
            return None
        output = draft if no_verify else self.verify(draft)
        if no_verify:
            logger.debug("Skipping verification (--no-verify flag)")
        if not output.entries:
            self.out("No verified changelog entries found. Nothing to add.")
            return None

        if dry_run:
            self.out("\n--- Dry Run Output ---\n")
            self.out(format_version_section(next_version, (today or date.today()).isoformat(), output))
            return output

        write_changelog(output_path, output, next_version, today=today, replace_existing=replace_existing)
        self.out(f"✓ {generate_summary(output, Path(output_path).name)}")
        return output

    def init(
        self,
        output_path: Path,
        unreleased: bool = False,
        no_prs: bool = False,
        pr_limit: Optional[int] = None,
        no_verify: bool = False,
        dry_run: bool = False,
        strict: bool = False,
    ) -> str:
        """Create a new changelog; returns the rendered content.

        Raises:
            UserInputError: If ``output_path`` exists and this is not a dry run
        """
        output_path = Path(output_path)
        if output_path.exists() and not dry_run:
            raise UserInputError(
                f"{output_path} already exists. Delete it first or use a different output path with -o.",
                code="CHANGELOG_EXISTS",
            )

        output = None
        if unreleased:
            output = self._unreleased_entries(no_prs, pr_limit, no_verify, strict)

        content = render_unreleased(output)
        if dry_run:
            self.out("--- Dry Run Output ---\n")
            self.out(content)
            return content
        write_text(output_path, content)
        if output is not None:
            self.out(f"✓ Created {output_path} with {len(output.entries)} entries in [Unreleased]")
        else:
            self.out(f"✓ Created {output_path} with [Unreleased] section")
        return content

    def _unreleased_entries(
        self, no_prs: bool, pr_limit: Optional[int], no_verify: bool, strict: bool,
    ) -> Optional[ChangelogOutput]:
        self.out("Analyzing all commits for [Unreleased] section...")
        head = self.backend.head_sha()
        if head is None:
            return None
        commit_range = CommitRange(
            from_id=self.backend.root_commit("HEAD"),
            to_id=head,
            from_label="root",
            to_label="HEAD",
            from_is_root=True,
        )
        commits = fetch_commits(self.backend, commit_range)
        if not commits:
            return None
        self.out(f"Found {len(commits)} commits")
        pull_requests = self.pull_requests_for_range(commit_range, no_prs, strict, pr_limit)
        output = self.build(
            commits, pull_requests, None, no_verify=no_verify,
            project_description=read_project_description(self.repo_path),
        )
        if not output.entries:
            self.out("No verified changelog entries found. Creating basic changelog template.")
            return None
        return output


def detect_changelog_path(root: Path) -> Optional[Path]:
    for name in Config.CHANGELOG_CANDIDATES:
        path = Path(root) / name
        if path.exists():
            return path
    return None
