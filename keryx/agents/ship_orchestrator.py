#!/usr/bin/env python3
"""The ``ship`` pipeline: preflight, version, changelog entries, manifests, commit, tag, push.

Nothing in the repository changes before the user confirms; a dry run stops at
the summary. A push failure rolls back the local tag and release commit.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from keryx.agents.changelog_agent import ChangelogAgent, detect_changelog_path
from keryx.clients.llm_router import LlmRouter
from keryx.configs.config import Config
from keryx.utils.changelog_models import ChangelogOutput
from keryx.utils.changelog_writer import read_changelog, write_changelog
from keryx.utils.errors import (
	CancelledError,
	DataIntegrityError,
	ExternalToolError,
	NetworkError,
	PreconditionError,
	RollbackFailedError,
)
from keryx.utils.executor import CommitResult, commit_and_tag, manual_cleanup_hint, push_with_tags, rollback
from keryx.utils.manifest_updater import VersionFile, detect_version_files, update_version_file
from keryx.utils.preflight import PreflightResult, find_next_available_version, run_checks
from keryx.utils.semver import SemVer
from keryx.utils.version_bump import calculate_next_version, determine_version_with_llm

logger = logging.getLogger(__name__)


class ShipState(str, Enum):
	START = "start"
	PREFLIGHT = "preflight"
	VERSION_RESOLVE = "version_resolve"
	TAG_COLLISION_CHECK = "tag_collision_check"
	MANIFEST_DETECT = "manifest_detect"
	CHANGELOG_CHECK = "changelog_check"
	CONFIRM = "confirm"
	EXECUTE = "execute"
	ROLLBACK = "rollback"
	SUCCESS = "success"


@dataclass
class ShipOptions:
	set_version: Optional[SemVer] = None
	output: Path = Path(Config.DEFAULT_CHANGELOG)
	dry_run: bool = False
	no_llm_bump: bool = False
	no_prs: bool = False
	pr_limit: Optional[int] = None
	no_verify: bool = False
	strict: bool = False
	verbose: bool = False


@dataclass
class ShipResult:
	version: SemVer
	tag_name: str
	dry_run: bool
	changelog_generated: bool
	commit: Optional[CommitResult] = None
	files: List[Path] = field(default_factory=list)


def prompt_confirm(question: str, default: bool = True) -> bool:
	"""Yes/no prompt on the terminal. Ctrl-C or EOF cancels."""
	suffix = "[Y/n]" if default else "[y/N]"
	try:
		answer = input(f"{question} {suffix} ").strip().lower()
	except (EOFError, KeyboardInterrupt) as e:
		raise CancelledError() from e
	if not answer:
		return default
	return answer in ("y", "yes")


class ShipOrchestrator:
	"""Runs one release; ``state`` tracks the stage reached."""

	def __init__(
		self,
		backend,
		router: LlmRouter,
		options: Optional[ShipOptions] = None,
		confirm: Callable[[str, bool], bool] = prompt_confirm,
		out: Callable[[str], None] = print,
		changelog_agent: Optional[ChangelogAgent] = None,
		today: Optional[date] = None,
	):
		self.backend = backend
		self.router = router
		self.options = options or ShipOptions()
		self.confirm = confirm
		self.out = out
		self.today = today
		self.agent = changelog_agent or ChangelogAgent(backend, router, out=out, verbose=self.options.verbose)
		self.state = ShipState.START

	def _err(self, line: str = "") -> None:
		print(line, file=sys.stderr)

	def _transition(self, state: ShipState) -> None:
		logger.debug(f"ship: {self.state.value} -> {state.value}")
		self.state = state

	# --- stages ---

	def preflight(self) -> PreflightResult:
		self._transition(ShipState.PREFLIGHT)
		self.out("Preflight checks:")
		result = run_checks(self.backend, self.router, verbose=self.options.verbose)
		self.out("  [PASS] Working tree is clean")
		self.out("  [PASS] Local branch is up to date with remote")
		self.out(f"  [PASS] {len(result.commits_since_tag)} commits since {result.tag_display}")
		if not self.options.no_llm_bump:
			if result.llm_available:
				self.out("  [PASS] LLM provider available")
			else:
				self.out("  [WARN] LLM provider not available, using algorithmic versioning")
		self.out("")
		return result

	def resolve_version(self, pre: PreflightResult) -> SemVer:
		self._transition(ShipState.VERSION_RESOLVE)
		reasoning = None
		if self.options.set_version is not None:
			version = self.options.set_version
		elif self.options.no_llm_bump or not pre.llm_available:
			version = calculate_next_version(pre.base_version, pre.commits_since_tag)
		else:
			version, reasoning = determine_version_with_llm(
				self.router, pre.base_version, pre.commits_since_tag, [], self.agent.repo_name(),
			)
		suffix = f" ({reasoning})" if reasoning else ""
		self.out(f"Version: {pre.base_version or 'none'} -> {version}{suffix}")
		return version

	def check_tag_collision(self, version: SemVer) -> SemVer:
		"""Offer the next free patch version when ``v<version>`` is taken.

		Raises:
			PreconditionError: TAG_EXISTS when the suggestion is declined
		"""
		self._transition(ShipState.TAG_COLLISION_CHECK)
		if not self.backend.tag_exists(version.tag):
			return version
		suggested = find_next_available_version(self.backend, version)
		self.out("")
		if not self.confirm(f"{version.tag} already exists. Did you mean {suggested}?", True):
			raise PreconditionError(
				f"Tag {version.tag} already exists",
				code="TAG_EXISTS",
				hint="Use --set-version to choose a different version.",
			)
		return suggested

	def detect_manifests(self, root: Path, version: SemVer) -> List[VersionFile]:
		self._transition(ShipState.MANIFEST_DETECT)
		files = detect_version_files(root)
		self.out("")
		self.out("Version files:")
		for vf in files:
			self.out(f"  [UPDATE] {vf.kind}: {vf.current_version} -> {version}")
		return files

	def changelog_path(self, root: Path) -> Path:
		output = Path(self.options.output)
		path = output if output.is_absolute() else root / output
		if output == Path(Config.DEFAULT_CHANGELOG):
			return detect_changelog_path(root) or path
		return path

	def check_changelog(self, path: Path, version: SemVer, pre: PreflightResult) -> bool:
		"""True when a section for ``version`` must be generated.

		Raises:
			ExternalToolError: LLM_UNAVAILABLE when generation is needed but no provider is installed
		"""
		self._transition(ShipState.CHANGELOG_CHECK)
		parsed = read_changelog(path)
		self.out("")
		if parsed is not None and parsed.has_version(version):
			self.out(f"  [SKIP] Changelog section for {version} already exists")
			return False
		self.out(f"  [CREATE] Changelog section for {version}")
		if not pre.llm_available and not self.options.dry_run:
			raise ExternalToolError(
				f"{self.router.primary.display_name} CLI not available. Install/configure the provider "
				"or add the changelog section manually.",
				code="LLM_UNAVAILABLE",
			)
		return True

	def print_summary(self, pre: PreflightResult, version: SemVer, generate: bool) -> None:
		changelog = (
			f"Auto-generated ({len(pre.commits_since_tag)} commits)" if generate else "Existing section (skip)"
		)
		self.out("")
		self.out("Summary:")
		self.out(f"  Version:   {pre.base_version or 'none'} -> {version}")
		self.out(f"  Changelog: {changelog}")
		self.out(f"  Commit:    chore(release): {version.tag}")
		self.out(f"  Tag:       {version.tag}")
		self.out(f"  Push to:   {pre.remote_name}/{pre.upstream_branch}")

	def generate_section(self, pre: PreflightResult) -> ChangelogOutput:
		"""Generate and verify the entries for the new section.

		Raises:
			DataIntegrityError: EMPTY_OUTPUT when no entry survives generation or verification
		"""
		commits = pre.commits_since_tag
		prs = []
		if not self.options.no_prs:
			since = None
			if pre.latest_tag is not None:
				since = self.backend.show_commit(pre.latest_tag.commit_id).author_time
			prs = self.agent.fetch_pull_requests(
				since=since, limit=self.options.pr_limit, strict=self.options.strict,
			)
		self.out("  Generating changelog...")
		output = self.agent.build(commits, prs, pre.base_version, no_verify=self.options.no_verify)
		if not output.entries:
			raise DataIntegrityError(
				"No changelog entries generated",
				code="EMPTY_OUTPUT",
				hint="Add the changelog section manually, then run ship again.",
			)
		return output

	def execute(
		self, pre: PreflightResult, version: SemVer, files: List[VersionFile],
		changelog_path: Path, generate: bool,
	) -> ShipResult:
		self._transition(ShipState.EXECUTE)
		# entries first: a failed generation must leave the manifests untouched
		output = self.generate_section(pre) if generate else None
		for vf in files:
			update_version_file(vf, version)
			self.out(f"  [DONE] Updated {vf.kind}")

		backup = None
		try:
			if output is not None:
				backup = write_changelog(changelog_path, output, version, today=self.today)
				self.out(f"  [DONE] Updated {changelog_path.name}")

			to_stage = [vf.path for vf in files] + ([changelog_path] if generate else [])
			message = f"chore(release): {version.tag}"
			result = commit_and_tag(self.backend, message, version.tag, to_stage)
			if result.commit_created:
				self.out(f"  [DONE] Created commit: {message}")
			else:
				self.out("  [SKIP] No changes to commit; using current HEAD")
			self.out(f"  [DONE] Created tag: {version.tag}")

			try:
				push_with_tags(self.backend, pre.remote_name, pre.upstream_branch)
			except NetworkError as e:
				self._rollback(result, message, e)
				raise
		finally:
			if backup is not None and backup.exists():
				backup.unlink()

		self.out(f"  [DONE] Pushed to {pre.remote_name}/{pre.upstream_branch}")
		self.out("")
		self.out(f"Release {version.tag} shipped!")
		self._transition(ShipState.SUCCESS)
		return ShipResult(
			version=version,
			tag_name=version.tag,
			dry_run=False,
			changelog_generated=generate,
			commit=result,
			files=to_stage,
		)

	def _rollback(self, result: CommitResult, message: str, error: NetworkError) -> None:
		self._transition(ShipState.ROLLBACK)
		self._err(f"  [FAIL] {error.message}")
		self._err()
		self._err("Rolling back...")
		try:
			rollback(self.backend, result, primary=error)
		except RollbackFailedError as rollback_error:
			self._err(f"  [FAIL] Rollback failed: {rollback_error.message}")
			self._err()
			self._err(manual_cleanup_hint(result.tag_name, result.commit_created))
			raise
		self._err(f"  [DONE] Deleted tag {result.tag_name}")
		if result.commit_created:
			self._err(f"  [DONE] Reset commit {message}")
		self._err()
		self._err("Release aborted. Fix the push issue and try again.")

	# --- driver ---

	def run(self) -> ShipResult:
		"""Run the pipeline end to end.

		Raises:
			CancelledError: If the user declines at the confirmation prompt
			NetworkError: PUSH_FAILED after a successful rollback
			RollbackFailedError: If the rollback itself failed
		"""
		root = self.backend.repo_root()
		pre = self.preflight()
		version = self.check_tag_collision(self.resolve_version(pre))
		files = self.detect_manifests(root, version)
		path = self.changelog_path(root)
		generate = self.check_changelog(path, version, pre)

		self.print_summary(pre, version, generate)
		if self.options.dry_run:
			self.out("")
			self.out("Dry run complete. No changes made.")
			return ShipResult(version=version, tag_name=version.tag, dry_run=True, changelog_generated=generate)

		self._transition(ShipState.CONFIRM)
		self.out("")
		if not self.confirm("Proceed?", True):
			raise CancelledError()
		return self.execute(pre, version, files, path, generate)
