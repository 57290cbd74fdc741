#!/usr/bin/env python3
"""keryx command line: changelog generation, release shipping, changelog init and commit messages.

Running ``keryx`` without a subcommand is the same as ``keryx generate``.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from keryx import __version__
from keryx.clients.llm_router import LlmError, LlmRouter, Provider, ProviderSelection
from keryx.configs.config import Config
from keryx.utils.errors import KeryxError, RollbackFailedError, UserInputError
from keryx.utils.git_backend import GitBackend
from keryx.utils.semver import SemVer
from keryx.utils.update_check import UpdateChecker

logger = logging.getLogger(__name__)


def _positive_int(raw: str) -> int:
	try:
		value = int(raw)
	except ValueError:
		raise argparse.ArgumentTypeError(f"invalid integer: {raw!r}")
	if value < 1:
		raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
	return value


def _add_common_args(parser: argparse.ArgumentParser, suppress: bool) -> None:
	"""Flags accepted both before and after the subcommand name."""
	def default(value):
		return argparse.SUPPRESS if suppress else value

	parser.add_argument("--set-version", dest="set_version", default=default(None), help="Use this version instead of calculating one")
	parser.add_argument("--from", dest="from_ref", default=default(None), help="Start of commit range (tag, commit hash, or branch)")
	parser.add_argument("--to", dest="to_ref", default=default("HEAD"), help="End of commit range (defaults to HEAD)")
	parser.add_argument("-o", "--output", default=default(Config.DEFAULT_CHANGELOG), help="Path to changelog file")
	parser.add_argument("--no-prs", dest="no_prs", action="store_true", default=default(False), help="Skip GitHub PR fetching")
	parser.add_argument("-l", "--pr-limit", dest="pr_limit", type=_positive_int, default=default(None), help="Maximum number of PRs to fetch (env: KERYX_PR_LIMIT)")
	parser.add_argument("--dry-run", dest="dry_run", action="store_true", default=default(False), help="Preview without writing anything")
	parser.add_argument("--strict", action="store_true", default=default(False), help="Fail instead of continuing with partial data")
	parser.add_argument("--force", action="store_true", default=default(False), help="Overwrite an existing changelog section for the version")
	parser.add_argument("--verbose", "-v", action="store_true", default=default(False), help="Enable verbose logging")
	parser.add_argument("--no-verify", dest="no_verify", action="store_true", default=default(False), help="Skip the verification pass")
	parser.add_argument("--no-llm-bump", dest="no_llm_bump", action="store_true", default=default(False), help="Use the algorithmic version bump")
	parser.add_argument("--provider", choices=[p.value for p in Provider], default=default(None), help="Primary LLM provider (the other one is the fallback)")


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="keryx",
		description="keryx - changelog generation and release automation",
		formatter_class=argparse.RawDescriptionHelpFormatter,
		epilog="""
Examples:
  keryx                          # add a section for the next version to CHANGELOG.md
  keryx --from v1.2.0 --dry-run  # preview entries for commits since v1.2.0
  keryx ship                     # bump, update changelog, commit, tag and push
  keryx init --unreleased        # create CHANGELOG.md from the full history
  keryx commit --message-only    # print a commit message for the working tree
		"""
	)
	parser.add_argument("--version", action="version", version=f"keryx {__version__}")
	_add_common_args(parser, suppress=False)

	sub = parser.add_subparsers(dest="command")

	gen = sub.add_parser("generate", help="Generate changelog entries for the next version (default)")
	_add_common_args(gen, suppress=True)

	ship = sub.add_parser("ship", help="Create a release: bump version, update changelog, tag, and push")
	_add_common_args(ship, suppress=True)

	init = sub.add_parser("init", help="Initialize a new changelog file")
	init.add_argument("--unreleased", action="store_true", help="Fill [Unreleased] from all commits")
	_add_common_args(init, suppress=True)

	commit = sub.add_parser("commit", help="Generate a commit message for the working tree and commit")
	commit.add_argument("--message-only", dest="message_only", action="store_true", help="Print the message without committing")
	commit.add_argument("--no-split", dest="no_split", action="store_true", help="Always create a single commit")
	_add_common_args(commit, suppress=True)

	return parser


def _parse_set_version(raw: Optional[str]) -> Optional[SemVer]:
	if raw is None:
		return None
	try:
		return SemVer.parse(raw[1:] if raw.startswith("v") else raw)
	except ValueError as e:
		raise UserInputError(f"Invalid version '{raw}': {e}", code="INVALID_VERSION") from e


def _make_router(args) -> LlmRouter:
	if args.provider:
		return LlmRouter(ProviderSelection.from_primary(Provider(args.provider)))
	return LlmRouter()


def run_command(args) -> int:
	"""Dispatch one parsed command; errors propagate to ``main``."""
	# imported here so --help and --version stay fast
	from keryx.agents.changelog_agent import ChangelogAgent
	from keryx.agents.commit_agent import CommitAgent
	from keryx.agents.ship_orchestrator import ShipOptions, ShipOrchestrator

	set_version = _parse_set_version(args.set_version)
	backend = GitBackend(".")
	backend.repo_root()
	router = _make_router(args)
	command = args.command or "generate"

	if command == "ship":
		options = ShipOptions(
			set_version=set_version,
			output=Path(args.output),
			dry_run=args.dry_run,
			no_llm_bump=args.no_llm_bump,
			no_prs=args.no_prs,
			pr_limit=args.pr_limit,
			no_verify=args.no_verify,
			strict=args.strict,
			verbose=args.verbose,
		)
		ShipOrchestrator(backend, router, options).run()
		return 0

	if command == "commit":
		CommitAgent(backend, router, verbose=args.verbose).run(
			no_split=args.no_split,
			message_only=args.message_only,
			dry_run=args.dry_run,
		)
		return 0

	agent = ChangelogAgent(backend, router, verbose=args.verbose)
	if command == "init":
		agent.init(
			Path(args.output),
			unreleased=args.unreleased,
			no_prs=args.no_prs,
			pr_limit=args.pr_limit,
			no_verify=args.no_verify,
			dry_run=args.dry_run,
			strict=args.strict,
		)
		return 0

	agent.generate(
		Path(args.output),
		from_ref=args.from_ref,
		to_ref=args.to_ref,
		set_version=set_version,
		no_prs=args.no_prs,
		pr_limit=args.pr_limit,
		no_llm_bump=args.no_llm_bump,
		no_verify=args.no_verify,
		dry_run=args.dry_run,
		force=args.force,
		strict=args.strict,
	)
	return 0


def _print_error(e: KeryxError, verbose: bool) -> None:
	message = e.detailed() if verbose and isinstance(e, LlmError) else e.message
	print(f"Error: {message}", file=sys.stderr)
	if isinstance(e, RollbackFailedError) and e.primary is not None:
		print(f"Caused by: {e.primary}", file=sys.stderr)
	if e.hint:
		print(f"Hint: {e.hint}", file=sys.stderr)


def main(argv: Optional[List[str]] = None):
	"""CLI entry point for keryx."""
	load_dotenv()
	parser = build_parser()
	args = parser.parse_args(argv)

	# Set up logging
	log_level = logging.DEBUG if args.verbose else logging.WARNING
	logging.basicConfig(
		level=log_level,
		format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
	)

	# Suppress verbose logs from libraries unless in debug mode
	if not args.verbose:
		logging.getLogger("urllib3").setLevel(logging.WARNING)

	checker = UpdateChecker().start() if Config.update_check_enabled() else None

	exit_code = 0
	try:
		exit_code = run_command(args)

	except KeyboardInterrupt:
		print("\nOperation cancelled by user", file=sys.stderr)
		exit_code = 1

	except KeryxError as e:
		_print_error(e, args.verbose)
		if args.verbose:
			logger.exception("Detailed error information:")
		exit_code = e.exit_code

	except Exception as e:
		# Unexpected error
		print(f"Unexpected error: {e}", file=sys.stderr)
		if args.verbose:
			logger.exception("Detailed error information:")
		else:
			print("Use --verbose for more details", file=sys.stderr)
		exit_code = 1

	finally:
		notice = checker.notice() if checker else None
		if notice:
			print(f"\n{notice}", file=sys.stderr)

	sys.exit(exit_code)


if __name__ == "__main__":
	main()
