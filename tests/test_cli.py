from __future__ import annotations

import pytest

from keryx.agents import release_agent
from keryx.agents.release_agent import _parse_set_version, build_parser, main
from keryx.clients.llm_router import LlmError, Provider
from keryx.clients.subprocess_runner import ProviderError
from keryx.utils.errors import CancelledError, PreconditionError, RollbackFailedError, UserInputError
from keryx.utils.semver import SemVer


def test_bare_invocation_defaults_to_generate() -> None:
    args = build_parser().parse_args([])
    assert args.command is None
    assert args.to_ref == "HEAD"
    assert args.output == "CHANGELOG.md"
    assert not args.dry_run and not args.no_prs


def test_flags_after_the_subcommand() -> None:
    args = build_parser().parse_args(["ship", "--dry-run", "--no-llm-bump", "--set-version", "2.0.0"])
    assert args.command == "ship"
    assert args.dry_run and args.no_llm_bump
    assert args.set_version == "2.0.0"
    assert args.to_ref == "HEAD"


def test_flags_before_the_subcommand_survive() -> None:
    args = build_parser().parse_args(["--no-prs", "-o", "HISTORY.md", "generate"])
    assert args.no_prs
    assert args.output == "HISTORY.md"


def test_commit_and_init_flags() -> None:
    args = build_parser().parse_args(["commit", "--message-only", "--no-split", "--provider", "codex"])
    assert args.message_only and args.no_split
    assert args.provider == "codex"
    assert build_parser().parse_args(["init", "--unreleased"]).unreleased


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--provider", "gpt"])


def test_pr_limit_must_be_positive() -> None:
    assert build_parser().parse_args(["ship", "-l", "5"]).pr_limit == 5
    assert build_parser().parse_args(["--pr-limit", "1"]).pr_limit == 1
    for raw in ("0", "-3", "ten"):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["ship", "--pr-limit", raw])


def test_parse_set_version() -> None:
    assert _parse_set_version(None) is None
    assert _parse_set_version("v1.2.3") == SemVer(1, 2, 3)
    assert _parse_set_version("1.2.3-rc.1") == SemVer(1, 2, 3, ("rc", "1"))
    with pytest.raises(UserInputError) as exc:
        _parse_set_version("1.2")
    assert exc.value.code == "INVALID_VERSION"


def _exit_code(monkeypatch, error, argv=()) -> int:
    def run(args):
        raise error

    monkeypatch.setattr(release_agent, "run_command", run)
    with pytest.raises(SystemExit) as exc:
        main(list(argv))
    return exc.value.code


@pytest.mark.parametrize(
    "error, code",
    [
        (CancelledError(), 2),
        (PreconditionError("Working directory has uncommitted changes", code="DIRTY_TREE"), 3),
        (ProviderError("claude failed", code="TIMEOUT", provider="claude"), 4),
        (RollbackFailedError("Rollback incomplete"), 8),
        (KeyboardInterrupt(), 1),
        (RuntimeError("boom"), 1),
    ],
)
def test_exit_codes(monkeypatch, error, code) -> None:
    assert _exit_code(monkeypatch, error) == code


def test_success_exits_zero(monkeypatch) -> None:
    monkeypatch.setattr(release_agent, "run_command", lambda args: 0)
    with pytest.raises(SystemExit) as exc:
        main(["--dry-run"])
    assert exc.value.code == 0


def test_error_output_includes_hint(monkeypatch, capsys) -> None:
    error = PreconditionError("Branch 'main' is behind 'origin/main'", code="BEHIND_REMOTE", hint="Run 'git pull'")
    assert _exit_code(monkeypatch, error) == 3
    err = capsys.readouterr().err
    assert "Error: Branch 'main' is behind 'origin/main'" in err
    assert "Hint: Run 'git pull'" in err


def test_verbose_llm_error_shows_both_providers(monkeypatch, capsys) -> None:
    error = LlmError(
        "Both LLM providers failed.",
        primary=Provider.CLAUDE,
        primary_error=ProviderError("claude timed out", code="TIMEOUT", provider="claude"),
        fallback=Provider.CODEX,
        fallback_error=ProviderError("codex not found", code="NOT_INSTALLED", provider="codex"),
    )
    assert _exit_code(monkeypatch, error, ["--verbose"]) == 4
    err = capsys.readouterr().err
    assert "Claude error: claude timed out" in err
    assert "Codex error: codex not found" in err
