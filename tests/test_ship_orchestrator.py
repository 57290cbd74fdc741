from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest

from fakes import FakeBackend, failing, make_router, raw_commit, sha

from keryx.agents.ship_orchestrator import ShipOptions, ShipOrchestrator, ShipState
from keryx.utils.errors import CancelledError, ExternalToolError, NetworkError, PreconditionError, RollbackFailedError
from keryx.utils.git_backend import GitError
from keryx.utils.semver import SemVer

DAY = date(2024, 5, 1)

CARGO = '[package]\nname = "widget"\nversion = "1.2.3"\n'


def _reply(*entries) -> str:
    return json.dumps({"entries": [{"category": c, "description": d} for c, d in entries]})


def _incremental(tmp_path: Path) -> FakeBackend:
    (tmp_path / "Cargo.toml").write_text(CARGO, encoding="utf-8")
    commits = [raw_commit(3, "fix: log level"), raw_commit(2, "feat(api)!: drop v1 endpoints"),
               raw_commit(1, "chore: init")]
    backend = FakeBackend(tmp_path, commits, tags={"v1.2.3": sha(1)})
    backend.describe = "v1.2.3"
    return backend


def _ship(backend, router, answers=None, **options) -> tuple:
    lines = []
    asked = []
    answers = list(answers or [])

    def confirm(question, default):
        asked.append(question)
        return answers.pop(0) if answers else True

    options.setdefault("no_prs", True)
    options.setdefault("no_verify", True)
    options.setdefault("no_llm_bump", True)
    orchestrator = ShipOrchestrator(backend, router, ShipOptions(**options), confirm=confirm,
                                    out=lines.append, today=DAY)
    return orchestrator, lines, asked


def test_initial_release_creates_changelog(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text('{\n  "name": "widget",\n  "version": "0.0.0"\n}\n', encoding="utf-8")
    commits = [raw_commit(3, "docs: readme"), raw_commit(2, "fix: typo"), raw_commit(1, "feat: init")]
    backend = FakeBackend(tmp_path, commits)
    router = make_router(claude=[_reply(("Added", "Initial release of the widget CLI"))])

    orchestrator, lines, _ = _ship(backend, router)
    result = orchestrator.run()

    assert result.version == SemVer(0, 1, 0)
    assert orchestrator.state is ShipState.SUCCESS
    assert json.loads((tmp_path / "package.json").read_text(encoding="utf-8"))["version"] == "0.1.0"
    changelog = (tmp_path / "CHANGELOG.md").read_text(encoding="utf-8")
    assert changelog.count("### ") == 1
    assert "## [0.1.0] - 2024-05-01\n\n### Added\n\n- Initial release of the widget CLI\n" in changelog
    assert "  [PASS] 3 commits since (none)" in lines
    assert "Release v0.1.0 shipped!" in lines


def test_incremental_release_with_breaking_change(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    (tmp_path / "CHANGELOG.md").write_text("# Changelog\n\n## [1.2.3] - 2024-01-01\n\n### Added\n\n- Old\n",
                                           encoding="utf-8")
    router = make_router(claude=[_reply(("Fixed", "Log level is respected"), ("Added", "v2 endpoints"))])

    orchestrator, lines, asked = _ship(backend, router)
    result = orchestrator.run()

    assert result.version == SemVer(2, 0, 0)
    assert asked == ["Proceed?"]
    assert 'version = "2.0.0"' in (tmp_path / "Cargo.toml").read_text(encoding="utf-8")
    changelog = (tmp_path / "CHANGELOG.md").read_text(encoding="utf-8")
    new_section = changelog[changelog.index("## [2.0.0] - 2024-05-01"):changelog.index("## [1.2.3]")]
    assert "### Added\n\n- v2 endpoints" in new_section
    assert "### Fixed\n\n- Log level is respected" in new_section
    assert not (tmp_path / "CHANGELOG.md.bak").exists()
    assert ("commit", "chore(release): v2.0.0") in backend.calls
    assert backend.tags["v2.0.0"] == backend.head_sha()
    assert ("push", "origin", "main") in backend.calls
    assert "Version: 1.2.3 -> 2.0.0" in lines


def test_dry_run_changes_nothing(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    router = make_router(claude_installed=False, codex_installed=False)

    orchestrator, lines, asked = _ship(backend, router, dry_run=True)
    result = orchestrator.run()

    assert result.dry_run
    assert asked == []
    assert (tmp_path / "Cargo.toml").read_text(encoding="utf-8") == CARGO
    assert not (tmp_path / "CHANGELOG.md").exists()
    assert "commit" not in backend.call_names() and "tag" not in backend.call_names()
    assert lines[-1] == "Dry run complete. No changes made."
    assert "  [CREATE] Changelog section for 2.0.0" in lines


def test_push_failure_rolls_back(tmp_path: Path, capsys) -> None:
    backend = _incremental(tmp_path)
    backend.fail["push_with_tags"] = GitError("remote rejected")
    head_before = backend.head_sha()
    router = make_router(claude=[_reply(("Fixed", "Log level is respected"))])

    orchestrator, _, _ = _ship(backend, router)
    with pytest.raises(NetworkError) as exc:
        orchestrator.run()

    assert exc.value.code == "PUSH_FAILED"
    assert exc.value.exit_code != 0
    assert orchestrator.state is ShipState.ROLLBACK
    assert "v2.0.0" not in backend.tags
    assert backend.head_sha() == head_before
    assert backend.staged
    err = capsys.readouterr().err
    assert "Rolling back..." in err
    assert "  [DONE] Deleted tag v2.0.0" in err
    assert "Release aborted. Fix the push issue and try again." in err


def test_failed_rollback_reports_manual_cleanup(tmp_path: Path, capsys) -> None:
    backend = _incremental(tmp_path)
    backend.fail["push_with_tags"] = GitError("remote rejected")
    backend.fail["delete_tag"] = GitError("locked")
    router = make_router(claude=[_reply(("Fixed", "Log level is respected"))])

    orchestrator, _, _ = _ship(backend, router)
    with pytest.raises(RollbackFailedError) as exc:
        orchestrator.run()

    assert isinstance(exc.value.primary, NetworkError)
    assert "git tag -d v2.0.0 && git reset --soft HEAD~1" in capsys.readouterr().err


def test_tag_collision_offers_next_patch(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    backend.tags["v2.0.0"] = sha(2)
    router = make_router()

    orchestrator, lines, asked = _ship(backend, router, dry_run=True)
    result = orchestrator.run()
    assert asked == ["v2.0.0 already exists. Did you mean 2.0.1?"]
    assert result.version == SemVer(2, 0, 1)

    orchestrator, _, _ = _ship(backend, router, answers=[False], dry_run=True)
    with pytest.raises(PreconditionError) as exc:
        orchestrator.run()
    assert exc.value.code == "TAG_EXISTS"


def test_declining_confirmation_cancels(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    orchestrator, _, _ = _ship(backend, make_router(), answers=[False])
    with pytest.raises(CancelledError):
        orchestrator.run()
    assert (tmp_path / "Cargo.toml").read_text(encoding="utf-8") == CARGO
    assert "commit" not in backend.call_names()


def test_existing_section_is_skipped(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    (tmp_path / "CHANGELOG.md").write_text("# Changelog\n\n## [2.0.0] - 2024-04-30\n\n- hand written\n",
                                           encoding="utf-8")
    router = make_router(claude_installed=False, codex_installed=False)

    orchestrator, lines, _ = _ship(backend, router)
    result = orchestrator.run()

    assert not result.changelog_generated
    assert "  [SKIP] Changelog section for 2.0.0 already exists" in lines
    assert result.files == [tmp_path / "Cargo.toml"]


def test_missing_llm_blocks_changelog_generation(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    router = make_router(claude_installed=False, codex_installed=False)
    orchestrator, _, _ = _ship(backend, router)
    with pytest.raises(ExternalToolError) as exc:
        orchestrator.run()
    assert exc.value.code == "LLM_UNAVAILABLE"
    assert "commit" not in backend.call_names()


def test_llm_bump_reasoning_is_shown(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    router = make_router(claude=['{"bump_type": "minor", "reasoning": "endpoints were only deprecated"}'])
    orchestrator, lines, _ = _ship(backend, router, no_llm_bump=False, dry_run=True)
    result = orchestrator.run()
    assert result.version == SemVer(1, 3, 0)
    assert "Version: 1.2.3 -> 1.3.0 (endpoints were only deprecated)" in lines


def test_failed_generation_leaves_manifests_untouched(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    router = make_router(claude=[failing("claude")], codex=[failing("codex")])

    orchestrator, lines, _ = _ship(backend, router)
    with pytest.raises(ExternalToolError) as exc:
        orchestrator.run()

    assert exc.value.code == "ALL_PROVIDERS_FAILED"
    assert orchestrator.state is ShipState.EXECUTE
    assert (tmp_path / "Cargo.toml").read_text(encoding="utf-8") == CARGO
    assert not (tmp_path / "CHANGELOG.md").exists()
    assert not any(line.startswith("  [DONE]") for line in lines)
    assert "stage" not in backend.call_names() and "commit" not in backend.call_names()


def test_pr_limit_reaches_the_fetch(tmp_path: Path) -> None:
    backend = _incremental(tmp_path)
    limits = []

    class _Client:
        def fetch_merged_prs(self, owner, repo, since=None, until=None, limit=None):
            limits.append(limit)
            return []

        def close(self) -> None:
            pass

    router = make_router(claude=[_reply(("Fixed", "Log level is respected"))])
    orchestrator, _, _ = _ship(backend, router, no_prs=False, pr_limit=5)
    orchestrator.agent._github_factory = _Client
    orchestrator.run()

    assert limits == [5]
