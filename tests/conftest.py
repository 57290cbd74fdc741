from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    monkeypatch.setenv("KERYX_NO_UPDATE_CHECK", "1")
    for name in ("GITHUB_TOKEN", "GH_TOKEN", "KERYX_PR_LIMIT", "KERYX_HTTP_TIMEOUT",
                 "KERYX_CLAUDE_TIMEOUT", "KERYX_CODEX_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
