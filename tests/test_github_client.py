from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import requests

from keryx.clients.github_client import (
    TRUNCATION_MARKER,
    GitHubClient,
    GitHubError,
    get_github_token,
    parse_github_remote,
    truncate_body,
)


def _response(items, status=200, headers=None, next_page=False):
    return SimpleNamespace(
        status_code=status,
        headers=headers or {},
        links={"next": {"url": "https://api.github.com/next"}} if next_page else {},
        json=lambda: items,
    )


class FakeSession:
    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, dict(params or {}), timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        pass


def _pr(number, merged_at, updated_at=None, body="Body", labels=()):
    return {
        "number": number,
        "title": f"PR {number}",
        "body": body,
        "merged_at": merged_at,
        "updated_at": updated_at or merged_at,
        "labels": [{"name": name} for name in labels],
    }


@pytest.mark.parametrize(
    "url, expected",
    [
        ("git@github.com:acme/widget.git", ("acme", "widget")),
        ("ssh://git@github.com/acme/widget", ("acme", "widget")),
        ("https://github.com/acme/widget.git", ("acme", "widget")),
        ("https://token@github.com/acme/widget/", ("acme", "widget")),
        ("https://github.com/acme/widget.js", ("acme", "widget.js")),
    ],
)
def test_parse_github_remote(url, expected) -> None:
    assert parse_github_remote(url) == expected


@pytest.mark.parametrize("url", ["https://gitlab.com/acme/widget.git", "git@bitbucket.org:acme/widget.git", ""])
def test_parse_rejects_other_forges(url) -> None:
    with pytest.raises(GitHubError) as exc:
        parse_github_remote(url)
    assert exc.value.code == "INVALID_REMOTE"


def test_token_prefers_gh_cli(monkeypatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "from-env")

    def runner(cmd, **kwargs):
        stdout = "from-gh\n" if cmd[-1] == "token" else ""
        return SimpleNamespace(returncode=0, stdout=stdout)

    assert get_github_token(runner) == "from-gh"


def test_token_falls_back_to_environment(monkeypatch) -> None:
    def missing_gh(cmd, **kwargs):
        raise FileNotFoundError("gh")

    monkeypatch.setenv("GITHUB_TOKEN", "  ")
    monkeypatch.setenv("GH_TOKEN", "from-gh-token")
    assert get_github_token(missing_gh) == "from-gh-token"

    monkeypatch.delenv("GH_TOKEN")
    with pytest.raises(GitHubError) as exc:
        get_github_token(lambda cmd, **kwargs: SimpleNamespace(returncode=1, stdout=""))
    assert exc.value.code == "NO_TOKEN"
    assert exc.value.exit_code == 6


def test_fetch_pages_and_filters_by_merge_window() -> None:
    since = datetime(2024, 3, 1, tzinfo=timezone.utc)
    until = datetime(2024, 4, 1, tzinfo=timezone.utc)
    session = FakeSession([
        _response([
            _pr(12, "2024-04-02T00:00:00Z"),
            _pr(11, "2024-03-20T00:00:00Z", labels=["enhancement"]),
            _pr(10, None, updated_at="2024-03-19T00:00:00Z"),
        ], next_page=True),
        _response([
            _pr(9, "2024-03-05T00:00:00Z", body=None),
            _pr(8, "2024-02-20T00:00:00Z"),
            _pr(7, "2024-02-10T00:00:00Z"),
        ], next_page=True),
    ])
    client = GitHubClient(session=session, timeout_s=5)

    records = client.fetch_merged_prs("acme", "widget", since=since, until=until)

    assert [r.number for r in records] == [11, 9]
    assert records[0].labels == ["enhancement"]
    assert records[1].body is None
    # the page that crossed ``since`` ends paging even though GitHub reported more
    assert len(session.requests) == 2
    url, params, timeout = session.requests[1]
    assert url.endswith("/repos/acme/widget/pulls")
    assert params["page"] == 2 and params["state"] == "closed"
    assert timeout == 5


def test_fetch_respects_limit() -> None:
    session = FakeSession([_response([_pr(n, "2024-03-20T00:00:00Z") for n in range(20, 10, -1)], next_page=True)])
    records = GitHubClient(session=session).fetch_merged_prs("acme", "widget", limit=3)
    assert [r.number for r in records] == [20, 19, 18]


@pytest.mark.parametrize(
    "status, headers, code",
    [
        (429, {"X-RateLimit-Reset": "1700000000"}, "RATE_LIMITED"),
        (403, {"X-RateLimit-Remaining": "0"}, "RATE_LIMITED"),
        (401, {}, "AUTH_FAILED"),
        (404, {}, "REPO_NOT_FOUND"),
        (500, {}, "HTTP_ERROR"),
    ],
)
def test_error_statuses(status, headers, code) -> None:
    client = GitHubClient(session=FakeSession([_response([], status=status, headers=headers)]))
    with pytest.raises(GitHubError) as exc:
        client.fetch_merged_prs("acme", "widget")
    assert exc.value.code == code


def test_rate_limit_keeps_reset_time() -> None:
    client = GitHubClient(session=FakeSession([_response([], status=429, headers={"X-RateLimit-Reset": "1700000000"})]))
    with pytest.raises(GitHubError) as exc:
        client.fetch_merged_prs("acme", "widget")
    assert exc.value.reset_time == 1700000000
    assert "--no-prs" in exc.value.hint


def test_timeout_and_connection_errors() -> None:
    client = GitHubClient(session=FakeSession([requests.Timeout("slow"), requests.ConnectionError("down")]))
    with pytest.raises(GitHubError) as exc:
        client.fetch_merged_prs("acme", "widget")
    assert exc.value.code == "TIMEOUT"
    with pytest.raises(GitHubError) as exc:
        client.fetch_merged_prs("acme", "widget")
    assert exc.value.code == "NETWORK"


def test_truncate_body() -> None:
    assert truncate_body(None) is None
    assert truncate_body("short") == "short"
    long = "é" * 100
    out = truncate_body(long, max_bytes=11)
    assert out == "é" * 5 + TRUNCATION_MARKER
