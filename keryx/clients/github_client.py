#!/usr/bin/env python3
"""GitHub REST client for merged pull request metadata.

Pull requests are optional context for the changelog prompt. The client only
reads; it never writes to the forge. Authentication follows the gh CLI first,
then the GITHUB_TOKEN and GH_TOKEN environment variables.
"""

import logging
import os
import re
import subprocess
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from keryx.configs.config import Config
from keryx.utils.errors import NetworkError
from keryx.utils.prompt_sanitizer import truncate_utf8
from keryx.utils.vcs_models import PullRequestRecord

# Set up logging
logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "... [truncated]"

_SSH_RE = re.compile(r"^(?:ssh://)?git@github\.com[:/]([^/]+)/(.+?)(?:\.git)?/?$")
_HTTPS_RE = re.compile(r"github\.com/([^/]+)/(.+?)(?:\.git)?/?$")


class GitHubError(NetworkError):
    """Raised when GitHub API operations fail, with a typed code for friendly handling."""

    def __init__(self, message: str, code: str = "UNKNOWN", reset_time: Optional[int] = None) -> None:
        super().__init__(message, code=code, hint=_hint_from_code(code))
        self.reset_time = reset_time


def _friendly_message_from_code(code: str, *, fallback: str) -> str:
    mapping = {
        "AUTH_FAILED": "GitHub authentication failed. Please check your token and its scopes.",
        "NO_TOKEN": "No GitHub token found.",
        "REPO_NOT_FOUND": "Repository not found on GitHub. Please check the origin remote.",
        "INVALID_REMOTE": "The origin remote is not a GitHub repository.",
        "TIMEOUT": "Timeout while contacting GitHub. Please retry or increase KERYX_HTTP_TIMEOUT.",
        "NETWORK": "Network error while contacting GitHub. Please retry.",
    }
    return mapping.get(code, fallback)


def _hint_from_code(code: str) -> Optional[str]:
    hints = {
        "AUTH_FAILED": "Run 'gh auth login' or set GITHUB_TOKEN",
        "NO_TOKEN": "Run 'gh auth login' or set GITHUB_TOKEN",
        "RATE_LIMITED": "Wait for the rate limit to reset, or use --no-prs",
        "REPO_NOT_FOUND": "Check 'git remote get-url origin', or use --no-prs",
        "INVALID_REMOTE": "Use --no-prs to skip pull request context",
    }
    return hints.get(code)


def parse_github_remote(url: str) -> Tuple[str, str]:
    """Extract (owner, repo) from an SSH or HTTPS GitHub remote URL.

    Args:
        url: Remote URL such as ``git@github.com:owner/repo.git`` or
            ``https://github.com/owner/repo``

    Returns:
        Tuple of owner and repository name

    Raises:
        GitHubError: If the URL does not point at a GitHub repository
    """
    url = url.strip()
    match = _SSH_RE.match(url)
    if not match and url.startswith(("http://", "https://")):
        match = _HTTPS_RE.search(url)
    if not match or "/" in match.group(2):
        raise GitHubError(f"Not a GitHub remote: {url}", code="INVALID_REMOTE")
    return match.group(1), match.group(2)


def get_github_token(runner: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> str:
    """Discover a GitHub token.

    The gh CLI is authoritative when it reports a valid login; otherwise
    GITHUB_TOKEN, then GH_TOKEN. Empty values are rejected.

    Raises:
        GitHubError: If no token is available (code NO_TOKEN)
    """
    try:
        status = runner(["gh", "auth", "status"], capture_output=True, text=True, check=False)
        if status.returncode == 0:
            token_proc = runner(["gh", "auth", "token"], capture_output=True, text=True, check=False)
            token = (token_proc.stdout or "").strip()
            if token_proc.returncode == 0 and token:
                logger.debug("✓ Using GitHub token from gh CLI")
                return token
    except FileNotFoundError:
        logger.debug("gh CLI not installed; checking environment for a token")

    for name in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.getenv(name, "").strip()
        if token:
            logger.debug(f"✓ Using GitHub token from {name}")
            return token

    raise GitHubError(
        _friendly_message_from_code("NO_TOKEN", fallback="No GitHub token found."),
        code="NO_TOKEN",
    )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def truncate_body(body: Optional[str], max_bytes: int = Config.PR_BODY_MAX_BYTES) -> Optional[str]:
    if body is None:
        return None
    if len(body.encode("utf-8")) <= max_bytes:
        return body
    return truncate_utf8(body, max_bytes) + TRUNCATION_MARKER


class GitHubClient:
    """Read-only client for the pull request listing endpoint."""

    def __init__(self, token: Optional[str] = None, timeout_s: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        """Initialize the GitHub client.

        Args:
            token: GitHub token (discovered with get_github_token when omitted)
            timeout_s: Request timeout in seconds (defaults to KERYX_HTTP_TIMEOUT)
            session: Optional pre-configured session, mainly for tests
        """
        github_config = Config.get_github_config()
        self.base_url = github_config["api_url"]
        self.timeout_s = timeout_s or github_config["timeout_s"]
        self.per_page = github_config["per_page"]
        self.max_pages = github_config["max_pages"]

        if session is None:
            token = token or get_github_token()
            session = requests.Session()
            session.headers.update({
                'Authorization': f'Bearer {token}',
                'Accept': 'application/vnd.github+json',
                'User-Agent': 'keryx-release-tool'
            })
            # 429 is not retried here; it is reported as RATE_LIMITED with its reset time
            retry_strategy = Retry(
                total=3,
                status_forcelist=[500, 502, 503, 504],
                backoff_factor=1,
                allowed_methods=["HEAD", "GET", "OPTIONS"]
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("https://", adapter)
        self.session = session

    def _check_response(self, response: requests.Response, owner: str, repo: str) -> None:
        status = response.status_code
        remaining = response.headers.get("X-RateLimit-Remaining")
        if status == 429 or (status == 403 and remaining == "0"):
            reset = response.headers.get("X-RateLimit-Reset")
            reset_time = int(reset) if reset and reset.isdigit() else None
            raise GitHubError(
                f"GitHub API rate limit exceeded (resets at {reset_time or 'unknown'})",
                code="RATE_LIMITED",
                reset_time=reset_time,
            )
        if status == 401:
            raise GitHubError(
                _friendly_message_from_code("AUTH_FAILED", fallback="Authentication failed"),
                code="AUTH_FAILED",
            )
        if status == 404:
            raise GitHubError(f"Repository {owner}/{repo} not found", code="REPO_NOT_FOUND")
        if status != 200:
            raise GitHubError(f"GitHub API error: HTTP {status}", code="HTTP_ERROR")

    def fetch_merged_prs(
        self,
        owner: str,
        repo: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[PullRequestRecord]:
        """Fetch pull requests merged within ``[since, until]``.

        Args:
            owner: Repository owner
            repo: Repository name
            since: Exclusive lower bound on merge time (None for no bound)
            until: Inclusive upper bound on merge time (None for no bound)
            limit: Maximum number of records (defaults to KERYX_PR_LIMIT)

        Returns:
            Merged pull requests, most recently updated first

        Raises:
            GitHubError: On auth failure, rate limiting, missing repository or HTTP errors
        """
        limit = limit or Config.pr_limit()
        url = f"{self.base_url}/repos/{owner}/{repo}/pulls"
        records: List[PullRequestRecord] = []
        page = 1

        logger.info(f"Fetching merged PRs for {owner}/{repo} (limit {limit})")
        while page <= self.max_pages and len(records) < limit:
            params = {
                'state': 'closed',
                'sort': 'updated',
                'direction': 'desc',
                'per_page': self.per_page,
                'page': page,
            }
            try:
                response = self.session.get(url, params=params, timeout=self.timeout_s)
            except requests.Timeout as e:
                raise GitHubError(_friendly_message_from_code("TIMEOUT", fallback=str(e)), code="TIMEOUT") from e
            except requests.RequestException as e:
                raise GitHubError(f"Failed to fetch pull requests for {owner}/{repo}: {e}", code="NETWORK") from e

            self._check_response(response, owner, repo)
            items: List[Dict[str, Any]] = response.json()
            if not items:
                break

            stop = False
            for item in items:
                updated_at = _parse_timestamp(item.get("updated_at"))
                if since is not None and updated_at is not None and updated_at < since:
                    # Sorted by update time, so nothing older can have merged later
                    stop = True
                    break
                record = self._to_record(item, since, until)
                if record is not None:
                    records.append(record)
                    if len(records) >= limit:
                        break

            if stop or "next" not in response.links:
                break
            page += 1

        logger.debug(f"✓ Retrieved {len(records)} merged PRs for {owner}/{repo}")
        return records[:limit]

    @staticmethod
    def _to_record(item: Dict[str, Any], since: Optional[datetime],
                   until: Optional[datetime]) -> Optional[PullRequestRecord]:
        merged_at = _parse_timestamp(item.get("merged_at"))
        number = item.get("number") or 0
        if merged_at is None or number <= 0:
            return None
        if since is not None and merged_at <= since:
            return None
        if until is not None and merged_at > until:
            return None
        return PullRequestRecord(
            number=number,
            title=item.get("title") or "",
            body=truncate_body(item.get("body")),
            merged_at=merged_at,
            labels=[label.get("name", "") for label in item.get("labels") or [] if label.get("name")],
        )

    def close(self) -> None:
        self.session.close()
