from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from keryx.clients.llm_router import LlmRouter, Provider
from keryx.clients.subprocess_runner import ProviderError
from keryx.utils.errors import DataIntegrityError
from keryx.utils.git_backend import GitError, RawCommit
from keryx.utils.verification_scanner import RgResult


def sha(n: int) -> str:
    return f"{n:040x}"


def raw_commit(n: int, message: str, ts: int = 1_700_000_000) -> RawCommit:
    return RawCommit(id=sha(n), author_time=datetime.fromtimestamp(ts + n, tz=timezone.utc), message=message)


class FakeBackend:
    """In-memory stand-in for GitBackend; history is a single linear branch, newest first."""

    def __init__(
        self,
        root: Path,
        commits: Optional[List[RawCommit]] = None,
        tags: Optional[Dict[str, str]] = None,
        branch: Optional[str] = "main",
    ) -> None:
        self.root = Path(root)
        self.commits = list(commits or [])
        self.tags = dict(tags or {})
        self.branch = branch
        self.config = {
            "branch.main.remote": "origin",
            "branch.main.merge": "refs/heads/main",
            "remote.origin.url": "git@github.com:acme/widget.git",
        }
        self.refs: Dict[str, str] = {}
        if self.commits:
            self.refs["HEAD"] = self.commits[0].id
            self.refs["refs/remotes/origin/main"] = self.commits[0].id
        self.describe: Optional[str] = None
        self.behind = False
        self.status = ""
        self.files = []
        self.diff = ""
        self.staged = False
        self.fail: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self._next_sha = 900
        self._previous_heads: List[str] = []

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail:
            raise self.fail[name]

    def repo_root(self) -> Path:
        return self.root

    def head_sha(self) -> Optional[str]:
        return self.refs.get("HEAD")

    def current_branch(self) -> Optional[str]:
        return self.branch

    def get_config(self, key: str) -> Optional[str]:
        return self.config.get(key)

    def rev_parse(self, ref: str) -> Optional[str]:
        if ref in self.refs:
            return self.refs[ref]
        if ref in self.tags:
            return self.tags[ref]
        for commit in self.commits:
            if commit.id == ref or commit.id.startswith(ref):
                return commit.id
        return None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return not self.behind

    def root_commit(self, ref: str = "HEAD") -> str:
        if not self.commits:
            raise GitError("no commits", code="NO_COMMITS")
        return self.commits[-1].id

    def status_porcelain(self) -> str:
        return self.status

    def remote_url(self, remote: str = "origin") -> Optional[str]:
        return self.config.get(f"remote.{remote}.url")

    def list_tags(self) -> List[str]:
        return list(self.tags)

    def reachable_tags(self, ref: str = "HEAD") -> List[str]:
        return list(self.tags)

    def describe_reachable_tag(self, ref: str = "HEAD") -> Optional[str]:
        return self.describe

    def tag_exists(self, name: str) -> bool:
        return name in self.tags

    def create_annotated_tag(self, name: str, message: str) -> None:
        self._maybe_fail("create_annotated_tag")
        self.calls.append(("tag", name, message))
        self.tags[name] = self.refs.get("HEAD", "")

    def delete_tag(self, name: str) -> None:
        self._maybe_fail("delete_tag")
        self.calls.append(("delete_tag", name))
        self.tags.pop(name, None)

    def log(self, to_ref: str, exclude_ref: Optional[str] = None) -> List[RawCommit]:
        out = []
        for commit in self.commits:
            if exclude_ref is not None and commit.id == exclude_ref:
                break
            out.append(commit)
        return out

    def show_commit(self, ref: str) -> RawCommit:
        target = self.rev_parse(ref)
        for commit in self.commits:
            if commit.id == target:
                return commit
        raise GitError(f"unknown ref {ref}")

    def changed_files(self):
        return list(self.files)

    def diff_text(self, paths=()) -> str:
        self.calls.append(("diff_text", list(paths)))
        return self.diff

    def diff_numstat(self, paths=()) -> tuple:
        return 3, 1

    def stage(self, paths) -> None:
        self.calls.append(("stage", list(paths)))
        if paths:
            self.staged = True

    def remove(self, paths) -> None:
        self.calls.append(("remove", list(paths)))
        if paths:
            self.staged = True

    def has_staged_changes(self) -> bool:
        return self.staged

    def commit(self, message: str) -> str:
        self._maybe_fail("commit")
        self._next_sha += 1
        new = sha(self._next_sha)
        self.calls.append(("commit", message))
        self._previous_heads.append(self.refs.get("HEAD", ""))
        self.refs["HEAD"] = new
        self.staged = False
        return new

    def reset_soft(self, ref: str = "HEAD~1") -> None:
        self._maybe_fail("reset_soft")
        self.calls.append(("reset_soft", ref))
        if self._previous_heads:
            self.refs["HEAD"] = self._previous_heads.pop()
        self.staged = True

    def fetch(self, remote: str) -> None:
        self.calls.append(("fetch", remote))

    def push_with_tags(self, remote: str, branch: str) -> None:
        self._maybe_fail("push_with_tags")
        self.calls.append(("push", remote, branch))

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]


class FakeAdapter:
    """Scripted provider: each ``complete`` pops the next reply; exceptions are raised."""

    def __init__(self, name: str, replies=None, installed: bool = True) -> None:
        self.name = name
        self.replies = list(replies or [])
        self.installed = installed
        self.prompts: List[str] = []
        self.schemas: list = []

    def is_installed(self) -> bool:
        return self.installed

    def complete(self, prompt, schema=None, parse=None):
        self.prompts.append(prompt)
        self.schemas.append(schema)
        if not self.installed:
            raise ProviderError(f"{self.name} CLI not found on PATH", code="NOT_INSTALLED", provider=self.name)
        if not self.replies:
            raise ProviderError(f"{self.name} has no scripted reply", code="NON_ZERO_EXIT", provider=self.name,
                                returncode=1, stderr="no reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if parse is None:
            return reply
        try:
            return parse(reply)
        except DataIntegrityError as e:
            raise ProviderError(f"{self.name} returned invalid JSON: {e}", code="INVALID_JSON", provider=self.name) from e


def failing(name: str, code: str = "NON_ZERO_EXIT") -> ProviderError:
    return ProviderError(f"{name} failed", code=code, provider=name, returncode=1, stderr=f"{name} broke")


class ScriptedRg:
    """ripgrep stand-in: ``files`` maps a keyword to the files that contain it."""

    def __init__(self, files=None, counts=None, stub_events: str = "", errors=()) -> None:
        self.files: Dict[str, List[str]] = dict(files or {})
        self.counts: Dict[str, int] = dict(counts or {})
        self.stub_events = stub_events
        self.errors = set(errors)
        self.calls: List[List[str]] = []

    def __call__(self, args: List[str]) -> RgResult:
        self.calls.append(list(args))
        if "--json" in args:
            return RgResult("ok", stdout=self.stub_events) if self.stub_events else RgResult("no_match")
        keyword = args[-1]
        if keyword in self.errors:
            return RgResult("error", error="rg: boom")
        found = self.files.get(keyword)
        if not found:
            return RgResult("no_match")
        if "--files-with-matches" in args:
            return RgResult("ok", stdout="\n".join(found) + "\n")
        if "--count-matches" in args:
            per_file = self.counts.get(keyword, 1)
            return RgResult("ok", stdout="".join(f"{f}:{per_file}\n" for f in found))
        return RgResult("ok", stdout="".join(f"{f}:1:{keyword}\n" for f in found))


def make_router(claude=(), codex=(), claude_installed: bool = True, codex_installed: bool = True) -> LlmRouter:
    return LlmRouter(adapters={
        Provider.CLAUDE: FakeAdapter("claude", claude, installed=claude_installed),
        Provider.CODEX: FakeAdapter("codex", codex, installed=codex_installed),
    })
