#!/usr/bin/env python3
"""Data models for commit history and pull request metadata.

These models normalize what the git backend and the GitHub client return so
that the prompt builder and the version resolver see one shape.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class CommitType(str, Enum):
    FEAT = "feat"
    FIX = "fix"
    DOCS = "docs"
    STYLE = "style"
    REFACTOR = "refactor"
    PERF = "perf"
    TEST = "test"
    BUILD = "build"
    CI = "ci"
    CHORE = "chore"

    @classmethod
    def from_str(cls, value: str) -> Optional["CommitType"]:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class ClassifiedCommit(BaseModel):
    """A commit with its Conventional Commits classification."""
    id: str = Field(..., description="Full commit SHA")
    author_time: datetime = Field(..., description="Author timestamp (UTC)")
    raw_message: str = Field(..., description="Full commit message")
    kind: Optional[CommitType] = Field(None, description="Conventional commit type, if recognized")
    scope: Optional[str] = Field(None, description="Conventional commit scope")
    is_breaking: bool = Field(False, description="Breaking marker or BREAKING CHANGE footer present")

    @property
    def subject(self) -> str:
        return self.raw_message.split("\n", 1)[0].strip()

    @property
    def short_id(self) -> str:
        return self.id[:7]


class PullRequestRecord(BaseModel):
    """A merged pull request as used for changelog context."""
    number: int = Field(..., gt=0, description="Pull request number")
    title: str = Field("", description="Pull request title")
    body: Optional[str] = Field(None, description="Pull request body, truncated")
    merged_at: Optional[datetime] = Field(None, description="Merge timestamp")
    labels: List[str] = Field(default_factory=list, description="Label names")

    model_config = {"extra": "ignore"}


class CommitRange(BaseModel):
    """Resolved ``from..to`` commit range; ``from`` is exclusive."""
    from_id: str
    to_id: str
    from_label: str
    to_label: str = "HEAD"
    from_is_root: bool = False


class FileStatus(str, Enum):
    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"
    RENAMED = "Renamed"


class ChangedFile(BaseModel):
    """A working-tree change; ``old_path`` is set for renames."""
    path: str
    status: FileStatus
    old_path: Optional[str] = None


class DiffSummary(BaseModel):
    """Working-tree changes prepared for the commit helper prompts."""
    changed_files: List[ChangedFile] = Field(default_factory=list)
    diff_text: str = ""
    truncated: bool = False
    additions: int = 0
    deletions: int = 0

    def paths(self) -> List[str]:
        return [f.path for f in self.changed_files]
