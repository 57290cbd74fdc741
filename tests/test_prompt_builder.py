from __future__ import annotations

import json
from datetime import datetime, timezone

from keryx.utils.prompt_builder import build_changelog_prompt, build_commit_prompt
from keryx.utils.vcs_models import ChangedFile, ClassifiedCommit, DiffSummary, FileStatus, PullRequestRecord


def test_commit_prompt_keeps_placeholders_found_in_the_diff() -> None:
    diff = DiffSummary(
        changed_files=[ChangedFile(path="src/app.py", status=FileStatus.MODIFIED)],
        diff_text="+msg = '{{ branch }}'\n+other = '{{ files_section }}'\n",
        additions=2,
    )

    prompt = build_commit_prompt(diff, "feature/export")

    assert "+msg = '{{ branch }}'" in prompt
    assert "+other = '{{ files_section }}'" in prompt
    assert "Branch: feature/export" in prompt
    assert "{{ diff }}" not in prompt


def test_changelog_prompt_keeps_placeholders_found_in_commits() -> None:
    commit = ClassifiedCommit(
        id="b" * 40,
        author_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        raw_message="fix: escape {{ prs_json }} and {{ categories }} in templates",
    )
    pr = PullRequestRecord(number=4, title="Template escaping")

    prompt = build_changelog_prompt([commit], [pr], "1.2.3", "widget")

    assert "fix: escape {{ prs_json }} and {{ categories }} in templates" in prompt
    assert json.dumps("Template escaping") in prompt
    assert prompt.count('"number": 4') == 1
