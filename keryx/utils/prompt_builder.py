#!/usr/bin/env python3
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from keryx.configs.config import Config
from keryx.utils.changelog_models import CATEGORY_ORDER, ChangelogOutput
from keryx.utils.prompt_sanitizer import sanitize_diff, sanitize_for_prompt, truncate_utf8
from keryx.utils.vcs_models import ClassifiedCommit, DiffSummary, PullRequestRecord
from keryx.utils.verification_models import VerificationEvidence


_PLACEHOLDER = re.compile(r"\{\{ (\w+) \}\}")


def _render_template(template: str, mapping: Dict[str, str]) -> str:
    """Fill ``{{ key }}`` placeholders in one pass; inserted values are never rescanned."""
    return _PLACEHOLDER.sub(lambda m: mapping.get(m.group(1), m.group(0)), template)


def _commit_for_prompt(commit: ClassifiedCommit) -> Dict[str, Any]:
    return {
        "id": commit.short_id,
        "message": sanitize_for_prompt(commit.raw_message),
        "type": commit.kind.value if commit.kind else None,
        "scope": sanitize_for_prompt(commit.scope) if commit.scope else None,
        "breaking": commit.is_breaking,
    }


def _pr_for_prompt(pr: PullRequestRecord) -> Dict[str, Any]:
    return {
        "number": pr.number,
        "title": sanitize_for_prompt(pr.title),
        "body": sanitize_for_prompt(pr.body) if pr.body else None,
        "labels": [sanitize_for_prompt(label) for label in pr.labels],
    }


CHANGELOG_TEMPLATE = """You are generating release notes for a software project.

{{ context }}

Given the following commits and pull requests, generate changelog entries
following the Keep a Changelog format.

## Commits
{{ commits_json }}

## Pull Requests
{{ prs_json }}

## Instructions
1. Group changes into categories: {{ categories }}
2. Write user-facing descriptions (not technical commit messages)
3. Focus on benefits and impact
4. Combine related commits/PRs into single entries where appropriate

Respond with JSON:
{
  "entries": [
    {"category": "Added", "description": "..."},
    ...
  ]
}"""


def build_changelog_prompt(
    commits: List[ClassifiedCommit],
    pull_requests: List[PullRequestRecord],
    previous_version: Optional[str],
    repo_name: str,
    project_description: Optional[str] = None,
) -> str:
    """Build the changelog generation prompt.

    Every commit message and PR field is sanitized before it is embedded.
    """
    if previous_version is None:
        context = (
            f'This is the INITIAL RELEASE of "{repo_name}".\n'
            "For initial releases, describe the core features and capabilities that the project provides.\n"
            'Do NOT skip entries just because commits look like "chore" or "initial commit" - this is the '
            "first release and users need to know what the project offers."
        )
        if project_description:
            context += f"\n\nProject description: {sanitize_for_prompt(project_description)}"
    else:
        context = (
            f'This is an incremental release for "{repo_name}" (previous version: {previous_version}).\n'
            "Focus only on changes since the last release.\n"
            "Ignore docs-only, test-only, and chore commits unless they affect users."
        )
    return _render_template(CHANGELOG_TEMPLATE, {
        "context": context,
        "commits_json": json.dumps([_commit_for_prompt(c) for c in commits], indent=2, ensure_ascii=False),
        "prs_json": json.dumps([_pr_for_prompt(p) for p in pull_requests], indent=2, ensure_ascii=False),
        "categories": ", ".join(c.value for c in CATEGORY_ORDER),
    })


VERIFICATION_TEMPLATE = """You are reviewing draft changelog entries for accuracy before they are published.

Each draft entry below was generated from commit messages. The evidence section shows what a
search of the actual codebase found for each entry: keyword matches, stub markers (TODO, FIXME,
unimplemented code) near those matches, and numeric claims checked against the code.

## Draft Entries
{{ draft_json }}

## Evidence
{{ evidence_json }}

## How to read the evidence
- confidence is high, medium or low; low means the entry is poorly supported by the code
- count_checks.matches is true when the claimed number equals the number found, false when it differs,
  and null when the claim could not be checked
- stub_indicators mean the feature may be incomplete
- an entry with no keyword_matches may describe something that does not exist

## Instructions
For each draft entry decide one of:
1. KEEP it unchanged when the evidence supports it
2. MODIFY it when the evidence contradicts a detail (for example, use the actual count when a count check does not match)
3. REMOVE it when the evidence shows the feature does not exist or is only a stub

Never invent new entries. Keep the original category unless the evidence clearly shows another one applies.
For every entry you keep or modify, add a short "note" explaining what the evidence showed.

Respond with JSON only:
{
  "entries": [
    {"category": "Added", "description": "...", "note": "..."},
    ...
  ]
}"""


def build_verification_prompt(draft: ChangelogOutput, evidence: VerificationEvidence) -> str:
    return _render_template(VERIFICATION_TEMPLATE, {
        "draft_json": json.dumps(draft.to_prompt_json(), indent=2, ensure_ascii=False),
        "evidence_json": evidence.to_prompt_json(),
    })


VERSION_BUMP_TEMPLATE = """You are determining the next semantic version bump for the project "{{ repo }}".

## Semantic Versioning Rules
- **major**: Breaking changes that are incompatible with the previous API/behavior
- **minor**: New features or functionality added in a backwards-compatible manner
- **patch**: Backwards-compatible bug fixes, performance improvements, or internal changes

{{ version_context }}

## Commits
{{ commits }}

## Pull Requests
{{ prs }}

## Instructions
Analyze the commits and PRs above. Determine whether this release warrants a **major**, **minor**, or **patch** bump.

Respond with JSON only (no markdown wrapping):
{"bump_type": "major|minor|patch", "reasoning": "brief explanation"}"""


def build_version_bump_prompt(
    commits: List[ClassifiedCommit],
    pull_requests: List[PullRequestRecord],
    previous_version: Optional[str],
    repo_name: str,
) -> str:
    commit_lines = []
    for commit in commits:
        prefix = f"{commit.kind.value.capitalize()}: " if commit.kind else ""
        breaking = " [BREAKING]" if commit.is_breaking else ""
        commit_lines.append(sanitize_for_prompt(f"{prefix}{commit.subject}{breaking}"))

    pr_lines = []
    for pr in pull_requests:
        body = truncate_utf8(pr.body or "", Config.BUMP_PR_BODY_MAX_BYTES)
        pr_lines.append(sanitize_for_prompt(f"PR #{pr.number}: {pr.title} - {body}"))

    if previous_version:
        version_context = f"The previous version is {previous_version}."
    else:
        version_context = "There is no previous version (initial release)."

    return _render_template(VERSION_BUMP_TEMPLATE, {
        "repo": repo_name,
        "version_context": version_context,
        "commits": "\n".join(commit_lines) or "(none)",
        "prs": "\n".join(pr_lines) or "(none)",
    })


def _files_section(diff: DiffSummary) -> str:
    return "\n".join(f"- {f.path} ({f.status.value})" for f in diff.changed_files)


COMMIT_TEMPLATE = """You are generating a Git commit message following the Conventional Commits specification.

## Changed Files ({{ additions }} additions, {{ deletions }} deletions)
{{ files_section }}

## Diff
```
{{ diff }}
```{{ truncation_note }}

## Branch Context
Branch: {{ branch }}

## Subject Line Rules (STRICT)
- Format: `type(scope): description`
- Type: one of feat, fix, build, chore, ci, docs, style, refactor, perf, test
- Scope: infer from the primary module affected. Use the user-facing concept, not the file name.
- Description: imperative mood ("add", "fix", "remove"), lowercase after colon, NO period at end
- HARD LIMIT: the ENTIRE subject line (including type and scope) MUST be <= 50 characters. If your first draft is longer, shorten it.

### Subject examples
GOOD (<=50 chars): `feat(auth): add two-factor login`
BAD  (too long):  `feat(auth): add two-factor authentication support for users`

## Body Rules
The diff already shows WHAT changed. The body MUST explain WHY.
- What motivated this change? What problem does it solve? What was the previous behavior?
- Wrap lines at 72 characters
- If the branch contains an issue key (e.g., `feat/KRX-42`), add `Closes KRX-42` on its own line
- For trivial changes (typos, formatting), body may be null

## Changelog Metadata
`changelog_category`: one of "added", "changed", "fixed", "removed", "deprecated", "security", or null.
- feat -> "added", fix -> "fixed", perf -> "changed"
- refactor, test, docs, chore, ci, build, style -> null unless the change is user-facing
`changelog_description`: one line written for end users, imperative mood, no type prefix. Null if the category is null.

## Breaking Changes
Set `breaking: true` ONLY if the public API or CLI interface changes incompatibly.

## Output Format
Respond with ONLY a JSON object (no markdown, no explanation):
{"subject": "type(scope): desc", "body": "why this change was made", "breaking": false, "changelog_category": "added", "changelog_description": "user-facing description"}"""


def build_commit_prompt(diff: DiffSummary, branch: str) -> str:
    note = "\n\nNote: The diff was truncated due to size. Focus on the visible changes." if diff.truncated else ""
    return _render_template(COMMIT_TEMPLATE, {
        "additions": str(diff.additions),
        "deletions": str(diff.deletions),
        "files_section": _files_section(diff),
        "diff": sanitize_diff(diff.diff_text),
        "truncation_note": note,
        "branch": branch,
    })


SPLIT_TEMPLATE = """You are analyzing a set of file changes to determine if they should be split into multiple atomic commits.

## Changed Files ({{ file_count }} files, {{ additions }} additions, {{ deletions }} deletions)
{{ files_section }}

## Branch Context
Branch: {{ branch }}

## Rules
1. Files that are part of the same feature/fix/refactor go in the same group
2. Test files go with the code they test
3. Unrelated changes should be separate groups
4. Order groups by dependency: foundational changes first
5. Every file must appear in exactly one group
6. If unsure whether to split, prefer fewer groups
7. Each group label should be a short description (3-8 words), NOT a commit message

Respond with ONLY a JSON object (no markdown, no explanation):
{"groups": [{"label": "short description", "files": ["path/to/file"]}]}"""


def build_split_prompt(diff: DiffSummary, branch: str) -> str:
    return _render_template(SPLIT_TEMPLATE, {
        "file_count": str(len(diff.changed_files)),
        "additions": str(diff.additions),
        "deletions": str(diff.deletions),
        "files_section": _files_section(diff),
        "branch": branch,
    })
