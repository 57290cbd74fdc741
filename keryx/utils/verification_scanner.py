#!/usr/bin/env python3
"""Confront draft changelog entries with the code they describe.

For every entry the scanner extracts keywords and numeric claims, searches the
workspace with ripgrep, looks for stub markers near the matches, and returns
an EntryEvidence whose confidence is computed from what was found. Search
helper failures never abort the run; they leave the affected field as None.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from keryx.configs.config import Config
from keryx.utils.changelog_models import ChangelogEntry
from keryx.utils.errors import ExternalToolError
from keryx.utils.prompt_sanitizer import truncate_utf8
from keryx.utils.verification_models import (
    CountCheck,
    EntryEvidence,
    KeyFileContent,
    KeywordMatch,
    StubIndicator,
    VerificationEvidence,
)

logger = logging.getLogger(__name__)

STUB_MARKERS = [
    "TODO",
    "FIXME",
    "XXX",
    "HACK",
    "unimplemented!",
    "todo!",
    'panic!("not implemented',
    'panic!("unimplemented',
    "// stub",
    "// placeholder",
    "NotImplemented",
    "raise NotImplementedError",
]

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "shall", "can", "need",
    "new", "add", "added", "change", "changed", "fix", "fixed", "update",
    "updated", "remove", "removed", "improve", "improved", "support",
    "supported", "feature", "features", "now", "using", "use", "based",
    "all", "any", "some", "more", "less", "better", "best", "first",
    "initial", "release", "version", "multiple", "various", "several",
    "when", "that", "this", "these", "those", "into", "your", "their",
}

UNCOUNTABLE = {
    "errors", "error", "bytes", "byte", "times", "time", "seconds", "second",
    "minutes", "minute", "hours", "hour", "days", "day", "ms", "kb", "mb", "gb",
    "percent", "lines", "line", "characters", "chars", "x", "px", "issues",
}

EXCLUDE_GLOBS = ["!target", "!node_modules", "!dist", "!build", "!.git"]
CODE_TYPE = ["--type-add", "code:*.{rs,ts,tsx,js,jsx,py,go,java,c,cpp,h,hpp}", "--type", "code"]

# (subject word, file glob, regex locating an array literal)
COUNT_PATTERNS = [
    ("template", "*.{rs,ts,js,py}", r"(TEMPLATES|templates)\s*[=:]\s*\["),
    ("preset", "*.{rs,ts,js,py}", r"(PRESETS|presets)\s*[=:]\s*\["),
]

KEY_FILES = ["Cargo.toml", "package.json", "pyproject.toml", "go.mod", "README.md"]

_WORD_RE = re.compile(r"[A-Z][a-z]+(?:[A-Z][a-z]+)*|[a-z]+(?:_[a-z]+)+|[A-Za-z]{4,}")
_QUOTE_RE = re.compile(r"[\"'`]([^\"'`]+)[\"'`]")
_TECH_RE = re.compile(r"\b([A-Z][a-zA-Z0-9]+(?:\s+[A-Z][a-zA-Z0-9]+)?)\b")
_TECH_SKIP = {"Added", "Changed", "Deprecated", "Fixed", "Removed", "Security", "The", "This", "With"}
# Digits must start the text or follow whitespace, so "UTF-8 handling" is not a claim
_COUNT_RE = re.compile(r"(?<!\S)(\d+)\s+([A-Za-z]+(?:\s+[A-Za-z]+)?)")


class VerificationError(ExternalToolError):
    pass


@dataclass
class RgResult:
    """Outcome of one ripgrep call: ``ok``, ``no_match`` (exit 1) or ``error``."""
    outcome: str
    stdout: str = ""
    error: str = ""

    @property
    def failed(self) -> bool:
        return self.outcome == "error"

    def lines(self) -> List[str]:
        if self.outcome != "ok":
            return []
        return [line for line in self.stdout.splitlines() if line]


class RipgrepRunner:
    """Runs ``rg`` in the repository root and classifies the exit status."""

    def __init__(self, cwd: Path, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.cwd = Path(cwd)
        self.runner = runner

    def __call__(self, args: List[str]) -> RgResult:
        try:
            proc = self.runner(
                ["rg"] + args,
                cwd=str(self.cwd),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as e:
            return RgResult("error", error=str(e))
        if proc.returncode == 0:
            return RgResult("ok", stdout=proc.stdout)
        if proc.returncode == 1:
            return RgResult("no_match")
        return RgResult("error", error=(proc.stderr or "").strip() or f"exit code {proc.returncode}")


Rg = Callable[[List[str]], RgResult]


def check_ripgrep_installed(which: Callable[[str], Optional[str]] = shutil.which) -> None:
    """Raise VerificationError if ``rg`` is not on PATH."""
    if which("rg") is None:
        raise VerificationError(
            "ripgrep (rg) is required for changelog verification but was not found on PATH",
            code="RG_NOT_INSTALLED",
            hint=(
                "Install ripgrep (brew install ripgrep, apt install ripgrep, or cargo install ripgrep), "
                "or skip verification with --no-verify"
            ),
        )


def extract_keywords(description: str) -> List[str]:
    """Identifiers, quoted terms and product names worth searching for."""
    keywords = set()
    for match in _WORD_RE.finditer(description):
        word = match.group(0).lower()
        if word in STOP_WORDS or not 4 <= len(word) <= 30:
            continue
        keywords.add(word)
    for match in _QUOTE_RE.finditer(description):
        term = match.group(1).strip().lower()
        if term.startswith("-"):
            continue
        if 3 <= len(term) <= 50:
            keywords.add(term)
    for match in _TECH_RE.finditer(description):
        term = match.group(1)
        if term in _TECH_SKIP:
            continue
        term = term.lower()
        if term in STOP_WORDS or not 4 <= len(term) <= 30:
            continue
        keywords.add(term)
    return sorted(keywords)


def extract_count_claims(description: str) -> List[Tuple[int, str, str]]:
    """``(count, subject, claimed_text)`` for each plausible numeric claim."""
    claims = []
    for match in _COUNT_RE.finditer(description):
        count = int(match.group(1))
        subject = match.group(2)
        if subject.split()[0].lower() in UNCOUNTABLE:
            continue
        if count == 0 or count > 1000:
            continue
        claims.append((count, subject, f"{match.group(1)} {subject}"))
    return claims


def count_array_elements(content: str, pattern: str) -> Optional[int]:
    """Count the top-level elements of the array literal that ``pattern`` locates.

    Nested brackets, braces, parentheses and quoted strings are skipped; a
    trailing comma does not add an element.
    """
    match = re.search(pattern, content)
    if not match:
        return None
    start = match.end() - 1 if match.group(0).endswith("[") else content.find("[", match.end())
    if start < 0:
        return None

    count = 0
    depth = 0
    pending = False
    quote = None
    escaped = False
    for ch in content[start:]:
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'`":
            quote = ch
            pending = True
        elif ch in "[{(":
            depth += 1
            if depth > 1:
                pending = True
        elif ch in "]})":
            depth -= 1
            if depth == 0:
                return count + (1 if pending else 0)
        elif ch == "," and depth == 1:
            if pending:
                count += 1
            pending = False
        elif not ch.isspace() and depth >= 1:
            pending = True
    return None


class EvidenceScanner:
    """Gathers evidence for draft entries from the workspace at ``repo_path``."""

    def __init__(self, repo_path: Path, rg: Optional[Rg] = None,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.repo_path = Path(repo_path)
        self.rg = rg or RipgrepRunner(self.repo_path)
        self.runner = runner
        self.cfg = Config.get_verification_config()

    # --- keyword search ---

    def _search_args(self, *extra: str) -> List[str]:
        args = ["--ignore-case", "--fixed-strings"] + list(extra) + CODE_TYPE
        for glob in EXCLUDE_GLOBS:
            args += ["-g", glob]
        return args

    def search_keyword(self, keyword: str) -> Tuple[Optional[KeywordMatch], bool]:
        """Return (match or None, search_failed)."""
        files_result = self.rg(self._search_args("--files-with-matches") + ["--", keyword])
        if files_result.failed:
            logger.warning(f"Keyword search failed for '{keyword}': {files_result.error}")
            return None, True
        files = files_result.lines()[: self.cfg["max_files"]]
        if not files:
            return None, False

        samples_result = self.rg(self._search_args("--max-count", "3", "-C", "1") + ["--", keyword])
        if samples_result.failed:
            logger.warning(f"Sample lookup failed for '{keyword}': {samples_result.error}")
            samples = None
        else:
            samples = samples_result.lines()[: self.cfg["sample_lines"]]

        count_result = self.rg(self._search_args("--count-matches") + ["--", keyword])
        if count_result.failed:
            logger.warning(f"Occurrence count failed for '{keyword}': {count_result.error}")
            occurrences = None
        else:
            occurrences = 0
            for line in count_result.lines():
                tail = line.rsplit(":", 1)[-1]
                if tail.isdigit():
                    occurrences += int(tail)

        return KeywordMatch(
            keyword=keyword,
            files_found=files,
            occurrence_count=occurrences,
            sample_lines=samples,
        ), False

    def find_stub_indicators(self, files: Iterable[str]) -> Optional[List[StubIndicator]]:
        """Stub markers in ``files``; None if the search itself failed."""
        files = list(files)[: self.cfg["stub_max_files"]]
        if not files:
            return []
        args = ["--json", "--fixed-strings"]
        for marker in STUB_MARKERS:
            args += ["-e", marker]
        result = self.rg(args + ["--"] + files)
        if result.failed:
            logger.warning(f"Stub scan failed: {result.error}")
            return None
        indicators = []
        for line in result.lines():
            try:
                event = json.loads(line)
            except ValueError:
                continue
            if event.get("type") != "match":
                continue
            data = event.get("data", {})
            text = (data.get("lines") or {}).get("text", "")
            submatches = data.get("submatches") or []
            marker = ((submatches[0].get("match") or {}).get("text") if submatches else None) or _marker_in(text)
            indicators.append(StubIndicator(
                file=(data.get("path") or {}).get("text", ""),
                line=int(data.get("line_number") or 0),
                marker=marker or "",
                context=text.strip(),
            ))
        return indicators

    # --- count claims ---

    def _count_for_subject(self, subject: str) -> Tuple[Optional[int], Optional[str]]:
        lowered = subject.lower()
        for word, glob, pattern in COUNT_PATTERNS:
            if word not in lowered:
                continue
            result = self.rg(["--files-with-matches", "-g", glob] + [a for g in EXCLUDE_GLOBS for a in ("-g", g)]
                             + ["--", pattern])
            if result.failed:
                logger.warning(f"Count lookup failed for '{subject}': {result.error}")
                continue
            for rel in result.lines():
                try:
                    content = (self.repo_path / rel).read_text(encoding="utf-8", errors="replace")
                except OSError as e:
                    logger.warning(f"Could not read {rel}: {e}")
                    continue
                count = count_array_elements(content, pattern)
                if count is not None:
                    return count, rel
        return None, None

    def verify_count_claims(self, description: str) -> List[CountCheck]:
        checks = []
        for claimed, subject, text in extract_count_claims(description):
            actual, source = self._count_for_subject(subject)
            checks.append(CountCheck(
                claimed_text=text,
                claimed_count=claimed,
                actual_count=actual,
                source_location=source,
            ))
        return checks

    # --- per entry ---

    def analyze_entry(self, entry: ChangelogEntry) -> EntryEvidence:
        keyword_matches: List[KeywordMatch] = []
        failed: List[str] = []
        stubs: Dict[Tuple[str, int], StubIndicator] = {}

        keywords = extract_keywords(entry.description)
        logger.debug(f"Keywords for '{entry.description}': {keywords}")
        for keyword in keywords:
            match, search_failed = self.search_keyword(keyword)
            if search_failed:
                failed.append(keyword)
            if match is None:
                continue
            found = self.find_stub_indicators(match.files_found)
            if found is not None:
                for indicator in found:
                    stubs.setdefault((indicator.file, indicator.line), indicator)
            match.appears_complete = found is not None and not found and match.occurrence_count is not None
            keyword_matches.append(match)

        return EntryEvidence(
            original_description=entry.description,
            category=entry.category.value,
            keyword_matches=keyword_matches,
            count_checks=self.verify_count_claims(entry.description),
            stub_indicators=list(stubs.values()),
            failed_searches=failed,
        )

    # --- project context ---

    def project_structure(self) -> Optional[str]:
        max_lines = self.cfg["structure_max_lines"]
        commands = [
            ["tree", "-L", "3", "-I", "target|node_modules|dist|build|.git|__pycache__", "--dirsfirst"],
            ["ls", "-la"],
        ]
        for cmd in commands:
            try:
                proc = self.runner(cmd, cwd=str(self.repo_path), capture_output=True, text=True, check=False)
            except OSError:
                continue
            if proc.returncode == 0 and proc.stdout.strip():
                return "\n".join(proc.stdout.splitlines()[:max_lines])
        return None

    def key_files(self) -> List[KeyFileContent]:
        max_bytes = self.cfg["key_file_max_bytes"]
        out = []
        for name in KEY_FILES:
            path = self.repo_path / name
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning(f"Could not read {name}: {e}")
                continue
            if len(content.encode("utf-8")) > max_bytes:
                content = truncate_utf8(content, max_bytes) + "\n...[truncated]"
            out.append(KeyFileContent(path=name, content=content))
        return out

    def gather(self, entries: List[ChangelogEntry]) -> VerificationEvidence:
        return VerificationEvidence(
            entries=[self.analyze_entry(entry) for entry in entries],
            project_structure=self.project_structure(),
            key_files=self.key_files(),
        )


def _marker_in(text: str) -> Optional[str]:
    for marker in STUB_MARKERS:
        if marker in text:
            return marker
    return None


def gather_verification_evidence(entries: List[ChangelogEntry], repo_path: Path,
                                 rg: Optional[Rg] = None) -> VerificationEvidence:
    return EvidenceScanner(repo_path, rg=rg).gather(entries)
