#!/usr/bin/env python3
"""Keep-a-Changelog reading and writing.

New sections go directly after a leading ``## [Unreleased]`` section, else
before the first existing section, else at the end. The previous file is
copied to ``<name>.bak`` before it is replaced, and every write goes through
a temporary file in the same directory followed by an atomic rename.
"""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional

from keryx.configs.config import Config
from keryx.utils.changelog_models import ChangelogOutput
from keryx.utils.errors import DataIntegrityError, FilesystemError
from keryx.utils.semver import SemVer, parse_version

logger = logging.getLogger(__name__)

CHANGELOG_HEADER = """# Changelog

All notable changes to this project will be documented in this file.

The format is based on [Keep a Changelog](https://keepachangelog.com/en/1.1.0/),
and this project adheres to [Semantic Versioning](https://semver.org/spec/v2.0.0.html).

"""

UNRELEASED_HEADING = "## [Unreleased]"


class ChangelogError(FilesystemError):
	pass


class ChangelogParseError(DataIntegrityError):
	pass


def _section_title(line: str) -> Optional[str]:
	if line.startswith("## "):
		return line[3:].strip()
	return None


def _version_from_title(title: str) -> str:
	title = title.strip()
	if title.startswith("[") and "]" in title:
		return title[1:title.index("]")]
	if " - " in title:
		return title[:title.index(" - ")].strip()
	return title


@dataclass
class ParsedChangelog:
	has_unreleased: bool
	latest_version: Optional[SemVer]
	raw: str
	newline: str = "\n"

	def has_version(self, version: SemVer) -> bool:
		wanted = str(version)
		for line in self.raw.splitlines():
			title = _section_title(line)
			if title is None:
				continue
			found = _version_from_title(title)
			if found.startswith("v"):
				found = found[1:]
			if found == wanted:
				return True
		return False


def parse_changelog(content: str) -> ParsedChangelog:
	newline = "\r\n" if "\r\n" in content else "\n"
	content = content.replace("\r\n", "\n")
	has_unreleased = False
	latest: Optional[SemVer] = None
	for line in content.splitlines():
		title = _section_title(line)
		if title is None:
			continue
		name = _version_from_title(title)
		if name.lower() == "unreleased":
			has_unreleased = True
		elif latest is None and name:
			latest = parse_version(name[1:] if name.startswith("v") else name)
	return ParsedChangelog(has_unreleased=has_unreleased, latest_version=latest, raw=content, newline=newline)


def read_changelog(path: Path) -> Optional[ParsedChangelog]:
	"""Parse ``path``; None when the file does not exist.

	Raises:
		ChangelogError: If the file cannot be read
		ChangelogParseError: If the file is not valid UTF-8
	"""
	path = Path(path)
	if not path.exists():
		return None
	try:
		data = path.read_bytes()
	except OSError as e:
		raise ChangelogError(f"Failed to read {path}: {e}", code="READ_FAILED") from e
	try:
		content = data.decode("utf-8")
	except UnicodeDecodeError as e:
		raise ChangelogParseError(f"{path} is not valid UTF-8: {e}", code="PARSE_FAILED") from e
	return parse_changelog(content)


def find_insertion_point(content: str) -> int:
	"""Character offset where a new version section should be inserted."""
	lines = content.splitlines(keepends=True)
	offset = 0
	for i, line in enumerate(lines):
		if line.startswith("## "):
			if "unreleased" in line.lower():
				after = offset + len(line)
				for next_line in lines[i + 1:]:
					if next_line.startswith("## "):
						return after
					after += len(next_line)
				return len(content)
			return offset
		offset += len(line)
	return len(content)


def remove_version_section(content: str, version: SemVer) -> str:
	"""Drop the section for ``version`` (used when overwriting with --force)."""
	lines = content.splitlines(keepends=True)
	out: List[str] = []
	skipping = False
	for line in lines:
		title = _section_title(line.rstrip("\n"))
		if title is not None:
			name = _version_from_title(title)
			skipping = (name[1:] if name.startswith("v") else name) == str(version)
		if not skipping:
			out.append(line)
	return "".join(out)


def format_entries(output: ChangelogOutput) -> str:
	text = ""
	for category, entries in output.entries_by_category():
		text += f"### {category.value}\n\n"
		for entry in entries:
			text += f"- {entry.description}\n"
		text += "\n"
	return text


def format_version_section(version: SemVer, day: str, output: ChangelogOutput) -> str:
	return f"## [{version}] - {day}\n\n" + format_entries(output)


def render_unreleased(output: Optional[ChangelogOutput] = None) -> str:
	"""A fresh changelog whose only section is Unreleased."""
	body = format_entries(output) if output is not None else ""
	return (CHANGELOG_HEADER + f"{UNRELEASED_HEADING}\n\n" + body).rstrip("\n") + "\n"


def _atomic_write(path: Path, data: bytes) -> None:
	parent = path.parent if str(path.parent) else Path(".")
	fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(parent))
	try:
		with os.fdopen(fd, "wb") as f:
			f.write(data)
			f.flush()
			os.fsync(f.fileno())
		os.replace(tmp_name, path)
	except BaseException:
		if os.path.exists(tmp_name):
			os.unlink(tmp_name)
		raise


def backup_path_for(path: Path) -> Path:
	return path.with_name(path.name + Config.BACKUP_SUFFIX)


def write_text(path: Path, content: str) -> None:
	try:
		_atomic_write(Path(path), content.encode("utf-8"))
	except OSError as e:
		raise ChangelogError(f"Failed to write {path}: {e}", code="WRITE_FAILED") from e


def write_changelog(
	path: Path,
	output: ChangelogOutput,
	version: SemVer,
	today: Optional[date] = None,
	replace_existing: bool = False,
) -> Optional[Path]:
	"""Insert a section for ``version`` into ``path`` (creating the file if needed).

	Args:
		path: Changelog file
		output: Entries to write
		version: Version heading
		today: Date for the heading (defaults to today)
		replace_existing: Remove an existing section for ``version`` first

	Returns:
		The backup path when an existing file was backed up, else None

	Raises:
		ChangelogError: On read, backup or write failure
	"""
	path = Path(path)
	day = (today or date.today()).isoformat()
	section = format_version_section(version, day, output)
	existing = read_changelog(path)

	if existing is None:
		write_text(path, (CHANGELOG_HEADER + section).rstrip("\n") + "\n")
		logger.info(f"✓ Created {path} with section {version}")
		return None

	backup = backup_path_for(path)
	try:
		_atomic_write(backup, path.read_bytes())
	except OSError as e:
		raise ChangelogError(f"Failed to back up {path} to {backup}: {e}", code="BACKUP_FAILED") from e

	content = existing.raw
	if replace_existing:
		content = remove_version_section(content, version)
	point = find_insertion_point(content)
	before, after = content[:point], content[point:]
	if before and not before.endswith("\n"):
		before += "\n"
	if before and not before.endswith("\n\n"):
		before += "\n"
	new_content = before + section + after if after.strip() else (before + section).rstrip("\n") + "\n"
	if existing.newline != "\n":
		new_content = new_content.replace("\n", existing.newline)
	write_text(path, new_content)
	logger.info(f"✓ Inserted section {version} into {path} (backup at {backup})")
	return backup


def generate_summary(output: ChangelogOutput, file_name: str = Config.DEFAULT_CHANGELOG) -> str:
	counts = output.count_by_type()
	if not counts:
		return "No changelog entries generated."
	total = len(output.entries)
	details = ", ".join(f"{cat.value}: {n}" for cat, n in counts.items())
	word = "entry" if total == 1 else "entries"
	return f"Added {total} {word} ({details}) to {file_name}"
