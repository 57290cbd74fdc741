#!/usr/bin/env python3
"""Detect project manifests and rewrite their version field in place.

TOML files are edited with tomlkit so comments, ordering and whitespace
survive; package.json is edited by replacing the top-level ``"version"``
string literal in the original text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

import tomlkit
from tomlkit.exceptions import TOMLKitError

from keryx.utils.errors import DataIntegrityError, FilesystemError, PreconditionError
from keryx.utils.semver import SemVer, parse_version

logger = logging.getLogger(__name__)


class ManifestError(DataIntegrityError):
    pass


class VersionFileKind(Enum):
    CARGO_TOML = "Cargo.toml"
    PACKAGE_JSON = "package.json"
    PYPROJECT_TOML = "pyproject.toml"

    def __str__(self) -> str:
        return self.value


@dataclass
class VersionFile:
    path: Path
    kind: VersionFileKind
    current_version: SemVer


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Failed to read {path}: {e}", code="READ_FAILED") from e


def _write(path: Path, content: str) -> None:
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    except OSError as e:
        raise FilesystemError(f"Failed to write {path}: {e}", code="WRITE_FAILED") from e


def _parse_toml(path: Path, content: str) -> tomlkit.TOMLDocument:
    try:
        return tomlkit.parse(content)
    except TOMLKitError as e:
        raise ManifestError(f"Failed to parse {path}: {e}", code="MANIFEST_PARSE_FAILED") from e


def _toml_table_path(doc: tomlkit.TOMLDocument, kind: VersionFileKind) -> Optional[Tuple[str, ...]]:
    """Keys leading to the version field, or None when it is absent."""
    candidates = [("package",)] if kind is VersionFileKind.CARGO_TOML else [("project",), ("tool", "poetry")]
    for keys in candidates:
        node = doc
        for key in keys:
            node = node.get(key) if hasattr(node, "get") else None
            if node is None:
                break
        if node is not None and isinstance(node.get("version"), str):
            return keys
    return None


def _scan_json_string(text: str, start: int) -> int:
    """Index just past the JSON string literal starting at ``start``."""
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == '"':
            return i + 1
        i += 1
    raise ValueError("unterminated string")


def _find_top_level_version(text: str) -> Optional[Tuple[int, int]]:
    """Span of the top-level ``"version"`` value literal in a JSON object."""
    depth = 0
    i = 0
    expecting_key = False
    while i < len(text):
        ch = text[i]
        if ch == '"':
            end = _scan_json_string(text, i)
            if depth == 1 and expecting_key and text[i + 1:end - 1] == "version":
                j = end
                while j < len(text) and text[j] in " \t\r\n":
                    j += 1
                if j < len(text) and text[j] == ":":
                    j += 1
                    while j < len(text) and text[j] in " \t\r\n":
                        j += 1
                    if j < len(text) and text[j] == '"':
                        return j, _scan_json_string(text, j)
            expecting_key = False
            i = end
            continue
        if ch in "{[":
            depth += 1
            expecting_key = ch == "{" and depth == 1
        elif ch in "}]":
            depth -= 1
        elif ch == "," and depth == 1:
            expecting_key = True
        i += 1
    return None


def read_version(path: Path, kind: VersionFileKind) -> Optional[SemVer]:
    """Current version in ``path``; None when missing or not semver.

    Raises:
        ManifestError: If the file itself cannot be parsed
    """
    content = _read(path)
    if kind is VersionFileKind.PACKAGE_JSON:
        try:
            data = json.loads(content)
        except ValueError as e:
            raise ManifestError(f"Invalid JSON in {path}: {e}", code="MANIFEST_PARSE_FAILED") from e
        value = data.get("version") if isinstance(data, dict) else None
    else:
        doc = _parse_toml(path, content)
        keys = _toml_table_path(doc, kind)
        if keys is None:
            return None
        node = doc
        for key in keys:
            node = node[key]
        value = node["version"]
    if not isinstance(value, str):
        return None
    return parse_version(str(value))


def detect_version_files(root: Path) -> List[VersionFile]:
    """Manifests in ``root`` that carry a semantic version.

    Raises:
        PreconditionError: If none is found (code NO_VERSION_FILES)
    """
    files = []
    for kind in VersionFileKind:
        path = Path(root) / kind.value
        if not path.exists():
            continue
        version = read_version(path, kind)
        if version is None:
            logger.debug(f"Skipping {path}: no usable version field")
            continue
        files.append(VersionFile(path=path, kind=kind, current_version=version))
    if not files:
        raise PreconditionError(
            "No version files found (Cargo.toml, package.json, or pyproject.toml)",
            code="NO_VERSION_FILES",
            hint="Add a version field to your project manifest.",
        )
    return files


def update_version_file(file: VersionFile, new_version: SemVer) -> None:
    """Rewrite only the version literal of ``file``."""
    content = _read(file.path)
    if file.kind is VersionFileKind.PACKAGE_JSON:
        span = _find_top_level_version(content)
        if span is None:
            raise ManifestError(f"No top-level version field in {file.path}", code="MANIFEST_UPDATE_FAILED")
        start, end = span
        updated = content[:start] + json.dumps(str(new_version)) + content[end:]
        updated = updated.rstrip("\r\n") + "\n"
    else:
        doc = _parse_toml(file.path, content)
        keys = _toml_table_path(doc, file.kind)
        if keys is None:
            raise ManifestError(f"No version field found in {file.path}", code="MANIFEST_UPDATE_FAILED")
        node = doc
        for key in keys:
            node = node[key]
        node["version"] = str(new_version)
        updated = tomlkit.dumps(doc)
    _write(file.path, updated)
    logger.info(f"✓ Updated {file.kind}: {file.current_version} -> {new_version}")


def read_project_description(root: Path) -> Optional[str]:
    """First non-empty ``description`` found in a manifest, for initial-release prompts."""
    for kind in VersionFileKind:
        path = Path(root) / kind.value
        if not path.exists():
            continue
        try:
            content = path.read_text(encoding="utf-8")
            if kind is VersionFileKind.PACKAGE_JSON:
                data = json.loads(content)
                value = data.get("description") if isinstance(data, dict) else None
            else:
                doc = tomlkit.parse(content)
                keys = _toml_table_path(doc, kind) or (("package",) if kind is VersionFileKind.CARGO_TOML else ("project",))
                node = doc
                for key in keys:
                    node = node.get(key) if hasattr(node, "get") else None
                    if node is None:
                        break
                value = node.get("description") if node is not None else None
        except (OSError, ValueError, TOMLKitError) as e:
            logger.debug(f"Could not read description from {path}: {e}")
            continue
        if isinstance(value, str) and value.strip():
            return str(value).strip()
    return None
