#!/usr/bin/env python3
"""Semantic version parsing, ordering, and bump arithmetic."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*)(?:\.(?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*))*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


class BumpType(Enum):
    PATCH = 1
    MINOR = 2
    MAJOR = 3

    def __lt__(self, other: "BumpType") -> bool:
        return self.value < other.value

    def __str__(self) -> str:
        return self.name.lower()


def _prerelease_key(prerelease: Tuple[str, ...]) -> Tuple:
    # A release sorts after any prerelease of the same core version
    if not prerelease:
        return (1,)
    parts = []
    for ident in prerelease:
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident))
    return (0, tuple(parts))


@dataclass(frozen=True)
class SemVer:
    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = ()
    build: Optional[str] = field(default=None, compare=False)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + self.build
        return text

    def _key(self) -> Tuple:
        return (self.major, self.minor, self.patch, _prerelease_key(self.prerelease))

    def __lt__(self, other: "SemVer") -> bool:
        return self._key() < other._key()

    def __le__(self, other: "SemVer") -> bool:
        return self._key() <= other._key()

    def __gt__(self, other: "SemVer") -> bool:
        return self._key() > other._key()

    def __ge__(self, other: "SemVer") -> bool:
        return self._key() >= other._key()

    @property
    def tag(self) -> str:
        return f"v{self}"

    @classmethod
    def parse(cls, text: str) -> "SemVer":
        """Parse a strict ``MAJOR.MINOR.PATCH[-pre][+build]`` string.

        Raises:
            ValueError: If ``text`` is not a semantic version
        """
        match = SEMVER_RE.match(text.strip())
        if not match:
            raise ValueError(f"Invalid semantic version: {text!r}")
        prerelease = tuple(match.group(4).split(".")) if match.group(4) else ()
        return cls(int(match.group(1)), int(match.group(2)), int(match.group(3)), prerelease, match.group(5))


def parse_version(text: str) -> Optional[SemVer]:
    try:
        return SemVer.parse(text)
    except ValueError:
        return None


def version_from_tag(tag: str) -> Optional[SemVer]:
    """``v1.2.3`` and ``1.2.3`` both parse; anything else is None."""
    name = tag.strip()
    if name.startswith("refs/tags/"):
        name = name[len("refs/tags/"):]
    if name.startswith("v"):
        name = name[1:]
    return parse_version(name)


def apply_bump(base: Optional[SemVer], bump: Union[BumpType, str]) -> SemVer:
    """Bump ``base`` (``0.0.0`` when None), resetting lower digits and dropping prerelease."""
    if isinstance(bump, str):
        bump = BumpType[bump.upper()]
    base = base or SemVer(0, 0, 0)
    if bump is BumpType.MAJOR:
        return SemVer(base.major + 1, 0, 0)
    if bump is BumpType.MINOR:
        return SemVer(base.major, base.minor + 1, 0)
    return SemVer(base.major, base.minor, base.patch + 1)
