#!/usr/bin/env python3
"""Error taxonomy shared by every keryx stage.

Each error carries a machine-readable ``code`` (mirrors the typed-code style
used by the fetchers) and an optional remediation ``hint`` that the CLI prints
under the message. The concrete kind decides the process exit code.
"""

from __future__ import annotations

import sys
from typing import Optional


class KeryxError(Exception):
    """Base class for all keryx failures."""

    exit_code = 1

    def __init__(self, message: str, code: str = "UNKNOWN", hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.hint = hint


class UserInputError(KeryxError):
    """Cancelled at a prompt, or an argument could not be parsed."""

    exit_code = 2


class PreconditionError(KeryxError):
    """The repository is not in a releasable state."""

    exit_code = 3


class ExternalToolError(KeryxError):
    """A required external command is missing or failed."""

    exit_code = 4


class DataIntegrityError(KeryxError):
    """Data read from a tool or a file could not be parsed."""

    exit_code = 5


class NetworkError(KeryxError):
    """Forge API or push failure."""

    exit_code = 6


class FilesystemError(KeryxError):
    """Reading or writing a file failed."""

    exit_code = 7


class RollbackFailedError(KeryxError):
    """Cleanup after a primary failure did not complete."""

    exit_code = 8

    def __init__(self, message: str, primary: Optional[BaseException] = None, hint: Optional[str] = None) -> None:
        super().__init__(message, code="ROLLBACK_FAILED", hint=hint)
        self.primary = primary


class CancelledError(UserInputError):
    def __init__(self, message: str = "Operation cancelled by user") -> None:
        super().__init__(message, code="CANCELLED")


def print_warning(message: str) -> None:
    print(message, file=sys.stderr)


def print_degradation(what: str, impact: str, fix: str, hint: Optional[str] = None) -> None:
    """Warn about a non-fatal failure: what happened, what it costs, what to do."""
    lines = [f"⚠ Warning: {what}", f"  Impact: {impact}", f"  Fix: {fix}"]
    if hint:
        lines.append(f"  Hint: {hint}")
    print("\n".join(lines), file=sys.stderr)
