#!/usr/bin/env python3
"""Shared plumbing for the LLM command-line adapters.

Each provider is an opaque text-in/text-out subprocess. This module runs it
with a wall-clock timeout, classifies the outcome into typed error codes and
wraps the call in the shared retry loop. Provider-specific argument building
and output decoding live in the adapter subclasses.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile
import time
from typing import Any, Callable, Dict, List, Optional

from keryx.configs.config import Config
from keryx.utils.errors import DataIntegrityError, ExternalToolError
from keryx.utils.metrics import Timer
from keryx.utils.wrap import with_retries

logger = logging.getLogger(__name__)

INSTALL_HINTS = {
    "claude": "npm install -g @anthropic-ai/claude-code",
    "codex": "npm install -g @openai/codex",
}


class ProviderError(ExternalToolError):
    """Typed failure of one provider call.

    Codes: NOT_INSTALLED, SPAWN_FAILED, NON_ZERO_EXIT, TIMEOUT, INVALID_JSON,
    EXECUTION_FAILED, RETRIES_EXHAUSTED, SERIALIZATION_FAILED.
    """

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN",
        provider: str = "",
        returncode: Optional[int] = None,
        stderr: str = "",
        last_error: Optional["ProviderError"] = None,
    ) -> None:
        hint = f"Install it with: {INSTALL_HINTS[provider]}" if code == "NOT_INSTALLED" and provider in INSTALL_HINTS else None
        super().__init__(message, code=code, hint=hint)
        self.provider = provider
        self.returncode = returncode
        self.stderr = stderr
        self.last_error = last_error

    def summary(self) -> str:
        """One line suitable for a warning."""
        if self.code == "RETRIES_EXHAUSTED" and self.last_error is not None:
            return f"{self.provider} failed after retries: {self.last_error.summary()}"
        if self.code == "NON_ZERO_EXIT":
            first = self.stderr.strip().splitlines()[0] if self.stderr.strip() else "no stderr"
            return f"{self.provider} exited with code {self.returncode}: {first}"
        return self.message


def run_command(
    cmd: List[str],
    provider: str,
    timeout_s: int,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> str:
    """Run one provider command and return its stdout.

    Raises:
        ProviderError: NOT_INSTALLED, SPAWN_FAILED, TIMEOUT or NON_ZERO_EXIT
    """
    logger.debug(f"$ {cmd[0]} ({len(cmd) - 1} args, timeout {timeout_s}s)")
    try:
        proc = runner(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_s,
            check=False,
        )
    except FileNotFoundError as e:
        raise ProviderError(f"{provider} CLI not found on PATH", code="NOT_INSTALLED", provider=provider) from e
    except subprocess.TimeoutExpired as e:
        raise ProviderError(f"{provider} timed out after {timeout_s}s", code="TIMEOUT", provider=provider) from e
    except OSError as e:
        raise ProviderError(f"Failed to spawn {provider}: {e}", code="SPAWN_FAILED", provider=provider) from e

    if proc.returncode != 0:
        raise ProviderError(
            f"{provider} exited with code {proc.returncode}",
            code="NON_ZERO_EXIT",
            provider=provider,
            returncode=proc.returncode,
            stderr=proc.stderr or "",
        )
    return proc.stdout or ""


def _classify(e: Exception) -> str:
    return getattr(e, "code", "UNKNOWN")


class SubprocessProvider:
    """Base class for an LLM CLI adapter.

    Subclasses set ``name`` and implement ``build_command`` and
    ``decode_output``. ``complete`` handles installation checks, the optional
    schema file, the timeout and retries.
    """

    name = ""
    supports_schema_file = False

    def __init__(
        self,
        timeout_s: Optional[int] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        sleep: Callable[[float], Any] = time.sleep,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.timeout_s = timeout_s or Config.llm_timeout_s(self.name)
        self.runner = runner
        self.sleep = sleep
        self.which = which
        self.retry_config = Config.get_llm_config()

    def build_command(self, prompt: str, schema_path: Optional[str]) -> List[str]:
        raise NotImplementedError

    def decode_output(self, stdout: str) -> str:
        return stdout

    def is_installed(self) -> bool:
        return self.which(self.name) is not None

    def check_installed(self) -> None:
        """Locate the CLI on PATH and confirm ``--version`` runs."""
        if not self.is_installed():
            raise ProviderError(f"{self.name} CLI not found on PATH", code="NOT_INSTALLED", provider=self.name)
        try:
            proc = self.runner([self.name, "--version"], capture_output=True, text=True, timeout=30, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProviderError(f"Failed to run {self.name} --version: {e}", code="SPAWN_FAILED", provider=self.name) from e
        if proc.returncode != 0:
            raise ProviderError(f"{self.name} --version failed", code="NOT_INSTALLED", provider=self.name)

    def _once(self, prompt: str, schema_path: Optional[str], parse: Optional[Callable[[str], Any]]) -> Any:
        stdout = run_command(self.build_command(prompt, schema_path), self.name, self.timeout_s, self.runner)
        text = self.decode_output(stdout)
        if parse is None:
            return text
        try:
            return parse(text)
        except DataIntegrityError as e:
            logger.debug(f"{self.name} response did not parse: {text[:500]}")
            raise ProviderError(f"{self.name} returned invalid JSON: {e}", code="INVALID_JSON", provider=self.name) from e

    def complete(
        self,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        parse: Optional[Callable[[str], Any]] = None,
    ) -> Any:
        """Send ``prompt`` and return the response text, or ``parse(text)``.

        Args:
            prompt: Full prompt text
            schema: Optional JSON schema for constrained output; written to a
                temporary file that is removed on every exit path
            parse: Optional decoder applied inside the retry loop, so a
                response that fails to parse is retried like any other failure

        Raises:
            ProviderError: NOT_INSTALLED immediately, otherwise RETRIES_EXHAUSTED
                wrapping the last attempt's error
        """
        self.check_installed()
        schema_path = None
        if schema is not None and self.supports_schema_file:
            try:
                fd, schema_path = tempfile.mkstemp(prefix="keryx-schema-", suffix=".json")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(schema, f)
            except (OSError, TypeError, ValueError) as e:
                if schema_path:
                    os.unlink(schema_path)
                raise ProviderError(
                    f"Failed to write schema file: {e}", code="SERIALIZATION_FAILED", provider=self.name
                ) from e
        try:
            with Timer(f"llm.{self.name}"):
                return with_retries(
                    lambda: self._once(prompt, schema_path, parse),
                    max_attempts=self.retry_config["max_attempts"],
                    backoff_s=self.retry_config["backoff_s"],
                    max_backoff_s=self.retry_config["max_backoff_s"],
                    retry_exceptions=(ProviderError, subprocess.TimeoutExpired),
                    no_retry_on=("NOT_INSTALLED", "SERIALIZATION_FAILED"),
                    classify_exc=_classify,
                    on_exhausted=self._exhausted,
                    sleep=self.sleep,
                )
        finally:
            if schema_path and os.path.exists(schema_path):
                os.unlink(schema_path)

    def _exhausted(self, e: Exception) -> ProviderError:
        last = e if isinstance(e, ProviderError) else None
        return ProviderError(
            f"{self.name} failed after {self.retry_config['max_attempts']} attempts: {e}",
            code="RETRIES_EXHAUSTED",
            provider=self.name,
            last_error=last,
        )
