#!/usr/bin/env python3
"""Primary/fallback routing over the LLM command-line adapters."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from keryx.clients.claude_client import ClaudeClient
from keryx.clients.codex_client import CodexClient
from keryx.clients.subprocess_runner import INSTALL_HINTS, ProviderError, SubprocessProvider
from keryx.utils.changelog_models import CHANGELOG_SCHEMA
from keryx.utils.errors import ExternalToolError
from keryx.utils.json_sanitizer import parse_changelog_output

logger = logging.getLogger(__name__)


class Provider(str, Enum):
	CLAUDE = "claude"
	CODEX = "codex"

	@property
	def display_name(self) -> str:
		return self.value.capitalize()

	def other(self) -> "Provider":
		return Provider.CODEX if self is Provider.CLAUDE else Provider.CLAUDE


@dataclass(frozen=True)
class ProviderSelection:
	primary: Provider = Provider.CLAUDE
	fallback: Provider = Provider.CODEX

	@classmethod
	def from_primary(cls, primary: Provider) -> "ProviderSelection":
		return cls(primary=primary, fallback=primary.other())


@dataclass
class LlmCompletion:
	output: Any
	provider: Provider
	primary_error: Optional[ProviderError] = None


class LlmError(ExternalToolError):
	"""Both providers failed (ALL_PROVIDERS_FAILED), or a response could not be used (RESPONSE_PARSE_FAILED)."""

	def __init__(
		self,
		message: str,
		code: str = "ALL_PROVIDERS_FAILED",
		primary: Optional[Provider] = None,
		primary_error: Optional[ProviderError] = None,
		fallback: Optional[Provider] = None,
		fallback_error: Optional[ProviderError] = None,
		hint: Optional[str] = None,
	) -> None:
		super().__init__(message, code=code, hint=hint)
		self.primary = primary
		self.primary_error = primary_error
		self.fallback = fallback
		self.fallback_error = fallback_error

	def detailed(self) -> str:
		if self.code != "ALL_PROVIDERS_FAILED":
			return self.message
		return (
			f"Both LLM providers failed. {self.primary.display_name} error: {self.primary_error}. "
			f"{self.fallback.display_name} error: {self.fallback_error}."
		)


def _install_hint(*errors: Optional[ProviderError]) -> Optional[str]:
	missing = [e.provider for e in errors if e is not None and e.code == "NOT_INSTALLED"]
	if not missing:
		return None
	lines = ["Install at least one LLM CLI:"]
	lines += [f"  {INSTALL_HINTS[name]}" for name in missing if name in INSTALL_HINTS]
	return "\n".join(lines)


def default_adapters() -> Dict[Provider, SubprocessProvider]:
	return {Provider.CLAUDE: ClaudeClient(), Provider.CODEX: CodexClient()}


class LlmRouter:
	"""Send prompts to the primary provider, falling back to the other one.

	A fallback success swaps the pair so later calls in the same run start
	with the provider that just worked.
	"""

	def __init__(
		self,
		selection: Optional[ProviderSelection] = None,
		adapters: Optional[Dict[Provider, SubprocessProvider]] = None,
	) -> None:
		selection = selection or ProviderSelection()
		self.primary = selection.primary
		self.fallback = selection.fallback
		self.adapters = adapters if adapters is not None else default_adapters()
		self.last_completion: Optional[LlmCompletion] = None

	def generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> LlmCompletion:
		"""Structured call; ``output`` is a ChangelogOutput."""
		schema = schema or CHANGELOG_SCHEMA
		return self._try_with_fallback(
			lambda adapter: adapter.complete(prompt, schema=schema, parse=parse_changelog_output)
		)

	def generate_raw(self, prompt: str) -> LlmCompletion:
		"""Free-form call; ``output`` is the response text."""
		return self._try_with_fallback(lambda adapter: adapter.complete(prompt))

	def _try_with_fallback(self, call: Callable[[SubprocessProvider], Any]) -> LlmCompletion:
		primary, fallback = self.primary, self.fallback
		try:
			output = call(self.adapters[primary])
			self.last_completion = LlmCompletion(output=output, provider=primary)
			return self.last_completion
		except ProviderError as primary_error:
			logger.debug(f"{primary.display_name} failed: {primary_error}")
			try:
				output = call(self.adapters[fallback])
			except ProviderError as fallback_error:
				raise LlmError(
					f"Both LLM providers failed. {primary.display_name} error: {primary_error.summary()}. "
					f"{fallback.display_name} error: {fallback_error.summary()}.",
					primary=primary,
					primary_error=primary_error,
					fallback=fallback,
					fallback_error=fallback_error,
					hint=_install_hint(primary_error, fallback_error),
				) from fallback_error
			self.primary, self.fallback = fallback, primary
			logger.info(f"✓ {fallback.display_name} succeeded; preferring it for the rest of this run")
			self.last_completion = LlmCompletion(output=output, provider=fallback, primary_error=primary_error)
			return self.last_completion


def fallback_notice(completion: LlmCompletion) -> Optional[str]:
	"""Warning line to show when the answer came from the fallback provider."""
	if completion.primary_error is None:
		return None
	failed = completion.provider.other()
	return (
		f"⚠ {failed.display_name} failed, using {completion.provider.display_name} instead "
		f"({completion.primary_error.summary()})"
	)

