#!/usr/bin/env python3
from __future__ import annotations

import json
import logging
from typing import List, Optional

from keryx.clients.subprocess_runner import ProviderError, SubprocessProvider
from keryx.utils.json_sanitizer import extract_json

logger = logging.getLogger(__name__)


class ClaudeClient(SubprocessProvider):
	"""Adapter for the ``claude`` CLI in print mode.

	``claude -p <prompt> --output-format json`` wraps the model's reply in an
	envelope ``{"result": ..., "is_error": ...}``; the adapter unwraps it and
	hands the inner text to the caller.
	"""

	name = "claude"

	def build_command(self, prompt: str, schema_path: Optional[str]) -> List[str]:
		return ["claude", "-p", prompt, "--output-format", "json"]

	def decode_output(self, stdout: str) -> str:
		return unwrap_envelope(stdout)


def _envelope(text: str) -> Optional[dict]:
	try:
		data = json.loads(text)
	except ValueError:
		return None
	if isinstance(data, dict) and isinstance(data.get("result"), str):
		return data
	return None


def unwrap_envelope(response: str) -> str:
	"""Return the ``result`` text of a claude CLI envelope.

	Falls back to the raw response when no envelope is found, since older CLI
	versions print the reply directly.

	Raises:
		ProviderError: If the envelope reports ``is_error`` (code EXECUTION_FAILED)
	"""
	envelope = _envelope(response) or _envelope(extract_json(response))
	if envelope is None:
		logger.warning(
			"Could not parse the claude CLI envelope; treating output as a raw response. "
			"Run 'claude --version' to check your installation."
		)
		return response
	if envelope.get("is_error"):
		raise ProviderError(f"claude reported an error: {envelope['result']}", code="EXECUTION_FAILED", provider="claude")
	return envelope["result"]
