#!/usr/bin/env python3
from __future__ import annotations

from typing import List, Optional

from keryx.clients.subprocess_runner import SubprocessProvider


class CodexClient(SubprocessProvider):
	"""Adapter for ``codex exec``.

	Structured calls pass ``--output-schema <file>`` so the reply is constrained
	to the changelog shape; raw calls (version bump, commit helper) omit it.
	"""

	name = "codex"
	supports_schema_file = True

	def build_command(self, prompt: str, schema_path: Optional[str]) -> List[str]:
		cmd = ["codex", "exec"]
		if schema_path:
			cmd += ["--output-schema", schema_path]
		cmd.append(prompt)
		return cmd

	def decode_output(self, stdout: str) -> str:
		return stdout.strip()
