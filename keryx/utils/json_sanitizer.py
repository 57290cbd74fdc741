#!/usr/bin/env python3
from __future__ import annotations

import json
import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from keryx.utils.changelog_models import ChangelogOutput
from keryx.utils.errors import DataIntegrityError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class JSONSanitizerError(DataIntegrityError):
	def __init__(self, message: str, code: str = "INVALID_JSON") -> None:
		super().__init__(message, code=code)


# --- Private helpers ---

def _fenced_block(text: str, opener: str) -> Optional[str]:
	start = text.find(opener)
	if start < 0:
		return None
	body_start = start + len(opener)
	end = text.find("```", body_start)
	if end < 0:
		return None
	return text[body_start:end].strip()


def _balanced_object(text: str, start: int) -> Optional[str]:
	"""Return the brace-balanced object starting at ``start``.

	Braces inside JSON string literals do not count; a backslash inside a
	string escapes the next character.
	"""
	depth = 0
	in_string = False
	escaped = False
	for i in range(start, len(text)):
		ch = text[i]
		if in_string:
			if escaped:
				escaped = False
			elif ch == "\\":
				escaped = True
			elif ch == '"':
				in_string = False
			continue
		if ch == '"':
			in_string = True
		elif ch == "{":
			depth += 1
		elif ch == "}":
			depth -= 1
			if depth == 0:
				return text[start:i + 1]
	return None


# --- Public API ---

def extract_json(text: str) -> str:
	"""Pull the first JSON object out of free-form LLM output.

	Order: a ```json fence, then a bare ``` fence whose body starts with "{",
	then every "{" position (full parse of the suffix, then string-aware
	balanced-brace extraction). Falls back to the input unchanged.
	"""
	fenced = _fenced_block(text, "```json")
	if fenced is not None:
		return fenced
	fenced = _fenced_block(text, "```")
	if fenced is not None and fenced.startswith("{"):
		return fenced

	decoder = json.JSONDecoder()
	pos = text.find("{")
	while pos >= 0:
		try:
			obj, _ = decoder.raw_decode(text, pos)
			if isinstance(obj, dict):
				return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
		except json.JSONDecodeError:
			candidate = _balanced_object(text, pos)
			if candidate is not None:
				try:
					json.loads(candidate)
					return candidate
				except json.JSONDecodeError:
					pass
		pos = text.find("{", pos + 1)
	return text


def parse_model(raw: str, model: Type[T]) -> T:
	"""Extract JSON from ``raw`` and validate it against ``model``.

	Raises:
		JSONSanitizerError: If no JSON is found or it does not match the model
	"""
	candidate = extract_json(raw)
	try:
		data = json.loads(candidate)
	except json.JSONDecodeError as e:
		raise JSONSanitizerError(f"Response is not valid JSON: {e}. Response: {raw[:200]}")
	try:
		return model.model_validate(data)
	except ValidationError as e:
		raise JSONSanitizerError(f"Response does not match {model.__name__}: {e}", code="SCHEMA_MISMATCH")


def parse_changelog_output(raw: str) -> ChangelogOutput:
	output = parse_model(raw, ChangelogOutput)
	logger.debug(f"✓ Parsed {len(output.entries)} changelog entries")
	return output
