#!/usr/bin/env python3
"""Changelog models for structured LLM output.

These models define the contract the changelog prompt targets and the
shapes of the auxiliary raw calls (version bump, commit message, split plan).
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChangelogCategory(str, Enum):
	ADDED = "Added"
	CHANGED = "Changed"
	DEPRECATED = "Deprecated"
	REMOVED = "Removed"
	FIXED = "Fixed"
	SECURITY = "Security"

	@classmethod
	def parse(cls, value: str) -> "ChangelogCategory":
		"""Case-insensitive lookup; LLMs emit both "Added" and "added"."""
		wanted = str(value).strip().lower()
		for member in cls:
			if member.value.lower() == wanted:
				return member
		raise ValueError(f"Unknown changelog category: {value!r}")

	@property
	def order(self) -> int:
		return CATEGORY_ORDER.index(self)


CATEGORY_ORDER: List[ChangelogCategory] = list(ChangelogCategory)


class _LenientModel(BaseModel):
	model_config = ConfigDict(extra="ignore")


class ChangelogEntry(_LenientModel):
	"""One line of a changelog section."""

	category: ChangelogCategory
	description: str = Field(..., min_length=1)
	note: Optional[str] = Field(None, description="Verification annotation, never written to the file")

	@field_validator("category", mode="before")
	@classmethod
	def _category_any_case(cls, value):
		if isinstance(value, ChangelogCategory):
			return value
		return ChangelogCategory.parse(value)

	@field_validator("description")
	@classmethod
	def _strip_description(cls, value: str) -> str:
		value = value.strip()
		if not value:
			raise ValueError("description must not be blank")
		return value


class ChangelogOutput(_LenientModel):
	entries: List[ChangelogEntry] = Field(default_factory=list)

	def entries_by_category(self) -> List[Tuple[ChangelogCategory, List[ChangelogEntry]]]:
		"""Non-empty categories in display order, entries in original order."""
		groups: Dict[ChangelogCategory, List[ChangelogEntry]] = {}
		for entry in self.entries:
			groups.setdefault(entry.category, []).append(entry)
		return [(cat, groups[cat]) for cat in CATEGORY_ORDER if cat in groups]

	def count_by_type(self) -> Dict[ChangelogCategory, int]:
		return {cat: len(items) for cat, items in self.entries_by_category()}

	def to_prompt_json(self) -> Dict[str, List[Dict[str, str]]]:
		return {"entries": [{"category": e.category.value, "description": e.description} for e in self.entries]}


class VersionBumpResponse(_LenientModel):
	bump_type: str
	reasoning: str


class CommitGroup(_LenientModel):
	"""Files that belong to one logical commit; label is for display only."""

	label: str
	files: List[str]


class SplitAnalysis(_LenientModel):
	groups: List[CommitGroup]


class CommitMessage(_LenientModel):
	subject: str
	body: Optional[str] = None
	breaking: bool = False
	changelog_category: Optional[str] = None
	changelog_description: Optional[str] = None

	def format(self) -> str:
		"""Render subject, optional body, and Changelog trailers."""
		parts = [self.subject.strip()]
		if self.body and self.body.strip():
			parts.extend(["", self.body.strip()])
		trailers = []
		if self.changelog_category:
			trailers.append(f"Changelog: {self.changelog_category}")
		if self.changelog_description:
			trailers.append(f"Changelog-Description: {self.changelog_description}")
		if trailers:
			parts.append("")
			parts.extend(trailers)
		return "\n".join(parts)


# JSON schema handed to providers that support constrained output
CHANGELOG_SCHEMA = {
	"type": "object",
	"properties": {
		"entries": {
			"type": "array",
			"items": {
				"type": "object",
				"properties": {
					"category": {"type": "string", "enum": [c.value for c in CATEGORY_ORDER]},
					"description": {"type": "string"},
				},
				"required": ["category", "description"],
				"additionalProperties": False,
			},
		},
	},
	"required": ["entries"],
	"additionalProperties": False,
}

VERIFIED_CHANGELOG_SCHEMA = {
	"type": "object",
	"properties": {
		"entries": {
			"type": "array",
			"items": {
				"type": "object",
				"properties": {
					"category": {"type": "string", "enum": [c.value for c in CATEGORY_ORDER]},
					"description": {"type": "string"},
					"note": {"type": "string"},
				},
				"required": ["category", "description", "note"],
				"additionalProperties": False,
			},
		},
	},
	"required": ["entries"],
	"additionalProperties": False,
}
