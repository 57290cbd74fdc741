#!/usr/bin/env python3
"""Evidence gathered to check draft changelog entries against the codebase.

Confidence is derived from the evidence every time it is read (and when the
evidence is serialized for the verification prompt), so it can never drift
from the facts that produced it.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def __str__(self) -> str:
        return self.value


class KeywordMatch(BaseModel):
    """Search results for one keyword.

    ``occurrence_count`` and ``sample_lines`` are None when the search helper
    failed; an explicit 0 means the search ran and counted nothing.
    """
    keyword: str
    files_found: List[str] = Field(default_factory=list)
    occurrence_count: Optional[int] = None
    sample_lines: Optional[List[str]] = None
    appears_complete: bool = False


class CountCheck(BaseModel):
    """A numeric claim such as "8 templates" and what the code actually holds."""
    claimed_text: str
    claimed_count: Optional[int] = None
    actual_count: Optional[int] = None
    source_location: Optional[str] = None

    @computed_field
    @property
    def matches(self) -> Optional[bool]:
        """True/False when both counts are known, None when the claim could not be checked."""
        if self.claimed_count is None or self.actual_count is None:
            return None
        return self.claimed_count == self.actual_count


class StubIndicator(BaseModel):
    file: str
    line: int
    marker: str
    context: str = ""


class KeyFileContent(BaseModel):
    path: str
    content: str


def score_evidence(
    keyword_matches: List[KeywordMatch],
    stub_indicators: List[StubIndicator],
    count_checks: List[CountCheck],
) -> int:
    score = 50
    for km in keyword_matches:
        if km.occurrence_count is not None and km.occurrence_count > 0:
            score += 10
            if km.appears_complete:
                score += 10
        if len(km.files_found) > 2:
            score += 5
    score -= 15 * len(stub_indicators)
    for check in count_checks:
        if check.matches is False:
            score -= 20
        elif check.matches is None:
            score -= 10
    if not keyword_matches:
        score -= 30
    return score


def confidence_from_score(score: int) -> Confidence:
    if score >= 70:
        return Confidence.HIGH
    if score >= 40:
        return Confidence.MEDIUM
    return Confidence.LOW


class EntryEvidence(BaseModel):
    original_description: str
    category: str
    keyword_matches: List[KeywordMatch] = Field(default_factory=list)
    count_checks: List[CountCheck] = Field(default_factory=list)
    stub_indicators: List[StubIndicator] = Field(default_factory=list)
    failed_searches: List[str] = Field(default_factory=list, description="Keywords whose search helper errored")

    @computed_field
    @property
    def confidence(self) -> Confidence:
        return confidence_from_score(score_evidence(self.keyword_matches, self.stub_indicators, self.count_checks))

    def issues(self) -> List[str]:
        """Short reasons shown next to a low-confidence entry."""
        out = []
        if self.stub_indicators:
            out.append(f"{len(self.stub_indicators)} stub marker(s) near matched code")
        for check in self.count_checks:
            if check.matches is False:
                out.append(f"claims {check.claimed_count}, found {check.actual_count}")
            elif check.matches is None:
                out.append(f"could not verify \"{check.claimed_text}\"")
        if self.failed_searches:
            out.append(f"search failed for: {', '.join(self.failed_searches)}")
        if not self.keyword_matches:
            out.append("no matching code found")
        return out


class VerificationEvidence(BaseModel):
    entries: List[EntryEvidence] = Field(default_factory=list)
    project_structure: Optional[str] = None
    key_files: List[KeyFileContent] = Field(default_factory=list)

    def low_confidence_entries(self) -> List[EntryEvidence]:
        return [e for e in self.entries if e.confidence == Confidence.LOW]

    def to_prompt_json(self) -> str:
        return self.model_dump_json(indent=2)
