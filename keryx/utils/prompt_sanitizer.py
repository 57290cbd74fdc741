#!/usr/bin/env python3
"""Scrub untrusted text before it is embedded in an LLM prompt.

Commit messages, PR titles and bodies, and diffs are attacker-controllable.
``sanitize_for_prompt`` removes terminal control sequences, defuses markdown
headers and code fences that could be read as instructions, filters known
prompt-injection phrases, and bounds the size of the result.
"""

from __future__ import annotations

import re
import unicodedata
from typing import List, Tuple

from keryx.configs.config import Config

FILTER_MARKER = "[filtered]"

# (phrase, replacement); matched case-insensitively
INJECTION_PATTERNS: List[Tuple[str, str]] = [
    ("ignore previous instructions", FILTER_MARKER),
    ("ignore all previous", FILTER_MARKER),
    ("disregard previous", FILTER_MARKER),
    ("forget previous", FILTER_MARKER),
    ("system override", FILTER_MARKER),
    ("developer mode", FILTER_MARKER),
    ("jailbreak", FILTER_MARKER),
    ("dan mode", FILTER_MARKER),
    ("reveal prompt", FILTER_MARKER),
    ("show system prompt", FILTER_MARKER),
    ("print instructions", FILTER_MARKER),
    ("output your prompt", FILTER_MARKER),
    ("you are now", "you were"),
    ("act as", "act like"),
    ("pretend to be", "similar to"),
]

_INJECTION_RES = [
    (re.compile(r"[ \t]+".join(re.escape(w) for w in p.split()), re.IGNORECASE), r)
    for p, r in INJECTION_PATTERNS
]
_HEADER_RE = re.compile(r"(?:^|(?<=\r))(#{1,2})[ \t]", re.MULTILINE)
_MAX_FILTER_PASSES = 100


def truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes without splitting a code point."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def remove_control_chars(text: str) -> str:
    # ESC survives here so remove_ansi_escapes can drop the whole sequence
    return "".join(
        ch for ch in text
        if ch in "\n\r\t\x1b" or unicodedata.category(ch) != "Cc"
    )


def remove_ansi_escapes(text: str) -> str:
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch != "\x1b":
            out.append(ch)
            i += 1
            continue
        if i + 1 < n and text[i + 1] == "[":
            # CSI: skip through the first ASCII letter
            j = i + 2
            while j < n and not ("a" <= text[j] <= "z" or "A" <= text[j] <= "Z"):
                j += 1
            i = j + 1
        else:
            i += 2
    return "".join(out)


def neutralize_markdown(text: str) -> str:
    text = text.replace("```", "'''")
    return _HEADER_RE.sub(lambda m: "/" * len(m.group(1)) + " ", text)


def filter_injection_patterns(text: str) -> str:
    """Replace every injection phrase until none remains.

    A single pass is not enough: removing one occurrence can splice two halves
    into a fresh match ("ignore previous ignore previous instructions instructions").
    """
    for _ in range(_MAX_FILTER_PASSES):
        changed = False
        for pattern, replacement in _INJECTION_RES:
            text, count = pattern.subn(replacement, text)
            if count:
                changed = True
        if not changed:
            break
    return text


def normalize_whitespace(text: str) -> str:
    """Collapse space/tab runs to one space and newline runs to at most two.

    ``\\r`` counts as a newline, so CRLF input comes out as plain ``\\n``.
    """
    out: List[str] = []
    prev_space = False
    newline_run = 0
    for ch in text:
        if ch in " \t":
            if not prev_space:
                out.append(" ")
                prev_space = True
            newline_run = 0
        elif ch in "\r\n":
            newline_run += 1
            if newline_run <= 2:
                out.append("\n")
            prev_space = False
        else:
            out.append(ch)
            prev_space = False
            newline_run = 0
    return "".join(out)


def sanitize_for_prompt(text: str) -> str:
    """Return an LLM-safe, size-bounded copy of ``text``.

    Args:
        text: Untrusted input (commit message, PR title or body)

    Returns:
        Sanitized text capped at Config.PROMPT_MAX_LINES lines and
        Config.PROMPT_MAX_BYTES bytes.
    """
    result = remove_control_chars(text)
    result = remove_ansi_escapes(result)
    result = neutralize_markdown(result)
    result = filter_injection_patterns(result)
    result = normalize_whitespace(result)
    lines = result.split("\n")
    if len(lines) > Config.PROMPT_MAX_LINES:
        result = "\n".join(lines[:Config.PROMPT_MAX_LINES])
    return truncate_utf8(result, Config.PROMPT_MAX_BYTES)


def sanitize_diff(text: str, max_bytes: int = Config.DIFF_MAX_BYTES) -> str:
    """Diff variant: no line cap and no header rewriting (``##`` hunks are legitimate)."""
    result = remove_control_chars(text)
    result = remove_ansi_escapes(result)
    result = filter_injection_patterns(result)
    result = normalize_whitespace(result)
    return truncate_utf8(result, max_bytes)
