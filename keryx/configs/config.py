import logging
import os
from typing import Dict, Any

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
	"""Read a positive integer from the environment, warning on bad values."""
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	try:
		value = int(raw.strip())
	except ValueError:
		logger.warning(f"Invalid {name} value '{raw}', using default {default}")
		return default
	if value <= 0:
		logger.warning(f"{name} must be a positive integer (got {value}), using default {default}")
		return default
	return value


class Config:
	"""Configuration for keryx."""

	# Changelog
	DEFAULT_CHANGELOG = "CHANGELOG.md"
	CHANGELOG_CANDIDATES = ("CHANGELOG.md", "CHANGES.md", "HISTORY.md")
	BACKUP_SUFFIX = ".bak"

	# LLM subprocesses
	DEFAULT_LLM_TIMEOUT_S = 300
	LLM_MAX_ATTEMPTS = 3
	LLM_BACKOFF_INITIAL_S = 1.0
	LLM_BACKOFF_MAX_S = 30.0

	# Prompt sanitization limits
	PROMPT_MAX_LINES = 50
	PROMPT_MAX_BYTES = 10000
	DIFF_MAX_BYTES = 30000
	PR_BODY_MAX_BYTES = 10 * 1024
	BUMP_PR_BODY_MAX_BYTES = 500

	# GitHub
	GITHUB_API_URL = os.getenv("KERYX_GITHUB_API_URL", "https://api.github.com").rstrip('/')
	DEFAULT_PR_LIMIT = 100
	PR_MAX_PAGES = 50
	PR_PER_PAGE = 100
	DEFAULT_HTTP_TIMEOUT_S = 30

	# Verification
	RG_MAX_FILES = 10
	RG_SAMPLE_LINES = 15
	STUB_SCAN_MAX_FILES = 5
	KEY_FILE_MAX_BYTES = 5000
	STRUCTURE_MAX_LINES = 50

	# Commit helper
	SPLIT_ANALYSIS_THRESHOLD = 4

	# Update check
	UPDATE_CHECK_URL = os.getenv("KERYX_UPDATE_URL", "https://pypi.org/pypi/keryx/json")

	@classmethod
	def llm_timeout_s(cls, provider: str) -> int:
		"""Timeout for one LLM subprocess call.

		Args:
			provider: "claude" or "codex"

		Returns:
			Seconds from KERYX_<PROVIDER>_TIMEOUT, or the default.
		"""
		return _env_int(f"KERYX_{provider.upper()}_TIMEOUT", cls.DEFAULT_LLM_TIMEOUT_S)

	@classmethod
	def pr_limit(cls) -> int:
		return _env_int("KERYX_PR_LIMIT", cls.DEFAULT_PR_LIMIT)

	@classmethod
	def http_timeout_s(cls) -> int:
		return _env_int("KERYX_HTTP_TIMEOUT", cls.DEFAULT_HTTP_TIMEOUT_S)

	@classmethod
	def update_check_enabled(cls) -> bool:
		return os.getenv("KERYX_NO_UPDATE_CHECK", "0") not in ("1", "true", "yes")

	@classmethod
	def get_llm_config(cls) -> Dict[str, Any]:
		"""Get retry settings shared by the LLM adapters."""
		return {
			"max_attempts": cls.LLM_MAX_ATTEMPTS,
			"backoff_s": cls.LLM_BACKOFF_INITIAL_S,
			"max_backoff_s": cls.LLM_BACKOFF_MAX_S,
		}

	@classmethod
	def get_github_config(cls) -> Dict[str, Any]:
		"""Get GitHub configuration for the REST client."""
		return {
			"api_url": cls.GITHUB_API_URL,
			"timeout_s": cls.http_timeout_s(),
			"per_page": cls.PR_PER_PAGE,
			"max_pages": cls.PR_MAX_PAGES,
		}

	@classmethod
	def get_verification_config(cls) -> Dict[str, Any]:
		return {
			"max_files": cls.RG_MAX_FILES,
			"sample_lines": cls.RG_SAMPLE_LINES,
			"stub_max_files": cls.STUB_SCAN_MAX_FILES,
			"key_file_max_bytes": cls.KEY_FILE_MAX_BYTES,
			"structure_max_lines": cls.STRUCTURE_MAX_LINES,
		}
