#!/usr/bin/env python3
"""Opportunistic check for a newer keryx release on PyPI.

The lookup runs on a daemon thread while the command works; the result is
collected with a non-blocking read once the command has finished, so the
notice never interleaves with normal output and a slow network never delays
the exit.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional

import requests

from keryx import __version__
from keryx.configs.config import Config
from keryx.utils.semver import SemVer, parse_version

logger = logging.getLogger(__name__)


def fetch_latest_version(session=None, url: str = Config.UPDATE_CHECK_URL, timeout_s: Optional[int] = None) -> Optional[SemVer]:
    http = session or requests
    try:
        response = http.get(url, timeout=timeout_s or Config.http_timeout_s())
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.debug(f"Update check failed: {e}")
        return None
    info = data.get("info") if isinstance(data, dict) else None
    if not isinstance(info, dict):
        logger.debug("Update check failed: unexpected response shape")
        return None
    return parse_version(str(info.get("version", "")))


class UpdateChecker:
    """Background lookup of the latest published version."""

    def __init__(self, current_version: str = __version__, fetch=fetch_latest_version) -> None:
        self.current = parse_version(current_version)
        self._fetch = fetch
        self._results: "queue.Queue[Optional[SemVer]]" = queue.Queue(maxsize=1)
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "UpdateChecker":
        self._thread = threading.Thread(target=self._run, name="keryx-update-check", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            self._results.put_nowait(self._fetch())
        except queue.Full:
            pass

    def poll(self) -> Optional[SemVer]:
        """Newer version if the lookup already finished and found one."""
        try:
            latest = self._results.get_nowait()
        except queue.Empty:
            return None
        if latest is None or self.current is None or not latest > self.current:
            return None
        return latest

    def notice(self) -> Optional[str]:
        latest = self.poll()
        if latest is None:
            return None
        return (
            f"A new version of keryx is available: {self.current} -> {latest}\n"
            "Update with: pip install --upgrade keryx"
        )
