#!/usr/bin/env python3
"""Minimal stage timers and counters.

Everything goes to the ``keryx.metrics`` logger at DEBUG; nothing is written
to disk because a release run must not leave files outside the repository.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict

logger = logging.getLogger("keryx.metrics")


def incr(name: str, value: Any = 1, **kw) -> None:
    rec: Dict[str, Any] = {"metric": name, "value": value}
    for k, v in kw.items():
        if isinstance(v, str) and len(v) > 200:
            rec[k] = v[:200] + "…"
        else:
            rec[k] = v
    logger.debug(" ".join(f"{k}={v}" for k, v in rec.items()))


class Timer:
    def __init__(self, name: str, **kw):
        self.name = name
        self.kw = kw
        self._t0 = 0.0
        self.elapsed = 0.0

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, *exc):
        self.elapsed = time.perf_counter() - self._t0
        incr(name=f"{self.name}.latency_s", value=round(self.elapsed, 3), **self.kw)
