#!/usr/bin/env python3
"""Shared retry wrapper with exponential backoff."""

from __future__ import annotations

import logging
import time
from typing import Callable, Any, Iterable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def with_retries(
    fn: Callable[[], Any],
    *,
    max_attempts: int,
    backoff_s: float,
    max_backoff_s: Optional[float] = None,
    retry_on: Optional[Iterable[str]] = None,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    no_retry_on: Iterable[str] = (),
    classify_exc: Callable[[Exception], str],
    on_exhausted: Optional[Callable[[Exception], Exception]] = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> Any:
    """Call ``fn`` until it succeeds or attempts run out.

    ``retry_on`` limits retries to the listed codes (None means every code);
    ``no_retry_on`` codes are raised immediately, as is any exception that is not
    an instance of ``retry_exceptions``. When all attempts fail with
    retryable errors, ``on_exhausted`` may wrap the last error before it is raised.
    There is no elapsed-time cap.
    """
    retry_codes = set(retry_on) if retry_on is not None else None
    fatal_codes = set(no_retry_on)
    attempt = 0
    while True:
        try:
            return fn()
        except retry_exceptions as e:
            code = classify_exc(e)
            retryable = code not in fatal_codes and (retry_codes is None or code in retry_codes)
            if not retryable:
                raise
            attempt += 1
            if attempt >= max_attempts:
                if on_exhausted is not None:
                    raise on_exhausted(e) from e
                raise
            delay = backoff_s * (2 ** (attempt - 1))
            if max_backoff_s is not None:
                delay = min(delay, max_backoff_s)
            logger.debug(f"Attempt {attempt}/{max_attempts} failed ({code}); retrying in {delay:.1f}s")
            sleep(delay)
