"""Retry helper for transient registry failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from layerforge.core.cancellation import CancellationToken
from layerforge.core.errors import BuildError
from layerforge.models.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Call *fn*, retrying retryable ``BuildError``s with exponential backoff.

    Non-retryable errors propagate immediately. Waiting between attempts is
    interrupted by cancellation.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except BuildError as exc:
            if not exc.retryable or attempt >= policy.attempts:
                raise
            attempt += 1
            delay = policy.delay(attempt)
            logger.warning(
                "%s failed (%s); retry %d/%d in %.2fs",
                description,
                exc,
                attempt,
                policy.attempts,
                delay,
            )
            if cancel_token is not None:
                if cancel_token.wait(delay):
                    cancel_token.raise_if_cancelled()
            else:
                time.sleep(delay)
