"""Bounded retry with a fixed delay between attempts."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    delay_seconds: float
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)


@dataclass(frozen=True)
class RetryOutcome:
    succeeded: bool
    attempts: int
    result: Any = None
    last_error: BaseException | None = None


def retry(policy: RetryPolicy, operation: Callable[[], Any], description: str) -> RetryOutcome:
    """Call operation until it returns a truthy value or attempts run out.

    A falsy return or an Exception both count as a failed attempt. The delay
    is only slept between attempts, never after the last one.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            result = operation()
        except Exception as exc:
            last_error = exc
            logger.error(
                "%s failed (attempt %d/%d): %s", description, attempt, policy.attempts, exc,
                exc_info=True, extra={"attempt": attempt},
            )
        else:
            if result:
                return RetryOutcome(succeeded=True, attempts=attempt, result=result)
            logger.info(
                "%s did not complete (attempt %d/%d)", description, attempt, policy.attempts,
                extra={"attempt": attempt},
            )

        if attempt < policy.attempts:
            policy.sleep(policy.delay_seconds)

    return RetryOutcome(succeeded=False, attempts=policy.attempts, last_error=last_error)
