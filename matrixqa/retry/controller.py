"""Retry controller: separates infrastructure noise from real failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from matrixqa.errors import InfraTransient
from matrixqa.models.config import RetryConfig
from matrixqa.models.report import RetryAttempt

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    CLEAR_FAILURE = "clear_failure"  # outcome of the artifact under test, never retried
    INDETERMINATE = "indeterminate"  # infrastructure signal, eligible for retry


# error kinds reported by the driver/orchestrator that point at infrastructure
INDETERMINATE_KINDS = frozenset({"infra_transient", "driver_timeout", "capture_failed", "run_timeout"})


@dataclass
class FailureContext:
    error_kind: str  # threshold_breach, dimension_mismatch, metric_regression, infra_transient, ...
    message: str = ""
    exception: Optional[BaseException] = field(default=None, repr=False)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FailureContext":
        if isinstance(exc, (InfraTransient, TimeoutError)):
            kind = "infra_transient"
        else:
            kind = "unexpected_error"
        return cls(error_kind=kind, message=str(exc) or type(exc).__name__, exception=exc)


def classify(failure: FailureContext) -> Classification:
    if isinstance(failure.exception, (InfraTransient, TimeoutError)):
        return Classification.INDETERMINATE
    if failure.error_kind in INDETERMINATE_KINDS:
        return Classification.INDETERMINATE
    return Classification.CLEAR_FAILURE


def should_retry(attempt: int, classification: Classification, config: RetryConfig) -> bool:
    """``attempt`` is the 1-based number of attempts already made."""
    if classification != Classification.INDETERMINATE:
        return False
    return attempt <= config.max_retries


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after ``attempt`` failed; grows geometrically, capped."""
    delay = config.retry_backoff * config.backoff_multiplier ** max(attempt - 1, 0)
    return min(delay, config.max_backoff_seconds)


class RetryController:
    """Per-run retry bookkeeping around the pure decision functions."""

    def __init__(self, config: RetryConfig):
        self.config = config
        self.history: list[RetryAttempt] = []

    def record_failure(self, attempt: int, failure: FailureContext) -> Optional[float]:
        """Record a failed attempt. Returns the backoff before retrying, or None to finalize."""
        classification = classify(failure)
        retry = should_retry(attempt, classification, self.config)
        delay = backoff_delay(attempt, self.config) if retry else 0.0
        self.history.append(RetryAttempt(
            attempt=attempt,
            error_kind=failure.error_kind,
            message=failure.message,
            classification=classification.value,
            backoff_seconds=delay,
        ))
        if retry:
            logger.info("Attempt %d failed (%s: %s); retrying in %.2fs",
                        attempt, failure.error_kind, failure.message, delay)
            return delay
        if classification == Classification.INDETERMINATE:
            logger.warning("Attempt %d failed (%s); retries exhausted after %d attempt(s)",
                           attempt, failure.error_kind, attempt)
        return None
