"""Regression detection: compares run reports to find new failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from matrixqa.models.report import RunReport, RunStatus

logger = logging.getLogger(__name__)


@dataclass
class Regression:
    test_case_id: str
    screen_id: str
    profile: str
    previous_status: str
    current_status: str
    failure_reason: str | None = None


def detect_regressions(previous: RunReport, current: RunReport) -> list[Regression]:
    """Find (test case, device profile) pairs that went from passing to failed.

    New-baseline outcomes count as passing on the previous side.
    """
    prev_by_key = {
        (e.test_case_id, e.device_profile): e for e in previous.entries
    }

    regressions = []
    for entry in current.entries:
        prev = prev_by_key.get((entry.test_case_id, entry.device_profile))
        if prev is None:
            continue
        if prev.status in (RunStatus.PASSED, RunStatus.NEW_BASELINE) and entry.status == RunStatus.FAILED:
            regressions.append(Regression(
                test_case_id=entry.test_case_id,
                screen_id=entry.screen_id,
                profile=entry.device_profile.label,
                previous_status=prev.status.value,
                current_status=entry.status.value,
                failure_reason=entry.failure_reason,
            ))

    if regressions:
        logger.warning("Detected %d regressions", len(regressions))
    return regressions
