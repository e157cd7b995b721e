"""Run report structures produced by the orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from matrixqa.models.device import DeviceProfile
from matrixqa.models.diff import DiffResult
from matrixqa.models.gate import CheckResult, QualityGateDecision
from matrixqa.models.metrics import MetricsSummary


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    FLAKY_RETRY = "flaky_retry"
    NEW_BASELINE = "new_baseline"
    ARCHIVED = "archived"


class RetryAttempt(BaseModel):
    attempt: int  # 1-based attempt that failed
    error_kind: str
    message: str = ""
    classification: str  # clear_failure, indeterminate
    backoff_seconds: float = 0.0  # delay before the next attempt, 0 if none followed


class RunReportEntry(BaseModel):
    run_id: str
    test_case_id: str
    screen_id: str
    device_profile: DeviceProfile
    status: RunStatus  # passed, failed, new_baseline
    diff_result: Optional[DiffResult] = None
    metrics_summaries: dict[str, MetricsSummary] = Field(default_factory=dict)
    external_findings: dict[str, CheckResult] = Field(default_factory=dict)
    decision: Optional[QualityGateDecision] = None
    retry_history: list[RetryAttempt] = Field(default_factory=list)
    attempts: int = 1
    flaky: bool = False  # passed only after an indeterminate failure
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    artifact_dir: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def failure_reason(self) -> Optional[str]:
        if self.error_message:
            return self.error_message
        if self.decision and not self.decision.overall_pass:
            return "; ".join(self.decision.reasons)
        return None


class RunReport(BaseModel):
    run_id: str
    started_at: str
    completed_at: str = ""
    duration_seconds: float = 0.0
    entries: list[RunReportEntry] = Field(default_factory=list)
    summary: str = ""

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def passed(self) -> int:
        return sum(1 for e in self.entries if e.status == RunStatus.PASSED)

    @property
    def failed(self) -> int:
        return sum(1 for e in self.entries if e.status == RunStatus.FAILED)

    @property
    def new_baselines(self) -> int:
        return sum(1 for e in self.entries if e.status == RunStatus.NEW_BASELINE)

    @property
    def flaky(self) -> int:
        return sum(1 for e in self.entries if e.flaky)

    @property
    def overall_pass(self) -> bool:
        return self.failed == 0

    def totals(self) -> dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "new_baselines": self.new_baselines,
            "flaky": self.flaky,
        }
