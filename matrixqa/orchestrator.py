"""Orchestrator: schedules test cases across the device matrix and assembles the run report."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ValidationError

from matrixqa.ai.client import AIClient
from matrixqa.baseline.store import BaselineStore
from matrixqa.checks.registry import CheckRegistry
from matrixqa.diff.engine import compare_with_mask, missing_baseline_result
from matrixqa.diff.visualize import render_diff
from matrixqa.drivers.base import NullProbe, PerformanceProbe, UIDriver
from matrixqa.errors import ConfigInvalid, InfraTransient
from matrixqa.gate.quality_gate import evaluate
from matrixqa.metrics.collector import summarize
from matrixqa.metrics.history import MetricsHistory
from matrixqa.models.baseline import MissingBaseline
from matrixqa.models.config import GatePolicy, RetryConfig, RunConfig, ToleranceConfig
from matrixqa.models.device import DeviceProfile, TestCase, expand_matrix
from matrixqa.models.diff import DiffOutcome, DiffResult
from matrixqa.models.gate import CheckResult, QualityGateDecision
from matrixqa.models.metrics import MetricsSummary
from matrixqa.models.report import RunReport, RunReportEntry, RunStatus
from matrixqa.models.screenshot import Screenshot
from matrixqa.reporter.artifacts import ArtifactStore
from matrixqa.reporter.reporter import Reporter, load_previous_report
from matrixqa.retry.controller import FailureContext, RetryController
from matrixqa.scheduling.slots import SlotPool
from matrixqa.scheduling.test_run import TestRun

logger = logging.getLogger(__name__)


@dataclass
class _Submission:
    """Effective settings for one submit() call."""

    tolerance: ToleranceConfig
    retry: RetryConfig
    gate: GatePolicy
    executor: ThreadPoolExecutor
    total: int


@dataclass
class _AttemptOutcome:
    screenshot: Screenshot
    diff: DiffResult
    diff_image: Optional[Screenshot]
    summaries: dict[str, MetricsSummary]
    findings: dict[str, CheckResult]
    decision: QualityGateDecision


class Orchestrator:
    """Owns the slot pool and the handles to stores and collaborators for a set of runs."""

    def __init__(
        self,
        config: RunConfig,
        driver: UIDriver,
        probe: PerformanceProbe | None = None,
        baseline_store: BaselineStore | None = None,
        checks: CheckRegistry | None = None,
        metrics_history: MetricsHistory | None = None,
        artifact_store: ArtifactStore | None = None,
    ):
        self.config = config
        self.driver = driver
        self.probe = probe or NullProbe()
        self.baseline_store = baseline_store if baseline_store is not None else BaselineStore()
        self.checks = checks if checks is not None else CheckRegistry()
        self.metrics_history = metrics_history if metrics_history is not None else MetricsHistory()
        self.artifact_store = artifact_store
        self.slot_pool: SlotPool | None = None
        self.last_runs: list[TestRun] = []

        self.ai_client: AIClient | None = None
        if config.ai_summary:
            try:
                self.ai_client = AIClient(model=config.ai_model)
            except EnvironmentError as e:
                logger.warning("AI client unavailable: %s. Using basic summaries.", e)

    @classmethod
    def from_config(
        cls,
        config: RunConfig,
        driver: UIDriver,
        probe: PerformanceProbe | None = None,
        checks: CheckRegistry | None = None,
    ) -> "Orchestrator":
        """Build an orchestrator with the disk-backed stores named in ``config``."""
        return cls(
            config,
            driver,
            probe=probe,
            baseline_store=BaselineStore(Path(config.baselines_dir)),
            checks=checks,
            metrics_history=MetricsHistory(Path(config.metrics_history_path)),
            artifact_store=ArtifactStore(config.artifacts_dir) if config.artifacts_dir else None,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        test_selection: Iterable[TestCase | dict],
        device_matrix: Iterable[DeviceProfile | dict],
        tolerance: ToleranceConfig | None = None,
        retry_config: RetryConfig | None = None,
        gate_policy: GatePolicy | None = None,
    ) -> RunReport:
        """Run every (test case, device profile) pair and return the report."""
        return asyncio.run(self.submit_async(
            test_selection, device_matrix, tolerance, retry_config, gate_policy,
        ))

    async def submit_async(
        self,
        test_selection: Iterable[TestCase | dict],
        device_matrix: Iterable[DeviceProfile | dict],
        tolerance: ToleranceConfig | None = None,
        retry_config: RetryConfig | None = None,
        gate_policy: GatePolicy | None = None,
    ) -> RunReport:
        tests, profiles, tolerance, retry_config, gate_policy = self._validate(
            test_selection, device_matrix,
            tolerance or self.config.tolerance,
            retry_config or self.config.retry,
            gate_policy or self.config.gate,
        )

        run_id = f"run_{uuid.uuid4().hex[:8]}"
        started_at = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        start = time.time()
        pairs = expand_matrix(tests, profiles)
        runs = [TestRun(run_id, i, tc, profile) for i, (tc, profile) in enumerate(pairs)]
        logger.info("=== Run %s: %d test case(s) x %d device profile(s) = %d runs ===",
                    run_id, len(tests), len(profiles), len(runs))

        self.slot_pool = SlotPool(profiles, self.config.slots_per_profile)
        executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="matrixqa-diff",
        )
        submission = _Submission(
            tolerance=tolerance, retry=retry_config, gate=gate_policy,
            executor=executor, total=len(runs),
        )
        try:
            # gather keeps input order, so entries follow submission order
            entries = list(await asyncio.gather(*(self._execute(run, submission) for run in runs)))
        finally:
            executor.shutdown(wait=True)

        report = RunReport(
            run_id=run_id,
            started_at=started_at,
            completed_at=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            duration_seconds=round(time.time() - start, 2),
            entries=entries,
        )
        if self.artifact_store is not None:
            self.artifact_store.write_run_report(report)
        for run in runs:
            run.transition(RunStatus.ARCHIVED)
        self.last_runs = runs

        logger.info("=== Run %s complete: %d passed, %d failed, %d new baseline(s), %d flaky (%.1fs) ===",
                    run_id, report.passed, report.failed, report.new_baselines,
                    report.flaky, report.duration_seconds)
        return report

    def publish_reports(self, report: RunReport) -> dict[str, str]:
        """Write the configured JSON/HTML reports, comparing against the previous run."""
        output_dir = Path(self.config.report_output_dir)
        previous = load_previous_report(output_dir, report.run_id)
        reporter = Reporter(self.config, self.ai_client)
        return reporter.generate_reports(report, previous=previous, output_dir=output_dir)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(
        self,
        test_selection: Iterable[Any],
        device_matrix: Iterable[Any],
        tolerance: Any,
        retry_config: Any,
        gate_policy: Any,
    ) -> tuple[list[TestCase], list[DeviceProfile], ToleranceConfig, RetryConfig, GatePolicy]:
        """Reject the whole batch on any problem; nothing is scheduled before this passes."""
        problems: list[str] = []
        tests = _coerce_all(TestCase, list(test_selection), "test_selection", problems)
        profiles = _coerce_all(DeviceProfile, list(device_matrix), "device_matrix", problems)
        tolerance = _coerce_one(ToleranceConfig, tolerance, "tolerance", problems)
        retry_config = _coerce_one(RetryConfig, retry_config, "retry", problems)
        gate_policy = _coerce_one(GatePolicy, gate_policy, "gate", problems)

        if not tests and not any(p.startswith("test_selection") for p in problems):
            problems.append("test_selection: at least one test case is required")
        if not profiles and not any(p.startswith("device_matrix") for p in problems):
            problems.append("device_matrix: at least one device profile is required")

        seen_ids: set[str] = set()
        for tc in tests:
            if tc.test_id in seen_ids:
                problems.append(f"test_selection: duplicate test id '{tc.test_id}'")
            seen_ids.add(tc.test_id)
        if len(set(profiles)) != len(profiles):
            problems.append("device_matrix: duplicate device profiles")
        claimed: dict[str, DeviceProfile] = {}
        for profile in profiles:
            owner = claimed.setdefault(profile.key, profile)
            if owner != profile:
                problems.append(
                    f"device_matrix: '{owner.label}' and '{profile.label}' share storage key {profile.key}"
                )

        try:
            self.checks.validate(self.config.checks)
        except ConfigInvalid as e:
            problems.extend(e.problems)

        if problems:
            logger.error("Submission rejected: %s", "; ".join(problems))
            raise ConfigInvalid(problems)
        return tests, profiles, tolerance, retry_config, gate_policy

    # ------------------------------------------------------------------
    # Per-run execution
    # ------------------------------------------------------------------

    async def _execute(self, run: TestRun, submission: _Submission) -> RunReportEntry:
        """Drive one TestRun to a final state. Never raises for per-run failures."""
        tc, profile = run.test_case, run.profile
        controller = RetryController(submission.retry)
        start = time.time()
        attempt = 0

        while True:
            attempt += 1
            run.transition(RunStatus.RUNNING)
            logger.info("Running [%d/%d]: %s on %s (attempt %d)",
                        run.index + 1, submission.total, tc.test_id, profile.label, attempt)
            try:
                outcome = await self._attempt(run, submission)
            except Exception as e:
                failure = FailureContext.from_exception(e)
                if failure.error_kind == "unexpected_error":
                    logger.exception("Unexpected error in %s on %s", tc.test_id, profile.label)
                delay = controller.record_failure(attempt, failure)
                if delay is not None:
                    run.transition(RunStatus.FLAKY_RETRY)
                    await asyncio.sleep(delay)
                    continue
                run.transition(RunStatus.FAILED)
                entry = self._entry(
                    run, controller, start,
                    error_kind=failure.error_kind, error_message=failure.message,
                )
                return await self._write_artifacts(entry)

            status = self._final_status(outcome)
            run.transition(status)
            if status != RunStatus.FAILED and self.config.record_metrics:
                self.metrics_history.record(tc.screen_id, profile, outcome.summaries)

            error_kind = None
            if status == RunStatus.FAILED:
                # gate failures are ClearFailures: finalized without retry
                error_kind = outcome.diff.error_kind if outcome.diff.is_breach else "gate_failure"
            entry = self._entry(run, controller, start, outcome=outcome, error_kind=error_kind)
            logger.info("[%s] %s on %s (%.1fs)", status.value.upper(), tc.test_id,
                        profile.label, entry.duration_seconds)
            return await self._write_artifacts(entry, outcome.screenshot, outcome.diff_image)

    async def _attempt(self, run: TestRun, submission: _Submission) -> _AttemptOutcome:
        cancel = threading.Event()
        async with self.slot_pool.hold(run.profile) as slot:
            work = asyncio.ensure_future(self._run_in_slot(run, submission, cancel))
            try:
                return await asyncio.wait_for(
                    asyncio.shield(work), timeout=self.config.run_timeout_seconds,
                )
            except asyncio.TimeoutError:
                cancel.set()
                logger.warning("%s on %s exceeded %ss; waiting for slot %s to stop",
                               run.test_case.test_id, run.profile.label,
                               self.config.run_timeout_seconds, slot.name)
                # the slot is released only once the driver call has returned
                await asyncio.gather(work, return_exceptions=True)
                raise InfraTransient(
                    f"Run exceeded {self.config.run_timeout_seconds}s on slot {slot.name}"
                ) from None
            except asyncio.CancelledError:
                cancel.set()
                work.cancel()
                raise

    async def _run_in_slot(
        self, run: TestRun, submission: _Submission, cancel: threading.Event,
    ) -> _AttemptOutcome:
        tc, profile = run.test_case, run.profile
        loop = asyncio.get_running_loop()

        screenshot = await asyncio.to_thread(self.driver.capture, tc.screen_id, profile, cancel)
        samples = list(await asyncio.to_thread(self.probe.collect, tc.screen_id, profile))
        if cancel.is_set():
            raise InfraTransient(f"{tc.test_id} on {profile.label} cancelled after capture")

        tolerance = submission.tolerance
        if tc.max_diff_ratio is not None:
            tolerance = tolerance.model_copy(update={"max_diff_ratio": tc.max_diff_ratio})

        baseline = self.baseline_store.get(tc.screen_id, profile, self.config.release_version)
        diff_image = None
        if baseline is MissingBaseline:
            logger.info("No baseline for %s on %s; capture is a new baseline candidate",
                        tc.screen_id, profile.label)
            diff = missing_baseline_result(tolerance)
        else:
            diff, mask = await loop.run_in_executor(
                submission.executor, compare_with_mask, screenshot, baseline, tolerance,
            )
            if self.artifact_store is not None:
                diff_image = await loop.run_in_executor(
                    submission.executor, render_diff, screenshot, baseline.image, diff, tolerance, mask,
                )

        previous = self.metrics_history.previous(tc.screen_id, profile)
        summaries = await loop.run_in_executor(submission.executor, summarize, samples, previous)

        findings = await asyncio.to_thread(
            self.checks.run, self.config.checks, tc.screen_id, profile, screenshot,
        )
        decision = evaluate([diff], summaries, findings, submission.gate)
        return _AttemptOutcome(
            screenshot=screenshot,
            diff=diff,
            diff_image=diff_image,
            summaries=summaries,
            findings=findings,
            decision=decision,
        )

    @staticmethod
    def _final_status(outcome: _AttemptOutcome) -> RunStatus:
        # a malformed capture fails the run whatever the visual policy says
        if outcome.diff.outcome == DiffOutcome.DIMENSION_MISMATCH:
            return RunStatus.FAILED
        if not outcome.decision.overall_pass:
            return RunStatus.FAILED
        if outcome.diff.outcome == DiffOutcome.MISSING_BASELINE:
            return RunStatus.NEW_BASELINE
        return RunStatus.PASSED

    def _entry(
        self,
        run: TestRun,
        controller: RetryController,
        start: float,
        outcome: _AttemptOutcome | None = None,
        error_kind: str | None = None,
        error_message: str | None = None,
    ) -> RunReportEntry:
        artifact_dir = None
        if self.artifact_store is not None:
            artifact_dir = str(self.artifact_store.entry_dir(
                run.run_id, run.test_case.test_id, run.profile,
            ))
        status = run.state
        return RunReportEntry(
            run_id=run.run_id,
            test_case_id=run.test_case.test_id,
            screen_id=run.test_case.screen_id,
            device_profile=run.profile,
            status=status,
            diff_result=outcome.diff if outcome else None,
            metrics_summaries=outcome.summaries if outcome else {},
            external_findings=outcome.findings if outcome else {},
            decision=outcome.decision if outcome else None,
            retry_history=list(controller.history),
            attempts=run.attempts,
            flaky=status != RunStatus.FAILED and run.attempts > 1,
            error_kind=error_kind,
            error_message=error_message,
            artifact_dir=artifact_dir,
            duration_seconds=round(time.time() - start, 2),
        )

    async def _write_artifacts(
        self,
        entry: RunReportEntry,
        captured: Screenshot | None = None,
        diff_image: Screenshot | None = None,
    ) -> RunReportEntry:
        if self.artifact_store is None:
            return entry
        try:
            await asyncio.to_thread(self.artifact_store.write_entry, entry, captured, diff_image)
        except OSError as e:
            logger.error("Failed to write artifacts for %s on %s: %s",
                         entry.test_case_id, entry.device_profile.label, e)
        return entry


def _coerce_one(model: type[BaseModel], value: Any, label: str, problems: list[str]) -> Any:
    try:
        if isinstance(value, model):
            # re-validate: instances built with model_construct skip validation
            return model.model_validate(value.model_dump())
        return model.model_validate(value)
    except ValidationError as e:
        for err in e.errors():
            loc = ".".join(str(p) for p in err["loc"])
            problems.append(f"{label}{'.' + loc if loc else ''}: {err['msg']}")
        return None


def _coerce_all(model: type[BaseModel], values: list[Any], label: str, problems: list[str]) -> list[Any]:
    coerced = []
    for i, value in enumerate(values):
        item = _coerce_one(model, value, f"{label}[{i}]", problems)
        if item is not None:
            coerced.append(item)
    return coerced
