"""Tests for report generation, regression detection and artifacts."""

import json
import os
import time
from unittest.mock import MagicMock

import pytest

from matrixqa.models.config import RunConfig
from matrixqa.models.diff import DiffOutcome, DiffResult
from matrixqa.models.gate import QualityGateDecision
from matrixqa.models.report import RetryAttempt, RunReport, RunReportEntry, RunStatus
from matrixqa.reporter.artifacts import ArtifactStore
from matrixqa.reporter.html_report import generate_html_report
from matrixqa.reporter.json_report import generate_json_report
from matrixqa.reporter.regression_detector import detect_regressions
from matrixqa.reporter.reporter import Reporter, load_previous_report


def _entry(test_case_id, profile, status, **kwargs) -> RunReportEntry:
    return RunReportEntry(
        run_id=kwargs.pop("run_id", "run_cur"),
        test_case_id=test_case_id,
        screen_id=test_case_id.removeprefix("tc-"),
        device_profile=profile,
        status=status,
        **kwargs,
    )


def _report(run_id, entries) -> RunReport:
    return RunReport(run_id=run_id, started_at="2026-10-19T10:00:00Z",
                     completed_at="2026-10-19T10:01:00Z", duration_seconds=60.0, entries=entries)


@pytest.fixture
def failing_entry(pixel):
    return _entry(
        "tc-login", pixel, RunStatus.FAILED,
        diff_result=DiffResult(outcome=DiffOutcome.BREACH, pixel_diff_count=500, total_pixels=10_000,
                               diff_ratio=0.05, threshold=0.01, error_kind="threshold_breach"),
        decision=QualityGateDecision(overall_pass=False,
                                     reasons=["visual: diff ratio 5.0000% exceeds threshold 1.0000%"]),
        error_kind="threshold_breach",
    )


@pytest.fixture
def current_report(failing_entry, pixel, iphone):
    flaky = _entry(
        "tc-home", iphone, RunStatus.PASSED, attempts=2, flaky=True,
        retry_history=[RetryAttempt(attempt=1, error_kind="infra_transient", message="adb offline",
                                    classification="indeterminate", backoff_seconds=1.0)],
    )
    return _report("run_cur", [failing_entry, flaky, _entry("tc-new", pixel, RunStatus.NEW_BASELINE)])


class TestRunReport:
    def test_totals(self, current_report):
        assert current_report.totals() == {
            "total": 3, "passed": 1, "failed": 1, "new_baselines": 1, "flaky": 1,
        }
        assert not current_report.overall_pass

    def test_failure_reason_prefers_error_message(self, pixel):
        entry = _entry("tc-login", pixel, RunStatus.FAILED, error_message="driver exploded")
        assert entry.failure_reason == "driver exploded"


class TestDetectRegressions:
    def test_passed_to_failed(self, pixel, current_report):
        previous = _report("run_prev", [_entry("tc-login", pixel, RunStatus.PASSED, run_id="run_prev")])
        regressions = detect_regressions(previous, current_report)
        assert len(regressions) == 1
        assert regressions[0].test_case_id == "tc-login"
        assert regressions[0].previous_status == "passed"
        assert "visual" in regressions[0].failure_reason

    def test_new_baseline_counts_as_passing(self, pixel, current_report):
        previous = _report("run_prev", [_entry("tc-login", pixel, RunStatus.NEW_BASELINE)])
        assert len(detect_regressions(previous, current_report)) == 1

    def test_keyed_by_profile(self, iphone, current_report):
        previous = _report("run_prev", [_entry("tc-login", iphone, RunStatus.PASSED)])
        assert detect_regressions(previous, current_report) == []

    def test_still_failing_is_not_a_regression(self, pixel, current_report):
        previous = _report("run_prev", [_entry("tc-login", pixel, RunStatus.FAILED)])
        assert detect_regressions(previous, current_report) == []


class TestJsonReport:
    def test_structure(self, tmp_path, current_report):
        path = tmp_path / "report.json"
        generate_json_report(current_report, [], path)
        data = json.loads(path.read_text())
        assert data["run_id"] == "run_cur"
        assert data["overall_pass"] is False
        assert data["totals"]["failed"] == 1
        assert data["entries"][0]["status"] == "failed"
        assert data["entries"][0]["diff_result"]["outcome"] == "breach"
        assert data["entries"][1]["retry_history"][0]["classification"] == "indeterminate"
        assert data["regressions"] == []

    def test_report_reloads(self, tmp_path, current_report):
        path = tmp_path / "report.json"
        generate_json_report(current_report, [], path)
        assert RunReport.model_validate(json.loads(path.read_text())) == current_report


class TestHtmlReport:
    def test_contains_entries_and_regressions(self, tmp_path, pixel, current_report):
        previous = _report("run_prev", [_entry("tc-login", pixel, RunStatus.PASSED)])
        path = tmp_path / "report.html"
        current_report.summary = "One visual breach <b>login</b>"
        generate_html_report(current_report, detect_regressions(previous, current_report), path)
        page = path.read_text()
        assert "tc-login" in page and "tc-home" in page
        assert "Regressions (1)" in page
        assert "FLAKY" in page
        assert "adb offline" in page
        assert "&lt;b&gt;login&lt;/b&gt;" in page

    def test_embeds_artifact_images(self, tmp_path, pixel, red_patch):
        store = ArtifactStore(tmp_path / "artifacts")
        entry = _entry("tc-login", pixel, RunStatus.PASSED)
        entry_dir = store.write_entry(entry, captured=red_patch)
        entry = entry.model_copy(update={"artifact_dir": str(entry_dir)})
        path = tmp_path / "report.html"
        generate_html_report(_report("run_cur", [entry]), [], path)
        assert "data:image/png;base64," in path.read_text()


class TestReporter:
    def test_generates_configured_formats(self, tmp_path, current_report):
        reporter = Reporter(RunConfig(report_formats=["json"]))
        generated = reporter.generate_reports(current_report, output_dir=tmp_path)
        assert list(generated) == ["json"]
        assert (tmp_path / "report_run_cur.json").exists()
        assert not (tmp_path / "report_run_cur.html").exists()

    def test_basic_summary_without_ai(self, tmp_path, current_report):
        Reporter(RunConfig()).generate_reports(current_report, output_dir=tmp_path)
        assert "1 passed, 1 failed" in current_report.summary
        assert "Failing: tc-login on" in current_report.summary

    def test_existing_summary_kept(self, tmp_path, current_report):
        current_report.summary = "reviewed by hand"
        Reporter(RunConfig()).generate_reports(current_report, output_dir=tmp_path)
        assert current_report.summary == "reviewed by hand"

    def test_ai_summary(self, tmp_path, current_report):
        ai_client = MagicMock()
        ai_client.summarize_run.return_value = "Login breached on Pixel 8."
        Reporter(RunConfig(), ai_client).generate_reports(current_report, output_dir=tmp_path)
        assert current_report.summary == "Login breached on Pixel 8."
        payload = ai_client.summarize_run.call_args.args[0]
        assert payload["failed"] == 1
        assert [f["test_case"] for f in payload["failures"]] == ["tc-login"]

    def test_ai_failure_falls_back(self, tmp_path, current_report):
        ai_client = MagicMock()
        ai_client.summarize_run.side_effect = RuntimeError("API down")
        Reporter(RunConfig(), ai_client).generate_reports(current_report, output_dir=tmp_path)
        assert current_report.summary.startswith("3 runs")


class TestLoadPreviousReport:
    def test_skips_current_and_picks_newest(self, tmp_path, pixel, current_report):
        old = _report("run_old", [_entry("tc-login", pixel, RunStatus.FAILED)])
        newer = _report("run_new", [_entry("tc-login", pixel, RunStatus.PASSED)])
        generate_json_report(old, [], tmp_path / "report_run_old.json")
        generate_json_report(newer, [], tmp_path / "report_run_new.json")
        generate_json_report(current_report, [], tmp_path / "report_run_cur.json")
        now = time.time()
        os.utime(tmp_path / "report_run_old.json", (now - 20, now - 20))
        os.utime(tmp_path / "report_run_new.json", (now - 10, now - 10))

        previous = load_previous_report(tmp_path, "run_cur")
        assert previous.run_id == "run_new"

    def test_missing_dir(self, tmp_path):
        assert load_previous_report(tmp_path / "nope", "run_cur") is None

    def test_corrupt_report_is_skipped(self, tmp_path):
        (tmp_path / "report_run_bad.json").write_text("{")
        assert load_previous_report(tmp_path, "run_cur") is None
