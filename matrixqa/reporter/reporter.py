"""Publishes a finished RunReport in the configured formats."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from matrixqa.ai.client import AIClient
from matrixqa.models.config import RunConfig
from matrixqa.models.report import RunReport, RunReportEntry, RunStatus

from .html_report import generate_html_report
from .json_report import generate_json_report
from .regression_detector import detect_regressions

logger = logging.getLogger(__name__)

_WRITERS = {
    "html": generate_html_report,
    "json": generate_json_report,
}

# failing entries forwarded to the AI summary
_MAX_SUMMARY_FAILURES = 20


class Reporter:
    def __init__(self, config: RunConfig, ai_client: AIClient | None = None):
        self.config = config
        self.ai_client = ai_client

    def generate_reports(
        self,
        report: RunReport,
        previous: RunReport | None = None,
        output_dir: Path | None = None,
    ) -> dict[str, str]:
        """Write each configured format; returns format -> path."""
        out_dir = Path(output_dir or self.config.report_output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        if not report.summary:
            report.summary = self.summarize(report)

        regressions = detect_regressions(previous, report) if previous else []
        if previous:
            logger.debug("Compared against %s: %d regression(s)", previous.run_id, len(regressions))

        generated: dict[str, str] = {}
        for fmt in self.config.report_formats:
            path = out_dir / f"report_{report.run_id}.{fmt}"
            _WRITERS[fmt](report, regressions, path)
            generated[fmt] = str(path)
            logger.info("%s report written to %s", fmt.upper(), path)
        return generated

    def summarize(self, report: RunReport) -> str:
        if self.ai_client is None:
            return basic_summary(report)
        failures = [e for e in report.entries if e.status == RunStatus.FAILED]
        payload = {
            "run_id": report.run_id,
            "duration_seconds": report.duration_seconds,
            **report.totals(),
            "failures": [_failure_digest(e) for e in failures[:_MAX_SUMMARY_FAILURES]],
        }
        try:
            return self.ai_client.summarize_run(payload)
        except Exception as e:
            logger.warning("AI summary unavailable (%s); using basic summary", e)
            return basic_summary(report)


def basic_summary(report: RunReport) -> str:
    text = (
        f"{report.total} runs in {report.duration_seconds:.1f}s: "
        f"{report.passed} passed, {report.failed} failed, "
        f"{report.new_baselines} new baseline candidate(s), {report.flaky} flaky."
    )
    failed = [e for e in report.entries if e.status == RunStatus.FAILED]
    if failed:
        shown = ", ".join(f"{e.test_case_id} on {e.device_profile.key}" for e in failed[:5])
        more = f" and {len(failed) - 5} more" if len(failed) > 5 else ""
        text += f" Failing: {shown}{more}."
    return text


def _failure_digest(entry: RunReportEntry) -> dict:
    return {
        "test_case": entry.test_case_id,
        "screen": entry.screen_id,
        "device": entry.device_profile.label,
        "reason": entry.failure_reason,
        "attempts": entry.attempts,
    }


def load_previous_report(report_dir: Path, current_run_id: str) -> RunReport | None:
    """Most recently written JSON report in ``report_dir`` other than the current run."""
    if not report_dir.is_dir():
        return None
    candidates = sorted(report_dir.glob("report_run_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
    for path in candidates:
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.debug("Skipping unreadable report %s: %s", path, e)
            continue
        if data.get("run_id") == current_run_id:
            continue
        try:
            return RunReport.model_validate(data)
        except ValueError as e:
            logger.debug("Skipping incompatible report %s: %s", path, e)
    return None
