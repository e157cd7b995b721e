"""HTML report generator: a self-contained page with one card per (test case, device) run."""

from __future__ import annotations

import base64
import html
import logging
from pathlib import Path

from matrixqa.models.report import RunReport, RunReportEntry

from .artifacts import CAPTURED_NAME, DIFF_NAME
from .regression_detector import Regression

logger = logging.getLogger(__name__)

_STATUS_COLORS = {"passed": "#22c55e", "failed": "#ef4444", "new_baseline": "#6366f1"}


def _embed_image(path: Path) -> str:
    """Read an image file and return a base64 data URI, or empty string on failure."""
    try:
        if not path.exists() or path.stat().st_size == 0:
            return ""
        data = base64.b64encode(path.read_bytes()).decode()
        return f"data:image/png;base64,{data}"
    except OSError as e:
        logger.debug("Could not embed %s: %s", path, e)
        return ""


def _build_entry_card(e: RunReportEntry) -> str:
    status = e.status.value
    border_color = _STATUS_COLORS.get(status, "#94a3b8")
    diff = e.diff_result
    ratio = f"{diff.diff_ratio:.2%}" if diff and diff.diff_ratio is not None else "n/a"

    card = f'''
    <div class="card" id="run-{html.escape(e.test_case_id)}-{html.escape(e.device_profile.key)}">
      <div class="card-header" style="border-left: 4px solid {border_color};">
        <span class="badge {status}">{status.replace("_", " ").upper()}</span>
        {'<span class="badge flaky">FLAKY</span>' if e.flaky else ''}
        <strong>{html.escape(e.test_case_id)}</strong>
        <span class="meta">{html.escape(e.screen_id)} &middot; {html.escape(e.device_profile.label)}
          &middot; diff {ratio} &middot; {e.attempts} attempt(s) &middot; {e.duration_seconds:.1f}s</span>
      </div>
      <div class="card-body">
    '''

    if e.failure_reason:
        card += f'<div class="failure-banner"><strong>Failure:</strong> {html.escape(e.failure_reason)}</div>'
    elif e.decision and e.decision.reasons:
        card += '<div class="warn-banner">' + "<br>".join(html.escape(r) for r in e.decision.reasons) + '</div>'

    if e.metrics_summaries:
        rows = ""
        for m in e.metrics_summaries.values():
            delta = f"{m.regression_delta_percent:+.1f}%" if m.regression_delta_percent is not None else "&mdash;"
            rows += (f"<tr><td>{html.escape(m.metric_name)}</td><td>{m.count}</td>"
                     f"<td>{m.mean:.2f}</td><td>{m.p50:.2f}</td><td>{m.p95:.2f}</td>"
                     f"<td>{m.max:.2f}</td><td>{html.escape(m.unit)}</td><td>{delta}</td></tr>")
        card += ('<h4>Performance</h4><table><tr><th>Metric</th><th>n</th><th>Mean</th><th>p50</th>'
                 f'<th>p95</th><th>Max</th><th>Unit</th><th>Delta</th></tr>{rows}</table>')

    if e.retry_history:
        items = "".join(
            f"<li>Attempt {r.attempt}: {html.escape(r.error_kind)} ({r.classification})"
            f" {html.escape(r.message)}</li>"
            for r in e.retry_history
        )
        card += f'<h4>Retry history</h4><ul>{items}</ul>'

    if e.artifact_dir:
        images = ""
        for name in (CAPTURED_NAME, DIFF_NAME):
            uri = _embed_image(Path(e.artifact_dir) / name)
            if uri:
                images += (f'<div class="shot"><img src="{uri}" alt="{name}" loading="lazy"/>'
                           f'<div class="label">{name}</div></div>')
        if images:
            card += f'<div class="shots">{images}</div>'

    card += '</div></div>'
    return card


def generate_html_report(
    report: RunReport,
    regressions: list[Regression],
    output_path: Path,
) -> None:
    """Generate a self-contained HTML report."""
    summary_section = ""
    if report.summary:
        summary_section = ('<div class="summary-box"><h2>Summary</h2>'
                           f'{html.escape(report.summary).replace(chr(10), "<br>")}</div>')

    reg_section = ""
    if regressions:
        items = ""
        for r in regressions:
            reason = f" &mdash; {html.escape(r.failure_reason)}" if r.failure_reason else ""
            items += (f"<li><strong>{html.escape(r.test_case_id)}</strong> on {html.escape(r.profile)}: "
                      f"{r.previous_status} &rarr; {r.current_status}{reason}</li>")
        reg_section = f'<div class="regressions"><h2>Regressions ({len(regressions)})</h2><ul>{items}</ul></div>'

    cards = "".join(_build_entry_card(e) for e in report.entries)
    totals = report.totals()
    stats = "".join(
        f'<div class="stat {name}"><div class="value">{value}</div><div class="label">{name.replace("_", " ")}</div></div>'
        for name, value in totals.items()
    )

    page = f'''<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>Gate Report &mdash; {html.escape(report.run_id)}</title>
<style>
  body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f8fafc; color: #1e293b; padding: 1.5rem; }}
  .stats {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(120px, 1fr)); gap: 0.8rem; margin: 1rem 0; }}
  .stat {{ background: white; border-radius: 8px; padding: 1rem; text-align: center; box-shadow: 0 1px 3px rgba(0,0,0,0.08); }}
  .stat .value {{ font-size: 1.6rem; font-weight: 700; }}
  .stat.passed .value {{ color: #22c55e; }}
  .stat.failed .value {{ color: #ef4444; }}
  .badge {{ display: inline-block; padding: 0.1rem 0.5rem; border-radius: 9999px; font-size: 0.7rem; font-weight: 600; }}
  .badge.passed {{ background: #dcfce7; color: #166534; }}
  .badge.failed {{ background: #fecaca; color: #991b1b; }}
  .badge.new_baseline {{ background: #e0e7ff; color: #3730a3; }}
  .badge.flaky {{ background: #fef9c3; color: #854d0e; }}
  .card {{ background: white; border-radius: 8px; margin-bottom: 0.6rem; box-shadow: 0 1px 3px rgba(0,0,0,0.08); }}
  .card-header {{ padding: 0.7rem 1rem; display: flex; gap: 0.5rem; align-items: center; flex-wrap: wrap; }}
  .card-body {{ padding: 0 1rem 1rem; font-size: 0.9rem; }}
  .meta {{ color: #64748b; font-size: 0.8rem; }}
  .failure-banner {{ background: #fef2f2; border-left: 3px solid #ef4444; padding: 0.5rem; margin: 0.5rem 0; }}
  .warn-banner {{ background: #fefce8; border-left: 3px solid #eab308; padding: 0.5rem; margin: 0.5rem 0; }}
  .summary-box, .regressions {{ background: white; border-radius: 8px; padding: 1rem; margin-bottom: 1rem; }}
  .regressions {{ border-left: 4px solid #ef4444; }}
  table {{ border-collapse: collapse; margin: 0.4rem 0; }}
  td, th {{ border: 1px solid #e2e8f0; padding: 0.2rem 0.5rem; text-align: right; }}
  .shots {{ display: flex; gap: 1rem; flex-wrap: wrap; }}
  .shot img {{ max-width: 320px; border: 1px solid #e2e8f0; }}
  .shot .label {{ font-size: 0.75rem; color: #64748b; }}
</style>
</head>
<body>
  <h1>Gate Report</h1>
  <div class="meta">{html.escape(report.run_id)} &middot; {html.escape(report.started_at)} &rarr; {html.escape(report.completed_at)}
    &middot; {report.duration_seconds:.1f}s &middot; {"PASS" if report.overall_pass else "FAIL"}</div>
  <div class="stats">{stats}</div>
  {summary_section}
  {reg_section}
  {cards}
</body>
</html>'''

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(page)
