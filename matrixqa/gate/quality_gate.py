"""Quality gate: turns diff, metric and check results into a pass/fail decision."""

from __future__ import annotations

import logging
from typing import Iterable

from matrixqa.models.config import GATE_CATEGORIES, GatePolicy
from matrixqa.models.diff import DiffOutcome, DiffResult
from matrixqa.models.gate import CategoryVerdict, CheckResult, QualityGateDecision
from matrixqa.models.metrics import MetricsSummary

logger = logging.getLogger(__name__)


def evaluate(
    diff_results: Iterable[DiffResult],
    metrics_summaries: dict[str, MetricsSummary],
    external_findings: dict[str, CheckResult],
    policy: GatePolicy,
) -> QualityGateDecision:
    """Evaluate every category against its configured hard/soft policy.

    ``overall_pass`` is false only when a hard category breaches. Soft
    breaches are still listed in ``reasons`` as warnings.
    """
    verdicts: dict[str, CategoryVerdict] = {}

    diffs = list(diff_results)
    verdicts["visual"] = _verdict(
        "visual", policy, _visual_breaches(diffs),
        threshold=f"{diffs[0].threshold:.4%}" if diffs else None,
    )
    verdicts["performance"] = _verdict(
        "performance", policy, _performance_breaches(metrics_summaries, policy),
        threshold=f"{policy.perf_regression_percent:.1f}%",
    )
    for category, result in external_findings.items():
        reasons = []
        if not result.passed:
            count = len(result.findings)
            detail = f": {result.findings[0]}" if result.findings else ""
            reasons.append((f"{count} finding(s){detail}", str(count)))
        verdicts[category] = _verdict(category, policy, reasons, threshold="0 findings")

    overall_pass = all(v.status != "fail" for v in verdicts.values())
    reasons = [
        f"{'warning: ' if v.status == 'warn' else ''}{v.category}: {r}"
        for v in _ordered(verdicts)
        for r in v.reasons
    ]
    if not overall_pass:
        logger.debug("Quality gate failed: %s", "; ".join(reasons))
    return QualityGateDecision(
        per_category_verdict=verdicts,
        overall_pass=overall_pass,
        reasons=reasons,
    )


def _visual_breaches(diff_results: list[DiffResult]) -> list[tuple[str, str]]:
    breaches = []
    for diff in diff_results:
        if diff.outcome == DiffOutcome.DIMENSION_MISMATCH:
            breaches.append((f"dimension mismatch ({diff.message})", "dimension_mismatch"))
        elif diff.outcome == DiffOutcome.BREACH:
            measured = f"{diff.diff_ratio:.4%}"
            if diff.critical_hits:
                breaches.append((
                    f"{diff.critical_hits} differing pixel(s) in critical regions "
                    f"(diff ratio {measured}, threshold {diff.threshold:.4%})",
                    measured,
                ))
            else:
                breaches.append((f"diff ratio {measured} exceeds threshold {diff.threshold:.4%}",
                                 measured))
    return breaches


def _performance_breaches(
    summaries: dict[str, MetricsSummary], policy: GatePolicy,
) -> list[tuple[str, str]]:
    limit = policy.perf_regression_percent
    breaches = []
    for name, summary in summaries.items():
        delta = summary.regression_delta_percent
        if delta is None:
            continue
        regressed = -delta if name in policy.higher_is_better else delta
        if regressed > limit:
            breaches.append((
                f"{name} mean {summary.mean:.2f}{summary.unit} regressed {delta:+.1f}% "
                f"(threshold {limit:.1f}%)",
                f"{delta:+.1f}%",
            ))
    return breaches


def _verdict(
    category: str,
    policy: GatePolicy,
    breaches: list[tuple[str, str]],
    threshold: str | None = None,
) -> CategoryVerdict:
    mode = policy.policy_for(category)
    if not breaches:
        status = "pass"
    else:
        status = "fail" if mode == "hard" else "warn"
    return CategoryVerdict(
        category=category,
        policy=mode,
        status=status,
        measured=", ".join(m for _, m in breaches) or None,
        threshold=threshold,
        reasons=[r for r, _ in breaches],
    )


def _ordered(verdicts: dict[str, CategoryVerdict]) -> list[CategoryVerdict]:
    """Built-in categories first, then custom ones in insertion order."""
    known = [verdicts[c] for c in GATE_CATEGORIES if c in verdicts]
    return known + [v for c, v in verdicts.items() if c not in GATE_CATEGORIES]
