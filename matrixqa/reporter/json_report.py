"""JSON report output."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

from matrixqa.models.report import RunReport

from .regression_detector import Regression


def generate_json_report(
    report: RunReport,
    regressions: list[Regression],
    output_path: Path,
) -> None:
    """Write a machine-readable JSON report."""
    data = report.model_dump(mode="json")
    data["totals"] = report.totals()
    data["overall_pass"] = report.overall_pass
    data["regressions"] = [asdict(r) for r in regressions]

    with open(output_path, "w") as f:
        json.dump(data, f, indent=2)
