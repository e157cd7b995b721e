"""Artifact layout for CI archiving.

    {root}/{run_id}/report.json
    {root}/{run_id}/{test_case_id}/{profile.key}/captured.png
    {root}/{run_id}/{test_case_id}/{profile.key}/diff.png
    {root}/{run_id}/{test_case_id}/{profile.key}/report.json

Names are stable so two runs can be archived and diffed file by file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from matrixqa.models.device import DeviceProfile, safe_name
from matrixqa.models.report import RunReport, RunReportEntry
from matrixqa.models.screenshot import Screenshot

logger = logging.getLogger(__name__)

CAPTURED_NAME = "captured.png"
DIFF_NAME = "diff.png"
REPORT_NAME = "report.json"


class ArtifactStore:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def run_dir(self, run_id: str) -> Path:
        return self.root / safe_name(run_id)

    def entry_dir(self, run_id: str, test_case_id: str, profile: DeviceProfile) -> Path:
        return self.run_dir(run_id) / safe_name(test_case_id) / profile.key

    def write_entry(
        self,
        entry: RunReportEntry,
        captured: Screenshot | None = None,
        diff_image: Screenshot | None = None,
    ) -> Path:
        out_dir = self.entry_dir(entry.run_id, entry.test_case_id, entry.device_profile)
        out_dir.mkdir(parents=True, exist_ok=True)
        if captured is not None:
            captured.save_png(out_dir / CAPTURED_NAME)
        if diff_image is not None:
            diff_image.save_png(out_dir / DIFF_NAME)
        with open(out_dir / REPORT_NAME, "w") as f:
            json.dump(entry.model_dump(mode="json"), f, indent=2)
        logger.debug("Wrote artifacts for %s on %s to %s",
                     entry.test_case_id, entry.device_profile.label, out_dir)
        return out_dir

    def write_run_report(self, report: RunReport) -> Path:
        path = self.run_dir(report.run_id) / REPORT_NAME
        path.parent.mkdir(parents=True, exist_ok=True)
        data = report.model_dump(mode="json")
        data["totals"] = report.totals()
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
        return path
