"""Stored metric baselines, keyed by screen and device profile."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path

from pydantic import BaseModel, Field

from matrixqa.models.device import DeviceProfile
from matrixqa.models.metrics import MetricsSummary

logger = logging.getLogger(__name__)


class MetricsHistoryEntry(BaseModel):
    screen_id: str
    device_profile: DeviceProfile
    summaries: dict[str, MetricsSummary] = Field(default_factory=dict)


class MetricsHistoryFile(BaseModel):
    last_updated: str = ""
    entries: list[MetricsHistoryEntry] = Field(default_factory=list)


class MetricsHistory:
    """Previous-run summaries used to compute regression deltas.

    Summaries are only written through ``record``; a run's metrics never
    become the comparison point implicitly.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._summaries: dict[tuple[str, DeviceProfile], dict[str, MetricsSummary]] = self._load()

    def _load(self) -> dict[tuple[str, DeviceProfile], dict[str, MetricsSummary]]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                stored = MetricsHistoryFile(**json.load(f))
        except (OSError, ValueError) as e:
            logger.warning("Failed to load metrics history: %s. Creating new.", e)
            return {}
        return {(e.screen_id, e.device_profile): dict(e.summaries) for e in stored.entries}

    def previous(self, screen_id: str, profile: DeviceProfile) -> dict[str, MetricsSummary]:
        return dict(self._summaries.get((screen_id, profile), {}))

    def record(
        self, screen_id: str, profile: DeviceProfile, summaries: dict[str, MetricsSummary],
    ) -> None:
        """Store summaries as the new comparison point for this screen and profile."""
        if not summaries:
            return
        with self._lock:
            stored = self._summaries.setdefault((screen_id, profile), {})
            for name, summary in summaries.items():
                # deltas are relative to the old entry and meaningless once it is replaced
                stored[name] = summary.model_copy(update={"regression_delta_percent": None})
            self._save()
        logger.debug("Recorded %d metric summaries for %s on %s",
                     len(summaries), screen_id, profile.label)

    def _save(self) -> None:
        if self.path is None:
            return
        data = MetricsHistoryFile(
            last_updated=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            entries=[
                MetricsHistoryEntry(screen_id=screen_id, device_profile=profile, summaries=summaries)
                for (screen_id, profile), summaries in self._summaries.items()
            ],
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(data.model_dump(mode="json"), f, indent=2)
        os.replace(tmp, self.path)
