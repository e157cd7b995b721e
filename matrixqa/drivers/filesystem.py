"""Replay driver and probe backed by files on disk.

Layout under ``root``::

    {screen_id}/{profile.key}.png    capture returned by FileSystemDriver
    {screen_id}/{profile.key}.json   samples returned by FileSystemProbe

Useful for re-gating captures produced elsewhere (device farm, CI job).
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from matrixqa.errors import InfraTransient
from matrixqa.models.device import DeviceProfile, safe_name
from matrixqa.models.metrics import PerformanceSample
from matrixqa.models.screenshot import Screenshot

logger = logging.getLogger(__name__)


class FileSystemDriver:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, screen_id: str, profile: DeviceProfile) -> Path:
        return self.root / safe_name(screen_id) / f"{profile.key}.png"

    def capture(
        self, screen_id: str, profile: DeviceProfile, cancel: threading.Event | None = None,
    ) -> Screenshot:
        if cancel is not None and cancel.is_set():
            raise InfraTransient(f"Capture of {screen_id} on {profile.label} cancelled")
        path = self.path_for(screen_id, profile)
        if not path.exists():
            raise InfraTransient(f"No capture available at {path}")
        try:
            return Screenshot.from_png(path)
        except OSError as e:
            raise InfraTransient(f"Unreadable capture {path}: {e}") from e


class FileSystemProbe:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def collect(self, screen_id: str, profile: DeviceProfile) -> list[PerformanceSample]:
        path = self.root / safe_name(screen_id) / f"{profile.key}.json"
        if not path.exists():
            logger.debug("No samples for %s on %s", screen_id, profile.label)
            return []
        with open(path) as f:
            data = json.load(f)
        return [PerformanceSample(**item) for item in data]
