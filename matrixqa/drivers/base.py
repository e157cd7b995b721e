"""Interfaces for the collaborators the orchestrator drives."""

from __future__ import annotations

import threading
from typing import Iterable, Optional, Protocol, runtime_checkable

from matrixqa.models.device import DeviceProfile
from matrixqa.models.metrics import PerformanceSample
from matrixqa.models.screenshot import Screenshot


@runtime_checkable
class UIDriver(Protocol):
    def capture(
        self,
        screen_id: str,
        profile: DeviceProfile,
        cancel: Optional[threading.Event] = None,
    ) -> Screenshot:
        """Bring the screen up on the target and capture it.

        ``cancel`` is set when the run times out. Drivers poll it during long
        waits and stop with InfraTransient once it is set; the device slot
        stays held until this call returns.

        Raises InfraTransient on timeouts or capture failures.
        """
        ...


@runtime_checkable
class PerformanceProbe(Protocol):
    def collect(self, screen_id: str, profile: DeviceProfile) -> Iterable[PerformanceSample]:
        """Samples emitted during the run's execution window."""
        ...


class NullProbe:
    """Probe that reports nothing; used when no probe is configured."""

    def collect(self, screen_id: str, profile: DeviceProfile) -> Iterable[PerformanceSample]:
        return ()
