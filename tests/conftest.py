"""Pytest configuration and shared fixtures."""

import threading
import time
from typing import Iterable

import pytest
from PIL import Image, ImageDraw

from matrixqa.baseline.store import BaselineStore
from matrixqa.errors import InfraTransient
from matrixqa.metrics.history import MetricsHistory
from matrixqa.models.config import GatePolicy, RetryConfig, RunConfig, ToleranceConfig
from matrixqa.models.device import DeviceProfile, TestCase
from matrixqa.models.metrics import PerformanceSample
from matrixqa.models.screenshot import Screenshot

WHITE = (255, 255, 255)
RED = (255, 0, 0)

# 50x10 block = 500 of 10,000 pixels = 5%
RED_BLOCK = (10, 20, 50, 10)


def make_screenshot(
    width: int = 100,
    height: int = 100,
    color: tuple = WHITE,
    blocks: Iterable[tuple[int, int, int, int, tuple]] = (),
) -> Screenshot:
    """Solid image with optional filled rectangles given as (x, y, w, h, color)."""
    mode = {1: "L", 3: "RGB", 4: "RGBA"}[len(color)]
    fill = color if len(color) > 1 else color[0]
    img = Image.new(mode, (width, height), fill)
    draw = ImageDraw.Draw(img)
    for x, y, w, h, block_color in blocks:
        draw.rectangle((x, y, x + w - 1, y + h - 1),
                       fill=block_color if len(block_color) > 1 else block_color[0])
    return Screenshot.from_image(img)


class FakeDriver:
    """In-memory UI driver.

    ``captures`` maps screen_id to a Screenshot (or callable(profile) -> Screenshot).
    ``failures`` maps screen_id to how many InfraTransient errors to raise first.
    ``delays`` are waited out on the cancel event unless ``honor_cancel`` is False.
    """

    def __init__(self, captures=None, failures=None, delays=None, error=None, honor_cancel=True):
        self.honor_cancel = honor_cancel
        self.captures = captures or {}
        self.failures = dict(failures or {})
        self.delays = delays or {}
        self.error = error
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}
        self.max_active_total = 0

    def capture(self, screen_id: str, profile: DeviceProfile, cancel=None) -> Screenshot:
        with self._lock:
            self.calls.append((screen_id, profile.key))
            self.active[profile.key] = self.active.get(profile.key, 0) + 1
            self.max_active[profile.key] = max(self.max_active.get(profile.key, 0),
                                               self.active[profile.key])
            self.max_active_total = max(self.max_active_total, sum(self.active.values()))
            remaining = self.failures.get(screen_id, 0)
            if remaining:
                self.failures[screen_id] = remaining - 1
        try:
            delay = self.delays.get(screen_id, 0)
            if delay:
                if cancel is not None and self.honor_cancel:
                    if cancel.wait(delay):
                        raise InfraTransient(f"capture of {screen_id} cancelled")
                else:
                    time.sleep(delay)
            if remaining:
                raise InfraTransient(f"driver timeout capturing {screen_id}")
            if self.error is not None:
                raise self.error
            capture = self.captures.get(screen_id, make_screenshot())
            return capture(profile) if callable(capture) else capture
        finally:
            with self._lock:
                self.active[profile.key] -= 1


class FakeProbe:
    def __init__(self, samples: dict[str, list[PerformanceSample]] | None = None):
        self.samples = samples or {}

    def collect(self, screen_id: str, profile: DeviceProfile) -> list[PerformanceSample]:
        return list(self.samples.get(screen_id, []))


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def tolerance() -> ToleranceConfig:
    return ToleranceConfig(per_pixel_channel_delta=16, max_diff_ratio=0.10)


@pytest.fixture
def retry_config() -> RetryConfig:
    """Retries without real waiting."""
    return RetryConfig(max_retries=2, retry_backoff=0.0)


@pytest.fixture
def run_config(tolerance: ToleranceConfig, retry_config: RetryConfig) -> RunConfig:
    return RunConfig(
        tolerance=tolerance,
        retry=retry_config,
        gate=GatePolicy(perf_regression_percent=30.0),
        run_timeout_seconds=5.0,
        max_workers=2,
        artifacts_dir=None,
    )


# ============================================================================
# Device and Test Fixtures
# ============================================================================


@pytest.fixture
def pixel() -> DeviceProfile:
    return DeviceProfile(family="Pixel 8", os_version="14", locale="en-US", form_factor="phone")


@pytest.fixture
def iphone() -> DeviceProfile:
    return DeviceProfile(family="iPhone 15", os_version="17.4", locale="de-DE", form_factor="phone")


@pytest.fixture
def device_matrix(pixel: DeviceProfile, iphone: DeviceProfile) -> list[DeviceProfile]:
    return [pixel, iphone]


@pytest.fixture
def login_case() -> TestCase:
    return TestCase(test_id="tc-login", screen_id="login", name="Login screen")


@pytest.fixture
def home_case() -> TestCase:
    return TestCase(test_id="tc-home", screen_id="home", name="Home screen")


# ============================================================================
# Image and Store Fixtures
# ============================================================================


@pytest.fixture
def white() -> Screenshot:
    return make_screenshot()


@pytest.fixture
def red_patch() -> Screenshot:
    """White 100x100 with a 5% red block."""
    return make_screenshot(blocks=[(*RED_BLOCK, RED)])


@pytest.fixture
def baseline_store() -> BaselineStore:
    return BaselineStore()


@pytest.fixture
def metrics_history() -> MetricsHistory:
    return MetricsHistory()
