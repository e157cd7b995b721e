"""Performance telemetry structures."""

from __future__ import annotations

import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PerformanceSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric_name: str
    value: float
    unit: str = "ms"
    timestamp: float = Field(default_factory=time.time)


class MetricsSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric_name: str
    unit: str = "ms"
    count: int
    mean: float
    p50: float
    p95: float
    max: float
    regression_delta_percent: Optional[float] = None  # None on first run
