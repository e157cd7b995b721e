"""Pixel diff result structures."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DiffOutcome(str, Enum):
    MATCH = "match"
    BREACH = "breach"
    DIMENSION_MISMATCH = "dimension_mismatch"
    MISSING_BASELINE = "missing_baseline"


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    width: int
    height: int
    pixel_count: int
    critical: bool = False  # touches a must-match region


class DiffResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: DiffOutcome
    pixel_diff_count: int = 0
    total_pixels: int = 0  # pixels considered, i.e. excluding ignore regions
    diff_ratio: Optional[float] = None  # None when no pixel comparison happened
    threshold: float = 0.0
    bounding_boxes: tuple[BoundingBox, ...] = Field(default_factory=tuple)
    critical_hits: int = 0  # differing pixels inside critical regions
    error_kind: Optional[str] = None
    message: str = ""

    @property
    def is_breach(self) -> bool:
        return self.outcome in (DiffOutcome.BREACH, DiffOutcome.DIMENSION_MISMATCH)
