"""Configuration models for matrixqa."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from matrixqa.errors import ConfigInvalid

Policy = Literal["hard", "soft"]

GATE_CATEGORIES = ("visual", "performance", "accessibility", "security", "network")


class Region(BaseModel):
    """Axis-aligned pixel rectangle, top-left origin."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    label: str = ""

    def contains(self, px: int, py: int) -> bool:
        return self.x <= px < self.x + self.width and self.y <= py < self.y + self.height

    def clip(self, width: int, height: int) -> tuple[int, int, int, int] | None:
        """Return (left, top, right, bottom) clipped to an image, or None if outside."""
        left, top = min(self.x, width), min(self.y, height)
        right, bottom = min(self.x + self.width, width), min(self.y + self.height, height)
        if left >= right or top >= bottom:
            return None
        return left, top, right, bottom


class ToleranceConfig(BaseModel):
    per_pixel_channel_delta: int = Field(default=16, ge=0, le=255)
    max_diff_ratio: float = Field(default=0.01, ge=0.0, le=1.0)
    ignore_regions: list[Region] = Field(default_factory=list)
    critical_regions: list[Region] = Field(default_factory=list)

    # Pre-pass to suppress sub-pixel rendering noise
    smoothing: Literal["none", "box", "gaussian", "median"] = "none"
    smoothing_radius: int = Field(default=1, ge=1, le=10)

    # Connected components smaller than this are counted but get no bounding box
    min_cluster_pixels: int = Field(default=1, ge=1)


class RetryConfig(BaseModel):
    max_retries: int = Field(default=2, ge=0, le=20)
    retry_backoff: float = Field(default=1.0, ge=0.0)  # seconds before the first retry
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_backoff_seconds: float = Field(default=30.0, ge=0.0)


class GatePolicy(BaseModel):
    policies: dict[str, Policy] = Field(
        default_factory=lambda: {
            "visual": "hard",
            "performance": "hard",
            "accessibility": "soft",
            "security": "hard",
            "network": "soft",
        }
    )
    default_policy: Policy = "hard"
    perf_regression_percent: float = Field(default=20.0, ge=0.0)
    # Metrics where a drop (not a rise) is the regression, e.g. fps
    higher_is_better: list[str] = Field(default_factory=list)

    def policy_for(self, category: str) -> Policy:
        return self.policies.get(category, self.default_policy)


class RunConfig(BaseModel):
    tolerance: ToleranceConfig = Field(default_factory=ToleranceConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    gate: GatePolicy = Field(default_factory=GatePolicy)

    # Scheduling
    slots_per_profile: int = Field(default=1, ge=1)
    run_timeout_seconds: float = Field(default=60.0, gt=0)
    max_workers: int = Field(default=4, ge=1)

    # Baselines and checks
    release_version: Optional[str] = None  # None compares against the latest approval
    checks: list[str] = Field(default_factory=list)
    record_metrics: bool = False

    # Storage
    baselines_dir: str = ".matrixqa/baselines"
    metrics_history_path: str = ".matrixqa/metrics_history.json"
    artifacts_dir: Optional[str] = "./matrixqa-artifacts"

    # Reporting
    report_formats: list[str] = Field(default_factory=lambda: ["html", "json"])
    report_output_dir: str = "./matrixqa-reports"
    ai_summary: bool = False
    ai_model: str = "claude-3-5-sonnet-latest"

    @field_validator("report_formats")
    @classmethod
    def known_formats(cls, v: list[str]) -> list[str]:
        unknown = sorted(set(v) - {"html", "json"})
        if unknown:
            raise ValueError(f"Unknown report formats: {', '.join(unknown)}")
        return v

    @model_validator(mode="after")
    def _unique_checks(self) -> "RunConfig":
        if len(set(self.checks)) != len(self.checks):
            raise ValueError("checks must not contain duplicates")
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "RunConfig":
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigInvalid(
                [f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()]
            ) from e

    @classmethod
    def load(cls, path: str | Path) -> "RunConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
