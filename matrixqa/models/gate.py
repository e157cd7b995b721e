"""Quality gate inputs and decisions."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CheckResult(BaseModel):
    """Result contract every external or custom check returns."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    findings: list[Any] = Field(default_factory=list)


class CategoryVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    policy: str  # hard, soft
    status: str  # pass, warn, fail
    measured: Optional[str] = None
    threshold: Optional[str] = None
    reasons: list[str] = Field(default_factory=list)

    @property
    def breached(self) -> bool:
        return self.status != "pass"


class QualityGateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    per_category_verdict: dict[str, CategoryVerdict] = Field(default_factory=dict)
    overall_pass: bool
    reasons: list[str] = Field(default_factory=list)
