"""Baseline store data structures."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from matrixqa.models.device import DeviceProfile
from matrixqa.models.screenshot import Screenshot


class Baseline(BaseModel):
    model_config = ConfigDict(frozen=True)

    screen_id: str
    device_profile: DeviceProfile
    release_version: str
    image: Screenshot
    approved_at: str  # ISO timestamp
    approver: str
    sequence: int  # 1-based approval order within the key
    image_hash: str  # SHA-256 hex digest of the PNG


class MissingBaselineType:
    """Sentinel returned by the store when no approved baseline exists."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MissingBaseline"


MissingBaseline = MissingBaselineType()


class BaselineEntry(BaseModel):
    """Persisted metadata for one approved version."""

    screen_id: str
    device_profile: DeviceProfile
    release_version: str
    image_path: str  # relative path from baselines_dir to the PNG
    approved_at: str
    approver: str
    sequence: int
    image_hash: str


class BaselineRegistry(BaseModel):
    last_updated: str = ""
    # key format: "{safe_name(screen_id)}__{profile.key}", versions oldest first
    baselines: dict[str, list[BaselineEntry]] = Field(default_factory=dict)
