"""Device matrix and test selection data structures."""

from __future__ import annotations

import hashlib
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

_SLUG_UNSAFE = re.compile(r"[^A-Za-z0-9._\-]+")


def slugify(part: str) -> str:
    return _SLUG_UNSAFE.sub("-", part.strip()).strip("-.") or "x"


def _digest(*parts: str) -> str:
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()[:8]


def safe_name(value: str) -> str:
    """Filesystem-safe name for an identifier.

    Identifiers that are already safe are returned as-is; anything slugify
    had to rewrite gets a digest suffix so that e.g. "a/b" and "a-b" stay apart.
    """
    slug = slugify(value)
    if slug == value:
        return slug
    return f"{slug}-{_digest(value)}"


class DeviceProfile(BaseModel):
    """One execution target. Hashable so it can key slot pools and stores."""

    model_config = ConfigDict(frozen=True)

    family: str
    os_version: str
    locale: str = "en-US"
    form_factor: str = "phone"  # phone, tablet, foldable, watch

    def _fields(self) -> tuple[str, str, str, str]:
        return (self.family, self.os_version, self.locale, self.form_factor)

    @property
    def slug(self) -> str:
        return "_".join(slugify(p) for p in self._fields())

    @property
    def key(self) -> str:
        """Storage key for paths and artifact directories.

        The readable slug is lossy ("Galaxy S24" and "Galaxy-S24" slug alike);
        the digest of the exact field values is not.
        """
        return f"{self.slug}-{_digest(*self._fields())}"

    @property
    def label(self) -> str:
        return f"{self.family} / {self.os_version} / {self.locale} / {self.form_factor}"


class TestCase(BaseModel):
    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    test_id: str
    screen_id: str
    name: str = ""
    steps_ref: Optional[str] = None  # opaque to the core, handed to the driver
    max_diff_ratio: Optional[float] = Field(default=None, ge=0.0, le=1.0)


def expand_matrix(
    test_selection: list[TestCase], device_matrix: list[DeviceProfile]
) -> list[tuple[TestCase, DeviceProfile]]:
    """Cross product of tests and profiles, test-major.

    The returned order is the order entries appear in the run report.
    """
    return [(tc, profile) for tc in test_selection for profile in device_matrix]
