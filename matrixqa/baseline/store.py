"""Baseline store: versioned approved reference images.

Each (screen_id, device profile) key maps to an immutable tuple of versions,
oldest first. Readers take whatever tuple is current without locking. An
approval builds the new tuple under the key's lock; swapping it into the
index and rewriting the registry happen under the store-wide write lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from pathlib import Path

from matrixqa.errors import BaselineConflict
from matrixqa.models.baseline import (
    Baseline,
    BaselineEntry,
    BaselineRegistry,
    MissingBaseline,
    MissingBaselineType,
)
from matrixqa.models.device import DeviceProfile, safe_name
from matrixqa.models.screenshot import Screenshot

logger = logging.getLogger(__name__)

IndexKey = tuple[str, DeviceProfile]


class BaselineStore:
    """Approved baselines, optionally persisted under ``baselines_dir``."""

    def __init__(self, baselines_dir: Path | None = None):
        self.baselines_dir = Path(baselines_dir) if baselines_dir else None
        self.registry_path = self.baselines_dir / "registry.json" if self.baselines_dir else None
        self._index: dict[IndexKey, tuple[Baseline, ...]] = {}
        self._key_locks: dict[IndexKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._write_lock = threading.Lock()
        if self.registry_path is not None:
            self._load()

    @staticmethod
    def _registry_key(screen_id: str, profile: DeviceProfile) -> str:
        return f"{safe_name(screen_id)}__{profile.key}"

    def _lock_for(self, key: IndexKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(
        self, screen_id: str, profile: DeviceProfile, release_version: str | None = None,
    ) -> Baseline | MissingBaselineType:
        """Look up a baseline; ``release_version=None`` resolves to the latest approval."""
        versions = self._index.get((screen_id, profile), ())
        if not versions:
            return MissingBaseline
        if release_version is None:
            return versions[-1]
        for baseline in versions:
            if baseline.release_version == release_version:
                return baseline
        return MissingBaseline

    def list_versions(self, screen_id: str, profile: DeviceProfile) -> list[Baseline]:
        """All approved versions for a key, newest first."""
        versions = self._index.get((screen_id, profile), ())
        return list(reversed(versions))

    def keys(self) -> list[IndexKey]:
        with self._write_lock:
            return [key for key, versions in self._index.items() if versions]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def approve(
        self,
        screen_id: str,
        profile: DeviceProfile,
        image: Screenshot,
        approver: str,
        release_version: str | None = None,
    ) -> Baseline:
        """Register ``image`` as a new approved version. Existing versions are never touched."""
        if not approver:
            raise ValueError("approver is required")
        key = (screen_id, profile)
        with self._lock_for(key):
            versions = self._index.get(key, ())
            taken = {b.release_version for b in versions}
            sequence = versions[-1].sequence + 1 if versions else 1

            if release_version is None:
                release_version = f"v{sequence}"
                suffix = 1
                while release_version in taken:
                    release_version = f"v{sequence}.{suffix}"
                    suffix += 1
            elif release_version in taken:
                raise BaselineConflict(
                    f"Baseline {release_version} already approved for {screen_id} on {profile.label}"
                )

            png = image.to_png_bytes()
            baseline = Baseline(
                screen_id=screen_id,
                device_profile=profile,
                release_version=release_version,
                image=image,
                approved_at=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
                approver=approver,
                sequence=sequence,
                image_hash=hashlib.sha256(png).hexdigest(),
            )
            if self.baselines_dir is not None:
                self._write_image(self._image_path(screen_id, profile, release_version), png)

            with self._write_lock:
                self._index[key] = versions + (baseline,)
                if self.registry_path is not None:
                    self._persist()

        logger.info("Approved baseline %s for %s on %s (%dx%d) by %s",
                    release_version, screen_id, profile.label,
                    image.width, image.height, approver)
        return baseline

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _image_path(self, screen_id: str, profile: DeviceProfile, release_version: str) -> Path:
        return (self.baselines_dir / "images" / safe_name(screen_id) / profile.key
                / f"{safe_name(release_version)}.png")

    @staticmethod
    def _write_image(path: Path, png: bytes) -> None:
        if path.exists():
            raise BaselineConflict(f"Baseline image already exists: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(png)

    def _persist(self) -> None:
        """Rewrite the registry from the in-memory index. Caller holds ``_write_lock``."""
        registry = BaselineRegistry(last_updated=time.strftime("%Y-%m-%dT%H:%M:%SZ"))
        for (screen_id, profile), versions in self._index.items():
            registry.baselines[self._registry_key(screen_id, profile)] = [
                BaselineEntry(
                    screen_id=b.screen_id,
                    device_profile=b.device_profile,
                    release_version=b.release_version,
                    image_path=str(
                        self._image_path(b.screen_id, b.device_profile, b.release_version)
                        .relative_to(self.baselines_dir)
                    ),
                    approved_at=b.approved_at,
                    approver=b.approver,
                    sequence=b.sequence,
                    image_hash=b.image_hash,
                )
                for b in versions
            ]
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.registry_path.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(registry.model_dump(mode="json"), f, indent=2)
        os.replace(tmp, self.registry_path)
        logger.debug("Saved baseline registry to %s", self.registry_path)

    def _load(self) -> None:
        if not self.registry_path.exists():
            return
        try:
            with open(self.registry_path) as f:
                registry = BaselineRegistry(**json.load(f))
        except (OSError, ValueError) as e:
            logger.warning("Failed to load baseline registry: %s. Starting empty.", e)
            return

        for name, entries in registry.baselines.items():
            loaded = []
            for entry in sorted(entries, key=lambda e: e.sequence):
                abs_path = self.baselines_dir / entry.image_path
                if not abs_path.exists():
                    logger.warning("Baseline image missing for %s %s: %s",
                                   name, entry.release_version, abs_path)
                    continue
                loaded.append(Baseline(
                    screen_id=entry.screen_id,
                    device_profile=entry.device_profile,
                    release_version=entry.release_version,
                    image=Screenshot.from_png(abs_path, captured_at=entry.approved_at),
                    approved_at=entry.approved_at,
                    approver=entry.approver,
                    sequence=entry.sequence,
                    image_hash=entry.image_hash,
                ))
            if loaded:
                first = loaded[0]
                self._index[(first.screen_id, first.device_profile)] = tuple(loaded)
        logger.debug("Loaded %d baseline keys from %s", len(self._index), self.registry_path)
