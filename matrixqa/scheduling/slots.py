"""Device slot pool: bounded concurrency per device profile."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from matrixqa.models.device import DeviceProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    profile: DeviceProfile
    index: int

    @property
    def name(self) -> str:
        return f"{self.profile.key}#{self.index}"


class SlotPool:
    """Explicit pool of device slots; at most one TestRun holds a slot at a time.

    Each profile gets its own queue of free slots, so waiting for one profile
    never blocks runs on another.
    """

    def __init__(self, profiles: list[DeviceProfile], slots_per_profile: int = 1):
        if slots_per_profile < 1:
            raise ValueError("slots_per_profile must be at least 1")
        self.slots_per_profile = slots_per_profile
        self._free: dict[DeviceProfile, asyncio.Queue[Slot]] = {}
        self._busy: set[Slot] = set()
        for profile in profiles:
            if profile in self._free:
                continue
            queue: asyncio.Queue[Slot] = asyncio.Queue()
            for i in range(slots_per_profile):
                queue.put_nowait(Slot(profile=profile, index=i))
            self._free[profile] = queue

    async def acquire(self, profile: DeviceProfile) -> Slot:
        try:
            queue = self._free[profile]
        except KeyError:
            raise KeyError(f"No slots configured for {profile.label}") from None
        slot = await queue.get()
        self._busy.add(slot)
        logger.debug("Acquired slot %s", slot.name)
        return slot

    def release(self, slot: Slot) -> None:
        if slot not in self._busy:
            raise RuntimeError(f"Slot {slot.name} is not held")
        self._busy.discard(slot)
        self._free[slot.profile].put_nowait(slot)
        logger.debug("Released slot %s", slot.name)

    @asynccontextmanager
    async def hold(self, profile: DeviceProfile) -> AsyncIterator[Slot]:
        slot = await self.acquire(profile)
        try:
            yield slot
        finally:
            self.release(slot)

    def in_use(self, profile: DeviceProfile | None = None) -> int:
        if profile is None:
            return len(self._busy)
        return sum(1 for s in self._busy if s.profile == profile)

    def available(self, profile: DeviceProfile) -> int:
        return self._free[profile].qsize()
