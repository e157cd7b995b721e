"""Connected-component grouping of differing pixels."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from scipy import ndimage

# 8-connectivity: diagonal neighbours join the same component
EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)


@dataclass
class Component:
    left: int
    top: int
    right: int  # inclusive
    bottom: int  # inclusive
    pixel_count: int
    critical: bool = False

    @property
    def width(self) -> int:
        return self.right - self.left + 1

    @property
    def height(self) -> int:
        return self.bottom - self.top + 1


def find_components(mask: Any, critical_mask: Optional[Any] = None) -> list[Component]:
    """Group the non-zero pixels of ``mask`` into 8-connected components.

    ``mask`` is anything ``np.asarray`` turns into a 2-D array, typically an
    "L" PIL image. Labels are assigned in raster order of each component's
    first pixel, so identical input gives identical output.
    """
    changed = np.asarray(mask) > 0
    if changed.ndim != 2:
        raise ValueError(f"mask must be single-channel, got shape {changed.shape}")

    labeled, count = ndimage.label(changed, structure=EIGHT_CONNECTED)
    if count == 0:
        return []

    sizes = np.bincount(labeled.ravel(), minlength=count + 1)
    touched = np.zeros(count + 1, dtype=bool)
    if critical_mask is not None:
        critical = np.asarray(critical_mask) > 0
        if critical.shape != changed.shape:
            raise ValueError("critical mask does not match mask dimensions")
        touched[np.unique(labeled[critical & changed])] = True

    components = []
    for label, found in enumerate(ndimage.find_objects(labeled), start=1):
        if found is None:
            continue
        rows, cols = found
        components.append(Component(
            left=int(cols.start),
            top=int(rows.start),
            right=int(cols.stop) - 1,
            bottom=int(rows.stop) - 1,
            pixel_count=int(sizes[label]),
            critical=bool(touched[label]),
        ))
    return components
