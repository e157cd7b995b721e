"""Diff visualization for reports and CI artifacts."""

from __future__ import annotations

from typing import Optional

from PIL import Image, ImageChops, ImageDraw

from matrixqa.models.config import ToleranceConfig
from matrixqa.models.diff import DiffResult
from matrixqa.models.screenshot import Screenshot

from .engine import _region_mask, diff_mask

_HIGHLIGHT = (255, 0, 0)
_BOX = (255, 0, 255)
_CRITICAL_BOX = (255, 140, 0)
_IGNORED = (120, 120, 120)


def render_diff(
    current: Screenshot,
    reference: Screenshot,
    result: DiffResult,
    tolerance: ToleranceConfig,
    mask: Optional[Image.Image] = None,
) -> Screenshot | None:
    """Draw differing pixels in red over a faded copy of the baseline.

    ``mask`` is the one returned by ``compare_with_mask``; it is recomputed
    when omitted. Returns None when the images cannot be compared pixel for pixel.
    """
    if current.size != reference.size:
        return None

    width, height = current.size
    base = reference.to_image().convert("RGB")
    canvas = Image.blend(base, Image.new("RGB", base.size, (255, 255, 255)), 0.6)

    ignore = _region_mask(tolerance.ignore_regions, width, height)
    if mask is None:
        mask = diff_mask(current, reference, tolerance)
        if ignore is not None:
            mask = ImageChops.subtract(mask, ignore)
    if ignore is not None:
        canvas = Image.composite(Image.new("RGB", base.size, _IGNORED), canvas, ignore)
    canvas = Image.composite(Image.new("RGB", base.size, _HIGHLIGHT), canvas, mask)

    draw = ImageDraw.Draw(canvas)
    for box in result.bounding_boxes:
        draw.rectangle(
            (box.x, box.y, box.x + box.width - 1, box.y + box.height - 1),
            outline=_CRITICAL_BOX if box.critical else _BOX,
        )
    return Screenshot.from_image(canvas)
