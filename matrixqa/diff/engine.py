"""Diff engine: deterministic pixel comparison of a capture against its baseline.

Every function here is pure. Nothing is cached or shared between calls, so
the engine can run on any number of worker threads at once.
"""

from __future__ import annotations

import logging
from fractions import Fraction
from typing import Optional

from PIL import Image, ImageChops, ImageDraw, ImageFilter

from matrixqa.models.baseline import Baseline
from matrixqa.models.config import Region, ToleranceConfig
from matrixqa.models.diff import BoundingBox, DiffOutcome, DiffResult
from matrixqa.models.screenshot import Screenshot

from .clustering import find_components

logger = logging.getLogger(__name__)


def compare(current: Screenshot, baseline: Baseline, tolerance: ToleranceConfig) -> DiffResult:
    """Compare a capture with an approved baseline."""
    return compare_with_mask(current, baseline, tolerance)[0]


def compare_with_mask(
    current: Screenshot, baseline: Baseline, tolerance: ToleranceConfig,
) -> tuple[DiffResult, Optional[Image.Image]]:
    """Like ``compare``, also returning the diff mask with ignore regions cleared.

    The mask is None when the sizes differ and no pixel comparison happened.
    """
    reference = baseline.image
    if current.size != reference.size:
        logger.debug("Dimension mismatch for %s: %dx%d vs baseline %dx%d",
                     baseline.screen_id, current.width, current.height,
                     reference.width, reference.height)
        return DiffResult(
            outcome=DiffOutcome.DIMENSION_MISMATCH,
            threshold=tolerance.max_diff_ratio,
            error_kind="dimension_mismatch",
            message=(
                f"Capture is {current.width}x{current.height}, "
                f"baseline is {reference.width}x{reference.height}"
            ),
        ), None

    width, height = current.size
    mask = diff_mask(current, reference, tolerance)
    ignore = _region_mask(tolerance.ignore_regions, width, height)
    if ignore is not None:
        mask = ImageChops.subtract(mask, ignore)
        considered = width * height - ignore.histogram()[255]
    else:
        considered = width * height

    differing = mask.histogram()[255]
    ratio = Fraction(differing, considered) if considered else Fraction(0)

    critical = _region_mask(tolerance.critical_regions, width, height)
    critical_hits = 0
    if critical is not None and differing:
        critical_hits = ImageChops.multiply(mask, critical).histogram()[255]

    boxes: tuple[BoundingBox, ...] = ()
    if differing:
        components = find_components(mask, critical)
        boxes = tuple(
            BoundingBox(
                x=c.left, y=c.top, width=c.width, height=c.height,
                pixel_count=c.pixel_count, critical=c.critical,
            )
            for c in sorted(components, key=lambda c: (c.top, c.left))
            if c.pixel_count >= tolerance.min_cluster_pixels
        )

    within = ratio <= _exact(tolerance.max_diff_ratio)
    outcome = DiffOutcome.MATCH if within and critical_hits == 0 else DiffOutcome.BREACH

    if outcome == DiffOutcome.MATCH:
        message = f"Pixel diff: {float(ratio):.2%} (tolerance: {tolerance.max_diff_ratio:.2%})"
    elif not within:
        message = (f"Pixel diff {float(ratio):.2%} exceeds tolerance "
                   f"{tolerance.max_diff_ratio:.2%}")
    else:
        message = f"{critical_hits} differing pixel(s) inside critical regions"

    return DiffResult(
        outcome=outcome,
        pixel_diff_count=differing,
        total_pixels=considered,
        diff_ratio=float(ratio),
        threshold=tolerance.max_diff_ratio,
        bounding_boxes=boxes,
        critical_hits=critical_hits,
        error_kind=None if outcome == DiffOutcome.MATCH else "threshold_breach",
        message=message,
    ), mask


def missing_baseline_result(tolerance: ToleranceConfig) -> DiffResult:
    return DiffResult(
        outcome=DiffOutcome.MISSING_BASELINE,
        threshold=tolerance.max_diff_ratio,
        error_kind="missing_baseline",
        message="No approved baseline; capture is a new baseline candidate",
    )


def diff_mask(current: Screenshot, reference: Screenshot, tolerance: ToleranceConfig) -> Image.Image:
    """Return an "L" mask: 255 where any channel delta exceeds the tolerance, 0 elsewhere.

    Ignore regions are not applied here.
    """
    a, b = _normalize(current.to_image(), reference.to_image())
    if tolerance.smoothing != "none":
        a = _smooth(a, tolerance.smoothing, tolerance.smoothing_radius)
        b = _smooth(b, tolerance.smoothing, tolerance.smoothing_radius)

    delta = tolerance.per_pixel_channel_delta
    lut = [255 if v > delta else 0 for v in range(256)]
    bands = ImageChops.difference(a, b).split()
    mask = bands[0].point(lut)
    for band in bands[1:]:
        mask = ImageChops.lighter(mask, band.point(lut))
    return mask


def _normalize(a: Image.Image, b: Image.Image) -> tuple[Image.Image, Image.Image]:
    """Bring both images to a shared mode so channels line up."""
    if a.mode == b.mode:
        return a, b
    mode = "RGBA" if "RGBA" in (a.mode, b.mode) else "RGB"
    return a.convert(mode), b.convert(mode)


def _smooth(image: Image.Image, kind: str, radius: int) -> Image.Image:
    match kind:
        case "box":
            return image.filter(ImageFilter.BoxBlur(radius))
        case "gaussian":
            return image.filter(ImageFilter.GaussianBlur(radius))
        case "median":
            return image.filter(ImageFilter.MedianFilter(size=2 * radius + 1))
        case _:
            raise ValueError(f"Unknown smoothing filter: {kind}")


def _region_mask(regions: list[Region], width: int, height: int) -> Image.Image | None:
    if not regions:
        return None
    mask = Image.new("L", (width, height), 0)
    draw = ImageDraw.Draw(mask)
    for region in regions:
        box = region.clip(width, height)
        if box is None:
            continue
        left, top, right, bottom = box
        # ImageDraw rectangles are inclusive of the bottom-right corner
        draw.rectangle((left, top, right - 1, bottom - 1), fill=255)
    return mask


def _exact(value: float) -> Fraction:
    # repr gives the shortest decimal that round-trips, so 0.1 becomes 1/10
    return Fraction(repr(value))
