"""Captured screen image."""

from __future__ import annotations

import io
import time
from pathlib import Path

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, model_validator

# bits per pixel -> Pillow mode
_MODES = {8: "L", 24: "RGB", 32: "RGBA"}
_DEPTHS = {mode: depth for depth, mode in _MODES.items()}


class Screenshot(BaseModel):
    """Raw pixel buffer plus geometry. Row-major, tightly packed."""

    model_config = ConfigDict(frozen=True)

    pixels: bytes = Field(repr=False)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    color_depth: int = 32  # bits per pixel: 8 (L), 24 (RGB), 32 (RGBA)
    captured_at: str = Field(default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%SZ"))

    @model_validator(mode="after")
    def _check_buffer(self) -> "Screenshot":
        if self.color_depth not in _MODES:
            raise ValueError(f"Unsupported color depth: {self.color_depth}")
        expected = self.width * self.height * (self.color_depth // 8)
        if len(self.pixels) != expected:
            raise ValueError(
                f"Pixel buffer is {len(self.pixels)} bytes, expected {expected} "
                f"for {self.width}x{self.height}@{self.color_depth}bpp"
            )
        return self

    @property
    def mode(self) -> str:
        return _MODES[self.color_depth]

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def to_image(self) -> Image.Image:
        return Image.frombytes(self.mode, self.size, self.pixels)

    def to_png_bytes(self) -> bytes:
        buf = io.BytesIO()
        self.to_image().save(buf, format="PNG")
        return buf.getvalue()

    def save_png(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_image().save(path, format="PNG")
        return path

    @classmethod
    def from_image(cls, image: Image.Image, captured_at: str | None = None) -> "Screenshot":
        """Build a Screenshot from a Pillow image, converting exotic modes."""
        if image.mode not in _DEPTHS:
            has_alpha = "A" in image.getbands() or "transparency" in image.info
            image = image.convert("RGBA" if has_alpha else "RGB")
        kwargs = {}
        if captured_at:
            kwargs["captured_at"] = captured_at
        return cls(
            pixels=image.tobytes(),
            width=image.width,
            height=image.height,
            color_depth=_DEPTHS[image.mode],
            **kwargs,
        )

    @classmethod
    def from_png(cls, source: str | Path | bytes, captured_at: str | None = None) -> "Screenshot":
        if isinstance(source, bytes):
            with Image.open(io.BytesIO(source)) as img:
                img.load()
                return cls.from_image(img, captured_at)
        with Image.open(source) as img:
            img.load()
            return cls.from_image(img, captured_at)

    @classmethod
    def solid(cls, width: int, height: int, color: tuple[int, ...] = (255, 255, 255, 255)) -> "Screenshot":
        """Single-colour image; handy for fixtures and placeholder baselines."""
        mode = {1: "L", 3: "RGB", 4: "RGBA"}[len(color)]
        return cls.from_image(Image.new(mode, (width, height), color if len(color) > 1 else color[0]))
