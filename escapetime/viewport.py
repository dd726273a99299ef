"""The visible rectangle of the complex plane and its pixel mapping."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace

import numpy as np

ZOOM_IN = 1.25
ZOOM_OUT = 0.75


@dataclass(frozen=True)
class Viewport:
    """Plane bounds plus the plane-to-pixel scale.

    The screen resolution is never stored: it is always derived from the
    bounds and ``pixels_per_unit``.
    """

    x_start: float
    x_stop: float
    y_start: float
    y_stop: float
    pixels_per_unit: float

    def __post_init__(self) -> None:
        values = (self.x_start, self.x_stop, self.y_start, self.y_stop, self.pixels_per_unit)
        if not all(math.isfinite(v) for v in values):
            raise ValueError("viewport bounds and scale must be finite.")
        if self.x_stop <= self.x_start:
            raise ValueError(f"x_stop ({self.x_stop}) must be greater than x_start ({self.x_start}).")
        if self.y_stop <= self.y_start:
            raise ValueError(f"y_stop ({self.y_stop}) must be greater than y_start ({self.y_start}).")
        if self.pixels_per_unit <= 0:
            raise ValueError("pixels_per_unit must be positive.")
        width, height = self.derive_resolution()
        if width < 1 or height < 1:
            raise ValueError(f"viewport resolves to an empty {width}x{height} pixel grid.")

    @property
    def x_extent(self) -> float:
        return self.x_stop - self.x_start

    @property
    def y_extent(self) -> float:
        return self.y_stop - self.y_start

    @property
    def screen_width(self) -> int:
        return self.derive_resolution()[0]

    @property
    def screen_height(self) -> int:
        return self.derive_resolution()[1]

    def derive_resolution(self) -> tuple[int, int]:
        """Return ``(width, height)`` in pixels for the current bounds and scale."""

        width = int(round(np.float64(self.pixels_per_unit) * np.float64(self.x_extent)))
        height = int(round(np.float64(self.pixels_per_unit) * np.float64(self.y_extent)))
        return width, height

    def pixel_to_plane(self, x: float, y: float) -> tuple[float, float]:
        width, height = self.derive_resolution()
        real = np.float64(self.x_start) + np.float64(x) / np.float64(width) * np.float64(self.x_extent)
        imag = np.float64(self.y_start) + np.float64(y) / np.float64(height) * np.float64(self.y_extent)
        return float(real), float(imag)

    def plane_to_pixel(self, real: float, imag: float) -> tuple[float, float]:
        width, height = self.derive_resolution()
        x = (np.float64(real) - np.float64(self.x_start)) / np.float64(self.x_extent) * np.float64(width)
        y = (np.float64(imag) - np.float64(self.y_start)) / np.float64(self.y_extent) * np.float64(height)
        return float(x), float(y)

    def zoom(self, factor: float, focal_screen_point: tuple[float, float]) -> "Viewport":
        return zoom(self, factor, focal_screen_point)


def zoom(viewport: Viewport, factor: float, focal_screen_point: tuple[float, float]) -> Viewport:
    """Derive the viewport seen after zooming by ``factor`` about a screen point.

    ``factor > 1`` zooms in and ``factor < 1`` zooms out. The plane point under
    ``focal_screen_point`` stays under the same pixel, and the on-screen
    resolution is unchanged: only the plane-to-pixel scale moves.
    """

    if not math.isfinite(factor) or factor <= 0:
        raise ValueError(f"zoom factor must be a positive number, got {factor!r}.")
    px, py = focal_screen_point
    if not (math.isfinite(px) and math.isfinite(py)):
        raise ValueError("focal point must have finite coordinates.")

    width, height = viewport.derive_resolution()
    focus_real, focus_imag = viewport.pixel_to_plane(px, py)

    x_extent = np.float64(viewport.x_extent) / np.float64(factor)
    y_extent = np.float64(viewport.y_extent) / np.float64(factor)
    if not (np.isfinite(x_extent) and np.isfinite(y_extent)) or x_extent <= 0 or y_extent <= 0:
        raise ValueError(f"zoom by {factor!r} leaves the representable range of the plane.")

    x_start = np.float64(focus_real) - np.float64(px) / np.float64(width) * x_extent
    y_start = np.float64(focus_imag) - np.float64(py) / np.float64(height) * y_extent

    zoomed = replace(
        viewport,
        x_start=float(x_start),
        x_stop=float(x_start + x_extent),
        y_start=float(y_start),
        y_stop=float(y_start + y_extent),
        pixels_per_unit=float(np.float64(viewport.pixels_per_unit) * np.float64(factor)),
    )
    # Bounds this close together lose the low bits of their extent.
    if zoomed.derive_resolution() != (width, height):
        raise ValueError(
            f"zoom by {factor!r} exceeds double precision: the view would resolve to "
            f"{zoomed.derive_resolution()} instead of {(width, height)} pixels."
        )
    return zoomed
