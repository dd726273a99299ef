"""Parallel escape-time evaluation of a viewport, one worker per row band."""

from __future__ import annotations

import math
import queue
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterator, NamedTuple

import numpy as np

from . import recurrence
from .viewport import Viewport

BACKENDS = ("numpy", "tensorflow")


class EvaluationError(RuntimeError):
    """A band worker failed; the frame is abandoned."""


class PixelResult(NamedTuple):
    x: int
    y: int
    escapes: int


@dataclass(frozen=True)
class EvaluatorConfig:
    """Tunables for one evaluation call."""

    worker_count: int = 64
    stride: int = 1
    iteration_cap: int = 100
    backend: str = "numpy"
    clip_overshoot: bool = True

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1.")
        if self.stride < 1:
            raise ValueError("stride must be at least 1.")
        if self.iteration_cap < 1:
            raise ValueError("iteration_cap must be at least 1.")
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend '{self.backend}'. Valid choices: {', '.join(BACKENDS)}.")


@dataclass(frozen=True)
class Band:
    """A contiguous slice of pixel rows ``[start, stop)`` handled by one worker."""

    index: int
    start: int
    stop: int

    def rows(self, stride: int, limit: int | None = None) -> range:
        stop = self.stop if limit is None else min(self.stop, limit)
        return range(self.start, stop, stride)


def partition_rows(height: int, worker_count: int) -> list[Band]:
    """Split ``height`` rows into ``worker_count`` bands of ``ceil(height / worker_count)`` rows.

    The last bands may reach past ``height``; those rows are outside the frame.
    """

    if height < 0:
        raise ValueError("height must not be negative.")
    if worker_count < 1:
        raise ValueError("worker_count must be at least 1.")
    rows_per_band = math.ceil(height / worker_count)
    return [Band(i, i * rows_per_band, (i + 1) * rows_per_band) for i in range(worker_count)]


@dataclass
class FrameResult:
    """The unordered pixel results of one evaluation.

    ``pixels`` follows no particular order. When the evaluator ran with
    ``clip_overshoot=False`` it may also hold rows with ``y >= height``;
    :meth:`visible` leaves those out.
    """

    pixels: list[PixelResult]
    viewport: Viewport
    config: EvaluatorConfig
    width: int = field(init=False)
    height: int = field(init=False)

    def __post_init__(self) -> None:
        self.width, self.height = self.viewport.derive_resolution()

    def __len__(self) -> int:
        return len(self.pixels)

    def __iter__(self) -> Iterator[PixelResult]:
        return iter(self.pixels)

    def visible(self) -> list[PixelResult]:
        return [p for p in self.pixels if p.y < self.height]

    def sorted(self) -> list[PixelResult]:
        """Pixels in scan order, by ``(y, x)``."""

        return sorted(self.pixels, key=lambda p: (p.y, p.x))

    def to_grid(self) -> np.ndarray:
        """Escape counts as a ``(height, width)`` array; unsampled cells hold -1."""

        grid = np.full((self.height, self.width), -1, dtype=np.int64)
        for x, y, escapes in self.visible():
            grid[y, x] = escapes
        return grid


def _kernel_for(backend: str) -> Callable[[np.ndarray, np.ndarray, int], np.ndarray]:
    if backend == "tensorflow":
        from . import tf_kernel

        return tf_kernel.escape_counts
    return recurrence.escape_counts


def evaluate_band(viewport: Viewport, band: Band, config: EvaluatorConfig) -> list[PixelResult]:
    """Run the recurrence on every sampled pixel of ``band``."""

    width, height = viewport.derive_resolution()
    limit = height if config.clip_overshoot else None
    rows = band.rows(config.stride, limit)
    ys = np.arange(rows.start, rows.stop, rows.step, dtype=np.int64)
    xs = np.arange(0, width, config.stride, dtype=np.int64)
    if ys.size == 0 or xs.size == 0:
        return []

    grid_x, grid_y = np.meshgrid(xs, ys)
    real = np.float64(viewport.x_start) + grid_x / np.float64(width) * np.float64(viewport.x_extent)
    imag = np.float64(viewport.y_start) + grid_y / np.float64(height) * np.float64(viewport.y_extent)

    escapes = _kernel_for(config.backend)(real, imag, config.iteration_cap)
    return [
        PixelResult(int(x), int(y), int(n))
        for x, y, n in zip(grid_x.ravel(), grid_y.ravel(), np.asarray(escapes).ravel())
    ]


class Evaluator:
    """Evaluates frames on a persistent pool of ``config.worker_count`` threads.

    Each call submits one task per band and blocks until all of them have
    finished. Band outputs reach the caller through a single queue that every
    worker writes into.
    """

    def __init__(self, config: EvaluatorConfig | None = None):
        self.config = config or EvaluatorConfig()
        self._executor: ThreadPoolExecutor | None = ThreadPoolExecutor(
            max_workers=self.config.worker_count,
            thread_name_prefix="escapetime-band",
        )

    def __enter__(self) -> "Evaluator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def evaluate(self, viewport: Viewport) -> FrameResult:
        if self._executor is None:
            raise RuntimeError("Evaluator is closed.")

        config = self.config
        bands = partition_rows(viewport.screen_height, config.worker_count)
        results: queue.SimpleQueue[list[PixelResult]] = queue.SimpleQueue()

        def work(band: Band) -> None:
            results.put(evaluate_band(viewport, band, config))

        futures = [self._executor.submit(work, band) for band in bands]
        wait(futures)

        for future in futures:
            error = future.exception()
            if error is not None:
                raise EvaluationError(f"band worker failed: {error}") from error

        pixels: list[PixelResult] = []
        while True:
            try:
                pixels.extend(results.get_nowait())
            except queue.Empty:
                break
        return FrameResult(pixels=pixels, viewport=viewport, config=config)


def evaluate(viewport: Viewport, config: EvaluatorConfig | None = None) -> FrameResult:
    """Evaluate one frame on a thread pool created for this call alone."""

    with Evaluator(config) as evaluator:
        return evaluator.evaluate(viewport)
