"""Public API for parallel escape-time evaluation."""

from .evaluator import (
    Band,
    EvaluationError,
    Evaluator,
    EvaluatorConfig,
    FrameResult,
    PixelResult,
    evaluate,
    evaluate_band,
    partition_rows,
)
from .recurrence import ESCAPE_THRESHOLD, Complex, escape_count, escape_counts
from .viewport import ZOOM_IN, ZOOM_OUT, Viewport, zoom

__all__ = [
    "Band",
    "Complex",
    "ESCAPE_THRESHOLD",
    "EvaluationError",
    "Evaluator",
    "EvaluatorConfig",
    "FrameResult",
    "PixelResult",
    "Viewport",
    "ZOOM_IN",
    "ZOOM_OUT",
    "escape_count",
    "escape_counts",
    "evaluate",
    "evaluate_band",
    "partition_rows",
    "zoom",
]
