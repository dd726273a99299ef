import math

import numpy as np
import pytest

import escapetime.evaluator as evaluator_module
from escapetime import (
    Complex,
    EvaluationError,
    Evaluator,
    EvaluatorConfig,
    Viewport,
    escape_count,
    evaluate,
    partition_rows,
)


def _coords(frame):
    return [(p.x, p.y) for p in frame]


def test_partition_covers_every_row():
    bands = partition_rows(800, 64)
    assert len(bands) == 64
    assert bands[0].start == 0
    for previous, band in zip(bands, bands[1:]):
        assert band.start == previous.stop
        assert band.stop - band.start == 13
    assert bands[-1].stop >= 800


def test_partition_may_overshoot_bottom_edge():
    bands = partition_rows(10, 4)
    assert [(b.start, b.stop) for b in bands] == [(0, 3), (3, 6), (6, 9), (9, 12)]
    assert list(bands[-1].rows(1, limit=10)) == [9]


def test_partition_with_more_workers_than_rows():
    bands = partition_rows(3, 8)
    assert [(b.start, b.stop) for b in bands[:4]] == [(0, 1), (1, 2), (2, 3), (3, 4)]
    assert all(not b.rows(1, limit=3) for b in bands[3:])


@pytest.mark.parametrize("kwargs", [{"worker_count": 0}, {"stride": 0}, {"iteration_cap": 0}, {"backend": "cuda"}])
def test_config_validation(kwargs):
    with pytest.raises(ValueError):
        EvaluatorConfig(**kwargs)


def test_default_config():
    config = EvaluatorConfig()
    assert (config.worker_count, config.stride, config.iteration_cap) == (64, 1, 100)


def test_full_grid_exactly_once(small_viewport, small_config):
    frame = evaluate(small_viewport, small_config)

    coords = _coords(frame)
    assert len(coords) == len(set(coords))
    assert set(coords) == {(x, y) for x in range(50) for y in range(40)}
    assert (frame.width, frame.height) == (50, 40)


def test_escape_counts_within_cap(small_viewport, small_config):
    frame = evaluate(small_viewport, small_config)
    assert all(0 <= p.escapes <= small_config.iteration_cap - 1 for p in frame)
    assert any(p.escapes == 0 for p in frame)
    assert any(p.escapes > 0 for p in frame)


def test_counts_match_pixel_mapping(small_viewport, small_config):
    frame = evaluate(small_viewport, small_config)
    for p in frame:
        c = Complex(*small_viewport.pixel_to_plane(p.x, p.y))
        assert p.escapes == escape_count(c, small_config.iteration_cap)


def test_evaluation_is_deterministic(small_viewport, small_config):
    with Evaluator(small_config) as evaluator:
        first = evaluator.evaluate(small_viewport).sorted()
        second = evaluator.evaluate(small_viewport).sorted()
    assert first == second


def test_origin_pixel_is_in_set():
    # (-1, 1) spans two units each way, so pixel (10, 10) sits on c = 0.
    viewport = Viewport(-1.0, 1.0, -1.0, 1.0, 10.0)
    frame = evaluate(viewport, EvaluatorConfig(worker_count=3, iteration_cap=100))
    by_coord = {(p.x, p.y): p.escapes for p in frame}
    assert by_coord[(10, 10)] == 0
    assert by_coord[(0, 0)] > 0


def test_stride_samples_every_nth_pixel():
    viewport = Viewport(-3.0, 2.0, -2.0, 2.0, 10.0)
    config = EvaluatorConfig(worker_count=4, stride=2, iteration_cap=30)
    frame = evaluate(viewport, config)

    assert len(frame) == math.ceil(40 / 2) * math.ceil(50 / 2)
    assert all(p.x % 2 == 0 and p.y % 2 == 0 for p in frame)


def test_stride_is_relative_to_band_origin():
    viewport = Viewport(-3.0, 2.0, -2.0, 2.0, 10.0)
    config = EvaluatorConfig(worker_count=3, stride=3, iteration_cap=30)
    frame = evaluate(viewport, config)
    bands = partition_rows(40, 3)

    expected = sum(len(b.rows(3, limit=40)) for b in bands) * math.ceil(50 / 3)
    assert len(frame) == expected
    for p in frame:
        assert p.x % 3 == 0
        band = next(b for b in bands if b.start <= p.y < b.stop)
        assert (p.y - band.start) % 3 == 0


def test_overshoot_rows_are_emitted_when_not_clipped(small_viewport):
    config = EvaluatorConfig(worker_count=6, iteration_cap=20, clip_overshoot=False)
    frame = evaluate(small_viewport, config)

    # ceil(40 / 6) = 7 rows per band, 42 rows in total.
    assert len(frame) == 42 * 50
    assert max(p.y for p in frame) == 41
    assert len(frame.visible()) == 40 * 50
    assert all(p.y < 40 for p in frame.visible())


def test_overshoot_rows_are_clipped_by_default(small_viewport):
    frame = evaluate(small_viewport, EvaluatorConfig(worker_count=6, iteration_cap=20))
    assert len(frame) == 40 * 50
    assert frame.visible() == frame.pixels


def test_sorted_is_scan_order(small_viewport, small_config):
    frame = evaluate(small_viewport, small_config)
    ordered = frame.sorted()
    assert [(p.y, p.x) for p in ordered] == sorted((p.y, p.x) for p in frame)


def test_to_grid_marks_unsampled_cells():
    viewport = Viewport(-3.0, 2.0, -2.0, 2.0, 10.0)
    frame = evaluate(viewport, EvaluatorConfig(worker_count=4, stride=2, iteration_cap=30))
    grid = frame.to_grid()

    assert grid.shape == (40, 50)
    assert np.all(grid[::2, ::2] >= 0)
    assert np.all(grid[1::2, :] == -1)
    assert np.all(grid[:, 1::2] == -1)


def test_worker_failure_fails_the_whole_frame(small_viewport, small_config, monkeypatch):
    original = evaluator_module.evaluate_band

    def flaky(viewport, band, config):
        if band.index == 2:
            raise MemoryError("band 2 ran out of memory")
        return original(viewport, band, config)

    monkeypatch.setattr(evaluator_module, "evaluate_band", flaky)

    with pytest.raises(EvaluationError) as excinfo:
        evaluate(small_viewport, small_config)
    assert isinstance(excinfo.value.__cause__, MemoryError)


def test_evaluator_is_reusable_across_frames(small_viewport, small_config):
    with Evaluator(small_config) as evaluator:
        first = evaluator.evaluate(small_viewport)
        zoomed = small_viewport.zoom(1.25, (25.0, 20.0))
        second = evaluator.evaluate(zoomed)
    assert len(first) == len(second) == 50 * 40
    assert second.viewport is zoomed


def test_closed_evaluator_refuses_work(small_viewport, small_config):
    evaluator = Evaluator(small_config)
    evaluator.close()
    with pytest.raises(RuntimeError):
        evaluator.evaluate(small_viewport)
