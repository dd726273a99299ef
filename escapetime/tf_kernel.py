"""TensorFlow band kernel for the escape-time recurrence."""

from __future__ import annotations

import numpy as np
import tensorflow as tf

from .recurrence import ESCAPE_THRESHOLD


@tf.function
def _escape_step(
    i: tf.Tensor,
    z_real: tf.Tensor,
    z_imag: tf.Tensor,
    c_real: tf.Tensor,
    c_imag: tf.Tensor,
    escapes: tf.Tensor,
    active: tf.Tensor,
) -> tuple[tf.Tensor, tf.Tensor, tf.Tensor, tf.Tensor]:
    """Record escapes at iteration ``i`` and advance the points still orbiting."""

    magnitude = z_real * z_real + z_imag * z_imag
    threshold = tf.cast(ESCAPE_THRESHOLD, magnitude.dtype)
    escaped = tf.logical_and(active, magnitude > threshold)
    escapes = tf.where(escaped, tf.fill(tf.shape(escapes), i), escapes)
    active = tf.logical_and(active, tf.logical_not(escaped))

    next_real = z_real * z_real - z_imag * z_imag + c_real
    next_imag = (z_real + z_real) * z_imag + c_imag
    z_real = tf.where(active, next_real, z_real)
    z_imag = tf.where(active, next_imag, z_imag)
    return z_real, z_imag, escapes, active


@tf.function(reduce_retracing=True)
def _escape_run(c_real: tf.Tensor, c_imag: tf.Tensor, iteration_cap: tf.Tensor) -> tf.Tensor:
    """Iterate until every point escaped or the cap is reached."""

    iteration_cap = tf.cast(iteration_cap, tf.int64)
    i = tf.constant(0, dtype=tf.int64)
    z_real = tf.zeros_like(c_real)
    z_imag = tf.zeros_like(c_imag)
    escapes = tf.zeros(tf.shape(c_real), dtype=tf.int64)
    active = tf.ones(tf.shape(c_real), dtype=tf.bool)

    def cond(i, z_real, z_imag, escapes, active):
        return tf.logical_and(tf.less(i, iteration_cap), tf.reduce_any(active))

    def body(i, z_real, z_imag, escapes, active):
        z_real, z_imag, escapes, active = _escape_step(i, z_real, z_imag, c_real, c_imag, escapes, active)
        return i + 1, z_real, z_imag, escapes, active

    _, _, _, escapes, _ = tf.while_loop(cond, body, (i, z_real, z_imag, escapes, active))
    return escapes


def escape_counts(real: np.ndarray, imag: np.ndarray, iteration_cap: int, *, device: str = "/CPU:0") -> np.ndarray:
    """TensorFlow counterpart of :func:`escapetime.recurrence.escape_counts`."""

    real, imag = np.broadcast_arrays(np.asarray(real, dtype=np.float64), np.asarray(imag, dtype=np.float64))
    if real.size == 0:
        return np.zeros(real.shape, dtype=np.int64)
    with tf.device(device):
        c_real = tf.convert_to_tensor(real, dtype=tf.float64)
        c_imag = tf.convert_to_tensor(imag, dtype=tf.float64)
        escapes = _escape_run(c_real, c_imag, tf.constant(iteration_cap, dtype=tf.int64))
    return escapes.numpy()
