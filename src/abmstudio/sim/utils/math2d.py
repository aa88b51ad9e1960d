from __future__ import annotations

import math


def _scale_to_length_xy(x: float, y: float, length: float) -> tuple[float, float]:
    magnitude_sq = x * x + y * y
    if magnitude_sq <= 1e-18:
        return 0.0, 0.0
    inv = length / math.sqrt(magnitude_sq)
    return x * inv, y * inv


def _rotate_xy(x: float, y: float, radians: float) -> tuple[float, float]:
    cos_a = math.cos(radians)
    sin_a = math.sin(radians)
    return x * cos_a - y * sin_a, x * sin_a + y * cos_a


def _heading_from_xy(x: float, y: float) -> float | None:
    if x * x + y * y < 1e-12:
        return None
    return math.atan2(y, x)


def _clamp_value(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(max_value, value))


def _torus_delta(delta: float, extent: float) -> float:
    # Shortest signed offset on a ring of the given circumference.
    half = extent * 0.5
    if delta > half:
        return delta - extent
    if delta < -half:
        return delta + extent
    return delta


def _wrap(value: float, extent: float) -> float:
    if extent <= 0:
        return value
    wrapped = value % extent
    # -1e-17 % 100.0 == 100.0 in floating point
    if wrapped >= extent:
        wrapped = 0.0
    return wrapped


def _fold(value: float, velocity: float, extent: float) -> tuple[float, float]:
    # Mirror into [0, extent]; an odd number of wall hits reverses the velocity.
    if extent <= 0:
        return 0.0, velocity
    if 0.0 <= value <= extent:
        return value, velocity
    period = 2.0 * extent
    folded = value % period
    if folded > extent:
        folded = period - folded
    if (value // extent) % 2:
        velocity = -velocity
    return folded, velocity


def _reflect(
    x: float, y: float, vx: float, vy: float, width: float, height: float
) -> tuple[float, float, float, float]:
    x, vx = _fold(x, vx, width)
    y, vy = _fold(y, vy, height)
    return x, y, vx, vy
