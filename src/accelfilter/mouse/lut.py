from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .settings import CurveArgs, CurveKind, Settings

logger = logging.getLogger(__name__)

LUT_SIZE = 512
SPEED_MAX = 128.0  # counts per millisecond

_GAIN_KINDS = {CurveKind.NATURAL_GAIN, CurveKind.SIGMOID_GAIN}


def speed_grid(size: int = LUT_SIZE, speed_max: float = SPEED_MAX) -> np.ndarray:
    """Quadratically spaced speeds in ``[0, speed_max]``, denser near zero."""
    if size < 2:
        raise ValueError("LUT needs at least two samples")
    fractions = np.arange(size, dtype=float) / (size - 1)
    return speed_max * fractions**2


def build_curve(args: CurveArgs, speeds: np.ndarray) -> np.ndarray:
    """
    Evaluate the sensitivity multiplier of *args* at every speed in *speeds*.

    Gain-style curves describe the slope of output velocity; they are turned
    into a multiplier by averaging the gain over ``[0, v]``. A positive
    ``gain_cap`` bounds that slope for every kind before weighting.
    """
    speeds = np.asarray(speeds, dtype=float)
    x = np.maximum(speeds - args.offset, 0.0)
    kind = args.kind
    with np.errstate(all="ignore"):
        if kind is CurveKind.OFF:
            scale = np.ones_like(speeds)
        elif kind is CurveKind.LINEAR:
            scale = 1.0 + args.accel * x
        elif kind is CurveKind.CLASSIC:
            scale = 1.0 + np.power(args.accel * x, args.exponent - 1.0)
        elif kind is CurveKind.NATURAL:
            scale = 1.0 + (args.limit - 1.0) * (1.0 - np.exp(-args.accel * x))
        elif kind is CurveKind.POWER:
            scale = np.power(1.0 + args.power_scale * x, args.exponent)
        elif kind in _GAIN_KINDS:
            gain = _velocity_gain(args, speeds, x)
            if args.gain_cap > 0:
                gain = np.minimum(gain, args.gain_cap)
            scale = _integrate_gain(gain, speeds)
        else:  # pragma: no cover - CurveKind is exhaustive
            raise ValueError(f"Unsupported curve kind {kind!r}")
        if args.gain_cap > 0 and kind not in _GAIN_KINDS:
            scale = _cap_velocity_gain(scale, speeds, args.gain_cap)
        scale = 1.0 + args.weight * (scale - 1.0)
        if args.scale_cap > 0:
            scale = np.minimum(scale, args.scale_cap)
    return scale


def _velocity_gain(args: CurveArgs, speeds: np.ndarray, x: np.ndarray) -> np.ndarray:
    if args.kind is CurveKind.NATURAL_GAIN:
        return 1.0 + (args.limit - 1.0) * (1.0 - np.exp(-args.accel * x))
    return 1.0 + (args.limit - 1.0) / (1.0 + np.exp(-args.accel * (speeds - args.midpoint)))


def _cap_velocity_gain(scale: np.ndarray, speeds: np.ndarray, gain_cap: float) -> np.ndarray:
    """Limit the slope of ``v * scale`` to *gain_cap* and convert back to a multiplier."""
    if speeds.size < 2:
        return scale
    gain = np.gradient(speeds * scale, speeds)
    if not np.any(gain > gain_cap):
        return scale
    return _integrate_gain(np.minimum(gain, gain_cap), speeds)


def _integrate_gain(gain: np.ndarray, speeds: np.ndarray) -> np.ndarray:
    increments = 0.5 * (gain[1:] + gain[:-1]) * np.diff(speeds)
    area = np.concatenate(([0.0], np.cumsum(increments)))
    return np.where(speeds > 0, area / np.where(speeds > 0, speeds, 1.0), gain[0])


def _sanitize(scale: np.ndarray, axis: str) -> np.ndarray:
    bad = ~np.isfinite(scale)
    with np.errstate(invalid="ignore"):
        negative = scale < 0
    if bad.any() or negative.any():
        logger.warning(
            "Curve for axis %s produced %d non-finite and %d negative samples; clamping",
            axis,
            int(bad.sum()),
            int(np.count_nonzero(negative & ~bad)),
        )
        scale = np.where(bad, 1.0, scale)
        scale = np.maximum(scale, 0.0)
    return scale


def _allocate(size: int) -> np.ndarray:
    return np.zeros((size, 2), dtype=float)


class LutPair:
    """
    Per-axis (speed, gain) tables, allocated once and rewritten in place.

    A failed allocation leaves the pair degraded: the service keeps running,
    but acceleration becomes inert because there is nothing to interpolate.
    """

    def __init__(self, size: int = LUT_SIZE, speed_max: float = SPEED_MAX) -> None:
        self.size = size
        self.speed_max = speed_max
        self.populated = False
        self.x: Optional[np.ndarray]
        self.y: Optional[np.ndarray]
        try:
            self.x = _allocate(size)
            self.y = _allocate(size)
        except MemoryError:
            logger.error("Failed to allocate LUT (%d samples per axis); acceleration disabled", size)
            self.x = None
            self.y = None

    @property
    def degraded(self) -> bool:
        return self.x is None or self.y is None

    def populate(self, settings: Settings) -> None:
        if self.degraded:
            logger.warning("LUT unavailable, skipping regeneration")
            return
        speeds = speed_grid(self.size, self.speed_max)
        staged = []
        for axis, args in zip("xy", settings.curves):
            table = np.empty((self.size, 2), dtype=float)
            table[:, 0] = speeds
            table[:, 1] = _sanitize(build_curve(args, speeds), axis)
            staged.append(table)
        # Live buffers are only touched once both axes evaluated.
        np.copyto(self.x, staged[0])
        np.copyto(self.y, staged[1])
        self.populated = True

    def evaluate(self, axis: int, speed: float) -> float:
        table = self.x if axis == 0 else self.y
        if table is None:
            return 1.0
        return float(np.interp(speed, table[:, 0], table[:, 1]))
