from __future__ import annotations

import math
from typing import Callable, Optional, Tuple

from .lut import LutPair
from .settings import TIME_MAX, CurveKind, Settings

TimeSupplier = Callable[[], float]
Vector = Tuple[float, float]


class MouseModifier:
    """
    Rotation, acceleration and sensitivity stages built from one settings
    snapshot. A modifier never changes after construction; the configuration
    channel publishes a fresh instance instead.
    """

    def __init__(self, settings: Settings, lookups: LutPair, generation: int = 0) -> None:
        self.settings = settings
        self.lookups = lookups
        self.generation = generation

        radians = math.radians(settings.rotation_degrees)
        self.apply_rotate = settings.rotation_degrees != 0.0
        self._cos = math.cos(radians)
        self._sin = math.sin(radians)

        self._accel_axes = tuple(args.kind is not CurveKind.OFF for args in settings.curves)
        self.apply_accel = any(self._accel_axes) and lookups.populated and not lookups.degraded

        self._sens = settings.sensitivity
        self.apply_sens = settings.sensitivity != (1.0, 1.0)

    def clamp_time(self, time_ms: float) -> float:
        return min(max(time_ms, self.settings.time_min), TIME_MAX)

    def apply_rotation(self, x: float, y: float) -> Vector:
        if not self.apply_rotate:
            return x, y
        return x * self._cos - y * self._sin, x * self._sin + y * self._cos

    def apply_acceleration(self, x: float, y: float, time_supplier: TimeSupplier) -> Vector:
        if not self.apply_accel:
            return x, y
        time_ms = time_supplier()
        speed = math.hypot(x, y) / time_ms
        gain_x = self.lookups.evaluate(0, speed) if self._accel_axes[0] else 1.0
        gain_y = self.lookups.evaluate(1, speed) if self._accel_axes[1] else 1.0
        return x * gain_x, y * gain_y

    def apply_sensitivity(self, x: float, y: float) -> Vector:
        if not self.apply_sens:
            return x, y
        return x * self._sens[0], y * self._sens[1]

    def modify(self, x: float, y: float, time_supplier: Optional[TimeSupplier] = None) -> Vector:
        """Run every stage; acceleration only when a time supplier is given."""
        x, y = self.apply_rotation(x, y)
        if time_supplier is not None:
            x, y = self.apply_acceleration(x, y, time_supplier)
        return self.apply_sensitivity(x, y)
