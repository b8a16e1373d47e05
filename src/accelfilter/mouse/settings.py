from __future__ import annotations

import enum
import logging
import math
import struct
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TIME_MIN = 0.4  # ms
TIME_MAX = 100.0  # ms, upper clamp regardless of configuration

_HEADER_FORMAT = "4d"
_CURVE_FORMAT = "i9d"
SETTINGS_FORMAT = "<" + _HEADER_FORMAT + _CURVE_FORMAT + _CURVE_FORMAT
SETTINGS_SIZE = struct.calcsize(SETTINGS_FORMAT)


class CurveKind(enum.IntEnum):
    OFF = 0
    LINEAR = 1
    CLASSIC = 2
    NATURAL = 3
    POWER = 4
    NATURAL_GAIN = 5
    SIGMOID_GAIN = 6

    @classmethod
    def parse(cls, value: Any) -> "CurveKind":
        if isinstance(value, CurveKind):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace("-", "_")
            if key.isdigit():
                return cls(int(key))
            try:
                return cls[key]
            except KeyError as exc:
                raise ValueError(f"Unknown curve kind '{value}'") from exc
        return cls(int(value))


@dataclass(frozen=True)
class CurveArgs:
    kind: CurveKind = CurveKind.OFF
    accel: float = 0.0
    offset: float = 0.0
    limit: float = 1.5
    exponent: float = 2.0
    midpoint: float = 5.0
    power_scale: float = 1.0
    scale_cap: float = 0.0
    weight: float = 1.0
    gain_cap: float = 0.0

    def values(self) -> Tuple[Any, ...]:
        return (
            int(self.kind),
            self.accel,
            self.offset,
            self.limit,
            self.exponent,
            self.midpoint,
            self.power_scale,
            self.scale_cap,
            self.weight,
            self.gain_cap,
        )

    @staticmethod
    def from_values(values: Tuple[Any, ...]) -> "CurveArgs":
        code, *coefficients = values
        try:
            kind = CurveKind(code)
        except ValueError:
            logger.warning("Unknown curve kind code %s, falling back to OFF", code)
            kind = CurveKind.OFF
        return CurveArgs(kind, *(float(value) for value in coefficients))

    @staticmethod
    def from_mapping(data: Mapping[str, Any], base: "CurveArgs | None" = None) -> "CurveArgs":
        base = base or CurveArgs()
        unknown = set(data) - {
            "kind",
            "accel",
            "offset",
            "limit",
            "exponent",
            "midpoint",
            "power_scale",
            "scale_cap",
            "weight",
            "gain_cap",
        }
        if unknown:
            raise ValueError(f"Unknown curve fields: {sorted(unknown)}")
        return CurveArgs(
            kind=CurveKind.parse(data.get("kind", base.kind)),
            accel=float(data.get("accel", base.accel)),
            offset=float(data.get("offset", base.offset)),
            limit=float(data.get("limit", base.limit)),
            exponent=float(data.get("exponent", base.exponent)),
            midpoint=float(data.get("midpoint", base.midpoint)),
            power_scale=float(data.get("power_scale", base.power_scale)),
            scale_cap=float(data.get("scale_cap", base.scale_cap)),
            weight=float(data.get("weight", base.weight)),
            gain_cap=float(data.get("gain_cap", base.gain_cap)),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.name.lower(),
            "accel": self.accel,
            "offset": self.offset,
            "limit": self.limit,
            "exponent": self.exponent,
            "midpoint": self.midpoint,
            "power_scale": self.power_scale,
            "scale_cap": self.scale_cap,
            "weight": self.weight,
            "gain_cap": self.gain_cap,
        }


@dataclass(frozen=True)
class Settings:
    """
    Complete set of transform parameters. Instances are immutable and are
    replaced wholesale by the configuration channel, never edited in place.
    """

    rotation_degrees: float = 0.0
    sensitivity: Tuple[float, float] = (1.0, 1.0)
    time_min: float = DEFAULT_TIME_MIN
    curve_x: CurveArgs = field(default_factory=CurveArgs)
    curve_y: CurveArgs = field(default_factory=CurveArgs)

    @property
    def curves(self) -> Tuple[CurveArgs, CurveArgs]:
        return self.curve_x, self.curve_y

    def pack(self) -> bytes:
        return struct.pack(
            SETTINGS_FORMAT,
            self.rotation_degrees,
            self.sensitivity[0],
            self.sensitivity[1],
            self.time_min,
            *self.curve_x.values(),
            *self.curve_y.values(),
        )

    @staticmethod
    def unpack(buffer: bytes) -> "Settings":
        if len(buffer) != SETTINGS_SIZE:
            raise ValueError(f"Settings record must be {SETTINGS_SIZE} bytes, got {len(buffer)}")
        values = struct.unpack(SETTINGS_FORMAT, buffer)
        rotation, sens_x, sens_y, time_min = values[:4]
        width = len(CurveArgs().values())
        curve_x = CurveArgs.from_values(values[4 : 4 + width])
        curve_y = CurveArgs.from_values(values[4 + width : 4 + 2 * width])
        return Settings(
            rotation_degrees=rotation,
            sensitivity=(sens_x, sens_y),
            time_min=time_min,
            curve_x=curve_x,
            curve_y=curve_y,
        )

    def normalized(self) -> "Settings":
        """
        Return a copy safe for the motion path: an unusable ``time_min`` takes
        the default, a non-finite rotation becomes 0 and a non-finite
        sensitivity becomes 1. Returns ``self`` when nothing needed fixing.
        """
        changes: Dict[str, Any] = {}
        if not (math.isfinite(self.time_min) and self.time_min > 0):
            changes["time_min"] = DEFAULT_TIME_MIN
        if not math.isfinite(self.rotation_degrees):
            changes["rotation_degrees"] = 0.0
        if not all(math.isfinite(value) for value in self.sensitivity):
            changes["sensitivity"] = tuple(
                value if math.isfinite(value) else 1.0 for value in self.sensitivity
            )
        if not changes:
            return self
        return replace(self, **changes)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "rotation_degrees": self.rotation_degrees,
            "sensitivity": list(self.sensitivity),
            "time_min": self.time_min,
            "curve_x": self.curve_x.as_dict(),
            "curve_y": self.curve_y.as_dict(),
        }


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    """
    Build :class:`Settings` from a JSON-style mapping.

    ``curve`` applies to both axes; ``curve_x`` / ``curve_y`` refine one axis on
    top of it. ``sensitivity`` may be a single number or an ``[x, y]`` pair.
    """
    defaults = Settings()
    sensitivity = data.get("sensitivity", defaults.sensitivity)
    if isinstance(sensitivity, (int, float)):
        sens_pair = (float(sensitivity), float(sensitivity))
    else:
        values = list(sensitivity)
        if len(values) != 2:
            raise ValueError("sensitivity must be a number or an [x, y] pair")
        sens_pair = (float(values[0]), float(values[1]))
    shared = CurveArgs.from_mapping(data.get("curve") or {})
    curve_x = CurveArgs.from_mapping(data.get("curve_x") or {}, base=shared)
    curve_y = CurveArgs.from_mapping(data.get("curve_y") or {}, base=shared)
    return Settings(
        rotation_degrees=float(data.get("rotation_degrees", defaults.rotation_degrees)),
        sensitivity=sens_pair,
        time_min=float(data.get("time_min", defaults.time_min)),
        curve_x=curve_x,
        curve_y=curve_y,
    )
