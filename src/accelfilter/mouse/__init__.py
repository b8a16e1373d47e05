"""
Pointer motion filter: rotation, speed-dependent acceleration and
sensitivity applied to raw relative motion reports.

The subpackage exposes the settings record, the shared filter service, the
per-source stream filter, the configuration channel and the host helpers
that feed it from a serial link or stdin.
"""

from .config import FilterConfig, HostRuntime, load_config, load_settings_file
from .control import WRITE_DELAY_MS, ConfigChannel
from .errors import (
    BadRequestSize,
    FilterError,
    MessageLost,
    NotConnected,
    NotSupported,
    SharingViolation,
)
from .lut import LutPair, build_curve
from .modifier import MouseModifier
from .packets import FrameFormat, PacketParser, crc16_ccitt, encode_packet
from .service import FilterService, TimeBase
from .settings import (
    DEFAULT_TIME_MIN,
    SETTINGS_SIZE,
    TIME_MAX,
    CurveArgs,
    CurveKind,
    Settings,
    settings_from_mapping,
)
from .sink import CsvLogger, SampleSink
from .stream import MOUSE_MOVE_ABSOLUTE, MotionSample, MotionStream

__all__ = [
    "FilterConfig",
    "HostRuntime",
    "load_config",
    "load_settings_file",
    "WRITE_DELAY_MS",
    "ConfigChannel",
    "BadRequestSize",
    "FilterError",
    "MessageLost",
    "NotConnected",
    "NotSupported",
    "SharingViolation",
    "LutPair",
    "build_curve",
    "MouseModifier",
    "FrameFormat",
    "PacketParser",
    "crc16_ccitt",
    "encode_packet",
    "FilterService",
    "TimeBase",
    "DEFAULT_TIME_MIN",
    "SETTINGS_SIZE",
    "TIME_MAX",
    "CurveArgs",
    "CurveKind",
    "Settings",
    "settings_from_mapping",
    "CsvLogger",
    "SampleSink",
    "MOUSE_MOVE_ABSOLUTE",
    "MotionSample",
    "MotionStream",
]
