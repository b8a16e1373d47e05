from __future__ import annotations

import logging
import struct
import threading
import time
from typing import Callable

from .errors import BadRequestSize, MessageLost
from .service import FilterService
from .settings import SETTINGS_SIZE, Settings

logger = logging.getLogger(__name__)

WRITE_DELAY_MS = 1000.0


class ConfigChannel:
    """
    Read/write access to the active settings record.

    Writes are serialised against each other but never against motion
    processing. Each write first waits ``settle_delay_ms``; the pause narrows,
    without closing, the window in which in-flight batches can observe a
    half-rewritten LUT.
    """

    def __init__(
        self,
        service: FilterService,
        *,
        settle_delay_ms: float = WRITE_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.service = service
        self.settle_delay_ms = max(float(settle_delay_ms), 0.0)
        self._sleep = sleep
        self._write_lock = threading.Lock()
        self._writes = 0

    @property
    def writes(self) -> int:
        return self._writes

    def read(self, size: int = SETTINGS_SIZE) -> bytes:
        if size != SETTINGS_SIZE:
            logger.debug("Rejecting read with output size %d", size)
            raise BadRequestSize(SETTINGS_SIZE, size)
        return self.service.settings.pack()

    def write(self, buffer: bytes) -> None:
        if len(buffer) != SETTINGS_SIZE:
            logger.debug("Rejecting write with input size %d", len(buffer))
            raise BadRequestSize(SETTINGS_SIZE, len(buffer))
        with self._write_lock:
            self._settle()
            try:
                settings = Settings.unpack(bytes(buffer))
            except (struct.error, TypeError, ValueError) as exc:
                logger.debug("Unable to decode settings record: %s", exc)
                raise MessageLost(f"Unable to decode settings record: {exc}") from exc
            self._apply(settings)

    def get_settings(self) -> Settings:
        return self.service.settings

    def set_settings(self, settings: Settings) -> None:
        self.write(settings.pack())

    def _settle(self) -> None:
        if self.settle_delay_ms > 0:
            self._sleep(self.settle_delay_ms / 1000.0)

    def _apply(self, settings: Settings) -> None:
        normalized = settings.normalized()
        if normalized.time_min != settings.time_min:
            logger.warning(
                "Invalid time_min %r replaced with default %.3f ms",
                settings.time_min,
                normalized.time_min,
            )
        if normalized.rotation_degrees != settings.rotation_degrees:
            logger.warning("Non-finite rotation %r replaced with 0", settings.rotation_degrees)
        if normalized.sensitivity != settings.sensitivity:
            logger.warning(
                "Non-finite sensitivity %r replaced with %r",
                settings.sensitivity,
                normalized.sensitivity,
            )
        modifier = self.service.commit(normalized)
        self._writes += 1
        logger.info(
            "Applied settings generation=%d rotation=%.2f sens=(%.3f, %.3f) curves=(%s, %s)",
            modifier.generation,
            normalized.rotation_degrees,
            normalized.sensitivity[0],
            normalized.sensitivity[1],
            normalized.curve_x.kind.name,
            normalized.curve_y.kind.name,
        )
