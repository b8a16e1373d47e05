from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .lut import LUT_SIZE, LutPair
from .modifier import MouseModifier
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeBase:
    """Monotonic counter plus the factor converting its ticks to milliseconds."""

    counter: Callable[[], int]
    tick_interval_ms: float

    @staticmethod
    def system() -> "TimeBase":
        return TimeBase(counter=time.perf_counter_ns, tick_interval_ms=1e-6)

    def now(self) -> int:
        return self.counter()


class FilterService:
    """
    Process-wide filter state shared by every stream and the config channel.

    Readers grab ``modifier`` once per batch without locking. Writers go
    through :meth:`commit`, which the channel serialises; publishing is a
    single attribute assignment, so a reader sees either the old or the new
    modifier (the LUT contents may already be new while an old modifier is
    still in use).
    """

    def __init__(
        self,
        *,
        timebase: Optional[TimeBase] = None,
        lut_size: int = LUT_SIZE,
        settings: Optional[Settings] = None,
    ) -> None:
        self.timebase = timebase or TimeBase.system()
        self.lookups = LutPair(lut_size)
        self.generation = 0
        self.settings = Settings()
        self.modifier = MouseModifier(self.settings, self.lookups, self.generation)
        if self.lookups.degraded:
            logger.error("Filter running in degraded mode: acceleration is inert")
        if settings is not None:
            self.commit(settings.normalized())

    @property
    def degraded(self) -> bool:
        return self.lookups.degraded

    def commit(self, settings: Settings) -> MouseModifier:
        self.lookups.populate(settings)
        generation = self.generation + 1
        modifier = MouseModifier(settings, self.lookups, generation)
        self.settings = settings
        self.modifier = modifier
        self.generation = generation
        return modifier
