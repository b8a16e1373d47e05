from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .errors import NotConnected, NotSupported, SharingViolation
from .service import FilterService

logger = logging.getLogger(__name__)

MOUSE_MOVE_ABSOLUTE = 0x01

ForwardTarget = Callable[[List["MotionSample"]], int]


@dataclass
class MotionSample:
    """One raw motion report; rewritten in place by the filter."""

    dx: int
    dy: int
    flags: int = 0

    @property
    def absolute(self) -> bool:
        return bool(self.flags & MOUSE_MOVE_ABSOLUTE)


@dataclass
class StreamState:
    carry_x: float = 0.0
    carry_y: float = 0.0
    counter: int = 0

    def reset(self) -> None:
        self.carry_x = 0.0
        self.carry_y = 0.0
        self.counter = 0


class MotionStream:
    """
    Filter attached to one motion source.

    Batches for one stream arrive in order and are never processed
    concurrently with each other; different streams may run in parallel
    against the same :class:`FilterService`.
    """

    def __init__(self, service: FilterService, name: str = "stream0") -> None:
        self.service = service
        self.name = name
        self.state = StreamState()
        self._target: Optional[ForwardTarget] = None

    @property
    def connected(self) -> bool:
        return self._target is not None

    def connect(self, target: ForwardTarget) -> None:
        if self._target is not None:
            raise SharingViolation(f"{self.name} is already connected")
        self.state.reset()
        self._target = target
        logger.info("Connected %s", self.name)

    def disconnect(self) -> None:
        # Teardown is not supported: once connected a stream stays connected.
        raise NotSupported(f"{self.name} cannot be disconnected")

    def process(self, batch: List[MotionSample]) -> int:
        target = self._target
        if target is None:
            raise NotConnected(f"{self.name} has no downstream target")
        if batch and not batch[0].absolute:
            self.transform(batch)
        return target(batch)

    def transform(self, batch: Sequence[MotionSample]) -> None:
        # Backlogged batches carry no usable per-sample timing.
        enable_accel = len(batch) == 1
        modifier = self.service.modifier
        timebase = self.service.timebase
        state = self.state

        def time_supplier() -> float:
            now = timebase.now()
            ticks = now - state.counter
            state.counter = now
            return modifier.clamp_time(ticks * timebase.tick_interval_ms)

        carry_x = state.carry_x
        carry_y = state.carry_y
        for sample in batch:
            x, y = modifier.modify(
                float(sample.dx),
                float(sample.dy),
                time_supplier if enable_accel else None,
            )
            carried_x = x + carry_x
            carried_y = y + carry_y
            out_x = int(carried_x)
            out_y = int(carried_y)
            carry_x = carried_x - out_x
            carry_y = carried_y - out_y
            sample.dx = out_x
            sample.dy = out_y
        state.carry_x = carry_x
        state.carry_y = carry_y
