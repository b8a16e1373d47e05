from __future__ import annotations

import pytest

from accelfilter.mouse.errors import NotConnected, NotSupported, SharingViolation
from accelfilter.mouse.service import FilterService, TimeBase
from accelfilter.mouse.settings import CurveArgs, CurveKind, Settings
from accelfilter.mouse.stream import MOUSE_MOVE_ABSOLUTE, MotionSample, MotionStream


class FakeClock:
    def __init__(self) -> None:
        self.now = 0

    def __call__(self) -> int:
        return self.now


def make_stream(settings: Settings, clock: FakeClock | None = None):
    clock = clock or FakeClock()
    service = FilterService(timebase=TimeBase(counter=clock, tick_interval_ms=1.0), settings=settings)
    stream = MotionStream(service)
    forwarded: list[list[MotionSample]] = []

    def target(batch: list[MotionSample]) -> int:
        forwarded.append(batch)
        return len(batch)

    stream.connect(target)
    return stream, clock, forwarded


def linear(accel: float) -> CurveArgs:
    return CurveArgs(CurveKind.LINEAR, accel=accel)


MOTION = [(1, 1), (-4, 7), (13, -2), (0, 0), (-1, -1), (250, -99), (-37, 3), (2, -128), (5, 5), (-300, 40)]


def test_flat_curve_conserves_displacement() -> None:
    flat = CurveArgs(CurveKind.LINEAR, accel=0.0)
    stream, clock, _ = make_stream(Settings(curve_x=flat, curve_y=flat))
    assert stream.service.modifier.apply_accel
    out_x = out_y = 0
    for step, (dx, dy) in enumerate(MOTION):
        clock.now += 1 + 3 * step
        batch = [MotionSample(dx, dy)]
        stream.process(batch)
        out_x += batch[0].dx
        out_y += batch[0].dy
        assert abs(stream.state.carry_x) < 1.0
        assert abs(stream.state.carry_y) < 1.0
    assert stream.state.counter == clock.now
    assert out_x + stream.state.carry_x == pytest.approx(sum(dx for dx, _ in MOTION))
    assert out_y + stream.state.carry_y == pytest.approx(sum(dy for _, dy in MOTION))


def test_carry_conserves_scaled_displacement() -> None:
    stream, _, _ = make_stream(Settings(sensitivity=(0.3, 0.7)))
    out_x = out_y = 0
    for dx, dy in MOTION:
        batch = [MotionSample(dx, dy)]
        stream.process(batch)
        out_x += batch[0].dx
        out_y += batch[0].dy
        assert abs(stream.state.carry_x) < 1.0
        assert abs(stream.state.carry_y) < 1.0
    assert out_x + stream.state.carry_x == pytest.approx(0.3 * sum(dx for dx, _ in MOTION))
    assert out_y + stream.state.carry_y == pytest.approx(0.7 * sum(dy for _, dy in MOTION))


def test_negative_motion_truncates_toward_zero() -> None:
    stream, _, _ = make_stream(Settings(sensitivity=(0.5, 0.5)))
    batch = [MotionSample(-3, 3)]
    stream.process(batch)
    assert (batch[0].dx, batch[0].dy) == (-1, 1)
    assert stream.state.carry_x == pytest.approx(-0.5)
    assert stream.state.carry_y == pytest.approx(0.5)

    batch = [MotionSample(-3, 3)]
    stream.process(batch)
    assert (batch[0].dx, batch[0].dy) == (-2, 2)
    assert stream.state.carry_x == pytest.approx(0.0)


def test_multi_sample_batch_skips_acceleration() -> None:
    settings = Settings(
        rotation_degrees=90.0,
        sensitivity=(1.0, 3.0),
        curve_x=linear(1.0),
        curve_y=linear(1.0),
    )
    stream, clock, forwarded = make_stream(settings)
    clock.now = 50
    batch = [MotionSample(2, 0), MotionSample(2, 0)]
    assert stream.process(batch) == 2
    assert forwarded == [batch]
    assert [(s.dx, s.dy) for s in batch] == [(0, 6), (0, 6)]
    assert stream.state.counter == 0


def test_time_is_clamped_between_time_min_and_max() -> None:
    settings = Settings(time_min=5.0, curve_x=linear(1.0), curve_y=linear(1.0))
    stream, clock, _ = make_stream(settings)

    # 1 ms elapsed, raised to time_min: speed 10 / 5 = 2, gain 1 + 2.
    clock.now = 1
    batch = [MotionSample(10, 0)]
    stream.process(batch)
    assert batch[0].dx + stream.state.carry_x == pytest.approx(30.0)
    assert stream.state.counter == 1

    # 500 ms elapsed, capped at 100 ms: speed 0.1, gain 1.1.
    carried = stream.state.carry_x
    clock.now = 501
    batch = [MotionSample(10, 0)]
    stream.process(batch)
    assert batch[0].dx + stream.state.carry_x == pytest.approx(11.0 + carried)
    assert stream.state.counter == 501


def test_absolute_batches_pass_through() -> None:
    stream, _, forwarded = make_stream(Settings(sensitivity=(2.0, 2.0), rotation_degrees=45.0))
    batch = [MotionSample(100, 200, MOUSE_MOVE_ABSOLUTE)]
    stream.process(batch)
    assert (batch[0].dx, batch[0].dy) == (100, 200)
    assert forwarded == [batch]
    assert stream.state.carry_x == 0.0


def test_empty_batch_is_forwarded() -> None:
    stream, _, forwarded = make_stream(Settings())
    assert stream.process([]) == 0
    assert forwarded == [[]]


def test_connect_is_exclusive_and_permanent() -> None:
    stream = MotionStream(FilterService())
    assert not stream.connected
    with pytest.raises(NotConnected):
        stream.process([MotionSample(1, 1)])

    stream.connect(len)
    assert stream.connected
    with pytest.raises(SharingViolation):
        stream.connect(len)
    with pytest.raises(NotSupported) as excinfo:
        stream.disconnect()
    assert isinstance(excinfo.value, NotImplementedError)
    assert stream.connected


def test_connect_resets_stream_state() -> None:
    stream = MotionStream(FilterService())
    stream.state.carry_x = 0.5
    stream.state.counter = 99
    stream.connect(len)
    assert stream.state.carry_x == 0.0
    assert stream.state.counter == 0


def test_streams_keep_independent_carry() -> None:
    service = FilterService(settings=Settings(sensitivity=(0.5, 0.5)))
    first = MotionStream(service, name="first")
    second = MotionStream(service, name="second")
    first.connect(len)
    second.connect(len)
    first.process([MotionSample(1, 0)])
    assert first.state.carry_x == pytest.approx(0.5)
    assert second.state.carry_x == 0.0


def test_new_settings_apply_to_next_batch() -> None:
    stream, _, _ = make_stream(Settings())
    batch = [MotionSample(4, 4)]
    stream.process(batch)
    assert (batch[0].dx, batch[0].dy) == (4, 4)

    stream.service.commit(Settings(sensitivity=(2.0, 0.5)))
    batch = [MotionSample(4, 4)]
    stream.process(batch)
    assert (batch[0].dx, batch[0].dy) == (8, 2)
