from __future__ import annotations

import math
from dataclasses import replace

import pytest

from accelfilter.mouse.control import ConfigChannel
from accelfilter.mouse.errors import BadRequestSize, MessageLost
from accelfilter.mouse.service import FilterService
from accelfilter.mouse.settings import (
    DEFAULT_TIME_MIN,
    SETTINGS_SIZE,
    CurveArgs,
    CurveKind,
    Settings,
)
from accelfilter.mouse.stream import MotionSample, MotionStream


def make_channel(**kwargs):
    sleeps: list[float] = []
    service = FilterService()
    channel = ConfigChannel(service, sleep=sleeps.append, **kwargs)
    return service, channel, sleeps


def test_read_returns_active_record() -> None:
    service, channel, _ = make_channel()
    assert channel.read() == Settings().pack()
    assert len(channel.read(SETTINGS_SIZE)) == SETTINGS_SIZE
    assert service.generation == 0


def test_read_with_wrong_size_is_rejected() -> None:
    _, channel, _ = make_channel()
    with pytest.raises(BadRequestSize) as excinfo:
        channel.read(SETTINGS_SIZE + 8)
    assert excinfo.value.status == "STATUS_INVALID_BUFFER_SIZE"
    assert excinfo.value.expected == SETTINGS_SIZE


def test_write_with_wrong_size_leaves_state_untouched() -> None:
    service, channel, sleeps = make_channel()
    before = service.modifier
    with pytest.raises(BadRequestSize):
        channel.write(Settings(sensitivity=(2.0, 2.0)).pack()[:-4])
    assert service.modifier is before
    assert service.generation == 0
    assert channel.writes == 0
    assert sleeps == []


def test_write_settles_then_commits() -> None:
    service, channel, sleeps = make_channel()
    settings = Settings(
        rotation_degrees=10.0,
        sensitivity=(1.5, 1.5),
        curve_x=CurveArgs(CurveKind.LINEAR, accel=0.1),
        curve_y=CurveArgs(CurveKind.LINEAR, accel=0.1),
    )
    channel.write(settings.pack())
    assert sleeps == [1.0]
    assert service.generation == 1
    assert service.settings == settings
    assert service.modifier.generation == 1
    assert service.modifier.apply_accel
    assert channel.read() == settings.pack()


def test_settle_delay_is_configurable() -> None:
    _, channel, sleeps = make_channel(settle_delay_ms=0)
    channel.set_settings(Settings(sensitivity=(2.0, 1.0)))
    assert sleeps == []
    assert channel.get_settings().sensitivity == (2.0, 1.0)
    assert channel.writes == 1


@pytest.mark.parametrize("time_min", [-1.0, math.nan])
def test_write_normalizes_time_min(time_min: float) -> None:
    service, channel, _ = make_channel(settle_delay_ms=0)
    written = Settings(
        rotation_degrees=-7.5,
        sensitivity=(1.25, 0.8),
        time_min=time_min,
        curve_x=CurveArgs(CurveKind.CLASSIC, accel=0.04, exponent=2.5, offset=1.0),
        curve_y=CurveArgs(CurveKind.NATURAL_GAIN, accel=0.2, limit=2.0, gain_cap=1.8),
    )
    channel.write(written.pack())
    expected = replace(written, time_min=DEFAULT_TIME_MIN)
    assert service.settings == expected
    assert Settings.unpack(channel.read()) == expected
    assert service.modifier.apply_accel


@pytest.mark.parametrize(
    "written, expected",
    [
        (Settings(rotation_degrees=math.nan), Settings()),
        (Settings(rotation_degrees=math.inf, sensitivity=(2.0, 2.0)), Settings(sensitivity=(2.0, 2.0))),
        (Settings(sensitivity=(math.inf, 0.5)), Settings(sensitivity=(1.0, 0.5))),
        (Settings(sensitivity=(3.0, -math.nan)), Settings(sensitivity=(3.0, 1.0))),
    ],
)
def test_non_finite_record_keeps_motion_flowing(written: Settings, expected: Settings) -> None:
    service, channel, _ = make_channel(settle_delay_ms=0)
    stream = MotionStream(service)
    forwarded: list = []
    stream.connect(lambda batch: forwarded.append(batch) or len(batch))

    channel.write(written.pack())
    assert service.settings == expected

    batch = [MotionSample(3, 4)]
    assert stream.process(batch) == 1
    assert forwarded == [batch]
    sens_x, sens_y = expected.sensitivity
    assert (batch[0].dx, batch[0].dy) == (int(3 * sens_x), int(4 * sens_y))


def test_non_buffer_write_reports_message_lost() -> None:
    service, channel, _ = make_channel(settle_delay_ms=0)
    with pytest.raises(MessageLost):
        channel.write("x" * SETTINGS_SIZE)
    assert service.generation == 0
    assert channel.writes == 0


def test_undecodable_record_reports_message_lost(monkeypatch) -> None:
    service, channel, _ = make_channel(settle_delay_ms=0)

    def broken_unpack(buffer: bytes) -> Settings:
        raise ValueError("corrupt")

    monkeypatch.setattr(Settings, "unpack", staticmethod(broken_unpack))
    with pytest.raises(MessageLost):
        channel.write(bytes(SETTINGS_SIZE))
    assert service.generation == 0


def test_each_write_publishes_a_new_generation() -> None:
    service, channel, _ = make_channel(settle_delay_ms=0)
    first = service.modifier
    channel.set_settings(Settings(sensitivity=(2.0, 2.0)))
    second = service.modifier
    channel.set_settings(Settings(sensitivity=(3.0, 3.0)))
    assert first is not second is not service.modifier
    assert [first.generation, second.generation, service.modifier.generation] == [0, 1, 2]
    # A modifier already handed out keeps its own snapshot.
    assert second.apply_sensitivity(1.0, 1.0) == (2.0, 2.0)
