from __future__ import annotations

import json
from pathlib import Path

import pytest

from accelfilter.mouse.config import FilterConfig, load_config, load_settings_file
from accelfilter.mouse.runner import PRESETS, preset_overrides
from accelfilter.mouse.settings import CurveKind, Settings


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        """
        {
          "frame_format": "csv",
          "settings": {
            "sensitivity": [1.0, 1.0],
            "curve": {"kind": "linear", "accel": 0.05}
          },
          "host": {"queue_maxsize": 16}
        }
        """,
        encoding="utf-8",
    )
    cfg = load_config(
        cfg_path,
        overrides=[
            "frame_format=binary",
            "settings.sensitivity=[2.0, 0.5]",
            "settings.curve_y.kind=off",
            "host.settle_delay_ms=0",
        ],
    )
    assert isinstance(cfg, FilterConfig)
    assert cfg.frame_format_enum == "binary"
    assert cfg.settings.sensitivity == (2.0, 0.5)
    assert cfg.settings.curve_x.kind is CurveKind.LINEAR
    assert cfg.settings.curve_x.accel == 0.05
    assert cfg.settings.curve_y.kind is CurveKind.OFF
    assert cfg.host.queue_maxsize == 16
    assert cfg.host.settle_delay_ms == 0.0


def test_load_config_defaults_without_file() -> None:
    cfg = load_config(None)
    assert cfg.settings == Settings()
    assert cfg.host.settle_delay_ms == 1000.0


def test_sample_config_loads() -> None:
    cfg = load_config(Path("host/config.json"))
    assert cfg.frame_format_enum == "binary"
    assert cfg.settings.curve_x.kind is CurveKind.CLASSIC


def test_unsupported_frame_format() -> None:
    cfg = load_config(None, overrides=["frame_format=hex"])
    with pytest.raises(ValueError):
        cfg.frame_format_enum


def test_malformed_override() -> None:
    with pytest.raises(ValueError):
        load_config(None, overrides=["settings.time_min"])


def test_load_settings_file_json_and_binary(tmp_path: Path) -> None:
    json_path = tmp_path / "settings.json"
    json_path.write_text(
        json.dumps({"settings": {"rotation_degrees": -4.0, "curve": {"kind": "power", "exponent": 0.2}}}),
        encoding="utf-8",
    )
    settings = load_settings_file(json_path)
    assert settings.rotation_degrees == -4.0
    assert settings.curve_y.kind is CurveKind.POWER

    bin_path = tmp_path / "settings.bin"
    bin_path.write_bytes(settings.pack())
    assert load_settings_file(bin_path) == settings


def test_preset_overrides_contains_expected_keys():
    overrides = preset_overrides("classic")
    assert "settings.time_min=0.4" in overrides
    assert "settings.curve.kind=classic" in overrides
    assert "settings.curve.exponent=2.5" in overrides


def test_presets_defined():
    assert set(PRESETS) == {"flat", "linear", "classic", "natural"}


@pytest.mark.parametrize("preset", sorted(PRESETS))
def test_presets_load(preset: str):
    cfg = load_config(None, overrides=preset_overrides(preset))
    assert cfg.settings.curve_x == cfg.settings.curve_y
    assert cfg.settings.time_min == 0.4
