from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence

from .settings import Settings, settings_from_mapping


@dataclass
class HostRuntime:
    queue_maxsize: int = 512
    reconnect_initial_sec: float = 0.5
    reconnect_max_sec: float = 5.0
    stats_log_interval: float = 60.0
    binary_chunk_size: int = 256
    settle_delay_ms: float = 1000.0
    watch_interval_sec: float = 1.0


@dataclass
class FilterConfig:
    settings: Settings = field(default_factory=Settings)
    frame_format: str = "csv"  # csv | binary
    output_csv: Path | None = None
    host: HostRuntime = field(default_factory=HostRuntime)

    @property
    def frame_format_enum(self) -> str:
        fmt = self.frame_format.lower()
        if fmt not in {"csv", "binary"}:
            raise ValueError(f"Unsupported frame_format '{self.frame_format}'")
        return fmt


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None, overrides: Sequence[str] | None = None) -> FilterConfig:
    """
    Load a filter host configuration from JSON and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["settings.curve.kind=classic", "host.settle_delay_ms=0"]

    Passing ``None`` as *path* starts from built-in defaults.
    """
    data = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    host_data = merged.get("host") or {}
    defaults = HostRuntime()
    return FilterConfig(
        settings=settings_from_mapping(merged.get("settings") or {}),
        frame_format=str(merged.get("frame_format", "csv")),
        output_csv=Path(merged["output_csv"]) if merged.get("output_csv") else None,
        host=HostRuntime(
            queue_maxsize=int(host_data.get("queue_maxsize", defaults.queue_maxsize)),
            reconnect_initial_sec=float(host_data.get("reconnect_initial_sec", defaults.reconnect_initial_sec)),
            reconnect_max_sec=float(host_data.get("reconnect_max_sec", defaults.reconnect_max_sec)),
            stats_log_interval=float(host_data.get("stats_log_interval", defaults.stats_log_interval)),
            binary_chunk_size=int(host_data.get("binary_chunk_size", defaults.binary_chunk_size)),
            settle_delay_ms=float(host_data.get("settle_delay_ms", defaults.settle_delay_ms)),
            watch_interval_sec=float(host_data.get("watch_interval_sec", defaults.watch_interval_sec)),
        ),
    )


def load_settings_file(path: Path | str) -> Settings:
    """Read a settings record from a binary dump or a JSON document."""
    settings_path = Path(path)
    if settings_path.suffix.lower() == ".json":
        data = _load_json(settings_path)
        return settings_from_mapping(data.get("settings", data))
    return Settings.unpack(settings_path.read_bytes())


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
