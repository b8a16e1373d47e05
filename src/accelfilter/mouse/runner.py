from __future__ import annotations

import json
import logging
import queue
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

try:
    import serial  # type: ignore[import]
except ImportError:  # pragma: no cover - handled in CLI validation
    serial = None  # type: ignore[assignment]

from .config import FilterConfig, load_config, load_settings_file
from .control import ConfigChannel
from .errors import FilterError
from .packets import FrameFormat, PacketParser, iterate_binary_stream, iterate_text_stream
from .service import FilterService
from .settings import SETTINGS_SIZE, Settings
from .sink import SampleSink
from .stream import MotionSample, MotionStream

logger = logging.getLogger(__name__)


PRESETS: Dict[str, Dict[str, Any]] = {
    "flat": {
        "time_min": 0.4,
        "curve": {"kind": "off"},
    },
    "linear": {
        "time_min": 0.4,
        "curve": {"kind": "linear", "accel": 0.02, "offset": 0.0, "scale_cap": 4.0},
    },
    "classic": {
        "time_min": 0.4,
        "curve": {"kind": "classic", "accel": 0.03, "exponent": 2.5, "offset": 1.0, "scale_cap": 3.0},
    },
    "natural": {
        "time_min": 0.4,
        "curve": {"kind": "natural_gain", "accel": 0.1, "limit": 2.0, "offset": 1.0},
    },
}


def _serial_errors() -> type:
    return getattr(serial, "SerialException", OSError)


def preset_overrides(preset: str) -> list[str]:
    data = PRESETS[preset]
    overrides = [f"settings.time_min={data['time_min']}"]
    overrides.extend(f"settings.curve.{key}={value}" for key, value in data["curve"].items())
    return overrides


@dataclass
class SerialSettings:
    port: str
    baudrate: int = 115200
    timeout: float = 2.0


def collect_batch(sample_queue: "queue.Queue[MotionSample]", timeout: float = 1.0) -> List[MotionSample]:
    """
    Block for the first sample, then take everything else already queued.
    A backlog therefore arrives as one multi-sample batch.
    """
    try:
        batch = [sample_queue.get(timeout=timeout)]
    except queue.Empty:
        return []
    while True:
        try:
            batch.append(sample_queue.get_nowait())
        except queue.Empty:
            return batch


class SerialReaderThread(threading.Thread):
    def __init__(
        self,
        settings: SerialSettings,
        frame_format: FrameFormat,
        config: FilterConfig,
        sample_queue: "queue.Queue[MotionSample]",
    ) -> None:
        super().__init__(daemon=True)
        self.settings = settings
        self.frame_format = frame_format
        self.config = config
        self.queue = sample_queue
        self.parser = PacketParser(frame_format)
        self._stop_event = threading.Event()
        self._serial_handle = None
        self._dropped = 0
        self._reconnects = 0
        self._connected_once = False
        self.last_exception: Optional[Exception] = None
        self._log = logging.getLogger(__name__)

    def run(self) -> None:  # pragma: no cover - exercised via integration-style tests
        initial_delay = max(self.config.host.reconnect_initial_sec, 0.01)
        max_delay = max(self.config.host.reconnect_max_sec, initial_delay)
        backoff = initial_delay
        while not self._stop_event.is_set():
            self._serial_handle = None
            try:
                self._serial_handle = self._open_serial()
                if self._connected_once:
                    self._reconnects += 1
                    self._log.info("Reconnected to %s", self.settings.port)
                else:
                    self._log.info("Connected to %s", self.settings.port)
                    self._connected_once = True
                self.last_exception = None
                backoff = initial_delay
                self.parser.reset()
                if self.frame_format is FrameFormat.CSV:
                    samples = self.parser.parse_csv(self._iter_csv_lines())
                else:
                    chunk_size = max(self.config.host.binary_chunk_size, 16)
                    samples = self.parser.parse_binary(self._iter_binary_chunks(chunk_size))
                for sample in samples:
                    if self._stop_event.is_set():
                        break
                    self._emit(sample)
            except _serial_errors() as exc:
                self.last_exception = exc
                self._log.warning("Serial error (%s): %s", self.settings.port, exc)
            except Exception as exc:
                self.last_exception = exc
                self._log.exception("Unexpected error in serial reader")
            finally:
                if self._serial_handle is not None:
                    try:
                        self._serial_handle.close()
                    except Exception:
                        self._log.debug("Error closing %s", self.settings.port, exc_info=True)
                    self._serial_handle = None
            if self._stop_event.is_set():
                break
            wait_time = min(backoff, max_delay)
            self._log.info("Reconnecting in %.1fs", wait_time)
            self._stop_event.wait(wait_time)
            backoff = min(backoff * 2, max_delay)

    def stop(self) -> None:
        self._stop_event.set()
        if self._serial_handle is not None:
            try:
                self._serial_handle.close()
            except Exception:
                self._log.debug("Error closing %s", self.settings.port, exc_info=True)

    def stats(self) -> dict[str, int]:
        stats = self.parser.stats()
        stats["dropped"] = self._dropped
        stats["reconnects"] = self._reconnects
        return stats

    def _emit(self, sample: MotionSample) -> None:
        try:
            self.queue.put(sample, timeout=1.0)
        except queue.Full:
            self._dropped += 1
            self._log.warning("Sample queue full (%d), dropping sample", self.queue.qsize())

    def _iter_csv_lines(self):
        while not self._stop_event.is_set():
            line = self._readline()
            if line is None:
                continue
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            yield stripped

    def _iter_binary_chunks(self, chunk_size: int):
        while not self._stop_event.is_set():
            if self._serial_handle is None:
                time.sleep(0.01)
                continue
            data = self._serial_handle.read(chunk_size)
            if not data:
                continue
            yield data

    def _readline(self) -> Optional[str]:
        if self._serial_handle is None:
            return None
        try:
            raw = self._serial_handle.readline()
        except Exception as exc:
            self._log.debug("readline error: %s", exc)
            return None
        if not raw:
            return None
        return raw.decode("utf-8", errors="ignore")

    def _open_serial(self):
        if serial is None:
            raise ImportError("pyserial is required but not installed. Install extra 'host'.")
        return serial.Serial(
            port=self.settings.port,
            baudrate=self.settings.baudrate,
            timeout=self.settings.timeout,
        )


class SettingsWatcher(threading.Thread):
    """
    Poll a settings file and push every change through the config channel.
    Runs beside the motion loop; writes may land between live batches.
    """

    def __init__(self, path: Path, channel: ConfigChannel, interval_sec: float = 1.0) -> None:
        super().__init__(daemon=True)
        self.path = path
        self.channel = channel
        self.interval_sec = max(interval_sec, 0.05)
        self._stop_event = threading.Event()
        self._last_mtime: Optional[float] = self._mtime()

    def run(self) -> None:  # pragma: no cover - thin loop around poll()
        while not self._stop_event.wait(self.interval_sec):
            self.poll()

    def stop(self) -> None:
        self._stop_event.set()

    def poll(self) -> bool:
        mtime = self._mtime()
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        try:
            settings = load_settings_file(self.path)
            self.channel.set_settings(settings)
        except (OSError, ValueError, FilterError) as exc:
            logger.warning("Ignoring settings update from %s: %s", self.path, exc)
            return False
        logger.info("Reloaded settings from %s", self.path)
        return True

    def _mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None


class FilterHost:
    """Host-side orchestrator: packets in, filtered samples out."""

    def __init__(
        self,
        settings: SerialSettings,
        config: FilterConfig,
        sink: SampleSink,
        settings_path: Optional[Path] = None,
        service: Optional[FilterService] = None,
    ):
        self.settings = settings
        self.config = config
        self.frame_format = FrameFormat(config.frame_format_enum)
        self.sink = sink
        self.service = service or FilterService(settings=config.settings)
        self.channel = ConfigChannel(self.service, settle_delay_ms=config.host.settle_delay_ms)
        self.stream = MotionStream(self.service, name=settings.port)
        self.stream.connect(sink)
        self.watcher: Optional[SettingsWatcher] = None
        if settings_path is not None:
            self.watcher = SettingsWatcher(settings_path, self.channel, config.host.watch_interval_sec)
        if self.service.degraded:
            logger.warning("Running without acceleration: LUT unavailable")

    def run(self) -> None:
        if self.watcher is not None:
            self.watcher.start()
        try:
            if self.settings.port == "-":
                self._run_from_stream()
            else:
                self._run_serial()
        finally:
            if self.watcher is not None:
                self.watcher.stop()
                self.watcher.join(timeout=5)
            self.sink.close()

    def process(self, batch: List[MotionSample]) -> int:
        return self.stream.process(batch)

    def _run_serial(self) -> None:
        sample_queue: "queue.Queue[MotionSample]" = queue.Queue(maxsize=self.config.host.queue_maxsize)
        reader = SerialReaderThread(self.settings, self.frame_format, self.config, sample_queue)
        reader.start()
        processed = 0
        batches = 0
        interval_sec = max(float(self.config.host.stats_log_interval), 5.0)
        next_log = time.monotonic() + interval_sec

        def emit_stats() -> None:
            stats = reader.stats()
            logger.info(
                "processed=%d batches=%d frames=%d crc_errors=%d length_errors=%d dropped=%d reconnects=%d generation=%d",
                processed,
                batches,
                stats.get("frames", 0),
                stats.get("crc_errors", 0),
                stats.get("length_errors", 0),
                stats.get("dropped", 0),
                stats.get("reconnects", 0),
                self.service.generation,
            )

        try:
            while True:
                batch = collect_batch(sample_queue, timeout=1.0)
                if batch:
                    processed += self.process(batch)
                    batches += 1
                if time.monotonic() >= next_log:
                    emit_stats()
                    next_log = time.monotonic() + interval_sec
        except KeyboardInterrupt:
            logger.info("Stopping host (Ctrl+C)")
        finally:
            reader.stop()
            reader.join(timeout=5)
            emit_stats()

    def _run_from_stream(self) -> None:
        parser = PacketParser(self.frame_format)
        if self.frame_format is FrameFormat.CSV:
            samples = parser.parse_csv(iterate_text_stream(sys.stdin))
        else:
            samples = parser.parse_binary(
                iterate_binary_stream(sys.stdin.buffer, self.config.host.binary_chunk_size)
            )
        processed = 0
        for sample in samples:
            processed += self.process([sample])
        stats = parser.stats()
        logger.info(
            "Processed %d samples from stdin (crc_errors=%d length_errors=%d)",
            processed,
            stats.get("crc_errors", 0),
            stats.get("length_errors", 0),
        )


settings_app = typer.Typer(help="Settings record utilities.")


@settings_app.command("pack")
def settings_pack(
    input_path: Path = typer.Option(..., "--in", help="JSON settings document", exists=True, readable=True),
    out: Path = typer.Option(Path("settings.bin"), "--out", help="Output file for the binary record"),
):
    try:
        settings = load_settings_file(input_path)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc
    out.write_bytes(settings.normalized().pack())
    typer.echo(f"Wrote {SETTINGS_SIZE}-byte settings record to {out}")


@settings_app.command("show")
def settings_show(
    input_path: Path = typer.Option(..., "--in", help="Binary record or JSON document", exists=True, readable=True),
):
    try:
        settings = load_settings_file(input_path)
    except ValueError as exc:
        typer.echo(f"Invalid settings record: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(settings.as_dict(), indent=2))


@settings_app.command("defaults")
def settings_defaults():
    typer.echo(json.dumps(Settings().as_dict(), indent=2))


app = typer.Typer(add_completion=False, help="Pointer acceleration filter host.")
app.add_typer(settings_app, name="settings")


@app.command()
def run(
    port: str = typer.Option(
        "/dev/ttyACM0", "--port", "-p", help="Serial device. Use '-' to read from stdin."
    ),
    baudrate: int = typer.Option(115200, "--baud", help="Serial baudrate."),
    timeout: float = typer.Option(2.0, "--timeout", help="Serial read timeout (seconds)."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to filter host config (JSON)."
    ),
    preset: Optional[str] = typer.Option(
        None,
        "--preset",
        "-P",
        help="Apply curve preset (flat|linear|classic|natural) before other overrides.",
    ),
    override: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set settings.curve.kind=linear --set host.settle_delay_ms=0",
    ),
    watch: Optional[Path] = typer.Option(
        None,
        "--watch",
        help="Settings file (JSON or binary record) re-applied whenever it changes.",
    ),
    output: Optional[Path] = typer.Option(
        None, "--out", help="CSV file for filtered samples (default: config output_csv or stdout)."
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
):
    """Run the filter host: read motion packets, transform them, forward the result."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if port != "-" and serial is None:
        raise typer.BadParameter("pyserial is required for serial ports (pip install .[host])", param_hint="--port")
    preset_overrides_list: list[str] = []
    if preset:
        key = preset.lower()
        if key not in PRESETS:
            raise typer.BadParameter(f"Unknown preset '{preset}'. Expected one of {list(PRESETS)}")
        preset_overrides_list = preset_overrides(key)
    combined_overrides = preset_overrides_list + (override or [])
    try:
        cfg = load_config(config_path, combined_overrides or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if watch is not None and watch.exists():
        try:
            cfg.settings = load_settings_file(watch)
        except ValueError as exc:
            raise typer.BadParameter(f"Failed to load settings from {watch}: {exc}") from exc
    if preset:
        logger.info("Applied preset %s (curve=%s)", preset.lower(), cfg.settings.curve_x.kind.name)
    sink = SampleSink.to_path(output or cfg.output_csv)
    settings = SerialSettings(port=port, baudrate=baudrate, timeout=timeout)
    host = FilterHost(settings=settings, config=cfg, sink=sink, settings_path=watch)
    try:
        host.run()
    except KeyboardInterrupt:
        logger.info("Stopping host (Ctrl+C)")
