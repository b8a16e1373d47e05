"""Offline replay of recorded motion through the filter pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

import numpy as np
import pandas as pd

from .mouse.service import FilterService, TimeBase
from .mouse.settings import Settings
from .mouse.stream import MotionSample, MotionStream

REQUIRED_COLUMNS = {"ts_ms", "dx", "dy"}
OPTIONAL_COLUMNS = {"flags", "batch"}

# Recorded timestamps are converted to integer microsecond ticks.
_TICKS_PER_MS = 1000


@dataclass(frozen=True)
class MotionRecording:
    """Recorded raw motion, one row per report."""

    ts_ms: np.ndarray
    dx: np.ndarray
    dy: np.ndarray
    flags: np.ndarray
    batch: np.ndarray


def load_motion_csv(path: str | Path) -> MotionRecording:
    """Load a motion recording from *path*.

    Parameters
    ----------
    path:
        CSV file with ``ts_ms``, ``dx`` and ``dy`` columns. An optional
        ``flags`` column carries report flags; an optional ``batch`` column
        groups consecutive rows into one delivered batch. Without it every
        row is delivered on its own.

    Returns
    -------
    MotionRecording
        Rows in recorded order with integer displacements.
    """

    path = Path(path)
    if not path.exists():  # pragma: no cover
        raise FileNotFoundError(path)
    return recording_from_dataframe(pd.read_csv(path))


def recording_from_dataframe(df: pd.DataFrame) -> MotionRecording:
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")
    df = df.copy()
    if df[["ts_ms", "dx", "dy"]].isna().any().any():
        raise ValueError("ts_ms, dx and dy must not contain empty values")
    if "flags" not in df.columns:
        df["flags"] = 0
    if "batch" not in df.columns:
        df["batch"] = np.arange(len(df))
    df.reset_index(drop=True, inplace=True)

    ts_ms = df["ts_ms"].to_numpy(dtype=float)
    if ts_ms.size > 1 and np.any(np.diff(ts_ms) < 0):
        raise ValueError("ts_ms must be non-decreasing")

    return MotionRecording(
        ts_ms=ts_ms,
        dx=df["dx"].to_numpy(dtype=np.int64),
        dy=df["dy"].to_numpy(dtype=np.int64),
        flags=df["flags"].fillna(0).to_numpy(dtype=np.int64),
        batch=df["batch"].to_numpy(),
    )


def replay_motion(recording: MotionRecording, settings: Settings) -> pd.DataFrame:
    """
    Feed *recording* through a freshly connected stream configured with
    *settings*, using the recorded timestamps as the stream's clock.
    """

    clock = {"now": 0}
    timebase = TimeBase(counter=lambda: clock["now"], tick_interval_ms=1.0 / _TICKS_PER_MS)
    service = FilterService(timebase=timebase, settings=settings)
    stream = MotionStream(service, name="replay")
    stream.connect(len)

    rows: List[dict] = []
    for batch_index, indices in enumerate(_batch_indices(recording.batch)):
        batch = [
            MotionSample(int(recording.dx[i]), int(recording.dy[i]), int(recording.flags[i]))
            for i in indices
        ]
        clock["now"] = int(round(recording.ts_ms[indices[0]] * _TICKS_PER_MS))
        stream.process(batch)
        for i, sample in zip(indices, batch):
            rows.append(
                {
                    "ts_ms": recording.ts_ms[i],
                    "batch": batch_index,
                    "batch_size": len(batch),
                    "in_dx": int(recording.dx[i]),
                    "in_dy": int(recording.dy[i]),
                    "out_dx": sample.dx,
                    "out_dy": sample.dy,
                    "flags": sample.flags,
                }
            )
        # Carry is only observable between batches.
        rows[-1]["carry_x"] = stream.state.carry_x
        rows[-1]["carry_y"] = stream.state.carry_y

    df = pd.DataFrame(
        rows,
        columns=[
            "ts_ms",
            "batch",
            "batch_size",
            "in_dx",
            "in_dy",
            "out_dx",
            "out_dy",
            "flags",
            "carry_x",
            "carry_y",
        ],
    )
    df[["carry_x", "carry_y"]] = df[["carry_x", "carry_y"]].ffill().fillna(0.0)
    in_mag = np.hypot(df["in_dx"].to_numpy(dtype=float), df["in_dy"].to_numpy(dtype=float))
    out_mag = np.hypot(df["out_dx"].to_numpy(dtype=float), df["out_dy"].to_numpy(dtype=float))
    with np.errstate(divide="ignore", invalid="ignore"):
        df["gain"] = np.where(in_mag > 0, out_mag / np.where(in_mag > 0, in_mag, 1.0), np.nan)
    return df


def _batch_indices(batch_ids: np.ndarray) -> List[List[int]]:
    groups: List[List[int]] = []
    previous = object()
    for index, batch_id in enumerate(batch_ids):
        if not groups or batch_id != previous:
            groups.append([index])
        else:
            groups[-1].append(index)
        previous = batch_id
    return groups
