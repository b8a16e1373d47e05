"""Plotting helpers for acceleration curves."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np

from .mouse.lut import LUT_SIZE, SPEED_MAX, build_curve, speed_grid
from .mouse.settings import Settings


def curve_table(settings: Settings, size: int = LUT_SIZE, speed_max: float = SPEED_MAX) -> dict[str, np.ndarray]:
    """Sensitivity and velocity gain for both axes on the LUT speed grid."""

    speeds = speed_grid(size, speed_max)
    table: dict[str, np.ndarray] = {"speed": speeds}
    for axis, args in zip("xy", settings.curves):
        sens = build_curve(args, speeds)
        table[f"sens_{axis}"] = sens
        # Output velocity is speed * sens; its slope is the felt gain.
        table[f"gain_{axis}"] = np.gradient(speeds * sens, speeds)
    return table


def plot_curves(settings: Settings, output_dir: Path, speed_max: float = SPEED_MAX) -> Path:
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    table = curve_table(settings, speed_max=speed_max)
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    _plot_series(axes[0], table, "sens", "Sensitivity vs. speed", "Sensitivity multiplier")
    _plot_series(axes[1], table, "gain", "Velocity gain vs. speed", "Gain")

    fig.tight_layout()
    out_path = output_dir / "curves.png"
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return out_path


def _plot_series(ax, table: dict[str, np.ndarray], prefix: str, title: str, ylabel: str) -> None:
    speeds = table["speed"]
    ax.plot(speeds, table[f"{prefix}_x"], color="tab:blue", label="x")
    if not np.allclose(table[f"{prefix}_x"], table[f"{prefix}_y"]):
        ax.plot(speeds, table[f"{prefix}_y"], color="tab:orange", linestyle="--", label="y")
    ax.set_title(title)
    ax.set_xlabel("Speed (counts/ms)")
    ax.set_ylabel(ylabel)
    ax.axhline(1.0, color="black", linewidth=0.8, linestyle=":")
    ax.legend(loc="best")


def _require_matplotlib() -> Any:
    from pathlib import Path as _Path

    home_cache = _Path.home() / ".cache" / "fontconfig"
    try:
        home_cache.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError("matplotlib cannot write font cache in this environment") from exc

    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install accelfilter[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib unavailable: {exc}") from exc
    return plt
