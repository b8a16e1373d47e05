"""Report writers for replay results."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .mouse.settings import Settings


@dataclass(frozen=True)
class ReplaySummary:
    samples: int
    batches: int
    accelerated_batches: int
    input_total: tuple[int, int]
    output_total: tuple[int, int]
    final_carry: tuple[float, float]
    mean_gain: float
    max_gain: float


def summarize_replay(df: pd.DataFrame) -> ReplaySummary:
    if df.empty:
        return ReplaySummary(0, 0, 0, (0, 0), (0, 0), (0.0, 0.0), float("nan"), float("nan"))
    batch_sizes = df.groupby("batch")["batch_size"].first()
    gains = df["gain"].to_numpy(dtype=float)
    finite = gains[np.isfinite(gains)]
    return ReplaySummary(
        samples=int(len(df)),
        batches=int(batch_sizes.size),
        accelerated_batches=int((batch_sizes == 1).sum()),
        input_total=(int(df["in_dx"].sum()), int(df["in_dy"].sum())),
        output_total=(int(df["out_dx"].sum()), int(df["out_dy"].sum())),
        final_carry=(float(df["carry_x"].iloc[-1]), float(df["carry_y"].iloc[-1])),
        mean_gain=float(finite.mean()) if finite.size else float("nan"),
        max_gain=float(finite.max()) if finite.size else float("nan"),
    )


def export_replay(
    df: pd.DataFrame,
    settings: Settings,
    output_dir: Path,
    *,
    figure_path: Path | None = None,
    input_path: Path | None = None,
) -> ReplaySummary:
    """Persist replayed samples and a markdown summary to *output_dir*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_dir / "replay.csv", index=False)
    summary = summarize_replay(df)
    _write_report_md(summary, settings, output_dir, figure_path=figure_path, input_path=input_path)
    return summary


def _write_report_md(
    summary: ReplaySummary,
    settings: Settings,
    output_dir: Path,
    *,
    figure_path: Path | None,
    input_path: Path | None,
) -> None:
    lines: list[str] = []
    lines.append("# Motion Replay Report")
    if input_path is not None:
        lines.append(f"*Input file:* `{input_path}`  ")
    lines.append(f"*Samples:* {summary.samples}  ")
    lines.append(f"*Batches:* {summary.batches} ({summary.accelerated_batches} single-sample)  ")
    lines.append(f"*Rotation:* {settings.rotation_degrees:.6g} deg  ")
    lines.append(f"*Sensitivity:* {settings.sensitivity[0]:.6g} x {settings.sensitivity[1]:.6g}  ")
    lines.append(f"*time_min:* {settings.time_min:.6g} ms  ")
    lines.append("")

    lines.append("## Curves")
    lines.append("| Axis | Kind | accel | offset | limit | exponent | scale cap | gain cap | weight |")
    lines.append("| --- | --- | ---: | ---: | ---: | ---: | ---: | ---: | ---: |")
    for axis, args in zip("xy", settings.curves):
        lines.append(
            f"| {axis} | {args.kind.name.lower()} | {args.accel:.6g} | {args.offset:.6g} | "
            f"{args.limit:.6g} | {args.exponent:.6g} | {args.scale_cap:.6g} | {args.gain_cap:.6g} | {args.weight:.6g} |"
        )
    lines.append("")

    lines.append("## Totals")
    lines.append("| Quantity | x | y |")
    lines.append("| --- | ---: | ---: |")
    lines.append(f"| Input | {summary.input_total[0]} | {summary.input_total[1]} |")
    lines.append(f"| Output | {summary.output_total[0]} | {summary.output_total[1]} |")
    lines.append(f"| Final carry | {summary.final_carry[0]:.6f} | {summary.final_carry[1]:.6f} |")
    lines.append("")
    lines.append(f"*Mean gain:* {summary.mean_gain:.4f}  ")
    lines.append(f"*Max gain:* {summary.max_gain:.4f}  ")
    lines.append("")

    if figure_path is not None:
        lines.append(f"![Sensitivity curves]({figure_path.name})")
        lines.append("")

    lines.append("### Notes")
    lines.append("- Gain is |output| / |input| per sample and includes carry effects.")
    lines.append("- Batches with more than one sample are replayed without acceleration.")

    (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")
