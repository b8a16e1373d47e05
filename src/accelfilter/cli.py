"""Command line interface for the accelfilter package."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from .mouse.config import load_settings_file
from .mouse.settings import Settings
from .plotting import plot_curves
from .replay import load_motion_csv, replay_motion
from .reporting import export_replay

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})


def _settings_or_default(settings_path: Optional[Path]) -> Settings:
    if settings_path is None:
        return Settings()
    try:
        return load_settings_file(settings_path).normalized()
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--settings") from exc


@app.command()
def replay(
    input_path: Path = typer.Option(..., "--in", help="Recorded motion CSV (ts_ms, dx, dy[, flags, batch])."),
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", help="Settings as JSON or a packed binary record."
    ),
    report_dir: Path = typer.Option(..., "--report", help="Output directory for the replay report."),
    plot: bool = typer.Option(True, "--plot/--no-plot", help="Render the configured curves."),
) -> None:
    """Replay recorded motion through the filter and write a report."""

    settings = _settings_or_default(settings_path)
    try:
        recording = load_motion_csv(input_path)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc

    df = replay_motion(recording, settings)

    figure_path = None
    if plot:
        try:
            figure_path = plot_curves(settings, report_dir)
        except RuntimeError as exc:
            typer.echo(f"[warning] plotting skipped: {exc}")

    summary = export_replay(df, settings, report_dir, figure_path=figure_path, input_path=input_path)
    typer.echo(
        f"Replayed {summary.samples} samples in {summary.batches} batches; report written to {report_dir}"
    )


@app.command()
def curve(
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", help="Settings as JSON or a packed binary record."
    ),
    out_dir: Path = typer.Option(Path("curve_output"), "--out", help="Target directory for the curve plot."),
    speed_max: float = typer.Option(32.0, "--speed-max", help="Upper bound of the plotted speed axis (counts/ms)."),
) -> None:
    """Plot sensitivity and gain curves for a settings file."""

    settings = _settings_or_default(settings_path)
    try:
        out_path = plot_curves(settings, out_dir, speed_max=speed_max)
    except RuntimeError as exc:
        typer.echo(f"[error] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Curves written to {out_path}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
