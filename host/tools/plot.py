"""Simple plotting companion for filter host logs."""

from __future__ import annotations

import sys
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd


def plot_displacement(csv_path: Path) -> None:
    """Plot filtered displacement and accumulated position from a host CSV log."""
    data = pd.read_csv(csv_path)
    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 7), sharex=True)
    ax1.plot(data["seq"], data["dx"], label="dx", color="tab:blue")
    ax1.plot(data["seq"], data["dy"], label="dy", color="tab:orange")
    ax1.set_ylabel("Counts per report")
    ax1.legend(loc="best")

    ax2.plot(data["seq"], data["dx"].cumsum(), label="x", color="tab:blue")
    ax2.plot(data["seq"], data["dy"].cumsum(), label="y", color="tab:orange")
    ax2.set_xlabel("Sample")
    ax2.set_ylabel("Position")
    ax2.legend(loc="best")

    fig.tight_layout()
    plt.show()


if __name__ == "__main__":  # pragma: no cover
    plot_displacement(Path(sys.argv[1]))
