"""Shared plotting utilities used by figure factories."""

from __future__ import annotations

from pathlib import Path

import matplotlib.axes
import matplotlib.figure
import matplotlib.pyplot as plt

from scqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle


def sanitize_label(label: str, max_len: int = 40) -> str:
    """Create deterministic filesystem-safe stems for labels."""
    clean = "".join(ch if (ch.isalnum() or ch == "_") else "_" for ch in str(label))
    clean = clean.strip("_") or "figure"
    return clean[:max_len]


def render_na_panel(
    ax: matplotlib.axes.Axes,
    n: int,
    reason: str = "no cells",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> None:
    ax.set_xticks([])
    ax.set_yticks([])
    ax.text(
        0.5,
        0.55,
        "NA",
        transform=ax.transAxes,
        ha="center",
        va="center",
        fontsize=style.title_fontsize,
    )
    ax.text(
        0.5,
        0.38,
        f"(n={int(n)}; {reason})",
        transform=ax.transAxes,
        ha="center",
        va="center",
        fontsize=style.legend_fontsize,
        color="#555555",
    )


def save_figure(
    fig: matplotlib.figure.Figure,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> None:
    """Save figure deterministically and close it."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, dpi=style.dpi, facecolor="white", pad_inches=0.02)
    plt.close(fig)
