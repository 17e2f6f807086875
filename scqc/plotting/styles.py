"""Shared plotting style settings for deterministic figure outputs."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import matplotlib
import matplotlib.pyplot as plt
import numpy as np


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults used across report figures."""

    dpi: int = 200
    figsize_metric: tuple[float, float] = (6.5, 4.5)
    figsize_counts: tuple[float, float] = (6.5, 4.0)
    figsize_scatter: tuple[float, float] = (6.0, 5.0)
    ridge_height: float = 0.7
    hist_bins: int = 60
    kde_points: int = 256
    ridge_overlap: float = 0.85
    line_width: float = 1.4
    alpha_fill: float = 0.55
    s_point: float = 4.0
    alpha_point: float = 0.6
    threshold_color: str = "#B22222"
    threshold_style: str = "--"
    cmap_groups: str = "tab10"
    cmap_mito: str = "viridis"
    legend_fontsize: int = 8
    axis_label_fontsize: int = 10
    title_fontsize: int = 11
    legend_max_groups: int = 20


DEFAULT_PLOT_STYLE = PlotStyle()


def apply_plot_style(style: PlotStyle = DEFAULT_PLOT_STYLE) -> None:
    """Apply deterministic matplotlib rcParams for report plots."""
    plt.rcParams.update(
        {
            "figure.dpi": style.dpi,
            "savefig.dpi": style.dpi,
            "savefig.facecolor": "white",
            "font.family": "DejaVu Sans",
            "axes.titlesize": style.title_fontsize,
            "axes.labelsize": style.axis_label_fontsize,
            "legend.fontsize": style.legend_fontsize,
            "axes.grid": False,
            "axes.spines.top": False,
            "axes.spines.right": False,
        }
    )


def plot_style_dict(style: PlotStyle = DEFAULT_PLOT_STYLE) -> dict[str, Any]:
    """Return style + dependency versions for run manifests."""
    d = asdict(style)
    d["matplotlib_version"] = str(matplotlib.__version__)
    d["numpy_version"] = str(np.__version__)
    return d
