"""Plotting API for scqc reports."""

from scqc.plotting.qc import (
    PLOT_KINDS,
    grouped_metric,
    plot_cell_counts,
    plot_metric,
    plot_umis_vs_genes,
)
from scqc.plotting.styles import (
    DEFAULT_PLOT_STYLE,
    PlotStyle,
    apply_plot_style,
    plot_style_dict,
)
from scqc.plotting.utils import render_na_panel, sanitize_label, save_figure

__all__ = [
    "PLOT_KINDS",
    "PlotStyle",
    "DEFAULT_PLOT_STYLE",
    "apply_plot_style",
    "plot_style_dict",
    "grouped_metric",
    "plot_metric",
    "plot_cell_counts",
    "plot_umis_vs_genes",
    "render_na_panel",
    "sanitize_label",
    "save_figure",
]
