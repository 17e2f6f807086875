"""Per-sample QC metric figure factories."""

from __future__ import annotations

from pathlib import Path

import anndata as ad
import matplotlib.axes
import matplotlib.figure
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.stats import gaussian_kde

from scqc.core.metrics import (
    GENES_KEY,
    LOG_SCALE_METRICS,
    METRIC_LABELS,
    MITO_RATIO_KEY,
    SAMPLE_KEY,
    UMIS_KEY,
    get_metric,
    genes_per_cell,
    mito_ratio,
    umis_per_cell,
)
from scqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from scqc.plotting.utils import render_na_panel, save_figure

PLOT_KINDS: tuple[str, ...] = ("histogram", "ecdf", "violin", "ridgeline")

Bounds = tuple[float | None, float | None]


def _ecdf(values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    x = np.sort(np.asarray(values, dtype=float).ravel())
    if x.size == 0:
        return np.zeros(0, dtype=float), np.zeros(0, dtype=float)
    y = np.arange(1, x.size + 1, dtype=float) / float(x.size)
    return x, y


def _group_labels(adata: ad.AnnData, group_key: str | None) -> np.ndarray:
    if group_key is None or group_key not in adata.obs.columns:
        return np.full(int(adata.n_obs), "all", dtype=object)
    return adata.obs[group_key].astype("string").fillna("NA").astype(str).to_numpy()


def grouped_metric(
    adata: ad.AnnData,
    metric: str,
    group_key: str | None = SAMPLE_KEY,
    *,
    log_scale: bool = False,
) -> list[tuple[str, np.ndarray]]:
    """Finite metric values split by group, groups in sorted order.

    With `log_scale`, non-positive values are dropped.
    """
    values = get_metric(adata, metric)
    if values is None:
        raise KeyError(f"Metric '{metric}' is not available for this experiment.")
    values = np.asarray(values, dtype=float)
    labels = _group_labels(adata, group_key)
    keep = np.isfinite(values)
    if log_scale:
        keep &= values > 0
    groups = sorted(pd.unique(labels).tolist())
    return [(str(g), values[keep & (labels == g)]) for g in groups]


def _palette(groups: list[str], style: PlotStyle) -> dict[str, tuple[float, float, float, float]]:
    cmap = plt.get_cmap(style.cmap_groups)
    n = getattr(cmap, "N", 10)
    return {g: cmap(i % n) for i, g in enumerate(groups)}


def _active(bounds: Bounds | None) -> list[float]:
    if bounds is None:
        return []
    return [float(b) for b in bounds if b is not None and np.isfinite(float(b))]


def _draw_threshold_lines(
    ax: matplotlib.axes.Axes, values: list[float], *, vertical: bool, style: PlotStyle
) -> None:
    for value in values:
        line = ax.axvline if vertical else ax.axhline
        line(value, color=style.threshold_color, linestyle=style.threshold_style, linewidth=1.0)


def _draw_histogram(ax, groups, colors, log_scale: bool, style: PlotStyle) -> None:
    pooled = np.concatenate([v for _, v in groups])
    lo, hi = float(np.min(pooled)), float(np.max(pooled))
    if log_scale:
        if np.isclose(lo, hi):
            lo, hi = lo / 2.0, hi * 2.0
        edges = np.logspace(np.log10(lo), np.log10(hi), style.hist_bins + 1)
        ax.set_xscale("log")
    else:
        edges = np.histogram_bin_edges(pooled, bins=style.hist_bins)
    for name, vals in groups:
        if vals.size == 0:
            continue
        ax.hist(
            vals,
            bins=edges,
            histtype="step",
            linewidth=style.line_width,
            color=colors[name],
            label=name,
        )
    ax.set_ylabel("cells")


def _draw_ecdf(ax, groups, colors, log_scale: bool, style: PlotStyle) -> None:
    for name, vals in groups:
        x, y = _ecdf(vals)
        if x.size == 0:
            continue
        ax.step(x, y, where="post", linewidth=style.line_width, color=colors[name], label=name)
    if log_scale:
        ax.set_xscale("log")
    ax.set_ylim(0.0, 1.02)
    ax.set_ylabel("ECDF")


def _draw_violin(ax, groups, colors, log_scale: bool, style: PlotStyle) -> None:
    present = [(name, vals) for name, vals in groups if vals.size > 0]
    data = [np.log10(v) if log_scale else v for _, v in present]
    positions = np.arange(1, len(present) + 1)
    # violinplot needs a non-degenerate KDE; constant groups get a median tick.
    spread = [i for i, v in enumerate(data) if np.unique(v).size > 1]
    if spread:
        parts = ax.violinplot(
            [data[i] for i in spread],
            positions=positions[spread],
            showmedians=True,
            showextrema=False,
        )
        for body, i in zip(parts["bodies"], spread):
            body.set_facecolor(colors[present[i][0]])
            body.set_edgecolor("black")
            body.set_alpha(style.alpha_fill)
    for i in sorted(set(range(len(data))) - set(spread)):
        ax.scatter(
            [positions[i]], [data[i][0]], marker="_", s=400, color=colors[present[i][0]]
        )
    ax.set_xticks(positions)
    ax.set_xticklabels([name for name, _ in present], rotation=45, ha="right")


def _density(vals: np.ndarray, grid: np.ndarray) -> np.ndarray:
    if vals.size < 2 or np.unique(vals).size < 2:
        # Constant data: a single spike at the observed value.
        dens = np.zeros_like(grid)
        if vals.size:
            dens[int(np.argmin(np.abs(grid - vals[0])))] = 1.0
        return dens
    return gaussian_kde(vals)(grid)


def _draw_ridgeline(ax, groups, colors, log_scale: bool, style: PlotStyle) -> None:
    present = [(name, np.log10(v) if log_scale else v) for name, v in groups if v.size > 0]
    pooled = np.concatenate([v for _, v in present])
    lo, hi = float(np.min(pooled)), float(np.max(pooled))
    pad = 0.05 * (hi - lo) if hi > lo else 0.5
    grid = np.linspace(lo - pad, hi + pad, style.kde_points)
    for offset, (name, vals) in enumerate(present):
        dens = _density(vals, grid)
        peak = float(np.max(dens))
        scaled = dens / peak * style.ridge_overlap if peak > 0 else dens
        ax.fill_between(
            grid,
            offset,
            offset + scaled,
            color=colors[name],
            alpha=style.alpha_fill,
            linewidth=0,
        )
        ax.plot(grid, offset + scaled, color="black", linewidth=0.6)
    ax.set_yticks(np.arange(len(present)))
    ax.set_yticklabels([name for name, _ in present])
    ax.set_ylim(-0.2, len(present) - 1 + style.ridge_overlap + 0.2)


_DRAWERS = {
    "histogram": _draw_histogram,
    "ecdf": _draw_ecdf,
    "violin": _draw_violin,
    "ridgeline": _draw_ridgeline,
}


def plot_metric(
    adata: ad.AnnData,
    metric: str,
    kind: str,
    *,
    group_key: str | None = SAMPLE_KEY,
    bounds: Bounds | None = None,
    title: str | None = None,
    out_path: str | Path | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[matplotlib.figure.Figure, matplotlib.axes.Axes] | None:
    """Plot one per-cell metric, one series per group.

    `kind` is one of `PLOT_KINDS`. `bounds` draws (low, high) threshold guides.
    When `out_path` is given the figure is saved and closed.
    """
    if kind not in _DRAWERS:
        raise ValueError(f"Unknown plot kind '{kind}'. Use one of: {', '.join(PLOT_KINDS)}.")
    log_scale = metric in LOG_SCALE_METRICS
    groups = grouped_metric(adata, metric, group_key, log_scale=log_scale)
    colors = _palette([name for name, _ in groups], style)
    n_values = int(sum(v.size for _, v in groups))
    label = METRIC_LABELS.get(metric, metric)

    if kind == "ridgeline":
        height = max(style.figsize_metric[1], 1.0 + style.ridge_height * len(groups))
        fig, ax = plt.subplots(figsize=(style.figsize_metric[0], height))
    else:
        fig, ax = plt.subplots(figsize=style.figsize_metric)

    if n_values == 0:
        render_na_panel(ax, n=int(adata.n_obs), reason="no finite values", style=style)
    else:
        _DRAWERS[kind](ax, groups, colors, log_scale, style)
        guides = _active(bounds)
        value_axis_label = label
        if kind in {"violin", "ridgeline"} and log_scale:
            guides = [float(np.log10(g)) for g in guides if g > 0]
            value_axis_label = f"log10 {label}"
        _draw_threshold_lines(ax, guides, vertical=kind != "violin", style=style)
        if kind == "violin":
            ax.set_ylabel(value_axis_label)
        else:
            ax.set_xlabel(value_axis_label)
        if kind in {"histogram", "ecdf"} and 1 < len(groups) <= style.legend_max_groups:
            ax.legend(loc="best", frameon=True, fontsize=style.legend_fontsize)

    ax.set_title(title or f"{label} ({kind})", fontsize=style.title_fontsize)
    fig.tight_layout()
    if out_path is not None:
        save_figure(fig, Path(out_path), style=style)
        return None
    return fig, ax


def plot_cell_counts(
    adata: ad.AnnData,
    *,
    group_key: str | None = SAMPLE_KEY,
    title: str | None = None,
    out_path: str | Path | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[matplotlib.figure.Figure, matplotlib.axes.Axes] | None:
    """Bar chart of cells per group."""
    labels = _group_labels(adata, group_key)
    counts = pd.Series(labels, dtype=object).value_counts().sort_index()
    fig, ax = plt.subplots(figsize=style.figsize_counts)
    if counts.empty:
        render_na_panel(ax, n=0, style=style)
    else:
        colors = _palette(counts.index.astype(str).tolist(), style)
        bars = ax.bar(
            counts.index.astype(str),
            counts.to_numpy(),
            color=[colors[str(k)] for k in counts.index],
        )
        ax.bar_label(bars, fontsize=style.legend_fontsize)
        ax.set_ylabel("cells")
        ax.tick_params(axis="x", labelrotation=45)
    ax.set_title(title or "cells per sample", fontsize=style.title_fontsize)
    fig.tight_layout()
    if out_path is not None:
        save_figure(fig, Path(out_path), style=style)
        return None
    return fig, ax


def plot_umis_vs_genes(
    adata: ad.AnnData,
    *,
    umi_bounds: Bounds | None = None,
    gene_bounds: Bounds | None = None,
    title: str | None = None,
    out_path: str | Path | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[matplotlib.figure.Figure, matplotlib.axes.Axes] | None:
    """UMIs vs genes detected per cell, colored by mitochondrial ratio."""
    umis = umis_per_cell(adata)
    genes = genes_per_cell(adata)
    mito = mito_ratio(adata)
    keep = (umis > 0) & (genes > 0)
    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    if int(keep.sum()) == 0:
        render_na_panel(ax, n=int(adata.n_obs), style=style)
    else:
        order = np.argsort(mito[keep], kind="mergesort")
        pts = ax.scatter(
            umis[keep][order],
            genes[keep][order],
            c=mito[keep][order],
            cmap=style.cmap_mito,
            s=style.s_point,
            alpha=style.alpha_point,
            linewidths=0,
            rasterized=True,
        )
        ax.set_xscale("log")
        ax.set_yscale("log")
        _draw_threshold_lines(ax, _active(umi_bounds), vertical=True, style=style)
        _draw_threshold_lines(ax, _active(gene_bounds), vertical=False, style=style)
        cbar = fig.colorbar(pts, ax=ax, shrink=0.8, pad=0.02)
        cbar.set_label(METRIC_LABELS[MITO_RATIO_KEY], fontsize=style.axis_label_fontsize)
        ax.set_xlabel(METRIC_LABELS[UMIS_KEY])
        ax.set_ylabel(METRIC_LABELS[GENES_KEY])
    ax.set_title(title or "UMIs vs genes detected", fontsize=style.title_fontsize)
    fig.tight_layout()
    if out_path is not None:
        save_figure(fig, Path(out_path), style=style)
        return None
    return fig, ax
