"""Threshold-based cell and gene filtering."""

from __future__ import annotations

import logging
from typing import Any

import anndata as ad
import numpy as np

from scqc.core.metrics import (
    CELLS_PER_GENE_KEY,
    DEFAULT_MITO_PREFIX,
    GENES_KEY,
    MITO_RATIO_KEY,
    NOVELTY_KEY,
    UMIS_KEY,
    detected_per_column,
    genes_per_cell,
    mito_ratio,
    novelty_score,
    umis_per_cell,
    with_metrics,
)
from scqc.core.types import FilterResult, FilterThresholds, is_bound

REQUIRED_METRIC_COLUMNS: tuple[str, ...] = (UMIS_KEY, GENES_KEY, NOVELTY_KEY, MITO_RATIO_KEY)


def _filter_logger(logger: logging.Logger | None) -> logging.Logger:
    if isinstance(logger, logging.Logger):
        return logger
    return logging.getLogger("scqc.filtering")


def _bounded(
    values: np.ndarray, low: float | None = None, high: float | None = None
) -> np.ndarray:
    # NaN compares False, so undefined metrics fail any active bound.
    arr = np.asarray(values, dtype=float)
    mask = np.ones(arr.shape, dtype=bool)
    if is_bound(low):
        mask &= arr >= float(low)
    if is_bound(high):
        mask &= arr <= float(high)
    return mask


def criterion_masks(adata: ad.AnnData, thresholds: FilterThresholds) -> dict[str, np.ndarray]:
    """Per-criterion pass masks over cells, one entry per active criterion."""
    t = thresholds
    masks: dict[str, np.ndarray] = {}
    if is_bound(t.min_umis) or is_bound(t.max_umis):
        masks[UMIS_KEY] = _bounded(umis_per_cell(adata), t.min_umis, t.max_umis)
    if is_bound(t.min_genes) or is_bound(t.max_genes):
        masks[GENES_KEY] = _bounded(genes_per_cell(adata), t.min_genes, t.max_genes)
    if is_bound(t.min_novelty):
        masks[NOVELTY_KEY] = _bounded(novelty_score(adata), low=t.min_novelty)
    if is_bound(t.max_mito_ratio):
        masks[MITO_RATIO_KEY] = _bounded(mito_ratio(adata), high=t.max_mito_ratio)
    return masks


def cell_mask(adata: ad.AnnData, thresholds: FilterThresholds) -> np.ndarray:
    """Conjunction of all active cell-level predicates."""
    mask = np.ones(int(adata.n_obs), dtype=bool)
    for crit in criterion_masks(adata, thresholds).values():
        mask &= crit
    return mask


def cap_cells(mask: np.ndarray, umis: np.ndarray, n_cells: int | None) -> np.ndarray:
    """Keep at most `n_cells` passing cells, ranked by UMI count descending.

    Ties keep original order (stable sort).
    """
    keep = np.asarray(mask, dtype=bool).copy()
    if not is_bound(n_cells):
        return keep
    limit = int(n_cells)
    passing = np.flatnonzero(keep)
    if passing.size <= limit:
        return keep
    umi_arr = np.asarray(umis, dtype=float)
    order = np.argsort(-umi_arr[passing], kind="mergesort")
    capped = np.zeros_like(keep)
    capped[passing[order[:limit]]] = True
    return capped


def gene_mask(
    adata: ad.AnnData, cells: np.ndarray, min_cells_per_gene: int | None
) -> tuple[np.ndarray, np.ndarray]:
    """Genes expressed (count > 0) in at least `min_cells_per_gene` surviving cells.

    Returns `(mask, n_cells_expressing)`, both over all genes of `adata`.
    """
    cells = np.asarray(cells, dtype=bool)
    if cells.size != int(adata.n_obs):
        raise ValueError("cell mask length must match adata.n_obs.")
    if int(cells.sum()) == 0:
        counts = np.zeros(int(adata.n_vars), dtype=np.int64)
    else:
        counts = detected_per_column(adata.X[cells])
    threshold = int(min_cells_per_gene) if is_bound(min_cells_per_gene) else 0
    return counts >= threshold, counts


def _has_metrics(adata: ad.AnnData) -> bool:
    return all(col in adata.obs.columns for col in REQUIRED_METRIC_COLUMNS)


def filter_experiment(
    adata: ad.AnnData,
    thresholds: FilterThresholds,
    *,
    mito_prefix: str = DEFAULT_MITO_PREFIX,
    novelty_method: str = "ratio",
    logger: logging.Logger | None = None,
) -> FilterResult:
    """Apply cell and gene thresholds, returning a new subsetted experiment.

    Per-cell metrics are materialized on the input before subsetting, so they
    describe the cell's full profile and re-filtering is a fixed point. An
    empty result is valid.
    """
    log = _filter_logger(logger)
    work = adata if _has_metrics(adata) else with_metrics(
        adata, mito_prefix=mito_prefix, novelty_method=novelty_method
    )

    crit = criterion_masks(work, thresholds)
    passing = np.ones(int(work.n_obs), dtype=bool)
    for m in crit.values():
        passing &= m
    cells = cap_cells(passing, umis_per_cell(work), thresholds.n_cells)
    genes, expressing = gene_mask(work, cells, thresholds.min_cells_per_gene)

    out = work[cells, genes].copy()
    out.var[CELLS_PER_GENE_KEY] = expressing[genes]

    summary: dict[str, Any] = {
        "n_cells_before": int(work.n_obs),
        "n_genes_before": int(work.n_vars),
        "n_cells_passing_criteria": int(passing.sum()),
        "n_cells_removed_by_cap": int(passing.sum() - cells.sum()),
        "n_cells_after": int(out.n_obs),
        "n_genes_after": int(out.n_vars),
        "failed": {name: int((~m).sum()) for name, m in crit.items()},
        "thresholds": thresholds.active(),
    }
    log.info(
        "Filtered cells %s -> %s, genes %s -> %s (thresholds=%s).",
        summary["n_cells_before"],
        summary["n_cells_after"],
        summary["n_genes_before"],
        summary["n_genes_after"],
        summary["thresholds"],
    )
    if out.n_obs == 0:
        log.warning("No cells passed filtering; continuing with an empty experiment.")
    return FilterResult(
        adata=out,
        cell_mask=cells,
        gene_mask=genes,
        thresholds=thresholds,
        summary=summary,
    )
