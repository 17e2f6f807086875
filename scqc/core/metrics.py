"""Per-cell and per-gene QC metric accessors.

Accessors prefer values already stored in `obs`/`var` and only compute from
the count matrix when a column is absent. None of them mutate their input.
"""

from __future__ import annotations

from typing import Any

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc
import scipy.sparse as sp

SAMPLE_KEY = "sample_id"
BARCODE_KEY = "barcode"
READS_KEY = "n_reads"
UMIS_KEY = "n_umis"
GENES_KEY = "n_genes"
NOVELTY_KEY = "novelty"
MITO_RATIO_KEY = "mito_ratio"
MITO_FLAG_KEY = "mito"
CELLS_PER_GENE_KEY = "n_cells"

SYMBOL_COLUMNS: tuple[str, ...] = ("gene_symbol", "gene_name", "hugo_symbol")
NOVELTY_METHODS: tuple[str, ...] = ("ratio", "log10")
DEFAULT_MITO_PREFIX = "MT-"

CELL_METRICS: tuple[str, ...] = (READS_KEY, UMIS_KEY, GENES_KEY, NOVELTY_KEY, MITO_RATIO_KEY)

METRIC_LABELS: dict[str, str] = {
    READS_KEY: "reads per cell",
    UMIS_KEY: "UMIs per cell",
    GENES_KEY: "genes detected per cell",
    NOVELTY_KEY: "novelty (genes / UMIs)",
    MITO_RATIO_KEY: "mitochondrial ratio",
}

# Count-like metrics are easier to read on a log axis.
LOG_SCALE_METRICS = frozenset({READS_KEY, UMIS_KEY, GENES_KEY})


def _obs_numeric(adata: ad.AnnData, key: str) -> np.ndarray | None:
    if key not in adata.obs.columns:
        return None
    return pd.to_numeric(adata.obs[key], errors="coerce").to_numpy(dtype=float)


def _row_sums(X: Any) -> np.ndarray:
    return np.asarray(X.sum(axis=1)).ravel().astype(float)


def detected_per_row(X: Any) -> np.ndarray:
    """Number of nonzero entries per row (genes detected per cell)."""
    if sp.issparse(X):
        return np.asarray((X > 0).sum(axis=1)).ravel().astype(np.int64)
    return np.sum(np.asarray(X) > 0, axis=1).astype(np.int64)


def detected_per_column(X: Any) -> np.ndarray:
    """Number of nonzero entries per column (cells expressing each gene)."""
    if sp.issparse(X):
        return np.asarray((X > 0).sum(axis=0)).ravel().astype(np.int64)
    return np.sum(np.asarray(X) > 0, axis=0).astype(np.int64)


def gene_symbols(adata: ad.AnnData) -> pd.Series:
    for col in SYMBOL_COLUMNS:
        if col in adata.var.columns:
            return adata.var[col].astype("string").fillna("").astype(str)
    return pd.Series(adata.var_names.astype(str), index=adata.var_names)


def mito_flags(adata: ad.AnnData, mito_prefix: str = DEFAULT_MITO_PREFIX) -> np.ndarray:
    """Boolean mitochondrial flag per gene, from `var['mito']` or the symbol prefix."""
    if MITO_FLAG_KEY in adata.var.columns:
        return adata.var[MITO_FLAG_KEY].astype(bool).to_numpy()
    symbols = gene_symbols(adata).str.upper()
    return symbols.str.startswith(str(mito_prefix).upper()).to_numpy(dtype=bool)


def umis_per_cell(adata: ad.AnnData) -> np.ndarray:
    stored = _obs_numeric(adata, UMIS_KEY)
    if stored is not None:
        return stored
    return _row_sums(adata.X)


def genes_per_cell(adata: ad.AnnData) -> np.ndarray:
    stored = _obs_numeric(adata, GENES_KEY)
    if stored is not None:
        return stored
    return detected_per_row(adata.X).astype(float)


def reads_per_cell(adata: ad.AnnData) -> np.ndarray | None:
    """Raw read counts, only available when provided by the upstream pipeline."""
    return _obs_numeric(adata, READS_KEY)


def compute_novelty(
    n_genes: np.ndarray, n_umis: np.ndarray, method: str = "ratio"
) -> np.ndarray:
    """Novelty score per cell.

    `ratio` is genes / UMIs; `log10` is log10(genes) / log10(UMIs). Cells
    where the denominator vanishes get NaN rather than a 0/0 value.
    """
    genes = np.asarray(n_genes, dtype=float)
    umis = np.asarray(n_umis, dtype=float)
    out = np.full(umis.shape, np.nan, dtype=float)
    if method == "ratio":
        np.divide(genes, umis, out=out, where=umis > 0)
    elif method == "log10":
        valid = (umis > 1) & (genes > 0)
        np.divide(
            np.log10(np.where(valid, genes, 1.0)),
            np.log10(np.where(valid, umis, 10.0)),
            out=out,
            where=valid,
        )
    else:
        raise ValueError(
            f"Unknown novelty method '{method}'. Use one of: {', '.join(NOVELTY_METHODS)}."
        )
    return out


def novelty_score(adata: ad.AnnData, method: str = "ratio") -> np.ndarray:
    stored = _obs_numeric(adata, NOVELTY_KEY)
    if stored is not None:
        return stored
    return compute_novelty(genes_per_cell(adata), umis_per_cell(adata), method=method)


def mito_ratio(adata: ad.AnnData, mito_prefix: str = DEFAULT_MITO_PREFIX) -> np.ndarray:
    stored = _obs_numeric(adata, MITO_RATIO_KEY)
    if stored is not None:
        return stored
    flags = mito_flags(adata, mito_prefix)
    total = umis_per_cell(adata)
    if int(np.sum(flags)) == 0:
        return np.zeros(int(adata.n_obs), dtype=float)
    mito = _row_sums(adata.X[:, flags])
    return np.divide(mito, np.maximum(total, 1e-12))


def cells_per_gene(adata: ad.AnnData) -> np.ndarray:
    stored = (
        pd.to_numeric(adata.var[CELLS_PER_GENE_KEY], errors="coerce").to_numpy(dtype=float)
        if CELLS_PER_GENE_KEY in adata.var.columns
        else None
    )
    if stored is not None:
        return stored.astype(np.int64)
    return detected_per_column(adata.X)


def get_metric(adata: ad.AnnData, metric: str) -> np.ndarray | None:
    """Dispatch a metric name from `CELL_METRICS` to its accessor."""
    accessors = {
        READS_KEY: reads_per_cell,
        UMIS_KEY: umis_per_cell,
        GENES_KEY: genes_per_cell,
        NOVELTY_KEY: novelty_score,
        MITO_RATIO_KEY: mito_ratio,
    }
    if metric not in accessors:
        raise KeyError(f"Unknown metric '{metric}'. Use one of: {', '.join(CELL_METRICS)}.")
    return accessors[metric](adata)


def with_metrics(
    adata: ad.AnnData,
    *,
    mito_prefix: str = DEFAULT_MITO_PREFIX,
    novelty_method: str = "ratio",
) -> ad.AnnData:
    """Return a copy with every derivable metric column populated.

    Columns already present are kept as-is.
    """
    out = adata.copy()
    # calculate_qc_metrics needs a strictly boolean qc_vars column.
    out.var[MITO_FLAG_KEY] = mito_flags(adata, mito_prefix)
    if out.n_obs == 0 or out.n_vars == 0:
        obs_qc = pd.DataFrame(
            {"total_counts": _row_sums(out.X), "n_genes_by_counts": detected_per_row(out.X)},
            index=out.obs_names,
        )
        obs_qc[f"total_counts_{MITO_FLAG_KEY}"] = 0.0
        var_qc = pd.DataFrame(
            {"n_cells_by_counts": detected_per_column(out.X)}, index=out.var_names
        )
    else:
        obs_qc, var_qc = sc.pp.calculate_qc_metrics(
            out,
            qc_vars=[MITO_FLAG_KEY],
            percent_top=None,
            log1p=False,
            inplace=False,
        )

    if UMIS_KEY not in out.obs.columns:
        out.obs[UMIS_KEY] = obs_qc["total_counts"].to_numpy(dtype=float)
    if GENES_KEY not in out.obs.columns:
        out.obs[GENES_KEY] = obs_qc["n_genes_by_counts"].to_numpy(dtype=np.int64)
    if NOVELTY_KEY not in out.obs.columns:
        out.obs[NOVELTY_KEY] = compute_novelty(
            out.obs[GENES_KEY].to_numpy(dtype=float),
            out.obs[UMIS_KEY].to_numpy(dtype=float),
            method=novelty_method,
        )
    if MITO_RATIO_KEY not in out.obs.columns:
        mito_counts = obs_qc[f"total_counts_{MITO_FLAG_KEY}"].to_numpy(dtype=float)
        total = out.obs[UMIS_KEY].to_numpy(dtype=float)
        out.obs[MITO_RATIO_KEY] = np.divide(mito_counts, np.maximum(total, 1e-12))
    if CELLS_PER_GENE_KEY not in out.var.columns:
        out.var[CELLS_PER_GENE_KEY] = var_qc["n_cells_by_counts"].to_numpy(dtype=np.int64)
    return out


def per_cell_metrics(adata: ad.AnnData, sample_key: str = SAMPLE_KEY) -> pd.DataFrame:
    """Flat per-cell metric table indexed by `obs_names`."""
    frame = pd.DataFrame(index=adata.obs_names.copy())
    if sample_key in adata.obs.columns:
        frame[sample_key] = adata.obs[sample_key].astype(str).to_numpy()
    if BARCODE_KEY in adata.obs.columns:
        frame[BARCODE_KEY] = adata.obs[BARCODE_KEY].astype(str).to_numpy()
    for metric in CELL_METRICS:
        values = get_metric(adata, metric)
        if values is not None:
            frame[metric] = values
    return frame


def sample_summary(adata: ad.AnnData, sample_key: str = SAMPLE_KEY) -> pd.DataFrame:
    """Per-sample cell counts and median metrics."""
    metrics = per_cell_metrics(adata, sample_key=sample_key)
    value_cols = [c for c in CELL_METRICS if c in metrics.columns]
    columns = [sample_key, "n_cells", *[f"median_{c}" for c in value_cols]]
    if metrics.empty or sample_key not in metrics.columns:
        return pd.DataFrame(columns=columns)
    grouped = metrics.groupby(sample_key, sort=True, observed=True)
    summary = grouped[value_cols].median().add_prefix("median_")
    summary.insert(0, "n_cells", grouped.size().astype(int))
    return summary.reset_index()[columns]
