"""Typed configuration and result containers for scqc core operations."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anndata as ad
import numpy as np

CELL_BOUND_FIELDS: tuple[str, ...] = (
    "min_umis",
    "max_umis",
    "min_genes",
    "max_genes",
    "min_novelty",
    "max_mito_ratio",
)


def is_bound(value: float | None) -> bool:
    """True when `value` constrains anything (not None and finite)."""
    if value is None:
        return False
    return math.isfinite(float(value))


class InputFormat(enum.Enum):
    """Closed set of on-disk experiment layouts, resolved once per load."""

    SINGLE_OBJECT = "single_object"
    NAMED_OBJECT = "named_object"


@dataclass(frozen=True)
class FilterThresholds:
    """Cell and gene filtering criteria.

    Every bound is inclusive. `None` or an infinite value disables that axis.
    """

    min_umis: float | None = None
    max_umis: float | None = None
    min_genes: float | None = None
    max_genes: float | None = None
    min_novelty: float | None = None
    max_mito_ratio: float | None = None
    min_cells_per_gene: int | None = None
    n_cells: int | None = None

    def __post_init__(self) -> None:
        for name in CELL_BOUND_FIELDS:
            value = getattr(self, name)
            if value is not None and math.isnan(float(value)):
                raise ValueError(f"{name} must not be NaN.")
        if is_bound(self.min_cells_per_gene) and int(self.min_cells_per_gene) < 0:
            raise ValueError("min_cells_per_gene must be non-negative.")
        if is_bound(self.n_cells) and int(self.n_cells) < 0:
            raise ValueError("n_cells must be non-negative.")

    def umi_only(self) -> FilterThresholds:
        """UMI-bound pre-filter: no other cell criteria, no gene filter, no cap."""
        return FilterThresholds(min_umis=self.min_umis, max_umis=self.max_umis)

    def active(self) -> dict[str, float]:
        """Bounds that actually constrain, keyed by field name."""
        out: dict[str, float] = {}
        for name in (*CELL_BOUND_FIELDS, "min_cells_per_gene", "n_cells"):
            value = getattr(self, name)
            if is_bound(value):
                out[name] = float(value)
        return out


@dataclass(frozen=True)
class FilterResult:
    """Output of `filter_experiment`.

    - `cell_mask`/`gene_mask`: boolean masks over the input's cells/genes.
    - `summary`: counts before/after and per-criterion failures.
    """

    adata: ad.AnnData
    cell_mask: np.ndarray
    gene_mask: np.ndarray
    thresholds: FilterThresholds
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def n_cells(self) -> int:
        return int(self.adata.n_obs)

    @property
    def n_genes(self) -> int:
        return int(self.adata.n_vars)


@dataclass(frozen=True)
class LoadedExperiment:
    """Experiment returned by the loader, with its display name."""

    adata: ad.AnnData
    name: str
    input_format: InputFormat
    path: Path
