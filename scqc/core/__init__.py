"""Core metric and filtering subpackage."""

from scqc.core.filtering import (
    cap_cells,
    cell_mask,
    criterion_masks,
    filter_experiment,
    gene_mask,
)
from scqc.core.metrics import (
    cells_per_gene,
    genes_per_cell,
    mito_ratio,
    novelty_score,
    per_cell_metrics,
    reads_per_cell,
    sample_summary,
    umis_per_cell,
    with_metrics,
)
from scqc.core.types import FilterResult, FilterThresholds, InputFormat, LoadedExperiment

__all__ = [
    "FilterThresholds",
    "FilterResult",
    "InputFormat",
    "LoadedExperiment",
    "cap_cells",
    "cell_mask",
    "criterion_masks",
    "filter_experiment",
    "gene_mask",
    "cells_per_gene",
    "genes_per_cell",
    "mito_ratio",
    "novelty_score",
    "per_cell_metrics",
    "reads_per_cell",
    "sample_summary",
    "umis_per_cell",
    "with_metrics",
]
