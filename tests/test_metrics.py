from __future__ import annotations

import anndata as ad
import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from scqc.core.metrics import (
    compute_novelty,
    cells_per_gene,
    genes_per_cell,
    mito_flags,
    mito_ratio,
    novelty_score,
    per_cell_metrics,
    reads_per_cell,
    sample_summary,
    umis_per_cell,
    with_metrics,
)


def _make_counts_adata(sparse: bool = False) -> ad.AnnData:
    # cell_0: 10 UMIs over 4 genes, 2 of them mitochondrial
    # cell_1: 6 UMIs over 2 genes, no mitochondrial counts
    # cell_2: empty droplet
    X = np.array(
        [
            [4, 3, 2, 1, 0],
            [0, 0, 0, 2, 4],
            [0, 0, 0, 0, 0],
        ],
        dtype=np.int64,
    )
    var = pd.DataFrame(
        {"gene_symbol": ["MT-CO1", "mt-nd1", "ACTB", "GAPDH", "LYZ"]},
        index=[f"ENSG{i:05d}" for i in range(5)],
    )
    obs = pd.DataFrame(
        {"sample_id": ["s1", "s1", "s2"], "barcode": ["AAAC", "AAAG", "AAAC"]},
        index=["cell_0", "cell_1", "cell_2"],
    )
    return ad.AnnData(X=sp.csr_matrix(X) if sparse else X, obs=obs, var=var)


def test_novelty_ratio_matches_genes_over_umis():
    out = compute_novelty(np.array([500.0]), np.array([1000.0]))
    assert out[0] == pytest.approx(0.5)


def test_novelty_zero_umis_is_nan():
    out = compute_novelty(np.array([0.0, 3.0]), np.array([0.0, 3.0]))
    assert np.isnan(out[0])
    assert out[1] == pytest.approx(1.0)


def test_novelty_log10_method():
    out = compute_novelty(np.array([100.0, 1.0]), np.array([1000.0, 1.0]), method="log10")
    assert out[0] == pytest.approx(2.0 / 3.0)
    assert np.isnan(out[1])


def test_novelty_unknown_method_rejected():
    with pytest.raises(ValueError, match="Unknown novelty method"):
        compute_novelty(np.array([1.0]), np.array([1.0]), method="sqrt")


@pytest.mark.parametrize("sparse", [False, True])
def test_accessors_compute_from_counts(sparse):
    adata = _make_counts_adata(sparse=sparse)
    np.testing.assert_array_equal(umis_per_cell(adata), [10.0, 6.0, 0.0])
    np.testing.assert_array_equal(genes_per_cell(adata), [4.0, 2.0, 0.0])
    np.testing.assert_array_equal(cells_per_gene(adata), [1, 1, 1, 2, 1])
    np.testing.assert_array_equal(mito_flags(adata), [True, True, False, False, False])
    np.testing.assert_allclose(mito_ratio(adata), [0.7, 0.0, 0.0])
    nov = novelty_score(adata)
    assert nov[0] == pytest.approx(0.4)
    assert np.isnan(nov[2])


def test_accessors_prefer_stored_columns():
    adata = _make_counts_adata()
    adata.obs["n_umis"] = [99.0, 98.0, 97.0]
    adata.obs["mito_ratio"] = [0.5, 0.25, 0.0]
    adata.var["mito"] = [False, False, False, False, True]
    np.testing.assert_array_equal(umis_per_cell(adata), [99.0, 98.0, 97.0])
    np.testing.assert_array_equal(mito_ratio(adata), [0.5, 0.25, 0.0])
    np.testing.assert_array_equal(mito_flags(adata), [False, False, False, False, True])


def test_reads_per_cell_only_from_upstream():
    adata = _make_counts_adata()
    assert reads_per_cell(adata) is None
    adata.obs["n_reads"] = [120, 80, 3]
    np.testing.assert_array_equal(reads_per_cell(adata), [120.0, 80.0, 3.0])


def test_with_metrics_populates_copy_without_mutating_input():
    adata = _make_counts_adata()
    before_obs = list(adata.obs.columns)
    before_var = list(adata.var.columns)

    out = with_metrics(adata)

    assert list(adata.obs.columns) == before_obs
    assert list(adata.var.columns) == before_var
    for col in ["n_umis", "n_genes", "novelty", "mito_ratio"]:
        assert col in out.obs.columns
    np.testing.assert_array_equal(out.obs["n_umis"].to_numpy(), [10.0, 6.0, 0.0])
    np.testing.assert_array_equal(out.obs["n_genes"].to_numpy(), [4, 2, 0])
    np.testing.assert_allclose(out.obs["mito_ratio"].to_numpy(), [0.7, 0.0, 0.0])
    np.testing.assert_array_equal(out.var["n_cells"].to_numpy(), [1, 1, 1, 2, 1])
    assert out.var["mito"].dtype == bool


def test_with_metrics_keeps_existing_values():
    adata = _make_counts_adata()
    adata.obs["novelty"] = [0.9, 0.8, 0.7]
    out = with_metrics(adata)
    np.testing.assert_array_equal(out.obs["novelty"].to_numpy(), [0.9, 0.8, 0.7])


def test_per_cell_metrics_and_sample_summary():
    adata = with_metrics(_make_counts_adata())
    table = per_cell_metrics(adata)
    assert list(table.index) == ["cell_0", "cell_1", "cell_2"]
    assert "n_reads" not in table.columns

    summary = sample_summary(adata)
    assert summary["sample_id"].tolist() == ["s1", "s2"]
    assert summary["n_cells"].tolist() == [2, 1]
    assert summary.loc[0, "median_n_umis"] == pytest.approx(8.0)


def test_sample_summary_empty_experiment():
    full = with_metrics(_make_counts_adata())
    adata = full[np.zeros(full.n_obs, dtype=bool)].copy()
    summary = sample_summary(adata)
    assert summary.empty
    assert "n_cells" in summary.columns
