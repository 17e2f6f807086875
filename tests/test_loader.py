from __future__ import annotations

import anndata as ad
import h5py
import numpy as np
import pandas as pd
import pytest
from anndata.io import write_elem

from scqc.core.types import InputFormat
from scqc.errors import FormatError, NotFoundError
from scqc.pipeline.loader import (
    experiment_name,
    load_experiment,
    resolve_format,
    validate_experiment,
)


def _make_adata(n_cells: int = 6, n_genes: int = 4, with_barcodes: bool = True) -> ad.AnnData:
    rng = np.random.default_rng(0)
    X = rng.poisson(3.0, size=(n_cells, n_genes)).astype(np.int64)
    obs = pd.DataFrame(
        {"sample_id": ["s1"] * (n_cells // 2) + ["s2"] * (n_cells - n_cells // 2)},
        index=[f"cell_{i}" for i in range(n_cells)],
    )
    if with_barcodes:
        obs["barcode"] = [f"BC{i % (n_cells // 2)}" for i in range(n_cells)]
    var = pd.DataFrame(
        {"gene_symbol": ["MT-CO1"] + [f"GENE{j}" for j in range(1, n_genes)]},
        index=[f"ENSG{j:05d}" for j in range(n_genes)],
    )
    return ad.AnnData(X=X, obs=obs, var=var)


def test_resolve_format_by_extension():
    assert resolve_format("x/pbmc.h5ad") is InputFormat.SINGLE_OBJECT
    assert resolve_format("x/pbmc.H5") is InputFormat.NAMED_OBJECT
    assert resolve_format("x/pbmc.hdf5") is InputFormat.NAMED_OBJECT
    with pytest.raises(FormatError, match="Unsupported input format"):
        resolve_format("x/pbmc.loom")


def test_experiment_name_is_file_stem():
    assert experiment_name("/data/run_01/pbmc3k.h5ad") == "pbmc3k"


def test_missing_file_raises_not_found(tmp_path):
    with pytest.raises(NotFoundError):
        load_experiment(tmp_path / "absent.h5ad")


def test_unsupported_extension_raises_format_error(tmp_path):
    path = tmp_path / "counts.csv"
    path.write_text("a,b\n1,2\n", encoding="utf-8")
    with pytest.raises(FormatError):
        load_experiment(path)


def test_corrupt_h5ad_raises_format_error(tmp_path):
    path = tmp_path / "broken.h5ad"
    path.write_bytes(b"not an hdf5 file")
    with pytest.raises(FormatError):
        load_experiment(path)


def test_load_single_object_populates_metrics(tmp_path):
    path = tmp_path / "pbmc.h5ad"
    _make_adata().write_h5ad(path)

    loaded = load_experiment(path)

    assert loaded.name == "pbmc"
    assert loaded.input_format is InputFormat.SINGLE_OBJECT
    assert loaded.adata.shape == (6, 4)
    for col in ["n_umis", "n_genes", "novelty", "mito_ratio"]:
        assert col in loaded.adata.obs.columns
    assert "n_cells" in loaded.adata.var.columns
    assert loaded.adata.var["mito"].tolist() == [True, False, False, False]


def test_load_named_object_by_stem(tmp_path):
    path = tmp_path / "pbmc.h5"
    target = _make_adata(n_cells=4)
    other = _make_adata(n_cells=8)
    with h5py.File(path, "w") as fh:
        write_elem(fh, "other", other)
        write_elem(fh, "pbmc", target)

    loaded = load_experiment(path)

    assert loaded.input_format is InputFormat.NAMED_OBJECT
    assert loaded.name == "pbmc"
    assert loaded.adata.n_obs == 4
    assert loaded.adata.obs_names.tolist() == target.obs_names.tolist()


def test_load_named_object_single_group(tmp_path):
    path = tmp_path / "run.h5"
    with h5py.File(path, "w") as fh:
        write_elem(fh, "experiment", _make_adata())
    loaded = load_experiment(path)
    assert loaded.name == "run"
    assert loaded.adata.n_obs == 6


def test_load_named_object_ambiguous_groups(tmp_path):
    path = tmp_path / "run.h5"
    with h5py.File(path, "w") as fh:
        write_elem(fh, "a", _make_adata())
        write_elem(fh, "b", _make_adata())
    with pytest.raises(FormatError, match="No object named 'run'"):
        load_experiment(path)


def test_named_object_of_wrong_type(tmp_path):
    path = tmp_path / "run.h5"
    with h5py.File(path, "w") as fh:
        write_elem(fh, "run", np.arange(5))
    with pytest.raises(FormatError, match="Expected an AnnData"):
        load_experiment(path)


def test_missing_sample_column():
    adata = _make_adata()
    del adata.obs["sample_id"]
    with pytest.raises(FormatError, match="sample_id"):
        validate_experiment(adata)


def test_custom_sample_key():
    adata = _make_adata()
    adata.obs = adata.obs.rename(columns={"sample_id": "orig.ident"})
    out = validate_experiment(adata, sample_key="orig.ident")
    assert "orig.ident" in out.obs.columns


def test_duplicate_barcodes_within_sample_rejected():
    adata = _make_adata()
    adata.obs["barcode"] = ["BC0", "BC0", "BC1", "BC0", "BC1", "BC2"]
    with pytest.raises(FormatError, match="s1/BC0"):
        validate_experiment(adata)


def test_same_barcode_in_different_samples_allowed():
    adata = _make_adata()
    out = validate_experiment(adata)
    assert out.obs["barcode"].tolist() == ["BC0", "BC1", "BC2", "BC0", "BC1", "BC2"]


def test_barcode_defaults_to_obs_names():
    adata = _make_adata(with_barcodes=False)
    out = validate_experiment(adata)
    assert out.obs["barcode"].tolist() == out.obs_names.tolist()
    assert "barcode" not in adata.obs.columns


def test_named_object_with_unknown_encoding(tmp_path):
    path = tmp_path / "run.h5"
    with h5py.File(path, "w") as fh:
        group = fh.create_group("run")
        group.attrs["encoding-type"] = "bogus"
        group.attrs["encoding-version"] = "0.1.0"
    with pytest.raises(FormatError, match="Could not read named object 'run'"):
        load_experiment(path)
