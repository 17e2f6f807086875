"""Native and flat-file export of filtered experiments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import anndata as ad
import numpy as np
import pandas as pd
import scipy.io
import scipy.sparse as sp

from scqc.core.metrics import BARCODE_KEY, SAMPLE_KEY, gene_symbols
from scqc.errors import ExportError, FormatError, NotFoundError
from scqc.pipeline.io import ensure_dir

MATRIX_FILE = "matrix.mtx"
BARCODES_FILE = "barcodes.tsv"
GENES_FILE = "genes.tsv"
CELL_METADATA_FILE = "cell_metadata.csv"
GENE_METADATA_FILE = "gene_metadata.csv"


@dataclass(frozen=True)
class ExportPaths:
    native: Path
    flat_dir: Path
    matrix: Path
    barcodes: Path
    genes: Path
    cell_metadata: Path
    gene_metadata: Path


def native_path(data_dir: str | Path, name: str) -> Path:
    return Path(data_dir) / f"{name}_filtered.h5ad"


def _flat_paths(flat_dir: Path) -> dict[str, Path]:
    return {
        "matrix": flat_dir / MATRIX_FILE,
        "barcodes": flat_dir / BARCODES_FILE,
        "genes": flat_dir / GENES_FILE,
        "cell_metadata": flat_dir / CELL_METADATA_FILE,
        "gene_metadata": flat_dir / GENE_METADATA_FILE,
    }


def _is_integral(X: Any) -> bool:
    data = X.data if sp.issparse(X) else np.asarray(X)
    if data.size == 0:
        return True
    if np.issubdtype(data.dtype, np.integer):
        return True
    return bool(np.all(np.mod(data, 1) == 0))


def _write_matrix(X: Any, path: Path) -> None:
    # Genes x cells, the orientation 10x-style tools expect.
    coo = sp.coo_matrix(X if sp.issparse(X) else np.asarray(X)).T
    field = "integer" if _is_integral(coo) else "real"
    if field == "integer":
        coo = coo.astype(np.int64)
    scipy.io.mmwrite(path.as_posix(), coo, field=field)


def _write_flat(adata: ad.AnnData, flat_dir: Path) -> dict[str, Path]:
    paths = _flat_paths(flat_dir)
    _write_matrix(adata.X, paths["matrix"])
    pd.Series(adata.obs_names.astype(str)).to_csv(
        paths["barcodes"], sep="\t", header=False, index=False
    )
    pd.DataFrame(
        {"gene_id": adata.var_names.astype(str), "gene_symbol": gene_symbols(adata).to_numpy()}
    ).to_csv(paths["genes"], sep="\t", header=False, index=False)
    adata.obs.to_csv(paths["cell_metadata"], index_label="cell_id")
    adata.var.to_csv(paths["gene_metadata"], index_label="gene_id")
    return paths


def export_experiment(
    adata: ad.AnnData,
    name: str,
    *,
    data_dir: str | Path,
    output_dir: str | Path,
    logger: logging.Logger | None = None,
) -> ExportPaths:
    """Write `<data_dir>/<name>_filtered.h5ad` and a flat export under `<output_dir>/<name>/`.

    Existing files are overwritten.
    """
    log = logger if isinstance(logger, logging.Logger) else logging.getLogger("scqc.export")
    native = native_path(data_dir, name)
    flat_dir = Path(output_dir) / name
    try:
        ensure_dir(native.parent)
        ensure_dir(flat_dir)
        adata.write_h5ad(native)
        paths = _write_flat(adata, flat_dir)
    except OSError as exc:
        raise ExportError(f"Could not export '{name}': {exc}") from exc

    log.info(
        "Exported %s cells x %s genes to %s and %s.",
        adata.n_obs,
        adata.n_vars,
        native.as_posix(),
        flat_dir.as_posix(),
    )
    return ExportPaths(native=native, flat_dir=flat_dir, **paths)


def _read_names(path: Path) -> list[str]:
    # First column, verbatim; IDs such as "0001" must not be parsed as numbers.
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.split("\t", 1)[0] for line in lines if line]


def _read_metadata(
    path: Path, index_label: str, names: list[str], id_columns: tuple[str, ...]
) -> pd.DataFrame:
    frame = pd.read_csv(
        path,
        index_col=0,
        dtype={index_label: str, **{col: str for col in id_columns}},
        keep_default_na=False,
        na_values=[""],
        float_precision="round_trip",
    )
    if frame.shape[0] != len(names):
        raise FormatError(
            f"'{path.name}' has {frame.shape[0]} rows but {len(names)} identifiers were exported."
        )
    frame.index = pd.Index(names)
    return frame


def read_flat_export(directory: str | Path) -> ad.AnnData:
    """Rebuild an AnnData from a flat export directory.

    Identifiers are taken verbatim from `barcodes.tsv`/`genes.tsv` and floats
    are parsed round-trip exact, so reloading loses nothing.
    """
    flat_dir = Path(directory)
    paths = _flat_paths(flat_dir)
    missing = [p.name for p in paths.values() if not p.exists()]
    if not flat_dir.exists() or missing:
        raise NotFoundError(f"Flat export in '{flat_dir}' is incomplete; missing: {', '.join(missing)}.")

    X = sp.csr_matrix(scipy.io.mmread(paths["matrix"].as_posix()).T)
    obs = _read_metadata(
        paths["cell_metadata"], "cell_id", _read_names(paths["barcodes"]), (SAMPLE_KEY, BARCODE_KEY)
    )
    var = _read_metadata(
        paths["gene_metadata"], "gene_id", _read_names(paths["genes"]), ("gene_symbol",)
    )
    if X.shape != (obs.shape[0], var.shape[0]):
        raise FormatError(
            f"Flat export matrix shape {X.shape} does not match metadata "
            f"({obs.shape[0]} cells x {var.shape[0]} genes)."
        )
    return ad.AnnData(X=X, obs=obs, var=var)
