"""Experiment loading with an explicit, extension-resolved input format."""

from __future__ import annotations

import logging
from pathlib import Path

import anndata as ad
import h5py
import numpy as np
from anndata._io.specs.registry import IORegistryError
from anndata.io import read_elem

from scqc.core.metrics import BARCODE_KEY, DEFAULT_MITO_PREFIX, SAMPLE_KEY, with_metrics
from scqc.core.types import InputFormat, LoadedExperiment
from scqc.errors import FormatError, NotFoundError

SUFFIX_FORMATS: dict[str, InputFormat] = {
    ".h5ad": InputFormat.SINGLE_OBJECT,
    ".h5": InputFormat.NAMED_OBJECT,
    ".hdf5": InputFormat.NAMED_OBJECT,
}

# h5py and anndata surface malformed files through several exception types.
_READ_ERRORS = (OSError, KeyError, ValueError, TypeError, IORegistryError)


def resolve_format(path: str | Path) -> InputFormat:
    suffix = Path(path).suffix.lower()
    if suffix not in SUFFIX_FORMATS:
        raise FormatError(
            f"Unsupported input format '{suffix}' for '{path}'. "
            f"Use one of: {', '.join(sorted(SUFFIX_FORMATS))}."
        )
    return SUFFIX_FORMATS[suffix]


def experiment_name(path: str | Path) -> str:
    return Path(path).stem


def _read_single_object(path: Path, name: str) -> object:
    del name
    try:
        return ad.read_h5ad(path)
    except _READ_ERRORS as exc:
        raise FormatError(f"Could not read '{path}' as an .h5ad experiment: {exc}") from exc


def _read_named_object(path: Path, name: str) -> object:
    try:
        with h5py.File(path, "r") as fh:
            keys = sorted(fh.keys())
            if name in fh:
                key = name
            elif len(keys) == 1:
                key = keys[0]
            else:
                raise FormatError(
                    f"No object named '{name}' in '{path}'. Found: {', '.join(keys) or 'none'}."
                )
            return read_elem(fh[key])
    except FormatError:
        raise
    except _READ_ERRORS as exc:
        raise FormatError(f"Could not read named object '{name}' from '{path}': {exc}") from exc


_READERS = {
    InputFormat.SINGLE_OBJECT: _read_single_object,
    InputFormat.NAMED_OBJECT: _read_named_object,
}


def validate_experiment(obj: object, sample_key: str = SAMPLE_KEY) -> ad.AnnData:
    """Check experiment shape and return a copy with a `barcode` column.

    Barcodes default to `obs_names` when the column is absent and must be
    unique within each sample.
    """
    if not isinstance(obj, ad.AnnData):
        raise FormatError(f"Expected an AnnData experiment, got {type(obj).__name__}.")
    if obj.X is None:
        raise FormatError("Experiment has no count matrix (X is None).")
    if sample_key not in obj.obs.columns:
        raise FormatError(f"Experiment is missing required per-cell column obs['{sample_key}'].")

    adata = obj.copy()
    if BARCODE_KEY not in adata.obs.columns:
        adata.obs[BARCODE_KEY] = adata.obs_names.astype(str)
    pairs = adata.obs[[sample_key, BARCODE_KEY]].astype(str)
    dup = pairs.duplicated(keep=False).to_numpy()
    if bool(np.any(dup)):
        examples = pairs[dup].drop_duplicates().head(3)
        listed = ", ".join(f"{s}/{b}" for s, b in examples.itertuples(index=False))
        raise FormatError(f"Barcodes must be unique within each sample; duplicates: {listed}.")
    return adata


def load_experiment(
    path: str | Path,
    *,
    sample_key: str = SAMPLE_KEY,
    mito_prefix: str = DEFAULT_MITO_PREFIX,
    novelty_method: str = "ratio",
    logger: logging.Logger | None = None,
) -> LoadedExperiment:
    """Load, validate, and populate metrics for one experiment file."""
    log = logger if isinstance(logger, logging.Logger) else logging.getLogger("scqc.loader")
    in_path = Path(path)
    if not in_path.exists():
        raise NotFoundError(f"Input file '{in_path}' not found.")
    input_format = resolve_format(in_path)
    name = experiment_name(in_path)

    raw = _READERS[input_format](in_path, name)
    adata = validate_experiment(raw, sample_key=sample_key)
    adata = with_metrics(adata, mito_prefix=mito_prefix, novelty_method=novelty_method)
    log.info(
        "Loaded '%s' (%s): %s cells x %s genes.",
        name,
        input_format.value,
        adata.n_obs,
        adata.n_vars,
    )
    return LoadedExperiment(adata=adata, name=name, input_format=input_format, path=in_path)
