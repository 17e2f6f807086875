from __future__ import annotations

import json
import os
from pathlib import Path

import anndata as ad
import matplotlib
import numpy as np
import pandas as pd

os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use("Agg", force=True)

from scqc import cli


def _write_h5ad(path: Path) -> None:
    rng = np.random.default_rng(9)
    X = rng.poisson(4.0, size=(12, 20)).astype(np.int64)
    obs = pd.DataFrame(
        {"sample_id": ["a"] * 6 + ["b"] * 6},
        index=[f"cell_{i}" for i in range(12)],
    )
    var = pd.DataFrame(index=["MT-CO1"] + [f"GENE{j}" for j in range(1, 20)])
    ad.AnnData(X=X, obs=obs, var=var).write_h5ad(path)


def _base_args(tmp_path: Path) -> list[str]:
    return [
        "--outdir",
        str(tmp_path / "results"),
        "--datadir",
        str(tmp_path / "data"),
        "--plot-kinds",
        "ecdf",
    ]


def test_cli_runs_report(tmp_path, capsys):
    input_path = tmp_path / "run1.h5ad"
    _write_h5ad(input_path)
    rc = cli.main(
        [
            "--input",
            str(input_path),
            "--min-umis",
            "10",
            "--min-genes",
            "5",
            "--min-novelty",
            "0.1",
            "--max-mito-ratio",
            "0.5",
            "--min-cells-per-gene",
            "2",
            "--n-cells",
            "8",
            *_base_args(tmp_path),
        ]
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "n_cells=8" in out
    assert f"filtered={(tmp_path / 'data' / 'run1_filtered.h5ad').as_posix()}" in out
    assert (tmp_path / "results" / "report.md").exists()


def test_cli_flags_override_config_file(tmp_path):
    input_path = tmp_path / "run1.h5ad"
    _write_h5ad(input_path)
    cfg_path = tmp_path / "qc.json"
    cfg_path.write_text(
        json.dumps({"input_path": str(input_path), "n_cells": 3, "min_umis": 10}),
        encoding="utf-8",
    )
    args = cli.parse_args(["--config", str(cfg_path), "--n-cells", "5", "--title", "Run 1 QC"])
    cfg = cli.build_config(args)
    assert cfg.n_cells == 5
    assert cfg.min_umis == 10
    assert cfg.title == "Run 1 QC"
    assert cfg.input_path == str(input_path)


def test_cli_missing_input_is_stage_failure(tmp_path):
    rc = cli.main(["--input", str(tmp_path / "absent.h5ad"), *_base_args(tmp_path)])
    assert rc == 1


def test_cli_invalid_config_returns_2(tmp_path):
    assert cli.main(_base_args(tmp_path)) == 2
    assert cli.main(["--input", "x.h5ad", "--min-umis", "10", "--max-umis", "5"]) == 2
    assert cli.main(["--config", str(tmp_path / "absent.json")]) == 2
