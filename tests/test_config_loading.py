from __future__ import annotations

import json
from pathlib import Path

import pytest

from scqc.config import QCReportConfig, config_from_dict, load_config, load_json_config
from scqc.core.types import FilterThresholds


def test_load_config_applies_defaults(tmp_path: Path):
    cfg_path = tmp_path / "qc.json"
    cfg_path.write_text(
        json.dumps({"input_path": "data/pbmc.h5ad", "min_umis": 500, "max_umis": None}),
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    assert cfg.input_path == "data/pbmc.h5ad"
    assert cfg.min_umis == 500.0
    assert cfg.max_umis is None
    assert cfg.min_genes == 500
    assert cfg.min_novelty == 0.85
    assert cfg.max_mito_ratio == 0.1
    assert cfg.min_cells_per_gene == 10
    assert cfg.n_cells is None


def test_overrides_take_precedence(tmp_path: Path):
    cfg_path = tmp_path / "qc.json"
    cfg_path.write_text(json.dumps({"input_path": "a.h5ad", "n_cells": 100}), encoding="utf-8")
    cfg = load_config(cfg_path, n_cells=20, plot_kinds=["ecdf"])
    assert cfg.n_cells == 20
    assert cfg.plot_kinds == ("ecdf",)


def test_invalid_json_reports_line_and_column(tmp_path: Path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"a": 1,}\n', encoding="utf-8")
    with pytest.raises(ValueError, match=r"line \d+, column \d+"):
        load_json_config(bad)


def test_non_object_json_config_rejected(tmp_path: Path):
    bad = tmp_path / "list.json"
    bad.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    with pytest.raises(ValueError, match="expected JSON object"):
        load_json_config(bad)


def test_non_json_extension_rejected(tmp_path: Path):
    bad = tmp_path / "cfg.yaml"
    bad.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError, match="Use a .json config file"):
        load_json_config(bad)


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_json_config(tmp_path / "absent.json")


def test_unknown_keys_rejected():
    with pytest.raises(ValueError, match="Unknown config keys: min_reads"):
        config_from_dict({"input_path": "a.h5ad", "min_reads": 10})


def test_missing_input_path_rejected():
    with pytest.raises(ValueError, match="input_path"):
        config_from_dict({"min_umis": 10})


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"min_umis": 5000, "max_umis": 100}, "min_umis"),
        ({"min_genes": 10, "max_genes": 5}, "min_genes"),
        ({"max_mito_ratio": 1.5}, "max_mito_ratio"),
        ({"n_cells": -3}, "n_cells"),
        ({"novelty_method": "sqrt"}, "novelty_method"),
        ({"plot_kinds": ("boxplot",)}, "Unknown plot kinds"),
    ],
)
def test_invalid_values_rejected(kwargs, message):
    with pytest.raises(ValueError, match=message):
        QCReportConfig(input_path="a.h5ad", **kwargs)


def test_non_numeric_threshold_rejected():
    with pytest.raises(ValueError, match="Invalid config value"):
        config_from_dict({"input_path": "a.h5ad", "min_umis": "lots"})


def test_thresholds_mapping():
    cfg = QCReportConfig(input_path="a.h5ad", n_cells=50, max_umis=1e5)
    t = cfg.thresholds()
    assert t == FilterThresholds(
        min_umis=1000,
        max_umis=1e5,
        min_genes=500,
        max_genes=None,
        min_novelty=0.85,
        max_mito_ratio=0.1,
        min_cells_per_gene=10,
        n_cells=50,
    )
    assert cfg.umi_thresholds() == FilterThresholds(min_umis=1000, max_umis=1e5)


def test_to_dict_is_json_serializable():
    cfg = QCReportConfig(input_path="a.h5ad", author="QC team")
    payload = json.loads(json.dumps(cfg.to_dict()))
    assert payload["author"] == "QC team"
    assert payload["plot_kinds"] == ["histogram", "ecdf", "violin", "ridgeline"]
