"""Configuration loading utilities for scqc report runs."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from scqc.core.metrics import NOVELTY_METHODS, SAMPLE_KEY
from scqc.core.types import FilterThresholds, is_bound
from scqc.plotting.qc import PLOT_KINDS

_INT_FIELDS = ("n_cells", "min_cells_per_gene")
_FLOAT_FIELDS = (
    "min_umis",
    "max_umis",
    "min_genes",
    "max_genes",
    "min_novelty",
    "max_mito_ratio",
)
_BOUND_PAIRS = (("min_umis", "max_umis"), ("min_genes", "max_genes"))


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a report config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


@dataclass(frozen=True)
class QCReportConfig:
    """Every parameter of one report run. Bounds set to None are disabled."""

    input_path: str
    output_dir: str = "results"
    data_dir: str = "data"
    n_cells: int | None = None
    min_umis: float | None = 1000
    max_umis: float | None = None
    min_genes: float | None = 500
    max_genes: float | None = None
    min_novelty: float | None = 0.85
    max_mito_ratio: float | None = 0.1
    min_cells_per_gene: int | None = 10
    sample_key: str = SAMPLE_KEY
    mito_prefix: str = "MT-"
    novelty_method: str = "ratio"
    plot_kinds: tuple[str, ...] = PLOT_KINDS
    title: str = "Quality control report"
    author: str | None = None

    def __post_init__(self) -> None:
        if str(self.input_path).strip() == "":
            raise ValueError("input_path must be set.")
        if self.novelty_method not in NOVELTY_METHODS:
            raise ValueError(
                f"novelty_method must be one of {', '.join(NOVELTY_METHODS)}; "
                f"got '{self.novelty_method}'."
            )
        unknown_kinds = [k for k in self.plot_kinds if k not in PLOT_KINDS]
        if unknown_kinds:
            raise ValueError(
                f"Unknown plot kinds: {', '.join(unknown_kinds)}. Use: {', '.join(PLOT_KINDS)}."
            )
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if is_bound(value) and int(value) < 0:
                raise ValueError(f"{name} must be non-negative; got {value}.")
        for low_name, high_name in _BOUND_PAIRS:
            low, high = getattr(self, low_name), getattr(self, high_name)
            if is_bound(low) and is_bound(high) and float(low) > float(high):
                raise ValueError(f"{low_name} ({low}) exceeds {high_name} ({high}).")
        if is_bound(self.max_mito_ratio) and not 0.0 <= float(self.max_mito_ratio) <= 1.0:
            raise ValueError("max_mito_ratio must be within [0, 1].")

    def thresholds(self) -> FilterThresholds:
        return FilterThresholds(
            min_umis=self.min_umis,
            max_umis=self.max_umis,
            min_genes=self.min_genes,
            max_genes=self.max_genes,
            min_novelty=self.min_novelty,
            max_mito_ratio=self.max_mito_ratio,
            min_cells_per_gene=self.min_cells_per_gene,
            n_cells=self.n_cells,
        )

    def umi_thresholds(self) -> FilterThresholds:
        return self.thresholds().umi_only()

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["plot_kinds"] = list(self.plot_kinds)
        return d


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _INT_FIELDS:
        if isinstance(value, float) and math.isinf(value):
            return None
        return int(value)
    if name in _FLOAT_FIELDS:
        return float(value)
    if name == "plot_kinds":
        if isinstance(value, str):
            return (value,)
        return tuple(str(v) for v in value)
    return value


def config_from_dict(data: dict[str, Any], **overrides: Any) -> QCReportConfig:
    """Build a `QCReportConfig` from a mapping plus keyword overrides."""
    merged = {**data, **overrides}
    known = {f.name for f in fields(QCReportConfig)}
    unknown = sorted(set(merged) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}.")
    if "input_path" not in merged:
        raise ValueError("Config is missing required key 'input_path'.")
    try:
        kwargs = {k: _coerce(k, v) for k, v in merged.items()}
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc
    return QCReportConfig(**kwargs)


def load_config(path: str | Path, **overrides: Any) -> QCReportConfig:
    return config_from_dict(load_json_config(path), **overrides)
