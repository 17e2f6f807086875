"""Command-line interface for scqc report generation."""

from __future__ import annotations

import argparse
import logging
from typing import Any, Iterable

from scqc.config import QCReportConfig, config_from_dict, load_json_config
from scqc.errors import StageError
from scqc.pipeline.report import generate_report
from scqc.plotting.qc import PLOT_KINDS

# argparse dests that map onto config keys; only flags actually given override.
_OVERRIDE_KEYS = (
    "input_path",
    "output_dir",
    "data_dir",
    "n_cells",
    "min_umis",
    "max_umis",
    "min_genes",
    "max_genes",
    "min_novelty",
    "max_mito_ratio",
    "min_cells_per_gene",
    "sample_key",
    "mito_prefix",
    "novelty_method",
    "plot_kinds",
    "title",
    "author",
)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a single-cell RNA-seq quality-control report."
    )
    parser.add_argument("--input", dest="input_path", help="Path to .h5ad or .h5 experiment")
    parser.add_argument("--config", help="Path to JSON config; flags override its values")
    parser.add_argument("--outdir", dest="output_dir", help="Output directory for report and flat export")
    parser.add_argument("--datadir", dest="data_dir", help="Directory for the filtered .h5ad")
    parser.add_argument("--n-cells", type=int, help="Keep at most this many cells (by UMIs)")
    parser.add_argument("--min-umis", type=float)
    parser.add_argument("--max-umis", type=float)
    parser.add_argument("--min-genes", type=float)
    parser.add_argument("--max-genes", type=float)
    parser.add_argument("--min-novelty", type=float)
    parser.add_argument("--max-mito-ratio", type=float)
    parser.add_argument("--min-cells-per-gene", type=int)
    parser.add_argument("--sample-key", help="obs column holding the sample identifier")
    parser.add_argument("--mito-prefix", help="Mitochondrial gene symbol prefix")
    parser.add_argument("--novelty-method", choices=["ratio", "log10"])
    parser.add_argument("--plot-kinds", nargs="+", choices=list(PLOT_KINDS))
    parser.add_argument("--title")
    parser.add_argument("--author")
    return parser.parse_args(list(argv) if argv is not None else None)


def build_config(args: argparse.Namespace) -> QCReportConfig:
    base: dict[str, Any] = load_json_config(args.config) if args.config else {}
    overrides = {
        key: getattr(args, key) for key in _OVERRIDE_KEYS if getattr(args, key) is not None
    }
    return config_from_dict(base, **overrides)


def main(argv: Iterable[str] | None = None) -> int:
    """Run report generation.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success, 1 when a stage fails, 2 for an invalid config).
    """
    args = parse_args(argv)
    try:
        config = build_config(args)
    except (FileNotFoundError, ValueError) as exc:
        logging.getLogger("scqc").error("Invalid configuration: %s", exc)
        return 2
    try:
        result = generate_report(config)
    except StageError as exc:
        logging.getLogger("scqc").error("%s", exc)
        return 1
    print(f"report={result.report_path.as_posix()}")
    print(f"filtered={result.export.native.as_posix()}")
    print(f"n_cells={result.filtered.n_obs}")
    print(f"n_genes={result.filtered.n_vars}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
