"""QC report orchestration: load -> report -> UMI filter -> report -> filter -> report -> export."""

from __future__ import annotations

import importlib.metadata as importlib_metadata
import logging
import platform
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import anndata as ad
import matplotlib

import numpy as np
import pandas as pd

from scqc._version import __version__
from scqc.config import QCReportConfig
from scqc.core.filtering import filter_experiment
from scqc.core.metrics import (
    CELL_METRICS,
    GENES_KEY,
    MITO_RATIO_KEY,
    NOVELTY_KEY,
    READS_KEY,
    UMIS_KEY,
    reads_per_cell,
    sample_summary,
)
from scqc.errors import ExportError, FormatError, NotFoundError, StageError
from scqc.pipeline.export import ExportPaths, export_experiment
from scqc.pipeline.io import setup_logger, write_json
from scqc.pipeline.loader import load_experiment
from scqc.plotting.qc import plot_cell_counts, plot_metric, plot_umis_vs_genes
from scqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle, apply_plot_style, plot_style_dict
from scqc.plotting.utils import sanitize_label

STAGE_UNFILTERED = "unfiltered"
STAGE_UMI_FILTERED = "umi_filtered"
STAGE_FILTERED = "filtered"
STAGES: tuple[str, ...] = (STAGE_UNFILTERED, STAGE_UMI_FILTERED, STAGE_FILTERED)

_STAGE_ERRORS = (NotFoundError, FormatError, ExportError, OSError, KeyError, ValueError)


@dataclass(frozen=True)
class StageReport:
    stage: str
    n_cells: int
    n_genes: int
    summary: pd.DataFrame
    figures: tuple[Path, ...]


@dataclass(frozen=True)
class ReportResult:
    name: str
    filtered: ad.AnnData
    stages: tuple[StageReport, ...]
    filter_summaries: dict[str, dict[str, Any]]
    export: ExportPaths
    report_path: Path
    summary_csv: Path
    log_path: Path


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _package_version(name: str) -> str:
    try:
        return importlib_metadata.version(name)
    except importlib_metadata.PackageNotFoundError:
        return "unknown"


@contextmanager
def _stage(name: str, logger: logging.Logger) -> Iterator[None]:
    logger.info("Stage %s: start.", name)
    try:
        yield
    except _STAGE_ERRORS as exc:
        logger.error("Stage %s failed: %s", name, exc)
        raise StageError(name, str(exc)) from exc
    logger.info("Stage %s: done.", name)


def threshold_guides(config: QCReportConfig) -> dict[str, tuple[float | None, float | None]]:
    """Threshold lines drawn on each metric's figures."""
    return {
        UMIS_KEY: (config.min_umis, config.max_umis),
        GENES_KEY: (config.min_genes, config.max_genes),
        NOVELTY_KEY: (config.min_novelty, None),
        MITO_RATIO_KEY: (None, config.max_mito_ratio),
    }


def _report_stage(
    adata: ad.AnnData,
    stage: str,
    config: QCReportConfig,
    fig_root: Path,
    style: PlotStyle,
    logger: logging.Logger,
) -> StageReport:
    stage_dir = fig_root / sanitize_label(stage)
    guides = threshold_guides(config)
    figures: list[Path] = []

    counts_png = stage_dir / "cell_counts.png"
    plot_cell_counts(
        adata,
        group_key=config.sample_key,
        title=f"cells per sample ({stage})",
        out_path=counts_png,
        style=style,
    )
    figures.append(counts_png)

    metrics = [m for m in CELL_METRICS if m != READS_KEY or reads_per_cell(adata) is not None]
    if READS_KEY not in metrics:
        logger.info("Stage %s: no upstream read counts; skipping reads-per-cell plots.", stage)
    for metric in metrics:
        for kind in config.plot_kinds:
            out_png = stage_dir / f"{sanitize_label(metric)}_{kind}.png"
            plot_metric(
                adata,
                metric,
                kind,
                group_key=config.sample_key,
                bounds=guides.get(metric),
                title=f"{metric} ({stage})",
                out_path=out_png,
                style=style,
            )
            figures.append(out_png)

    scatter_png = stage_dir / "umis_vs_genes.png"
    plot_umis_vs_genes(
        adata,
        umi_bounds=guides[UMIS_KEY],
        gene_bounds=guides[GENES_KEY],
        title=f"UMIs vs genes ({stage})",
        out_path=scatter_png,
        style=style,
    )
    figures.append(scatter_png)

    summary = sample_summary(adata, sample_key=config.sample_key)
    summary.insert(0, "stage", stage)
    logger.info(
        "Stage %s: %s cells x %s genes across %s samples.",
        stage,
        adata.n_obs,
        adata.n_vars,
        summary.shape[0],
    )
    return StageReport(
        stage=stage,
        n_cells=int(adata.n_obs),
        n_genes=int(adata.n_vars),
        summary=summary,
        figures=tuple(figures),
    )


def _format_cell(value: Any) -> str:
    if isinstance(value, (float, np.floating)):
        if not np.isfinite(value):
            return "NA"
        return f"{float(value):.4g}"
    return str(value)


def _markdown_table(frame: pd.DataFrame) -> list[str]:
    if frame.empty:
        return ["_no cells_"]
    header = "| " + " | ".join(str(c) for c in frame.columns) + " |"
    rule = "| " + " | ".join("---" for _ in frame.columns) + " |"
    rows = [
        "| " + " | ".join(_format_cell(v) for v in row) + " |"
        for row in frame.itertuples(index=False)
    ]
    return [header, rule, *rows]


def _write_report_markdown(
    *,
    out_path: Path,
    name: str,
    config: QCReportConfig,
    stages: list[StageReport],
    filter_summaries: dict[str, dict[str, Any]],
    export: ExportPaths,
) -> None:
    lines = [
        f"# {config.title}: {name}",
        "",
        f"- timestamp_utc: {_now_utc_iso()}",
        f"- author: {config.author or 'unspecified'}",
        f"- input: {config.input_path}",
        f"- scqc_version: {__version__}",
        "",
        "## Parameters",
        "",
        "| parameter | value |",
        "| --- | --- |",
    ]
    for key in (
        "min_umis",
        "max_umis",
        "min_genes",
        "max_genes",
        "min_novelty",
        "max_mito_ratio",
        "min_cells_per_gene",
        "n_cells",
        "novelty_method",
        "mito_prefix",
    ):
        value = getattr(config, key)
        lines.append(f"| {key} | {'none' if value is None else value} |")

    for report in stages:
        lines.extend(["", f"## Stage: {report.stage}", ""])
        lines.append(f"- cells: {report.n_cells}")
        lines.append(f"- genes: {report.n_genes}")
        fs = filter_summaries.get(report.stage)
        if fs is not None:
            failed = ", ".join(f"{k}={v}" for k, v in fs["failed"].items()) or "none"
            lines.append(f"- cells failing each criterion: {failed}")
            lines.append(f"- cells removed by n_cells cap: {fs['n_cells_removed_by_cap']}")
        lines.extend(["", *_markdown_table(report.summary.drop(columns=["stage"])), ""])
        for fig in report.figures:
            rel = fig.relative_to(out_path.parent).as_posix()
            lines.append(f"![{fig.stem}]({rel})")

    lines.extend(
        [
            "",
            "## Outputs",
            "",
            f"- filtered experiment: {export.native.as_posix()}",
            f"- flat export: {export.flat_dir.as_posix()}",
        ]
    )
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def generate_report(
    config: QCReportConfig,
    *,
    logger: logging.Logger | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> ReportResult:
    """Run the full QC report for one experiment file.

    Each filter step returns a new snapshot that is threaded into the next
    stage. Any failure is fatal and raised as `StageError` naming the stage.
    Figures are rendered with the non-interactive Agg backend.
    """
    matplotlib.use("Agg")
    out_root = Path(config.output_dir)
    log_path = out_root / "logs" / "scqc.log"
    with _stage("setup", logging.getLogger("scqc")):
        log = logger if isinstance(logger, logging.Logger) else setup_logger(log_path, "scqc")
    apply_plot_style(style)
    fig_root = out_root / "figures"
    table_root = out_root / "tables"

    with _stage("load", log):
        loaded = load_experiment(
            config.input_path,
            sample_key=config.sample_key,
            mito_prefix=config.mito_prefix,
            novelty_method=config.novelty_method,
            logger=log,
        )
    name = loaded.name
    unfiltered = loaded.adata

    stages: list[StageReport] = []
    filter_summaries: dict[str, dict[str, Any]] = {}

    with _stage(f"report:{STAGE_UNFILTERED}", log):
        stages.append(_report_stage(unfiltered, STAGE_UNFILTERED, config, fig_root, style, log))

    with _stage(f"filter:{STAGE_UMI_FILTERED}", log):
        umi_result = filter_experiment(
            unfiltered,
            config.umi_thresholds(),
            mito_prefix=config.mito_prefix,
            novelty_method=config.novelty_method,
            logger=log,
        )
    filter_summaries[STAGE_UMI_FILTERED] = umi_result.summary

    with _stage(f"report:{STAGE_UMI_FILTERED}", log):
        stages.append(
            _report_stage(umi_result.adata, STAGE_UMI_FILTERED, config, fig_root, style, log)
        )

    with _stage(f"filter:{STAGE_FILTERED}", log):
        full_result = filter_experiment(
            umi_result.adata,
            config.thresholds(),
            mito_prefix=config.mito_prefix,
            novelty_method=config.novelty_method,
            logger=log,
        )
    filter_summaries[STAGE_FILTERED] = full_result.summary
    filtered = full_result.adata

    with _stage(f"report:{STAGE_FILTERED}", log):
        stages.append(_report_stage(filtered, STAGE_FILTERED, config, fig_root, style, log))

    with _stage("export", log):
        export = export_experiment(
            filtered,
            name,
            data_dir=config.data_dir,
            output_dir=config.output_dir,
            logger=log,
        )
        summary_csv = table_root / "qc_summary.csv"
        summary_csv.parent.mkdir(parents=True, exist_ok=True)
        pd.concat([s.summary for s in stages], ignore_index=True).to_csv(summary_csv, index=False)
        write_json(table_root / "filter_summary.json", filter_summaries)
        write_json(
            out_root / "metadata.json",
            {
                "name": name,
                "input_format": loaded.input_format.value,
                "timestamp_utc": _now_utc_iso(),
                "config": config.to_dict(),
                "stages": {s.stage: {"n_cells": s.n_cells, "n_genes": s.n_genes} for s in stages},
                "plot_style": plot_style_dict(style),
                "versions": {
                    "scqc": __version__,
                    "python": platform.python_version(),
                    "anndata": _package_version("anndata"),
                    "pandas": _package_version("pandas"),
                    "scipy": _package_version("scipy"),
                },
            },
        )
        report_path = out_root / "report.md"
        _write_report_markdown(
            out_path=report_path,
            name=name,
            config=config,
            stages=stages,
            filter_summaries=filter_summaries,
            export=export,
        )

    log.info("Report written to %s.", report_path.as_posix())
    return ReportResult(
        name=name,
        filtered=filtered,
        stages=tuple(stages),
        filter_summaries=filter_summaries,
        export=export,
        report_path=report_path,
        summary_csv=summary_csv,
        log_path=log_path,
    )
