"""Loading, export, and report orchestration."""

from scqc.pipeline.export import ExportPaths, export_experiment, read_flat_export
from scqc.pipeline.loader import load_experiment, resolve_format
from scqc.pipeline.report import generate_report

__all__ = [
    "ExportPaths",
    "export_experiment",
    "generate_report",
    "load_experiment",
    "read_flat_export",
    "resolve_format",
]
