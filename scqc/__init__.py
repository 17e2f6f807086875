"""scqc public API."""

from scqc._version import __version__
from scqc.config import QCReportConfig, config_from_dict, load_config
from scqc.core.filtering import filter_experiment
from scqc.core.types import FilterResult, FilterThresholds, InputFormat
from scqc.errors import ExportError, FormatError, NotFoundError, StageError
from scqc.pipeline.export import export_experiment, read_flat_export
from scqc.pipeline.loader import load_experiment
from scqc.pipeline.report import generate_report

__all__ = [
    "__version__",
    "QCReportConfig",
    "config_from_dict",
    "load_config",
    "FilterThresholds",
    "FilterResult",
    "InputFormat",
    "filter_experiment",
    "load_experiment",
    "export_experiment",
    "read_flat_export",
    "generate_report",
    "NotFoundError",
    "FormatError",
    "ExportError",
    "StageError",
]
