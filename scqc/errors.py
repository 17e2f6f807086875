"""Exception types raised by scqc loaders, exporters, and the report driver."""

from __future__ import annotations


class NotFoundError(FileNotFoundError):
    """Input path does not exist."""


class FormatError(ValueError):
    """Input exists but does not deserialize to a valid experiment."""


class ExportError(OSError):
    """Output destination could not be written."""


class StageError(RuntimeError):
    """Fatal failure inside one report stage.

    The failing stage name is kept on `stage`; the original exception is
    chained as `__cause__`.
    """

    def __init__(self, stage: str, message: str):
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage
