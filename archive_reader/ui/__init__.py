"""UI."""

from archive_reader.ui.reporter import Reporter, SilentReporter

__all__ = ["Reporter", "SilentReporter"]
