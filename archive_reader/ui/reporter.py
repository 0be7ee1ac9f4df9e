"""Reporter for status, error and download progress output."""

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from archive_reader.domain.models import FileDownloaded
from archive_reader.domain.types import DownloadProgressHook


class Reporter:
    """Event sink for resolution and download components, rendered with rich.

    Every component reports through the same surface: status, warning,
    error, debug, progress, file-downloaded and offline events. Messages are
    also kept on the instance so callers can inspect them after a run.
    """

    def __init__(self, silent: bool = False, verbose: bool = False) -> None:
        """Initialize reporter.

        Args:
            silent: If True, suppress all output (for testing/automation).
            verbose: If True, also print debug messages.
        """
        self.silent = silent
        self.verbose = verbose
        self.console = Console(quiet=silent)
        self.status_message = ""
        self.error_messages: list[str] = []
        self.warning_messages: list[str] = []
        self.percent_complete = 0.0
        self.offline = False
        self._last_error = ""
        self._download_progress: Progress | None = None
        self._download_tasks: dict[str, int] = {}

    @property
    def in_download_context(self) -> bool:
        """True while a download progress display is active."""
        return self._download_progress is not None

    def report_status(self, message: str) -> None:
        """Report an informational message."""
        self.status_message = message
        if not self.silent:
            self.console.print(message)

    def report_debug(self, message: str) -> None:
        """Report a diagnostic message (printed only when verbose)."""
        if self.verbose and not self.silent:
            self.console.print(f"[dim]{message}[/dim]")

    def report_warning(self, message: str) -> None:
        """Report a warning message."""
        self.warning_messages.append(message)
        if not self.silent:
            self.console.print(f"\n[yellow]Warning:[/yellow] {message}")

    def report_error(self, message: str, exc: BaseException | None = None) -> None:
        """Report an error message.

        An error identical to the previous one (ignoring case) is dropped.
        """
        if exc is not None:
            message = f"{message}: {exc}"

        if message.lower() == self._last_error.lower():
            return

        self._last_error = message
        self.error_messages.append(message)
        if not self.silent:
            self.console.print(f"\n[red]Error:[/red] {message}")

    def report_progress(self, percent: float, description: str = "") -> None:
        """Record overall completion, in percent of requested bytes."""
        self.percent_complete = percent
        if description:
            self.report_debug(f"{description}: {percent:.1f}%")

    def report_file_downloaded(self, event: FileDownloaded) -> None:
        """Report that a queued file is in place."""
        if event.record is not None:
            self.report_debug(f"Downloaded {event.record} to {event.download_dir}")

    def report_offline(self, message: str) -> None:
        """Report that the archive could not be reached."""
        self.offline = True
        self.report_warning(message)

    @property
    def error_message(self) -> str:
        """Most recent error, or an empty string."""
        return self.error_messages[-1] if self.error_messages else ""

    def create_download_progress_hook(self, filename: str) -> DownloadProgressHook:
        """Create a progress hook for downloading a specific file."""
        if self.silent:

            def hook(downloaded: int, total: int | None) -> None:
                pass

            return hook

        if self._download_progress is None:
            raise RuntimeError("Must be called within download_context")

        task_id = self._download_progress.add_task("", total=0, filename=filename)
        self._download_tasks[filename] = task_id
        first_update = True

        def hook(downloaded: int, total: int | None) -> None:
            nonlocal first_update
            if self._download_progress is None:
                return

            if total is not None and (
                first_update or self._download_progress.tasks[task_id].total != total
            ):
                self._download_progress.update(task_id, total=total)
                first_update = False

            self._download_progress.update(task_id, completed=downloaded)

        return hook

    def download_context(self):
        """Context manager for download progress display."""
        if self.silent:

            class NoOpContext:
                def __enter__(self):
                    return self

                def __exit__(self, *args):
                    pass

            return NoOpContext()

        class DownloadContext:
            def __init__(ctx_self, reporter):
                ctx_self.reporter = reporter

            def __enter__(ctx_self):
                ctx_self.reporter._download_progress = Progress(
                    TextColumn("[bold blue]{task.fields[filename]}"),
                    BarColumn(),
                    DownloadColumn(),
                    TransferSpeedColumn(),
                    TimeRemainingColumn(),
                    console=ctx_self.reporter.console,
                    expand=True,
                )
                ctx_self.reporter._download_progress.__enter__()
                return ctx_self.reporter._download_progress

            def __exit__(ctx_self, *args):
                if ctx_self.reporter._download_progress:
                    ctx_self.reporter._download_progress.__exit__(*args)
                    ctx_self.reporter._download_progress = None
                    ctx_self.reporter._download_tasks.clear()

        return DownloadContext(self)


class SilentReporter(Reporter):
    """Reporter that records events without printing anything."""

    def __init__(self, verbose: bool = False) -> None:
        super().__init__(silent=True, verbose=verbose)
