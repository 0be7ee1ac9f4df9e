"""Table rendering utilities for CLI output."""

from rich.table import Table

from archive_reader.domain.models import DirectoryOrFileInfo


def format_size(size_bytes: int) -> str:
    """Format a byte count for display, e.g. ``1.5 MB``."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:,.0f} {unit}" if unit == "B" else f"{size:,.1f} {unit}"
        size /= 1024
    return f"{size:,.1f} GB"


def create_file_table(matches: list[DirectoryOrFileInfo], title_suffix: str = "") -> Table:
    """Create a table for displaying archived files.

    Args:
        matches: File matches to list
        title_suffix: Optional suffix for table title

    Returns:
        Rich Table object ready for display
    """
    table = Table(title=f"Files ({len(matches)} total){title_suffix}")
    table.add_column("File ID", justify="right", style="dim")
    table.add_column("Dataset", style="cyan")
    table.add_column("Path", style="white")
    table.add_column("Size", justify="right", style="dim")
    table.add_column("Transaction", justify="right", style="dim")
    table.add_column("Submitted", style="dim")

    total_size = 0
    for match in matches:
        record = match.record
        total_size += record.file_size_bytes
        table.add_row(
            str(match.file_id),
            record.dataset or (f"DataPkg {record.data_package_id}" if record.data_package_id else "-"),
            record.relative_path_unix,
            format_size(record.file_size_bytes),
            str(record.transaction_id),
            record.submission_time or "-",
        )

    if len(matches) > 1:
        table.add_section()
        table.add_row("", "[bold]TOTAL[/bold]", "", f"[bold]{format_size(total_size)}[/bold]", "", "")

    return table


def create_directory_table(matches: list[DirectoryOrFileInfo]) -> Table:
    """Create a table for displaying matched directories."""
    table = Table(title=f"Directories ({len(matches)} total)")
    table.add_column("Dataset", style="cyan")
    table.add_column("Directory", style="white")

    for match in matches:
        table.add_row(match.record.dataset or "-", match.record.relative_path_unix)

    return table
