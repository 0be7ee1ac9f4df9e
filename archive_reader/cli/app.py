"""Typer-based CLI for listing and downloading archived files."""

from pathlib import Path

import typer

from archive_reader.config import Settings
from archive_reader.domain.errors import ArchiveError
from archive_reader.domain.models import (
    DataPackageID,
    DatasetID,
    DatasetName,
    DirectoryOrFileInfo,
    DownloadLayout,
    OverwriteMode,
)
from archive_reader.orchestrators import ArchiveFiles
from archive_reader.ui import Reporter
from archive_reader.ui.tables import create_directory_table, create_file_table

app = typer.Typer(help="List and download files stored in the archive")

DATASET_ARGUMENT = typer.Argument(None, help="Dataset name")
DATASET_ID_OPTION = typer.Option(0, "--dataset-id", help="Dataset ID (instead of a name)")
DATA_PACKAGE_OPTION = typer.Option(0, "--data-package", help="Data package ID")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _entity_key(dataset: str | None, dataset_id: int, data_package: int):
    """Build the entity key; exactly one selector must be given."""
    selectors = [bool(dataset), dataset_id > 0, data_package > 0]
    if sum(selectors) != 1:
        typer.echo("Specify exactly one of DATASET, --dataset-id or --data-package", err=True)
        raise typer.Exit(2)

    if dataset:
        return DatasetName(name=dataset)
    if dataset_id > 0:
        return DatasetID(id=dataset_id)
    return DataPackageID(id=data_package)


def _open_archive(config: Settings, reporter: Reporter, key) -> ArchiveFiles:
    archive = ArchiveFiles.from_settings(config, reporter)
    archive.add_entity(key)
    return archive


def _find_files(
    archive: ArchiveFiles,
    reporter: Reporter,
    file_mask: str,
    subdir: str,
    recurse: bool,
    file_split: bool,
) -> list[DirectoryOrFileInfo]:
    try:
        return archive.find_files(
            file_mask, subdirectory=subdir, recurse=recurse, file_split=file_split
        )
    except ArchiveError as exc:
        reporter.report_error("Could not list archived files", exc)
        raise typer.Exit(1) from exc


def _parse_file_ids(text: str) -> set[int]:
    try:
        return {int(part) for part in text.split(",") if part.strip()}
    except ValueError as exc:
        typer.echo(f"Invalid file ID list: {text}", err=True)
        raise typer.Exit(2) from exc


@app.command()
def files(
    dataset: str = DATASET_ARGUMENT,
    dataset_id: int = DATASET_ID_OPTION,
    data_package: int = DATA_PACKAGE_OPTION,
    subdir: str = typer.Option("", "--subdir", "-s", help="Subdirectory (last part may use *)"),
    file_mask: str = typer.Option("*", "--files", "-f", help="File name or wildcard"),
    file_split: bool = typer.Option(False, "--file-split", help="Treat --files as a ;-separated list"),
    no_recurse: bool = typer.Option(False, "--no-recurse", help="Do not search subdirectories"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug messages"),
):
    """List archived files for a dataset or data package."""
    key = _entity_key(dataset, dataset_id, data_package)
    config = Settings()
    reporter = Reporter(verbose=verbose)

    archive = _open_archive(config, reporter, key)
    matches = _find_files(archive, reporter, file_mask, subdir, not no_recurse, file_split)

    if not matches:
        reporter.console.print("[dim]No matching files found[/dim]")
        return

    reporter.console.print(create_file_table(matches, title_suffix=f" for {key}"))


@app.command()
def dirs(
    dataset: str = DATASET_ARGUMENT,
    dataset_id: int = DATASET_ID_OPTION,
    data_package: int = DATA_PACKAGE_OPTION,
    name: str = typer.Option("*", "--name", "-n", help="Directory name or wildcard"),
):
    """List directories for a dataset or data package."""
    key = _entity_key(dataset, dataset_id, data_package)
    config = Settings()
    reporter = Reporter()

    archive = _open_archive(config, reporter, key)
    try:
        matches = archive.find_directories(name)
    except ArchiveError as exc:
        reporter.report_error("Could not list archived directories", exc)
        raise typer.Exit(1) from exc

    if not matches:
        reporter.console.print("[dim]No matching directories found[/dim]")
        return

    reporter.console.print(create_directory_table(matches))


@app.command()
def download(
    dataset: str = DATASET_ARGUMENT,
    dataset_id: int = DATASET_ID_OPTION,
    data_package: int = DATA_PACKAGE_OPTION,
    subdir: str = typer.Option("", "--subdir", "-s", help="Subdirectory (last part may use *)"),
    file_mask: str = typer.Option("*", "--files", "-f", help="File name or wildcard"),
    file_split: bool = typer.Option(False, "--file-split", help="Treat --files as a ;-separated list"),
    no_recurse: bool = typer.Option(False, "--no-recurse", help="Do not search subdirectories"),
    output: Path = typer.Option(None, "--output", "-o", help="Download directory"),
    layout: DownloadLayout = typer.Option(None, "--layout", help="Local directory layout"),
    overwrite: OverwriteMode = typer.Option(None, "--overwrite", help="Overwrite policy"),
    file_ids: str = typer.Option("", "--file-id", help="Comma-separated file IDs to download"),
    include_all_revisions: bool = typer.Option(
        False, "--include-all-revisions", help="Download every revision of each file"
    ),
    preview: bool = typer.Option(False, "--preview", help="Show what would be downloaded"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug messages"),
):
    """Download archived files for a dataset or data package."""
    key = _entity_key(dataset, dataset_id, data_package)
    wanted_ids = _parse_file_ids(file_ids) if file_ids else set()

    config = Settings()
    updates = {}
    if overwrite is not None:
        updates["overwrite_mode"] = overwrite
    if include_all_revisions:
        updates["include_all_revisions"] = True
    if updates:
        config = config.model_copy(update=updates)

    reporter = Reporter(verbose=verbose)
    archive = _open_archive(config, reporter, key)
    matches = _find_files(archive, reporter, file_mask, subdir, not no_recurse, file_split)

    if wanted_ids:
        matches = [match for match in matches if match.file_id in wanted_ids]
        missing = wanted_ids - {match.file_id for match in matches}
        if missing:
            reporter.report_warning(
                f"File ID(s) not found: {', '.join(str(i) for i in sorted(missing))}"
            )

    if not matches:
        reporter.console.print("[dim]No matching files found[/dim]")
        return

    reporter.console.print(create_file_table(matches, title_suffix=f" for {key}"))
    if preview:
        reporter.console.print("\n[yellow]Run without --preview to download these files[/yellow]")
        return

    for match in matches:
        archive.add_to_download_queue(match.file_id, match.record)

    download_dir = output if output is not None else config.download_dir
    if not archive.process_download_queue(download_dir, layout or config.download_layout):
        raise typer.Exit(1)

    reporter.console.print(
        f"\n[bold]Downloaded {len(archive.downloaded_files)} file(s) to {download_dir}[/bold]"
    )


if __name__ == "__main__":
    app()
