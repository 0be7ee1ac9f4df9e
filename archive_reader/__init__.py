"""Archive Reader SDK.

A Python library for finding and downloading files stored in a
content-addressed scientific data archive (MyEMSL style).

Quick Start (High-Level API):
    >>> from archive_reader import DatasetName, download_archived_files
    >>> download_archived_files(DatasetName(name="QC_Shew_16_01"), "*.raw", "downloads")

Quick Start (SDK API):
    >>> from archive_reader import ArchiveFiles, DatasetID, Settings
    >>> files = ArchiveFiles.from_settings(Settings(include_all_revisions=False))
    >>> files.add_entity(DatasetID(id=597319))
    >>> for match in files.find_files("*.raw"):
    ...     files.add_to_download_queue(match.file_id, match.record)
    >>> files.process_download_queue("downloads")

Configuration:
    >>> from archive_reader import Settings
    >>> import os
    >>> os.environ["ARCHIVE_METADATA_TIMEOUT"] = "60"
    >>> config = Settings()  # Loads from environment

    >>> # Or configure programmatically
    >>> config = Settings(
    ...     metadata_server_url="https://metadata.my.emsl.pnl.gov",
    ...     download_dir="downloads",
    ...     overwrite_mode="always",
    ... )

Public API:
    High-level functions:
        - find_archived_files: Search the files of one dataset or data package
        - download_archived_files: Search and download in one call

    Orchestrators:
        - ArchiveFiles: Entity tracking, searches and the download queue
        - MetadataResolver: Metadata queries with revision handling and caching
        - ArchiveDownloader: Batch downloads with deduplication and cart fallback
        - DownloadQueue: Accumulate files, then download them in one pass

    Configuration:
        - Settings: Configuration model

    Domain Models:
        - DatasetName, DatasetID, DataPackageID: Entity keys
        - ArchivedFileRecord: One archived file version
        - DirectoryOrFileInfo: A search match
        - DownloadLayout: Local directory layout
        - OverwriteMode: Policy for existing local files

    Reporters (for custom UIs):
        - Reporter: Progress reporter (use silent=True for headless mode)
"""

from pathlib import Path

# Configuration
from archive_reader.config import Settings

# Domain models
from archive_reader.domain import (
    ArchivedFileRecord,
    ArchiveError,
    DataPackageID,
    DatasetID,
    DatasetName,
    DirectoryOrFileInfo,
    DownloadLayout,
    FileDownloaded,
    OverwriteMode,
)

# Orchestrators
from archive_reader.orchestrators import (
    ArchiveDownloader,
    ArchiveFiles,
    DownloadQueue,
    MetadataResolver,
)

# UI Reporters
from archive_reader.ui import Reporter, SilentReporter

__all__ = [
    # High-level functions
    "find_archived_files",
    "download_archived_files",
    # Orchestrators
    "ArchiveFiles",
    "MetadataResolver",
    "ArchiveDownloader",
    "DownloadQueue",
    # Configuration
    "Settings",
    # Domain models
    "ArchivedFileRecord",
    "DataPackageID",
    "DatasetID",
    "DatasetName",
    "DirectoryOrFileInfo",
    "DownloadLayout",
    "FileDownloaded",
    "OverwriteMode",
    "ArchiveError",
    # Reporters
    "Reporter",
    "SilentReporter",
]

# Version
__version__ = "0.1.0"


# High-level convenience functions
def find_archived_files(
    key,
    file_name: str = "*",
    subdirectory: str = "",
    recurse: bool = True,
    config: Settings | None = None,
    reporter: Reporter | None = None,
) -> list[DirectoryOrFileInfo]:
    """Search the files of one dataset or data package.

    Args:
        key: DatasetName, DatasetID or DataPackageID
        file_name: File name or ``*`` wildcard
        subdirectory: Subdirectory to search (the last component may use ``*``)
        recurse: Also search below the subdirectory
        config: Configuration. If None, loads Settings() from the environment.
        reporter: Progress reporter. If None, uses Reporter().

    Example:
        >>> from archive_reader import DatasetID, find_archived_files
        >>> for match in find_archived_files(DatasetID(id=597319), "*.mzML"):
        ...     print(match.file_id, match.record.relative_path_unix)
    """
    archive = ArchiveFiles.from_settings(config, reporter)
    archive.add_entity(key)
    return archive.find_files(file_name, subdirectory=subdirectory, recurse=recurse)


def download_archived_files(
    key,
    file_name: str = "*",
    download_dir: str | Path | None = None,
    layout: DownloadLayout | None = None,
    config: Settings | None = None,
    reporter: Reporter | None = None,
) -> dict[Path, ArchivedFileRecord]:
    """Search one dataset or data package and download the matches.

    Args:
        key: DatasetName, DatasetID or DataPackageID
        file_name: File name or ``*`` wildcard
        download_dir: Target root; defaults to the configured download directory
        layout: Directory layout; defaults to the configured layout
        config: Configuration. If None, loads Settings() from the environment.
        reporter: Progress reporter. If None, uses Reporter().

    Returns:
        Local path -> record for every file in place; empty when the download failed
        or nothing matched

    Example:
        >>> from archive_reader import DatasetName, download_archived_files
        >>> download_archived_files(DatasetName(name="QC_Shew_16_01"), "*.raw", "data")
    """
    archive = ArchiveFiles.from_settings(config, reporter)
    archive.add_entity(key)

    matches = archive.find_files(file_name)
    if not matches:
        return {}

    for match in matches:
        archive.add_to_download_queue(match.file_id, match.record)

    if not archive.process_download_queue(download_dir, layout):
        return {}
    return archive.downloaded_files
