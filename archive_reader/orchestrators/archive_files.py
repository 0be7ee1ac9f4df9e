"""Archive file index for a set of datasets or data packages."""

from datetime import timedelta
from pathlib import Path

import httpx
import requests

from archive_reader.config import Settings
from archive_reader.domain.models import (
    ArchivedFileRecord,
    DirectoryOrFileInfo,
    DownloadLayout,
)
from archive_reader.domain.services import FileSearchService, created_within
from archive_reader.domain.types import FileDownloadedHook
from archive_reader.load.dataset_directory import (
    DatasetDirectory,
    SqliteDatasetDirectory,
    StaticDatasetDirectory,
)
from archive_reader.load.metadata import MetadataClient
from archive_reader.orchestrators.download import ArchiveDownloader
from archive_reader.orchestrators.download_queue import DownloadQueue
from archive_reader.orchestrators.resolver import MetadataResolver
from archive_reader.ui.reporter import Reporter


class ArchiveFiles:
    """Track datasets (or data packages), search their files and download them.

    Example:
        >>> files = ArchiveFiles.from_settings()
        >>> files.add_entity(DatasetID(id=597319))
        >>> for match in files.find_files("*.raw"):
        ...     files.add_to_download_queue(match.file_id, match.record)
        >>> files.process_download_queue("downloads")
    """

    def __init__(
        self,
        resolver: MetadataResolver,
        queue: DownloadQueue,
        config: Settings | None = None,
    ):
        self.resolver = resolver
        self.queue = queue
        self.config = config
        self.reporter = resolver.reporter

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        reporter: Reporter | None = None,
        directory: DatasetDirectory | None = None,
        session: requests.Session | None = None,
        client: httpx.Client | None = None,
    ) -> "ArchiveFiles":
        """Wire the resolver, downloader and queue from configuration.

        Args:
            config: Configuration. If None, loads Settings() from the environment.
            reporter: Event sink shared by every component. Defaults to Reporter().
            directory: Dataset lookups; defaults to the configured SQLite export, if any
            session: requests session for metadata searches
            client: httpx client for file and cart downloads
        """
        config = config if config is not None else Settings()
        reporter = reporter or Reporter()

        if directory is None:
            if config.dms_database:
                directory = SqliteDatasetDirectory(config.dms_database)
            else:
                directory = StaticDatasetDirectory()

        exclusion = None
        if config.corrupt_window_start and config.corrupt_window_end:
            exclusion = created_within(config.corrupt_window_start, config.corrupt_window_end)

        resolver = MetadataResolver(
            MetadataClient(
                config.metadata_server_url,
                timeout=config.metadata_timeout,
                session=session,
                on_debug=reporter.report_debug,
            ),
            directory=directory,
            reporter=reporter,
            include_all_revisions=config.include_all_revisions,
            exclusion=exclusion,
            cache_ttl=timedelta(minutes=config.cache_ttl_minutes),
        )
        downloader = ArchiveDownloader.from_settings(config, reporter=reporter, client=client)
        return cls(resolver, DownloadQueue(downloader), config=config)

    # Tracked entities

    def add_entity(self, key, subdir: str = "") -> None:
        """Track a dataset name, dataset ID or data package ID."""
        self.resolver.add_entity(key, subdir)

    def remove_entity(self, key) -> None:
        self.resolver.remove_entity(key)

    def clear(self) -> None:
        """Stop tracking every entity."""
        self.resolver.clear_entities()

    def contains(self, key) -> bool:
        return self.resolver.contains(key)

    def refresh(self) -> list[ArchivedFileRecord]:
        """Re-query the archive regardless of the cache age."""
        return self.resolver.refresh()

    @property
    def files(self) -> list[ArchivedFileRecord]:
        """Every file of the tracked entities, refreshed when the cache is stale."""
        return self.resolver.files()

    # Searches

    def find_files(
        self,
        file_name: str,
        subdirectory: str = "",
        dataset_name: str = "",
        data_package_id: int = 0,
        recurse: bool = True,
        file_split: bool = False,
    ) -> list[DirectoryOrFileInfo]:
        """Find files by name or ``*`` wildcard; see FileSearchService.find_files."""
        return FileSearchService.find_files(
            self.files,
            file_name,
            subdirectory=subdirectory,
            dataset_name=dataset_name,
            data_package_id=data_package_id,
            recurse=recurse,
            file_split=file_split,
        )

    def find_directories(
        self, directory_name: str, dataset_name: str = ""
    ) -> list[DirectoryOrFileInfo]:
        """Find directories by name or ``*`` wildcard."""
        return FileSearchService.find_directories(
            self.files, directory_name, dataset_name=dataset_name
        )

    # Downloads

    def add_listener(self, listener: FileDownloadedHook) -> None:
        self.queue.add_listener(listener)

    def add_to_download_queue(
        self,
        file_id: int,
        record: ArchivedFileRecord | None = None,
        unzip_required: bool = False,
        dest_path: str | Path | None = None,
    ) -> None:
        self.queue.add(file_id, record, unzip_required, dest_path)

    def clear_download_queue(self) -> None:
        self.queue.clear()

    def process_download_queue(
        self,
        download_dir: str | Path | None = None,
        layout: DownloadLayout | None = None,
    ) -> bool:
        """Download every queued file.

        Args:
            download_dir: Target root; defaults to the configured download directory
            layout: Directory layout; defaults to the configured layout
        """
        if download_dir is None:
            download_dir = self.config.download_dir if self.config else Path(".")
        if layout is None:
            layout = self.config.download_layout if self.config else DownloadLayout.SINGLE_DATASET
        return self.queue.process_all(download_dir, layout)

    @property
    def downloaded_files(self) -> dict[Path, ArchivedFileRecord]:
        """Local path -> record for the last successful queue pass."""
        return self.queue.downloaded_files
