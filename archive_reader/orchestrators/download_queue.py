"""Download queue: accumulate files, then download them in one pass."""

from pathlib import Path

from archive_reader.domain.errors import ConfigurationError, EmptyQueueError
from archive_reader.domain.models import (
    ArchivedFileRecord,
    DownloadLayout,
    FileDownloaded,
    QueuedDownload,
)
from archive_reader.domain.types import FileDownloadedHook
from archive_reader.orchestrators.download import ArchiveDownloader


class DownloadQueue:
    """Buffer of files to download, keyed by archive file ID.

    Entries stay queued until a pass succeeds, so a failed pass can simply be
    retried. Listeners receive one FileDownloaded event per queued entry after
    a successful pass.
    """

    def __init__(self, downloader: ArchiveDownloader):
        self.downloader = downloader
        self.reporter = downloader.reporter
        self.files_to_download: dict[int, QueuedDownload] = {}
        self.downloaded_files: dict[Path, ArchivedFileRecord] = {}
        self._listeners: list[FileDownloadedHook] = []

    def __len__(self) -> int:
        return len(self.files_to_download)

    def __contains__(self, file_id: int) -> bool:
        return file_id in self.files_to_download

    def add_listener(self, listener: FileDownloadedHook) -> None:
        """Subscribe to FileDownloaded events."""
        self._listeners.append(listener)

    def add(
        self,
        file_id: int,
        record: ArchivedFileRecord | None = None,
        unzip_required: bool = False,
        dest_path: str | Path | None = None,
    ) -> None:
        """Queue a file; a file ID that is already queued is left as is.

        Args:
            file_id: Archive file ID
            record: Archived file details
            unzip_required: Listeners should unzip the file once downloaded
            dest_path: Explicit destination path, overriding the layout

        Raises:
            ConfigurationError: If unzip_required is set without a record
        """
        if file_id in self.files_to_download:
            return

        if unzip_required and record is None:
            raise ConfigurationError(
                f"Cannot queue file {file_id} for download because unzip_required "
                "was set but no file record was given"
            )

        self.files_to_download[file_id] = QueuedDownload(
            record=record,
            unzip_required=unzip_required,
            dest_path=Path(dest_path) if dest_path else None,
        )

    def add_record(
        self,
        record: ArchivedFileRecord,
        unzip_required: bool = False,
        dest_path: str | Path | None = None,
    ) -> None:
        """Queue a file under its own file ID."""
        self.add(record.file_id, record, unzip_required, dest_path)

    def clear(self) -> None:
        self.files_to_download.clear()

    def process_all(
        self,
        download_dir: str | Path = ".",
        layout: DownloadLayout = DownloadLayout.SINGLE_DATASET,
    ) -> bool:
        """Download every queued file.

        Args:
            download_dir: Root directory for layout-derived targets
            layout: Directory layout

        Returns:
            True if every queued file is in place; the queue is then cleared.
            Entries lacking a record or a SHA-1 hash make the pass fail.

        Raises:
            EmptyQueueError: If nothing is queued
        """
        if not self.files_to_download:
            raise EmptyQueueError("Download queue is empty; nothing to download")

        files: dict[int, ArchivedFileRecord] = {}
        overrides: dict[int, Path] = {}
        skipped = 0

        for file_id, entry in self.files_to_download.items():
            record = entry.record
            if record is None:
                self.reporter.report_warning(
                    f"File {file_id} has no file details; cannot download it"
                )
                skipped += 1
                continue

            if not record.sha1_hash:
                self.reporter.report_warning(
                    f"File does not have a SHA-1 hash; cannot download "
                    f"{record.relative_path_unix}, FileID {file_id}"
                )
                skipped += 1
                continue

            files[file_id] = record
            if entry.dest_path:
                overrides[file_id] = entry.dest_path

        success = self.downloader.download_files(files, download_dir, layout, overrides)
        if not success:
            return False

        if skipped:
            self.reporter.report_error(f"{skipped} queued file(s) cannot be downloaded")
            return False

        self.downloaded_files = self.downloader.downloaded_files

        download_dir = Path(download_dir or ".")
        for entry in self.files_to_download.values():
            event = FileDownloaded(
                download_dir=download_dir,
                record=entry.record,
                unzip_required=entry.unzip_required,
            )
            self.reporter.report_file_downloaded(event)
            for listener in self._listeners:
                listener(event)

        self.files_to_download.clear()
        return True
