"""Batch download orchestrator.

Plans a batch, downloads it directly and falls back to a cart bundle for
whatever is left.
"""

from collections.abc import Mapping
from pathlib import Path

import httpx

from archive_reader.config import Settings
from archive_reader.domain.models import ArchivedFileRecord, DownloadLayout
from archive_reader.domain.paths import LongPathPolicy
from archive_reader.domain.planner import DownloadPlanner
from archive_reader.load.bundle import CartClient, CartFallbackDownloader
from archive_reader.load.downloader import DirectDownloader
from archive_reader.ui.reporter import Reporter


class ArchiveDownloader:
    """Downloads a batch of archived files to local targets.

    The batch succeeds only if every requested file ends up in place, either
    because it was current already, fetched, copied from a file with the same
    hash, or extracted from a cart bundle. Files that can be retrieved are
    retrieved even when others fail.
    """

    def __init__(
        self,
        direct: DirectDownloader,
        planner: DownloadPlanner | None = None,
        cart: CartFallbackDownloader | None = None,
        reporter: Reporter | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            direct: Per-hash downloader
            planner: Batch planner; defaults to one reporting through ``reporter``
            cart: Optional cart fallback for files the direct path could not retrieve
            reporter: Event sink; defaults to the direct downloader's reporter
        """
        self.direct = direct
        self.reporter = reporter or direct.reporter
        self.planner = planner or DownloadPlanner(
            on_status=self.reporter.report_status, on_error=self.reporter.report_error
        )
        self.cart = cart

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        reporter: Reporter | None = None,
        client: httpx.Client | None = None,
    ) -> "ArchiveDownloader":
        """Build the downloader stack from configuration."""
        config = config if config is not None else Settings()
        reporter = reporter or Reporter()
        long_paths = LongPathPolicy(config.long_path_prefix, config.max_path_length)

        direct = DirectDownloader(
            config.file_server_url,
            overwrite_mode=config.overwrite_mode,
            client=client,
            reporter=reporter,
            max_attempts=config.max_attempts,
            timeout=config.download_timeout,
            retry_delay=config.retry_delay,
        )
        planner = DownloadPlanner(
            include_all_revisions=config.include_all_revisions,
            long_paths=long_paths,
            on_status=reporter.report_status,
            on_error=reporter.report_error,
        )

        cart = None
        if config.cart_fallback:
            cart = CartFallbackDownloader(
                CartClient(config.cart_server_url, client=client, timeout=config.download_timeout),
                reporter=reporter,
                long_paths=long_paths,
                max_attempts=config.max_attempts,
                timeout=config.download_timeout,
                retry_delay=config.retry_delay,
                max_minutes=config.cart_max_minutes,
            )

        return cls(direct, planner=planner, cart=cart, reporter=reporter)

    @property
    def downloaded_files(self) -> dict[Path, ArchivedFileRecord]:
        """Local path -> record for every file written or confirmed in the last batch."""
        files = dict(self.direct.downloaded_files)
        if self.cart:
            for path, record in self.cart.downloaded_files.items():
                files.setdefault(path, record)
        return files

    def download_files(
        self,
        files: Mapping[int, ArchivedFileRecord],
        download_dir: str | Path = ".",
        layout: DownloadLayout = DownloadLayout.SINGLE_DATASET,
        overrides: Mapping[int, Path] | None = None,
    ) -> bool:
        """Download a batch of files.

        Args:
            files: File ID -> record
            download_dir: Root directory for layout-derived targets
            layout: Directory layout; may be widened to avoid collisions
            overrides: File ID -> explicit destination path

        Returns:
            True if every requested file is in place
        """
        self.direct.downloaded_files.clear()
        if self.cart:
            self.cart.downloaded_files.clear()

        if not files:
            self.reporter.report_error("File download dictionary is empty; nothing to download")
            return False

        download_dir = Path(download_dir or ".")
        plan = self.planner.plan(files, download_dir, layout, overrides)

        satisfied = self.direct.fetch(plan)
        remaining = self.direct.residual(plan, satisfied)

        if remaining and self.cart:
            self.reporter.report_status(f"Retrieving {len(remaining)} file(s) via a cart")
            records = [planned.record for planned in remaining]
            if self.cart.fetch_via_bundle(records, download_dir, plan.layout, overrides):
                extracted = {record.file_id for record in self.cart.downloaded_files.values()}
                remaining = [planned for planned in remaining if planned.file_id not in extracted]

        unsatisfied = len(remaining) + len(plan.skipped_file_ids)
        if unsatisfied:
            self.reporter.report_error(f"{unsatisfied} file(s) could not be downloaded")
            return False

        return True
