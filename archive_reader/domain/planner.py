"""Planning of batch downloads: hash grouping and target paths."""

from collections.abc import Callable, Mapping
from logging import Logger
from pathlib import Path

from archive_reader.domain.errors import PathTooLongError
from archive_reader.domain.models import (
    ArchivedFileRecord,
    DownloadLayout,
    DownloadPlan,
    HashGroup,
    PlannedFile,
)
from archive_reader.domain.paths import (
    LONG_PATH_PREFIX,
    LongPathPolicy,
    add_file_id_disambiguator,
    construct_download_path,
)

logger = Logger(__file__)


class DownloadPlanner:
    """Group requested files by content hash and decide where each one goes."""

    def __init__(
        self,
        include_all_revisions: bool = False,
        long_paths: LongPathPolicy | None = None,
        on_status: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ):
        """Initialize the planner.

        Args:
            include_all_revisions: Disambiguate files that would share a target path
            long_paths: Policy applied to every target path
            on_status: Receives informational messages (layout escalation)
            on_error: Receives messages for files whose target cannot be built
        """
        self.include_all_revisions = include_all_revisions
        self.long_paths = long_paths or LongPathPolicy()
        self.on_status = on_status
        self.on_error = on_error

    @staticmethod
    def effective_layout(
        files: Mapping[int, ArchivedFileRecord], layout: DownloadLayout
    ) -> DownloadLayout:
        """Widen SINGLE_DATASET when files from several datasets would collide."""
        if layout != DownloadLayout.SINGLE_DATASET:
            return layout

        if len({record.dataset_id for record in files.values()}) < 2:
            return layout

        seen: set[str] = set()
        for record in files.values():
            path = record.relative_path_unix.lower()
            if path in seen:
                return DownloadLayout.DATASET_NAME_AND_SUBDIRECTORIES
            seen.add(path)

        return layout

    def plan(
        self,
        files: Mapping[int, ArchivedFileRecord],
        download_dir: Path,
        layout: DownloadLayout = DownloadLayout.SINGLE_DATASET,
        overrides: Mapping[int, Path] | None = None,
    ) -> DownloadPlan:
        """Build the download plan for a batch.

        Args:
            files: File ID -> record for every requested file
            download_dir: Root directory for layout-derived paths
            layout: Requested directory layout
            overrides: File ID -> explicit destination path; wins over the layout

        Returns:
            DownloadPlan with one HashGroup per unique hash
        """
        overrides = overrides or {}
        effective = self.effective_layout(files, layout)
        escalated = effective != layout
        if escalated:
            self._status(
                "Auto-changing directory layout to 'dataset-name' since the files "
                "to download come from more than one dataset"
            )

        hash_to_ids: dict[str, list[int]] = {}
        for file_id, record in files.items():
            hash_to_ids.setdefault(record.hash, []).append(file_id)

        claimed_targets: set[str] = set()
        groups: list[HashGroup] = []
        skipped: list[int] = []
        total_bytes = 0

        for file_hash, file_ids in hash_to_ids.items():
            planned: list[PlannedFile] = []
            for file_id in sorted(file_ids):
                record = files[file_id]
                target = self._target_for(
                    file_id, record, download_dir, effective, overrides, claimed_targets
                )
                if target is None:
                    skipped.append(file_id)
                    continue
                planned.append(PlannedFile(file_id=file_id, record=record, target=target))

            if not planned:
                continue

            representative = planned[0]
            total_bytes += representative.record.file_size_bytes
            groups.append(
                HashGroup(
                    hash=file_hash,
                    hash_type=representative.record.hash_type,
                    representative=representative,
                    duplicates=planned[1:],
                )
            )

        return DownloadPlan(
            layout=effective,
            escalated=escalated,
            groups=groups,
            total_bytes=total_bytes,
            skipped_file_ids=skipped,
        )

    def _target_for(
        self,
        file_id: int,
        record: ArchivedFileRecord,
        download_dir: Path,
        layout: DownloadLayout,
        overrides: Mapping[int, Path],
        claimed_targets: set[str],
    ) -> Path | None:
        override = overrides.get(file_id)
        if override:
            target = str(override)
        else:
            relative = construct_download_path(layout, record)
            if self.include_all_revisions and str(download_dir / relative).lower() in claimed_targets:
                relative = add_file_id_disambiguator(relative, file_id)
            target = str(download_dir / relative)

        # Claimed keys never carry the long-path prefix
        claimed = target.removeprefix(LONG_PATH_PREFIX)
        try:
            target = self.long_paths.apply(claimed)
        except PathTooLongError as exc:
            self._error(str(exc))
            return None

        claimed_targets.add(claimed.lower())
        return Path(target)

    def _status(self, message: str) -> None:
        logger.info(message)
        if self.on_status:
            self.on_status(message)

    def _error(self, message: str) -> None:
        logger.debug(message)
        if self.on_error:
            self.on_error(message)
