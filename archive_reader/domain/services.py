"""Business logic for narrowing, collapsing and searching archive listings."""

import re
from collections.abc import Callable, Iterable
from datetime import datetime
from logging import Logger

from archive_reader.domain.errors import ConfigurationError
from archive_reader.domain.models import (
    ArchivedFileRecord,
    DataPackageID,
    DatasetID,
    DatasetName,
    DirectoryOrFileInfo,
    parse_timestamp,
)
from archive_reader.domain.types import EntityFilters, RecordExclusion

logger = Logger(__file__)

ErrorCallback = Callable[[str], None]


class CleanedFilters:
    """Subdirectory filters normalized per entity key.

    Attributes:
        subdirs: Entity key -> list of subdirectory filters ("" = base directory)
        filter_on_sub_dir: True once any entity named a non-blank subdirectory
    """

    def __init__(self, subdirs: dict, filter_on_sub_dir: bool):
        self.subdirs = subdirs
        self.filter_on_sub_dir = filter_on_sub_dir

    @property
    def kind(self) -> type | None:
        """Entity class shared by every key, or None when there are no keys."""
        if not self.subdirs:
            return None
        return type(next(iter(self.subdirs)))

    def lookup(self, record: ArchivedFileRecord) -> list[str] | None:
        """Return the filter list owning ``record``; None if no key matches."""
        if len(self.subdirs) == 1:
            return next(iter(self.subdirs.values()))

        kind = self.kind
        if kind is DatasetID:
            return self.subdirs.get(DatasetID(id=record.dataset_id))
        if kind is DataPackageID:
            return self.subdirs.get(DataPackageID(id=record.data_package_id))

        wanted = record.dataset.lower()
        for key, subdirs in self.subdirs.items():
            if key.name.lower() == wanted:
                return subdirs
        return None


class SearchFilter:
    """Narrow raw search results by dataset identity, recursion and subdirectory."""

    @staticmethod
    def validate_homogeneous(keys: Iterable) -> None:
        """Raise ConfigurationError if keys mix names, dataset IDs and package IDs."""
        kinds = {type(key) for key in keys}
        if len(kinds) > 1:
            names = ", ".join(sorted(kind.__name__ for kind in kinds))
            raise ConfigurationError(f"Entity keys must all be of one kind; found {names}")

    @staticmethod
    def clean(entity_filters: EntityFilters) -> CleanedFilters:
        """Normalize subdirectory filters.

        Backslashes become forward slashes and blank entries mean "base
        directory". Once any entity names a real subdirectory, every entity
        that listed a blank entry gets "" added to its list, so a mixed batch
        keeps root files only where they were asked for.
        """
        SearchFilter.validate_homogeneous(entity_filters.keys())

        cleaned: dict = {}
        wants_base_directory = set()
        for key, subdirs in entity_filters.items():
            subdir_list: list[str] = []
            for subdir in subdirs or ():
                if not subdir or not subdir.strip():
                    wants_base_directory.add(key)
                    continue

                normalized = subdir.replace("\\", "/").strip("/")
                if normalized.lower() not in (s.lower() for s in subdir_list):
                    subdir_list.append(normalized)

            cleaned[key] = subdir_list

        filter_on_sub_dir = any(cleaned.values())
        for key, subdir_list in cleaned.items():
            if filter_on_sub_dir and key in wants_base_directory:
                subdir_list.append("")
            cleaned[key] = sorted(subdir_list, key=str.lower)

        return CleanedFilters(cleaned, filter_on_sub_dir)

    @classmethod
    def apply(
        cls,
        records: Iterable[ArchivedFileRecord],
        entity_filters: EntityFilters,
        recurse: bool,
        on_error: ErrorCallback | None = None,
    ) -> list[ArchivedFileRecord]:
        """Filter records for the requested entities.

        Stages run in order: dataset identity, recursion, subdirectory.

        Args:
            records: Raw records merged from every entity query
            entity_filters: Entity key -> subdirectory filters
            recurse: False to keep only files directly in the requested directories
            on_error: Called for records whose owning entity cannot be determined

        Returns:
            Records that survived every stage, in input order
        """
        cleaned = cls.clean(entity_filters)
        filtered = cls.filter_by_identity(records, cleaned)

        if not recurse:
            filtered = cls.filter_no_recursion(filtered, cleaned, on_error)

        if cleaned.filter_on_sub_dir:
            filtered = cls.filter_by_sub_dir(filtered, cleaned, on_error)

        return filtered

    @staticmethod
    def filter_by_identity(
        records: Iterable[ArchivedFileRecord], cleaned: CleanedFilters
    ) -> list[ArchivedFileRecord]:
        """Keep records belonging to one of the requested entities.

        Package files carry no package ID back from the archive, so package
        queries are not filtered here.
        """
        kind = cleaned.kind
        if kind is None or kind is DataPackageID:
            return list(records)

        if kind is DatasetID:
            dataset_ids = {key.id for key in cleaned.subdirs}
            return [r for r in records if r.dataset_id in dataset_ids or r.dataset_id == 0]

        names = {key.name.lower() for key in cleaned.subdirs}
        return [r for r in records if r.dataset.lower() in names]

    @staticmethod
    def filter_no_recursion(
        records: Iterable[ArchivedFileRecord],
        cleaned: CleanedFilters,
        on_error: ErrorCallback | None = None,
    ) -> list[ArchivedFileRecord]:
        """Keep files directly inside the requested directory (or the root)."""
        results = []
        for record in records:
            subdirs = _lookup_or_report(cleaned, record, on_error)
            if subdirs is None:
                continue

            if not subdirs:
                if not record.sub_dir_path:
                    results.append(record)
                continue

            sub_dir = record.sub_dir_path.lower()
            if any(sub_dir == candidate.lower() for candidate in subdirs):
                results.append(record)

        return results

    @staticmethod
    def filter_by_sub_dir(
        records: Iterable[ArchivedFileRecord],
        cleaned: CleanedFilters,
        on_error: ErrorCallback | None = None,
    ) -> list[ArchivedFileRecord]:
        """Keep files under one of the requested subdirectories.

        Matching is component-wise and case-insensitive, anchored at the
        dataset root: "a/b/c" is under "a/b" but not under "b/c".
        """
        results = []
        for record in records:
            subdirs = _lookup_or_report(cleaned, record, on_error)
            if subdirs is None:
                continue

            if not subdirs:
                results.append(record)
                continue

            if not record.sub_dir_path:
                if "" in subdirs:
                    results.append(record)
                continue

            file_parts = [part.lower() for part in record.sub_dir_path.split("/")]
            for subdir in subdirs:
                required = [part.lower() for part in subdir.split("/")]
                if len(file_parts) >= len(required) and file_parts[: len(required)] == required:
                    results.append(record)
                    break

        return results


class RevisionCollector:
    """Merge per-entity query results, collapsing revisions of one path.

    By default only the newest transaction of each (dataset ID, relative path)
    survives; on equal transaction IDs the first one seen wins. With
    ``include_all_revisions`` every version is kept.
    """

    def __init__(self, include_all_revisions: bool = False):
        self.include_all_revisions = include_all_revisions
        self.results: list[ArchivedFileRecord] = []
        self._tracked: dict[tuple[int, str], ArchivedFileRecord] = {}

    def add_versions(self, versions: list[ArchivedFileRecord]) -> None:
        """Add every version reported for one relative path."""
        if not versions:
            return

        if self.include_all_revisions:
            for version in versions:
                self._add(version, keep_duplicates=True)
            return

        # sorted() is stable, so the first of equal transactions stays first
        newest = sorted(versions, key=lambda v: v.transaction_id, reverse=True)[0]
        self._add(newest, keep_duplicates=False)

    def _add(self, record: ArchivedFileRecord, keep_duplicates: bool) -> None:
        key = (record.dataset_id, record.relative_path_unix)
        existing = self._tracked.get(key)

        if existing is not None and not keep_duplicates:
            if record.transaction_id <= existing.transaction_id:
                return
            self.results = [r for r in self.results if r.file_id != existing.file_id]

        self.results.append(record)
        self._tracked[key] = record


def sort_root_files_first(records: Iterable[ArchivedFileRecord]) -> list[ArchivedFileRecord]:
    """Order root-level files by path, then files in subdirectories by path."""
    records = list(records)

    def path_key(record: ArchivedFileRecord) -> tuple[str, str]:
        return record.relative_path_windows.lower(), record.relative_path_windows

    root = sorted((r for r in records if not r.sub_dir_path), key=path_key)
    nested = sorted((r for r in records if r.sub_dir_path), key=path_key)
    return root + nested


def wildcard_regex(name: str) -> re.Pattern:
    """Compile a case-insensitive, fully anchored pattern where ``*`` matches anything."""
    escaped = re.escape(name).replace(r"\*", ".*")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


class FileSearchService:
    """Wildcard searches over a resolved file listing."""

    @staticmethod
    def find_files(
        records: Iterable[ArchivedFileRecord],
        file_name: str,
        subdirectory: str = "",
        dataset_name: str = "",
        data_package_id: int = 0,
        recurse: bool = True,
        file_split: bool = False,
    ) -> list[DirectoryOrFileInfo]:
        """Find files whose name matches a wildcard pattern.

        Only the last component of ``subdirectory`` may contain a wildcard. It
        is tested against each file's directories from the deepest upward
        (only the deepest when ``recurse`` is False); the components before it
        must equal the directories above the matched one.

        Args:
            records: Resolved listing to search
            file_name: Name or wildcard, e.g. ``*.zip``; ``;``-separated when file_split
            subdirectory: Directory the file must reside in; "." means none
            dataset_name: Restrict to one dataset (blank to ignore)
            data_package_id: Restrict to one data package (0 to ignore)
            recurse: False to only search the root (or only the deepest subdirectory)
            file_split: Treat file_name as a list of specs

        Returns:
            One match per (pattern, record) pair
        """
        records = list(records)
        matches: list[DirectoryOrFileInfo] = []
        if not file_name or not records:
            return matches

        if subdirectory == ".":
            subdirectory = ""

        if subdirectory:
            subdir_parts = subdirectory.replace("\\", "/").strip("/").split("/")
            directory_matcher = wildcard_regex(subdir_parts[-1])
            parent_parts = subdir_parts[:-1]
        else:
            directory_matcher = wildcard_regex("*")
            parent_parts = []

        name_patterns = file_name.split(";") if file_split else [file_name]

        for pattern in name_patterns:
            file_matcher = wildcard_regex(pattern)

            for record in records:
                if dataset_name and dataset_name.lower() != record.dataset.lower():
                    continue
                if data_package_id > 0 and record.data_package_id != data_package_id:
                    continue
                if not file_matcher.match(record.filename):
                    continue

                relative_path = record.relative_path_unix
                if not subdirectory:
                    is_match = recurse or "/" not in relative_path
                else:
                    is_match = _directory_matches(
                        relative_path, directory_matcher, parent_parts, recurse
                    )

                if is_match:
                    matches.append(
                        DirectoryOrFileInfo(file_id=record.file_id, is_directory=False, record=record)
                    )

        return matches

    @staticmethod
    def find_directories(
        records: Iterable[ArchivedFileRecord],
        directory_name: str,
        dataset_name: str = "",
    ) -> list[DirectoryOrFileInfo]:
        """Find unique directories whose name matches a wildcard pattern."""
        matches: list[DirectoryOrFileInfo] = []
        if not directory_name:
            return matches

        directory_matcher = wildcard_regex(directory_name)
        seen: set[str] = set()

        for record in records:
            if dataset_name and dataset_name.lower() != record.dataset.lower():
                continue
            if not record.sub_dir_path:
                continue

            directory_path = record.sub_dir_path
            path_parts = directory_path.split("/")
            if not directory_matcher.match(path_parts[-1]):
                continue
            if directory_path in seen:
                continue
            seen.add(directory_path)

            directory = ArchivedFileRecord(
                dataset=record.dataset,
                filename=path_parts[-1],
                sub_dir_path="/".join(path_parts[:-1]),
            )
            matches.append(DirectoryOrFileInfo(file_id=0, is_directory=True, record=directory))

        return matches


def _directory_matches(
    relative_path: str,
    directory_matcher: re.Pattern,
    parent_parts: list[str],
    recurse: bool,
) -> bool:
    path_parts = relative_path.split("/")
    if len(path_parts) < 2:
        return False

    is_match = False
    for path_index in range(len(path_parts) - 2, -1, -1):
        if directory_matcher.match(path_parts[path_index]):
            is_match = True
            # Parents are compared only as deep as the file path goes
            comparison_index = len(parent_parts)
            for parent_index in range(path_index - 1, -1, -1):
                comparison_index -= 1
                if comparison_index < 0:
                    break
                if parent_parts[comparison_index].lower() != path_parts[parent_index].lower():
                    is_match = False

            if is_match:
                break

        if not recurse:
            break

    return is_match


def _lookup_or_report(
    cleaned: CleanedFilters,
    record: ArchivedFileRecord,
    on_error: ErrorCallback | None,
) -> list[str] | None:
    subdirs = cleaned.lookup(record)
    if subdirs is None:
        message = (
            f"File {record.file_id} has an unrecognized owner "
            f"(dataset '{record.dataset}', dataset ID {record.dataset_id}, "
            f"data package ID {record.data_package_id}); skipping"
        )
        logger.debug(message)
        if on_error:
            on_error(message)
    return subdirs


def created_within(start: datetime, end: datetime) -> RecordExclusion:
    """Build an exclusion predicate for records created inside [start, end]."""

    def excluded(record: ArchivedFileRecord) -> bool:
        created = parse_timestamp(record.submission_time)
        if created is None:
            return False
        return start <= created.replace(tzinfo=None) <= end

    return excluded
