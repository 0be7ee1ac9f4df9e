"""Metadata resolution: entity keys to a filtered, sorted file listing."""

from collections.abc import Callable
from datetime import datetime, timedelta

from archive_reader.domain.errors import RemoteUnavailable
from archive_reader.domain.models import ArchivedFileRecord
from archive_reader.domain.services import (
    RevisionCollector,
    SearchFilter,
    sort_root_files_first,
)
from archive_reader.domain.types import EntityFilters, RecordExclusion
from archive_reader.load.dataset_directory import DatasetDirectory, StaticDatasetDirectory
from archive_reader.load.metadata import MetadataClient, build_query
from archive_reader.ui.reporter import Reporter, SilentReporter


class MetadataResolver:
    """Resolves tracked datasets or data packages into archived file records.

    The resolver keeps the set of tracked entity keys and a cached listing.
    Changing the tracked set marks the cache stale; reads refresh it when
    stale or older than the TTL.
    """

    def __init__(
        self,
        client: MetadataClient,
        directory: DatasetDirectory | None = None,
        reporter: Reporter | None = None,
        include_all_revisions: bool = False,
        exclusion: RecordExclusion | None = None,
        cache_ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the resolver.

        Args:
            client: Metadata search client
            directory: Dataset name/ID lookups; defaults to an empty in-memory directory
            reporter: Event sink; defaults to a silent reporter
            include_all_revisions: Keep every version of a file instead of the newest
            exclusion: Predicate for records that must never be listed
            cache_ttl: Maximum age of the cached listing
            clock: Time source for cache ageing
        """
        self.client = client
        self.directory = directory or StaticDatasetDirectory()
        self.reporter = reporter or SilentReporter()
        self.include_all_revisions = include_all_revisions
        self.exclusion = exclusion
        self.cache_ttl = cache_ttl
        self.clock = clock

        self._entities: dict = {}
        self._cache: list[ArchivedFileRecord] = []
        self._cache_args: tuple[bool, str] | None = None
        self._last_refresh: datetime | None = None
        self._is_stale = True

    # Tracked entities

    @property
    def entities(self) -> dict:
        """Tracked entity key -> subdirectory filters."""
        return {key: set(subdirs) for key, subdirs in self._entities.items()}

    def add_entity(self, key, subdir: str = "") -> None:
        """Track an entity, optionally limited to a subdirectory."""
        self._entities.setdefault(key, set()).add(subdir or "")
        self._is_stale = True

    def remove_entity(self, key) -> None:
        if self._entities.pop(key, None) is not None:
            self._is_stale = True

    def clear_entities(self) -> None:
        self._entities.clear()
        self._is_stale = True

    def contains(self, key) -> bool:
        return key in self._entities

    # Cache

    @property
    def is_stale(self) -> bool:
        """True when the next read has to query the archive."""
        if self._is_stale or self._last_refresh is None:
            return True
        return self.clock() - self._last_refresh >= self.cache_ttl

    def mark_stale(self) -> None:
        self._is_stale = True

    def files(self, recurse: bool = True, instrument: str = "") -> list[ArchivedFileRecord]:
        """Return the listing for the tracked entities, refreshing when needed."""
        if self.is_stale or self._cache_args != (recurse, instrument):
            return self.refresh(recurse, instrument)
        return self._cache

    def refresh(self, recurse: bool = True, instrument: str = "") -> list[ArchivedFileRecord]:
        """Query the archive for the tracked entities and replace the cache."""
        self._cache = self.resolve(self._entities, recurse=recurse, instrument=instrument)
        self._cache_args = (recurse, instrument)
        self._last_refresh = self.clock()
        self._is_stale = False
        return self._cache

    # Resolution

    def resolve(
        self,
        entity_filters: EntityFilters | None = None,
        recurse: bool = True,
        instrument: str = "",
    ) -> list[ArchivedFileRecord]:
        """Search the archive for every entity and return the merged listing.

        Args:
            entity_filters: Entity key -> subdirectory filters (all keys of one kind)
            recurse: False to keep only files directly in the requested directories
            instrument: Skip files whose instrument differs (blank to keep all)

        Returns:
            Records with root-level files first, each tier ordered by path

        Raises:
            ConfigurationError: If the keys mix entity kinds (before any query)
            RemoteUnavailable: If the metadata server cannot be reached
            ProtocolError: If the metadata server returns malformed data
        """
        entity_filters = entity_filters or {}
        SearchFilter.validate_homogeneous(entity_filters.keys())
        if not entity_filters:
            return []

        collector = RevisionCollector(self.include_all_revisions)

        for key in entity_filters:
            query = build_query(key, self.directory)
            if query.owner_id == 0:
                self.reporter.report_warning(
                    f"{query.description} for {key}; not contacting the archive"
                )
                continue

            try:
                remote_files = self.client.search(query)
            except RemoteUnavailable as exc:
                self.reporter.report_offline(f"Archive is unavailable: {exc}")
                raise

            for versions in remote_files.values():
                if self.exclusion:
                    versions = [version for version in versions if not self.exclusion(version)]
                if not versions:
                    continue

                if instrument and not _instrument_matches(versions[0], instrument):
                    continue

                collector.add_versions(versions)

        filtered = SearchFilter.apply(
            collector.results, entity_filters, recurse, on_error=self.reporter.report_error
        )
        return sort_root_files_first(filtered)


def _instrument_matches(record: ArchivedFileRecord, instrument: str) -> bool:
    return not record.instrument or record.instrument.lower() == instrument.lower()
