"""Shared type definitions."""

from collections.abc import Callable, Mapping, Set

from archive_reader.domain.models import ArchivedFileRecord, EntityKey, FileDownloaded

# Progress hook for download operations (downloaded bytes, total bytes)
DownloadProgressHook = Callable[[int, int | None], None]

# Listener notified once per queued file after a successful queue pass
FileDownloadedHook = Callable[[FileDownloaded], None]

# Predicate returning True for records that must be dropped from search results
RecordExclusion = Callable[[ArchivedFileRecord], bool]

# Entity key -> subdirectory filters ("" = base directory)
EntityFilters = Mapping[EntityKey, Set[str]]
