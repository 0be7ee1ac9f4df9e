"""Domain models and business logic."""

from archive_reader.domain.errors import (
    ArchiveError,
    CartError,
    ConfigurationError,
    EmptyQueueError,
    FileInUseError,
    LocalIOError,
    PathTooLongError,
    ProtocolError,
    RemoteUnavailable,
)
from archive_reader.domain.models import (
    ArchivedFileRecord,
    CartState,
    DataPackageID,
    DatasetID,
    DatasetName,
    DirectoryOrFileInfo,
    DownloadLayout,
    DownloadPlan,
    FileDownloaded,
    HashGroup,
    OverwriteMode,
    PlannedFile,
    QueuedDownload,
)
from archive_reader.domain.types import (
    DownloadProgressHook,
    EntityFilters,
    FileDownloadedHook,
    RecordExclusion,
)

__all__ = [
    "ArchivedFileRecord",
    "CartState",
    "DataPackageID",
    "DatasetID",
    "DatasetName",
    "DirectoryOrFileInfo",
    "DownloadLayout",
    "DownloadPlan",
    "FileDownloaded",
    "HashGroup",
    "OverwriteMode",
    "PlannedFile",
    "QueuedDownload",
    "ArchiveError",
    "CartError",
    "ConfigurationError",
    "EmptyQueueError",
    "FileInUseError",
    "LocalIOError",
    "PathTooLongError",
    "ProtocolError",
    "RemoteUnavailable",
    "DownloadProgressHook",
    "EntityFilters",
    "FileDownloadedHook",
    "RecordExclusion",
]
