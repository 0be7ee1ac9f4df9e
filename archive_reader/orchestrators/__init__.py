"""Orchestration layer.

This module contains the workflows that coordinate metadata resolution,
batch downloads and the download queue.
"""

from archive_reader.orchestrators.archive_files import ArchiveFiles
from archive_reader.orchestrators.download import ArchiveDownloader
from archive_reader.orchestrators.download_queue import DownloadQueue
from archive_reader.orchestrators.resolver import MetadataResolver

__all__ = [
    "ArchiveDownloader",
    "ArchiveFiles",
    "DownloadQueue",
    "MetadataResolver",
]
