"""Local path construction for downloaded archive files."""

import os
from pathlib import Path, PurePosixPath

from archive_reader.domain.errors import ConfigurationError, PathTooLongError
from archive_reader.domain.models import ArchivedFileRecord, DownloadLayout

FILE_ID_TAG = "@MyEMSLID_"
FILE_ID_DISAMBIGUATOR = "_FileID_"
LONG_PATH_PREFIX = "\\\\?\\"


class LongPathPolicy:
    """Platform capability for paths longer than the classic limit.

    When enabled, rooted paths over ``max_length`` get the extended-length
    prefix and relative ones are rejected. A disabled policy leaves paths alone.
    """

    def __init__(self, enabled: bool = os.name == "nt", max_length: int = 255):
        self.enabled = enabled
        self.max_length = max_length

    def apply(self, path: str | Path) -> str:
        """Return the path to use when opening ``path`` for writing."""
        text = str(path)
        if not self.enabled or len(text) <= self.max_length or text.startswith(LONG_PATH_PREFIX):
            return text

        if not os.path.isabs(text):
            raise PathTooLongError(
                f"Target file path is over {self.max_length} characters long and is a "
                f"relative path; cannot create file {text}"
            )

        return LONG_PATH_PREFIX + text


def construct_download_path(layout: DownloadLayout, record: ArchivedFileRecord) -> str:
    """Return the layout-relative path for a record (forward slashes).

    Args:
        layout: Directory layout to apply
        record: Archived file to place

    Returns:
        Relative path such as ``sub/a/x.txt`` or ``INST/2020_1/DS1/sub/a/x.txt``
    """
    if layout == DownloadLayout.FLAT_NO_SUBDIRECTORIES:
        return record.filename
    if layout == DownloadLayout.SINGLE_DATASET:
        return record.relative_path_unix
    if layout == DownloadLayout.DATASET_NAME_AND_SUBDIRECTORIES:
        return record.path_with_dataset_unix
    if layout == DownloadLayout.INSTRUMENT_YEAR_QUARTER_DATASET:
        return record.path_with_instrument_and_dataset_unix
    raise ConfigurationError(f"Unrecognized download layout: {layout}")


def add_file_id_disambiguator(relative_path: str, file_id: int) -> str:
    """Insert ``_FileID_<id>`` before the extension of the final component."""
    path = PurePosixPath(relative_path)
    name = f"{path.stem}{FILE_ID_DISAMBIGUATOR}{file_id}{path.suffix}"
    return str(path.with_name(name))


def append_file_id(file_path: str, file_id: int) -> str:
    """Append the archive file ID tag, e.g. ``data.raw@MyEMSLID_84327``."""
    return f"{file_path}{FILE_ID_TAG}{file_id}"


def extract_file_id(file_path: str) -> tuple[int, str]:
    """Split a tagged path into (file ID, path without tag).

    Returns ``(0, file_path)`` if the tag is missing or leads the path. A tag
    not followed by an integer yields 0 with the tag still stripped.
    """
    index = file_path.rfind(FILE_ID_TAG)
    if index <= 0:
        return 0, file_path

    stripped = file_path[:index]
    try:
        return int(file_path[index + len(FILE_ID_TAG):]), stripped
    except ValueError:
        return 0, stripped
