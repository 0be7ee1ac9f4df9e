"""Domain models for archive resolution and download."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SHA1 = "sha1"
UNKNOWN_DATASET = "UnknownDataset"


class DownloadLayout(str, Enum):
    """Rule mapping an archived file to a local relative path."""

    FLAT_NO_SUBDIRECTORIES = "flat"  # Filename only
    SINGLE_DATASET = "single-dataset"  # Dataset-relative path
    DATASET_NAME_AND_SUBDIRECTORIES = "dataset-name"  # Dataset/subdir/filename
    INSTRUMENT_YEAR_QUARTER_DATASET = "instrument-year-quarter"  # Instrument/YYYY_Q/dataset/...


class OverwriteMode(str, Enum):
    """Policy applied when a download target already exists."""

    IF_CHANGED = "if-changed"  # Compare SHA-1 of the local file
    ALWAYS = "always"
    NEVER = "never"


class CartState(str, Enum):
    """Lifecycle of a server-side bundling request."""

    NO_CART = "no_cart"
    UNSUBMITTED = "unsubmitted"
    BUILDING = "building"
    AVAILABLE = "available"
    EXPIRED = "expired"
    ADMIN = "admin"
    UNKNOWN = "unknown"

    @property
    def is_terminal_failure(self) -> bool:
        """Return True for states a cart never recovers from."""
        return self in (CartState.EXPIRED, CartState.ADMIN, CartState.UNKNOWN)


class DatasetName(BaseModel):
    """Entity key selecting a dataset by name."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["dataset_name"] = "dataset_name"
    name: str

    def __str__(self) -> str:
        return self.name


class DatasetID(BaseModel):
    """Entity key selecting a dataset by numeric ID."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["dataset_id"] = "dataset_id"
    id: int

    def __str__(self) -> str:
        return f"dataset {self.id}"


class DataPackageID(BaseModel):
    """Entity key selecting a data package by numeric ID."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["data_package_id"] = "data_package_id"
    id: int

    def __str__(self) -> str:
        return f"data package {self.id}"


EntityKey = Annotated[Union[DatasetName, DatasetID, DataPackageID], Field(discriminator="kind")]


class ArchivedFileRecord(BaseModel):
    """One file version known to the archive.

    Records are immutable. Corrections made after download (observed size)
    are applied to a copy via ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    dataset: str = ""  # Empty for data package files
    filename: str
    sub_dir_path: str = ""  # Forward-slash separated, no leading or trailing slash
    file_id: int = 0
    instrument: str = ""
    dataset_year_quarter: str = ""  # e.g. 2013_3
    dataset_id: int = 0  # 0 for data package files
    data_package_id: int = 0  # 0 for dataset files
    hash: str = ""
    hash_type: str = ""  # Typically sha1, could be md5
    transaction_id: int = 0  # Higher means a newer upload of the same path
    submission_time: str = ""  # Raw "created" value from the metadata service
    file_size_bytes: int = 0
    file_creation_time: datetime | None = None
    file_last_write_time: datetime | None = None

    @field_validator("sub_dir_path", mode="before")
    @classmethod
    def normalize_sub_dir(cls, v: str | None) -> str:
        """Store subdirectories with forward slashes and no outer separators."""
        if not v:
            return ""
        return str(v).replace("\\", "/").strip("/")

    @model_validator(mode="after")
    def check_owner(self) -> "ArchivedFileRecord":
        """A file belongs to a dataset or a data package, never both."""
        if self.dataset_id and self.data_package_id:
            raise ValueError(
                f"File {self.file_id} has both dataset ID {self.dataset_id} "
                f"and data package ID {self.data_package_id}"
            )
        return self

    @property
    def relative_path_unix(self) -> str:
        """Dataset-relative path using forward slashes."""
        if self.sub_dir_path:
            return f"{self.sub_dir_path}/{self.filename}"
        return self.filename

    @property
    def relative_path_windows(self) -> str:
        """Dataset-relative path using backslashes."""
        return self.relative_path_unix.replace("/", "\\")

    @property
    def path_with_dataset_unix(self) -> str:
        """Relative path prefixed with the dataset name (if any)."""
        return _join_parts(self.dataset, self.relative_path_unix)

    @property
    def path_with_dataset_windows(self) -> str:
        return self.path_with_dataset_unix.replace("/", "\\")

    @property
    def path_with_instrument_and_dataset_unix(self) -> str:
        """Instrument/year-quarter/dataset/relative path, skipping blank parts."""
        return _join_parts(
            self.instrument, self.dataset_year_quarter, self.dataset, self.relative_path_unix
        )

    @property
    def path_with_instrument_and_dataset_windows(self) -> str:
        return self.path_with_instrument_and_dataset_unix.replace("/", "\\")

    @property
    def sha1_hash(self) -> str:
        """Return the hash when it is a SHA-1 hash, otherwise an empty string."""
        if not self.hash_type or self.hash_type.lower() == SHA1:
            return self.hash
        return ""

    @property
    def submission_time_value(self) -> datetime:
        """Parsed submission time; falls back to now when missing or invalid."""
        parsed = parse_timestamp(self.submission_time)
        return parsed if parsed is not None else datetime.now()

    def __str__(self) -> str:
        return self.relative_path_unix


class DirectoryOrFileInfo(BaseModel):
    """A single match returned by file or directory searches."""

    model_config = ConfigDict(frozen=True)

    file_id: int
    is_directory: bool
    record: ArchivedFileRecord
    cache_date: datetime = Field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"FileID {self.file_id}; {self.record}"


class QueuedDownload(BaseModel):
    """A download queue entry."""

    model_config = ConfigDict(frozen=True)

    record: ArchivedFileRecord | None
    unzip_required: bool = False
    dest_path: Path | None = None  # Explicit destination, overrides the layout


class FileDownloaded(BaseModel):
    """Published once per queued file after a successful queue pass."""

    model_config = ConfigDict(frozen=True)

    download_dir: Path
    record: ArchivedFileRecord | None
    unzip_required: bool = False


class PlannedFile(BaseModel):
    """A file and the local path it will be written to."""

    model_config = ConfigDict(frozen=True)

    file_id: int
    record: ArchivedFileRecord
    target: Path


class HashGroup(BaseModel):
    """Files sharing one content hash; only the representative is fetched."""

    model_config = ConfigDict(frozen=True)

    hash: str
    hash_type: str
    representative: PlannedFile
    duplicates: list[PlannedFile] = Field(default_factory=list)

    @property
    def file_ids(self) -> list[int]:
        return [self.representative.file_id] + [d.file_id for d in self.duplicates]


class DownloadPlan(BaseModel):
    """Result of planning a batch download."""

    layout: DownloadLayout  # Effective layout after auto-escalation
    escalated: bool = False  # True when SINGLE_DATASET was widened to avoid collisions
    groups: list[HashGroup] = Field(default_factory=list)
    total_bytes: int = 0
    skipped_file_ids: list[int] = Field(default_factory=list)  # Targets that could not be built

    def target_for(self, file_id: int) -> Path | None:
        """Return the planned target for a file ID."""
        for group in self.groups:
            if group.representative.file_id == file_id:
                return group.representative.target
            for duplicate in group.duplicates:
                if duplicate.file_id == file_id:
                    return duplicate.target
        return None


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as reported by the archive."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _join_parts(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip())
