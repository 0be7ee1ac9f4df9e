"""Metadata search client for the archive's file index."""

from collections.abc import Callable
from logging import Logger

import orjson
import requests
from pydantic import BaseModel, ConfigDict, ValidationError

from archive_reader.domain.errors import ProtocolError, RemoteUnavailable
from archive_reader.domain.models import (
    ArchivedFileRecord,
    DataPackageID,
    DatasetID,
    DatasetName,
    parse_timestamp,
)
from archive_reader.load.dataset_directory import DatasetDirectory

logger = Logger(__file__)

QUERY_KEY_DATASET_ID = "omics.dms.dataset_id"
QUERY_KEY_DATA_PACKAGE_ID = "omics.dms.datapackage_id"

DUPLICATE_HASH_MESSAGES_TO_LOG = 5


class MetadataQuery(BaseModel):
    """One metadata search, plus the owner details stamped on every hit."""

    model_config = ConfigDict(frozen=True)

    search_key: str
    owner_id: int  # Dataset ID or data package ID; 0 means nothing to search for
    dataset: str = ""
    instrument: str = ""
    is_data_package: bool = False

    @property
    def description(self) -> str:
        kind = "Data package" if self.is_data_package else "Dataset"
        return f"{kind} ID {self.owner_id}"


def _query_for_dataset_name(key: DatasetName, directory: DatasetDirectory) -> MetadataQuery:
    # Name searches miss older ingests, so always search by ID
    dataset_id, instrument = directory.dataset_id_for(key.name)
    return MetadataQuery(
        search_key=QUERY_KEY_DATASET_ID,
        owner_id=dataset_id,
        dataset=key.name,
        instrument=instrument,
    )


def _query_for_dataset_id(key: DatasetID, directory: DatasetDirectory) -> MetadataQuery:
    dataset, instrument = directory.dataset_name_for(key.id) if key.id else ("", "")
    return MetadataQuery(
        search_key=QUERY_KEY_DATASET_ID,
        owner_id=key.id,
        dataset=dataset,
        instrument=instrument,
    )


def _query_for_data_package(key: DataPackageID, directory: DatasetDirectory) -> MetadataQuery:
    # Dataset name and instrument are blank for data packages
    return MetadataQuery(
        search_key=QUERY_KEY_DATA_PACKAGE_ID,
        owner_id=key.id,
        is_data_package=True,
    )


_QUERY_BUILDERS = {
    DatasetName: _query_for_dataset_name,
    DatasetID: _query_for_dataset_id,
    DataPackageID: _query_for_data_package,
}


def build_query(key, directory: DatasetDirectory) -> MetadataQuery:
    """Translate an entity key into a metadata search."""
    return _QUERY_BUILDERS[type(key)](key, directory)


def record_from_hit(hit: dict, query: MetadataQuery) -> ArchivedFileRecord:
    """Build a record from one JSON hit.

    Raises:
        ProtocolError: If the hit lacks a name or carries unparseable values
    """
    if not isinstance(hit, dict) or not hit.get("name"):
        raise ProtocolError(f"Metadata hit is missing the file name: {hit!r}")

    try:
        return ArchivedFileRecord(
            dataset=query.dataset,
            filename=hit["name"],
            sub_dir_path=hit.get("subdir") or "",
            file_id=int(hit.get("_id") or 0),
            instrument=query.instrument,
            dataset_id=0 if query.is_data_package else query.owner_id,
            data_package_id=query.owner_id if query.is_data_package else 0,
            hash=hit.get("hashsum") or "",
            hash_type=hit.get("hashtype") or "",
            transaction_id=int(hit.get("transaction_id") or 0),
            submission_time=hit.get("created") or "",
            file_size_bytes=int(hit.get("size") or 0),
            file_creation_time=parse_timestamp(hit.get("ctime")),
            file_last_write_time=parse_timestamp(hit.get("mtime")),
        )
    except (TypeError, ValueError, ValidationError) as exc:
        raise ProtocolError(f"Invalid metadata hit for {hit.get('name')}: {exc}") from exc


class MetadataClient:
    """Runs file searches against the metadata service."""

    def __init__(
        self,
        base_url: str,
        timeout: int = 300,
        session: requests.Session | None = None,
        on_debug: Callable[[str], None] | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Metadata server URL, e.g. https://metadata.my.emsl.pnl.gov
            timeout: Seconds to wait for a search response
            session: Optional requests session (shared cookies, test doubles)
            on_debug: Receives low-priority diagnostics
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.on_debug = on_debug

    def url_for(self, query: MetadataQuery) -> str:
        """Return the search URL for a query."""
        return f"{self.base_url}/fileinfo/files_for_keyvalue/{query.search_key}/{query.owner_id}"

    def fetch_hits(self, query: MetadataQuery) -> list[dict]:
        """Run the search and return the raw JSON hits.

        Raises:
            RemoteUnavailable: On timeout, connection failure or HTTP 503
            ProtocolError: On any other bad status or a payload that is not a JSON array
        """
        url = self.url_for(query)
        logger.debug(f"Contacting {url}")

        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise RemoteUnavailable(
                f"Metadata search timed out after {self.timeout} seconds: {url}"
            ) from exc
        except requests.ConnectionError as exc:
            raise RemoteUnavailable(f"Could not connect to the metadata server: {exc}") from exc
        except requests.RequestException as exc:
            raise ProtocolError(f"Metadata request failed: {url}: {exc}") from exc

        if response.status_code == 503:
            raise RemoteUnavailable(f"Metadata server unavailable: {url}", status_code=503)

        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise ProtocolError(f"Unexpected response from metadata server: {exc}") from exc

        try:
            hits = orjson.loads(response.content)
        except orjson.JSONDecodeError as exc:
            raise ProtocolError(f"Could not parse metadata response from {url}: {exc}") from exc

        if not isinstance(hits, list):
            preview = response.content[:100].decode("utf-8", errors="replace")
            raise ProtocolError(f"Metadata response is not a JSON array: {preview}")

        return hits

    def search(self, query: MetadataQuery) -> dict[str, list[ArchivedFileRecord]]:
        """Return every version of every file, keyed by relative path.

        The same content reported twice for one path is dropped; a hash of
        "none" is dropped silently.
        """
        remote_files: dict[str, list[ArchivedFileRecord]] = {}
        duplicate_hash_count = 0

        for hit in self.fetch_hits(query):
            record = record_from_hit(hit, query)
            versions = remote_files.setdefault(record.relative_path_unix, [])

            if any(version.hash == record.hash for version in versions):
                if record.hash.lower() == "none":
                    continue

                duplicate_hash_count += 1
                if duplicate_hash_count <= DUPLICATE_HASH_MESSAGES_TO_LOG:
                    self._debug(
                        "Remote file listing reports the same file with the same hash more "
                        f"than once; ignoring duplicate hash {record.hash} for "
                        f"{record.relative_path_unix}"
                    )
                continue

            versions.append(record)

        if duplicate_hash_count > DUPLICATE_HASH_MESSAGES_TO_LOG:
            self._debug(f"Duplicate hash value found for {duplicate_hash_count} files")

        return remote_files

    def _debug(self, message: str) -> None:
        logger.debug(message)
        if self.on_debug:
            self.on_debug(message)
