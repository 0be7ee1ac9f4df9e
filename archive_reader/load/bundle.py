"""Cart (server-side bundle) submission and tar stream reconciliation."""

import io
import shutil
import tarfile
import time
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from logging import Logger
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Protocol

import httpx
import orjson
from atomicwrites import atomic_write

from archive_reader.domain.errors import (
    ArchiveError,
    CartError,
    LocalIOError,
    ProtocolError,
    RemoteUnavailable,
)
from archive_reader.domain.models import (
    UNKNOWN_DATASET,
    ArchivedFileRecord,
    CartState,
    DownloadLayout,
)
from archive_reader.domain.paths import LongPathPolicy, construct_download_path
from archive_reader.load.downloader import check_response, increase_timeout, set_modification_time
from archive_reader.ui.reporter import Reporter, SilentReporter

logger = Logger(__file__)

CART_STATUS_HEADER = "X-Pacifica-Status"


@dataclass(frozen=True)
class BundleEntry:
    """One member of a bundle stream; ``reader`` must be consumed before the next entry."""

    name: str
    reader: BinaryIO | None
    is_directory: bool = False
    size: int = 0


class BundleExtractor(Protocol):
    def __iter__(self) -> Iterator[BundleEntry]: ...


class TarStreamExtractor:
    """Iterate a tar stream front to back without seeking."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def __iter__(self) -> Iterator[BundleEntry]:
        with tarfile.open(fileobj=self.stream, mode="r|*") as tar:
            for member in tar:
                reader = tar.extractfile(member) if member.isfile() else None
                yield BundleEntry(
                    name=member.name,
                    reader=reader,
                    is_directory=member.isdir(),
                    size=member.size,
                )


class _ChunkReader(io.RawIOBase):
    """File-like view over an iterator of byte chunks, optionally time limited."""

    def __init__(
        self,
        chunks: Iterator[bytes],
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._chunks = chunks
        self._buffer = b""
        self._deadline = deadline
        self._clock = clock

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0
            if self._deadline is not None and self._clock() > self._deadline:
                raise RemoteUnavailable("Bundle download exceeded its time limit")

        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size


class CartClient:
    """Client for the cart server that bundles archived files into a tar."""

    def __init__(
        self,
        base_url: str,
        client: httpx.Client | None = None,
        timeout: int = 100,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        max_stream_seconds: float = 24 * 60 * 60,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_stream_seconds = max_stream_seconds
        self.client = client or httpx.Client(follow_redirects=True)
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock

    def cart_url(self, cart_id: str) -> str:
        return f"{self.base_url}/{cart_id}"

    @staticmethod
    def build_payload(records: Iterable[ArchivedFileRecord]) -> bytes:
        """Serialize the cart request body."""
        file_ids = [
            {
                "id": record.filename,
                "path": record.relative_path_unix,
                "hashtype": record.hash_type,
                "hashsum": record.hash,
            }
            for record in records
        ]
        return orjson.dumps({"fileids": file_ids})

    def submit(self, records: Iterable[ArchivedFileRecord], cart_id: str | None = None) -> str:
        """Post a cart request and return its ID."""
        cart_id = cart_id or str(uuid.uuid4())
        payload = self.build_payload(records)
        url = self.cart_url(cart_id)
        response = self._request(
            "POST", url, content=payload, headers={"Content-Type": "application/json"}
        )
        check_response(response, url)
        logger.debug(f"Submitted cart {cart_id}")
        return cart_id

    def cart_state(self, cart_id: str) -> CartState:
        """Return the current state of a cart."""
        url = self.cart_url(cart_id)
        response = self._request("HEAD", url)
        if response.status_code == 404:
            return CartState.NO_CART
        check_response(response, url)

        status = response.headers.get(CART_STATUS_HEADER, "").strip().lower()
        try:
            return CartState(status)
        except ValueError:
            return CartState.UNKNOWN

    def wait_until_available(self, cart_id: str, max_minutes: float = 30) -> None:
        """Poll a cart until it can be downloaded.

        Polls every 5 seconds, every 15 seconds after 5 minutes and every 30
        seconds after 15 minutes.

        Raises:
            CartError: If the cart reaches a terminal state or time runs out
        """
        start = self.clock()
        while True:
            state = self.cart_state(cart_id)
            if state == CartState.AVAILABLE:
                return
            if state.is_terminal_failure:
                raise CartError(f"Cart {cart_id} is {state.value}; cannot download", state=state)

            elapsed = self.clock() - start
            if elapsed >= max_minutes * 60:
                raise CartError(
                    f"Cart {cart_id} not available after {max_minutes} minutes (state: {state.value})",
                    state=state,
                )

            if elapsed < 5 * 60:
                self.sleep(5)
            elif elapsed < 15 * 60:
                self.sleep(15)
            else:
                self.sleep(30)

    @contextmanager
    def open_bundle(self, cart_id: str, timeout: int | None = None) -> Iterator[BinaryIO]:
        """Stream the cart's tar file; reading fails after ``max_stream_seconds``."""
        url = self.cart_url(cart_id)
        timeout = timeout or self.timeout
        deadline = self.clock() + self.max_stream_seconds
        try:
            with self.client.stream(
                "GET", url, params={"filename": f"{cart_id}.tar"}, timeout=timeout
            ) as response:
                check_response(response, url)
                yield io.BufferedReader(_ChunkReader(response.iter_bytes(), deadline, self.clock))
        except httpx.TimeoutException as exc:
            raise RemoteUnavailable(f"Timed out after {timeout} seconds: {url}") from exc
        except httpx.TransportError as exc:
            raise RemoteUnavailable(f"Could not reach {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Request failed for {url}: {exc}") from exc

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self.client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteUnavailable(f"Timed out after {self.timeout} seconds: {url}") from exc
        except httpx.TransportError as exc:
            raise RemoteUnavailable(f"Could not reach {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Request failed for {url}: {exc}") from exc


class CartFallbackDownloader:
    """Retrieve files through a cart bundle and map tar entries back to records."""

    def __init__(
        self,
        cart: CartClient,
        reporter: Reporter | None = None,
        long_paths: LongPathPolicy | None = None,
        max_attempts: int = 5,
        timeout: int = 100,
        retry_delay: float = 2.0,
        max_minutes: float = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cart = cart
        self.reporter = reporter or SilentReporter()
        self.long_paths = long_paths or LongPathPolicy()
        self.max_attempts = max(1, max_attempts)
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.max_minutes = max_minutes
        self.sleep = sleep
        self.downloaded_files: dict[Path, ArchivedFileRecord] = {}

    def fetch_via_bundle(
        self,
        records: list[ArchivedFileRecord],
        download_dir: Path,
        layout: DownloadLayout,
        overrides: Mapping[int, Path] | None = None,
    ) -> bool:
        """Bundle the remaining files on the server, then stream and unpack them.

        Returns:
            True if the bundle was extracted
        """
        if not records:
            return True

        try:
            cart_id = self.cart.submit(records)
            self.reporter.report_status(f"Submitted cart {cart_id} with {len(records)} file(s)")
            self.cart.wait_until_available(cart_id, self.max_minutes)
        except ArchiveError as exc:
            self.reporter.report_error(f"Could not retrieve {len(records)} file(s) via a cart", exc)
            return False

        return self.download_bundle(cart_id, records, download_dir, layout, overrides)

    def download_bundle(
        self,
        cart_id: str,
        records: list[ArchivedFileRecord],
        download_dir: Path,
        layout: DownloadLayout,
        overrides: Mapping[int, Path] | None = None,
    ) -> bool:
        """Download and extract a ready cart, retrying interrupted streams."""
        timeout = self.timeout
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.cart.open_bundle(cart_id, timeout) as stream:
                    self.extract_bundle(
                        TarStreamExtractor(stream), records, download_dir, layout, overrides
                    )
                self.reporter.report_status(f"Successfully extracted files from cart {cart_id}")
                self.reporter.report_progress(100.0, "Extracting")
                return True
            except (RemoteUnavailable, tarfile.TarError) as exc:
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                self.reporter.report_warning(
                    f"Exception extracting cart {cart_id} on attempt {attempt}: {exc}"
                )
                self.sleep(self.retry_delay)
                timeout = increase_timeout(timeout)
            except ArchiveError as exc:
                last_error = exc
                break

        self.reporter.report_error(f"Failed to extract files from cart {cart_id}", last_error)
        return False

    def extract_bundle(
        self,
        extractor: BundleExtractor,
        records: list[ArchivedFileRecord],
        download_dir: Path,
        layout: DownloadLayout,
        overrides: Mapping[int, Path] | None = None,
    ) -> list[ArchivedFileRecord]:
        """Write every bundle entry to its target and return the matched records.

        Entries whose first path component is a numeric file ID are matched by
        ID; others by relative path. Unmatched entries are kept under a
        placeholder record owned by ``UnknownDataset``.
        """
        overrides = overrides or {}
        by_id = {record.file_id: record for record in records}
        by_path = {}
        for record in records:
            by_path.setdefault(record.relative_path_unix.lower(), record)

        total_bytes = sum(record.file_size_bytes for record in records)
        bytes_extracted = 0
        extracted: list[ArchivedFileRecord] = []

        for entry in extractor:
            if entry.is_directory or entry.reader is None:
                continue

            name = entry.name.replace("\\", "/").lstrip("/")
            record, target, known = self._reconcile(
                name, by_id, by_path, download_dir, layout, overrides
            )

            try:
                target = Path(self.long_paths.apply(target))
                target.parent.mkdir(parents=True, exist_ok=True)
                with atomic_write(target, mode="wb", overwrite=True) as f:
                    shutil.copyfileobj(entry.reader, f)
            except LocalIOError as exc:
                self.reporter.report_error(str(exc))
                continue
            except OSError as exc:
                raise LocalIOError(f"Cannot write {target}: {exc}") from exc

            if known:
                set_modification_time(target, record.submission_time_value)

            if record.file_size_bytes == 0:
                record = record.model_copy(update={"file_size_bytes": target.stat().st_size})

            self.downloaded_files.setdefault(target, record)
            extracted.append(record)

            bytes_extracted += record.file_size_bytes
            if total_bytes > 0:
                self.reporter.report_progress(
                    min(100.0, bytes_extracted * 100.0 / total_bytes), "Extracting"
                )

        return extracted

    def _reconcile(
        self,
        name: str,
        by_id: Mapping[int, ArchivedFileRecord],
        by_path: Mapping[str, ArchivedFileRecord],
        download_dir: Path,
        layout: DownloadLayout,
        overrides: Mapping[int, Path],
    ) -> tuple[ArchivedFileRecord, Path, bool]:
        entry_path = PurePosixPath(name)
        first, _, rest = name.partition("/")

        if rest and first.isdigit():
            record = by_id.get(int(first))
            if record is None:
                self.reporter.report_warning(
                    f"File ID '{first}' was not recognized; unable to validate the file "
                    f"or customize the output path: {name}"
                )
            else:
                if not record.filename.lower().startswith(entry_path.name.lower()):
                    self.reporter.report_warning(
                        f"Name conflict; filename in the bundle is {entry_path.name} "
                        f"but expected filename is {record.filename}"
                    )
                return record, self._target_for(record, download_dir, layout, overrides), True

        if layout == DownloadLayout.FLAT_NO_SUBDIRECTORIES:
            relative = entry_path.name
        else:
            if layout != DownloadLayout.SINGLE_DATASET:
                self.reporter.report_warning(
                    f"Due to the missing file ID the download layout cannot be honored: {name}"
                )
            relative = name

        record = by_path.get(name.lower())
        if record is not None:
            if record.file_id in overrides:
                return record, Path(overrides[record.file_id]), True
            return record, self._safe_target(download_dir, relative), True

        self.reporter.report_status(f"File path not recognized: {name}")
        parent = str(entry_path.parent)
        placeholder = ArchivedFileRecord(
            dataset=UNKNOWN_DATASET,
            filename=entry_path.name,
            sub_dir_path="" if parent == "." else parent,
        )
        return placeholder, self._safe_target(download_dir, relative), False

    @staticmethod
    def _target_for(
        record: ArchivedFileRecord,
        download_dir: Path,
        layout: DownloadLayout,
        overrides: Mapping[int, Path],
    ) -> Path:
        override = overrides.get(record.file_id)
        if override:
            return Path(override)
        return download_dir / construct_download_path(layout, record)

    @staticmethod
    def _safe_target(download_dir: Path, relative: str) -> Path:
        """Resolve an entry path, refusing anything outside the download directory."""
        root = download_dir.resolve()
        target = (download_dir / relative).resolve()
        try:
            target.relative_to(root)
        except ValueError as exc:
            raise ProtocolError(f"Refusing to extract {relative}: outside {download_dir}") from exc
        return target
