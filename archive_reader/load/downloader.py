"""Direct per-hash downloads from the archive file server."""

import gc
import hashlib
import math
import os
import shutil
import time
from collections.abc import Callable, Iterable
from datetime import datetime
from logging import Logger
from pathlib import Path

import httpx
from atomicwrites import atomic_write

from archive_reader.domain.errors import (
    ArchiveError,
    ConfigurationError,
    FileInUseError,
    LocalIOError,
    ProtocolError,
    RemoteUnavailable,
)
from archive_reader.domain.models import (
    ArchivedFileRecord,
    DownloadPlan,
    HashGroup,
    OverwriteMode,
    PlannedFile,
)
from archive_reader.domain.types import DownloadProgressHook
from archive_reader.ui.reporter import Reporter, SilentReporter

logger = Logger(__file__)

# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
WINDOWS_SHARING_ERRORS = (32, 33)


def increase_timeout(timeout_seconds: int) -> int:
    """Double short timeouts, grow longer ones by half."""
    if timeout_seconds < 8:
        return timeout_seconds * 2
    return math.ceil(timeout_seconds * 1.5)


def compute_sha1(file_path: Path, chunk_size: int = 64 * 1024) -> str:
    """Compute SHA-1 hash of a file.

    Args:
        file_path: Path to the file
        chunk_size: Size of chunks to read (default 64KB)

    Returns:
        Hexadecimal SHA-1 hash string
    """
    sha1_hash = hashlib.sha1()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha1_hash.update(chunk)
    return sha1_hash.hexdigest()


def set_modification_time(path: Path, when: datetime) -> None:
    """Set both access and modification time of ``path``."""
    timestamp = when.timestamp()
    os.utime(path, (timestamp, timestamp))


def stream_to_file(
    response: httpx.Response,
    dest: Path,
    progress_hook: DownloadProgressHook | None = None,
    chunk_size: int = 64 * 1024,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Write a streamed response to ``dest`` atomically; return bytes written.

    Raises:
        RemoteUnavailable: If ``clock()`` passes ``deadline`` before the body
            is complete; ``dest`` is left untouched
    """
    total = response.headers.get("Content-Length")
    total_bytes: int | None = int(total) if total is not None else None

    downloaded = 0
    if progress_hook:
        progress_hook(downloaded, total_bytes)

    dest.parent.mkdir(parents=True, exist_ok=True)
    with atomic_write(dest, mode="wb", overwrite=True) as f:
        for chunk in response.iter_bytes(chunk_size=chunk_size):
            f.write(chunk)
            downloaded += len(chunk)
            if progress_hook:
                progress_hook(downloaded, total_bytes)
            if deadline is not None and clock() > deadline:
                raise RemoteUnavailable(f"Download exceeded its time limit: {response.url}")

    return downloaded


def is_sharing_violation(exc: OSError) -> bool:
    """Return True if ``exc`` means another process holds the file open."""
    return getattr(exc, "winerror", None) in WINDOWS_SHARING_ERRORS


def check_response(response: httpx.Response, url: str) -> None:
    """Map HTTP failures onto the archive error taxonomy."""
    if response.status_code == 503:
        raise RemoteUnavailable(f"Archive unavailable (503): {url}", status_code=503)

    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise ProtocolError(f"Unexpected response {response.status_code} for {url}") from exc


class DirectDownloader:
    """Fetch one representative per content hash and copy it to its duplicates."""

    def __init__(
        self,
        file_server_url: str,
        overwrite_mode: OverwriteMode = OverwriteMode.IF_CHANGED,
        client: httpx.Client | None = None,
        reporter: Reporter | None = None,
        max_attempts: int = 5,
        timeout: int = 100,
        retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the downloader.

        Args:
            file_server_url: File server URL, e.g. https://files.my.emsl.pnl.gov
            overwrite_mode: What to do when a target file already exists
            client: Optional httpx client (connection reuse, test transports)
            reporter: Event sink; defaults to a silent reporter
            max_attempts: Attempts per file before giving up
            timeout: Starting timeout in seconds; grows after each failed attempt
            retry_delay: Seconds to wait between attempts
            sleep: Sleep function used between attempts
            clock: Monotonic clock; each attempt may run for at most ``timeout`` seconds
        """
        self.file_server_url = file_server_url.rstrip("/")
        self.overwrite_mode = overwrite_mode
        self.client = client or httpx.Client(follow_redirects=True)
        self.reporter = reporter or SilentReporter()
        self.max_attempts = max(1, max_attempts)
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.clock = clock
        self.downloaded_files: dict[Path, ArchivedFileRecord] = {}
        self.bytes_downloaded = 0

    def url_for(self, hash_type: str, file_hash: str) -> str:
        """Return the hash-addressed URL of a file."""
        return f"{self.file_server_url}/files/{hash_type}/{file_hash}"

    def is_download_required(
        self, record: ArchivedFileRecord, target: Path, report: bool = False
    ) -> bool:
        """Decide whether ``target`` has to be (re)downloaded.

        Args:
            record: Archived file the target should hold
            target: Local path
            report: Report the decision as a status message

        Returns:
            True when the file must be fetched
        """
        if not target.exists():
            self._report_decision(report, f"... downloading {target}")
            return True

        if self.overwrite_mode == OverwriteMode.ALWAYS:
            self._report_decision(report, f"... overwriting {target}")
            return True

        if self.overwrite_mode == OverwriteMode.NEVER:
            self._report_decision(report, f"... skipping (Overwrite disabled) {target}")
            return False

        if self.overwrite_mode != OverwriteMode.IF_CHANGED:
            raise ConfigurationError(f"Unrecognized overwrite mode: {self.overwrite_mode}")

        if not record.sha1_hash:
            self._report_decision(report, f"... overwriting (SHA-1 hash missing) {target}")
            return True

        try:
            unchanged = compute_sha1(target) == record.sha1_hash.lower()
        except OSError as exc:
            self.reporter.report_error(f"Could not hash {target}", exc)
            return True

        if unchanged:
            self._report_decision(report, f"... skipping (file unchanged) {target}")
            return False

        self._report_decision(report, f"... overwriting changed file {target}")
        return True

    def fetch(self, plan: DownloadPlan) -> set[int]:
        """Process every hash group of a plan, strictly one after another.

        Returns:
            File IDs that are now in place (fetched, copied or already current)
        """
        satisfied: set[int] = set()
        self.bytes_downloaded = 0

        with self.reporter.download_context():
            for group in plan.groups:
                satisfied |= self.fetch_group(group)
                self.bytes_downloaded += group.representative.record.file_size_bytes
                self._update_progress(plan.total_bytes)

        self.reporter.report_debug(f"Downloaded {self.bytes_downloaded / 1024 / 1024:.1f} MB total")
        return satisfied

    def fetch_group(self, group: HashGroup) -> set[int]:
        """Fetch the representative of one hash group and fan out to duplicates.

        Never raises for a failed file; the failure is reported and the file
        ID is left out of the result.

        Returns:
            File IDs of the group that are now in place
        """
        representative = group.representative
        target = representative.target
        satisfied: set[int] = set()

        required = self.is_download_required(representative.record, target, report=True)
        fetched = False
        in_use = False

        if required:
            try:
                self.download_file(self.url_for(group.hash_type, group.hash), target)
                fetched = True
            except FileInUseError as exc:
                in_use = True
                self.reporter.report_status(f"Failure downloading {target.name}: {exc}")
            except ArchiveError as exc:
                self.reporter.report_status(f"Failure downloading {target.name}: {exc}")

        if fetched:
            record = representative.record
            set_modification_time(
                target, record.file_last_write_time or record.submission_time_value
            )

        # A file held open elsewhere is left as is and not retried via a bundle
        if fetched or not required or (in_use and target.exists()):
            satisfied.add(representative.file_id)
            self.downloaded_files.setdefault(target, representative.record)

            if group.duplicates:
                satisfied |= self.copy_to_duplicates(target, group.duplicates)

        return satisfied

    def download_file(self, url: str, target: Path) -> None:
        """Download ``url`` to ``target``, retrying recoverable failures.

        A file-in-use failure triggers one garbage collection pass to release
        stale handles, then an immediate retry.

        Raises:
            RemoteUnavailable: If every attempt timed out or got a 503
            ProtocolError: On an unexpected HTTP status (not retried)
            FileInUseError: If the target stayed locked after the collection pass
            LocalIOError: On any other local write failure
        """
        timeout = self.timeout
        tried_gc = False
        last_error: ArchiveError | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                self._get(url, target, timeout)
                return
            except FileInUseError as exc:
                if tried_gc:
                    raise
                gc.collect()
                tried_gc = True
                last_error = exc
            except RemoteUnavailable as exc:
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                self.reporter.report_warning(
                    f"Exception downloading {target.name} on attempt {attempt}: {exc}"
                )
                self.sleep(self.retry_delay)
                timeout = increase_timeout(timeout)

        if last_error is None:
            raise LocalIOError(f"Could not download {url}")
        raise last_error

    def copy_to_duplicates(self, source: Path, duplicates: Iterable[PlannedFile]) -> set[int]:
        """Copy a fetched file to every other target sharing its hash."""
        copied: set[int] = set()
        for duplicate in duplicates:
            target = duplicate.target
            if target != source:
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with open(source, "rb") as src:
                        with atomic_write(target, mode="wb", overwrite=True) as f:
                            shutil.copyfileobj(src, f)
                except OSError as exc:
                    self.reporter.report_error(f"Could not copy {source} to {target}", exc)
                    continue

            set_modification_time(target, duplicate.record.submission_time_value)
            copied.add(duplicate.file_id)
            self.downloaded_files.setdefault(target, duplicate.record)

        return copied

    def residual(self, plan: DownloadPlan, satisfied: set[int]) -> list[PlannedFile]:
        """Return planned files that are still missing or stale."""
        remaining = []
        for group in plan.groups:
            for planned in [group.representative, *group.duplicates]:
                if planned.file_id in satisfied:
                    continue
                if self.is_download_required(planned.record, planned.target):
                    remaining.append(planned)
        return remaining

    def _get(self, url: str, target: Path, timeout: int) -> None:
        hook = None
        if self.reporter.in_download_context or self.reporter.silent:
            hook = self.reporter.create_download_progress_hook(target.name)

        deadline = self.clock() + timeout
        try:
            with self.client.stream("GET", url, timeout=timeout) as response:
                check_response(response, url)
                stream_to_file(response, target, hook, deadline=deadline, clock=self.clock)
        except httpx.TimeoutException as exc:
            raise RemoteUnavailable(f"Timed out after {timeout} seconds: {url}") from exc
        except httpx.TransportError as exc:
            raise RemoteUnavailable(f"Could not reach {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Request failed for {url}: {exc}") from exc
        except OSError as exc:
            if is_sharing_violation(exc):
                raise FileInUseError(f"Cannot write {target}: {exc}") from exc
            raise LocalIOError(f"Cannot write {target}: {exc}") from exc

    def _update_progress(self, total_bytes: int) -> None:
        percent = 100.0 if total_bytes <= 0 else min(100.0, self.bytes_downloaded * 100.0 / total_bytes)
        self.reporter.report_progress(percent, "Downloading")

    def _report_decision(self, report: bool, message: str) -> None:
        logger.debug(message)
        if report:
            self.reporter.report_status(message)
