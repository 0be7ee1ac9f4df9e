"""Configure tests."""

import hashlib
import io
import tarfile

import httpx
import orjson
import pytest
import requests

from archive_reader.domain.models import ArchivedFileRecord

METADATA_URL = "https://metadata.example.org"
FILES_URL = "https://files.example.org"
CART_URL = "https://cart.example.org"


def sha1_of(content: bytes) -> str:
    return hashlib.sha1(content).hexdigest()


def make_response(payload, status_code: int = 200) -> requests.Response:
    """Build a requests.Response carrying a JSON (or raw bytes) body."""
    response = requests.Response()
    response.status_code = status_code
    response._content = payload if isinstance(payload, bytes) else orjson.dumps(payload)
    return response


class FakeSession:
    """requests.Session stand-in serving canned metadata responses by URL suffix.

    Route values may be a JSON payload, a prepared Response or an exception
    to raise. Unknown URLs get an empty listing.
    """

    def __init__(self, routes: dict | None = None):
        self.routes = routes or {}
        self.calls: list[str] = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        for suffix, payload in self.routes.items():
            if url.endswith(suffix):
                if isinstance(payload, Exception):
                    raise payload
                if isinstance(payload, requests.Response):
                    return payload
                return make_response(payload)
        return make_response([])


class FakeFileServer:
    """Hash-addressed file server behind an httpx.MockTransport."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.failures: dict[str, list[int]] = {}
        self.requests: list[str] = []

    def add(self, content: bytes) -> str:
        file_hash = sha1_of(content)
        self.files[file_hash] = content
        return file_hash

    def fail(self, content: bytes, *status_codes: int) -> None:
        """Answer the next requests for ``content`` with the given statuses."""
        self.failures[sha1_of(content)] = list(status_codes)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        file_hash = request.url.path.rsplit("/", 1)[-1]

        pending = self.failures.get(file_hash)
        if pending:
            return httpx.Response(pending.pop(0))

        if file_hash in self.files:
            return httpx.Response(200, content=self.files[file_hash])
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


def build_tar(members: dict[str, bytes]) -> bytes:
    """Create an uncompressed tar holding the given members."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, content in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            tar.addfile(info, fileobj=io.BytesIO(content))
    return buffer.getvalue()


@pytest.fixture
def make_record():
    """Factory for archived file records whose hash matches ``content``."""

    def _make(
        filename: str,
        sub_dir_path: str = "",
        file_id: int = 1,
        content: bytes = b"",
        dataset: str = "QC_Shew_16_01",
        dataset_id: int = 1001,
        transaction_id: int = 1,
        submission_time: str = "2024-01-15T10:30:00",
        **kwargs,
    ) -> ArchivedFileRecord:
        return ArchivedFileRecord(
            dataset=dataset,
            filename=filename,
            sub_dir_path=sub_dir_path,
            file_id=file_id,
            dataset_id=dataset_id,
            hash=sha1_of(content),
            hash_type="sha1",
            transaction_id=transaction_id,
            submission_time=submission_time,
            file_size_bytes=len(content),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_hit():
    """Factory for metadata search hits as returned by the archive."""

    def _make(
        name: str,
        subdir: str = "",
        file_id: int = 1,
        content: bytes = b"",
        transaction_id: int = 1,
        created: str = "2024-01-15T10:30:00",
        **extra,
    ) -> dict:
        hit = {
            "name": name,
            "subdir": subdir,
            "_id": file_id,
            "hashsum": sha1_of(content),
            "hashtype": "sha1",
            "size": len(content),
            "transaction_id": transaction_id,
            "created": created,
            "ctime": "2024-01-15T10:00:00",
            "mtime": "2024-01-15T10:00:00",
        }
        hit.update(extra)
        return hit

    return _make


@pytest.fixture
def file_server():
    return FakeFileServer()


@pytest.fixture
def no_sleep():
    """Sleep replacement recording the requested delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def fake_session():
    """Factory for metadata sessions; call with a routes dict."""
    return FakeSession


@pytest.fixture
def tar_bytes():
    """Factory building tar archives in memory."""
    return build_tar


@pytest.fixture
def json_response():
    """Factory for requests.Response objects; see make_response."""
    return make_response
