"""End-to-end tests: metadata search, planning, direct download and cart fallback."""

import httpx
import pytest

from archive_reader import ArchiveFiles, DatasetName, Settings, SilentReporter
from archive_reader.load.bundle import CART_STATUS_HEADER
from archive_reader.load.dataset_directory import StaticDatasetDirectory

METADATA_URL = "https://metadata.example.org"
FILES_URL = "https://files.example.org"
CART_URL = "https://cart.example.org"

DATASET = "QC_Shew_16_01"


class FakeArchive:
    """File server plus cart server behind one httpx transport."""

    def __init__(self, file_server, bundle: bytes = b""):
        self.file_server = file_server
        self.bundle = bundle
        self.cart_requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "files.example.org":
            return self.file_server.handler(request)

        self.cart_requests.append(request.method)
        if request.method == "POST":
            return httpx.Response(200)
        if request.method == "HEAD":
            return httpx.Response(200, headers={CART_STATUS_HEADER: "available"})
        return httpx.Response(200, content=self.bundle)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def listing(make_hit):
    return {
        "/omics.dms.dataset_id/1001": [
            make_hit("a.raw", file_id=10, content=b"alpha"),
            make_hit("copy.raw", "sub", file_id=11, content=b"alpha"),
            make_hit("b.txt", "sub", file_id=13, content=b"beta-old", transaction_id=1),
            make_hit("b.txt", "sub", file_id=14, content=b"beta-new", transaction_id=2),
            make_hit("lost.raw", file_id=12, content=b"lost"),
        ]
    }


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return Settings(
        metadata_server_url=METADATA_URL,
        file_server_url=FILES_URL,
        cart_server_url=CART_URL,
        download_dir=tmp_path / "downloads",
        retry_delay=0,
        cart_fallback=True,
    )


@pytest.fixture
def make_archive(settings, listing, fake_session):
    def _make(fake_archive: FakeArchive, config: Settings | None = None) -> ArchiveFiles:
        archive = ArchiveFiles.from_settings(
            config or settings,
            SilentReporter(),
            directory=StaticDatasetDirectory({DATASET: (1001, "Exploris01")}),
            session=fake_session(listing),
            client=fake_archive.client(),
        )
        archive.add_entity(DatasetName(name=DATASET))
        return archive

    return _make


def queue_all(archive: ArchiveFiles, exclude: str = "") -> None:
    for match in archive.find_files("*"):
        if match.record.filename == exclude:
            continue
        archive.add_to_download_queue(match.file_id, match.record)


class TestFullPipeline:
    """Test a download from listing to files on disk."""

    def test_download_everything_available(self, make_archive, file_server, settings):
        for content in (b"alpha", b"beta-new"):
            file_server.add(content)
        archive = make_archive(FakeArchive(file_server))
        queue_all(archive, exclude="lost.raw")

        assert archive.process_download_queue()

        root = settings.download_dir
        assert (root / "a.raw").read_bytes() == b"alpha"
        assert (root / "sub" / "copy.raw").read_bytes() == b"alpha"
        assert (root / "sub" / "b.txt").read_bytes() == b"beta-new"
        assert len(file_server.requests) == 2
        assert set(archive.downloaded_files) == {
            root / "a.raw",
            root / "sub" / "copy.raw",
            root / "sub" / "b.txt",
        }

    def test_second_run_makes_no_requests(self, make_archive, file_server):
        for content in (b"alpha", b"beta-new"):
            file_server.add(content)
        archive = make_archive(FakeArchive(file_server))

        for _ in range(2):
            queue_all(archive, exclude="lost.raw")
            assert archive.process_download_queue()

        assert len(file_server.requests) == 2


class TestCartFallback:
    """Test retrieving files the file server cannot deliver."""

    def test_missing_file_comes_from_cart(self, make_archive, file_server, settings, tar_bytes):
        for content in (b"alpha", b"beta-new"):
            file_server.add(content)
        fake_archive = FakeArchive(file_server, bundle=tar_bytes({"12/lost.raw": b"lost"}))
        archive = make_archive(fake_archive)
        queue_all(archive)

        assert archive.process_download_queue()

        assert (settings.download_dir / "lost.raw").read_bytes() == b"lost"
        assert fake_archive.cart_requests == ["POST", "HEAD", "GET"]
        assert settings.download_dir / "lost.raw" in archive.downloaded_files

    def test_without_cart_the_batch_fails(self, make_archive, file_server, settings):
        for content in (b"alpha", b"beta-new"):
            file_server.add(content)
        config = settings.model_copy(update={"cart_fallback": False})
        fake_archive = FakeArchive(file_server)
        archive = make_archive(fake_archive, config)
        queue_all(archive)

        assert not archive.process_download_queue()

        assert fake_archive.cart_requests == []
        assert "could not be downloaded" in archive.reporter.error_message
        assert (settings.download_dir / "a.raw").exists()
