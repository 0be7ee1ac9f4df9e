"""Integration tests for metadata resolution and caching."""

from datetime import datetime, timedelta

import pytest
import requests

from archive_reader.domain.errors import ConfigurationError, RemoteUnavailable
from archive_reader.domain.models import DataPackageID, DatasetID, DatasetName
from archive_reader.domain.services import created_within
from archive_reader.load.dataset_directory import StaticDatasetDirectory
from archive_reader.load.metadata import MetadataClient
from archive_reader.orchestrators import MetadataResolver
from archive_reader.ui import SilentReporter

METADATA_URL = "https://metadata.example.org"


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 3, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


@pytest.fixture
def listing(make_hit):
    return {
        "/omics.dms.dataset_id/1001": [
            make_hit("a.raw", file_id=1, content=b"a"),
            make_hit("b.raw", "sub", file_id=2, content=b"b"),
            make_hit("c.raw", "sub", file_id=3, content=b"c-old", transaction_id=5),
            make_hit("c.raw", "sub", file_id=4, content=b"c-new", transaction_id=9),
        ],
        "/omics.dms.dataset_id/1002": [make_hit("z.raw", file_id=20, content=b"z")],
        "/omics.dms.datapackage_id/2945": [make_hit("pkg.txt", file_id=30, content=b"p")],
    }


@pytest.fixture
def make_resolver(fake_session, listing):
    def _make(**kwargs):
        session = fake_session(listing)
        directory = StaticDatasetDirectory(
            {"QC_Shew_16_01": (1001, "Exploris01"), "QC_Shew_16_02": (1002, "Lumos02")}
        )
        resolver = MetadataResolver(
            MetadataClient(METADATA_URL, session=session),
            directory=directory,
            reporter=SilentReporter(),
            **kwargs,
        )
        return resolver, session

    return _make


def ids(records):
    return [record.file_id for record in records]


class TestResolve:
    """Test resolving entities into file listings."""

    def test_newest_revision_only(self, make_resolver):
        resolver, _ = make_resolver()

        records = resolver.resolve({DatasetID(id=1001): {""}})

        assert ids(records) == [1, 2, 4]

    def test_all_revisions(self, make_resolver):
        resolver, _ = make_resolver(include_all_revisions=True)

        records = resolver.resolve({DatasetID(id=1001): {""}})

        assert ids(records) == [1, 2, 3, 4]

    def test_dataset_name_uses_directory(self, make_resolver):
        resolver, session = make_resolver()

        records = resolver.resolve({DatasetName(name="QC_Shew_16_01"): {""}})

        assert ids(records) == [1, 2, 4]
        assert records[0].instrument == "Exploris01"
        assert session.calls[0].endswith("/omics.dms.dataset_id/1001")

    def test_subdirectory_filter(self, make_resolver):
        resolver, _ = make_resolver()

        records = resolver.resolve({DatasetID(id=1001): {"sub"}})

        assert ids(records) == [2, 4]

    def test_no_recursion(self, make_resolver):
        resolver, _ = make_resolver()

        assert ids(resolver.resolve({DatasetID(id=1001): {""}}, recurse=False)) == [1]

    def test_several_datasets(self, make_resolver):
        resolver, session = make_resolver()

        records = resolver.resolve({DatasetID(id=1001): {""}, DatasetID(id=1002): {""}})

        assert ids(records) == [1, 20, 2, 4]
        assert len(session.calls) == 2

    def test_data_package(self, make_resolver):
        resolver, _ = make_resolver()

        records = resolver.resolve({DataPackageID(id=2945): {""}})

        assert ids(records) == [30]
        assert records[0].data_package_id == 2945

    def test_instrument_filter(self, make_resolver):
        resolver, _ = make_resolver()

        filters = {DatasetName(name="QC_Shew_16_01"): {""}, DatasetName(name="QC_Shew_16_02"): {""}}

        assert ids(resolver.resolve(filters, instrument="lumos02")) == [20]

    def test_mixed_keys_fail_before_any_query(self, make_resolver):
        resolver, session = make_resolver()

        with pytest.raises(ConfigurationError):
            resolver.resolve({DatasetID(id=1001): {""}, DatasetName(name="QC_Shew_16_02"): {""}})

        assert session.calls == []

    def test_unknown_dataset_is_not_queried(self, make_resolver):
        resolver, session = make_resolver()

        records = resolver.resolve({DatasetName(name="Missing"): {""}})

        assert records == []
        assert session.calls == []
        assert len(resolver.reporter.warning_messages) == 1

    def test_exclusion_window(self, make_resolver):
        resolver, _ = make_resolver(
            exclusion=created_within(datetime(2024, 1, 1), datetime(2024, 1, 31))
        )

        assert resolver.resolve({DatasetID(id=1001): {""}}) == []

    def test_offline_archive(self, fake_session):
        session = fake_session({"/1001": requests.ConnectionError("down")})
        resolver = MetadataResolver(
            MetadataClient(METADATA_URL, session=session), reporter=SilentReporter()
        )

        with pytest.raises(RemoteUnavailable):
            resolver.resolve({DatasetID(id=1001): {""}})

        assert resolver.reporter.offline

    def test_no_entities(self, make_resolver):
        resolver, session = make_resolver()

        assert resolver.resolve({}) == []
        assert session.calls == []


class TestCache:
    """Test the cached listing."""

    def test_second_read_uses_cache(self, make_resolver):
        resolver, session = make_resolver()
        resolver.add_entity(DatasetID(id=1001))

        first = resolver.files()
        second = resolver.files()

        assert first == second
        assert len(session.calls) == 1

    def test_tracking_changes_mark_cache_stale(self, make_resolver):
        resolver, session = make_resolver()
        resolver.add_entity(DatasetID(id=1001))
        resolver.files()

        resolver.add_entity(DatasetID(id=1002))
        records = resolver.files()

        assert 20 in ids(records)
        assert len(session.calls) == 3

    def test_cache_expires(self, make_resolver):
        clock = FakeClock()
        resolver, session = make_resolver(clock=clock)
        resolver.add_entity(DatasetID(id=1001))

        resolver.files()
        clock.advance(4)
        resolver.files()
        clock.advance(2)
        resolver.files()

        assert len(session.calls) == 2

    def test_different_arguments_refresh(self, make_resolver):
        resolver, session = make_resolver()
        resolver.add_entity(DatasetID(id=1001))

        resolver.files()
        assert ids(resolver.files(recurse=False)) == [1]
        assert len(session.calls) == 2

    def test_entity_bookkeeping(self, make_resolver):
        resolver, _ = make_resolver()
        resolver.add_entity(DatasetID(id=1001), "sub")
        resolver.add_entity(DatasetID(id=1001), "other")

        assert resolver.contains(DatasetID(id=1001))
        assert resolver.entities == {DatasetID(id=1001): {"sub", "other"}}

        resolver.remove_entity(DatasetID(id=1001))
        assert not resolver.contains(DatasetID(id=1001))
        assert resolver.is_stale
