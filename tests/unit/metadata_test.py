"""Unit tests for the metadata search client."""

import pytest
import requests

from archive_reader.domain.errors import ProtocolError, RemoteUnavailable
from archive_reader.domain.models import DataPackageID, DatasetID, DatasetName
from archive_reader.load.dataset_directory import StaticDatasetDirectory
from archive_reader.load.metadata import (
    QUERY_KEY_DATA_PACKAGE_ID,
    QUERY_KEY_DATASET_ID,
    MetadataClient,
    MetadataQuery,
    build_query,
    record_from_hit,
)

METADATA_URL = "https://metadata.example.org"


@pytest.fixture
def directory():
    return StaticDatasetDirectory({"QC_Shew_16_01": (1001, "Exploris01")})


@pytest.fixture
def dataset_query():
    return MetadataQuery(
        search_key=QUERY_KEY_DATASET_ID,
        owner_id=1001,
        dataset="QC_Shew_16_01",
        instrument="Exploris01",
    )


class TestBuildQuery:
    """Test translation of entity keys into searches."""

    def test_dataset_name_searches_by_id(self, directory):
        query = build_query(DatasetName(name="qc_shew_16_01"), directory)

        assert query.search_key == QUERY_KEY_DATASET_ID
        assert query.owner_id == 1001
        assert query.instrument == "Exploris01"

    def test_unknown_dataset_name(self, directory):
        query = build_query(DatasetName(name="missing"), directory)

        assert query.owner_id == 0

    def test_dataset_id_looks_up_name(self, directory):
        query = build_query(DatasetID(id=1001), directory)

        assert query.dataset == "QC_Shew_16_01"
        assert query.description == "Dataset ID 1001"

    def test_data_package(self, directory):
        query = build_query(DataPackageID(id=2945), directory)

        assert query.search_key == QUERY_KEY_DATA_PACKAGE_ID
        assert query.is_data_package
        assert query.dataset == ""
        assert query.description == "Data package ID 2945"


class TestRecordFromHit:
    """Test conversion of JSON hits into records."""

    def test_fields(self, make_hit, dataset_query):
        hit = make_hit("a.raw", "sub\\dir", file_id=84327, content=b"abc", transaction_id=9)

        record = record_from_hit(hit, dataset_query)

        assert record.filename == "a.raw"
        assert record.sub_dir_path == "sub/dir"
        assert record.file_id == 84327
        assert record.dataset == "QC_Shew_16_01"
        assert record.dataset_id == 1001
        assert record.instrument == "Exploris01"
        assert record.transaction_id == 9
        assert record.file_size_bytes == 3
        assert record.file_last_write_time is not None

    def test_data_package_owner(self, make_hit):
        query = MetadataQuery(
            search_key=QUERY_KEY_DATA_PACKAGE_ID, owner_id=2945, is_data_package=True
        )

        record = record_from_hit(make_hit("a.raw"), query)

        assert record.data_package_id == 2945
        assert record.dataset_id == 0

    def test_missing_name(self, make_hit, dataset_query):
        with pytest.raises(ProtocolError):
            record_from_hit(make_hit(""), dataset_query)

    def test_invalid_size(self, make_hit, dataset_query):
        with pytest.raises(ProtocolError):
            record_from_hit(make_hit("a.raw", size="large"), dataset_query)


class TestMetadataClient:
    """Test searches against a fake session."""

    def test_url(self, dataset_query):
        client = MetadataClient(METADATA_URL + "/")

        assert (
            client.url_for(dataset_query)
            == f"{METADATA_URL}/fileinfo/files_for_keyvalue/omics.dms.dataset_id/1001"
        )

    def test_search_groups_versions_by_path(self, fake_session, make_hit, dataset_query):
        session = fake_session(
            {
                "/1001": [
                    make_hit("a.raw", file_id=1, content=b"v1", transaction_id=1),
                    make_hit("a.raw", file_id=2, content=b"v2", transaction_id=2),
                    make_hit("b.raw", "sub", file_id=3, content=b"b"),
                ]
            }
        )

        result = MetadataClient(METADATA_URL, session=session).search(dataset_query)

        assert sorted(result) == ["a.raw", "sub/b.raw"]
        assert [r.file_id for r in result["a.raw"]] == [1, 2]
        assert session.calls == [f"{METADATA_URL}/fileinfo/files_for_keyvalue/omics.dms.dataset_id/1001"]

    def test_duplicate_hash_is_dropped(self, fake_session, make_hit, dataset_query):
        messages = []
        session = fake_session(
            {
                "/1001": [
                    make_hit("a.raw", file_id=1, content=b"same"),
                    make_hit("a.raw", file_id=2, content=b"same"),
                ]
            }
        )

        result = MetadataClient(METADATA_URL, session=session, on_debug=messages.append).search(
            dataset_query
        )

        assert [r.file_id for r in result["a.raw"]] == [1]
        assert len(messages) == 1

    def test_hash_none_is_dropped_silently(self, fake_session, make_hit, dataset_query):
        messages = []
        session = fake_session(
            {
                "/1001": [
                    make_hit("a.raw", file_id=1, hashsum="none"),
                    make_hit("a.raw", file_id=2, hashsum="none"),
                ]
            }
        )

        result = MetadataClient(METADATA_URL, session=session, on_debug=messages.append).search(
            dataset_query
        )

        assert len(result["a.raw"]) == 1
        assert messages == []

    def test_many_duplicates_are_summarized(self, fake_session, make_hit, dataset_query):
        messages = []
        hits = []
        for index in range(8):
            hits.append(make_hit(f"f{index}.raw", file_id=index * 2, content=b"x"))
            hits.append(make_hit(f"f{index}.raw", file_id=index * 2 + 1, content=b"x"))
        session = fake_session({"/1001": hits})

        MetadataClient(METADATA_URL, session=session, on_debug=messages.append).search(
            dataset_query
        )

        assert len(messages) == 6
        assert "8 files" in messages[-1]

    def test_unavailable_server(self, fake_session, json_response, dataset_query):
        session = fake_session({"/1001": json_response([], status_code=503)})

        with pytest.raises(RemoteUnavailable) as exc_info:
            MetadataClient(METADATA_URL, session=session).fetch_hits(dataset_query)

        assert exc_info.value.status_code == 503

    def test_unexpected_status(self, fake_session, json_response, dataset_query):
        session = fake_session({"/1001": json_response([], status_code=500)})

        with pytest.raises(ProtocolError):
            MetadataClient(METADATA_URL, session=session).fetch_hits(dataset_query)

    @pytest.mark.parametrize("error", [requests.Timeout("slow"), requests.ConnectionError("down")])
    def test_network_failures(self, fake_session, dataset_query, error):
        session = fake_session({"/1001": error})

        with pytest.raises(RemoteUnavailable):
            MetadataClient(METADATA_URL, session=session).fetch_hits(dataset_query)

    @pytest.mark.parametrize("body", [b"<html>oops</html>", b'{"error": "no"}'])
    def test_malformed_payload(self, fake_session, dataset_query, body):
        session = fake_session({"/1001": body})

        with pytest.raises(ProtocolError):
            MetadataClient(METADATA_URL, session=session).fetch_hits(dataset_query)
