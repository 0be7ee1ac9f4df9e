"""Unit tests for download planning."""

from pathlib import Path

import pytest

from archive_reader.domain.models import DownloadLayout
from archive_reader.domain.paths import LONG_PATH_PREFIX, LongPathPolicy
from archive_reader.domain.planner import DownloadPlanner


@pytest.fixture
def planner():
    return DownloadPlanner(long_paths=LongPathPolicy(enabled=False))


class TestEffectiveLayout:
    """Test automatic layout escalation."""

    def test_colliding_paths_across_datasets_escalate(self, make_record):
        files = {
            1: make_record("x.raw", file_id=1, dataset="A", dataset_id=10),
            2: make_record("X.RAW", file_id=2, dataset="B", dataset_id=11),
        }

        layout = DownloadPlanner.effective_layout(files, DownloadLayout.SINGLE_DATASET)

        assert layout == DownloadLayout.DATASET_NAME_AND_SUBDIRECTORIES

    def test_distinct_paths_keep_layout(self, make_record):
        files = {
            1: make_record("x.raw", file_id=1, dataset="A", dataset_id=10),
            2: make_record("y.raw", file_id=2, dataset="B", dataset_id=11),
        }

        assert (
            DownloadPlanner.effective_layout(files, DownloadLayout.SINGLE_DATASET)
            == DownloadLayout.SINGLE_DATASET
        )

    def test_single_dataset_never_escalates(self, make_record):
        files = {
            1: make_record("x.raw", file_id=1, transaction_id=1, content=b"1"),
            2: make_record("x.raw", file_id=2, transaction_id=2, content=b"2"),
        }

        assert (
            DownloadPlanner.effective_layout(files, DownloadLayout.SINGLE_DATASET)
            == DownloadLayout.SINGLE_DATASET
        )

    def test_other_layouts_are_untouched(self, make_record):
        files = {
            1: make_record("x.raw", file_id=1, dataset="A", dataset_id=10),
            2: make_record("x.raw", file_id=2, dataset="B", dataset_id=11),
        }

        assert (
            DownloadPlanner.effective_layout(files, DownloadLayout.FLAT_NO_SUBDIRECTORIES)
            == DownloadLayout.FLAT_NO_SUBDIRECTORIES
        )


class TestPlan:
    """Test hash grouping and target assignment."""

    def test_duplicates_share_one_group(self, planner, make_record, tmp_path):
        files = {
            3: make_record("c.raw", "sub3", file_id=3, content=b"same"),
            1: make_record("a.raw", "sub1", file_id=1, content=b"same"),
            2: make_record("b.raw", "sub2", file_id=2, content=b"same"),
        }

        plan = planner.plan(files, tmp_path)

        assert len(plan.groups) == 1
        group = plan.groups[0]
        assert group.representative.file_id == 1
        assert [d.file_id for d in group.duplicates] == [2, 3]
        assert plan.total_bytes == len(b"same")

    def test_targets_follow_layout(self, planner, make_record, tmp_path):
        files = {1: make_record("a.raw", "sub", file_id=1, content=b"a")}

        plan = planner.plan(files, tmp_path, DownloadLayout.DATASET_NAME_AND_SUBDIRECTORIES)

        assert plan.target_for(1) == tmp_path / "QC_Shew_16_01" / "sub" / "a.raw"
        assert not plan.escalated

    def test_escalation_is_reported(self, make_record, tmp_path):
        messages = []
        planner = DownloadPlanner(long_paths=LongPathPolicy(enabled=False), on_status=messages.append)
        files = {
            1: make_record("x.raw", file_id=1, dataset="A", dataset_id=10, content=b"a"),
            2: make_record("x.raw", file_id=2, dataset="B", dataset_id=11, content=b"b"),
        }

        plan = planner.plan(files, tmp_path)

        assert plan.escalated
        assert plan.layout == DownloadLayout.DATASET_NAME_AND_SUBDIRECTORIES
        assert plan.target_for(1) == tmp_path / "A" / "x.raw"
        assert plan.target_for(2) == tmp_path / "B" / "x.raw"
        assert len(messages) == 1

    def test_revisions_are_disambiguated(self, make_record, tmp_path):
        planner = DownloadPlanner(include_all_revisions=True, long_paths=LongPathPolicy(enabled=False))
        files = {
            5: make_record("x.raw", file_id=5, transaction_id=5, content=b"old"),
            9: make_record("x.raw", file_id=9, transaction_id=9, content=b"new"),
        }

        plan = planner.plan(files, tmp_path)

        assert plan.target_for(5) == tmp_path / "x.raw"
        assert plan.target_for(9) == tmp_path / "x_FileID_9.raw"

    def test_revisions_are_disambiguated_on_long_paths(self, make_record, tmp_path):
        planner = DownloadPlanner(
            include_all_revisions=True, long_paths=LongPathPolicy(enabled=True, max_length=10)
        )
        files = {
            5: make_record("x.raw", file_id=5, transaction_id=5, content=b"old"),
            9: make_record("x.raw", file_id=9, transaction_id=9, content=b"new"),
        }

        plan = planner.plan(files, tmp_path)

        assert plan.target_for(5) == Path(LONG_PATH_PREFIX + str(tmp_path / "x.raw"))
        assert plan.target_for(9) == Path(LONG_PATH_PREFIX + str(tmp_path / "x_FileID_9.raw"))

    def test_collisions_kept_without_all_revisions(self, planner, make_record, tmp_path):
        files = {
            5: make_record("x.raw", file_id=5, transaction_id=5, content=b"old"),
            9: make_record("x.raw", file_id=9, transaction_id=9, content=b"new"),
        }

        plan = planner.plan(files, tmp_path)

        assert plan.target_for(5) == plan.target_for(9) == tmp_path / "x.raw"

    def test_override_wins_over_layout(self, planner, make_record, tmp_path):
        files = {1: make_record("a.raw", "sub", file_id=1, content=b"a")}
        override = tmp_path / "elsewhere" / "renamed.raw"

        plan = planner.plan(files, tmp_path, overrides={1: override})

        assert plan.target_for(1) == override

    def test_unbuildable_target_is_skipped(self, make_record):
        errors = []
        planner = DownloadPlanner(
            long_paths=LongPathPolicy(enabled=True, max_length=20), on_error=errors.append
        )
        files = {
            1: make_record("a_very_long_file_name.raw", file_id=1, content=b"a"),
            2: make_record("b.raw", file_id=2, content=b"b"),
        }

        plan = planner.plan(files, Path("rel"))

        assert plan.skipped_file_ids == [1]
        assert plan.target_for(2) == Path("rel/b.raw")
        assert len(errors) == 1
