"""Dataset name <-> ID lookups backed by the DMS dataset export table."""

import sqlite3
from collections.abc import Mapping
from logging import Logger
from pathlib import Path
from typing import Protocol

logger = Logger(__file__)


class DatasetDirectory(Protocol):
    """Resolve dataset names, IDs and instruments."""

    def dataset_id_for(self, name: str) -> tuple[int, str]:
        """Return (dataset ID, instrument); (0, "") when the name is unknown."""
        ...

    def dataset_name_for(self, dataset_id: int) -> tuple[str, str]:
        """Return (dataset name, instrument); ("", "") when the ID is unknown."""
        ...


class SqliteDatasetDirectory:
    """Lookups against a SQLite copy of the ``dataset_export`` table.

    The table needs ``id``, ``dataset`` and ``instrument`` columns.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _query(self, sql: str, value) -> sqlite3.Row | None:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            return conn.execute(sql, (value,)).fetchone()
        finally:
            conn.close()

    def dataset_id_for(self, name: str) -> tuple[int, str]:
        row = self._query("SELECT id, instrument FROM dataset_export WHERE dataset = ?", name)
        if row is None:
            logger.debug(f"Dataset {name} not found in {self.path}")
            return 0, ""
        return int(row["id"]), row["instrument"] or ""

    def dataset_name_for(self, dataset_id: int) -> tuple[str, str]:
        row = self._query("SELECT dataset, instrument FROM dataset_export WHERE id = ?", dataset_id)
        if row is None:
            logger.debug(f"Dataset ID {dataset_id} not found in {self.path}")
            return "", ""
        return row["dataset"] or "", row["instrument"] or ""


class StaticDatasetDirectory:
    """In-memory directory, used when no database is configured and in tests."""

    def __init__(self, datasets: Mapping[str, tuple[int, str]] | None = None):
        """Initialize the directory.

        Args:
            datasets: Dataset name -> (dataset ID, instrument)
        """
        self._by_name = {name.lower(): entry for name, entry in (datasets or {}).items()}
        self._by_id = {
            dataset_id: (name, instrument)
            for name, (dataset_id, instrument) in (datasets or {}).items()
        }

    def dataset_id_for(self, name: str) -> tuple[int, str]:
        return self._by_name.get(name.lower(), (0, ""))

    def dataset_name_for(self, dataset_id: int) -> tuple[str, str]:
        return self._by_id.get(dataset_id, ("", ""))
