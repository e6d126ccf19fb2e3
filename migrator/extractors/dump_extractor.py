"""Legacy dump extractor for JSON and CSV table exports."""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models.migration import ConfigurationError
from ..models.record import SourceIdentity, SourceTable

logger = logging.getLogger(__name__)

NULL_MARKERS = ("", "NULL", "\\N")


class DumpExtractor:
    """
    Reads table rows from a legacy MySQL export.

    Supports:
    - A single JSON file holding ``{"<table>": [rows...]}``
    - A directory of ``<table>.json`` or ``<table>.csv`` files
    """

    def __init__(self, path: Union[str, Path], encoding: str = "utf-8"):
        """
        Initialize the extractor.

        Args:
            path: Dump file or export directory

        Raises:
            ConfigurationError: if the path does not exist
        """
        self.path = Path(path)
        self.encoding = encoding
        self._tables: Optional[Dict[str, List[Dict[str, Any]]]] = None
        self.errors: List[Dict[str, Any]] = []

        if not self.path.exists():
            raise ConfigurationError(f"Dump file not found: {self.path}")

    def extract_table(self, table: str) -> List[Dict[str, Any]]:
        """Return the raw rows of one table (empty if the table is absent)."""
        if self.path.is_dir():
            return self._read_table_file(table)

        if self._tables is None:
            self._tables = self._read_dump_file()
        return list(self._tables.get(table, []))

    def extract_buyers(self) -> List[SourceIdentity]:
        return self._extract_identities(SourceTable.BUYER)

    def extract_stylists(self) -> List[SourceIdentity]:
        return self._extract_identities(SourceTable.STYLIST)

    def _extract_identities(self, table: SourceTable) -> List[SourceIdentity]:
        identities = []
        for row_num, row in enumerate(self.extract_table(table.value), start=1):
            if not row.get("id"):
                self.errors.append({"table": table.value, "row": row_num, "error": "Row has no id"})
                continue
            identities.append(SourceIdentity.from_dict(row, source_table=table))

        logger.info(f"Extracted {len(identities)} {table.value} records from {self.path}")
        return identities

    def _read_dump_file(self) -> Dict[str, List[Dict[str, Any]]]:
        with open(self.path, "r", encoding=self.encoding) as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ConfigurationError(f"Unexpected dump structure in {self.path}: expected an object of tables")
        return {name: rows for name, rows in data.items() if isinstance(rows, list)}

    def _read_table_file(self, table: str) -> List[Dict[str, Any]]:
        json_path = self.path / f"{table}.json"
        csv_path = self.path / f"{table}.csv"

        if json_path.exists():
            with open(json_path, "r", encoding=self.encoding) as f:
                data = json.load(f)
            return data if isinstance(data, list) else data.get("rows", [])

        if csv_path.exists():
            with open(csv_path, "r", encoding=self.encoding, newline="") as f:
                reader = csv.DictReader(f)
                return [
                    {k: (None if v in NULL_MARKERS else v) for k, v in row.items()}
                    for row in reader
                ]

        logger.warning(f"No export found for table {table} in {self.path}")
        return []
