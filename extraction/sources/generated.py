"""
Row source over an internally generated extract file.

Layout of a generated file:

    Expected Rows: 25
    <data start>
    id,name,createTime
    ID,STRING,DATETIME
    ...data rows...
    <data end>
    Stats:
    ...free-form run statistics...

The writer for this format lives in extraction.writer.
"""

import csv
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Union
import logging

from core.exceptions import GeneratedFileFormatError, SourceReadError, UnknownColumnTypeError
from extraction.columns import ColumnDefinition
from extraction.sources.base import TextRowSource

logger = logging.getLogger(__name__)

EXPECTED_ROWS_LABEL = "Expected Rows"
DATA_START = "<data start>"
DATA_END = "<data end>"


class GeneratedFileRowSource(TextRowSource):
    """
    Read rows back from a generated extract file.

    Generated files are never expected to be malformed, so a row with the
    wrong number of fields means the file was truncated: the read stops
    there and everything after it is ignored.
    """

    def __init__(self, name: str, stream: TextIO, owns_stream: bool = False):
        super().__init__(name)
        self._stream = stream
        self._owns_stream = owns_stream
        self._reader = csv.reader(stream)
        self._row: Optional[List[str]] = None
        self._row_ordinal = 0
        self._finished = False

        try:
            self._expected_rows = self._read_expected_rows()
            self._read_record("data start marker")
            names = self._read_record("column names")
            types = self._read_record("column types")
            self._width = len(names)
            self._columns: List[ColumnDefinition] = []
            self._index: Dict[str, int] = {}
            for position, column_name in enumerate(names):
                if not column_name:
                    continue
                type_tag = types[position] if position < len(types) else ""
                self._columns.append(ColumnDefinition.from_tag(type_tag, column_name))
                self._index[column_name] = position
        except (GeneratedFileFormatError, UnknownColumnTypeError):
            self.close()
            raise

        self._by_name = {c.name: c for c in self._columns}

    @classmethod
    def from_path(cls, path: Union[str, Path], name: Optional[str] = None) -> "GeneratedFileRowSource":
        """Open a generated file; the source closes it."""
        path = Path(path)
        try:
            stream = open(path, "r", encoding="utf-8-sig", newline="")
        except OSError as e:
            raise SourceReadError(
                f"Cannot open {path}",
                context={"file_path": str(path)},
                original_exception=e
            )
        return cls(name or path.stem, stream, owns_stream=True)

    def _read_record(self, what: str) -> List[str]:
        try:
            return next(self._reader)
        except StopIteration:
            raise GeneratedFileFormatError(
                f"Generated file ended before the {what} line",
                context={"source_name": self.name}
            )
        except csv.Error as e:
            raise GeneratedFileFormatError(
                f"Cannot read the {what} line",
                context={"source_name": self.name},
                original_exception=e
            )

    def _read_expected_rows(self) -> int:
        record = self._read_record("expected rows")
        line = ",".join(record)
        _, separator, count = line.partition(":")
        if not separator:
            raise GeneratedFileFormatError(
                f"Expected '{EXPECTED_ROWS_LABEL}: <count>' on the first line, got [{line}]",
                context={"source_name": self.name}
            )
        try:
            return int(count.strip())
        except ValueError as e:
            raise GeneratedFileFormatError(
                f"Expected row count is not a number: [{count.strip()}]",
                context={"source_name": self.name},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # RowSource contract
    # ------------------------------------------------------------------

    @property
    def columns(self) -> List[ColumnDefinition]:
        return self._columns

    @property
    def expected_rows(self) -> int:
        return self._expected_rows

    @property
    def current_row_ordinal(self) -> int:
        return self._row_ordinal

    def next(self) -> bool:
        if self.closed or self._finished:
            return False

        try:
            row = next(self._reader)
        except StopIteration:
            logger.error(
                f"{self.name}: reached end of file after row [{self._row_ordinal}] "
                f"without a {DATA_END} marker, data file has been truncated"
            )
            return self._stop(aborted=True)
        except csv.Error as e:
            logger.error(f"{self.name}: current row is [{self._row_ordinal + 1}], cannot be read: {e}")
            logger.error(f"{self.name}: data file has been truncated")
            return self._stop(aborted=True)

        if row and DATA_END in row[0]:
            return self._stop(aborted=False)

        self._row_ordinal += 1
        if len(row) != self._width:
            logger.error(f"{self.name}: current row is [{self._row_ordinal}]")
            logger.error(f"{self.name}: row.length [{len(row)}] columns size [{self._width}]")
            for position, value in enumerate(row):
                logger.error(f"{self.name}: field [{position}] is [{value}]")
            logger.error(f"{self.name}: data file has been truncated")
            return self._stop(aborted=True)

        self._row = row
        return True

    def _stop(self, aborted: bool) -> bool:
        self._finished = True
        self._row = None
        self.aborted = self.aborted or aborted
        return False

    def _raw_value(self, name: str) -> Optional[str]:
        return self._row[self._index[name]]

    def _definition(self, name: str) -> ColumnDefinition:
        return self._by_name[name]

    def _release(self):
        if self._owns_stream:
            self._stream.close()
