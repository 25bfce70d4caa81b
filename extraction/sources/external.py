"""
Row source over an externally supplied delimited file.

Customer files are expected to be messy. A row with the wrong number of
fields (an unquoted comma, a missing column, mismatched quotes) is logged,
written verbatim to the quarantine file and skipped; reading carries on
with the next row. Only an open quote that runs to the end of the file
stops the read, and rows produced before it remain valid.
"""

import csv
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TextIO, Union
import logging

from core.exceptions import SourceReadError
from core.logging import truncate
from extraction.columns import ColumnDefinition
from extraction.file_schema import FileSchema, HeaderResolution
from extraction.sources.base import TextRowSource
from extraction.sources.quarantine import QuarantineWriter, quarantine_path_for

logger = logging.getLogger(__name__)

FIELD_PREVIEW_LENGTH = 20
MULTILINE_PREVIEW_LENGTH = 100


class ExternalFileRowSource(TextRowSource):
    """
    Read rows from a customer file validated against a FileSchema.

    The header is resolved when the source is created. If it does not
    match the schema, ``headers_valid`` is False and no rows are read.

    Attributes:
        path: Input file path (None when reading from a bare stream)
        headers_valid: Whether the header resolved against the schema
        resolution: Header resolution (index -> canonical name)
        quarantine: Writer for rejected rows, or None when disabled
    """

    def __init__(
        self,
        schema: FileSchema,
        stream: TextIO,
        name: Optional[str] = None,
        quarantine_path: Optional[Union[str, Path]] = None,
        owns_stream: bool = False,
        path: Optional[Union[str, Path]] = None
    ):
        super().__init__(name or schema.table_name)
        self.schema = schema
        self.path = Path(path) if path else None
        self._stream = stream
        self._owns_stream = owns_stream
        self._pending_lines: List[str] = []
        self._stream_exhausted = False
        self._reader = csv.reader(self._capture_lines(), skipinitialspace=True, strict=True)

        self._row_ordinal = 0
        self._values: Optional[Dict[str, str]] = None
        self._current_raw: Optional[str] = None
        self._current_quarantined = False
        self._finished = False

        self.header: List[str] = []
        self.resolution = HeaderResolution()
        self.headers_valid = self._read_header()

        self.quarantine: Optional[QuarantineWriter] = None
        if quarantine_path is not None:
            self.quarantine = QuarantineWriter(quarantine_path, self.header)

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        schema: FileSchema,
        quarantine: bool = True,
        name: Optional[str] = None
    ) -> "ExternalFileRowSource":
        """Open a customer file; rejected rows go to '<path>.bad' unless disabled."""
        path = Path(path)
        try:
            stream = open(path, "r", encoding="utf-8-sig", newline="")
        except OSError as e:
            raise SourceReadError(
                f"Cannot open {path}",
                context={"file_path": str(path)},
                original_exception=e
            )
        return cls(
            schema,
            stream,
            name=name,
            quarantine_path=quarantine_path_for(path) if quarantine else None,
            owns_stream=True,
            path=path
        )

    def _capture_lines(self) -> Iterator[str]:
        # Keep the physical lines of the record being parsed for quarantine
        for line in self._stream:
            self._pending_lines.append(line)
            yield line
        self._stream_exhausted = True

    def _take_raw(self) -> str:
        raw = "".join(self._pending_lines).rstrip("\r\n")
        self._pending_lines = []
        return raw

    def _read_header(self) -> bool:
        try:
            record = next(self._reader)
        except StopIteration:
            logger.error(f"{self.name}: file is empty, no header row found")
            return False
        except csv.Error as e:
            logger.error(f"{self.name}: header row cannot be parsed: {e}")
            return False
        finally:
            self._pending_lines = []

        self.header = [cell.strip() for cell in record]
        self.resolution = self.schema.resolve_header(self.header)
        for message in self.resolution.messages():
            logger.error(f"{self.name}: {message}")
        return self.resolution.valid

    # ------------------------------------------------------------------
    # RowSource contract
    # ------------------------------------------------------------------

    @property
    def columns(self) -> List[ColumnDefinition]:
        return self.schema.definitions

    @property
    def current_row_ordinal(self) -> int:
        return self._row_ordinal

    @property
    def row_read_cleanly(self) -> bool:
        return self._values is not None

    def next(self) -> bool:
        """
        Advance to the next physical row.

        Returns True for every row consumed, including rejected ones; check
        ``row_read_cleanly`` before reading values. Returns False at end of
        file, after an unrecoverable parse fault, or when the header was invalid.
        """
        if self.closed or self._finished or not self.headers_valid:
            return False

        self._values = None
        self._current_raw = None
        self._current_quarantined = False

        while True:
            try:
                record = next(self._reader)
            except StopIteration:
                self._finished = True
                return False
            except csv.Error as e:
                self._row_ordinal += 1
                raw = self._take_raw()
                if self._stream_exhausted:
                    logger.error(
                        f"{self.name}: current row is [{self._row_ordinal}], this row has an open quote "
                        f"without a corresponding close quote: {truncate(raw, MULTILINE_PREVIEW_LENGTH)}"
                    )
                    self.error_count += 1
                    self.aborted = True
                    self._finished = True
                    return False
                logger.error(f"{self.name}: Row [{self._row_ordinal}] cannot be parsed: {e}")
                self._reject(raw)
                return True

            raw = self._take_raw()
            if not record:
                continue

            self._row_ordinal += 1
            self._current_raw = raw
            if len(record) != len(self.header):
                self._log_shape_mismatch(record)
                self._reject(raw)
                return True

            self._values = self.schema.project(self.resolution, [field.strip() for field in record])
            return True

    def _reject(self, raw: str):
        self.error_count += 1
        self._current_raw = raw
        self.quarantine_current_row()

    def _log_shape_mismatch(self, record: List[str]):
        expected = len(self.header)
        actual = len(record)
        message = (
            f"Row [{self._row_ordinal}]  contains the wrong number of fields; "
            f"expected: [{expected}] got [{actual}]; "
        )
        if actual > expected:
            message += "it may have an unquoted field containing a comma or have mismatched quotes, "
        else:
            message += "at least one column is missing from this record "
        if self.quarantine is not None:
            message += "skipping and writing to bad file "

        previews = []
        for value in record:
            if "\n" in value:
                logger.error(
                    f"{self.name}: Row may contain mismatched quotes: "
                    f"{truncate(value, MULTILINE_PREVIEW_LENGTH)}"
                )
            previews.append(f"[{truncate(value, FIELD_PREVIEW_LENGTH)}]")
        logger.error(f"{self.name}: {message}{', '.join(previews)}")

    def quarantine_current_row(self) -> bool:
        if self.quarantine is None or self._current_raw is None or self._current_quarantined:
            return False
        self.quarantine.write_raw(self._current_raw)
        self._current_quarantined = True
        return True

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def _raw_value(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def _definition(self, name: str) -> ColumnDefinition:
        return self.schema.column(name).definition

    def _convert(self, name: str, column: ColumnDefinition, raw: Optional[str]) -> Any:
        if self.schema.column(name).required:
            return column.parse_required(raw)
        return column.parse(raw)

    def _release(self):
        if self.quarantine is not None:
            self.quarantine.close()
        if self._owns_stream:
            self._stream.close()
