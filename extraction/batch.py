"""
Batch builder: drains a row source into a bounded, fully validated batch.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from core.config import settings
from core.exceptions import ColumnValueError
from core.logging import truncate
from extraction.columns import ColumnDefinition
from extraction.sources.base import RowSource
from schemas.upload import BatchPayload, ColumnPayload, RowPayload

logger = logging.getLogger(__name__)

VALUE_PREVIEW_LENGTH = 20


@dataclass
class Batch:
    """
    A bounded slice of rows ready for transmission.

    Invariants:
        len(rows) == success_count
        was_truncated implies checksum is None
    """
    name: str
    columns: List[ColumnDefinition]
    rows: List[List[str]] = field(default_factory=list)
    success_count: int = 0
    was_truncated: bool = False
    checksum: Optional[int] = None
    source_run_duration_ms: int = -1

    def append(self, values: List[str]):
        self.rows.append(values)
        self.success_count += 1

    def to_payload(self) -> BatchPayload:
        return BatchPayload(
            name=self.name,
            columns=[
                ColumnPayload(name=c.name, type=c.type_tag, format_string=c.format_pattern)
                for c in self.columns
            ],
            rows=[RowPayload(results=values) for values in self.rows],
            checksum=self.checksum,
            row_count=self.success_count,
            was_cut_short=self.was_truncated,
            query_time=self.source_run_duration_ms
        )

    def to_json(self) -> str:
        return self.to_payload().model_dump_json(by_alias=True)


class BatchBuilder:
    """
    Drain a row source up to a row cap.

    Every column of every cleanly read row is attempted; a row with any
    failing cell is quarantined and left out, and its failures are logged
    as one message. Hitting the cap leaves the source open for the next
    batch. Draining the source closes it and attaches its checksum.

    Attributes:
        max_rows: Cap on successful rows per batch
        max_error_rows: Rejected rows tolerated before the source is abandoned
    """

    def __init__(self, max_rows: Optional[int] = None, max_error_rows: Optional[int] = None):
        self.max_rows = max_rows or settings.MAX_ROWS_PER_POST
        self.max_error_rows = max_error_rows if max_error_rows is not None else settings.MAX_ERROR_ROWS

    def build(self, source: RowSource) -> Batch:
        """
        Build the next batch from a source.

        Args:
            source: Row source, positioned before its next row

        Returns:
            Batch with at most ``max_rows`` rows
        """
        batch = Batch(name=source.name, columns=list(source.columns))

        while source.next():
            # Rows rejected while reading were already counted and quarantined
            if source.row_read_cleanly:
                values, errors = self._render_row(source, batch.columns)
                if not errors:
                    batch.append(values)
                    if batch.success_count >= self.max_rows:
                        batch.was_truncated = True
                        break
                    continue
                self._reject_row(source, values, errors)

            if source.error_count > self.max_error_rows:
                logger.error(
                    f"Too many errors - {source.error_count} rejected rows in {source.name}, "
                    f"the limit is {self.max_error_rows}; abandoning the source"
                )
                source.aborted = True
                break

        if not batch.was_truncated:
            source.close()
            if not source.aborted:
                batch.checksum = source.checksum

        batch.source_run_duration_ms = source.time_to_run_ms
        logger.debug(
            f"Built batch for {source.name}: {batch.success_count} rows, "
            f"truncated={batch.was_truncated}"
        )
        return batch

    @staticmethod
    def _render_row(source: RowSource, columns: List[ColumnDefinition]):
        values: List[str] = []
        errors: List[str] = []
        for column in columns:
            try:
                values.append(column.render(source))
            except ColumnValueError as e:
                values.append("")
                errors.append(f"column [{column.name}], error is [{e.message}]")
        return values, errors

    @staticmethod
    def _reject_row(source: RowSource, values: List[str], errors: List[str]):
        source.error_count += 1
        source.quarantine_current_row()

        partial = ", ".join(truncate(v, VALUE_PREVIEW_LENGTH) for v in values if v)
        message = (
            f"Error handling data source row [{source.current_row_ordinal}] with data [{partial}] , "
            + ", ".join(errors)
        )
        logger.error(message, extra={"error_context": {"source_name": source.name, "errors": errors}})
