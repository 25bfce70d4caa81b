"""
Abstract base class for row sources
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union
import logging

from extraction.columns import ColumnDefinition, ColumnType

logger = logging.getLogger(__name__)

UNKNOWN_ROW_COUNT = -1


class RowSource(ABC):
    """
    Cursor over the rows of one tabular dataset.

    Database cursors, generated extract files and externally supplied files
    are all consumed through this contract, so the batch builder and the
    upload client never need to know where rows come from.

    Usage:
        with source:
            while source.next():
                if source.row_read_cleanly:
                    value = source.get_string("policyNumber")

    Attributes:
        name: Dataset name; batches are uploaded under it
        checksum: Upstream digest computed before extraction (if any)
        error_count: Rows rejected so far (shape or coercion failures)
        aborted: Set when reading stopped on an unrecoverable fault
    """

    def __init__(self, name: str):
        self.name = name
        self.checksum: Optional[int] = None
        self.error_count = 0
        self.aborted = False
        self._closed = False

    # ------------------------------------------------------------------
    # Cursor contract
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def columns(self) -> List[ColumnDefinition]:
        """Output columns, in batch order"""
        pass

    @abstractmethod
    def next(self) -> bool:
        """
        Advance to the next row.

        Returns:
            False once no more rows exist
        """
        pass

    @property
    def current_row_ordinal(self) -> int:
        """1-based ordinal of the current row, 0 when not tracked."""
        return 0

    @property
    def row_read_cleanly(self) -> bool:
        """False when the current row was rejected while being read."""
        return True

    @property
    def expected_rows(self) -> int:
        """Expected number of rows, or -1 when unknown."""
        return UNKNOWN_ROW_COUNT

    @property
    def expected_rows_known(self) -> bool:
        return self.expected_rows != UNKNOWN_ROW_COUNT

    @property
    def time_to_run_ms(self) -> int:
        """Time the upstream query took, or -1 when not applicable."""
        return -1

    # ------------------------------------------------------------------
    # Typed getters for the current row (None means null)
    # ------------------------------------------------------------------

    @abstractmethod
    def get_string(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def get_int(self, name: str) -> Optional[int]:
        pass

    @abstractmethod
    def get_decimal(self, name: str) -> Optional[Union[float, Decimal]]:
        pass

    @abstractmethod
    def get_date(self, name: str) -> Optional[date]:
        pass

    @abstractmethod
    def get_datetime(self, name: str) -> Optional[datetime]:
        pass

    # ------------------------------------------------------------------
    # Quarantine and lifecycle
    # ------------------------------------------------------------------

    def quarantine_current_row(self) -> bool:
        """
        Divert the current row to the quarantine file.

        Returns:
            True if the row was written; sources without a quarantine file
            return False and the row is only logged
        """
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """Release the source. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._release()

    def _release(self):
        """Close underlying handles; called once by close()."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class TextRowSource(RowSource):
    """
    Row source whose cells arrive as text and are parsed on demand.

    Subclasses supply the raw text of a cell and the column definition that
    governs it; the typed getters parse through the column definition.
    """

    @abstractmethod
    def _raw_value(self, name: str) -> Optional[str]:
        """Raw text of a cell in the current row (None when absent)."""
        pass

    @abstractmethod
    def _definition(self, name: str) -> ColumnDefinition:
        pass

    def _convert(self, name: str, column: ColumnDefinition, raw: Optional[str]):
        return column.parse(raw)

    def _typed(self, name: str, column_type: ColumnType):
        column = self._definition(name).as_type(column_type)
        return self._convert(name, column, self._raw_value(name))

    def get_string(self, name: str) -> Optional[str]:
        return self._typed(name, ColumnType.STRING)

    def get_int(self, name: str) -> Optional[int]:
        return self._typed(name, ColumnType.INTEGER)

    def get_decimal(self, name: str) -> Optional[float]:
        return self._typed(name, ColumnType.DECIMAL)

    def get_date(self, name: str) -> Optional[date]:
        return self._typed(name, ColumnType.DATE)

    def get_datetime(self, name: str) -> Optional[datetime]:
        return self._typed(name, ColumnType.DATETIME)
