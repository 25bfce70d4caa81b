"""
Row source over a SQLAlchemy result
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional, Union
import logging

from sqlalchemy.engine import Result

from extraction.columns import ColumnDefinition, ColumnType, combine_date
from extraction.sources.base import RowSource

logger = logging.getLogger(__name__)


class QueryRowSource(RowSource):
    """
    Row source that delegates straight to a database result.

    Driver errors propagate unchanged; a database row cannot be quarantined.
    Values are read from the row mapping by column name. Text values for
    date columns (SQLite returns timestamps as strings) are parsed through
    the column definition.
    """

    def __init__(
        self,
        name: str,
        result: Result,
        columns: List[ColumnDefinition],
        checksum: Optional[int] = None,
        time_to_run_ms: int = -1
    ):
        super().__init__(name)
        self._result = result
        self._columns = list(columns)
        self._by_name = {c.name: c for c in self._columns}
        self._row = None
        self.checksum = checksum
        self._time_to_run_ms = time_to_run_ms

    @property
    def columns(self) -> List[ColumnDefinition]:
        return self._columns

    @property
    def time_to_run_ms(self) -> int:
        return self._time_to_run_ms

    @time_to_run_ms.setter
    def time_to_run_ms(self, value: int):
        self._time_to_run_ms = value

    def next(self) -> bool:
        if self.closed:
            return False
        self._row = self._result.fetchone()
        return self._row is not None

    def _value(self, name: str) -> Any:
        return self._row._mapping[name]

    def get_string(self, name: str) -> Optional[str]:
        value = self._value(name)
        return None if value is None else str(value)

    def get_int(self, name: str) -> Optional[int]:
        value = self._value(name)
        if value is None:
            return None
        if isinstance(value, str):
            return self._by_name[name].as_type(ColumnType.INTEGER).parse(value)
        return int(value)

    def get_decimal(self, name: str) -> Optional[Union[float, Decimal]]:
        value = self._value(name)
        if value is None or isinstance(value, (Decimal, float, int)):
            return value
        return float(value)

    def get_date(self, name: str) -> Optional[date]:
        value = self._value(name)
        if isinstance(value, str):
            value = self._parse_iso(value) or self._by_name[name].as_type(ColumnType.DATE).parse(value)
        if isinstance(value, datetime):
            return value.date()
        return value

    def get_datetime(self, name: str) -> Optional[datetime]:
        value = self._value(name)
        if isinstance(value, str):
            return self._parse_iso(value) or self._by_name[name].as_type(ColumnType.DATETIME).parse(value)
        return combine_date(value)

    @staticmethod
    def _parse_iso(value: str) -> Optional[datetime]:
        """Drivers without native date types hand back ISO text."""
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return None

    def _release(self):
        self._result.close()
