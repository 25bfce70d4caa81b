"""
Adaptive date-range chunking for large historical extracts.

Windows walk backwards from today. Each window that returns nothing
widens the next one (width + 1 + 10% of width, truncated), so long
stretches of a dormant table are crossed in fewer queries; the first
window that returns rows resets the width to the default. Once the
window's upper bound falls before the earliest date in the dataset, one
last open-ended window collects everything older.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Optional
import logging

from core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_EARLIEST_DATE = date(2000, 1, 1)


def next_width(width: int, default_width: int, rows_returned: int) -> int:
    """
    Width of the next window, in days.

    An empty window grows the width by 1 + int(0.1 * width):
    30 -> 34 -> 38 -> 42 -> 47. Any rows reset it to the default.
    """
    if rows_returned:
        return default_width
    return width + 1 + int(0.1 * width)


@dataclass(frozen=True)
class DateWindow:
    """
    One chunk query's bounds: earlier <= createTime < later.

    A None bound is open.
    """
    earlier: Optional[date]
    later: Optional[date]

    @property
    def final(self) -> bool:
        return self.earlier is None


class DateRangeChunker:
    """
    Plan chunk windows from today back to the dataset's earliest date.

    Usage:
        chunker = DateRangeChunker(earliest=date(2010, 1, 1))
        for window in chunker:
            rows = run_chunk(window.earlier, window.later)
            chunker.record(rows)

    ``record`` must be called once per window before asking for the next.
    """

    def __init__(
        self,
        earliest: Optional[date] = None,
        today: Optional[date] = None,
        days_per_chunk: Optional[int] = None
    ):
        self.default_width = days_per_chunk or settings.DAYS_PER_CHUNK
        self.earliest = earliest or DEFAULT_EARLIEST_DATE
        self.width = self.default_width
        self.chunks = 0
        self._earlier: Optional[date] = today or date.today()
        self._later: Optional[date] = None
        self._done = False
        self._pending: Optional[DateWindow] = None

    def __iter__(self) -> Iterator[DateWindow]:
        while not self._done:
            if self._pending is not None:
                raise RuntimeError("record() was not called for the previous window")
            if self._later is not None and self._later < self.earliest:
                self._earlier = None
                self._done = True
            self._pending = DateWindow(self._earlier, self._later)
            yield self._pending

    def record(self, rows_returned: int):
        """Feed back how many rows the current window produced."""
        if self._pending is None:
            raise RuntimeError("No window is waiting for a result")

        self.width = next_width(self.width, self.default_width, rows_returned)
        if self._earlier is not None:
            self._later = self._earlier
            self._earlier = self._earlier - timedelta(days=self.width)
        self.chunks += 1
        self._pending = None
        logger.debug(
            f"Chunk {self.chunks} returned {rows_returned} rows; next window is {self.width} days"
        )
