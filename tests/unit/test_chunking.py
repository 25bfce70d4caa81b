"""
Unit tests for adaptive date-range chunking
"""

import pytest
from datetime import date

from extraction.chunking import DateRangeChunker, DateWindow, next_width


class TestNextWidth:
    """Test window width adjustment"""

    def test_empty_windows_widen(self):
        """Test the width sequence for consecutive empty windows"""
        widths = [30]
        for _ in range(4):
            widths.append(next_width(widths[-1], 30, 0))

        assert widths == [30, 34, 38, 42, 47]

    def test_rows_reset_width(self):
        """Test any rows reset the width to the default"""
        assert next_width(47, 30, 5) == 30


class TestDateRangeChunker:
    """Test planning chunk windows"""

    def run(self, chunker, rows_per_window):
        windows = []
        for window in chunker:
            windows.append(window)
            chunker.record(rows_per_window(window))
        return windows

    def test_first_window_is_open_above(self):
        """Test the first window collects everything from today onwards"""
        chunker = DateRangeChunker(earliest=date(2024, 1, 1), today=date(2024, 3, 1), days_per_chunk=30)

        windows = self.run(chunker, lambda w: 1)

        assert windows[0] == DateWindow(date(2024, 3, 1), None)

    def test_windows_walk_back_to_earliest(self):
        """Test windows are contiguous and end with an open lower bound"""
        chunker = DateRangeChunker(earliest=date(2024, 1, 1), today=date(2024, 3, 1), days_per_chunk=30)

        windows = self.run(chunker, lambda w: 1)

        assert windows == [
            DateWindow(date(2024, 3, 1), None),
            DateWindow(date(2024, 1, 31), date(2024, 3, 1)),
            DateWindow(date(2024, 1, 1), date(2024, 1, 31)),
            DateWindow(date(2023, 12, 2), date(2024, 1, 1)),
            DateWindow(None, date(2023, 12, 2)),
        ]
        assert windows[-1].final
        assert chunker.chunks == 5

    def test_empty_windows_grow(self):
        """Test empty windows widen the next one"""
        chunker = DateRangeChunker(earliest=date(2020, 1, 1), today=date(2024, 1, 1), days_per_chunk=30)

        windows = self.run(chunker, lambda w: 0)

        spans = [(w.later - w.earlier).days for w in windows[1:4]]
        assert spans == [34, 38, 42]

    def test_default_earliest_date(self):
        """Test planning stops at 2000-01-01 when no earliest date is known"""
        chunker = DateRangeChunker(today=date(2000, 3, 1), days_per_chunk=30)

        windows = self.run(chunker, lambda w: 1)

        assert windows[-1].later < date(2000, 1, 1)
        assert windows[-1].earlier is None

    def test_record_required(self):
        """Test asking for a window without recording the previous one fails"""
        chunker = DateRangeChunker(earliest=date(2024, 1, 1), today=date(2024, 3, 1))
        iterator = iter(chunker)
        next(iterator)

        with pytest.raises(RuntimeError):
            next(iterator)

    def test_record_without_window(self):
        """Test recording with no pending window fails"""
        with pytest.raises(RuntimeError):
            DateRangeChunker().record(0)
