"""
Unit tests for column definitions
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock

from core.exceptions import (
    RequiredValueMissingError,
    UnknownColumnTypeError,
    UnparseableValueError,
)
from extraction.columns import (
    BACKSLASH_ESCAPE,
    ColumnDefinition,
    ColumnType,
    format_decimal,
    format_datetime,
)


class TestFormatDecimal:
    """Test locale-independent decimal rendering"""

    def test_integers_have_no_grouping(self):
        """Test whole numbers render without separators or fraction"""
        assert format_decimal(100000) == "100000"

    def test_short_fraction_is_kept(self):
        """Test a short fraction renders as written"""
        assert format_decimal(100000.2) == "100000.2"

    def test_long_fraction_is_cut_to_ten_digits(self):
        """Test fractions are rounded to at most ten digits"""
        assert format_decimal(Decimal("10000.01234567890123")) == "10000.0123456789"

    def test_none_renders_empty(self):
        """Test null decimals render as empty text"""
        assert format_decimal(None) == ""

    def test_negative_zero(self):
        """Test values that round to zero do not keep a sign"""
        assert format_decimal(Decimal("-0.00000000001")) == "0"


class TestColumnTags:
    """Test building columns from wire type tags"""

    def test_known_tag(self):
        """Test a plain tag maps to its logical type"""
        column = ColumnDefinition.from_tag("ID", "orderId")

        assert column.column_type is ColumnType.INTEGER
        assert column.type_tag == "ID"

    def test_bracket_suffix_is_stripped(self):
        """Test *_BRACKET tags behave like the base tag"""
        column = ColumnDefinition.from_tag("STRING_BRACKET", "note")

        assert column.column_type is ColumnType.STRING
        assert column.type_tag == "STRING"

    def test_from_date_tag_is_a_string(self):
        """Test *FROM_DATE tags are carried as strings"""
        column = ColumnDefinition.from_tag("POLICYFROM_DATE", "fromDate")

        assert column.column_type is ColumnType.STRING

    def test_substring_takes_name_from_triple(self):
        """Test SUBSTRING columns are named by the third element"""
        column = ColumnDefinition.from_tag("SUBSTRING", "policy_no, 1, shortNumber")

        assert column.name == "shortNumber"
        assert column.column_type is ColumnType.STRING

    def test_malformed_substring(self):
        """Test a SUBSTRING name without three parts is rejected"""
        with pytest.raises(UnknownColumnTypeError):
            ColumnDefinition.from_tag("SUBSTRING", "policy_no")

    def test_unknown_tag(self):
        """Test an unknown tag is a configuration error"""
        with pytest.raises(UnknownColumnTypeError) as exc_info:
            ColumnDefinition.from_tag("BLOB", "payload")

        assert "Unknown type: BLOB" in exc_info.value.message

    def test_format_only_kept_for_dates(self):
        """Test format patterns are dropped for non-temporal columns"""
        assert ColumnDefinition.from_tag("STRING", "a", "%Y").format_pattern is None
        assert ColumnDefinition.from_tag("DATE", "b", "%d/%m/%Y").format_pattern == "%d/%m/%Y"


class TestRender:
    """Test rendering values from a row source"""

    def test_render_string_escapes_backslashes(self):
        """Test backslashes are escaped and carriage returns become newlines"""
        source = Mock()
        source.get_string.return_value = "C:\\temp\rline"
        column = ColumnDefinition.from_tag("STRING", "path")

        assert column.render(source) == f"C:{BACKSLASH_ESCAPE}temp\nline"

    def test_render_null_integer(self):
        """Test null integers render as empty text"""
        source = Mock()
        source.get_int.return_value = None

        assert ColumnDefinition.from_tag("INTEGER", "qty").render(source) == ""

    def test_render_datetime_with_offset(self):
        """Test timestamps render with milliseconds and offset"""
        source = Mock()
        source.get_datetime.return_value = datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)

        rendered = ColumnDefinition.from_tag("DATETIME", "createTime").render(source)

        assert rendered == "20240115 10:30:00.123+0000"

    def test_render_datetime_ignores_input_pattern(self):
        """Test a customer pattern only affects parsing, never the wire form"""
        column = ColumnDefinition.from_tag("DATETIME", "lossTime", "%m/%d/%Y %H:%M")
        source = Mock()
        source.get_datetime.return_value = column.parse("01/15/2024 10:30").replace(tzinfo=timezone.utc)

        assert column.render(source) == "20240115 10:30:00.000+0000"

    def test_render_date_with_pattern(self):
        """Test dates use the column's pattern when one is set"""
        source = Mock()
        source.get_date.return_value = date(2024, 3, 9)
        column = ColumnDefinition.from_tag("DATE", "effective", "%m/%d/%Y")

        assert column.render(source) == "03/09/2024"

    def test_render_boolean_from_integer(self):
        """Test numeric booleans render as 1/0"""
        source = Mock()
        source.get_int.return_value = 1

        assert ColumnDefinition.from_tag("BIT", "active").render(source) == "1"

    def test_render_boolean_falls_back_to_string(self):
        """Test non-numeric booleans are read as text"""
        source = Mock()
        source.get_int.side_effect = UnparseableValueError("Unparseable number")
        source.get_string.return_value = "TRUE"
        column = ColumnDefinition.from_tag("BIT", "active")

        assert column.render(source) == "1"

        source.get_string.return_value = "no"
        assert column.render(source) == "0"

    def test_render_wraps_conversion_errors(self):
        """Test conversion failures surface as column value errors"""
        source = Mock()
        source.get_decimal.return_value = "twelve"

        with pytest.raises(UnparseableValueError) as exc_info:
            ColumnDefinition.from_tag("DECIMAL", "premium").render(source)

        assert exc_info.value.context["column_name"] == "premium"


class TestParse:
    """Test parsing text into typed values"""

    def test_parse_integer_truncates_fraction(self):
        """Test integer text with a fraction is truncated"""
        column = ColumnDefinition.from_tag("INTEGER", "qty")

        assert column.parse("10.0") == 10
        assert column.parse(" 7 ") == 7

    def test_parse_unparseable_number(self):
        """Test the error message for bad numbers"""
        column = ColumnDefinition.from_tag("INTEGER", "qty")

        with pytest.raises(UnparseableValueError) as exc_info:
            column.parse("abc")

        assert exc_info.value.message == 'Unparseable number: "abc"'

    def test_parse_blank_is_null(self):
        """Test blank cells are null except for strings"""
        assert ColumnDefinition.from_tag("DECIMAL", "premium").parse("   ") is None
        assert ColumnDefinition.from_tag("STRING", "name").parse(None) == ""

    def test_parse_required_missing(self):
        """Test required values may not be blank"""
        column = ColumnDefinition.from_tag("DECIMAL", "premium")

        with pytest.raises(RequiredValueMissingError) as exc_info:
            column.parse_required("  ")

        assert exc_info.value.message == "Null value found for required field premium of type DECIMAL"

    def test_parse_string_unescapes(self):
        """Test string parsing reverses the backslash escape"""
        column = ColumnDefinition.from_tag("STRING", "path")

        assert column.parse(f"C:{BACKSLASH_ESCAPE}temp") == "C:\\temp"

    def test_parse_canonical_datetime(self):
        """Test the canonical timestamp form parses with its offset"""
        column = ColumnDefinition.from_tag("DATETIME", "createTime")

        parsed = column.parse("20240115 10:30:00.123+0000")

        assert parsed == datetime(2024, 1, 15, 10, 30, 0, 123000, tzinfo=timezone.utc)

    def test_parse_datetime_alternate_formats(self):
        """Test other accepted timestamp layouts"""
        column = ColumnDefinition.from_tag("DATETIME", "createTime")

        assert column.parse("2024-01-15") == datetime(2024, 1, 15)
        assert column.parse("01/15/2024 10:30:00.5") == datetime(2024, 1, 15, 10, 30, 0, 500000)
        assert column.parse("15Jan2024:10:30:00") == datetime(2024, 1, 15, 10, 30)

    def test_parse_datetime_matches_leading_text(self):
        """Test a layout that matches only the start of the text still parses"""
        column = ColumnDefinition.from_tag("DATETIME", "createTime")

        assert column.parse("2024-01-15 10:30:00") == datetime(2024, 1, 15)
        assert column.parse("2024-01-15 10:30:00.250") == datetime(2024, 1, 15, 10, 30, 0, 250000)

    def test_parse_datetime_without_millis_in_compact_layout(self):
        """Test the compact layout still requires its fraction separator"""
        column = ColumnDefinition.from_tag("DATETIME", "createTime")

        with pytest.raises(UnparseableValueError):
            column.parse("20240115 10:30:00")

    def test_parse_datetime_with_offset_layout(self):
        """Test a non-UTC offset is preserved"""
        column = ColumnDefinition.from_tag("DATETIME", "createTime")

        parsed = column.parse("2024-01-15 10:30:00.000-0500")

        assert parsed.utcoffset() == timedelta(hours=-5)

    def test_parse_unparseable_date(self):
        """Test text matching no layout is rejected"""
        column = ColumnDefinition.from_tag("DATETIME", "createTime")

        with pytest.raises(UnparseableValueError) as exc_info:
            column.parse("yesterday")

        assert exc_info.value.message.startswith("Unparseable date")

    def test_parse_date_with_pattern(self):
        """Test dates parse with the configured pattern"""
        column = ColumnDefinition.from_tag("DATE", "effective", "%d/%m/%Y")

        assert column.parse("09/03/2024") == date(2024, 3, 9)

    def test_parse_boolean(self):
        """Test boolean text forms"""
        column = ColumnDefinition.from_tag("BIT", "active")

        assert column.parse("true") is True
        assert column.parse("0") is False
        with pytest.raises(UnparseableValueError):
            column.parse("maybe")

    def test_format_datetime_naive_uses_local_offset(self):
        """Test naive timestamps carry the local zone's offset"""
        rendered = format_datetime(datetime(2024, 1, 15, 10, 30))

        assert rendered.startswith("20240115 10:30:00.000")
        assert rendered[-5] in "+-"

    def test_columns_equal_regardless_of_format(self):
        """Test the format pattern is not part of column identity"""
        assert ColumnDefinition.from_tag("DATE", "d", "%Y") == ColumnDefinition.from_tag("DATE", "d")
