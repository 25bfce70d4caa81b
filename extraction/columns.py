"""
Column definitions: logical types and their canonical string forms.

A column renders the current row of a row source into the text that goes
on the wire, and parses that text back into a typed value when a file is
ingested. Rendering is locale independent: decimals never group digits and
keep at most ten fraction digits, booleans travel as "1"/"0".
"""

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, localcontext
from enum import Enum
from typing import Any, List, Optional

from core.exceptions import (
    ColumnValueError,
    RequiredValueMissingError,
    UnknownColumnTypeError,
    UnparseableValueError,
)
from core.logging import truncate


class ColumnType(str, Enum):
    """Logical column types"""
    INTEGER = "integer"
    STRING = "string"
    TYPECODE = "typecode"
    DATE = "date"
    DATETIME = "datetime"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"


# Wire type tags and the logical type each one maps to
TYPE_TAGS = {
    "BIT": ColumnType.BOOLEAN,
    "INTEGER": ColumnType.INTEGER,
    "ID": ColumnType.INTEGER,
    "TYPECODEID": ColumnType.INTEGER,
    "STRING": ColumnType.STRING,
    "TYPECODE": ColumnType.TYPECODE,
    "DATETIME": ColumnType.DATETIME,
    "DATE": ColumnType.DATE,
    "DECIMAL": ColumnType.DECIMAL,
}

BRACKET_SUFFIX = "_BRACKET"
FROM_DATE_SUFFIX = "FROM_DATE"
SUBSTRING_TAG = "SUBSTRING"
SUBSTRING_NAME = re.compile(r"\s*(.+?)\s*,\s*(.+?)\s*,\s*(.+?)")

DATE_OUTPUT_FORMAT = "%Y%m%d"
DATETIME_OUTPUT_FORMAT = "%Y%m%d %H:%M:%S"

# Tried in this order; every format is attempted and the last success wins.
# Prefix matches count only when no format matches the whole text.
DATETIME_INPUT_FORMATS = [
    "%Y%m%d %H:%M:%S.%f%z",
    "%Y%m%d %H:%M:%S.%f",
    "%d%b%Y:%H:%M:%S",
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S.%f%z",
    "%m/%d/%Y %H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S.%f",
    "%m/%d/%Y %H:%M:%S.%f",
]
# strptime's message when a format matches only a prefix of the text
UNCONVERTED_DATA = "unconverted data remains: "

MAX_FRACTION_DIGITS = 10
BACKSLASH_ESCAPE = "<%gwrebkslsh%>"


def was_null(value: Optional[str]) -> bool:
    """A raw cell is null when it is missing or blank."""
    return value is None or value.strip() == ""


def format_decimal(value: Any) -> str:
    """
    Render a number without grouping and with at most 10 fraction digits.

    Examples:
        100000                -> "100000"
        100000.2              -> "100000.2"
        10000.01234567890123  -> "10000.0123456789"
    """
    if value is None:
        return ""

    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    else:
        # repr gives the shortest text that round-trips the float
        number = Decimal(repr(float(value)))

    with localcontext() as ctx:
        ctx.prec = 60
        number = number.quantize(Decimal(1).scaleb(-MAX_FRACTION_DIGITS), rounding=ROUND_HALF_EVEN)

    text = format(number, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text == "-0":
        text = "0"
    return text


def format_datetime(value: datetime) -> str:
    """Render a timestamp as 'yyyyMMdd HH:mm:ss.SSS+zzzz'."""
    if value.tzinfo is None:
        value = value.astimezone()
    millis = value.microsecond // 1000
    return f"{value.strftime(DATETIME_OUTPUT_FORMAT)}.{millis:03d}{value.strftime('%z')}"


def parse_datetime_prefix(text: str, fmt: str) -> datetime:
    """
    Parse the leading part of text that matches fmt; trailing text is ignored.

    "2024-01-15 10:30:00" parsed with "%Y-%m-%d" gives midnight on 2024-01-15.

    Raises:
        ValueError: If no leading part of the text matches the format
    """
    try:
        return datetime.strptime(text, fmt)
    except ValueError as e:
        message = str(e)
        if not message.startswith(UNCONVERTED_DATA):
            raise
        remainder = len(message) - len(UNCONVERTED_DATA)
        return datetime.strptime(text[:-remainder], fmt)


def escape_string(value: str) -> str:
    return value.replace("\\", BACKSLASH_ESCAPE).replace("\r", "\n")


def unescape_string(value: str) -> str:
    return value.replace(BACKSLASH_ESCAPE, "\\")


@dataclass(frozen=True)
class ColumnDefinition:
    """
    One output column.

    Attributes:
        name: Column name; the join key across schema, row values and batches
        column_type: Logical type used for rendering and parsing
        type_tag: Type tag written on the wire and in generated files
        format_pattern: Optional strftime/strptime pattern for dates
    """
    name: str
    column_type: ColumnType
    type_tag: str
    format_pattern: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_tag(cls, type_tag: str, name: str, format_pattern: Optional[str] = None) -> "ColumnDefinition":
        """
        Build a column from a wire type tag.

        Args:
            type_tag: Tag such as INTEGER, DATETIME or STRING_BRACKET
            name: Column name (for SUBSTRING, the 'expr, start, name' triple)
            format_pattern: Optional date pattern

        Raises:
            UnknownColumnTypeError: If the tag is not recognised
        """
        tag = (type_tag or "").strip().upper()
        if tag.endswith(BRACKET_SUFFIX):
            tag = tag[:-len(BRACKET_SUFFIX)]

        if tag == SUBSTRING_TAG:
            match = SUBSTRING_NAME.fullmatch(name)
            if not match:
                raise UnknownColumnTypeError(
                    f"Cannot parse: {name} for substring",
                    context={"type_tag": type_tag, "column_name": name}
                )
            return cls(match.group(3), ColumnType.STRING, "STRING")

        if tag in TYPE_TAGS:
            column_type = TYPE_TAGS[tag]
            pattern = format_pattern if column_type in (ColumnType.DATE, ColumnType.DATETIME) else None
            return cls(name, column_type, tag, pattern or None)

        if tag.endswith(FROM_DATE_SUFFIX):
            return cls(name, ColumnType.STRING, "STRING")

        raise UnknownColumnTypeError(
            f"Unknown type: {type_tag}; valid types are {', '.join(TYPE_TAGS)}",
            context={"type_tag": type_tag, "column_name": name}
        )

    def with_format(self, format_pattern: Optional[str]) -> "ColumnDefinition":
        return replace(self, format_pattern=format_pattern)

    def as_type(self, column_type: ColumnType) -> "ColumnDefinition":
        """Same column read as another type (a BIT column read as an integer)."""
        if column_type is self.column_type:
            return self
        return replace(self, column_type=column_type)

    @property
    def is_temporal(self) -> bool:
        return self.column_type in (ColumnType.DATE, ColumnType.DATETIME)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, source) -> str:
        """
        Render the source's current value for this column as canonical text.

        Args:
            source: Row source positioned on a row

        Returns:
            Canonical text, or "" when the value is null

        Raises:
            ColumnValueError: If the value cannot be read or converted
        """
        try:
            if self.column_type is ColumnType.INTEGER:
                value = source.get_int(self.name)
                return "" if value is None else str(value)

            elif self.column_type is ColumnType.DECIMAL:
                return format_decimal(source.get_decimal(self.name))

            elif self.column_type in (ColumnType.STRING, ColumnType.TYPECODE):
                value = source.get_string(self.name)
                return "" if value is None else escape_string(value)

            elif self.column_type is ColumnType.DATE:
                value = source.get_date(self.name)
                return "" if value is None else value.strftime(self.format_pattern or DATE_OUTPUT_FORMAT)

            elif self.column_type is ColumnType.DATETIME:
                value = source.get_datetime(self.name)
                return "" if value is None else format_datetime(value)

            elif self.column_type is ColumnType.BOOLEAN:
                return self._render_boolean(source)

        except ColumnValueError:
            raise
        except (ValueError, TypeError, ArithmeticError) as e:
            raise UnparseableValueError(
                f"Cannot render {self.column_type.value} value for column {self.name}: {e}",
                context={"column_name": self.name, "column_type": self.type_tag},
                original_exception=e
            )

        raise UnknownColumnTypeError(
            f"No renderer for column type {self.column_type}",
            context={"column_name": self.name}
        )

    def _render_boolean(self, source) -> str:
        try:
            value = source.get_int(self.name)
        except (ColumnValueError, ValueError, TypeError):
            # Not numeric: fall back to the string form
            text = source.get_string(self.name)
            if text is None:
                return ""
            return "1" if text.strip().lower() == "true" else "0"
        return "" if value is None else str(int(value))

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, text: Optional[str]) -> Any:
        """
        Parse canonical or external text into a typed value.

        Returns None for null input (None or blank); strings stay "".

        Raises:
            UnparseableValueError: If the text cannot be parsed as this type
        """
        if self.column_type in (ColumnType.STRING, ColumnType.TYPECODE):
            return "" if text is None else unescape_string(text)

        if was_null(text):
            return None
        text = text.strip()

        if self.column_type is ColumnType.INTEGER:
            return self._parse_integer(text)
        elif self.column_type is ColumnType.DECIMAL:
            return self._parse_decimal(text)
        elif self.column_type is ColumnType.DATE:
            return self._parse_date(text)
        elif self.column_type is ColumnType.DATETIME:
            return self._parse_datetime(text)
        elif self.column_type is ColumnType.BOOLEAN:
            return self._parse_boolean(text)

        raise UnknownColumnTypeError(
            f"No parser for column type {self.column_type}",
            context={"column_name": self.name}
        )

    def parse_required(self, text: Optional[str]) -> Any:
        """
        Parse a value that must be present.

        Raises:
            RequiredValueMissingError: If the value is empty after trimming
            UnparseableValueError: If the value is present but unparseable
        """
        if was_null(text):
            raise RequiredValueMissingError(
                f"Null value found for required field {self.name} of type {self.type_tag}",
                context={"column_name": self.name, "column_type": self.type_tag}
            )
        return self.parse(text.strip())

    def _unparseable(self, kind: str, text: str, error: Optional[Exception] = None) -> UnparseableValueError:
        return UnparseableValueError(
            f'Unparseable {kind}: "{truncate(text, 100)}"',
            context={"column_name": self.name, "column_type": self.type_tag},
            original_exception=error
        )

    def _parse_integer(self, text: str) -> int:
        try:
            return int(text)
        except ValueError:
            pass
        try:
            # "10.0" and "10.5" truncate toward zero
            return int(Decimal(text))
        except (InvalidOperation, ValueError, OverflowError) as e:
            raise self._unparseable("number", text, e)

    def _parse_decimal(self, text: str) -> float:
        try:
            return float(text)
        except ValueError as e:
            raise self._unparseable("number", text, e)

    def _parse_date(self, text: str) -> date:
        try:
            return parse_datetime_prefix(text, self.format_pattern or DATE_OUTPUT_FORMAT).date()
        except ValueError as e:
            raise self._unparseable("date", text, e)

    def _parse_datetime(self, text: str) -> datetime:
        formats: List[str] = list(DATETIME_INPUT_FORMATS)
        if self.format_pattern:
            formats.insert(0, self.format_pattern)

        parsed = None
        last_error = None
        for parse in (datetime.strptime, parse_datetime_prefix):
            for fmt in formats:
                try:
                    parsed = parse(text, fmt)
                except ValueError as e:
                    last_error = e
            if parsed is not None:
                break

        if parsed is None:
            raise self._unparseable("date", text, last_error)
        return parsed

    def _parse_boolean(self, text: str) -> bool:
        lowered = text.lower()
        if lowered in ("1", "true"):
            return True
        if lowered in ("0", "false"):
            return False
        try:
            return int(text) != 0
        except ValueError as e:
            raise self._unparseable("boolean", text, e)


def combine_date(value: Any) -> Any:
    """Promote a bare date to midnight so it can be rendered as a timestamp."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time())
    return value
