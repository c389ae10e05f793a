"""
Field-Level Conversion Rules

Converts raw CSV text into the native value for a column's semantic type.
Numbers and dates arrive in a mix of regional (es-PE style: comma decimal,
dot thousands) and invariant notation, so several rules try the regional
reading first and fall back to the invariant one.
"""

import logging
import re
import uuid
import warnings
from abc import ABC, abstractmethod
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, NamedTuple, Optional

import pandas as pd

from etl.errors import ValueConversionError
from etl.schema import ColumnMeta, SemanticType

logger = logging.getLogger(__name__)


class TypedValue(NamedTuple):
    """A converted field tagged with its semantic type. value=None is SQL NULL."""

    semantic_type: SemanticType
    value: Any

    @property
    def is_null(self) -> bool:
        return self.value is None


class Converter(ABC):
    """Abstract base class for field converters."""

    @abstractmethod
    def convert(self, text: str, column: ColumnMeta) -> Any:
        """
        Convert non-blank raw text.

        Raises:
            ValueError: If the text is not valid for the type
        """
        pass


class IntegerConverter(Converter):
    """Culture-invariant integers with an optional sign and range check."""

    PATTERN = re.compile(r"^\s*([+-]?[0-9]+)\s*$")

    def __init__(self, min_value: int, max_value: int):
        self.min_value = min_value
        self.max_value = max_value

    def convert(self, text: str, column: ColumnMeta) -> int:
        match = self.PATTERN.match(text)
        if not match:
            raise ValueError(f"Not an integer: {text!r}")

        value = int(match.group(1))
        if not self.min_value <= value <= self.max_value:
            raise ValueError(f"{value} outside [{self.min_value}, {self.max_value}]")
        return value


class BooleanConverter(Converter):
    """Accepts 1/0, true/false and the S/N (si/no) convention."""

    TRUE_VALUES = frozenset({"1", "true", "s"})
    FALSE_VALUES = frozenset({"0", "false", "n"})

    def convert(self, text: str, column: ColumnMeta) -> bool:
        value = text.strip().lower()
        if value in self.TRUE_VALUES:
            return True
        if value in self.FALSE_VALUES:
            return False
        raise ValueError(f"Not a boolean: {text!r}")


# Longest symbols first so "S/." is not read as "S/" followed by "."
CURRENCY_SYMBOLS = ("US$", "S/.", "S/", "$", "€", "£", "¤")


def _number_pattern(group_sep: str, decimal_sep: str) -> "re.Pattern":
    currency = "|".join(re.escape(s) for s in CURRENCY_SYMBOLS)
    group = re.escape(group_sep)
    point = re.escape(decimal_sep)
    return re.compile(
        rf"""^\s*
        (?P<lsign>[+-])?\s*
        (?P<lcur>{currency})?\s*
        (?P<isign>[+-])?
        (?P<int>[0-9]{{1,3}}(?:{group}[0-9]{{3}})+|[0-9]+)?
        (?:{point}(?P<frac>[0-9]*))?
        \s*(?P<tcur>{currency})?
        \s*(?P<tsign>[+-])?\s*$""",
        re.VERBOSE,
    )


class NumberFormat:
    """
    A numeral convention: thousands and decimal separators.

    Thousands separators are only accepted in proper groups of three so a
    value written in the other convention is rejected instead of misread.
    """

    def __init__(self, name: str, group_sep: str, decimal_sep: str):
        self.name = name
        self.group_sep = group_sep
        self.decimal_sep = decimal_sep
        self._pattern = _number_pattern(group_sep, decimal_sep)

    def parse(self, text: str) -> Optional[Decimal]:
        """Return the parsed Decimal or None if text is not in this format."""
        match = self._pattern.match(text)
        if not match:
            return None

        integer = (match.group("int") or "").replace(self.group_sep, "")
        fraction = match.group("frac") or ""
        if not integer and not fraction:
            return None

        signs = [s for s in (match.group("lsign"), match.group("isign"), match.group("tsign")) if s]
        if len(signs) > 1:
            return None
        if match.group("lcur") and match.group("tcur"):
            return None

        negative = bool(signs) and signs[0] == "-"
        return Decimal(f"{'-' if negative else ''}{integer or '0'}.{fraction or '0'}")


REGIONAL_NUMBERS = NumberFormat("es-PE", group_sep=".", decimal_sep=",")
INVARIANT_NUMBERS = NumberFormat("invariant", group_sep=",", decimal_sep=".")


class DecimalConverter(Converter):
    """Exact numerics: regional notation first, invariant as fallback."""

    def __init__(self, formats=(REGIONAL_NUMBERS, INVARIANT_NUMBERS)):
        self.formats = formats

    def convert(self, text: str, column: ColumnMeta) -> Decimal:
        for number_format in self.formats:
            value = number_format.parse(text)
            if value is not None:
                logger.debug(f"{column.name}: {text!r} parsed as {number_format.name}")
                return value
        raise ValueError(f"Not a decimal number: {text!r}")


class FloatConverter(Converter):
    """Culture-invariant floating point; thousands separators allowed."""

    PATTERN = re.compile(
        r"""^\s*[+-]?
        (?:[0-9]{1,3}(?:,[0-9]{3})+|[0-9]+)?
        (?:\.[0-9]*)?
        (?:[eE][+-]?[0-9]+)?\s*$""",
        re.VERBOSE,
    )
    SPECIAL_VALUES = {"nan": float("nan"), "infinity": float("inf"), "-infinity": float("-inf")}

    def __init__(self, max_magnitude: float = float("inf")):
        self.max_magnitude = max_magnitude

    def convert(self, text: str, column: ColumnMeta) -> float:
        stripped = text.strip()
        special = self.SPECIAL_VALUES.get(stripped.lower())
        if special is not None:
            return special

        if not self.PATTERN.match(stripped) or not any(ch.isdigit() for ch in stripped):
            raise ValueError(f"Not a floating point number: {text!r}")

        value = float(stripped.replace(",", ""))
        if abs(value) > self.max_magnitude:
            raise ValueError(f"{text!r} out of range for {column.semantic_type.value}")
        return value


# Tried in order; the first exact match wins
DATE_FORMATS = (
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)


class DateTimeConverter(Converter):
    """Exact formats first, then a day-first free-form parse."""

    def __init__(self, formats=DATE_FORMATS):
        self.formats = formats

    def convert(self, text: str, column: ColumnMeta) -> datetime:
        stripped = text.strip()
        for fmt in self.formats:
            try:
                return datetime.strptime(stripped, fmt)
            except ValueError:
                continue

        # pandas reads keywords such as "now" and "today" as the current time
        if not any(ch.isdigit() for ch in stripped):
            raise ValueError(f"Not a date: {text!r}")

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            parsed = pd.to_datetime(stripped, dayfirst=True)
        if pd.isna(parsed):
            raise ValueError(f"Not a date: {text!r}")

        logger.debug(f"{column.name}: {text!r} parsed by free-form fallback")
        return parsed.to_pydatetime()


class TimeConverter(Converter):
    """Invariant duration notation [-][d.]hh:mm[:ss[.fffffff]] or whole days."""

    PATTERN = re.compile(
        r"^\s*(?P<neg>-)?(?:(?P<days>[0-9]+)\.)?(?P<h>[0-9]{1,2}):(?P<m>[0-9]{1,2})"
        r"(?::(?P<s>[0-9]{1,2})(?:\.(?P<f>[0-9]{1,7}))?)?\s*$"
    )
    DAYS_ONLY = re.compile(r"^\s*(?P<neg>-)?(?P<days>[0-9]+)\s*$")

    def parse_duration(self, text: str) -> timedelta:
        match = self.PATTERN.match(text)
        if match:
            hours, minutes = int(match.group("h")), int(match.group("m"))
            seconds = int(match.group("s") or 0)
            if hours > 23 or minutes > 59 or seconds > 59:
                raise ValueError(f"Time component out of range: {text!r}")
            fraction = (match.group("f") or "").ljust(6, "0")[:6]
            duration = timedelta(
                days=int(match.group("days") or 0),
                hours=hours,
                minutes=minutes,
                seconds=seconds,
                microseconds=int(fraction),
            )
        else:
            match = self.DAYS_ONLY.match(text)
            if not match:
                raise ValueError(f"Not a time span: {text!r}")
            duration = timedelta(days=int(match.group("days")))
        return -duration if match.group("neg") else duration

    def convert(self, text: str, column: ColumnMeta) -> time:
        duration = self.parse_duration(text)
        if duration < timedelta(0) or duration >= timedelta(days=1):
            raise ValueError(f"Time span {text!r} is not a time of day")
        return (datetime.min + duration).time()


class GuidConverter(Converter):
    """Canonical 8-4-4-4-12 hexadecimal identifiers only."""

    PATTERN = re.compile(
        r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
    )

    def convert(self, text: str, column: ColumnMeta) -> uuid.UUID:
        stripped = text.strip()
        if not self.PATTERN.match(stripped):
            raise ValueError(f"Not a canonical GUID: {text!r}")
        return uuid.UUID(stripped)


class TextConverter(Converter):
    """Free text, cut to the declared maximum length."""

    def convert(self, text: str, column: ColumnMeta) -> str:
        if column.max_length and column.max_length > 0 and len(text) > column.max_length:
            return text[: column.max_length]
        return text


CONVERTERS: Dict[SemanticType, Converter] = {
    SemanticType.INT64: IntegerConverter(-(2 ** 63), 2 ** 63 - 1),
    SemanticType.INT32: IntegerConverter(-(2 ** 31), 2 ** 31 - 1),
    SemanticType.INT16: IntegerConverter(-(2 ** 15), 2 ** 15 - 1),
    SemanticType.BYTE: IntegerConverter(0, 255),
    SemanticType.BOOL: BooleanConverter(),
    SemanticType.DECIMAL: DecimalConverter(),
    SemanticType.FLOAT64: FloatConverter(),
    SemanticType.FLOAT32: FloatConverter(max_magnitude=3.4028234663852886e38),
    SemanticType.DATE: DateTimeConverter(),
    SemanticType.TIME: TimeConverter(),
    SemanticType.GUID: GuidConverter(),
    SemanticType.TEXT: TextConverter(),
}


def coerce(raw: Optional[str], column: ColumnMeta) -> TypedValue:
    """
    Convert one raw field to its column's semantic type.

    Args:
        raw: Raw CSV text, or None
        column: Destination column metadata

    Returns:
        TypedValue; value is None for blank input

    Raises:
        ValueConversionError: If the text cannot be converted
    """
    if raw is None or not raw.strip():
        return TypedValue(column.semantic_type, None)

    converter = CONVERTERS[column.semantic_type]
    try:
        value = converter.convert(raw, column)
    except (ValueError, ArithmeticError) as e:
        raise ValueConversionError(column.name, column.data_type, raw) from e
    return TypedValue(column.semantic_type, value)
