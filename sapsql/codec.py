"""Conversion between canonical values and SAP's native textual encodings.

SAP transports every cell as text. Booleans use the ABAP flags ``'X'`` and
``' '``, dates and times drop all separators and negative numbers carry the
sign after the digits. Date-times and times can be shifted between time
zones on the way out; plain dates never are. ``ValueCodec`` maps both ways:
``encode``/``literal`` produce values for generated SQL, ``decode`` turns
result cells back into canonical Python values.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import CodecError
from .models import ColumnType

LOG = logging.getLogger(__name__)

ABAP_TRUE = "X"
ABAP_FALSE = " "
ABAP_UNKNOWN = "-"

_TRUTHY = {"1", "true", "yes", "x"}
_FALSY = {"0", "false", "no", ""}
_EMPTY_DATES = {"00000000", "00000000000000"}

BinaryDecoder = Callable[[str], Any]


def _hex_to_bytes(raw: str) -> bytes:
    return bytes.fromhex(raw.strip())


class ValueCodec:
    """Bidirectional mapping between canonical values and SAP cell text."""

    def __init__(self, binary_decoder: BinaryDecoder | None = None) -> None:
        self._binary_decoder = binary_decoder or _hex_to_bytes

    def encode(
        self,
        value: Any,
        column_type: ColumnType,
        *,
        source_tz: str | None = None,
        target_tz: str | None = None,
    ) -> str:
        """Encode a canonical value into SAP's native text (without quotes)."""

        if column_type is ColumnType.BOOLEAN:
            return encode_boolean(value)
        if column_type is ColumnType.DATE:
            return encode_date(value, with_time=False)
        if column_type is ColumnType.DATETIME:
            return encode_date(value, source_tz=source_tz, target_tz=target_tz)
        if column_type is ColumnType.TIME:
            return encode_time(value, source_tz=source_tz, target_tz=target_tz)
        if column_type is ColumnType.NUMBER:
            return encode_number(value)
        if value is None:
            return ""
        return str(value)

    def literal(
        self,
        value: Any,
        column_type: ColumnType,
        *,
        source_tz: str | None = None,
        target_tz: str | None = None,
    ) -> str:
        """Encode a value as an OpenSQL literal ready to be placed in a WHERE clause."""

        if column_type is ColumnType.NUMBER:
            number = _to_decimal(value)
            if number is None:
                raise CodecError(f"Cannot use an empty value as numeric literal: {value!r}")
            return format(number, "f")
        if column_type in (ColumnType.STRING, ColumnType.NUMERIC_STRING):
            text = "" if value is None else str(value)
            return "'" + text.replace("'", "''") + "'"
        encoded = self.encode(value, column_type, source_tz=source_tz, target_tz=target_tz)
        return f"'{encoded}'"

    def decode(self, raw: str | None, column_type: ColumnType, *, sql_data_type: str | None = None) -> Any:
        """Decode a raw result cell into its canonical value."""

        if raw is None:
            return None
        if column_type is ColumnType.BINARY or (sql_data_type or "").upper() == "BINARY":
            return self._binary_decoder(raw)
        if column_type is ColumnType.NUMERIC_STRING:
            return decode_numeric_string(raw)
        if column_type is ColumnType.BOOLEAN:
            return decode_boolean(raw)
        if column_type is ColumnType.NUMBER:
            return decode_number(raw)
        if column_type is ColumnType.DATE:
            return decode_date(raw, with_time=False)
        if column_type is ColumnType.DATETIME:
            return decode_date(raw, with_time=True)
        if column_type is ColumnType.TIME:
            return decode_time(raw)
        return raw


def encode_boolean(value: Any) -> str:
    """``True`` -> ``X``, ``False`` -> space, ``None`` -> ``-``."""

    flag = _to_bool(value)
    if flag is None:
        return ABAP_UNKNOWN
    return ABAP_TRUE if flag else ABAP_FALSE


def decode_boolean(raw: str) -> bool | None:
    if raw == ABAP_TRUE:
        return True
    if raw == ABAP_UNKNOWN:
        return None
    return False


def encode_date(
    value: Any,
    *,
    with_time: bool = True,
    source_tz: str | None = None,
    target_tz: str | None = None,
) -> str:
    """Strip all separators from a date or date-time value.

    With ``with_time=False`` any time part is cut off, leaving ``YYYYMMDD``.
    When both zones are given, date-times are converted from ``source_tz`` to
    ``target_tz`` first.
    """

    text = _date_text(value)
    if not with_time:
        return _strip_separators(text)[:8]
    if source_tz and target_tz and source_tz != target_tz and len(text) > 10:
        text = _convert_time_zone(text, source_tz, target_tz)
    return _strip_separators(text)


def decode_date(raw: str, *, with_time: bool) -> str | None:
    """Turn ``YYYYMMDD`` or ``YYYYMMDDHHMMSS`` back into ISO-like text."""

    token = raw.strip()
    if not token or token in _EMPTY_DATES:
        return None
    if not token.isdigit() or len(token) not in (8, 14):
        LOG.debug("Leaving unexpected date token %r untouched", token)
        return token
    day = f"{token[0:4]}-{token[4:6]}-{token[6:8]}"
    if len(token) == 14 and with_time:
        return f"{day} {token[8:10]}:{token[10:12]}:{token[12:14]}"
    return day


def encode_time(value: Any, *, source_tz: str | None = None, target_tz: str | None = None) -> str:
    """Strip separators from a time of day, shifting it between zones if both are given.

    The zone offset in effect today is used, since a bare time has no date.
    """

    if value is None:
        return ""
    if isinstance(value, time):
        value = value.strftime("%H:%M:%S")
    text = str(value).strip()
    if source_tz and target_tz and source_tz != target_tz and text:
        text = _convert_time_of_day(text, source_tz, target_tz)
    return _strip_separators(text)


def decode_time(raw: str) -> str | None:
    token = raw.strip()
    if not token:
        return None
    if token.isdigit() and len(token) == 6:
        return f"{token[0:2]}:{token[2:4]}:{token[4:6]}"
    if token.isdigit() and len(token) == 4:
        return f"{token[0:2]}:{token[2:4]}"
    return token


def encode_number(value: Any) -> str:
    """Render a number with SAP's trailing sign for negatives."""

    number = _to_decimal(value)
    if number is None:
        return ""
    if number < 0:
        return f"{format(-number, 'f')}-"
    return format(number, "f")


def decode_number(raw: str) -> Decimal | None:
    """Move a trailing minus to the front and drop the trailing padding space."""

    text = raw
    if text.endswith("-"):
        text = "-" + text[:-1]
    elif text.endswith(" "):
        text = text[:-1]
    text = text.strip()
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise CodecError(f"Invalid numeric value {raw!r}") from exc


def decode_numeric_string(raw: str) -> str | None:
    """Numeric strings (document numbers etc.) are empty when all zeros."""

    stripped = raw.strip()
    if stripped.isdigit() and int(stripped) == 0:
        return None
    return raw


def _to_bool(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text == ABAP_UNKNOWN:
        return None
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise CodecError(f"Cannot interpret {value!r} as boolean")


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise CodecError("Booleans are not numbers")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise CodecError(f"Invalid numeric value {value!r}") from exc


def _date_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _convert_time_zone(text: str, source_tz: str, target_tz: str) -> str:
    try:
        parsed = datetime.fromisoformat(text)
        source = ZoneInfo(source_tz)
        target = ZoneInfo(target_tz)
    except (ValueError, ZoneInfoNotFoundError) as exc:
        raise CodecError(f"Cannot convert {text!r} from {source_tz} to {target_tz}") from exc
    converted = parsed.replace(tzinfo=source).astimezone(target)
    return converted.strftime("%Y-%m-%d %H:%M:%S")


def _convert_time_of_day(text: str, source_tz: str, target_tz: str) -> str:
    try:
        parsed = time.fromisoformat(text)
        source = ZoneInfo(source_tz)
        target = ZoneInfo(target_tz)
    except (ValueError, ZoneInfoNotFoundError) as exc:
        raise CodecError(f"Cannot convert {text!r} from {source_tz} to {target_tz}") from exc
    moment = datetime.combine(date.today(), parsed, tzinfo=source).astimezone(target)
    return moment.strftime("%H:%M:%S")


def _strip_separators(text: str) -> str:
    return text.replace("-", "").replace(" ", "").replace(":", "")


__all__ = [
    "ABAP_FALSE",
    "ABAP_TRUE",
    "ABAP_UNKNOWN",
    "ValueCodec",
    "decode_boolean",
    "decode_date",
    "decode_number",
    "decode_numeric_string",
    "decode_time",
    "encode_boolean",
    "encode_date",
    "encode_number",
    "encode_time",
]
