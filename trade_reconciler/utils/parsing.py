import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from dateutil.parser import parse as dateutil_parse

_num_re = re.compile(r"([+-]?[0-9]*\.?[0-9]+(?:[eE][+-]?[0-9]+)?)")
_32nds_re = re.compile(r"^([+-]?\d+)'(\d{1,3})$")

_EMPTY = ("", "-", "--", "null", "None", "N/A", "nan", "NaN")


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:  # NaN from pandas
        return True
    return str(value).strip() in _EMPTY


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse broker-formatted numbers into Decimal.

    Handles "1,234.50", "(12.5)", "86855.7 USDT", "$1.25" and
    treasury-style 32nds ("123'16" -> 123.5). Returns None when the value
    is blank or not numeric.
    """
    if isinstance(value, Decimal):
        return None if value.is_nan() else value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value:
            return None
        return Decimal(str(value))
    if is_blank(value):
        return None

    v = str(value).strip().replace(",", "").replace("$", "")

    m = _32nds_re.match(v)
    if m:
        whole, frac = m.groups()
        sign = -1 if whole.startswith("-") else 1
        return Decimal(whole) + sign * Decimal(int(frac)) / Decimal(32)

    if v.startswith("(") and v.endswith(")"):
        v = "-" + v[1:-1]

    try:
        return Decimal(v)
    except InvalidOperation:
        pass

    # Keep only the first numeric portion (trailing currency / unit)
    m = _num_re.search(v)
    if not m:
        return None
    try:
        return Decimal(m.group(1))
    except InvalidOperation:
        return None


_DATETIME_FORMATS = [
    "%m/%d/%Y %H:%M:%S",  # 12/12/2025 16:19:06
    "%m/%d/%Y, %I:%M %p",  # 10/13/2025, 01:55 PM
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",  # ISO without Z
    "%Y-%m-%dT%H:%M:%S.%f",  # ISO with ms
]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse common broker timestamps and return a timezone-aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif is_blank(value):
        return None
    else:
        s = str(value).strip()
        dt = None
        for f in _DATETIME_FORMATS:
            try:
                dt = datetime.strptime(s, f)
                break
            except ValueError:
                continue
        if dt is None:
            try:
                dt = dateutil_parse(s)
            except (ValueError, OverflowError):
                return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
