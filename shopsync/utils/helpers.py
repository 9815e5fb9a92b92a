"""
Helper utilities
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional, Tuple, Union
import hashlib
import json

from dateutil import parser as date_parser

from shopsync.utils.errors import ValidationError

Number = Union[int, float, str, Decimal]


def calculate_date_range(days: int = 30) -> Tuple[datetime, datetime]:
    """Calculate date range for a sync window"""
    end_date = datetime.utcnow()
    start_date = end_date - timedelta(days=days)
    return start_date, end_date


def hash_data(data: Any) -> str:
    """Create hash of data for caching/deduplication"""
    data_str = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(data_str.encode()).hexdigest()


def to_minor_units(amount: Optional[Number], divisor: int = 1) -> int:
    """
    Convert a major-unit amount ("79.99", 79.99, Decimal) to integer minor units (7999).

    ``divisor`` handles APIs that already send scaled integers, e.g. Etsy's
    ``{"amount": 7999, "divisor": 100}``. Rounds half-up to the nearest cent.
    """
    if amount is None or amount == "":
        return 0
    try:
        value = Decimal(str(amount)) / Decimal(divisor)
    except (InvalidOperation, ZeroDivisionError):
        raise ValidationError(f"Invalid monetary amount: {amount!r}")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage_of(amount: int, rate: str) -> int:
    """Fee of ``rate`` (a decimal string such as "0.065") on a minor-unit amount, half-up."""
    return int((Decimal(amount) * Decimal(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def divide_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up. Returns 0 when denominator is 0."""
    if denominator == 0:
        return 0
    return int((Decimal(numerator) / Decimal(denominator)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_datetime(val: Any) -> Optional[datetime]:
    """Parse datetime from ISO string, epoch seconds, or return datetime as-is (naive UTC)."""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        parsed = val
    elif isinstance(val, (int, float)):
        return datetime.fromtimestamp(val, tz=timezone.utc).replace(tzinfo=None)
    else:
        try:
            parsed = date_parser.parse(str(val))
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
