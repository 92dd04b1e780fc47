"""
Currency and date formatting helpers.

Amounts are Colombian pesos rendered with es-CO grouping ("$ 1.234.567").
Timestamps arrive from the backend as ISO strings (with or without a
trailing "Z"), plain dates, or epoch milliseconds.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

SPANISH_MONTHS = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

DATE_FORMAT = "%d/%m/%Y"

TimestampInput = Union[str, int, float, date, datetime, None]


def to_amount(value: Any) -> float:
    """
    Coerce an API amount to float, treating missing or invalid values as 0.

    Args:
        value: Raw amount (number, numeric string, None)

    Returns:
        Float amount; 0.0 for None, blanks, NaN and non-numeric input
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(amount) or math.isinf(amount):
        return 0.0
    return amount


def format_currency(amount: Any, decimals: int = 0) -> str:
    """
    Format an amount as COP with es-CO separators.

    Args:
        amount: Amount to format (coerced with to_amount)
        decimals: Fraction digits to show

    Returns:
        String like "$ 50.000" or "-$ 1.250,50"
    """
    value = to_amount(amount)
    sign = "-" if value < 0 else ""
    grouped = f"{abs(value):,.{decimals}f}"
    # swap US separators for es-CO ones
    grouped = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}$ {grouped}"


def format_percentage(percentage: float) -> str:
    """Format a percentage with one decimal, e.g. "37.5%"."""
    return f"{to_amount(percentage):.1f}%"


def _resolve_zone(tz: Union[str, tzinfo, None]) -> Optional[tzinfo]:
    if tz is None or isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown timezone '%s', keeping timestamps as received", tz)
        return None


def parse_timestamp(value: TimestampInput, tz: Union[str, tzinfo, None] = None) -> Optional[datetime]:
    """
    Parse a backend timestamp into a naive datetime.

    Aware timestamps are converted to ``tz`` (when given) before the
    timezone is dropped, so day-level comparisons happen in local time.

    Args:
        value: ISO string, date, datetime or epoch milliseconds
        tz: Optional display timezone (name or tzinfo)

    Returns:
        Naive datetime, or None when the value is absent or unparsable
    """
    if value is None or isinstance(value, bool):
        return None

    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        zone = _resolve_zone(tz)
        if zone is not None:
            parsed = parsed.astimezone(zone)
        parsed = parsed.replace(tzinfo=None)
    return parsed


def format_date(value: TimestampInput, fmt: str = DATE_FORMAT, default: str = "") -> str:
    """
    Format a timestamp with strftime, falling back to ``default`` when unparsable.
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        return default
    return parsed.strftime(fmt)


def format_long_date(value: TimestampInput) -> str:
    """
    Format a timestamp as "5 de marzo de 2024, 14:30".

    Args:
        value: Timestamp to format; None means now

    Returns:
        Spanish long-form date with time
    """
    parsed = parse_timestamp(value) if value is not None else datetime.now()
    if parsed is None:
        parsed = datetime.now()
    month = SPANISH_MONTHS[parsed.month - 1]
    return f"{parsed.day} de {month} de {parsed.year}, {parsed:%H:%M}"


def format_month(year: int, month: int) -> str:
    """Format a month as "marzo de 2024"."""
    return f"{SPANISH_MONTHS[month - 1]} de {year}"


def format_period(start: TimestampInput, end: TimestampInput) -> str:
    """
    Format a reporting period.

    Returns a single date when start and end fall on the same day,
    otherwise "DD/MM/YYYY - DD/MM/YYYY".
    """
    start_str = format_date(start)
    end_str = format_date(end)
    if start_str == end_str:
        return start_str
    return f"{start_str} - {end_str}"
