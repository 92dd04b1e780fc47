"""
Record filter for POS transaction lists.

Applies the date range and optional facet filters (account, concept,
free text, day of month) to a record list and returns the matches
newest first. Table views and PDF reports both rely on that ordering.
"""

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from models import FilterState, TransactionRecord

logger = logging.getLogger(__name__)


def _search_fields(record: TransactionRecord) -> Tuple[str, ...]:
    return (
        record.first_name,
        record.last_name,
        record.document_number,
        record.payment_reference,
        record.concept,
    )


def matches_date_range(record: TransactionRecord, date_range: Optional[Tuple[date, date]]) -> bool:
    """
    Check the inclusive day-granularity date range.

    Records without a parsable timestamp never match a bounded range.
    """
    if date_range is None:
        return True
    stamp = record.timestamp
    if stamp is None:
        return False
    start, end = date_range
    return start <= stamp.date() <= end


def matches_day_of_month(record: TransactionRecord, day_of_month: Optional[int]) -> bool:
    if day_of_month is None:
        return True
    stamp = record.timestamp
    if stamp is None:
        return False
    return stamp.day == int(day_of_month)


def matches_account(record: TransactionRecord, account: Optional[str]) -> bool:
    if not account:
        return True
    return record.account == account


def matches_concept(record: TransactionRecord, concept: Optional[str]) -> bool:
    if not concept:
        return True
    return record.concept == concept


def matches_free_text(record: TransactionRecord, free_text: Optional[str]) -> bool:
    """Case-insensitive substring match against any searchable field."""
    if not free_text:
        return True
    needle = free_text.lower()
    return any(needle in value.lower() for value in _search_fields(record) if value)


def matches(record: TransactionRecord, state: FilterState) -> bool:
    """Return True when the record passes every active facet."""
    return (
        matches_date_range(record, state.date_range)
        and matches_day_of_month(record, state.day_of_month)
        and matches_account(record, state.account)
        and matches_concept(record, state.concept)
        and matches_free_text(record, state.free_text)
    )


def iter_matching(records: Iterable[TransactionRecord], state: FilterState) -> Iterator[TransactionRecord]:
    """Lazily yield records that pass the filter state (unordered)."""
    for record in records:
        if matches(record, state):
            yield record


def _sort_key(record: TransactionRecord) -> Tuple[int, datetime]:
    stamp = record.timestamp
    # undated records go last when sorting descending
    if stamp is None:
        return (0, datetime.min)
    return (1, stamp)


def sort_newest_first(records: Iterable[TransactionRecord]) -> List[TransactionRecord]:
    return sorted(records, key=_sort_key, reverse=True)


def filter_records(records: Iterable[TransactionRecord], state: FilterState) -> List[TransactionRecord]:
    """
    Filter records and order them newest first.

    Args:
        records: Raw record list as fetched
        state: Current filter selection

    Returns:
        Matching records sorted by timestamp descending
    """
    records = list(records)
    result = sort_newest_first(iter_matching(records, state))
    logger.debug(
        "Filtered %d of %d records (facets: %s)",
        len(result), len(records), ", ".join(sorted(state.active_facets)) or "none"
    )
    return result


def concept_options(records: Iterable[TransactionRecord]) -> List[str]:
    """Distinct non-empty concepts, sorted, for the concept facet choices."""
    return sorted({record.concept for record in records if record.concept})


def month_range(year: int, month: int) -> Tuple[date, date]:
    """First and last day of a calendar month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def date_presets(today: Optional[date] = None) -> Dict[str, Tuple[date, date]]:
    """
    Quick date ranges offered next to the range picker.

    Args:
        today: Reference day (defaults to date.today())

    Returns:
        Mapping of preset label to inclusive (start, end)
    """
    today = today or date.today()
    yesterday = today - timedelta(days=1)
    last_month_end = today.replace(day=1) - timedelta(days=1)
    return {
        "Hoy": (today, today),
        "Ayer": (yesterday, yesterday),
        "Este mes": month_range(today.year, today.month),
        "Mes pasado": month_range(last_month_end.year, last_month_end.month),
        "Este año": (date(today.year, 1, 1), date(today.year, 12, 31)),
    }
