"""
Aggregation of POS income/expense records.

Summary cards and the month-level totals table both go through
``aggregate``; they differ only in the AggregationScope that says which
filter facets apply to each side.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

import pandas as pd

from exceptions import AggregationError
from formatting import to_amount
from models import (
    ALL_FACETS,
    CERTIFICATE_TYPES,
    FACET_ACCOUNT,
    FACET_CONCEPT,
    FACET_DATE,
    FACET_DAY,
    FACET_TEXT,
    AggregateResult,
    Certificate,
    FilterState,
    TransactionRecord,
)
from record_filter import iter_matching, month_range

logger = logging.getLogger(__name__)

MONTHLY_COLUMNS = ['year', 'month', 'period', 'income', 'expenses', 'net', 'margin']


@dataclass(frozen=True)
class AggregationScope:
    """
    Which filter facets an aggregation honours on each side.

    Attributes:
        name: Label used in logs
        income_facets: Facets applied to income records
        expense_facets: Facets applied to expense records
    """
    name: str
    income_facets: FrozenSet[str]
    expense_facets: FrozenSet[str]


# Concept and free text describe sales, so they never narrow expenses.
SUMMARY_SCOPE = AggregationScope(
    name="summary",
    income_facets=ALL_FACETS,
    expense_facets=frozenset({FACET_DATE, FACET_DAY, FACET_ACCOUNT}),
)

MONTH_SCOPE = AggregationScope(
    name="month",
    income_facets=frozenset({FACET_DATE, FACET_ACCOUNT}),
    expense_facets=frozenset({FACET_DATE, FACET_ACCOUNT}),
)

MONTH_SCOPE_WITH_TEXT = AggregationScope(
    name="month_with_text",
    income_facets=frozenset({FACET_DATE, FACET_ACCOUNT, FACET_CONCEPT, FACET_TEXT}),
    expense_facets=frozenset({FACET_DATE, FACET_ACCOUNT}),
)


def sum_amounts(records: Iterable[TransactionRecord]) -> float:
    """Sum record amounts, counting missing or NaN amounts as 0."""
    return float(sum(to_amount(record.amount) for record in records))


def compute_margin(total_income: float, balance: float) -> float:
    """
    Margin percentage of balance over income.

    Returns 0.0 when there is no income, never NaN or infinity.
    """
    if total_income == 0:
        return 0.0
    return balance / total_income * 100


def aggregate(
    incomes: Sequence[TransactionRecord],
    expenses: Sequence[TransactionRecord],
    state: FilterState,
    scope: AggregationScope = SUMMARY_SCOPE
) -> AggregateResult:
    """
    Compute totals for income and expense records under a scope.

    Args:
        incomes: Income records (unfiltered)
        expenses: Expense records (unfiltered)
        state: Current filter selection
        scope: Facets honoured on each side

    Returns:
        AggregateResult with totals, balance, margin and income count
    """
    income_matches = list(iter_matching(incomes, state.restricted_to(scope.income_facets)))
    expense_matches = list(iter_matching(expenses, state.restricted_to(scope.expense_facets)))

    total_income = sum_amounts(income_matches)
    total_expense = sum_amounts(expense_matches)
    balance = total_income - total_expense

    result = AggregateResult(
        total_income=total_income,
        total_expense=total_expense,
        balance=balance,
        margin_percent=compute_margin(total_income, balance),
        transaction_count=len(income_matches),
    )
    logger.debug(f"Aggregated scope '{scope.name}': {result}")
    return result


def month_scope(ignore_text_filters: bool = True) -> AggregationScope:
    """Scope for month-level totals; see aggregation.month_scope_ignores_text_filters."""
    return MONTH_SCOPE if ignore_text_filters else MONTH_SCOPE_WITH_TEXT


def month_state(state: FilterState, year: int, month: int, ignore_text_filters: bool = True) -> FilterState:
    """
    Re-target a filter state at a whole calendar month.

    With ignore_text_filters the concept and free-text facets are cleared too.

    Raises:
        AggregationError: If month is not 1-12
    """
    if not 1 <= month <= 12:
        raise AggregationError("Month must be between 1 and 12", details={"month": month})
    month_only = replace(state, date_range=month_range(year, month), day_of_month=None)
    if ignore_text_filters:
        return replace(month_only, concept=None, free_text=None)
    return month_only


def aggregate_month(
    incomes: Sequence[TransactionRecord],
    expenses: Sequence[TransactionRecord],
    state: FilterState,
    year: int,
    month: int,
    ignore_text_filters: bool = True
) -> AggregateResult:
    """Month-level totals for year/month, honouring the account facet."""
    return aggregate(
        incomes,
        expenses,
        month_state(state, year, month, ignore_text_filters),
        scope=month_scope(ignore_text_filters),
    )


def monthly_breakdown(
    incomes: Iterable[TransactionRecord],
    expenses: Iterable[TransactionRecord],
    year: int,
    account: Optional[str] = None
) -> pd.DataFrame:
    """
    Per-month income, expense, net and margin for one year.

    Args:
        incomes: Income records
        expenses: Expense records
        year: Calendar year to report
        account: Optional account filter

    Returns:
        DataFrame with columns: year, month, period, income, expenses, net, margin
        (only months with activity, ascending)
    """
    rows: List[Dict] = []
    for column, records in (('income', incomes), ('expenses', expenses)):
        for record in records:
            stamp = record.timestamp
            if stamp is None or stamp.year != year:
                continue
            if account and record.account != account:
                continue
            rows.append({'month': stamp.month, 'kind': column, 'amount': to_amount(record.amount)})

    if not rows:
        return pd.DataFrame(columns=MONTHLY_COLUMNS)

    df = pd.DataFrame(rows)
    pivot = df.pivot_table(
        index='month', columns='kind', values='amount', aggfunc='sum', fill_value=0.0
    ).rename_axis(columns=None)
    for column in ('income', 'expenses'):
        if column not in pivot.columns:
            pivot[column] = 0.0

    result = pivot.reset_index()
    result['year'] = year
    result['net'] = result['income'] - result['expenses']
    result['margin'] = [
        compute_margin(income, net) for income, net in zip(result['income'], result['net'])
    ]
    result['period'] = result['month'].map(lambda m: f"{year}-{int(m):02d}")

    result = result.sort_values('month').reset_index(drop=True)[MONTHLY_COLUMNS]
    logger.info(f"Generated monthly breakdown for {year} with {len(result)} months")
    return result


def count_certificates_by_type(
    certificates: Iterable[Certificate],
    types: Sequence[str] = CERTIFICATE_TYPES,
    seller: Optional[str] = None
) -> Dict[str, int]:
    """
    Count certificates per type plus a grand total.

    A certificate listing several types counts once for each of them.

    Args:
        certificates: Certificates to count
        types: Types to report, in display order
        seller: When given, only that seller's certificates count

    Returns:
        Mapping of type to count, with "Total" last
    """
    selected = [c for c in certificates if seller is None or c.seller == seller]
    counts = {cert_type: 0 for cert_type in types}
    for certificate in selected:
        for cert_type in types:
            if any(cert_type in value for value in certificate.types):
                counts[cert_type] += 1
    counts["Total"] = len(selected)
    return counts
