from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from expense_tracker.database import DatabaseAdapter
from expense_tracker.records import Currency, ExpenseStore, coerce_decimal

ZERO = Decimal("0")


def empty_totals() -> dict[str, Decimal]:
    return {currency: ZERO for currency in Currency.values}


@dataclass
class ExpenseSummary:
    total_pen: Decimal = ZERO
    total_usd: Decimal = ZERO
    by_category: dict[str, dict[str, Decimal]] = field(default_factory=dict)
    by_subcategory: dict[str, dict[str, Decimal]] = field(default_factory=dict)
    by_owner: dict[str, dict[str, Decimal]] = field(default_factory=dict)


def month_bounds(today: date) -> tuple[date, date]:
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def summarize_expenses(expenses: Iterable[Mapping[str, Any]]) -> ExpenseSummary:
    """Fold expenses into per-currency totals by category, subcategory and owner.

    PEN and USD are never converted into each other. Rows in any other
    currency are ignored.
    """
    summary = ExpenseSummary()
    for expense in expenses:
        currency = expense["currency"]
        if currency not in Currency.values:
            continue
        amount = coerce_decimal(expense["amount"])

        if currency == "PEN":
            summary.total_pen += amount
        else:
            summary.total_usd += amount

        for buckets, key in (
            (summary.by_category, expense["category"]),
            (summary.by_subcategory, expense["subcategory"]),
            (summary.by_owner, expense["owner"]),
        ):
            totals = buckets.setdefault(key, empty_totals())
            totals[currency] += amount
    return summary


def build_monthly_summary(
    adapter: DatabaseAdapter, today: date | None = None
) -> ExpenseSummary:
    start_date, end_date = month_bounds(today or date.today())
    expenses = ExpenseStore(adapter).list_between(start_date, end_date)
    return summarize_expenses(expenses)
