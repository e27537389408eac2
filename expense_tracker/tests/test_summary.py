import tempfile
import unittest
from datetime import date
from decimal import Decimal
from pathlib import Path

from expense_tracker.database import connect_sqlite
from expense_tracker.records import ExpenseStore
from expense_tracker.summary import build_monthly_summary, month_bounds, summarize_expenses


def expense(amount: str, currency: str, category: str, subcategory: str, owner: str) -> dict:
    return {
        "amount": Decimal(amount),
        "currency": currency,
        "category": category,
        "subcategory": subcategory,
        "owner": owner,
    }


class MonthBoundsTests(unittest.TestCase):
    def test_leap_february(self) -> None:
        self.assertEqual(
            month_bounds(date(2024, 2, 10)),
            (date(2024, 2, 1), date(2024, 2, 29)),
        )

    def test_december(self) -> None:
        self.assertEqual(
            month_bounds(date(2023, 12, 31)),
            (date(2023, 12, 1), date(2023, 12, 31)),
        )


class SummarizeExpensesTests(unittest.TestCase):
    def test_splits_totals_by_currency_and_group(self) -> None:
        expenses = [
            expense("50", "PEN", "Casa", "Servicios", "Alvaro"),
            expense("20.50", "PEN", "Casa", "Rappi", "Maryam"),
            expense("10", "USD", "Auto", "Gasolina", "Alvaro"),
            expense("5", "USD", "Casa", "Servicios", "Maryam"),
        ]

        summary = summarize_expenses(expenses)

        self.assertEqual(summary.total_pen, Decimal("70.50"))
        self.assertEqual(summary.total_usd, Decimal("15"))
        self.assertEqual(
            summary.by_category,
            {
                "Casa": {"PEN": Decimal("70.50"), "USD": Decimal("5")},
                "Auto": {"PEN": Decimal("0"), "USD": Decimal("10")},
            },
        )
        self.assertEqual(
            summary.by_subcategory["Servicios"],
            {"PEN": Decimal("50"), "USD": Decimal("5")},
        )
        self.assertEqual(
            summary.by_owner["Maryam"],
            {"PEN": Decimal("20.50"), "USD": Decimal("5")},
        )

    def test_groupings_sum_back_to_grand_totals(self) -> None:
        expenses = [
            expense("12.30", "PEN", "Casa", "Servicios", "Alvaro"),
            expense("7.70", "PEN", "Arya", "Ropa", "Maryam"),
            expense("99.99", "USD", "Familia", "Viajes", "Alvaro"),
        ]

        summary = summarize_expenses(expenses)

        for grouping in (summary.by_category, summary.by_subcategory, summary.by_owner):
            self.assertEqual(sum(t["PEN"] for t in grouping.values()), summary.total_pen)
            self.assertEqual(sum(t["USD"] for t in grouping.values()), summary.total_usd)

    def test_empty_input_has_no_buckets(self) -> None:
        summary = summarize_expenses([])

        self.assertEqual(summary.total_pen, Decimal("0"))
        self.assertEqual(summary.total_usd, Decimal("0"))
        self.assertEqual(summary.by_category, {})
        self.assertEqual(summary.by_subcategory, {})
        self.assertEqual(summary.by_owner, {})

    def test_float_amounts_are_summed_as_decimals(self) -> None:
        rows = [
            {"amount": 0.1, "currency": "PEN", "category": "Casa", "subcategory": "A", "owner": "X"},
            {"amount": 0.2, "currency": "PEN", "category": "Casa", "subcategory": "A", "owner": "X"},
        ]

        summary = summarize_expenses(rows)

        self.assertEqual(summary.total_pen, Decimal("0.3"))


class MonthlySummaryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.adapter = connect_sqlite(Path(self.tmpdir.name) / "expenses.db")

    def tearDown(self) -> None:
        self.adapter.close()
        self.tmpdir.cleanup()

    def test_only_current_month_is_included(self) -> None:
        store = ExpenseStore(self.adapter)
        base = {"category": "Casa", "subcategory": "Servicios", "owner": "Alvaro"}
        store.create({**base, "amount": "10", "currency": "PEN", "date": "2024-06-01"})
        store.create({**base, "amount": "20", "currency": "PEN", "date": "2024-06-30"})
        store.create({**base, "amount": "7", "currency": "USD", "date": "2024-06-15"})
        store.create({**base, "amount": "500", "currency": "PEN", "date": "2024-05-31"})
        store.create({**base, "amount": "600", "currency": "USD", "date": "2024-07-01"})

        summary = build_monthly_summary(self.adapter, today=date(2024, 6, 18))

        self.assertEqual(summary.total_pen, Decimal("30"))
        self.assertEqual(summary.total_usd, Decimal("7"))
        self.assertEqual(list(summary.by_owner), ["Alvaro"])


if __name__ == "__main__":
    unittest.main()
