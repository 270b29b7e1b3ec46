import unittest
from datetime import date
from decimal import Decimal

from finance_tracker.budget_engine import OVERALL, SAFE, Budget, Transaction
from finance_tracker.export import transactions_to_csv
from finance_tracker.period import resolve_period
from finance_tracker.summary import compose_monthly_summary

JUNE_2024 = resolve_period(2024, 6, date(2024, 6, 30))


class MonthlySummaryTests(unittest.TestCase):
    def test_zero_income_has_zero_savings_percentage(self) -> None:
        transactions = [
            Transaction(amount=Decimal("40"), type="EXPENSE", date=date(2024, 6, 3)),
        ]

        summary = compose_monthly_summary(JUNE_2024, transactions, None, [])

        self.assertEqual(summary.total_income, Decimal("0"))
        self.assertEqual(summary.total_expenses, Decimal("40"))
        self.assertEqual(summary.savings, Decimal("-40"))
        self.assertEqual(summary.savings_percentage, Decimal("0"))
        self.assertEqual(summary.budget_status.overall.status, SAFE)

    def test_totals_savings_and_breakdown(self) -> None:
        transactions = [
            Transaction(amount=Decimal("1000"), type="INCOME", date=date(2024, 6, 1)),
            Transaction(amount=Decimal("300"), type="EXPENSE", date=date(2024, 6, 2), category_id=1, category_name="Rent"),
            Transaction(amount=Decimal("100"), type="EXPENSE", date=date(2024, 6, 5), category_id=2, category_name="Food"),
            Transaction(amount=Decimal("50"), type="EXPENSE", date=date(2024, 6, 9), category_id=2, category_name="Food"),
            Transaction(amount=Decimal("50"), type="EXPENSE", date=date(2024, 6, 9)),
        ]
        overall = Budget(
            id=1,
            user_id=1,
            year=2024,
            month=6,
            scope=OVERALL,
            monthly_limit=Decimal("1000"),
        )

        summary = compose_monthly_summary(JUNE_2024, transactions, overall, [])

        self.assertEqual(summary.total_income, Decimal("1000"))
        self.assertEqual(summary.total_expenses, Decimal("500"))
        self.assertEqual(summary.savings, Decimal("500"))
        self.assertEqual(summary.savings_percentage, Decimal("50"))
        self.assertEqual(
            [(item.category_name, item.amount, item.percentage) for item in summary.category_expenses],
            [("Rent", Decimal("300"), Decimal("60")), ("Food", Decimal("150"), Decimal("30"))],
        )
        # The embedded report nets income against expenses.
        self.assertEqual(summary.budget_status.overall.spent, Decimal("0"))

    def test_breakdown_percentage_is_zero_without_expenses(self) -> None:
        transactions = [
            Transaction(amount=Decimal("0"), type="EXPENSE", date=date(2024, 6, 2), category_id=1),
        ]

        summary = compose_monthly_summary(JUNE_2024, transactions, None, [])

        self.assertEqual(summary.category_expenses[0].percentage, Decimal("0"))


class ExportTests(unittest.TestCase):
    def test_csv_has_header_and_rows(self) -> None:
        body = transactions_to_csv(
            [
                Transaction(
                    id=4,
                    amount=Decimal("12.5"),
                    type="EXPENSE",
                    date=date(2024, 6, 2),
                    note="Lunch",
                    category_name="Food",
                ),
                Transaction(id=5, amount=None, type="INCOME", date=None),
            ]
        )

        lines = body.splitlines()
        self.assertEqual(lines[0], "ID,Amount,Type,Date,Note,Category")
        self.assertEqual(lines[1], "4,12.50,EXPENSE,2024-06-02,Lunch,Food")
        self.assertEqual(lines[2], "5,0.00,INCOME,,,")


if __name__ == "__main__":
    unittest.main()
