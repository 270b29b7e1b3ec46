import unittest
from datetime import date

from finance_tracker.errors import InvalidPeriod
from finance_tracker.period import period_for_date, resolve_period


class PeriodResolverTests(unittest.TestCase):
    def test_explicit_month_range_is_inclusive(self) -> None:
        period = resolve_period(2024, 2, date(2030, 1, 1))

        self.assertEqual((period.year, period.month), (2024, 2))
        self.assertEqual(period.start_date, date(2024, 2, 1))
        self.assertEqual(period.end_date, date(2024, 2, 29))
        self.assertTrue(period.contains(date(2024, 2, 29)))
        self.assertFalse(period.contains(date(2024, 3, 1)))
        self.assertFalse(period.contains(None))

    def test_missing_part_defaults_both_to_today(self) -> None:
        today = date(2025, 11, 20)

        for year, month in [(None, None), (2023, None), (None, 4)]:
            with self.subTest(year=year, month=month):
                period = resolve_period(year, month, today)
                self.assertEqual((period.year, period.month), (2025, 11))
                self.assertEqual(period.end_date, date(2025, 11, 30))

    def test_month_out_of_range_raises(self) -> None:
        for month in (0, 13, -1):
            with self.subTest(month=month):
                with self.assertRaises(InvalidPeriod):
                    resolve_period(2024, month, date(2024, 1, 1))

    def test_december_rolls_to_year_end(self) -> None:
        period = period_for_date(date(2024, 12, 5))

        self.assertEqual(period.start_date, date(2024, 12, 1))
        self.assertEqual(period.end_date, date(2024, 12, 31))


if __name__ == "__main__":
    unittest.main()
