import unittest
from datetime import date, datetime
from decimal import Decimal

from fakes import FakeDatabase, FakeStore

from spendwise.core.errors import ValidationError
from spendwise.services.reports import (
    build_day_buckets,
    build_month_buckets,
    build_week_buckets,
    category_summary,
    daily_summary,
    invalidate_user_reports,
    list_items,
    monthly_summary,
    normalize_paging,
    period_summary,
    resolve_period,
    shift_months,
    total_by_category,
    weekly_summary,
)


class PeriodHelperTests(unittest.TestCase):
    def test_shift_months_crosses_year_boundaries(self):
        self.assertEqual(shift_months(date(2024, 1, 31), -1), date(2023, 12, 1))
        self.assertEqual(shift_months(date(2024, 11, 15), 2), date(2025, 1, 1))
        self.assertEqual(shift_months(date(2024, 3, 9), 0), date(2024, 3, 1))

    def test_resolve_period_counts_current_month(self):
        today = date(2024, 5, 20)
        self.assertEqual(resolve_period("thisMonth", today), (date(2024, 5, 1), today))
        self.assertEqual(resolve_period("last3Months", today), (date(2024, 3, 1), today))
        self.assertEqual(resolve_period("last12Months", today), (date(2023, 6, 1), today))

    def test_resolve_period_rejects_unknown_names(self):
        with self.assertRaises(ValidationError):
            resolve_period("lastDecade", date(2024, 5, 20))

    def test_normalize_paging(self):
        self.assertEqual(normalize_paging(None, None), (1, 10, 0))
        self.assertEqual(normalize_paging(-3, 0), (1, 10, 0))
        self.assertEqual(normalize_paging(3, 20), (3, 20, 40))
        self.assertEqual(normalize_paging(2, 5000), (2, 100, 100))


class BucketTests(unittest.TestCase):
    def test_month_buckets_are_zero_filled_and_keyed_by_year(self):
        totals = {
            date(2023, 2, 3): Decimal("99"),
            date(2024, 2, 10): Decimal("5"),
            date(2024, 2, 20): Decimal("7.5"),
        }
        buckets = build_month_buckets(date(2024, 3, 31), 2, totals)
        self.assertEqual(
            buckets,
            [
                {"month": "Feb", "year": 2024, "total_expenses": 12.5},
                {"month": "Mar", "year": 2024, "total_expenses": 0.0},
            ],
        )

    def test_week_buckets_end_on_anchor(self):
        totals = {date(2024, 3, 1): Decimal("4"), date(2024, 3, 14): Decimal("6")}
        buckets = build_week_buckets(date(2024, 3, 14), 2, totals)
        self.assertEqual(
            buckets,
            [
                {"week": 1, "from": "2024-03-01", "to": "2024-03-07", "total_expenses": 4.0},
                {"week": 2, "from": "2024-03-08", "to": "2024-03-14", "total_expenses": 6.0},
            ],
        )

    def test_day_buckets_cover_every_day(self):
        buckets = build_day_buckets(date(2024, 2, 28), date(2024, 3, 1), {date(2024, 2, 29): Decimal("3")})
        self.assertEqual(
            buckets,
            [
                {"date": "2024-02-28", "total_expenses": 0.0},
                {"date": "2024-02-29", "total_expenses": 3.0},
                {"date": "2024-03-01", "total_expenses": 0.0},
            ],
        )


class SummaryTests(unittest.TestCase):
    def setUp(self):
        self.store = FakeStore()
        self.db = FakeDatabase(self.store)
        self.user_id = self.store.add_user()
        self.store.add_item(self.user_id, "Food", 11, date(2024, 1, 5))
        self.store.add_item(self.user_id, "Food", 20, date(2024, 2, 10))
        self.store.add_item(self.user_id, "Food", 30, datetime(2024, 2, 20, 18, 45))
        self.store.add_item(self.user_id, "Income", 500, date(2024, 2, 21))
        invalidate_user_reports(self.user_id)

    def tearDown(self):
        invalidate_user_reports(self.user_id)

    def test_monthly_summary_excludes_income_and_old_months(self):
        result = self.db.run(monthly_summary, self.user_id, 2, date(2024, 3, 15))
        self.assertEqual(
            result,
            [
                {"month": "Feb", "year": 2024, "total_expenses": 50.0},
                {"month": "Mar", "year": 2024, "total_expenses": 0.0},
            ],
        )

    def test_monthly_summary_is_cached_until_invalidated(self):
        first = self.db.run(monthly_summary, self.user_id, 2, date(2024, 3, 15))
        self.store.add_item(self.user_id, "Food", 8, date(2024, 3, 1))

        self.assertEqual(self.db.run(monthly_summary, self.user_id, 2, date(2024, 3, 15)), first)

        invalidate_user_reports(self.user_id)
        refreshed = self.db.run(monthly_summary, self.user_id, 2, date(2024, 3, 15))
        self.assertEqual(refreshed[1]["total_expenses"], 8.0)

    def test_weekly_summary(self):
        result = self.db.run(weekly_summary, self.user_id, 2, date(2024, 2, 21))
        self.assertEqual([b["total_expenses"] for b in result], [20.0, 30.0])
        self.assertEqual(result[-1]["to"], "2024-02-21")

    def test_daily_summary_validates_range(self):
        with self.assertRaises(ValidationError):
            self.db.run(daily_summary, self.user_id, "2024-02-10", None)
        with self.assertRaises(ValidationError):
            self.db.run(daily_summary, self.user_id, "2024-02-10", "2024-02-01")
        with self.assertRaises(ValidationError):
            self.db.run(daily_summary, self.user_id, "2023-01-01", "2024-02-01")

        result = self.db.run(daily_summary, self.user_id, "2024-02-19", "2024-02-21")
        self.assertEqual([b["total_expenses"] for b in result], [0.0, 30.0, 0.0])

    def test_period_summary_leaves_income_out_of_expenses(self):
        this_month = self.db.run(period_summary, self.user_id, period="thisMonth", today=date(2024, 2, 25))
        self.assertEqual(this_month, {"totalExpenses": 50.0, "totalCount": 3})

        quarter = self.db.run(period_summary, self.user_id, period="last3Months", today=date(2024, 2, 25))
        self.assertEqual(quarter, {"totalExpenses": 61.0, "totalCount": 4})

        ranged = self.db.run(period_summary, self.user_id, "Food", "2024-02-01", "2024-02-10")
        self.assertEqual(ranged, {"totalExpenses": 20.0, "totalCount": 1})

    def test_category_summary_is_alphabetical(self):
        self.store.add_item(self.user_id, "Clothes", 7, date(2024, 2, 1))

        result = self.db.run(category_summary, self.user_id)

        self.assertEqual(
            result,
            [
                {"section": "Clothes", "total_expenses": 7.0},
                {"section": "Food", "total_expenses": 61.0},
                {"section": "Income", "total_expenses": 500.0},
            ],
        )

    def test_total_by_category(self):
        self.assertEqual(
            self.db.run(total_by_category, self.user_id, "Food"), {"category": "Food", "totalSpent": 61.0}
        )
        self.assertEqual(self.db.run(total_by_category, self.user_id, "Rent")["totalSpent"], 0.0)
        with self.assertRaises(ValidationError):
            self.db.run(total_by_category, self.user_id, "")

    def test_list_items_pages_newest_first(self):
        rows, total = self.db.run(list_items, self.user_id, None, None, None, 1, 2)
        self.assertEqual(total, 4)
        self.assertEqual([r["section"] for r in rows], ["Income", "Food"])

        rows, total = self.db.run(list_items, self.user_id, "Food", "2024-01-01", "2024-02-10", -1, 0)
        self.assertEqual(total, 2)
        self.assertEqual([r["value"] for r in rows], [Decimal(20), Decimal(11)])
        count_params = self.db.cursors[-1].calls[0][1]
        self.assertEqual(count_params[-1], date(2024, 2, 11))
        self.assertEqual(self.db.cursors[-1].calls[1][1][-2:], [10, 0])


if __name__ == "__main__":
    unittest.main()
