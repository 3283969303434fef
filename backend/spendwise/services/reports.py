import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable

from spendwise.core.config import settings
from spendwise.core.errors import ValidationError
from spendwise.db.schema import INCOME_SECTION
from spendwise.services.state import summary_cache

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
MAX_DAILY_RANGE_DAYS = 366

PERIOD_MONTHS = {
    "thisMonth": 1,
    "last3Months": 3,
    "last6Months": 6,
    "last12Months": 12,
}

MONTH_NAMES = [calendar.month_abbr[m] for m in range(1, 13)]


def invalidate_user_reports(user_id: int) -> None:
    summary_cache.invalidate_user(user_id)


def _cached(user_id: int, name: str, parts: tuple, compute: Callable[[], Any]) -> Any:
    key = summary_cache.user_key(user_id, name, *parts)
    cached = summary_cache.get(key)
    if cached is not None:
        return cached
    value = compute()
    summary_cache.set(key, value, settings.summary_cache_ttl)
    return value


def parse_day(value: str | None, field_name: str) -> date | None:
    if value is None or not str(value).strip():
        return None
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid {field_name}, expected YYYY-MM-DD")


def month_start(day: date) -> date:
    return day.replace(day=1)


def shift_months(day: date, months: int) -> date:
    """First day of the month ``months`` away from ``day``'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def normalize_paging(page: int | None, limit: int | None) -> tuple[int, int, int]:
    """Clamp listing parameters: page < 1 -> 1, limit < 1 -> default, limit capped."""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else DEFAULT_PAGE_SIZE
    limit = min(limit, MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def _item_filters(user_id: int, category: str | None, from_day: date | None, to_day: date | None):
    where = ["i.user_id=%s"]
    params: list[Any] = [user_id]
    if category and category != "All":
        where.append("i.section=%s")
        params.append(category)
    if from_day:
        where.append("i.date >= %s")
        params.append(from_day)
    if to_day:
        where.append("i.date < %s")
        params.append(to_day + timedelta(days=1))
    return " AND ".join(where), params


def list_items(
    cur,
    user_id: int,
    category: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list[dict[str, Any]], int]:
    """One page of ledger rows, newest first, with the section's icon metadata."""
    from_day = parse_day(from_date, "fromDate")
    to_day = parse_day(to_date, "toDate")
    page, limit, offset = normalize_paging(page, limit)
    where, params = _item_filters(user_id, category, from_day, to_day)

    cur.execute(f"SELECT COUNT(*) AS total FROM infodata i WHERE {where}", params)
    total = int((cur.fetchone() or {}).get("total") or 0)

    cur.execute(
        f"""
        SELECT i.id, i.title, i.value, i.date, i.section, i.target, i.payment_mode, i.notes, i.user_id,
               c.icon_name AS "iconName",
               c.icon_color AS "iconColor",
               c.icon_library AS "iconLibrary"
        FROM infodata i
        LEFT JOIN LATERAL (
            SELECT icon_name, icon_color, icon_library
            FROM categories
            WHERE label=i.section AND (user_id=i.user_id OR user_id IS NULL)
            ORDER BY user_id NULLS LAST
            LIMIT 1
        ) c ON true
        WHERE {where}
        ORDER BY i.date DESC, i.id DESC
        LIMIT %s OFFSET %s
        """,
        [*params, limit, offset],
    )
    return cur.fetchall(), total


def resolve_period(period: str, today: date) -> tuple[date, date]:
    months = PERIOD_MONTHS.get(period)
    if months is None:
        raise ValidationError(f"Unknown period, expected one of {', '.join(PERIOD_MONTHS)}")
    return shift_months(today, -(months - 1)), today


def period_summary(
    cur,
    user_id: int,
    category: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    period: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Total expense (Income excluded) and row count; a named period overrides the dates."""
    if period:
        from_day, to_day = resolve_period(period, today or date.today())
    else:
        from_day = parse_day(from_date, "fromDate")
        to_day = parse_day(to_date, "toDate")

    def compute() -> dict[str, Any]:
        where, params = _item_filters(user_id, category, from_day, to_day)
        cur.execute(
            f"""
            SELECT COALESCE(SUM(CASE WHEN i.section<>%s THEN i.value ELSE 0 END), 0) AS total_expenses,
                   COUNT(i.id) AS total_count
            FROM infodata i
            WHERE {where}
            """,
            [INCOME_SECTION, *params],
        )
        row = cur.fetchone() or {}
        return {
            "totalExpenses": float(row.get("total_expenses") or 0),
            "totalCount": int(row.get("total_count") or 0),
        }

    parts = (category or "All", from_day, to_day)
    return _cached(user_id, "summary", parts, compute)


def category_summary(cur, user_id: int) -> list[dict[str, Any]]:
    def compute() -> list[dict[str, Any]]:
        cur.execute(
            """
            SELECT section, COALESCE(SUM(value), 0) AS total_expenses
            FROM infodata
            WHERE user_id=%s
            GROUP BY section
            ORDER BY section ASC
            """,
            (user_id,),
        )
        return [
            {"section": row["section"], "total_expenses": float(row["total_expenses"] or 0)}
            for row in cur.fetchall()
        ]

    return _cached(user_id, "category-summary", (), compute)


def total_by_category(cur, user_id: int, category: str) -> dict[str, Any]:
    if not category:
        raise ValidationError("Category query parameter is required.")
    cur.execute(
        "SELECT COALESCE(SUM(value), 0) AS total_spent FROM infodata WHERE user_id=%s AND section=%s",
        (user_id, category),
    )
    row = cur.fetchone() or {}
    return {"category": category, "totalSpent": float(row.get("total_spent") or 0)}


def daily_expense_totals(cur, user_id: int, start: date, end: date) -> dict[date, Decimal]:
    cur.execute(
        """
        SELECT date::date AS day,
               SUM(CASE WHEN section<>%s THEN value ELSE 0 END) AS total_expenses
        FROM infodata
        WHERE user_id=%s AND date >= %s AND date < %s
        GROUP BY day
        ORDER BY day
        """,
        (INCOME_SECTION, user_id, start, end + timedelta(days=1)),
    )
    totals: dict[date, Decimal] = {}
    for row in cur.fetchall():
        day = row["day"]
        if isinstance(day, datetime):
            day = day.date()
        totals[day] = Decimal(row["total_expenses"] or 0)
    return totals


def build_month_buckets(anchor: date, months: int, totals: dict[date, Decimal]) -> list[dict[str, Any]]:
    """One bucket per calendar month ending with ``anchor``'s month, oldest first."""
    by_month: dict[tuple[int, int], Decimal] = {}
    for day, amount in totals.items():
        key = (day.year, day.month)
        by_month[key] = by_month.get(key, Decimal(0)) + amount

    buckets = []
    for offset in range(months - 1, -1, -1):
        first = shift_months(anchor, -offset)
        buckets.append(
            {
                "month": MONTH_NAMES[first.month - 1],
                "year": first.year,
                "total_expenses": float(by_month.get((first.year, first.month), 0)),
            }
        )
    return buckets


def build_week_buckets(anchor: date, weeks: int, totals: dict[date, Decimal]) -> list[dict[str, Any]]:
    """Seven-day windows ending on ``anchor``, numbered 1 (oldest) to ``weeks``."""
    buckets = []
    for index in range(weeks - 1, -1, -1):
        week_end = anchor - timedelta(days=7 * index)
        week_start = week_end - timedelta(days=6)
        total = Decimal(0)
        day = week_start
        while day <= week_end:
            total += totals.get(day, Decimal(0))
            day += timedelta(days=1)
        buckets.append(
            {
                "week": weeks - index,
                "from": week_start.isoformat(),
                "to": week_end.isoformat(),
                "total_expenses": float(total),
            }
        )
    return buckets


def build_day_buckets(start: date, end: date, totals: dict[date, Decimal]) -> list[dict[str, Any]]:
    buckets = []
    day = start
    while day <= end:
        buckets.append({"date": day.isoformat(), "total_expenses": float(totals.get(day, Decimal(0)))})
        day += timedelta(days=1)
    return buckets


def monthly_summary(cur, user_id: int, months: int, anchor: date | None = None) -> list[dict[str, Any]]:
    anchor = anchor or date.today()
    start = shift_months(anchor, -(months - 1))
    end = shift_months(anchor, 1) - timedelta(days=1)

    def compute() -> list[dict[str, Any]]:
        return build_month_buckets(anchor, months, daily_expense_totals(cur, user_id, start, end))

    return _cached(user_id, "monthly", (months, month_start(anchor)), compute)


def weekly_summary(cur, user_id: int, weeks: int, anchor: date | None = None) -> list[dict[str, Any]]:
    anchor = anchor or date.today()
    start = anchor - timedelta(days=7 * weeks - 1)

    def compute() -> list[dict[str, Any]]:
        return build_week_buckets(anchor, weeks, daily_expense_totals(cur, user_id, start, anchor))

    return _cached(user_id, "weekly", (weeks, anchor), compute)


def daily_summary(cur, user_id: int, start_date: str | None, end_date: str | None) -> list[dict[str, Any]]:
    if not start_date or not end_date:
        raise ValidationError("startDate and endDate are required for daily summary.")
    start = parse_day(start_date, "startDate")
    end = parse_day(end_date, "endDate")
    if end < start:
        raise ValidationError("endDate must not be before startDate.")
    if (end - start).days >= MAX_DAILY_RANGE_DAYS:
        raise ValidationError(f"Date range must not exceed {MAX_DAILY_RANGE_DAYS} days.")

    def compute() -> list[dict[str, Any]]:
        return build_day_buckets(start, end, daily_expense_totals(cur, user_id, start, end))

    return _cached(user_id, "daily", (start, end), compute)
