"""Multi-statement ledger mutations.

Every function here takes an open cursor and expects to run inside one
transaction (``Database.run``); raising anywhere rolls the whole unit back.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from spendwise.core.errors import NotFoundError, ValidationError
from spendwise.db.schema import INCOME_SECTION

logger = logging.getLogger(__name__)

ITEM_COLUMNS = "id, title, value, date, section, target, payment_mode, notes, user_id"

BALANCE_ADDITION_TITLE = "Balance Addition"
BALANCE_ADDITION_MODE = "Digital"


def to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a valid number.")
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a valid number.")
    return amount


def parse_item_datetime(value: Any) -> datetime:
    """Accept ``YYYY-MM-DD``, ``YYYY-MM-DD HH:MM:SS`` or ISO 8601; store naive UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value or "").strip()
        if not raw:
            raise ValidationError("date required")
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("Invalid date format, expected YYYY-MM-DD or YYYY-MM-DD HH:MM:SS")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0)


def _find_category(cur, user_id: int, label: str, lock: bool = False) -> dict[str, Any] | None:
    """The user's own row for ``label`` if any, else the shared default row."""
    sql = """
        SELECT id, user_id, origin, target
        FROM categories
        WHERE label=%s AND (user_id=%s OR user_id IS NULL)
        ORDER BY user_id NULLS LAST
        LIMIT 1
    """
    if lock:
        sql += " FOR UPDATE"
    cur.execute(sql, (label, user_id))
    return cur.fetchone()


def section_target(cur, user_id: int, section: str) -> Decimal:
    """Current target of a section: the user's category row, then the ledger cache, then 0."""
    category = _find_category(cur, user_id, section)
    if category and category["user_id"] is not None:
        return Decimal(category["target"] or 0)
    cur.execute(
        """
        SELECT target
        FROM infodata
        WHERE user_id=%s AND section=%s AND target IS NOT NULL
        ORDER BY id DESC
        LIMIT 1
        """,
        (user_id, section),
    )
    cached = cur.fetchone()
    if cached:
        return Decimal(cached["target"])
    if category:
        return Decimal(category["target"] or 0)
    return Decimal(0)


def set_section_target(cur, user_id: int, section: str, target: Any) -> tuple[dict[str, Any] | None, int]:
    """Write a section's target to its category, then refresh the copy on every ledger row.

    A shared default category gets a per-user row so one user's target never
    leaks to another; a concurrent copy of the same row is updated in place.
    Sections with no category row only refresh the ledger
    copy. Returns the category row found (or None) and the number of ledger
    rows refreshed.
    """
    target = to_decimal(target, "Target")
    category = _find_category(cur, user_id, section, lock=True)
    if category is not None:
        if category["user_id"] is None:
            cur.execute(
                """
                INSERT INTO categories (user_id, label, origin, icon_name, icon_color, icon_library, target)
                SELECT %s, label, origin, icon_name, icon_color, icon_library, %s
                FROM categories
                WHERE id=%s
                ON CONFLICT ((COALESCE(user_id, 0)), label) DO UPDATE SET target=EXCLUDED.target
                """,
                (user_id, target, category["id"]),
            )
        else:
            cur.execute("UPDATE categories SET target=%s WHERE id=%s", (target, category["id"]))

    cur.execute(
        "UPDATE infodata SET target=%s WHERE user_id=%s AND section=%s",
        (target, user_id, section),
    )
    refreshed = cur.rowcount
    logger.info("Target of section %r for user %s set to %s (%d rows)", section, user_id, target, refreshed)
    return category, refreshed


def create_item(cur, user_id: int, item: dict[str, Any]) -> int:
    section = item["section"]
    if item.get("target") is not None:
        target = to_decimal(item["target"], "Target")
        set_section_target(cur, user_id, section, target)
    else:
        target = section_target(cur, user_id, section)

    cur.execute(
        """
        INSERT INTO infodata (title, value, date, section, target, payment_mode, notes, user_id)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            item["title"],
            to_decimal(item["value"], "Value"),
            parse_item_datetime(item["date"]),
            section,
            target,
            item["payment_mode"],
            item.get("notes"),
            user_id,
        ),
    )
    item_id = cur.fetchone()["id"]
    logger.info("Added item %s for user %s in section %r", item_id, user_id, section)
    return item_id


def delete_item(cur, user_id: int, item_id: int) -> None:
    cur.execute("DELETE FROM infodata WHERE id=%s AND user_id=%s", (item_id, user_id))
    if cur.rowcount == 0:
        raise NotFoundError("Item not found.")
    logger.info("Deleted item %s for user %s", item_id, user_id)


def delete_category_cascade(cur, user_id: int, category_id: int) -> tuple[str, int]:
    """Delete a custom category and every ledger row filed under its label.

    Returns the label and the number of ledger rows removed.
    """
    cur.execute(
        """
        SELECT label
        FROM categories
        WHERE id=%s AND user_id=%s AND origin='custom'
        FOR UPDATE
        """,
        (category_id, user_id),
    )
    category = cur.fetchone()
    if not category:
        raise NotFoundError("Custom category not found or not authorized for this user.")
    label = category["label"]

    cur.execute("DELETE FROM infodata WHERE user_id=%s AND section=%s", (user_id, label))
    deleted_items = cur.rowcount

    cur.execute("DELETE FROM categories WHERE id=%s AND user_id=%s", (category_id, user_id))
    if cur.rowcount == 0:
        raise NotFoundError("Custom category not found or could not be deleted from categories table.")

    logger.info(
        "Deleted custom category %r (id %s) and %d items for user %s", label, category_id, deleted_items, user_id
    )
    return label, deleted_items


def _lock_balance(cur, user_id: int) -> Decimal:
    cur.execute("SELECT COALESCE(balance, 0) AS balance FROM users WHERE id=%s FOR UPDATE", (user_id,))
    row = cur.fetchone()
    if not row:
        raise NotFoundError("User not found.")
    return Decimal(row["balance"] or 0)


def adjust_balance(cur, user_id: int, delta: Any, now: datetime | None = None) -> Decimal:
    """Add ``delta`` to the user's balance under a row lock.

    A positive delta is a deposit and is recorded as an ``Income`` ledger row
    in the same transaction. Returns the new balance.
    """
    delta = to_decimal(delta, "Amount")
    balance = _lock_balance(cur, user_id)
    new_balance = balance + delta
    cur.execute("UPDATE users SET balance=%s WHERE id=%s", (new_balance, user_id))

    if delta > 0:
        cur.execute(
            """
            INSERT INTO infodata (user_id, target, title, value, date, section, payment_mode, notes)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                user_id,
                Decimal(0),
                BALANCE_ADDITION_TITLE,
                delta,
                (now or datetime.now()).replace(microsecond=0),
                INCOME_SECTION,
                BALANCE_ADDITION_MODE,
                f"Added {delta} to balance",
            ),
        )
    logger.info("Balance of user %s changed by %s to %s", user_id, delta, new_balance)
    return new_balance


def delete_income_transaction(cur, user_id: int, item_id: int) -> Decimal:
    """Remove an ``Income`` row and take its amount back out of the balance."""
    balance = _lock_balance(cur, user_id)
    cur.execute(
        "DELETE FROM infodata WHERE id=%s AND user_id=%s AND section=%s RETURNING value",
        (item_id, user_id, INCOME_SECTION),
    )
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Transaction not found or unauthorized.")
    new_balance = balance - Decimal(row["value"] or 0)
    cur.execute("UPDATE users SET balance=%s WHERE id=%s", (new_balance, user_id))
    logger.info("Deleted income item %s for user %s, balance now %s", item_id, user_id, new_balance)
    return new_balance


def update_item_with_target_propagation(cur, user_id: int, item_id: int, fields: dict[str, Any]) -> dict[str, Any]:
    """Update one ledger row; a supplied target is applied to its whole section.

    Fields left as ``None`` keep their stored value. The row always ends up
    carrying its (new) section's target. Returns the updated row and every row
    of that section.

    Locks are taken category first, then ledger rows, the same order
    ``set_section_target`` uses on its own.
    """
    cur.execute(
        f"SELECT {ITEM_COLUMNS} FROM infodata WHERE id=%s AND user_id=%s",
        (item_id, user_id),
    )
    current = cur.fetchone()
    if not current:
        raise NotFoundError("Item not found.")

    section = fields.get("section") or current["section"]
    if fields.get("target") is not None:
        target = to_decimal(fields["target"], "Target")
        set_section_target(cur, user_id, section, target)
    else:
        target = None
        _find_category(cur, user_id, section, lock=True)

    cur.execute(
        f"SELECT {ITEM_COLUMNS} FROM infodata WHERE id=%s AND user_id=%s FOR UPDATE",
        (item_id, user_id),
    )
    current = cur.fetchone()
    if not current:
        raise NotFoundError("Item not found.")

    merged = dict(current)
    for name in ("title", "section", "payment_mode", "notes"):
        if fields.get(name) is not None:
            merged[name] = fields[name]
    if fields.get("value") is not None:
        merged["value"] = to_decimal(fields["value"], "Value")
    if fields.get("date") is not None:
        merged["date"] = parse_item_datetime(fields["date"])

    section = merged["section"]
    if target is not None:
        merged["target"] = target
    elif section != current["section"]:
        merged["target"] = section_target(cur, user_id, section)

    cur.execute(
        f"""
        UPDATE infodata
        SET title=%s, value=%s, date=%s, section=%s, target=%s, payment_mode=%s, notes=%s
        WHERE id=%s AND user_id=%s
        RETURNING {ITEM_COLUMNS}
        """,
        (
            merged["title"],
            merged["value"],
            merged["date"],
            section,
            merged["target"],
            merged["payment_mode"],
            merged["notes"],
            item_id,
            user_id,
        ),
    )
    updated = cur.fetchone()

    cur.execute(
        f"""
        SELECT {ITEM_COLUMNS}
        FROM infodata
        WHERE section=%s AND user_id=%s
        ORDER BY date DESC, id DESC
        """,
        (section, user_id),
    )
    section_items = cur.fetchall()
    logger.info("Updated item %s for user %s (section %r)", item_id, user_id, section)
    return {"updatedItem": updated, "sectionItems": section_items}
