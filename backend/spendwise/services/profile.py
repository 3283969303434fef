import logging
from decimal import Decimal
from typing import Any

from spendwise.core.config import settings
from spendwise.core.errors import ConflictError, NotFoundError, ValidationError
from spendwise.db.schema import INCOME_SECTION
from spendwise.services.auth import SAFE_USER_COLUMNS

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "phone_number", "email")


def format_amount(value: Any) -> str:
    return f"{Decimal(value or 0):.2f}"


def serialize_transaction(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(row["id"]),
        "name": row.get("title"),
        "amount": format_amount(row.get("value")),
        "date": row["date"].isoformat() if row.get("date") else None,
        "section": row.get("section"),
        "payment_mode": row.get("payment_mode"),
        "notes": row.get("notes"),
        "type": "income" if row.get("section") == INCOME_SECTION else "expense",
    }


def get_profile(cur, user_id: int) -> dict[str, Any]:
    cur.execute(f"SELECT {SAFE_USER_COLUMNS} FROM users WHERE id=%s", (user_id,))
    row = cur.fetchone()
    if not row:
        raise NotFoundError("User not found.")
    return row


def get_profile_photo(cur, user_id: int) -> str | None:
    cur.execute("SELECT profile_photo FROM users WHERE id=%s", (user_id,))
    row = cur.fetchone()
    return row["profile_photo"] if row else None


def update_profile(
    cur, user_id: int, data: dict[str, Any], profile_photo: str | None = None
) -> tuple[dict[str, Any], str | None]:
    """Apply the supplied profile fields; ``None`` means "leave unchanged".

    Returns the updated user and, when a new photo replaced an old one, the
    old photo URL so the caller can delete the file after commit.
    """
    updates = {name: data[name].strip() for name in PROFILE_FIELDS if (data.get(name) or "").strip()}

    email = updates.get("email")
    if email is not None:
        if not settings.email_re.fullmatch(email):
            raise ValidationError("Invalid email format")
        cur.execute("SELECT id FROM users WHERE email=%s AND id<>%s", (email, user_id))
        if cur.fetchone():
            raise ConflictError("Email already in use")

    phone_number = updates.get("phone_number")
    if phone_number:
        cur.execute("SELECT id FROM users WHERE phone_number=%s AND id<>%s", (phone_number, user_id))
        if cur.fetchone():
            raise ConflictError("Phone number already in use")

    previous_photo = None
    if profile_photo is not None:
        previous_photo = get_profile_photo(cur, user_id)
        updates["profile_photo"] = profile_photo
    if not updates:
        raise ValidationError("No fields to update")

    assignments = ", ".join(f"{column}=%s" for column in updates)
    cur.execute(
        f"UPDATE users SET {assignments} WHERE id=%s RETURNING {SAFE_USER_COLUMNS}",
        (*updates.values(), user_id),
    )
    row = cur.fetchone()
    if not row:
        raise NotFoundError("User not found or no changes made.")
    logger.info("Updated profile of user %s (%s)", user_id, ", ".join(updates))
    return row, previous_photo


def _income_rows(cur, user_id: int, limit: int | None = None) -> list[dict[str, Any]]:
    sql = """
        SELECT id, title, value, date, section, payment_mode, notes
        FROM infodata
        WHERE user_id=%s AND section=%s
        ORDER BY date DESC, id DESC
    """
    params: list[Any] = [user_id, INCOME_SECTION]
    if limit is not None:
        sql += " LIMIT %s"
        params.append(limit)
    cur.execute(sql, params)
    return cur.fetchall()


def get_balance(cur, user_id: int) -> dict[str, Any]:
    cur.execute("SELECT balance FROM users WHERE id=%s", (user_id,))
    row = cur.fetchone()
    if not row:
        return {"balance": 0.0, "lastIncomeTransaction": None}
    income = _income_rows(cur, user_id, limit=1)
    return {
        "balance": float(row.get("balance") or 0),
        "lastIncomeTransaction": serialize_transaction(income[0]) if income else None,
    }


def list_income_transactions(cur, user_id: int) -> list[dict[str, Any]]:
    return [serialize_transaction(row) for row in _income_rows(cur, user_id)]


def list_all_transactions(cur, user_id: int) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT id, title, value, date, section, payment_mode, notes
        FROM infodata
        WHERE user_id=%s
        ORDER BY date DESC, id DESC
        """,
        (user_id,),
    )
    return [serialize_transaction(row) for row in cur.fetchall()]
