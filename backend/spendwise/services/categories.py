import enum
import logging
from decimal import Decimal
from typing import Any

from spendwise.core.config import settings
from spendwise.core.errors import ConflictError, NotFoundError, ValidationError
from spendwise.db.schema import INCOME_SECTION
from spendwise.services.ledger import section_target, set_section_target, to_decimal

logger = logging.getLogger(__name__)


class CategoryOrigin(str, enum.Enum):
    DEFAULT = "default"
    CUSTOM = "custom"


def create_category(cur, user_id: int, data: dict[str, Any]) -> int:
    label = (data.get("label") or "").strip()
    if not label:
        raise ValidationError("Category label is required.")
    if settings.reserve_income_section and label.lower() == INCOME_SECTION.lower():
        raise ConflictError(f'"{INCOME_SECTION}" is reserved for deposits.')

    cur.execute(
        """
        SELECT origin
        FROM categories
        WHERE lower(label)=lower(%s) AND (user_id=%s OR user_id IS NULL)
        ORDER BY user_id NULLS LAST
        LIMIT 1
        """,
        (label, user_id),
    )
    existing = cur.fetchone()
    if existing:
        if existing["origin"] == CategoryOrigin.DEFAULT.value:
            raise ConflictError("A default category with this label already exists.")
        raise ConflictError("Category already exists.")

    target = to_decimal(data["target"], "Target") if data.get("target") is not None else Decimal(0)
    cur.execute(
        """
        INSERT INTO categories (label, origin, icon_name, icon_color, icon_library, target, user_id)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            label,
            CategoryOrigin.CUSTOM.value,
            data.get("iconName"),
            data.get("iconColor"),
            data.get("iconLibrary"),
            target,
            user_id,
        ),
    )
    category_id = cur.fetchone()["id"]
    logger.info("Created custom category %r (id %s) for user %s", label, category_id, user_id)
    return category_id


def list_custom_categories(cur, user_id: int) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT id,
               label,
               icon_name AS "iconName",
               icon_color AS "iconColor",
               icon_library AS "iconLibrary",
               target
        FROM categories
        WHERE user_id=%s AND origin=%s
        ORDER BY label
        """,
        (user_id, CategoryOrigin.CUSTOM.value),
    )
    return cur.fetchall()


def get_category_target(cur, user_id: int, label: str) -> Decimal:
    return section_target(cur, user_id, label)


def update_category_target(cur, user_id: int, label: str, target: Any) -> tuple[str, int]:
    category, refreshed = set_section_target(cur, user_id, label, target)
    if category is None:
        raise NotFoundError("Category not found.")
    return category["origin"], refreshed
