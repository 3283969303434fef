import argparse
import logging

from psycopg import connect

from spendwise.core.config import settings

logger = logging.getLogger(__name__)

# Shared default categories: owned by nobody, tagged origin='default'.
DEFAULT_CATEGORIES = [
    {"label": "Travel", "icon_name": "airplane", "icon_color": "#4E9AF1", "icon_library": "Ionicons"},
    {"label": "Food", "icon_name": "fast-food", "icon_color": "#F5A623", "icon_library": "Ionicons"},
    {"label": "Petrol", "icon_name": "car", "icon_color": "#D0021B", "icon_library": "Ionicons"},
    {"label": "Clothes", "icon_name": "shirt", "icon_color": "#9013FE", "icon_library": "Ionicons"},
    {"label": "Rent", "icon_name": "home", "icon_color": "#417505", "icon_library": "Ionicons"},
    {"label": "Groceries", "icon_name": "cart", "icon_color": "#50E3C2", "icon_library": "Ionicons"},
]

INCOME_SECTION = "Income"

SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        first_name TEXT,
        last_name TEXT,
        email TEXT NOT NULL UNIQUE,
        phone_number TEXT UNIQUE,
        password TEXT,
        google_id TEXT UNIQUE,
        profile_photo TEXT,
        refresh_token TEXT,
        balance NUMERIC(14, 2) DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS infodata (
        id SERIAL PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        value NUMERIC(14, 2) NOT NULL DEFAULT 0,
        date TIMESTAMP NOT NULL,
        section TEXT NOT NULL,
        target NUMERIC(14, 2),
        payment_mode TEXT,
        notes TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_infodata_user_date ON infodata (user_id, date DESC, id DESC)",
    "CREATE INDEX IF NOT EXISTS idx_infodata_user_section ON infodata (user_id, section)",
    """
    CREATE TABLE IF NOT EXISTS categories (
        id SERIAL PRIMARY KEY,
        user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
        label TEXT NOT NULL,
        origin TEXT NOT NULL DEFAULT 'custom' CHECK (origin IN ('default', 'custom')),
        icon_name TEXT,
        icon_color TEXT,
        icon_library TEXT,
        target NUMERIC(14, 2) NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_owner_label
    ON categories (COALESCE(user_id, 0), label)
    """,
]


def apply_schema(conn) -> None:
    with conn.cursor() as cur:
        for statement in SCHEMA_SQL:
            cur.execute(statement)
        for category in DEFAULT_CATEGORIES:
            cur.execute(
                """
                INSERT INTO categories (user_id, label, origin, icon_name, icon_color, icon_library, target)
                SELECT NULL, %s, 'default', %s, %s, %s, 0
                WHERE NOT EXISTS (
                    SELECT 1 FROM categories WHERE user_id IS NULL AND label=%s
                )
                """,
                (
                    category["label"],
                    category["icon_name"],
                    category["icon_color"],
                    category["icon_library"],
                    category["label"],
                ),
            )
    conn.commit()
    logger.info("Schema applied (%d statements, %d default categories)", len(SCHEMA_SQL), len(DEFAULT_CATEGORIES))


def main() -> None:
    parser = argparse.ArgumentParser(description="Create SpendWise tables and seed default categories")
    parser.add_argument("--database-url", default=settings.database_url)
    args = parser.parse_args()
    logging.basicConfig(level=settings.log_level)
    with connect(args.database_url) as conn:
        apply_schema(conn)


if __name__ == "__main__":
    main()
