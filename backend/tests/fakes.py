"""In-memory stand-ins for the pooled database used by the service and API tests.

``FakeCursor`` understands exactly the statements the services issue and
fails loudly on anything else, so a changed query shows up as a test failure.
"""
import copy
import itertools
import os
import pathlib
import sys
import tempfile
from datetime import date, datetime
from decimal import Decimal

BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("SECRET_KEY", "test-access-secret")
os.environ.setdefault("REFRESH_KEY", "test-refresh-secret")
os.environ.setdefault("BASE_URL", "http://testserver")
os.environ.setdefault("UPLOADS_DIR", str(pathlib.Path(tempfile.gettempdir()) / "spendwise-test-uploads"))
os.environ.setdefault("SIGNUP_RATE_LIMIT", "1000")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000")
os.environ.setdefault("DB_RETRY_DELAY", "0")

USER_COLUMNS = ("id", "first_name", "last_name", "email", "phone_number", "profile_photo")
ITEM_COLUMNS = ("id", "title", "value", "date", "section", "target", "payment_mode", "notes", "user_id")
TRANSACTION_COLUMNS = ("id", "title", "value", "date", "section", "payment_mode", "notes")


def normalize(sql: str) -> str:
    return " ".join(sql.split())


class FakeStore:
    def __init__(self) -> None:
        self.users: dict[int, dict] = {}
        self.items: list[dict] = []
        self.categories: list[dict] = []
        self._user_ids = itertools.count(1)
        self._item_ids = itertools.count(1)
        self._category_ids = itertools.count(1)

    def add_user(self, email="a@x.com", phone_number="555-1", balance=Decimal("0"), **fields) -> int:
        user_id = next(self._user_ids)
        self.users[user_id] = {
            "id": user_id,
            "first_name": fields.get("first_name", "Ada"),
            "last_name": fields.get("last_name", "Lovelace"),
            "email": email,
            "phone_number": phone_number,
            "password": fields.get("password"),
            "google_id": fields.get("google_id"),
            "profile_photo": fields.get("profile_photo"),
            "refresh_token": None,
            "balance": balance,
        }
        return user_id

    def add_item(self, user_id, section, value, when, title=None, target=None, payment_mode="Cash", notes=None) -> int:
        item_id = next(self._item_ids)
        self.items.append(
            {
                "id": item_id,
                "user_id": user_id,
                "title": title or section,
                "value": Decimal(str(value)),
                "date": when if isinstance(when, datetime) else datetime(when.year, when.month, when.day),
                "section": section,
                "target": None if target is None else Decimal(str(target)),
                "payment_mode": payment_mode,
                "notes": notes,
            }
        )
        return item_id

    def add_category(self, user_id, label, origin="custom", target=0, icon_name="star") -> int:
        category_id = next(self._category_ids)
        self.categories.append(
            {
                "id": category_id,
                "user_id": user_id,
                "label": label,
                "origin": origin,
                "icon_name": icon_name,
                "icon_color": "#000000",
                "icon_library": "Ionicons",
                "target": Decimal(str(target)),
            }
        )
        return category_id

    def items_for(self, user_id, section=None) -> list[dict]:
        return [i for i in self.items if i["user_id"] == user_id and (section is None or i["section"] == section)]

    def snapshot(self):
        return copy.deepcopy((self.users, self.items, self.categories))

    def restore(self, state) -> None:
        self.users, self.items, self.categories = state

    def cursor(self) -> "FakeCursor":
        return FakeCursor(self)


class FakeCursor:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.calls: list[tuple[str, list]] = []
        self.rowcount = -1
        self._rows: list[dict] = []

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def _category_lookup(self, label, user_id, fold=False):
        def same(other):
            return other.lower() == label.lower() if fold else other == label

        own = [c for c in self.store.categories if same(c["label"]) and c["user_id"] == user_id]
        shared = [c for c in self.store.categories if same(c["label"]) and c["user_id"] is None]
        return (own or shared)[:1]

    def _transaction_rows(self, user_id, section=None):
        rows = sorted(self.store.items_for(user_id, section), key=lambda r: (r["date"], r["id"]), reverse=True)
        return [{k: r[k] for k in TRANSACTION_COLUMNS} for r in rows]

    def _update_user(self, q, p):
        columns = [part.split("=")[0] for part in q[len("UPDATE users SET "):q.index(" WHERE ")].split(", ")]
        user = self.store.users.get(p[-1])
        if user:
            user.update(zip(columns, p[:-1]))
            self._rows = [{k: user[k] for k in USER_COLUMNS}]
            self.rowcount = 1

    def _filter_listing(self, q, params):
        user_id, rest = params[0], list(params[1:])
        rows = self.store.items_for(user_id)
        if "i.section=%s" in q:
            section = rest.pop(0)
            rows = [r for r in rows if r["section"] == section]
        if "i.date >= %s" in q:
            start = rest.pop(0)
            rows = [r for r in rows if r["date"].date() >= start]
        if "i.date < %s" in q:
            end = rest.pop(0)
            rows = [r for r in rows if r["date"].date() < end]
        return sorted(rows, key=lambda r: (r["date"], r["id"]), reverse=True), rest

    def execute(self, sql, params=None):
        q = normalize(sql)
        p = list(params or ())
        self.calls.append((q, p))
        self.rowcount = 0
        self._rows = []
        store = self.store

        if q.startswith("SELECT id FROM users WHERE phone_number=%s AND id<>%s"):
            self._rows = [
                {"id": u["id"]} for u in store.users.values() if u["phone_number"] == p[0] and u["id"] != p[1]
            ]
        elif q.startswith("SELECT id FROM users WHERE email=%s AND id<>%s"):
            self._rows = [{"id": u["id"]} for u in store.users.values() if u["email"] == p[0] and u["id"] != p[1]]
        elif q.startswith("SELECT id FROM users WHERE phone_number=%s"):
            self._rows = [{"id": u["id"]} for u in store.users.values() if u["phone_number"] == p[0]]
        elif q.startswith("SELECT id FROM users WHERE email=%s"):
            self._rows = [{"id": u["id"]} for u in store.users.values() if u["email"] == p[0]]
        elif q.startswith("INSERT INTO users (first_name, last_name, email, phone_number, password, profile_photo)"):
            user_id = store.add_user(
                email=p[2], phone_number=p[3], first_name=p[0], last_name=p[1], password=p[4], profile_photo=p[5]
            )
            self._rows = [{k: store.users[user_id][k] for k in USER_COLUMNS}]
            self.rowcount = 1
        elif q.startswith("SELECT id, first_name, last_name, email, phone_number, profile_photo, password FROM users WHERE email=%s"):
            self._rows = [
                {k: u[k] for k in (*USER_COLUMNS, "password")} for u in store.users.values() if u["email"] == p[0]
            ]
        elif q.startswith("SELECT id, first_name, last_name, email, phone_number, profile_photo FROM users WHERE id=%s"):
            user = store.users.get(p[0])
            self._rows = [{k: user[k] for k in USER_COLUMNS}] if user else []
        elif q.startswith("SELECT id, first_name, last_name, email, phone_number, profile_photo FROM users WHERE google_id=%s"):
            self._rows = [{k: u[k] for k in USER_COLUMNS} for u in store.users.values() if u["google_id"] == p[0]]
        elif q.startswith("INSERT INTO users (google_id, first_name, last_name, email, profile_photo)"):
            user_id = store.add_user(
                email=p[3], phone_number=None, google_id=p[0], first_name=p[1], last_name=p[2], profile_photo=p[4]
            )
            self._rows = [{k: store.users[user_id][k] for k in USER_COLUMNS}]
            self.rowcount = 1
        elif q.startswith("SELECT profile_photo FROM users WHERE id=%s"):
            user = store.users.get(p[0])
            self._rows = [{"profile_photo": user["profile_photo"]}] if user else []
        elif q.startswith("SELECT balance FROM users WHERE id=%s"):
            user = store.users.get(p[0])
            self._rows = [{"balance": user["balance"]}] if user else []
        elif q.startswith("UPDATE users SET") and " RETURNING " in q:
            self._update_user(q, p)
        elif q.startswith("UPDATE users SET refresh_token=%s WHERE id=%s"):
            if p[1] in store.users:
                store.users[p[1]]["refresh_token"] = p[0]
                self.rowcount = 1
        elif q.startswith("SELECT id, email FROM users WHERE id=%s AND refresh_token=%s"):
            user = store.users.get(p[0])
            if user and user["refresh_token"] == p[1]:
                self._rows = [{"id": user["id"], "email": user["email"]}]
        elif q.startswith("SELECT COALESCE(balance, 0) AS balance FROM users WHERE id=%s FOR UPDATE"):
            user = store.users.get(p[0])
            self._rows = [{"balance": user["balance"] or Decimal(0)}] if user else []
        elif q.startswith("UPDATE users SET balance=%s WHERE id=%s"):
            if p[1] in store.users:
                store.users[p[1]]["balance"] = p[0]
                self.rowcount = 1
        elif q.startswith("INSERT INTO infodata (user_id, target, title, value, date, section, payment_mode, notes)"):
            store.add_item(p[0], p[5], p[3], p[4], title=p[2], target=p[1], payment_mode=p[6], notes=p[7])
            self.rowcount = 1
        elif q.startswith("INSERT INTO infodata (title, value, date, section, target, payment_mode, notes, user_id)"):
            item_id = store.add_item(p[7], p[3], p[1], p[2], title=p[0], target=p[4], payment_mode=p[5], notes=p[6])
            self._rows = [{"id": item_id}]
            self.rowcount = 1
        elif q.startswith("DELETE FROM infodata WHERE user_id=%s AND section=%s"):
            doomed = store.items_for(p[0], p[1])
            store.items = [i for i in store.items if i not in doomed]
            self.rowcount = len(doomed)
        elif q.startswith("DELETE FROM infodata WHERE id=%s AND user_id=%s AND section=%s RETURNING value"):
            doomed = [i for i in store.items_for(p[1], p[2]) if i["id"] == p[0]]
            store.items = [i for i in store.items if i not in doomed]
            self._rows = [{"value": i["value"]} for i in doomed]
            self.rowcount = len(doomed)
        elif q.startswith("DELETE FROM infodata WHERE id=%s AND user_id=%s"):
            doomed = [i for i in store.items_for(p[1]) if i["id"] == p[0]]
            store.items = [i for i in store.items if i not in doomed]
            self.rowcount = len(doomed)
        elif q.startswith("SELECT label FROM categories WHERE id=%s AND user_id=%s AND origin='custom'"):
            self._rows = [
                {"label": c["label"]}
                for c in store.categories
                if c["id"] == p[0] and c["user_id"] == p[1] and c["origin"] == "custom"
            ]
        elif q.startswith("DELETE FROM categories WHERE id=%s AND user_id=%s"):
            doomed = [c for c in store.categories if c["id"] == p[0] and c["user_id"] == p[1]]
            store.categories = [c for c in store.categories if c not in doomed]
            self.rowcount = len(doomed)
        elif q.startswith("SELECT id, user_id, origin, target FROM categories WHERE label=%s"):
            self._rows = [
                {k: c[k] for k in ("id", "user_id", "origin", "target")} for c in self._category_lookup(p[0], p[1])
            ]
        elif q.startswith("SELECT origin FROM categories WHERE lower(label)=lower(%s)"):
            self._rows = [{"origin": c["origin"]} for c in self._category_lookup(p[0], p[1], fold=True)]
        elif q.startswith("UPDATE categories SET target=%s WHERE id=%s"):
            for c in store.categories:
                if c["id"] == p[1]:
                    c["target"] = p[0]
                    self.rowcount += 1
        elif q.startswith("INSERT INTO categories (user_id, label, origin, icon_name, icon_color, icon_library, target) SELECT"):
            source = next(c for c in store.categories if c["id"] == p[2])
            clash = [c for c in store.categories if c["user_id"] == p[0] and c["label"] == source["label"]]
            if clash and "ON CONFLICT" not in q:
                raise AssertionError(f"duplicate category {source['label']!r} for user {p[0]}")
            if clash:
                clash[0]["target"] = p[1]
            else:
                new_id = store.add_category(
                    p[0], source["label"], origin=source["origin"], icon_name=source["icon_name"]
                )
                next(c for c in store.categories if c["id"] == new_id)["target"] = p[1]
            self.rowcount = 1
        elif q.startswith("INSERT INTO categories (label, origin, icon_name, icon_color, icon_library, target, user_id)"):
            new_id = store.add_category(p[6], p[0], origin=p[1], target=p[5], icon_name=p[2])
            self._rows = [{"id": new_id}]
            self.rowcount = 1
        elif q.startswith("SELECT target FROM infodata WHERE user_id=%s AND section=%s AND target IS NOT NULL"):
            rows = [i for i in store.items_for(p[0], p[1]) if i["target"] is not None]
            self._rows = [{"target": r["target"]} for r in sorted(rows, key=lambda r: r["id"], reverse=True)[:1]]
        elif q.startswith("UPDATE infodata SET target=%s WHERE user_id=%s AND section=%s"):
            for i in store.items_for(p[1], p[2]):
                i["target"] = p[0]
                self.rowcount += 1
        elif q.startswith(f"SELECT {', '.join(ITEM_COLUMNS)} FROM infodata WHERE id=%s AND user_id=%s"):
            self._rows = [{k: i[k] for k in ITEM_COLUMNS} for i in store.items_for(p[1]) if i["id"] == p[0]]
        elif q.startswith("UPDATE infodata SET title=%s"):
            for i in store.items_for(p[8]):
                if i["id"] == p[7]:
                    i.update(
                        title=p[0], value=p[1], date=p[2], section=p[3], target=p[4], payment_mode=p[5], notes=p[6]
                    )
                    self._rows = [{k: i[k] for k in ITEM_COLUMNS}]
                    self.rowcount = 1
        elif q.startswith(f"SELECT {', '.join(ITEM_COLUMNS)} FROM infodata WHERE section=%s AND user_id=%s"):
            rows = sorted(store.items_for(p[1], p[0]), key=lambda r: (r["date"], r["id"]), reverse=True)
            self._rows = [{k: i[k] for k in ITEM_COLUMNS} for i in rows]
        elif q.startswith("SELECT date::date AS day"):
            income, user_id, start, end = p
            totals: dict[date, Decimal] = {}
            for i in store.items_for(user_id):
                day = i["date"].date()
                if start <= day < end:
                    amount = i["value"] if i["section"] != income else Decimal(0)
                    totals[day] = totals.get(day, Decimal(0)) + amount
            self._rows = [{"day": d, "total_expenses": totals[d]} for d in sorted(totals)]
        elif q.startswith("SELECT COALESCE(SUM(CASE WHEN i.section<>%s THEN i.value ELSE 0 END), 0) AS total_expenses"):
            rows, _ = self._filter_listing(q, p[1:])
            spent = sum((r["value"] for r in rows if r["section"] != p[0]), Decimal(0))
            self._rows = [{"total_expenses": spent, "total_count": len(rows)}]
        elif q.startswith("SELECT section, COALESCE(SUM(value), 0) AS total_expenses FROM infodata WHERE user_id=%s"):
            totals: dict[str, Decimal] = {}
            for i in store.items_for(p[0]):
                totals[i["section"]] = totals.get(i["section"], Decimal(0)) + i["value"]
            self._rows = [{"section": s, "total_expenses": totals[s]} for s in sorted(totals)]
        elif q.startswith("SELECT COALESCE(SUM(value), 0) AS total_spent FROM infodata WHERE user_id=%s AND section=%s"):
            self._rows = [{"total_spent": sum((i["value"] for i in store.items_for(p[0], p[1])), Decimal(0))}]
        elif q.startswith(f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM infodata WHERE user_id=%s AND section=%s"):
            rows = self._transaction_rows(p[0], p[1])
            self._rows = rows[:p[2]] if " LIMIT %s" in q else rows
        elif q.startswith(f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM infodata WHERE user_id=%s"):
            self._rows = self._transaction_rows(p[0])
        elif q.startswith("SELECT COUNT(*) AS total FROM infodata i WHERE"):
            rows, _ = self._filter_listing(q, p)
            self._rows = [{"total": len(rows)}]
        elif q.startswith("SELECT i.id, i.title"):
            rows, rest = self._filter_listing(q, p)
            limit, offset = rest
            self._rows = [
                dict({k: r[k] for k in ITEM_COLUMNS}, iconName=None, iconColor=None, iconLibrary=None)
                for r in rows[offset:offset + limit]
            ]
        else:
            raise AssertionError(f"Unexpected SQL: {q}")


class FakeDatabase:
    """Mimics ``Database.run``: one cursor per unit, state rolled back on error."""

    def __init__(self, store: FakeStore | None = None) -> None:
        self.store = store or FakeStore()
        self.cursors: list[FakeCursor] = []

    def run(self, operation, *args, **kwargs):
        state = self.store.snapshot()
        cur = self.store.cursor()
        self.cursors.append(cur)
        try:
            return operation(cur, *args, **kwargs)
        except Exception:
            self.store.restore(state)
            raise
