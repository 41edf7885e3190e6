from __future__ import annotations

import copy
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Callable, Optional

import pytest
from postgrest.exceptions import APIError

from app.core.config import get_settings

HOOKS_SECRET = "test-hooks-secret"
WEBHOOK_SECRET = "whsec_test_secret"

ROW_DEFAULTS = {
    "is_pro": False,
    "pro_expires_at": None,
    "override_pro": False,
    "stripe_customer_id": None,
    "notes": None,
    "updated_at": None,
}


def _comparable(column: str, value):
    if value is not None and column.endswith("_at") and isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


class FakeQuery:
    """Minimal stand-in for the postgrest query builder over a dict-backed table."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload: Optional[dict] = None
        self.on_conflict = ""
        self.ignore_duplicates = False
        self.filters: list[Callable[[dict], bool]] = []
        self.filter_log: list[tuple] = []
        self._negate = False
        self._order: Optional[tuple[str, bool]] = None
        self._limit: Optional[int] = None

    # Operations
    def select(self, columns: str = "*"):
        self.op = "select"
        self.columns = columns
        return self

    def insert(self, data: dict):
        self.op = "insert"
        self.payload = dict(data)
        return self

    def upsert(self, data: dict, on_conflict: str = "", ignore_duplicates: bool = False, **_):
        self.op = "upsert"
        self.payload = dict(data)
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, data: dict):
        self.op = "update"
        self.payload = dict(data)
        return self

    # Filters
    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, name: str, column: str, value, predicate: Callable[[dict], bool]):
        negate = self._negate
        self._negate = False
        self.filter_log.append((name, column, value, negate))
        self.filters.append(lambda row: predicate(row) != negate)
        return self

    def eq(self, column: str, value):
        return self._add("eq", column, value, lambda row: row.get(column) == value)

    def gt(self, column: str, value):
        return self._add(
            "gt", column, value,
            lambda row: row.get(column) is not None
            and _comparable(column, row.get(column)) > _comparable(column, value),
        )

    def lt(self, column: str, value):
        return self._add(
            "lt", column, value,
            lambda row: row.get(column) is not None
            and _comparable(column, row.get(column)) < _comparable(column, value),
        )

    def is_(self, column: str, value):
        assert value == "null"
        return self._add("is", column, value, lambda row: row.get(column) is None)

    def in_(self, column: str, values):
        values = list(values)
        return self._add("in", column, values, lambda row: row.get(column) in values)

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def execute(self):
        self._db.executed.append(self)
        if self._db.before_execute:
            self._db.before_execute(self)
        return SimpleNamespace(data=self._db._run(self))


class FakeSupabase:
    """In-memory Supabase client: ``table()`` queries against plain dicts.

    ``missing_columns`` simulates a database where the enhanced migration
    hasn't run; ``before_execute`` lets a test raise from a given query.
    """

    def __init__(self, key: str = "user_id"):
        self.key = key
        self.tables: dict[str, dict[str, dict]] = {}
        self.missing_columns: set[str] = set()
        self.before_execute: Optional[Callable[[FakeQuery], None]] = None
        self.executed: list[FakeQuery] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str = "user_pro_status") -> dict[str, dict]:
        return self.tables.setdefault(table, {})

    def seed(self, user_id: str, table: str = "user_pro_status", **fields) -> dict:
        row = {self.key: user_id, **ROW_DEFAULTS, **fields}
        for column, value in list(row.items()):
            if isinstance(value, datetime):
                row[column] = value.isoformat()
        self.rows(table)[user_id] = row
        return row

    def _check_columns(self, columns: str) -> None:
        requested = {c.strip() for c in columns.split(",")}
        missing = requested & self.missing_columns
        if missing:
            raise APIError({
                "message": f"column user_pro_status.{sorted(missing)[0]} does not exist",
                "code": "42703",
                "hint": None,
                "details": None,
            })

    def _project(self, row: dict, columns: str) -> dict:
        if columns.strip() == "*":
            return copy.deepcopy(row)
        return {c.strip(): row.get(c.strip()) for c in columns.split(",")}

    def _run(self, query: FakeQuery) -> list[dict]:
        rows = self.rows(query.table)

        if query.op == "select":
            self._check_columns(query.columns)
            matched = [r for r in rows.values() if all(f(r) for f in query.filters)]
            if query._order:
                column, desc = query._order
                matched.sort(key=lambda r: r.get(column), reverse=desc)
            if query._limit is not None:
                matched = matched[:query._limit]
            return [self._project(r, query.columns) for r in matched]

        if query.op in ("insert", "upsert"):
            key = query.payload[self.key]
            if key in rows:
                if query.op == "insert" or query.ignore_duplicates:
                    return []
                rows[key].update(query.payload)
                return [copy.deepcopy(rows[key])]
            rows[key] = {self.key: key, **ROW_DEFAULTS, **query.payload}
            return [copy.deepcopy(rows[key])]

        if query.op == "update":
            updated = []
            for row in rows.values():
                if all(f(row) for f in query.filters):
                    row.update(query.payload)
                    updated.append(copy.deepcopy(row))
            return updated

        raise AssertionError(f"unsupported op {query.op}")


@pytest.fixture()
def settings_env(monkeypatch: pytest.MonkeyPatch):
    """Configure secrets the service reads and rebuild cached settings."""
    monkeypatch.setenv("HOOKS_SECRET", HOOKS_SECRET)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("STRIPE_PRICE_PRO_MONTHLY", "price_pro_monthly")
    monkeypatch.setenv("PRO_TRIAL_DAYS", "7")
    monkeypatch.setenv("EXPIRY_SWEEP_BATCH_SIZE", "500")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture()
def fake_db(monkeypatch: pytest.MonkeyPatch, settings_env) -> FakeSupabase:
    """Route every repository call to an in-memory Supabase fake."""
    db = FakeSupabase()
    monkeypatch.setattr("database.supabase_client.get_supabase_client", lambda: db)
    return db
