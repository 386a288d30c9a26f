"""Pytest configuration and fixtures.

Provides:
- FakeSupabase: in-memory stand-in for the supabase-py query builder
- FastAPI test client with Supabase and auth dependencies overridden
"""

import copy
import os
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RETRY_SCHEDULER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from app.core.dependencies import get_current_user_id
from app.core.limiter import limiter
from app.core.timeutils import parse_timestamp, utcnow
from app.database.supabase_client import get_service_supabase, get_supabase
from app.main import app
from app.modules.auth.service import clear_auth_cache
from app.modules.performance import metrics_registry

# ---------------------------------------------------------------------------
# In-memory Supabase
# ---------------------------------------------------------------------------

UNIQUE_COLUMNS = {
    "webhook_endpoints": [("name",)],
    "webhook_events": [("idempotency_key",)],
    "workflow_states": [("workflow_id",)],
    "workflow_executions": [("execution_id",)],
    "permissions": [("name",)],
    "roles": [("name",)],
    "user_roles": [("user_id", "role_id")],
}


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return parse_timestamp(value)
        except ValueError:
            return value
    if isinstance(value, datetime):
        return parse_timestamp(value)
    return value


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        a, b = _comparable(actual), _comparable(expected)
        if type(a) is not type(b) and not (isinstance(a, (int, float)) and isinstance(b, (int, float))):
            a, b = str(actual), str(expected)
        return op(a, b)
    return check


class FakeResponse:
    def __init__(self, data: Any, count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.columns = "*"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self.orderings: List[tuple] = []
        self._limit: Optional[int] = None
        self._offset = 0
        self._single = False
        self._maybe_single = False

    # Operations

    def select(self, columns: str = "*", count: Optional[str] = None):
        if self.operation == "select":
            self.columns = columns
        return self

    def insert(self, data):
        self.operation, self.payload = "insert", data
        return self

    def upsert(self, data, on_conflict: Optional[str] = None):
        self.operation, self.payload, self.on_conflict = "upsert", data, on_conflict
        return self

    def update(self, data):
        self.operation, self.payload = "update", data
        return self

    def delete(self):
        self.operation = "delete"
        return self

    # Filters

    def _add(self, column: str, predicate: Callable[[Any], bool]):
        self.filters.append(lambda row: predicate(row.get(column)))
        return self

    def eq(self, column: str, value: Any):
        return self._add(column, lambda v: v == value)

    def neq(self, column: str, value: Any):
        return self._add(column, lambda v: v != value)

    def in_(self, column: str, values: List[Any]):
        allowed = list(values)
        return self._add(column, lambda v: v in allowed)

    def gt(self, column: str, value: Any):
        return self._add(column, lambda v: _compare(lambda a, b: a > b)(v, value))

    def gte(self, column: str, value: Any):
        return self._add(column, lambda v: _compare(lambda a, b: a >= b)(v, value))

    def lt(self, column: str, value: Any):
        return self._add(column, lambda v: _compare(lambda a, b: a < b)(v, value))

    def lte(self, column: str, value: Any):
        return self._add(column, lambda v: _compare(lambda a, b: a <= b)(v, value))

    def is_(self, column: str, value: Any):
        expected = None if value in (None, "null") else value
        return self._add(column, lambda v: v is expected)

    # Modifiers

    def order(self, column: str, desc: bool = False):
        self.orderings.append((column, desc))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def offset(self, count: int):
        self._offset = count
        return self

    def range(self, start: int, end: int):
        self._offset, self._limit = start, end - start + 1
        return self

    def single(self):
        self._single = True
        return self

    def maybe_single(self):
        self._maybe_single = True
        return self

    # Execution

    def _matches(self, row: Dict[str, Any]) -> bool:
        return all(f(row) for f in self.filters)

    def _project(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        wanted = [c.strip() for c in self.columns.split(",") if c.strip()]
        return {c: copy.deepcopy(row.get(c)) for c in wanted}

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table_name, self.operation))
        if self.table_name in self.db.failing_tables:
            raise RuntimeError(f"database unavailable for {self.table_name}")
        if self.operation == "update" and self.table_name in self.db.failing_updates:
            raise RuntimeError(f"update rejected for {self.table_name}")
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.operation in ("insert", "upsert"):
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self.db.store(self.table_name, item, upsert_on=self.on_conflict if self.operation == "upsert" else None)
                       for item in items]
            return FakeResponse(copy.deepcopy(created))

        matched = [row for row in rows if self._matches(row)]

        if self.operation == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(copy.deepcopy(matched))

        if self.operation == "delete":
            self.db.tables[self.table_name] = [row for row in rows if not self._matches(row)]
            return FakeResponse(copy.deepcopy(matched))

        for column, desc in reversed(self.orderings):
            present = [r for r in matched if r.get(column) is not None]
            missing = [r for r in matched if r.get(column) is None]
            present.sort(key=lambda r: _comparable(r.get(column)), reverse=desc)
            matched = present + missing
        count = len(matched)
        matched = matched[self._offset:]
        if self._limit is not None:
            matched = matched[:self._limit]
        data = [self._project(row) for row in matched]

        if self._single:
            if len(data) != 1:
                raise APIError({"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"})
            return FakeResponse(data[0], count)
        if self._maybe_single:
            return FakeResponse(data[0], count) if data else None
        return FakeResponse(data, count)


class FakeSupabase:
    """Tables are plain lists of dicts; unique constraints raise postgrest APIError 23505."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failing_tables: set = set()
        self.failing_updates: set = set()
        self.calls: List[tuple] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.get(name, [])

    def store(self, table: str, item: Dict[str, Any], upsert_on: Optional[str] = None) -> Dict[str, Any]:
        rows = self.tables.setdefault(table, [])
        row = copy.deepcopy(item)
        if upsert_on:
            keys = [k.strip() for k in upsert_on.split(",")]
            for existing in rows:
                if all(existing.get(k) == row.get(k) for k in keys):
                    existing.update(row)
                    return existing
        for columns in UNIQUE_COLUMNS.get(table, []):
            if all(row.get(c) is not None for c in columns) and any(
                all(existing.get(c) == row.get(c) for c in columns) for existing in rows
            ):
                raise APIError({
                    "code": "23505",
                    "message": f'duplicate key value violates unique constraint "{table}_{"_".join(columns)}_key"',
                    "details": None,
                    "hint": None,
                })
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", utcnow().isoformat())
        rows.append(row)
        return row

    def seed(self, table: str, **row: Any) -> Dict[str, Any]:
        return copy.deepcopy(self.store(table, row))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

SUPER_USER = {
    "id": "admin-0001",
    "email": "admin@example.com",
    "user_metadata": {},
    "app_metadata": {"type": "super_user"},
}

REGULAR_USER = {
    "id": "user-0002",
    "email": "operator@example.com",
    "user_metadata": {},
    "app_metadata": {},
}


def grant_permissions(db: FakeSupabase, user_id: str, *names: str) -> None:
    """Give user_id a role holding the named permissions."""
    role = db.seed("roles", name=f"role-{uuid.uuid4().hex[:8]}", description="test role")
    db.seed("user_roles", user_id=user_id, role_id=role["id"])
    for name in names:
        existing = [p for p in db.rows("permissions") if p["name"] == name]
        permission = existing[0] if existing else db.seed(
            "permissions", name=name, resource=name.split(":")[0], action=name.split(":")[1]
        )
        db.seed("role_permissions", role_id=role["id"], permission_id=permission["id"])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def current_user() -> Dict[str, Any]:
    return dict(SUPER_USER)


@pytest.fixture
def client(fake_supabase, current_user):
    """Test client backed by FakeSupabase and authenticated as current_user."""
    limiter.enabled = False
    clear_auth_cache()
    metrics_registry.reset()
    app.dependency_overrides[get_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_service_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_current_user_id] = lambda: current_user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True


@pytest.fixture
def as_regular_user(client, fake_supabase):
    """Switch the client to a non-super user; returns a callable granting permissions to that user."""
    app.dependency_overrides[get_current_user_id] = lambda: dict(REGULAR_USER)

    def grant(*names: str) -> None:
        grant_permissions(fake_supabase, REGULAR_USER["id"], *names)

    return grant
