"""
Shared test fixtures.

Services talk to an in-memory Supabase double that really filters, orders
and updates rows, so conditional writes behave like PostgREST.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import copy
import pytest
from unittest.mock import patch
from datetime import datetime, timezone
from enum import Enum
from typing import Generator
from uuid import uuid4


# ===================
# IN-MEMORY SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: int = None):
        self.data = data if data is not None else []
        self.count = count


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    return value


class MockSupabaseQuery:
    """Chainable query builder evaluated against the client's tables."""

    def __init__(self, client: "MockSupabaseClient", table: str, operation: str, payload=None, count=None):
        self._client = client
        self._table = table
        self._operation = operation
        self._payload = payload
        self._count = count
        self._filters: list[tuple[str, str, object]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit = None
        self._is_single = False

    def eq(self, column, value):
        self._filters.append((column, "eq", _plain(value)))
        return self

    def neq(self, column, value):
        self._filters.append((column, "neq", _plain(value)))
        return self

    def in_(self, column, values):
        self._filters.append((column, "in", [_plain(v) for v in values]))
        return self

    def ov(self, column, values):
        self._filters.append((column, "ov", [_plain(v) for v in values]))
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def single(self):
        self._is_single = True
        return self

    def _matches(self, row: dict) -> bool:
        for column, op, value in self._filters:
            current = row.get(column)
            if op == "eq" and current != value:
                return False
            if op == "neq" and current == value:
                return False
            if op == "in" and current not in value:
                return False
            if op == "ov" and not set(current or []) & set(value):
                return False
        return True

    def execute(self) -> MockSupabaseResponse:
        self._client.check_fault(self._table, self._operation, self._filters)
        rows = self._client.rows(self._table)

        if self._operation == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for data in payload:
                row = copy.deepcopy(data)
                row.setdefault("id", str(uuid4()))
                row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return MockSupabaseResponse(data=inserted, count=len(inserted))

        matched = [row for row in rows if self._matches(row)]

        if self._operation == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return MockSupabaseResponse(data=copy.deepcopy(matched), count=len(matched))

        if self._operation == "delete":
            for row in matched:
                rows.remove(row)
            return MockSupabaseResponse(data=copy.deepcopy(matched), count=len(matched))

        for column, desc in reversed(self._order):
            matched = sorted(
                matched,
                key=lambda r: (r.get(column) is None, str(r.get(column))),
                reverse=desc
            )
        total = len(matched)
        if self._limit is not None:
            matched = matched[:self._limit]

        data = copy.deepcopy(matched)
        if self._is_single:
            data = data[0] if data else None
        return MockSupabaseResponse(data=data, count=total if self._count else None)


class MockSupabaseTable:
    """Entry point for one table: select / insert / update / delete."""

    def __init__(self, client: "MockSupabaseClient", name: str):
        self._client = client
        self._name = name

    def select(self, *args, count=None, **kwargs):
        return MockSupabaseQuery(self._client, self._name, "select", count=count)

    def insert(self, data):
        return MockSupabaseQuery(self._client, self._name, "insert", payload=data)

    def update(self, data):
        return MockSupabaseQuery(self._client, self._name, "update", payload=data)

    def delete(self):
        return MockSupabaseQuery(self._client, self._name, "delete")


class MockSupabaseClient:
    """In-memory Supabase client with fault injection."""

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self._faults: list[tuple[str, str, dict]] = []

    def set_table_data(self, table_name: str, data: list):
        """Seed a table."""
        self._tables[table_name] = copy.deepcopy(data)

    def rows(self, table_name: str) -> list[dict]:
        return self._tables.setdefault(table_name, [])

    def find(self, table_name: str, record_id: str) -> dict:
        """Read a stored row directly (test assertions)."""
        for row in self.rows(table_name):
            if row.get("id") == record_id:
                return row
        return None

    def fail_on(self, table_name: str, operation: str = None, **filters):
        """
        Raise on execute for matching queries.

        A query matches when it targets the table, has the same operation
        (if given) and carries an eq filter for every given column/value.
        """
        self._faults.append((table_name, operation, filters))

    def check_fault(self, table_name: str, operation: str, query_filters: list):
        eq_filters = {column: value for column, op, value in query_filters if op == "eq"}
        for fault_table, fault_operation, filters in self._faults:
            if fault_table != table_name:
                continue
            if fault_operation and fault_operation != operation:
                continue
            if any(eq_filters.get(k) != v for k, v in filters.items()):
                continue
            raise Exception(f"connection reset while querying {table_name}")

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self, name)


# ===================
# FIXTURES
# ===================

SINGLETONS = [
    ("services.item_store", "_item_store"),
    ("services.replacement_queue_service", "_replacement_queue_service"),
    ("services.order_service", "_order_service"),
    ("services.merge_service", "_merge_service"),
    ("services.urgent_order_service", "_urgent_order_service"),
    ("services.auto_merge_service", "_auto_merge_service"),
    ("services.reception_service", "_reception_service"),
]


def _reset_singletons():
    import importlib
    for module_name, attribute in SINGLETONS:
        module = importlib.import_module(module_name)
        setattr(module, attribute, None)


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("replacement_items", [...])
    """
    return MockSupabaseClient()


@pytest.fixture(autouse=True)
def mock_db(mock_supabase) -> Generator:
    """
    Route every service to the in-memory client.

    Service singletons are reset around each test so none keeps a client
    from an earlier test.
    """
    _reset_singletons()
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.item_store.get_supabase_client", return_value=mock_supabase):
            yield mock_supabase
    _reset_singletons()


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(mock_db):
    """
    Create FastAPI test client backed by the in-memory store.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/api/replacements")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
