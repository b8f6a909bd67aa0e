"""Pytest configuration and fixtures."""

import base64
import os
import time
from collections import defaultdict
from collections.abc import Callable, Generator
from datetime import datetime, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError as PostgrestAPIError
from svix.webhooks import Webhook

TEST_WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"taskmind-test-webhook-signing-key").decode()

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("CLERK_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
os.environ.setdefault("WEBHOOK_TEST_MODE", "false")


class FakeResponse:
    """Stand-in for postgrest's APIResponse."""

    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    """Records one chained PostgREST query and runs it against FakeSupabaseClient."""

    def __init__(self, client: "FakeSupabaseClient", table: str) -> None:
        self._client = client
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, Any]] = []
        self.row_limit: int | None = None
        self.on_conflict: str | None = None
        self.ignore_duplicates = False

    def select(self, *columns: str) -> "FakeQuery":
        self.op = "select"
        return self

    def insert(self, row: dict[str, Any]) -> "FakeQuery":
        self.op = "insert"
        self.payload = row
        return self

    def upsert(self, row: dict[str, Any], on_conflict: str = "", ignore_duplicates: bool = False) -> "FakeQuery":
        self.op = "upsert"
        self.payload = row
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, data: dict[str, Any]) -> "FakeQuery":
        self.op = "update"
        self.payload = data
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def limit(self, size: int) -> "FakeQuery":
        self.row_limit = size
        return self

    def execute(self) -> FakeResponse:
        return self._client.run(self)


class FakeSupabaseClient:
    """In-memory Supabase double with a unique user_id on the profiles table."""

    def __init__(self, unique_columns: dict[str, str] | None = None) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.unique_columns = unique_columns or {"user_profiles": "user_id"}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.before_write: Callable[[FakeQuery], None] | None = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str, error: Exception) -> None:
        """Make every ``op`` on ``table`` raise ``error``."""
        self.failures[(table, op)] = error

    def rows(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        return [r for r in self.tables[table] if all(r.get(k) == v for k, v in filters.items())]

    def _conflict(self, table: str, row: dict[str, Any], column: str | None) -> dict[str, Any] | None:
        if not column:
            return None
        for existing in self.tables[table]:
            if existing.get(column) == row.get(column):
                return existing
        return None

    def run(self, query: FakeQuery) -> FakeResponse:
        self.calls.append((query.table, query.op))
        error = self.failures.get((query.table, query.op))
        if error is not None:
            raise error

        if query.op in ("insert", "upsert") and self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook(query)

        rows = self.tables[query.table]
        matches = [r for r in rows if all(r.get(col) == val for col, val in query.filters)]

        if query.op == "select":
            selected = matches[: query.row_limit] if query.row_limit is not None else matches
            return FakeResponse([dict(r) for r in selected])

        if query.op == "insert":
            if self._conflict(query.table, query.payload, self.unique_columns.get(query.table)):
                raise PostgrestAPIError(
                    {
                        "code": "23505",
                        "message": "duplicate key value violates unique constraint",
                        "hint": None,
                        "details": None,
                    }
                )
            rows.append(dict(query.payload))
            return FakeResponse([dict(query.payload)])

        if query.op == "upsert":
            existing = self._conflict(query.table, query.payload, query.on_conflict)
            if existing is not None:
                if query.ignore_duplicates:
                    return FakeResponse([])
                existing.update(query.payload)
                return FakeResponse([dict(existing)])
            rows.append(dict(query.payload))
            return FakeResponse([dict(query.payload)])

        if query.op == "update":
            for row in matches:
                row.update(query.payload)
            return FakeResponse([dict(r) for r in matches])

        if query.op == "delete":
            self.tables[query.table] = [r for r in rows if r not in matches]
            return FakeResponse([dict(r) for r in matches])

        raise AssertionError(f"Unsupported fake operation {query.op}")


def make_svix_headers(
    body: bytes,
    secret: str = TEST_WEBHOOK_SECRET,
    timestamp: int | None = None,
    msg_id: str = "msg_2ZJr9HfqA1",
) -> dict[str, str]:
    """Sign a body the way Clerk (svix) does and return the three svix headers."""
    ts = int(time.time()) if timestamp is None else int(timestamp)
    signature = Webhook(secret).sign(msg_id, datetime.fromtimestamp(ts, tz=timezone.utc), body.decode())
    return {
        "svix-id": msg_id,
        "svix-timestamp": str(ts),
        "svix-signature": signature,
    }


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    """Provide an empty in-memory Supabase client."""
    return FakeSupabaseClient()


@pytest.fixture
def webhook_secret() -> str:
    """Provide the svix secret the test settings are configured with."""
    return TEST_WEBHOOK_SECRET


@pytest.fixture
def svix_headers() -> Callable[..., dict[str, str]]:
    """Provide the svix signing helper."""
    return make_svix_headers


@pytest.fixture
def app(fake_supabase: FakeSupabaseClient) -> Generator[Any, None, None]:
    """Provide the FastAPI app wired to the in-memory Supabase client."""
    from src.core.supabase import get_supabase_client
    from src.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_supabase_client] = lambda: fake_supabase
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app: Any) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Yields:
        TestClient: FastAPI test client.
    """
    with TestClient(app) as test_client:
        yield test_client
