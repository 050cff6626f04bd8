"""Shared test fixtures for the cassava analysis engine tests."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLASSIFIER_STRATEGY", "mock")
    monkeypatch.setenv("CLASSIFIER_API_KEY", "")
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "")
    monkeypatch.setenv("OFFLINE_DB_PATH", ":memory:")
    monkeypatch.setenv("CASSAVA_FORCE_OFFLINE", "false")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from cassava.core.connectivity.monitor import StaticConnectivityMonitor  # noqa: E402
from cassava.core.inference.providers.mock import MockClassifier  # noqa: E402
from cassava.core.remote.client import SupabaseBackendClient  # noqa: E402
from cassava.core.storage.database import LocalDatabase  # noqa: E402
from cassava.core.storage.models import AnalysisRecord, Severity  # noqa: E402
from cassava.core.storage.offline_store import OfflineStore  # noqa: E402
from cassava.core.telemetry.logger import SyncEventLogger  # noqa: E402


def make_record(
    id: str = "",
    user_id: str = "user-1",
    image_ref: str = "/tmp/leaf.jpg",
    disease_label: str = "Cassava Mosaic Disease",
    confidence_score: float = 0.9,
    created_at: str = "2026-01-01T10:00:00+00:00",
) -> AnalysisRecord:
    """Create an analysis record with sensible defaults."""
    return AnalysisRecord(
        id=id,
        user_id=user_id,
        image_ref=image_ref,
        disease_label=disease_label,
        confidence_score=confidence_score,
        severity_level=Severity.HIGH,
        treatment_text="Use mosaic-resistant varieties.",
        recommendations=["Isolate infected plants", "Control whiteflies"],
        analysis_metadata={"strategy": "mock"},
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# Fake supabase-py async client
# ---------------------------------------------------------------------------

@dataclass
class FakeResponse:
    data: list[dict[str, Any]] = field(default_factory=list)


class FakeQuery:
    """Chainable stand-in for a postgrest request builder."""

    def __init__(self, client: FakeSupabaseClient, table: str) -> None:
        self._client = client
        self._table = table
        self._op = "select"
        self._columns = "*"
        self._payload: dict[str, Any] = {}
        self._filters: list[tuple[str, Any]] = []
        self._order: tuple[str, bool] | None = None
        self._limit: int | None = None

    def select(self, columns: str = "*") -> FakeQuery:
        self._op, self._columns = "select", columns
        return self

    def insert(self, payload: dict[str, Any]) -> FakeQuery:
        self._op, self._payload = "insert", dict(payload)
        return self

    def delete(self) -> FakeQuery:
        self._op = "delete"
        return self

    def eq(self, column: str, value: Any) -> FakeQuery:
        self._filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> FakeQuery:
        self._order = (column, desc)
        return self

    def limit(self, n: int) -> FakeQuery:
        self._limit = n
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(row.get(col) == val for col, val in self._filters)

    async def execute(self) -> FakeResponse:
        self._client.maybe_fail(self._op)
        rows = self._client.tables.setdefault(self._table, [])

        if self._op == "insert":
            self._client.next_id += 1
            row = {**self._payload, "id": f"remote-{self._client.next_id}"}
            rows.append(row)
            return FakeResponse([dict(row)])

        if self._op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self._client.tables[self._table] = [r for r in rows if not self._matches(r)]
            return FakeResponse(removed)

        selected = [dict(r) for r in rows if self._matches(r)]
        if self._order is not None:
            column, desc = self._order
            selected.sort(key=lambda r: r.get(column) or "", reverse=desc)
        if self._limit is not None:
            selected = selected[: self._limit]
        if self._columns != "*":
            wanted = [c.strip() for c in self._columns.split(",")]
            selected = [{c: r.get(c) for c in wanted} for r in selected]
        return FakeResponse(selected)


class FakeBucket:
    def __init__(self, client: FakeSupabaseClient, name: str) -> None:
        self._client = client
        self.name = name

    async def upload(self, path: str, data: bytes, file_options: dict | None = None) -> Any:
        self._client.maybe_fail("upload")
        self._client.objects[f"{self.name}/{path}"] = data
        return SimpleNamespace(path=path)

    def get_public_url(self, path: str) -> str:
        exc = self._client.fail_on.get("public_url")
        if exc is not None:
            raise exc
        return f"https://fake.supabase.co/storage/v1/object/public/{self.name}/{path}"

    async def remove(self, paths: list[str]) -> list[dict[str, Any]]:
        self._client.maybe_fail("remove")
        for path in paths:
            self._client.objects.pop(f"{self.name}/{path}", None)
        return [{"name": p} for p in paths]


class FakeStorage:
    def __init__(self, client: FakeSupabaseClient) -> None:
        self._client = client

    def from_(self, bucket: str) -> FakeBucket:
        return FakeBucket(self._client, bucket)


class FakeAuth:
    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, str]] = {}
        self.session: Any = None
        self.listeners: list[Any] = []

    def _make_session(self, user_id: str, email: str) -> Any:
        return SimpleNamespace(user=SimpleNamespace(id=user_id, email=email))

    def _emit(self, event: str) -> None:
        for listener in self.listeners:
            listener(event, self.session)

    def sign_in_as(self, user_id: str, email: str = "farmer@example.org") -> None:
        self.session = self._make_session(user_id, email)

    async def sign_up(self, credentials: dict[str, str]) -> Any:
        email = credentials["email"]
        if email in self.accounts:
            raise RuntimeError("User already registered")
        user_id = f"user-{len(self.accounts) + 100}"
        self.accounts[email] = (credentials["password"], user_id)
        self.session = self._make_session(user_id, email)
        self._emit("SIGNED_IN")
        return self.session

    async def sign_in_with_password(self, credentials: dict[str, str]) -> Any:
        account = self.accounts.get(credentials["email"])
        if account is None or account[0] != credentials["password"]:
            raise RuntimeError("Invalid login credentials")
        self.session = self._make_session(account[1], credentials["email"])
        self._emit("SIGNED_IN")
        return self.session

    async def sign_out(self) -> None:
        self.session = None
        self._emit("SIGNED_OUT")

    async def get_session(self) -> Any:
        return self.session

    def on_auth_state_change(self, callback: Any) -> Any:
        self.listeners.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self.listeners.remove(callback))


class FakeSupabaseClient:
    """In-memory stand-in for supabase-py's AsyncClient.

    ``fail_on`` maps an operation ('insert', 'select', 'delete', 'upload',
    'remove', 'public_url') to the exception it should raise. ``offline=True`` makes every
    data call raise an httpx transport error.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.objects: dict[str, bytes] = {}
        self.next_id = 0
        self.fail_on: dict[str, Exception] = {}
        self.offline = False
        self.calls: list[str] = []
        self.auth = FakeAuth()
        self.storage = FakeStorage(self)

    def maybe_fail(self, op: str) -> None:
        self.calls.append(op)
        if self.offline:
            raise httpx.ConnectError("network unreachable")
        exc = self.fail_on.get(op)
        if exc is not None:
            raise exc

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str = "cassava_analyses") -> list[dict[str, Any]]:
        return self.tables.get(table, [])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    """A fake supabase client with user-1 signed in."""
    client = FakeSupabaseClient()
    client.auth.sign_in_as("user-1")
    return client


@pytest.fixture
def backend(fake_supabase: FakeSupabaseClient) -> SupabaseBackendClient:
    return SupabaseBackendClient(fake_supabase)


@pytest.fixture
def image_file(tmp_path: Path) -> str:
    """A small file standing in for a leaf photo."""
    path = tmp_path / "leaf.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg-bytes")
    return str(path)


@pytest.fixture
def local_db() -> LocalDatabase:
    """Uninitialized in-memory database; tests initialize it inside their loop."""
    return LocalDatabase(":memory:")


@pytest.fixture
def store(local_db: LocalDatabase) -> OfflineStore:
    return OfflineStore(local_db)


@pytest.fixture
def telemetry(local_db: LocalDatabase) -> SyncEventLogger:
    return SyncEventLogger(local_db)


@pytest.fixture
def classifier() -> MockClassifier:
    return MockClassifier()


@pytest.fixture
def connectivity() -> StaticConnectivityMonitor:
    return StaticConnectivityMonitor(online=True)


@pytest.fixture
def record_factory():
    """Factory for AnalysisRecord instances (see ``make_record``)."""
    return make_record
