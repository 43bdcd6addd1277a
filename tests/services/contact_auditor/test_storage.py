from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Any

import psycopg
import pytest

from contact_auditor.config import ContactAuditDbConfig
from contact_auditor.contracts import ContactRecord
from contact_auditor.storage import (
    CONTACT_AUDIT_QUERY,
    ContactAuditStore,
    ContactAuditStoreError,
    ContactRecordCursor,
    connect_store,
    is_postgres_dsn,
)


def _create_registrations_db(path: Path, registrations: list[tuple[int, Any, str]], certificates: list[int]) -> None:
    with sqlite3.connect(path) as conn:
        conn.executescript(
            """
            CREATE TABLE registrations (id INTEGER PRIMARY KEY, contact TEXT, "createdAt" TEXT NOT NULL);
            CREATE TABLE certificates (id INTEGER PRIMARY KEY AUTOINCREMENT, "registrationID" INTEGER NOT NULL);
            """
        )
        conn.executemany('INSERT INTO registrations (id, contact, "createdAt") VALUES (?, ?, ?)', registrations)
        conn.executemany('INSERT INTO certificates ("registrationID") VALUES (?)', [(item,) for item in certificates])
    conn.close()


class _ScriptedCursor:
    def __init__(self, rows: list[tuple[Any, ...]], *, fail_at: int | None = None, fail_on_close: bool = False) -> None:
        self.rows = rows
        self.fail_at = fail_at
        self.fail_on_close = fail_on_close
        self.position = 0
        self.closed = False

    def execute(self, sql: str) -> None:
        self.sql = sql

    def fetchmany(self, size: int) -> list[tuple[Any, ...]]:
        if self.fail_at is not None and self.position >= self.fail_at:
            raise sqlite3.OperationalError("database disk image is malformed")
        batch = self.rows[self.position : self.position + size]
        self.position += len(batch)
        return batch

    def close(self) -> None:
        self.closed = True
        if self.fail_on_close:
            raise sqlite3.OperationalError("interrupted")


def test_is_postgres_dsn() -> None:
    assert is_postgres_dsn("postgresql://user@db/boulder")
    assert is_postgres_dsn("postgres://user@db/boulder")
    assert not is_postgres_dsn("sqlite:///tmp/registrations.sqlite")
    assert not is_postgres_dsn(None)


def test_query_excludes_empty_contact_sentinels() -> None:
    assert "NOT IN ('[]', 'null')" in CONTACT_AUDIT_QUERY
    assert "SELECT DISTINCT" in CONTACT_AUDIT_QUERY


def test_sqlite_store_streams_distinct_candidate_records(tmp_path: Path) -> None:
    db_path = tmp_path / "registrations.sqlite"
    _create_registrations_db(
        db_path,
        [
            (1, b'["mailto:a@example.com"]', "2024-01-01 00:00:00"),
            (2, "[]", "2024-01-02 00:00:00"),
            (3, "null", "2024-01-03 00:00:00"),
            (4, None, "2024-01-04 00:00:00"),
            (5, b'["tel:+123"]', "2024-01-05 00:00:00"),
            (6, b'["mailto:nocert@example.com"]', "2024-01-06 00:00:00"),
            (7, b"[\xff", "2024-01-07 00:00:00"),
        ],
        certificates=[1, 1, 2, 3, 4, 5, 5, 7],
    )
    store = connect_store(ContactAuditDbConfig(dsn=f"sqlite:///{db_path}", fetch_size=2))
    cursor = store.open_cursor()
    records = sorted(cursor, key=lambda item: item.id)
    cursor.close()
    store.close()

    assert records == [
        ContactRecord(id=1, created_at="2024-01-01 00:00:00", raw_contact=b'["mailto:a@example.com"]'),
        ContactRecord(id=5, created_at="2024-01-05 00:00:00", raw_contact=b'["tel:+123"]'),
        ContactRecord(id=7, created_at="2024-01-07 00:00:00", raw_contact=b"[\xff"),
    ]
    assert cursor.exhausted


def test_sqlite_text_payloads_are_returned_as_bytes(tmp_path: Path) -> None:
    db_path = tmp_path / "registrations.sqlite"
    _create_registrations_db(db_path, [(1, '["mailto:é@example.com"]', "2024-01-01")], certificates=[1])
    store = connect_store(ContactAuditDbConfig(dsn=str(db_path)))
    cursor = store.open_cursor()
    (record,) = list(cursor)
    cursor.close()
    store.close()
    assert record.raw_contact == '["mailto:é@example.com"]'.encode("utf-8")


def test_sqlite_store_connection_is_read_only(tmp_path: Path) -> None:
    db_path = tmp_path / "registrations.sqlite"
    _create_registrations_db(db_path, [(1, b"[]", "2024-01-01")], certificates=[1])
    store = connect_store(ContactAuditDbConfig(dsn=str(db_path)))
    with pytest.raises(sqlite3.OperationalError):
        store.connection.execute("DELETE FROM registrations")
    store.close()


@pytest.mark.parametrize(("isolation_level", "expected"), [("read_uncommitted", 1), ("read_committed", 0)])
def test_sqlite_store_applies_configured_isolation(tmp_path: Path, isolation_level: str, expected: int) -> None:
    db_path = tmp_path / "registrations.sqlite"
    _create_registrations_db(db_path, [(1, b'["tel:1"]', "2024-01-01")], certificates=[1])
    store = connect_store(ContactAuditDbConfig(dsn=str(db_path), isolation_level=isolation_level))
    assert store.connection.execute("PRAGMA read_uncommitted").fetchone()[0] == expected
    store.close()


class _FakePostgresConnection:
    def __init__(self) -> None:
        self.isolation_level: psycopg.IsolationLevel | None = None
        self.read_only = False


@pytest.mark.parametrize(
    ("isolation_level", "expected"),
    [
        ("read_uncommitted", psycopg.IsolationLevel.READ_UNCOMMITTED),
        ("read_committed", psycopg.IsolationLevel.READ_COMMITTED),
    ],
)
def test_postgres_store_applies_configured_isolation(
    monkeypatch: pytest.MonkeyPatch,
    isolation_level: str,
    expected: psycopg.IsolationLevel,
) -> None:
    calls: list[tuple[str, dict[str, Any]]] = []
    fake = _FakePostgresConnection()

    def _fake_connect(dsn: str, **kwargs: Any) -> _FakePostgresConnection:
        calls.append((dsn, kwargs))
        return fake

    monkeypatch.setattr(psycopg, "connect", _fake_connect)
    dsn = "postgresql://auditor@db/boulder"
    store = connect_store(ContactAuditDbConfig(dsn=dsn, connect_timeout_seconds=3, isolation_level=isolation_level))

    assert store.backend == "postgres"
    assert store.connection is fake
    assert fake.isolation_level == expected
    assert fake.read_only is True
    assert calls == [(dsn, {"connect_timeout": 3})]


def test_connect_store_missing_sqlite_file_fails(tmp_path: Path) -> None:
    with pytest.raises(ContactAuditStoreError):
        connect_store(ContactAuditDbConfig(dsn=str(tmp_path / "missing.sqlite")))


def test_open_cursor_wraps_query_failures(tmp_path: Path) -> None:
    db_path = tmp_path / "empty.sqlite"
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE accounts (id INTEGER PRIMARY KEY)")
    conn.close()
    store = connect_store(ContactAuditDbConfig(dsn=str(db_path)))
    with pytest.raises(ContactAuditStoreError, match="audit query failed"):
        store.open_cursor()
    store.close()


def test_cursor_is_single_pass() -> None:
    cursor = ContactRecordCursor(cursor=_ScriptedCursor([(1, b"[]", "t")]))
    assert len(list(cursor)) == 1
    with pytest.raises(ContactAuditStoreError):
        iter(cursor)


def test_cursor_fetch_failure_is_store_error() -> None:
    cursor = ContactRecordCursor(cursor=_ScriptedCursor([(1, b"[]", "t"), (2, b"[]", "t")], fail_at=1), fetch_size=1)
    seen: list[int] = []
    with pytest.raises(ContactAuditStoreError, match="row fetch failed"):
        for record in cursor:
            seen.append(record.id)
    assert seen == [1]
    assert not cursor.exhausted


@pytest.mark.parametrize(
    "row",
    [
        ("abc", b"[]", "t"),
        (True, b"[]", "t"),
        (1, b"[]", None),
        (1, b"[]"),
    ],
)
def test_cursor_scan_failure_is_store_error(row: tuple[Any, ...]) -> None:
    cursor = ContactRecordCursor(cursor=_ScriptedCursor([row]))
    with pytest.raises(ContactAuditStoreError, match="row scan failed"):
        list(cursor)


def test_cursor_close_failure_is_store_error() -> None:
    scripted = _ScriptedCursor([], fail_on_close=True)
    cursor = ContactRecordCursor(cursor=scripted)
    assert list(cursor) == []
    with pytest.raises(ContactAuditStoreError, match="cursor close failed"):
        cursor.close()
    assert scripted.closed


def test_store_rejects_unknown_backend() -> None:
    with pytest.raises(ContactAuditStoreError):
        ContactAuditStore(connection=object(), backend="mysql")
