"""Contact audit record source over the registrations store.

The store is read with relaxed isolation (``READ UNCOMMITTED``): the audit is
an offline analytical pass against a live, concurrently written store and
tolerates reading in-flight writes. Postgres treats ``READ UNCOMMITTED`` as
``READ COMMITTED``. SQLite honours ``PRAGMA read_uncommitted`` only between
shared-cache connections, so the relaxed level opens the file with
``cache=shared``.
"""

from __future__ import annotations

import logging
from pathlib import Path
import sqlite3
from typing import Any, Iterator

import psycopg

from .config import DEFAULT_FETCH_SIZE, ContactAuditDbConfig
from .contracts import ContactRecord


logger = logging.getLogger("contact_auditor.storage")

AUDIT_CURSOR_NAME = "contact_audit_cursor"
EMPTY_CONTACT_SENTINELS: tuple[str, ...] = ("[]", "null")

# Records with no contacts are not audited.
CONTACT_AUDIT_QUERY = """
SELECT DISTINCT r.id, r.contact, r."createdAt"
FROM registrations AS r
    INNER JOIN certificates AS c ON c."registrationID" = r.id
WHERE r.contact NOT IN ({sentinels})
""".format(sentinels=", ".join(f"'{value}'" for value in EMPTY_CONTACT_SENTINELS))

_STORE_ERRORS: tuple[type[BaseException], ...] = (sqlite3.Error, psycopg.Error)


class ContactAuditStoreError(RuntimeError):
    """Raised when the contact store cannot be opened, read, or closed."""


def is_postgres_dsn(value: str | None) -> bool:
    if not value:
        return False
    return value.startswith("postgres://") or value.startswith("postgresql://")


def connect_store(db: ContactAuditDbConfig) -> "ContactAuditStore":
    backend = "postgres" if is_postgres_dsn(db.dsn) else "sqlite"
    try:
        if backend == "postgres":
            connection = _connect_postgres(db)
        else:
            connection = _connect_sqlite(db)
    except _STORE_ERRORS as exc:
        raise ContactAuditStoreError(f"store connection failed: {exc}") from exc
    logger.info(
        "Contact store connected backend=%s isolation_level=%s fetch_size=%s",
        backend,
        db.isolation_level,
        db.fetch_size,
    )
    return ContactAuditStore(connection=connection, backend=backend, fetch_size=db.fetch_size)


class ContactAuditStore:
    """Read-only access to candidate contact records over one store connection."""

    def __init__(self, *, connection: Any, backend: str, fetch_size: int = DEFAULT_FETCH_SIZE) -> None:
        if backend not in ("sqlite", "postgres"):
            raise ContactAuditStoreError(f"unsupported store backend: {backend!r}")
        self.connection = connection
        self.backend = backend
        self.fetch_size = max(1, int(fetch_size))

    def open_cursor(self) -> "ContactRecordCursor":
        try:
            if self.backend == "postgres":
                cursor = self.connection.cursor(name=AUDIT_CURSOR_NAME)
                cursor.itersize = self.fetch_size
            else:
                cursor = self.connection.cursor()
            cursor.execute(CONTACT_AUDIT_QUERY)
        except _STORE_ERRORS as exc:
            raise ContactAuditStoreError(f"audit query failed: {exc}") from exc
        return ContactRecordCursor(cursor=cursor, fetch_size=self.fetch_size, connection=self.connection)

    def close(self) -> None:
        try:
            self.connection.close()
        except _STORE_ERRORS as exc:
            raise ContactAuditStoreError(f"store close failed: {exc}") from exc


class ContactRecordCursor:
    """Forward-only, single-pass stream of ``ContactRecord`` rows."""

    def __init__(self, *, cursor: Any, fetch_size: int = DEFAULT_FETCH_SIZE, connection: Any = None) -> None:
        self._cursor = cursor
        self._connection = connection
        self._fetch_size = max(1, int(fetch_size))
        self._iterated = False
        self.exhausted = False
        self.closed = False

    def __iter__(self) -> Iterator[ContactRecord]:
        if self._iterated:
            raise ContactAuditStoreError("contact record cursor is single-pass and was already iterated")
        if self.closed:
            raise ContactAuditStoreError("contact record cursor is closed")
        self._iterated = True
        return self._iter_records()

    def _iter_records(self) -> Iterator[ContactRecord]:
        while True:
            try:
                rows = self._cursor.fetchmany(self._fetch_size)
            except _STORE_ERRORS as exc:
                raise ContactAuditStoreError(f"row fetch failed: {exc}") from exc
            if not rows:
                self.exhausted = True
                return
            for row in rows:
                yield _row_to_record(row)

    def close(self) -> None:
        """Close the cursor; a failure here means the read may have been incomplete."""
        if self.closed:
            return
        self.closed = True
        try:
            self._cursor.close()
            if self._connection is not None:
                # End the read-only transaction the query opened.
                self._connection.rollback()
        except _STORE_ERRORS as exc:
            raise ContactAuditStoreError(f"cursor close failed: {exc}") from exc


def _row_to_record(row: Any) -> ContactRecord:
    try:
        record_id_raw, contact_raw, created_at_raw = row[0], row[1], row[2]
    except (IndexError, KeyError, TypeError) as exc:
        raise ContactAuditStoreError(f"row scan failed: expected (id, contact, createdAt), got {row!r}") from exc
    if isinstance(record_id_raw, bool):
        raise ContactAuditStoreError(f"row scan failed: id must be an integer, got {record_id_raw!r}")
    try:
        record_id = int(record_id_raw)
    except (TypeError, ValueError) as exc:
        raise ContactAuditStoreError(f"row scan failed: id must be an integer, got {record_id_raw!r}") from exc
    if created_at_raw is None:
        raise ContactAuditStoreError(f"row scan failed: createdAt is NULL for id {record_id}")
    return ContactRecord(
        id=record_id,
        created_at=_created_at_text(created_at_raw),
        raw_contact=_contact_bytes(contact_raw),
    )


def _contact_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return str(value).encode("utf-8")


def _created_at_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _connect_postgres(db: ContactAuditDbConfig) -> psycopg.Connection[Any]:
    connection = psycopg.connect(db.dsn, connect_timeout=db.connect_timeout_seconds)
    if db.isolation_level == "read_uncommitted":
        connection.isolation_level = psycopg.IsolationLevel.READ_UNCOMMITTED
    else:
        connection.isolation_level = psycopg.IsolationLevel.READ_COMMITTED
    connection.read_only = True
    return connection


def _connect_sqlite(db: ContactAuditDbConfig) -> sqlite3.Connection:
    path = Path(_sqlite_path(db.dsn))
    relaxed = db.isolation_level == "read_uncommitted"
    uri = path.resolve().as_uri() + ("?mode=ro&cache=shared" if relaxed else "?mode=ro")
    connection = sqlite3.connect(uri, uri=True, timeout=float(db.connect_timeout_seconds))
    if relaxed:
        connection.execute("PRAGMA read_uncommitted = 1")
    return connection


def _sqlite_path(locator: str) -> str:
    if locator.startswith("sqlite:///"):
        return locator[len("sqlite:///") :]
    if locator.startswith("sqlite://"):
        return locator[len("sqlite://") :]
    return locator
