"""Contact audit orchestrator.

Streams candidate records from the store, decodes and validates each one, and
writes every problem to the result sink as it is found. Per-record problems
never interrupt the run; any store or cursor failure does.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import queue
from typing import Any, NoReturn, Protocol

from .contracts import PROBLEM_CATEGORY_UNMARSHAL, ContactRecord, DecodedRecord, Problem
from .decoder import ContactDecodeError, decode_contacts
from .email_policy import check_email_syntax
from .sink import ResultSink
from .storage import ContactAuditStore, ContactAuditStoreError, ContactRecordCursor
from .validator import EmailCheck, validate_contacts


logger = logging.getLogger("contact_auditor.auditor")

INTERRUPTED_MESSAGE = "Audit was interrupted, results may be incomplete"


class ContactAuditInterruptedError(RuntimeError):
    """Raised when a store or cursor failure stops the audit before completion."""


class AuditRunState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RecordObserver(Protocol):
    def observe(self, record: DecodedRecord) -> None: ...

    def close(self) -> None: ...


class QueueRecordTap:
    """Observer that copies decoded records onto an unbounded queue.

    ``close`` enqueues a ``None`` sentinel once the run completes.
    """

    def __init__(self, records: "queue.Queue[DecodedRecord | None] | None" = None) -> None:
        self.records: queue.Queue[DecodedRecord | None] = records if records is not None else queue.Queue()

    def observe(self, record: DecodedRecord) -> None:
        self.records.put_nowait(record)

    def close(self) -> None:
        self.records.put_nowait(None)

    def drain(self) -> list[DecodedRecord]:
        drained: list[DecodedRecord] = []
        while True:
            try:
                item = self.records.get_nowait()
            except queue.Empty:
                return drained
            if item is None:
                return drained
            drained.append(item)


@dataclass(frozen=True)
class AuditRunSummary:
    records_audited: int
    records_with_problems: int
    unmarshal_problems: int
    validation_problems: int

    @property
    def total_problems(self) -> int:
        return self.unmarshal_problems + self.validation_problems

    def as_dict(self) -> dict[str, Any]:
        return {
            "records_audited": self.records_audited,
            "records_with_problems": self.records_with_problems,
            "unmarshal_problems": self.unmarshal_problems,
            "validation_problems": self.validation_problems,
            "total_problems": self.total_problems,
        }


class ContactAuditor:
    def __init__(
        self,
        *,
        store: ContactAuditStore,
        sink: ResultSink,
        email_check: EmailCheck = check_email_syntax,
    ) -> None:
        self.store = store
        self.sink = sink
        self.email_check = email_check
        self.state = AuditRunState.NOT_STARTED
        self._records_audited = 0
        self._records_with_problems = 0
        self._unmarshal_problems = 0
        self._validation_problems = 0

    def run(self, observer: RecordObserver | None = None) -> AuditRunSummary:
        if self.state is not AuditRunState.NOT_STARTED:
            raise RuntimeError(f"contact audit already ran (state={self.state.value})")
        self.state = AuditRunState.RUNNING
        logger.info("Beginning database query")
        try:
            cursor = self.store.open_cursor()
        except ContactAuditStoreError as exc:
            self._fail(exc)

        try:
            for record in cursor:
                self._audit_record(record, observer)
        except ContactAuditStoreError as exc:
            _close_quietly(cursor)
            self._fail(exc)
        except BaseException:
            self.state = AuditRunState.FAILED
            _close_quietly(cursor)
            raise

        # A failed close means the query may not have delivered every row.
        try:
            cursor.close()
        except ContactAuditStoreError as exc:
            self._fail(exc)
        logger.info("Query completed successfully")

        if observer is not None:
            observer.close()
        self.state = AuditRunState.COMPLETED
        summary = self.summary()
        logger.info(
            "Contact audit completed records_audited=%s records_with_problems=%s unmarshal=%s validation=%s",
            summary.records_audited,
            summary.records_with_problems,
            summary.unmarshal_problems,
            summary.validation_problems,
        )
        return summary

    def summary(self) -> AuditRunSummary:
        return AuditRunSummary(
            records_audited=self._records_audited,
            records_with_problems=self._records_with_problems,
            unmarshal_problems=self._unmarshal_problems,
            validation_problems=self._validation_problems,
        )

    def _audit_record(self, record: ContactRecord, observer: RecordObserver | None) -> None:
        self._records_audited += 1
        has_problem = False
        decoded = True
        try:
            contacts = decode_contacts(record.raw_contact)
        except ContactDecodeError as exc:
            decoded = False
            contacts = ()
            has_problem = True
            self._unmarshal_problems += 1
            problem = Problem(
                record_id=record.id,
                created_at=record.created_at,
                category=PROBLEM_CATEGORY_UNMARSHAL,
                subject=record.raw_contact,
                reason=str(exc),
            )
            self.sink.write(problem.as_line())

        # Undecodable payloads fall through with no contacts, which validates cleanly.
        error = validate_contacts(record.id, record.created_at, contacts, check_email=self.email_check)
        if error is not None:
            has_problem = True
            self._validation_problems += error.problem_count
            self.sink.write(str(error))

        if has_problem:
            self._records_with_problems += 1
        if decoded and observer is not None:
            observer.observe(DecodedRecord(id=record.id, contacts=contacts, created_at=record.created_at))

    def _fail(self, exc: ContactAuditStoreError) -> NoReturn:
        self.state = AuditRunState.FAILED
        raise ContactAuditInterruptedError(f"{INTERRUPTED_MESSAGE}: {exc}") from exc


def _close_quietly(cursor: ContactRecordCursor) -> None:
    try:
        cursor.close()
    except ContactAuditStoreError as exc:
        logger.warning("Cursor close after interrupted read also failed: %s", exc)
