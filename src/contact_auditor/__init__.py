"""Contact auditor: batch audit of stored registration contacts."""

from .auditor import (
    AuditRunState,
    AuditRunSummary,
    ContactAuditInterruptedError,
    ContactAuditor,
    QueueRecordTap,
)
from .config import ContactAuditConfigError, ContactAuditorConfig, load_auditor_config
from .contracts import ContactRecord, DecodedRecord, Problem, format_problem_line, go_quote, replace_lone_surrogates
from .decoder import ContactDecodeError, decode_contacts
from .email_policy import EmailPolicy, EmailPolicyError, check_email_syntax
from .sink import ConsoleDestination, FileDestination, ResultSink, report_file_name
from .storage import ContactAuditStore, ContactAuditStoreError, ContactRecordCursor, connect_store
from .validator import ContactValidationError, validate_contacts

__all__ = [
    "AuditRunState",
    "AuditRunSummary",
    "ContactAuditInterruptedError",
    "ContactAuditor",
    "QueueRecordTap",
    "ContactAuditConfigError",
    "ContactAuditorConfig",
    "load_auditor_config",
    "ContactRecord",
    "DecodedRecord",
    "Problem",
    "format_problem_line",
    "go_quote",
    "replace_lone_surrogates",
    "ContactDecodeError",
    "decode_contacts",
    "EmailPolicy",
    "EmailPolicyError",
    "check_email_syntax",
    "ConsoleDestination",
    "FileDestination",
    "ResultSink",
    "report_file_name",
    "ContactAuditStore",
    "ContactAuditStoreError",
    "ContactRecordCursor",
    "connect_store",
    "ContactValidationError",
    "validate_contacts",
]
