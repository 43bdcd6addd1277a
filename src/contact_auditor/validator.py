"""Contact policy validation for a single decoded record."""

from __future__ import annotations

from typing import Callable, Sequence

from .contracts import PROBLEM_CATEGORY_VALIDATION, Problem
from .email_policy import EmailPolicyError, check_email_syntax


MAILTO_PREFIX = "mailto:"
MISSING_MAILTO_REASON = "missing 'mailto:' prefix"

EmailCheck = Callable[[str], None]


class ContactValidationError(ValueError):
    """Aggregate of every validation problem found for one record.

    ``str(error)`` is the report text: one newline-terminated line per failing
    contact, in contact order.
    """

    def __init__(self, problems: Sequence[Problem]) -> None:
        self.problems = tuple(problems)
        super().__init__("".join(problem.as_line() for problem in self.problems))

    @property
    def problem_count(self) -> int:
        return len(self.problems)


def validate_contacts(
    record_id: int,
    created_at: str,
    contacts: Sequence[str],
    *,
    check_email: EmailCheck = check_email_syntax,
) -> ContactValidationError | None:
    problems: list[Problem] = []

    def add_problem(contact: str, reason: str) -> None:
        problems.append(
            Problem(
                record_id=record_id,
                created_at=created_at,
                category=PROBLEM_CATEGORY_VALIDATION,
                subject=contact,
                reason=reason,
            )
        )

    for contact in contacts:
        if not contact.startswith(MAILTO_PREFIX):
            add_problem(contact, MISSING_MAILTO_REASON)
            continue
        try:
            check_email(contact[len(MAILTO_PREFIX) :])
        except EmailPolicyError as exc:
            add_problem(contact, str(exc))

    if problems:
        return ContactValidationError(problems)
    return None
