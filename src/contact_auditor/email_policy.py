"""Email address syntax policy applied to ``mailto:`` contacts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from email_validator import EmailNotValidError, validate_email


class EmailPolicyError(ValueError):
    """Raised when an email address violates the contact policy."""


def check_email_syntax(address: str, *, forbidden_domains: Iterable[str] = ()) -> None:
    text = str(address)
    if not text:
        raise EmailPolicyError("email address must be non-empty")
    if text != text.strip():
        raise EmailPolicyError(f"email address must not contain surrounding whitespace: {text!r}")
    if any(char in text for char in "<>\"") or " " in text:
        # Display names and angle-bracket forms are not bare addresses.
        raise EmailPolicyError(f"unable to parse email address: {text!r}")
    try:
        validated = validate_email(
            text,
            check_deliverability=False,
            allow_domain_literal=False,
            allow_quoted_local=False,
        )
    except EmailNotValidError as exc:
        raise EmailPolicyError(_single_line(str(exc))) from exc
    domain = validated.ascii_domain.lower()
    forbidden = {str(item).strip().lower() for item in forbidden_domains if str(item or "").strip()}
    if domain in forbidden:
        raise EmailPolicyError(f"invalid contact domain. Contact emails @{domain} are forbidden")


@dataclass(frozen=True)
class EmailPolicy:
    forbidden_domains: tuple[str, ...] = ()

    def __call__(self, address: str) -> None:
        check_email_syntax(address, forbidden_domains=self.forbidden_domains)


def _single_line(message: str) -> str:
    return " ".join(message.split())
