"""Contact audit record/problem contracts and the TSV report line format."""

from __future__ import annotations

from dataclasses import dataclass
import unicodedata


PROBLEM_CATEGORY_UNMARSHAL = "unmarshal"
PROBLEM_CATEGORY_VALIDATION = "validation"
PROBLEM_CATEGORIES: set[str] = {PROBLEM_CATEGORY_UNMARSHAL, PROBLEM_CATEGORY_VALIDATION}

_NAMED_ESCAPES: dict[str, str] = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}
_PRINTABLE_CATEGORY_PREFIXES: tuple[str, ...] = ("L", "M", "N", "P", "S")


@dataclass(frozen=True)
class ContactRecord:
    id: int
    created_at: str
    raw_contact: bytes


@dataclass(frozen=True)
class DecodedRecord:
    id: int
    contacts: tuple[str, ...]
    created_at: str


@dataclass(frozen=True)
class Problem:
    record_id: int
    created_at: str
    category: str
    subject: str | bytes
    reason: str

    def __post_init__(self) -> None:
        if self.category not in PROBLEM_CATEGORIES:
            raise ValueError(f"unknown problem category: {self.category!r}")

    def as_line(self) -> str:
        return format_problem_line(
            record_id=self.record_id,
            created_at=self.created_at,
            category=self.category,
            subject=self.subject,
            reason=self.reason,
        )


def format_problem_line(
    *,
    record_id: int,
    created_at: str,
    category: str,
    subject: str | bytes,
    reason: str,
) -> str:
    """Render one report line: id, createdAt, category, quoted subject, quoted reason."""
    return f"{int(record_id)}\t{created_at}\t{category}\t{go_quote(subject)}\t{go_quote(reason)}\n"


def go_quote(value: str | bytes) -> str:
    """Quote ``value`` the way Go's ``%q`` verb (``strconv.Quote``) does.

    Bytes are interpreted as UTF-8; bytes that do not form valid UTF-8 are
    rendered as ``\\xNN`` escapes instead of being replaced. Unpaired surrogates
    in text become U+FFFD, as no Go string can hold one.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        text = bytes(value).decode("utf-8", errors="surrogateescape")
    else:
        text = replace_lone_surrogates(str(value))
    parts = ['"']
    for char in text:
        parts.append(_escape_char(char))
    parts.append('"')
    return "".join(parts)


def _escape_char(char: str) -> str:
    code = ord(char)
    if 0xDC80 <= code <= 0xDCFF:
        return f"\\x{code - 0xDC00:02x}"
    if char in ('"', "\\"):
        return "\\" + char
    if _is_printable(char):
        return char
    named = _NAMED_ESCAPES.get(char)
    if named is not None:
        return named
    if code < 0x20 or code == 0x7F:
        return f"\\x{code:02x}"
    if code < 0x10000:
        return f"\\u{code:04x}"
    return f"\\U{code:08x}"


def _is_printable(char: str) -> bool:
    if char == " ":
        return True
    return unicodedata.category(char).startswith(_PRINTABLE_CATEGORY_PREFIXES)


def replace_lone_surrogates(text: str) -> str:
    """Replace each unpaired UTF-16 surrogate in ``text`` with U+FFFD."""
    if not any(0xD800 <= ord(char) <= 0xDFFF for char in text):
        return text
    return text.encode("utf-16-le", errors="surrogatepass").decode("utf-16-le", errors="replace")
