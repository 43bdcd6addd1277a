"""Decoding of stored contact payloads into ordered contact lists."""

from __future__ import annotations

import json
from typing import Any

from .contracts import replace_lone_surrogates


class ContactDecodeError(ValueError):
    """Raised when a stored contact payload is not a JSON list of strings."""


def decode_contacts(raw_contact: bytes | str) -> tuple[str, ...]:
    """Decode ``raw_contact`` into contact strings, preserving order and duplicates.

    A JSON ``null`` payload decodes to an empty list and a ``null`` element to an
    empty string. Invalid UTF-8 and unpaired surrogate escapes are replaced with
    U+FFFD rather than rejected.
    """
    if isinstance(raw_contact, (bytes, bytearray, memoryview)):
        text = bytes(raw_contact).decode("utf-8", errors="replace")
    else:
        text = str(raw_contact)
    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ContactDecodeError(f"invalid JSON: {exc}") from exc
    if payload is None:
        return ()
    if not isinstance(payload, list):
        raise ContactDecodeError(f"cannot decode {_json_kind(payload)} into a list of contact strings")
    contacts: list[str] = []
    for index, item in enumerate(payload):
        if item is None:
            contacts.append("")
        elif isinstance(item, str):
            contacts.append(replace_lone_surrogates(item))
        else:
            raise ContactDecodeError(f"cannot decode {_json_kind(item)} at index {index} into a contact string")
    return tuple(contacts)


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return "string"
