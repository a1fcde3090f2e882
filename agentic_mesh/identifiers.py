"""Identifier kinds shared by slot-filling and dependency extraction.

Identifiers look like ``PREFIX-digits``. The prefix names the kind of entity,
and a parameter named ``<kind>Id`` (any casing) accepts that kind.
"""

from __future__ import annotations

import re

from agentic_mesh.catalog.text import compact

# prefix -> kind
IDENTIFIER_PREFIXES: dict[str, str] = {
    "PT": "patient",
    "APT": "appointment",
    "INV": "invoice",
    "CLM": "claim",
    "LAB": "laborder",
    "IMG": "imagingorder",
    "PAY": "payment",
    "PLAN": "paymentplan",
}

IDENTIFIER_RE = re.compile(r"\b([A-Z]{2,5})-(\d+)\b")

_ID_SUFFIX_RE = re.compile(r"(?:Id|ID|[_-]id)$")


def identifier_kind(parameter_name: str) -> str | None:
    """Kind accepted by an identifier-shaped parameter name, or None.

    >>> identifier_kind("patientId"), identifier_kind("lab_order_id"), identifier_kind("amount")
    ('patient', 'laborder', None)
    """
    m = _ID_SUFFIX_RE.search(parameter_name)
    if not m or m.start() == 0:
        return None
    return compact(parameter_name[:m.start()])


def kind_of(identifier: str) -> str | None:
    m = IDENTIFIER_RE.fullmatch(identifier.strip())
    if not m:
        return None
    return IDENTIFIER_PREFIXES.get(m.group(1))


def find_identifiers(text: str) -> list[tuple[str, str, int, int]]:
    """All known identifiers in text as (value, kind, start, end), in order."""
    found = []
    for m in IDENTIFIER_RE.finditer(text):
        kind = IDENTIFIER_PREFIXES.get(m.group(1))
        if kind is not None:
            found.append((m.group(0), kind, m.start(), m.end()))
    return found


def find_identifier(text: str, kind: str) -> str | None:
    """First identifier of the given kind in text."""
    for value, k, _start, _end in find_identifiers(text):
        if k == kind:
            return value
    return None
