"""Clause splitting for multi-part requests.

    "For patient PT-12345, get their medical history, then check upcoming
     appointments and show current account balance"

splits into a preamble ("For patient PT-12345") and three clauses. Rules:

  ;  and  then      always start a new clause
  ,  and  ", and"   start a new clause only when the next word is an action
                    verb (a static list plus the leading verb of every
                    catalog operation), so "February 10, 2026" and
                    "Dr. Smith and Dr. Lee" stay intact
  preamble          a leading segment that opens with "for" / "regarding" /
                    "about" / "concerning" and is followed by at least one
                    clause; it supplies shared context, it is not a step
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

ACTION_VERBS = frozenset({
    "get", "show", "check", "review", "list", "find", "fetch", "display", "retrieve",
    "view", "generate", "create", "schedule", "book", "order", "cancel", "reschedule",
    "update", "add", "process", "submit", "verify", "set", "setup", "send", "analyze",
    "search", "pay", "record", "run", "look", "pull", "give", "tell", "bill", "charge",
    "register", "remind", "notify", "compute", "calculate", "issue", "file", "request",
})

PREAMBLE_LEADS = frozenset({"for", "regarding", "about", "concerning", "re"})

_SEP_RE = re.compile(
    r"\s*;\s*"
    r"|\s*,\s*(?:and\s+)?(?:then\s+)?"
    r"|\s+and\s+then\s+"
    r"|\s+then\s+"
    r"|\s+and\s+",
    re.IGNORECASE,
)
_FIRST_WORD_RE = re.compile(r"\s*([A-Za-z]+)")
_LEADING_JOINERS_RE = re.compile(r"^(?:(?:and|then|also|finally|next|afterwards)\b[\s,]*)+", re.IGNORECASE)


@dataclass(frozen=True)
class ClauseSplit:
    preamble: str | None
    clauses: tuple[str, ...]


def first_word(text: str) -> str:
    m = _FIRST_WORD_RE.match(text)
    return m.group(1).lower() if m else ""


def split_clauses(text: str, verbs: Iterable[str] = ()) -> ClauseSplit:
    """Split a request into an optional preamble and ordered clauses."""
    text = " ".join(text.split()).strip().rstrip(".!?")
    if not text:
        return ClauseSplit(None, ())
    action_verbs = ACTION_VERBS | frozenset(v.lower() for v in verbs)

    pieces: list[str] = []
    start = 0
    for m in _SEP_RE.finditer(text):
        sep_words = m.group(0).lower().replace(",", " ").split()
        following = first_word(text[m.end():])
        if ";" in m.group(0) or "then" in sep_words or following in action_verbs:
            pieces.append(text[start:m.start()])
            start = m.end()
    pieces.append(text[start:])

    cleaned = [c for c in (_clean(p) for p in pieces) if c]
    preamble = None
    if len(cleaned) > 1 and first_word(cleaned[0]) in PREAMBLE_LEADS:
        preamble = cleaned.pop(0)
    return ClauseSplit(preamble, tuple(cleaned))


def _clean(piece: str) -> str:
    piece = _LEADING_JOINERS_RE.sub("", piece.strip())
    return piece.strip(" ,;.")
