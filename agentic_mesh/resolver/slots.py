"""Slot-filling: bind operation parameters to values found in clause text.

ClauseEntities scans a clause once for typed entities and records each as a
non-overlapping Span:

  identifier   PT-12345, APT-4411, LAB-99 ...   (kind from the prefix)
  date         February 10, 2026 / 10 Feb 2026 / 2026-02-10 / 02/10/2026
  money        $150, $1,200.50, 150 dollars
  doctor       Dr. Johnson, Dr. Sarah Johnson
  quantity     6 months, 3 visits
  number       any other bare number

SlotFiller.fill() then binds an operation's parameters in this order:

  1. keyword slot      "reason: schedule conflict", "policy number POL-7788",
                       "amount $150", "mark as urgent"
  2. typed entity      identifiers by kind, doctor names, dates, money/quantities
  3. preamble entity   identifiers, doctors and dates from the shared preamble
  4. dependency        ArgRef to the latest earlier step that carries the same
                       identifier kind as an argument or a declared output
  5. positional phrase leftover free text for string parameters
  6. MISSING           required parameters nothing could bind

Nothing is ever invented: a parameter with no evidence stays MISSING.
"""

from __future__ import annotations

import datetime
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from agentic_mesh.catalog.models import Operation, ParameterSpec
from agentic_mesh.catalog.text import GENERIC_VERBS, STOPWORDS, compact, humanize, name_tokens, stem
from agentic_mesh.engine.plan import MISSING, ArgRef, ResolvedCall
from agentic_mesh.identifiers import IDENTIFIER_PREFIXES, find_identifiers, identifier_kind
from agentic_mesh.resolver.clauses import ACTION_VERBS

# ---------------------------------------------------------------------------
# Entity patterns
# ---------------------------------------------------------------------------

_MONTH = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_MONTHS = {m: i for i, m in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1,
)}

# (pattern, order of the year / month / day groups)
_DATE_PATTERNS: list[tuple[re.Pattern[str], tuple[str, str, str]]] = [
    (re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b"), ("y", "m", "d")),
    (re.compile(rf"\b{_MONTH}\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b", re.IGNORECASE), ("m", "d", "y")),
    (re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH}\.?,?\s+(\d{{4}})\b", re.IGNORECASE), ("d", "m", "y")),
    (re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b"), ("m", "d", "y")),
]
_MONEY_RE = re.compile(
    r"\$\s?(\d{1,3}(?:,\d{3})+|\d+)(\.\d+)?|\b(\d+(?:\.\d+)?)\s*(?:dollars|usd)\b",
    re.IGNORECASE,
)
_DOCTOR_RE = re.compile(r"\b(?:[Dd]r|[Dd]octor)\.?\s+([A-Z][A-Za-z'\-]+(?:\s+[A-Z][A-Za-z'\-]+)?)")
_QUANTITY_RE = re.compile(
    r"\b(\d+)\s+(month|week|day|year|installment|payment|visit|session|dose|test)s?\b",
    re.IGNORECASE,
)
_NUMBER_RE = re.compile(r"(?<![\w.$-])(\d+(?:\.\d+)?)(?![\w-])")

# Enumerated values for parameters whose name (compacted) contains the key.
VOCABULARIES: dict[str, tuple[str, ...]] = {
    "urgency": ("urgent", "stat", "routine", "asap", "emergency", "high", "normal", "low"),
    "priority": ("urgent", "high", "normal", "low", "routine"),
    "paymentmethod": (
        "credit card", "debit card", "bank transfer", "cash", "check", "cheque", "insurance", "hsa",
    ),
}

_PHRASE_BREAK_RE = re.compile(
    r"\s*(?:\||[,;:]|\b(?:for|with|on|at|as|to|by|from|about|regarding|via|under|over|after|before|in)\b)\s*",
    re.IGNORECASE,
)
_WORD_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'+\-]*")

FILLER = STOPWORDS | frozenset({
    "patient", "patients", "id", "dr", "doctor", "mark", "flag", "make", "set", "please", "now",
    "amount", "number",
})

_DOCTOR_KEYS = ("doctor", "physician")
_AMOUNT_KEYS = ("amount", "total", "price", "cost", "fee", "balance", "payment", "charge")
_CAUSE_KEYS = ("reason", "cause")

# "due to X" / "because of X" binds X to a reason-like parameter.
_CAUSE_RE = re.compile(
    r"\b(?:due\s+to|because(?:\s+of)?|owing\s+to)\s+(?P<v>[^,;|]+?)(?=\s+(?:and|then)\b|\s*[,;|]|\s*$)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Span:
    start: int
    end: int
    category: str
    value: Any
    kind: str | None = None

    def overlaps(self, other: Span) -> bool:
        return self.start < other.end and other.start < self.end

    def within(self, other: Span) -> bool:
        return other.start <= self.start and self.end <= other.end


class ClauseEntities:
    """Typed entities found in one clause, as non-overlapping spans."""

    def __init__(self, text: str, spans: Sequence[Span] | None = None) -> None:
        self.text = text
        if spans is not None:
            self._spans = list(spans)
            return
        self._spans: list[Span] = []
        for value, kind, start, end in find_identifiers(text):
            self.claim(Span(start, end, "identifier", value, kind))
        for pattern, order in _DATE_PATTERNS:
            for m in pattern.finditer(text):
                iso = _to_iso(m.groups(), order)
                if iso:
                    self.claim(Span(m.start(), m.end(), "date", iso))
        for m in _MONEY_RE.finditer(text):
            digits = (m.group(1) or m.group(3)).replace(",", "") + (m.group(2) or "")
            self.claim(Span(m.start(), m.end(), "money", float(digits)))
        for m in _DOCTOR_RE.finditer(text):
            self.claim(Span(m.start(), m.end(), "doctor", m.group(1)))
        for m in _QUANTITY_RE.finditer(text):
            self.claim(Span(m.start(), m.end(), "quantity", int(m.group(1)), stem(m.group(2).lower())))
        for m in _NUMBER_RE.finditer(text):
            raw = m.group(1)
            self.claim(Span(m.start(), m.end(), "number", float(raw) if "." in raw else int(raw)))

    def fork(self) -> ClauseEntities:
        return ClauseEntities(self.text, self._spans)

    def claim(self, span: Span, absorb: bool = False) -> bool:
        """Record span unless it overlaps an existing one.

        With absorb=True, existing spans lying wholly inside the new span are
        replaced by it; partial overlaps are still refused.
        """
        inside = [s for s in self._spans if s.overlaps(span)]
        if inside:
            if not absorb or not all(s.within(span) for s in inside):
                return False
            self._spans = [s for s in self._spans if s not in inside]
        self._spans.append(span)
        self._spans.sort(key=lambda s: s.start)
        return True

    def release(self, span: Span) -> None:
        if span in self._spans:
            self._spans.remove(span)

    def of(self, category: str) -> list[Span]:
        return [s for s in self._spans if s.category == category]

    def masked(self) -> str:
        """Clause text with every claimed span replaced by a phrase break."""
        out: list[str] = []
        pos = 0
        for s in self._spans:
            out.append(self.text[pos:s.start])
            out.append(" | ")
            pos = s.end
        out.append(self.text[pos:])
        return "".join(out)

    def __repr__(self) -> str:
        return f"ClauseEntities({[(s.category, s.value) for s in self._spans]!r})"


def _to_iso(groups: Sequence[str], order: tuple[str, str, str]) -> str | None:
    parts = dict(zip(order, groups))
    try:
        month_raw = parts["m"]
        month = int(month_raw) if month_raw.isdigit() else _MONTHS[month_raw.lower()[:3]]
        return datetime.date(int(parts["y"]), month, int(parts["d"])).isoformat()
    except (KeyError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Parameter classification
# ---------------------------------------------------------------------------


_KNOWN_KINDS = frozenset(IDENTIFIER_PREFIXES.values())


def _param_kind(spec: ParameterSpec) -> str | None:
    """Identifier kind a parameter accepts.

    None for non-identifier parameters, "" for identifier parameters of a
    kind no prefix maps to (e.g. previousTestId).
    """
    kind = identifier_kind(spec.name)
    if kind is None:
        return "" if spec.type == "identifier" else None
    return kind if kind in _KNOWN_KINDS else ""


def _is_date(spec: ParameterSpec) -> bool:
    return spec.type == "date" or "date" in compact(spec.name)


def _is_doctor(spec: ParameterSpec) -> bool:
    key = compact(spec.name)
    return spec.type == "string" and any(k in key for k in _DOCTOR_KEYS)


def _is_numeric(spec: ParameterSpec) -> bool:
    return spec.type in ("number", "integer")


def _vocabulary(spec: ParameterSpec) -> tuple[str, ...]:
    key = compact(spec.name)
    for name, values in VOCABULARIES.items():
        if name in key:
            return values
    return ()


# ---------------------------------------------------------------------------
# Slot filler
# ---------------------------------------------------------------------------


class SlotFiller:
    """Binds one operation's parameters for one clause."""

    def __init__(
        self,
        operation: Operation,
        entities: ClauseEntities,
        preamble: ClauseEntities | None = None,
        prior: Sequence[ResolvedCall] = (),
    ) -> None:
        self.operation = operation
        self.entities = entities.fork()
        self.preamble = preamble
        self.prior = prior

    def fill(self) -> dict[str, Any]:
        params = self.operation.parameters
        bound: dict[str, Any] = {}

        for spec in params:
            value = self._keyword(spec, params)
            if value is not None:
                bound[spec.name] = value

        for spec in params:
            if spec.name in bound:
                continue
            value = self._vocabulary_value(spec)
            if value is None:
                value = self._typed(spec, params)
            if value is None:
                value = self._from_preamble(spec)
            if value is None:
                value = self._dependency(spec)
            if value is not None:
                bound[spec.name] = value

        free = [
            s for s in params
            if s.name not in bound and s.type == "string" and _param_kind(s) is None
        ]
        phrases = self._phrases()
        for spec in sorted(free, key=lambda s: not s.required):
            if not phrases:
                break
            bound[spec.name] = phrases.pop(0)

        return {
            spec.name: bound.get(spec.name, MISSING)
            for spec in params
            if spec.name in bound or spec.required
        }

    # ------------------------------------------------------------------
    # 1. keyword slots
    # ------------------------------------------------------------------

    def _keyword(self, spec: ParameterSpec, params: Sequence[ParameterSpec]) -> Any:
        if _param_kind(spec) is not None or _is_doctor(spec) or spec.type == "date":
            return None
        label = humanize(spec.name)
        if not label:
            return None
        label_re = r"\s+".join(re.escape(w) for w in label.split())
        text = self.entities.text

        if _is_numeric(spec):
            pattern = re.compile(
                rf"\b{label_re}\s*(?:[:=]|\bis\b|\bof\b)?\s*(\$?\s?\d[\d,]*(?:\.\d+)?)",
                re.IGNORECASE,
            )
        else:
            others = [humanize(p.name) for p in params if p.name != spec.name]
            stop = "|".join(
                [r"\s+(?:for|with|on|at|to|by|from|and|then)\b", r"\s*[,;]", r"\s*$"]
                + [rf"\s+{re.escape(o)}\b" for o in others if o]
            )
            separator = r"\s*(?:[:=]|\bis\b)\s*" if len(label.split()) == 1 else r"\s*(?:[:=]|\bis\b)?\s*"
            pattern = re.compile(
                rf"\b{label_re}{separator}(?P<v>(?!(?:the|a|an|for|to|of|with)\b)[^,;|]+?)(?={stop})",
                re.IGNORECASE,
            )
        for m in pattern.finditer(text):
            raw = m.group(m.lastindex or 1) if _is_numeric(spec) else m.group("v")
            raw = raw.strip()
            if not raw:
                continue
            span = Span(m.start(), m.end(), "keyword", raw, spec.name)
            if self.entities.claim(span, absorb=True):
                return raw.replace("$", "").replace(",", "").strip() if _is_numeric(spec) else raw
        if not _is_numeric(spec) and any(k in compact(spec.name) for k in _CAUSE_KEYS):
            for m in _CAUSE_RE.finditer(text):
                raw = m.group("v").strip()
                if raw and self.entities.claim(Span(m.start(), m.end(), "keyword", raw, spec.name), absorb=True):
                    return raw
        return None

    # ------------------------------------------------------------------
    # 2. typed entities
    # ------------------------------------------------------------------

    def _vocabulary_value(self, spec: ParameterSpec) -> str | None:
        values = _vocabulary(spec)
        if not values:
            return None
        alternatives = "|".join(re.escape(v) for v in values)
        pattern = re.compile(rf"\b(?:mark(?:ed)?\s+(?:it\s+)?as\s+|as\s+)?({alternatives})\b", re.IGNORECASE)
        for m in pattern.finditer(self.entities.text):
            if self.entities.claim(Span(m.start(), m.end(), "vocabulary", m.group(1).lower(), spec.name)):
                return m.group(1).lower()
        return None

    def _typed(self, spec: ParameterSpec, params: Sequence[ParameterSpec]) -> Any:
        kind = _param_kind(spec)
        if kind is not None:
            return self._take_identifier(self.entities, kind, params)
        if _is_date(spec):
            return self._take(self.entities, "date")
        if _is_doctor(spec):
            return self._take(self.entities, "doctor")
        if _is_numeric(spec):
            return self._take_number(spec)
        return None

    def _take(self, entities: ClauseEntities, category: str) -> Any:
        spans = entities.of(category)
        if not spans:
            return None
        entities.release(spans[0])
        entities.claim(Span(spans[0].start, spans[0].end, "used", spans[0].value))
        return spans[0].value

    def _take_identifier(self, entities: ClauseEntities, kind: str, params: Sequence[ParameterSpec]) -> str | None:
        spans = entities.of("identifier")
        if kind:
            match = next((s for s in spans if s.kind == kind), None)
        else:
            # Parameter of an unknown kind (e.g. previousTestId): take the first
            # identifier no other parameter of this operation claims.
            claimed = {_param_kind(p) for p in params}
            match = next((s for s in spans if s.kind not in claimed), None)
        if match is None:
            return None
        entities.release(match)
        entities.claim(Span(match.start, match.end, "used", match.value, match.kind))
        return match.value

    def _take_number(self, spec: ParameterSpec) -> Any:
        key = compact(spec.name)
        if any(k in key for k in _AMOUNT_KEYS) or spec.type == "number":
            value = self._take(self.entities, "money")
            if value is not None:
                return value
        for span in self.entities.of("quantity"):
            if span.kind and span.kind in key:
                self.entities.release(span)
                self.entities.claim(Span(span.start, span.end, "used", span.value))
                return span.value
        value = self._take(self.entities, "number")
        if value is not None:
            return value
        if spec.type == "integer":
            return self._take(self.entities, "quantity")
        return None

    # ------------------------------------------------------------------
    # 3. preamble, 4. dependency
    # ------------------------------------------------------------------

    def _from_preamble(self, spec: ParameterSpec) -> Any:
        if self.preamble is None:
            return None
        kind = _param_kind(spec)
        if kind:
            spans = [s for s in self.preamble.of("identifier") if s.kind == kind]
            return spans[0].value if spans else None
        if _is_date(spec):
            spans = self.preamble.of("date")
            return spans[0].value if spans else None
        if _is_doctor(spec):
            spans = self.preamble.of("doctor")
            return spans[0].value if spans else None
        return None

    def _dependency(self, spec: ParameterSpec) -> ArgRef | None:
        kind = _param_kind(spec)
        if kind is None:
            return None
        for step in range(len(self.prior) - 1, -1, -1):
            call = self.prior[step]
            for p in call.operation.parameters:
                if p.name in call.arguments and call.arguments[p.name] is not MISSING and _matches(p.name, spec.name, kind):
                    return ArgRef(step=step, field=p.name, kind=kind or None)
            for output in call.operation.outputs:
                if _matches(output, spec.name, kind):
                    return ArgRef(step=step, field=output, kind=kind or None)
        return None

    # ------------------------------------------------------------------
    # 5. positional phrases
    # ------------------------------------------------------------------

    def _phrases(self) -> list[str]:
        segments = _PHRASE_BREAK_RE.split(self.entities.masked())
        if not segments:
            return []
        op_words = set(name_tokens(self.operation.name))
        drop = op_words | ACTION_VERBS | GENERIC_VERBS

        phrases: list[str] = []
        head_words = [
            w for w in _WORD_RE.findall(segments[0])
            if stem(w.lower()) not in drop and w.lower() not in FILLER
        ]
        if head_words:
            phrases.append(" ".join(head_words))
        for segment in segments[1:]:
            tokens = _WORD_RE.findall(segment)
            while tokens and tokens[0].lower() in FILLER:
                tokens.pop(0)
            while tokens and tokens[-1].lower() in FILLER:
                tokens.pop()
            if tokens and not all(t.replace(".", "").isdigit() for t in tokens):
                phrases.append(" ".join(tokens))
        return phrases


def _matches(field_name: str, wanted: str, kind: str) -> bool:
    if kind:
        return identifier_kind(field_name) == kind
    return compact(field_name) == compact(wanted)


__all__ = [
    "VOCABULARIES",
    "ClauseEntities",
    "SlotFiller",
    "Span",
]
