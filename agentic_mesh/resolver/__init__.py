"""Intent resolution: clause splitting, slot-filling and plan building."""

from agentic_mesh.resolver.clauses import ACTION_VERBS, ClauseSplit, split_clauses
from agentic_mesh.resolver.resolver import IntentResolver
from agentic_mesh.resolver.slots import ClauseEntities, SlotFiller, Span

__all__ = [
    "ACTION_VERBS",
    "ClauseEntities",
    "ClauseSplit",
    "IntentResolver",
    "SlotFiller",
    "Span",
    "split_clauses",
]
