"""CapabilityCatalog — aggregates the operations of many remote services.

The catalog never mutates a published snapshot. Every register / refresh /
unregister builds a new CatalogSnapshot and swaps the reference in one
assignment, so a query that captured ``catalog.snapshot()`` keeps seeing a
consistent view for its whole lifetime.

Discovery for different services runs concurrently; discovery for the same
service is serialized by a per-service asyncio.Lock.

Usage:
    catalog = CapabilityCatalog(ServiceClient(settings))
    await catalog.register_all({"patients": "http://localhost:8871"})
    snapshot = catalog.snapshot()
    snapshot.lookup("medical history")   # -> [Operation, ...]
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from agentic_mesh.catalog.models import Operation, ServiceDescriptor, parse_descriptor
from agentic_mesh.catalog.text import GENERIC_VERBS, compact, name_tokens, split_identifier, tokenize
from agentic_mesh.errors import DiscoveryError, UnknownServiceError

if TYPE_CHECKING:
    from agentic_mesh.client import ServiceClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    """A scored lookup candidate.

    Fields:
        operation:   The candidate operation.
        exact:       The operation name appears verbatim in the query.
        name_hits:   Query tokens found in the operation name.
        desc_hits:   Query tokens found in the description.
        confidence:  Distinct non-generic query tokens found in name or description.
        position:    Registration order across the whole catalog.
    """

    operation: Operation
    exact: bool
    name_hits: int
    desc_hits: int
    confidence: int
    position: int

    @property
    def sort_key(self) -> tuple[int, int, int, int]:
        return (-int(self.exact), -self.name_hits, -self.desc_hits, self.position)


class CatalogSnapshot:
    """Immutable view of every registered service plus a token index."""

    def __init__(self, services: Mapping[str, ServiceDescriptor] | None = None) -> None:
        self._services: Mapping[str, ServiceDescriptor] = MappingProxyType(dict(services or {}))
        ops: list[Operation] = []
        for descriptor in self._services.values():
            ops.extend(descriptor.operations)
        self._operations: tuple[Operation, ...] = tuple(ops)

        self._name_tokens: list[frozenset[str]] = []
        self._desc_tokens: list[frozenset[str]] = []
        index: dict[str, list[int]] = {}
        for pos, op in enumerate(self._operations):
            ntok = frozenset(name_tokens(op.name))
            dtok = frozenset(tokenize(op.description))
            self._name_tokens.append(ntok)
            self._desc_tokens.append(dtok)
            for token in ntok | dtok:
                index.setdefault(token, []).append(pos)
        self._index: dict[str, tuple[int, ...]] = {k: tuple(v) for k, v in index.items()}
        self._verbs: frozenset[str] = frozenset(
            split_identifier(op.name)[0] for op in self._operations if split_identifier(op.name)
        )

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def services(self) -> Mapping[str, ServiceDescriptor]:
        return self._services

    @property
    def operations(self) -> tuple[Operation, ...]:
        return self._operations

    @property
    def verbs(self) -> frozenset[str]:
        """Leading verb of every operation name (``getPatientHistory`` -> ``get``)."""
        return self._verbs

    def service(self, service_id: str) -> ServiceDescriptor:
        try:
            return self._services[service_id]
        except KeyError:
            raise UnknownServiceError(service_id) from None

    def operation(self, service_id: str, name: str) -> Operation | None:
        descriptor = self._services.get(service_id)
        return descriptor.operation(name) if descriptor else None

    def find(self, name: str) -> list[Operation]:
        """All operations with the given name, or with the given ``service.name`` ref."""
        return [op for op in self._operations if op.name == name or op.ref == name]

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def rank(self, text: str) -> list[Match]:
        """Score every candidate operation for text, best first.

        Order: exact name substring, then name token hits, then description
        overlap, then registration order. Deterministic for a given snapshot.
        """
        query = set(tokenize(text))
        squashed = compact(text)

        candidates: set[int] = set()
        for token in query:
            candidates.update(self._index.get(token, ()))
        for pos, op in enumerate(self._operations):
            if op.name.lower() in squashed:
                candidates.add(pos)

        meaningful = query - GENERIC_VERBS
        matches: list[Match] = []
        for pos in candidates:
            op = self._operations[pos]
            ntok = self._name_tokens[pos]
            dtok = self._desc_tokens[pos]
            exact = op.name.lower() in squashed
            matches.append(Match(
                operation=op,
                exact=exact,
                name_hits=len(query & ntok),
                desc_hits=len(query & dtok),
                confidence=len(meaningful & (ntok | dtok)) + (1 if exact else 0),
                position=pos,
            ))
        matches.sort(key=lambda m: m.sort_key)
        return matches

    def lookup(self, keyword: str) -> list[Operation]:
        """Ranked candidate operations for a keyword or phrase."""
        return [m.operation for m in self.rank(keyword)]

    # ------------------------------------------------------------------
    # Copy-on-write updates
    # ------------------------------------------------------------------

    def with_service(self, descriptor: ServiceDescriptor) -> CatalogSnapshot:
        """New snapshot with descriptor added or replaced (keeps its position)."""
        services = dict(self._services)
        services[descriptor.service_id] = descriptor
        return CatalogSnapshot(services)

    def without_service(self, service_id: str) -> CatalogSnapshot:
        services = dict(self._services)
        services.pop(service_id, None)
        return CatalogSnapshot(services)

    def to_dict(self) -> dict[str, Any]:
        return {"services": [d.to_dict() for d in self._services.values()]}

    def __len__(self) -> int:
        return len(self._operations)

    def __repr__(self) -> str:
        return f"CatalogSnapshot(services={list(self._services)!r}, operations={len(self._operations)})"


class CapabilityCatalog:
    """Owns the current CatalogSnapshot and the discovery calls that build it."""

    def __init__(self, client: ServiceClient) -> None:
        self._client = client
        self._snapshot = CatalogSnapshot()
        self._locks: dict[str, asyncio.Lock] = {}

    def snapshot(self) -> CatalogSnapshot:
        """The current snapshot. Hold on to it for the duration of one query."""
        return self._snapshot

    def lookup(self, keyword: str) -> list[Operation]:
        return self._snapshot.lookup(keyword)

    def services(self) -> list[ServiceDescriptor]:
        return list(self._snapshot.services.values())

    def describe(self) -> dict[str, Any]:
        """Every registered service and its operations, JSON-serialisable."""
        return self._snapshot.to_dict()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def register(self, service_id: str, endpoint: str) -> ServiceDescriptor:
        """Discover a service's operations and publish them.

        Registering an existing service_id replaces its descriptor.
        Raises DiscoveryError; on failure the published snapshot is unchanged.
        """
        endpoint = endpoint.rstrip("/")
        async with self._lock(service_id):
            descriptor = await self._discover(service_id, endpoint)
            self._snapshot = self._snapshot.with_service(descriptor)
        logger.info(
            "Registered service %r at %s (%d operations)",
            service_id, endpoint, len(descriptor.operations),
        )
        return descriptor

    async def refresh(self, service_id: str) -> ServiceDescriptor:
        """Re-discover one registered service and swap its descriptor atomically."""
        async with self._lock(service_id):
            current = self._snapshot.service(service_id)
            descriptor = await self._discover(service_id, current.endpoint)
            self._snapshot = self._snapshot.with_service(descriptor)
        logger.info("Refreshed service %r (%d operations)", service_id, len(descriptor.operations))
        return descriptor

    async def register_all(self, services: Mapping[str, str]) -> dict[str, ServiceDescriptor | DiscoveryError]:
        """Register many services concurrently.

        Returns {service_id: descriptor or DiscoveryError}; one unreachable
        service does not prevent the others from registering.
        """
        ids = list(services)
        results = await asyncio.gather(
            *(self.register(sid, services[sid]) for sid in ids),
            return_exceptions=True,
        )
        outcome: dict[str, ServiceDescriptor | DiscoveryError] = {}
        for sid, result in zip(ids, results):
            if isinstance(result, DiscoveryError):
                logger.warning("Service %r not registered: %s", sid, result.reason)
            elif isinstance(result, BaseException):
                raise result
            outcome[sid] = result
        return outcome

    async def refresh_all(self) -> dict[str, ServiceDescriptor | DiscoveryError]:
        ids = list(self._snapshot.services)
        results = await asyncio.gather(*(self.refresh(sid) for sid in ids), return_exceptions=True)
        outcome: dict[str, ServiceDescriptor | DiscoveryError] = {}
        for sid, result in zip(ids, results):
            if isinstance(result, BaseException) and not isinstance(result, DiscoveryError):
                raise result
            outcome[sid] = result
        return outcome

    async def unregister(self, service_id: str) -> None:
        async with self._lock(service_id):
            self._snapshot.service(service_id)
            self._snapshot = self._snapshot.without_service(service_id)
        logger.info("Unregistered service %r", service_id)

    async def _discover(self, service_id: str, endpoint: str) -> ServiceDescriptor:
        payload = await self._client.list_operations(service_id, endpoint)
        return parse_descriptor(service_id, endpoint, payload)

    def _lock(self, service_id: str) -> asyncio.Lock:
        lock = self._locks.get(service_id)
        if lock is None:
            lock = self._locks[service_id] = asyncio.Lock()
        return lock

    def __repr__(self) -> str:
        return f"CapabilityCatalog({self._snapshot!r})"
