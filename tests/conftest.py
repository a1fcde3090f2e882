"""Shared fixtures: four healthcare domain services and a fake transport."""

from __future__ import annotations

import inspect
from typing import Any

import pytest

from agentic_mesh.catalog import CatalogSnapshot, parse_descriptor
from agentic_mesh.config import MeshSettings
from agentic_mesh.errors import DiscoveryError


def _op(name: str, description: str, *params: tuple[str, str], outputs: list[str] | None = None) -> dict:
    d: dict[str, Any] = {
        "name": name,
        "description": description,
        "parameters": [{"name": p, "type": t, "required": True} for p, t in params],
    }
    if outputs:
        d["outputs"] = outputs
    return d


SERVICE_PAYLOADS: dict[str, Any] = {
    "patients": {
        "service": "patients",
        "operations": [
            _op("getPatientHistory", "Get patient medical history", ("patientId", "string")),
            _op("getVitalSigns", "Get patient vital signs history", ("patientId", "string")),
            _op("searchPatients", "Search for patients by name or ID", ("searchTerm", "string")),
        ],
    },
    "appointments": [
        _op(
            "scheduleAppointment",
            "Schedule a new medical appointment",
            ("patientId", "string"),
            ("doctorName", "string"),
            ("appointmentType", "string"),
            ("preferredDate", "date"),
            outputs=["appointmentId"],
        ),
        _op("getUpcomingAppointments", "Get patient upcoming appointments", ("patientId", "string")),
        _op("cancelAppointment", "Cancel an appointment", ("appointmentId", "string"), ("reason", "string")),
        _op(
            "rescheduleAppointment",
            "Reschedule an existing appointment",
            ("appointmentId", "string"),
            ("newDate", "date"),
        ),
    ],
    "billing": [
        _op(
            "generateInvoice",
            "Generate invoice for medical services",
            ("patientId", "string"),
            ("serviceType", "string"),
            ("amount", "double"),
            outputs=["invoiceId"],
        ),
        _op("getAccountBalance", "Get patient account balance", ("patientId", "string")),
        _op(
            "processPayment",
            "Process patient payment",
            ("invoiceId", "string"),
            ("amount", "double"),
            ("paymentMethod", "string"),
        ),
        _op(
            "setupPaymentPlan",
            "Set up payment plan",
            ("patientId", "string"),
            ("totalAmount", "double"),
            ("numberOfMonths", "int"),
        ),
    ],
    "diagnostics": [
        _op(
            "orderLabTests",
            "Order laboratory tests for a patient",
            ("patientId", "string"),
            ("testType", "string"),
            ("urgency", "string"),
            outputs=["labOrderId"],
        ),
        _op("getLabResults", "Get laboratory test results", ("labOrderId", "string")),
    ],
}

ENDPOINTS: dict[str, str] = {sid: f"http://{sid}.test" for sid in SERVICE_PAYLOADS}


class FakeServiceClient:
    """Stands in for ServiceClient; no network.

    handlers maps an operation name to one of:
      - a value (returned as the payload)
      - an exception instance (raised)
      - a callable taking the arguments dict (sync or async)
      - a list of the above, consumed one per call
    Operations without a handler return "<name> ok".
    """

    def __init__(self, payloads: dict[str, Any] | None = None) -> None:
        self.payloads: dict[str, Any] = dict(SERVICE_PAYLOADS if payloads is None else payloads)
        self.handlers: dict[str, Any] = {}
        self.discovery_calls: list[str] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def list_operations(self, service_id: str, endpoint: str) -> Any:
        self.discovery_calls.append(service_id)
        payload = self.payloads.get(service_id)
        if payload is None:
            raise DiscoveryError(service_id, endpoint, "unreachable: connection refused")
        if isinstance(payload, BaseException):
            raise payload
        return payload

    async def invoke(self, endpoint: str, operation_name: str, arguments: dict[str, Any]) -> Any:
        self.calls.append((operation_name, dict(arguments)))
        handler = self.handlers.get(operation_name)
        if isinstance(handler, list):
            handler = handler.pop(0)
        if handler is None:
            return f"{operation_name} ok"
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            result = handler(arguments)
            if inspect.isawaitable(result):
                result = await result
            return result
        return handler

    def called(self) -> list[str]:
        return [name for name, _args in self.calls]


def make_snapshot(payloads: dict[str, Any] | None = None) -> CatalogSnapshot:
    payloads = SERVICE_PAYLOADS if payloads is None else payloads
    return CatalogSnapshot({
        sid: parse_descriptor(sid, ENDPOINTS.get(sid, f"http://{sid}.test"), payload)
        for sid, payload in payloads.items()
    })


@pytest.fixture
def settings() -> MeshSettings:
    return MeshSettings(
        _env_file=None,
        request_timeout=1.0,
        max_retries=2,
        backoff_base=0.5,
        backoff_max=8.0,
        query_timeout=5.0,
        max_concurrency=4,
    )


@pytest.fixture
def snapshot() -> CatalogSnapshot:
    return make_snapshot()


@pytest.fixture
def fake_client() -> FakeServiceClient:
    return FakeServiceClient()


@pytest.fixture
def endpoints() -> dict[str, str]:
    return dict(ENDPOINTS)


@pytest.fixture
def recorded_sleep():
    """Backoff sleeper that records delays instead of sleeping."""
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep


@pytest.fixture
def client_factory():
    return FakeServiceClient


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def service_payloads() -> dict[str, Any]:
    return SERVICE_PAYLOADS
