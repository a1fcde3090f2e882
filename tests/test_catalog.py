"""Capability catalog: descriptor parsing, ranking, copy-on-write discovery."""

from __future__ import annotations

import asyncio

import pytest

from agentic_mesh.catalog import CapabilityCatalog, CatalogSnapshot, parse_descriptor
from agentic_mesh.errors import DiscoveryError, UnknownServiceError

# ---------------------------------------------------------------------------
# Descriptor parsing
# ---------------------------------------------------------------------------


class TestParseDescriptor:
    def test_list_form(self):
        d = parse_descriptor("svc", "http://svc", [
            {"name": "getThing", "description": "Get a thing", "parameters": [{"name": "thingId", "type": "string"}]},
        ])
        assert d.service_id == "svc"
        assert [op.name for op in d.operations] == ["getThing"]
        assert d.operations[0].ref == "svc.getThing"
        assert d.operations[0].endpoint == "http://svc"

    def test_object_form(self, service_payloads):
        d = parse_descriptor("patients", "http://patients", service_payloads["patients"])
        assert [op.name for op in d.operations] == ["getPatientHistory", "getVitalSigns", "searchPatients"]

    def test_types_are_normalized(self):
        d = parse_descriptor("svc", "http://svc", [{
            "name": "op",
            "parameters": [
                {"name": "a", "type": "double"},
                {"name": "b", "type": "int"},
                {"name": "c", "type": "LocalDate"},
                {"name": "d", "type": "bool"},
                {"name": "e", "type": "blob"},
                {"name": "f"},
            ],
        }])
        types = [p.type for p in d.operations[0].parameters]
        assert types == ["number", "integer", "date", "boolean", "string", "string"]

    def test_required_defaults_true(self):
        d = parse_descriptor("svc", "http://svc", [{
            "name": "op",
            "parameters": [{"name": "a"}, {"name": "b", "required": False}],
        }])
        assert [p.required for p in d.operations[0].parameters] == [True, False]

    def test_outputs_parsed(self, service_payloads):
        d = parse_descriptor("diagnostics", "http://d", service_payloads["diagnostics"])
        assert d.operation("orderLabTests").outputs == ("labOrderId",)
        assert d.operation("getLabResults").outputs == ()

    @pytest.mark.parametrize("payload, reason", [
        ({"operations": "nope"}, "no operation list"),
        ([{"description": "no name"}], "missing a name"),
        ([{"name": "  "}], "missing a name"),
        (["getThing"], "not an object"),
        ([{"name": "op"}, {"name": "op"}], "duplicate operation"),
        ([{"name": "op", "parameters": {"a": "string"}}], "parameters must be a list"),
        ([{"name": "op", "parameters": [{"type": "string"}]}], "missing a name"),
        ([{"name": "op", "parameters": [{"name": "a"}, {"name": "a"}]}], "duplicate parameter"),
        ([{"name": "op", "outputs": "id"}], "outputs must be a list"),
    ])
    def test_malformed_raises(self, payload, reason):
        with pytest.raises(DiscoveryError) as exc_info:
            parse_descriptor("svc", "http://svc", payload)
        assert reason in exc_info.value.reason
        assert exc_info.value.service_id == "svc"


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


class TestRanking:
    def test_name_tokens_win(self, snapshot):
        ops = snapshot.lookup("medical history")
        assert ops[0].name == "getPatientHistory"

    def test_exact_name_beats_overlap(self, snapshot):
        ops = snapshot.lookup("please run getVitalSigns for the patient history")
        assert ops[0].name == "getVitalSigns"

    def test_registration_order_breaks_ties(self, snapshot_factory):
        snap = snapshot_factory({
            "a": [{"name": "findWidget", "description": "Locate a widget"}],
            "b": [{"name": "findWidget", "description": "Locate a widget"}],
        })
        ops = snap.lookup("widget")
        assert [op.ref for op in ops] == ["a.findWidget", "b.findWidget"]

    def test_deterministic(self, snapshot):
        first = [op.ref for op in snapshot.lookup("patient appointment")]
        for _ in range(5):
            assert [op.ref for op in snapshot.lookup("patient appointment")] == first

    def test_generic_verbs_do_not_count_towards_confidence(self, snapshot):
        matches = snapshot.rank("show")
        assert all(m.confidence == 0 for m in matches)

    def test_confidence_counts_meaningful_tokens(self, snapshot):
        best = snapshot.rank("check account balance")[0]
        assert best.operation.name == "getAccountBalance"
        assert best.confidence == 2

    def test_no_match(self, snapshot):
        assert snapshot.lookup("bake a chocolate cake") == []

    def test_verbs(self, snapshot):
        assert {"get", "schedule", "cancel", "reschedule", "order", "setup"} <= snapshot.verbs

    def test_find_by_name_and_ref(self, snapshot):
        assert [op.ref for op in snapshot.find("getLabResults")] == ["diagnostics.getLabResults"]
        assert [op.ref for op in snapshot.find("billing.processPayment")] == ["billing.processPayment"]

    def test_unknown_service(self, snapshot):
        with pytest.raises(UnknownServiceError):
            snapshot.service("pharmacy")


# ---------------------------------------------------------------------------
# Discovery and copy-on-write swaps
# ---------------------------------------------------------------------------


class TestCapabilityCatalog:
    @pytest.mark.asyncio
    async def test_register_publishes_operations(self, fake_client, endpoints):
        catalog = CapabilityCatalog(fake_client)
        descriptor = await catalog.register("billing", endpoints["billing"] + "/")
        assert descriptor.endpoint == "http://billing.test"
        assert [op.name for op in catalog.lookup("invoice")][:1] == ["generateInvoice"]

    @pytest.mark.asyncio
    async def test_register_all_keeps_going_past_failures(self, client_factory, service_payloads, endpoints):
        payloads = dict(service_payloads)
        del payloads["diagnostics"]
        catalog = CapabilityCatalog(client_factory(payloads))

        outcome = await catalog.register_all(endpoints)

        assert isinstance(outcome["diagnostics"], DiscoveryError)
        assert sorted(catalog.snapshot().services) == ["appointments", "billing", "patients"]

    @pytest.mark.asyncio
    async def test_register_all_keeps_mapping_order(self, fake_client, endpoints):
        catalog = CapabilityCatalog(fake_client)
        await catalog.register_all(endpoints)
        assert list(catalog.snapshot().services) == list(endpoints)

    @pytest.mark.asyncio
    async def test_failed_register_leaves_snapshot_unchanged(self, client_factory):
        catalog = CapabilityCatalog(client_factory({"bad": [{"name": "op"}, {"name": "op"}]}))
        before = catalog.snapshot()
        with pytest.raises(DiscoveryError):
            await catalog.register("bad", "http://bad.test")
        assert catalog.snapshot() is before
        assert len(catalog.snapshot()) == 0

    @pytest.mark.asyncio
    async def test_refresh_swaps_and_old_snapshot_is_untouched(self, fake_client, endpoints):
        catalog = CapabilityCatalog(fake_client)
        await catalog.register_all(endpoints)
        old = catalog.snapshot()

        fake_client.payloads["diagnostics"] = [
            {"name": "getLabResults", "description": "Get laboratory test results", "parameters": [{"name": "labOrderId"}]},
        ]
        await catalog.refresh("diagnostics")

        new = catalog.snapshot()
        assert new is not old
        assert old.operation("diagnostics", "orderLabTests") is not None
        assert new.operation("diagnostics", "orderLabTests") is None
        # Position in the catalog is kept on refresh.
        assert list(new.services) == list(old.services)

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_previous_descriptor(self, fake_client, endpoints):
        catalog = CapabilityCatalog(fake_client)
        await catalog.register("billing", endpoints["billing"])
        fake_client.payloads["billing"] = DiscoveryError("billing", endpoints["billing"], "HTTP 503")

        with pytest.raises(DiscoveryError):
            await catalog.refresh("billing")
        assert catalog.snapshot().operation("billing", "generateInvoice") is not None

    @pytest.mark.asyncio
    async def test_refresh_unknown_service(self, fake_client):
        catalog = CapabilityCatalog(fake_client)
        with pytest.raises(UnknownServiceError):
            await catalog.refresh("pharmacy")

    @pytest.mark.asyncio
    async def test_refresh_all(self, fake_client, endpoints):
        catalog = CapabilityCatalog(fake_client)
        await catalog.register_all(endpoints)
        fake_client.discovery_calls.clear()
        outcome = await catalog.refresh_all()
        assert sorted(outcome) == sorted(endpoints)
        assert sorted(fake_client.discovery_calls) == sorted(endpoints)

    @pytest.mark.asyncio
    async def test_unregister(self, fake_client, endpoints):
        catalog = CapabilityCatalog(fake_client)
        await catalog.register_all(endpoints)
        await catalog.unregister("billing")
        assert "billing" not in catalog.snapshot().services
        assert [s["service_id"] for s in catalog.describe()["services"]] == ["patients", "appointments", "diagnostics"]
        assert [d.service_id for d in catalog.services()] == ["patients", "appointments", "diagnostics"]
        with pytest.raises(UnknownServiceError):
            await catalog.unregister("billing")

    @pytest.mark.asyncio
    async def test_discovery_serialized_per_service(self, client_factory, endpoints):
        class SlowClient(client_factory):
            def __init__(self):
                super().__init__()
                self.active: dict[str, int] = {}
                self.peak: dict[str, int] = {}

            async def list_operations(self, service_id, endpoint):
                self.active[service_id] = self.active.get(service_id, 0) + 1
                self.peak[service_id] = max(self.peak.get(service_id, 0), self.active[service_id])
                await asyncio.sleep(0.01)
                self.active[service_id] -= 1
                return await super().list_operations(service_id, endpoint)

        client = SlowClient()
        catalog = CapabilityCatalog(client)
        await catalog.register_all(endpoints)
        await asyncio.gather(*(catalog.refresh("billing") for _ in range(3)), catalog.refresh("patients"))

        assert client.peak["billing"] == 1
        assert client.discovery_calls.count("billing") == 4

    def test_empty_snapshot(self):
        snap = CatalogSnapshot()
        assert len(snap) == 0
        assert snap.lookup("anything") == []
