"""Intent resolution: entity extraction, slot-filling, dependencies, failures."""

from __future__ import annotations

import pytest

from agentic_mesh.engine import MISSING, ArgRef
from agentic_mesh.errors import MissingArgumentError, PlanValidationError, UnresolvableIntentError
from agentic_mesh.resolver import ClauseEntities, IntentResolver

# ---------------------------------------------------------------------------
# Entity extraction
# ---------------------------------------------------------------------------


class TestClauseEntities:
    def test_all_categories(self):
        e = ClauseEntities("Dr. Sarah Johnson on 10 March 2026, $1,200.50 over 6 months, PT-42 and 3 extra")
        assert [s.value for s in e.of("doctor")] == ["Sarah Johnson"]
        assert [s.value for s in e.of("date")] == ["2026-03-10"]
        assert [s.value for s in e.of("money")] == [1200.5]
        assert [(s.value, s.kind) for s in e.of("quantity")] == [(6, "month")]
        assert [(s.value, s.kind) for s in e.of("identifier")] == [("PT-42", "patient")]
        assert [s.value for s in e.of("number")] == [3]

    @pytest.mark.parametrize("text", [
        "on 2026-02-10",
        "on February 10, 2026",
        "on Feb 10 2026",
        "on 10 February 2026",
        "on 02/10/2026",
    ])
    def test_date_formats_normalize_to_iso(self, text):
        assert [s.value for s in ClauseEntities(text).of("date")] == ["2026-02-10"]

    def test_impossible_date_is_not_a_date(self):
        e = ClauseEntities("on February 30, 2026")
        assert e.of("date") == []

    def test_money_in_words(self):
        assert [s.value for s in ClauseEntities("charge 150 dollars").of("money")] == [150.0]

    def test_masked_replaces_spans(self):
        e = ClauseEntities("history for PT-1 please")
        assert e.masked() == "history for  |  please"


# ---------------------------------------------------------------------------
# Single-clause resolution
# ---------------------------------------------------------------------------


class TestResolveSingle:
    def test_schedule_appointment(self, snapshot):
        plan = IntentResolver(snapshot).resolve(
            "Schedule appointment for patient PT-12345 with Dr. Johnson for cardiology "
            "consultation on February 10, 2026"
        )
        assert len(plan) == 1
        call = plan.steps[0]
        assert call.operation.ref == "appointments.scheduleAppointment"
        assert call.arguments == {
            "patientId": "PT-12345",
            "doctorName": "Johnson",
            "appointmentType": "cardiology consultation",
            "preferredDate": "2026-02-10",
        }

    def test_upcoming_appointments(self, snapshot):
        plan = IntentResolver(snapshot).resolve("Show upcoming appointments for patient PT-12345")
        assert plan.steps[0].operation.name == "getUpcomingAppointments"
        assert plan.steps[0].arguments == {"patientId": "PT-12345"}

    def test_keyword_slot(self, snapshot):
        plan = IntentResolver(snapshot).resolve("Cancel appointment APT-4411, reason: patient is traveling")
        call = plan.steps[0]
        assert call.operation.name == "cancelAppointment"
        assert call.arguments == {"appointmentId": "APT-4411", "reason": "patient is traveling"}

    @pytest.mark.parametrize("text, reason", [
        ("Cancel appointment APT-7788 due to schedule conflict", "schedule conflict"),
        ("Cancel appointment APT-7788 because of a family emergency", "a family emergency"),
    ])
    def test_cause_phrase_binds_reason(self, snapshot, text, reason):
        call = IntentResolver(snapshot).resolve(text).steps[0]
        assert call.operation.name == "cancelAppointment"
        assert call.arguments == {"appointmentId": "APT-7788", "reason": reason}

    def test_reschedule_picks_the_closer_name(self, snapshot):
        plan = IntentResolver(snapshot).resolve("Reschedule appointment APT-4411 to March 3, 2026")
        call = plan.steps[0]
        assert call.operation.name == "rescheduleAppointment"
        assert call.arguments == {"appointmentId": "APT-4411", "newDate": "2026-03-03"}

    def test_money_and_vocabulary(self, snapshot):
        plan = IntentResolver(snapshot).resolve("Process payment of $200 for invoice INV-5521 by credit card")
        call = plan.steps[0]
        assert call.operation.name == "processPayment"
        assert call.arguments == {"invoiceId": "INV-5521", "amount": 200.0, "paymentMethod": "credit card"}

    def test_quantity_binds_to_matching_unit(self, snapshot):
        plan = IntentResolver(snapshot).resolve(
            "Set up a payment plan for patient PT-12345 for $1,200 over 6 months"
        )
        call = plan.steps[0]
        assert call.operation.name == "setupPaymentPlan"
        assert call.arguments == {"patientId": "PT-12345", "totalAmount": 1200.0, "numberOfMonths": 6}

    def test_numeric_keyword_is_coerced_at_bind(self, snapshot):
        plan = IntentResolver(snapshot).resolve("Generate invoice for patient PT-9 for lab work, amount 75")
        call = plan.steps[0]
        assert call.arguments["serviceType"] == "lab work"
        assert call.bind()["amount"] == 75.0

    def test_unknown_identifier_kind_takes_unclaimed_identifier(self, snapshot_factory):
        snap = snapshot_factory({"diagnostics": [{
            "name": "scheduleFollowUpTests",
            "description": "Schedule follow-up diagnostic tests",
            "parameters": [{"name": "patientId"}, {"name": "previousTestId"}],
        }]})
        plan = IntentResolver(snap).resolve("Schedule follow-up tests for patient PT-1 after LAB-77")
        assert plan.steps[0].arguments == {"patientId": "PT-1", "previousTestId": "LAB-77"}


# ---------------------------------------------------------------------------
# Multi-clause resolution
# ---------------------------------------------------------------------------


class TestResolvePipeline:
    def test_dependency_on_earlier_patient(self, snapshot):
        plan = IntentResolver(snapshot).resolve(
            "Get medical history for patient PT-12345, then generate invoice for $150 office visit"
        )
        assert [c.operation.ref for c in plan.steps] == [
            "patients.getPatientHistory",
            "billing.generateInvoice",
        ]
        first, second = plan.steps
        assert first.arguments == {"patientId": "PT-12345"}
        assert second.arguments["patientId"] == ArgRef(step=0, field="patientId", kind="patient")
        assert second.arguments["serviceType"] == "office visit"
        assert second.arguments["amount"] == 150.0
        assert second.dependencies == [0]

    def test_preamble_is_shared_context(self, snapshot):
        plan = IntentResolver(snapshot).resolve(
            "For patient PT-12345, get their medical history, then check upcoming "
            "appointments and show current account balance"
        )
        assert [c.operation.name for c in plan.steps] == [
            "getPatientHistory",
            "getUpcomingAppointments",
            "getAccountBalance",
        ]
        assert all(c.arguments == {"patientId": "PT-12345"} for c in plan.steps)
        assert all(c.dependencies == [] for c in plan.steps)

    def test_dependency_on_declared_output(self, snapshot):
        plan = IntentResolver(snapshot).resolve(
            "Order lab tests for patient PT-12345 for a lipid panel, mark as urgent, then get the lab results"
        )
        order, results = plan.steps
        assert order.operation.name == "orderLabTests"
        assert order.arguments == {"patientId": "PT-12345", "testType": "lipid panel", "urgency": "urgent"}
        assert results.operation.name == "getLabResults"
        assert results.arguments == {"labOrderId": ArgRef(step=0, field="labOrderId", kind="laborder")}

    def test_continue_flag_is_carried(self, snapshot):
        plan = IntentResolver(snapshot).resolve(
            "get account balance for PT-1; get medical history for PT-1", continue_on_error=True
        )
        assert plan.continue_on_error is True
        assert len(plan) == 2


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestResolveFailures:
    def test_missing_required_argument(self, snapshot):
        with pytest.raises(MissingArgumentError) as exc_info:
            IntentResolver(snapshot).resolve("review recent lab results")
        assert exc_info.value.parameter == "labOrderId"
        assert exc_info.value.operation == "diagnostics.getLabResults"
        assert exc_info.value.clause == "review recent lab results"

    def test_draft_keeps_placeholders(self, snapshot):
        plan = IntentResolver(snapshot).draft("Schedule appointment for patient PT-1")
        call = plan.steps[0]
        assert call.arguments["patientId"] == "PT-1"
        assert call.arguments["doctorName"] is MISSING
        assert plan.missing() == [(0, "doctorName"), (0, "appointmentType"), (0, "preferredDate")]

    def test_unresolvable_clause(self, snapshot):
        with pytest.raises(UnresolvableIntentError) as exc_info:
            IntentResolver(snapshot).resolve("get medical history for PT-1, then bake a chocolate cake")
        assert exc_info.value.clause == "bake a chocolate cake"

    def test_confidence_threshold(self, snapshot):
        resolver = IntentResolver(snapshot, min_confidence=3)
        with pytest.raises(UnresolvableIntentError) as exc_info:
            resolver.resolve("check account balance for PT-1")
        assert exc_info.value.best_score == 2

    def test_empty_request(self, snapshot):
        with pytest.raises(UnresolvableIntentError):
            IntentResolver(snapshot).resolve("  ")

    def test_uses_given_snapshot(self, snapshot, snapshot_factory):
        resolver = IntentResolver(snapshot_factory({}))
        with pytest.raises(UnresolvableIntentError):
            resolver.resolve("get account balance for PT-1")
        plan = resolver.resolve("get account balance for PT-1", snapshot=snapshot)
        assert plan.steps[0].operation.name == "getAccountBalance"


# ---------------------------------------------------------------------------
# Structured requests
# ---------------------------------------------------------------------------


class TestResolveStructured:
    def test_steps_with_ref(self, snapshot):
        plan = IntentResolver(snapshot).resolve_structured({
            "steps": [
                {"operation": "getPatientHistory", "arguments": {"patientId": "PT-1"}},
                {
                    "operation": "billing.generateInvoice",
                    "arguments": {
                        "patientId": {"$ref": {"step": 0, "field": "patientId", "kind": "patient"}},
                        "serviceType": "office visit",
                        "amount": 150,
                    },
                },
            ],
            "continue_on_error": True,
        })
        assert plan.continue_on_error is True
        assert plan.steps[1].arguments["patientId"] == ArgRef(0, "patientId", "patient")
        assert plan.steps[1].dependencies == [0]

    def test_bare_list(self, snapshot):
        plan = IntentResolver(snapshot).resolve_structured([
            {"operation": "getAccountBalance", "arguments": {"patientId": "PT-1"}},
        ])
        assert len(plan) == 1

    def test_unknown_operation(self, snapshot):
        with pytest.raises(PlanValidationError):
            IntentResolver(snapshot).resolve_structured([{"operation": "bakeCake", "arguments": {}}])

    @pytest.mark.parametrize("arguments", ["PT-1", [1], 5])
    def test_arguments_must_be_an_object(self, snapshot, arguments):
        with pytest.raises(PlanValidationError) as exc_info:
            IntentResolver(snapshot).resolve_structured([
                {"operation": "getPatientHistory", "arguments": arguments},
            ])
        assert exc_info.value.detail["step"] == 0

    def test_missing_argument(self, snapshot):
        with pytest.raises(MissingArgumentError) as exc_info:
            IntentResolver(snapshot).resolve_structured([{"operation": "getAccountBalance"}])
        assert exc_info.value.parameter == "patientId"

    def test_forward_reference_rejected(self, snapshot):
        with pytest.raises(PlanValidationError):
            IntentResolver(snapshot).resolve_structured([
                {"operation": "getAccountBalance", "arguments": {"patientId": {"$ref": {"step": 1, "field": "x"}}}},
                {"operation": "getPatientHistory", "arguments": {"patientId": "PT-1"}},
            ])

    def test_wrong_type_rejected(self, snapshot):
        with pytest.raises(PlanValidationError):
            IntentResolver(snapshot).resolve_structured([{
                "operation": "generateInvoice",
                "arguments": {"patientId": "PT-1", "serviceType": "visit", "amount": "lots"},
            }])
