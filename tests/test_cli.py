"""Terminal client: commands, output and exit codes."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from unittest.mock import patch

import pytest

from agentic_mesh import cli
from agentic_mesh.catalog import CapabilityCatalog
from agentic_mesh.engine import Invoker
from agentic_mesh.mesh import Mesh


def _main(argv, mesh):
    async def connect(*_args, **_kwargs):
        return mesh

    with patch.object(sys, "argv", ["agentic-mesh", *argv]), patch.object(cli.Mesh, "connect", connect):
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
    return exc_info.value.code


@pytest.fixture
def mesh(fake_client, endpoints, settings, recorded_sleep):
    catalog = CapabilityCatalog(fake_client)
    asyncio.run(catalog.register_all(endpoints))
    return Mesh(catalog, Invoker(fake_client, settings, sleep=recorded_sleep), settings)


def test_query_prints_sections(mesh, fake_client, capsys):
    fake_client.handlers["getUpcomingAppointments"] = "APT-1 on 2026-02-10"
    code = _main(["query", "Show upcoming appointments for patient PT-12345"], mesh)
    out = capsys.readouterr().out
    assert code == 0
    assert "Status: success" in out
    assert "Step 1: appointments.getUpcomingAppointments" in out
    assert "APT-1 on 2026-02-10" in out


def test_pipeline_json(mesh, capsys):
    code = _main([
        "pipeline",
        "Get medical history for patient PT-12345, then generate invoice for $150 office visit",
        "--json",
    ], mesh)
    body = json.loads(capsys.readouterr().out)
    assert code == 0
    assert body["mode"] == "pipeline"
    assert len(body["trace"]) == 2


def test_failed_query_exits_2(mesh, capsys):
    code = _main(["query", "bake a chocolate cake"], mesh)
    assert code == 2
    assert "UnresolvableIntentError" in capsys.readouterr().out


def test_resolve_reports_missing(mesh, fake_client, capsys):
    code = _main(["resolve", "review recent lab results"], mesh)
    out = capsys.readouterr().out
    assert code == 2
    assert "Step 1: diagnostics.getLabResults" in out
    assert "missing: labOrderId" in out
    assert fake_client.calls == []


def test_services(mesh, capsys):
    code = _main(["services"], mesh)
    out = capsys.readouterr().out
    assert code == 0
    assert "billing  http://billing.test" in out
    assert "setupPaymentPlan(patientId, totalAmount, numberOfMonths)" in out


def test_bad_service_map(mesh, capsys):
    code = _main(["services", "--services", "nonsense"], mesh)
    assert code == 1
    assert "Configuration error" in capsys.readouterr().err


def test_bad_environment_is_a_configuration_error(mesh, capsys):
    with patch.dict(os.environ, {"MESH_SERVICES": "nonsense"}):
        code = _main(["services"], mesh)
    captured = capsys.readouterr()
    assert code == 1
    assert "Configuration error" in captured.err
    assert "Traceback" not in captured.err


def test_serve_has_no_json_flag(mesh, capsys):
    code = _main(["serve", "--json"], mesh)
    assert code == 2
    assert "unrecognized arguments: --json" in capsys.readouterr().err
