"""Terminal client for the capability mesh.

Builds a mesh from MESH_SERVICES (or --services), runs one request and
prints the result. No HTTP server required.

Usage:
    agentic-mesh query "Show upcoming appointments for patient PT-12345"
    agentic-mesh pipeline "Get medical history for patient PT-12345, then generate invoice for $150 office visit"
    agentic-mesh resolve "Order lab tests for patient PT-12345" --json
    agentic-mesh services --services "appointments=http://localhost:8871"
    agentic-mesh serve --port 8000
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from argparse import ArgumentParser, Namespace

from pydantic import ValidationError

from agentic_mesh.config import MeshSettings, parse_service_map
from agentic_mesh.errors import MeshError
from agentic_mesh.mesh import AggregatedResult, Mesh


# ---------------------------------------------------------------------------
# Command runners
# ---------------------------------------------------------------------------


async def _connect(args: Namespace, settings: MeshSettings) -> Mesh:
    services = parse_service_map(args.services) if args.services else None
    mesh = await Mesh.connect(settings, services=services)
    if not mesh.snapshot().services:
        print("No services registered. Set MESH_SERVICES or pass --services.", file=sys.stderr)
    return mesh


async def _run(args: Namespace, settings: MeshSettings) -> int:
    mesh = await _connect(args, settings)
    try:
        match args.command:
            case "query" | "pipeline":
                run = mesh.process_query if args.command == "query" else mesh.pipeline_mesh
                result = await run(args.text, continue_on_error=args.continue_on_error or None)
                _print_result(result, args.json)
                return 0 if result.ok else 2
            case "resolve":
                try:
                    plan = mesh.draft(args.text)
                except MeshError as e:
                    print(f"ERROR ({type(e).__name__}): {e.message}", file=sys.stderr)
                    return 2
                if args.json:
                    print(json.dumps(plan.to_dict(), indent=2, default=str))
                else:
                    for i, step in enumerate(plan.to_dict()["steps"]):
                        print(f"Step {i + 1}: {step['operation']}")
                        for name, value in step["arguments"].items():
                            print(f"    {name} = {value!r}")
                        if step["missing"]:
                            print(f"    missing: {', '.join(step['missing'])}")
                return 0 if not plan.missing() else 2
            case "services":
                snapshot = mesh.snapshot()
                if args.json:
                    print(json.dumps(snapshot.to_dict(), indent=2))
                else:
                    for descriptor in snapshot.services.values():
                        print(f"{descriptor.service_id}  {descriptor.endpoint}")
                        for op in descriptor.operations:
                            params = ", ".join(
                                p.name if p.required else f"{p.name}?" for p in op.parameters
                            )
                            print(f"    {op.name}({params})  {op.description}")
                return 0
        return 1
    finally:
        await mesh.aclose()


def _print_result(result: AggregatedResult, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return
    print(f"Status: {result.status}\n")
    text = result.text()
    if text:
        print(text)
    if result.error and result.trace:
        print(f"\nFirst error: {result.error.get('message')}")


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    from dotenv import load_dotenv

    load_dotenv()
    try:
        settings = MeshSettings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(message)s")

    parser = ArgumentParser(
        prog="agentic-mesh",
        description="Agentic mesh — route requests to operations on domain services",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    for name, help_text in (
        ("query", "Resolve and run a request (single-step plans skip the pipeline engine)"),
        ("pipeline", "Resolve and run a request through the pipeline engine"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("text", help="The request in plain language")
        p.add_argument(
            "--continue",
            dest="continue_on_error",
            action="store_true",
            help="Keep running independent steps after a failure",
        )

    sub.add_parser("resolve", help="Show the plan a request resolves to without running it").add_argument(
        "text", help="The request in plain language"
    )
    sub.add_parser("services", help="List registered services and their operations")

    serve_p = sub.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=8000)
    serve_p.add_argument("--reload", action="store_true")

    for name, p in sub.choices.items():
        p.add_argument("--services", help="Service map (overrides MESH_SERVICES): id=url,id=url or JSON")
        if name != "serve":
            p.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    args = parser.parse_args()

    if args.command == "serve":
        from agentic_mesh.api import serve

        if args.services:
            os.environ["MESH_SERVICES"] = args.services
        serve(args.host, args.port, args.reload)
    elif args.command:
        try:
            sys.exit(asyncio.run(_run(args, settings)))
        except ValueError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
