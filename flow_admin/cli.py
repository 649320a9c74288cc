"""Command-line client for the flow admin API.

Usage:
    flow-admin serve --port 1880
    flow-admin flows > flows.json
    flow-admin deploy flows.json                 # conditional on the file's rev
    flow-admin deploy flows.json --force         # unconditional overwrite
    flow-admin deploy --reload
    flow-admin flow <id>
    flow-admin credentials <type> <id>
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from flow_admin.client import FlowAdminClient, Settings

_DEPLOY_TYPES = ("full", "nodes", "flows")


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2))


def _report(result: Any) -> int:
    """Print a client result. Returns the process exit code."""
    if isinstance(result, dict) and "error" in result:
        if result.get("status") == 409:
            print(
                "Flows were changed since they were read. "
                "Fetch them again with `flow-admin flows` and re-apply your edits, "
                "or deploy with --force to overwrite.",
                file=sys.stderr,
            )
        else:
            print(f"Error: {result['error']}", file=sys.stderr)
            if result.get("detail"):
                print(json.dumps(result["detail"], indent=2), file=sys.stderr)
        return 1
    _print_json(result)
    return 0


def _load_flow_file(path: Path) -> tuple[list[dict[str, Any]], str | None]:
    """Read a flows file: either a bare node array or ``{flows, rev}``."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        return data, None
    if isinstance(data, dict) and isinstance(data.get("flows"), list):
        return data["flows"], data.get("rev")
    raise ValueError(f"{path}: expected a node array or an object with 'flows'")


async def _run(args: Namespace) -> int:
    settings = Settings.from_env()
    async with FlowAdminClient(settings) as client:
        if args.command == "flows":
            return _report(await client.get_flows())

        if args.command == "deploy":
            if args.reload:
                return _report(await client.reload_flows())
            if not args.file:
                print("deploy needs a FILE (or --reload)", file=sys.stderr)
                return 2
            flows, rev = _load_flow_file(Path(args.file))
            if args.rev:
                rev = args.rev
            if args.force:
                rev = None
            return _report(await client.set_flows(flows, rev=rev, deployment_type=args.type))

        if args.command == "flow":
            return _report(await client.get_flow(args.id))

        if args.command == "credentials":
            return _report(await client.get_node_credentials(args.type, args.id))

    return 2


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="flow-admin",
        description="Flow administration API: server and terminal client",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve_p = sub.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=1880)
    serve_p.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    sub.add_parser("flows", help="Print the active flow set and its rev")

    deploy_p = sub.add_parser("deploy", help="Deploy a flows file")
    deploy_p.add_argument("file", nargs="?", help="Node array or {flows, rev} JSON file")
    deploy_p.add_argument("--type", choices=_DEPLOY_TYPES, default="full")
    deploy_p.add_argument("--rev", help="Only deploy if the active rev is still REV")
    deploy_p.add_argument("--force", action="store_true", help="Ignore any rev and overwrite")
    deploy_p.add_argument(
        "--reload", action="store_true", help="Reload flows from their source instead"
    )

    flow_p = sub.add_parser("flow", help="Print one flow")
    flow_p.add_argument("id")

    cred_p = sub.add_parser("credentials", help="Print a node's redacted credentials")
    cred_p.add_argument("type", help="Node type")
    cred_p.add_argument("id", help="Node id")

    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        from flow_admin.api import serve

        serve(host=args.host, port=args.port, reload=args.reload)
        return

    logging.basicConfig(
        level=Settings.from_env().log_level, format="%(levelname)s: %(message)s"
    )
    try:
        code = asyncio.run(_run(args))
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
