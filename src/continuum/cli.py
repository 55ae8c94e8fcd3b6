"""Continuum CLI -- servers, relay, status and memory maintenance commands."""

import argparse
import asyncio
import json
import logging
import os
import sys

from continuum import config
from continuum.errors import ContinuumError

logger = logging.getLogger("continuum.cli")


def _fail(e: Exception) -> None:
    print(f"Error: {e}", file=sys.stderr)
    sys.exit(1)


def cmd_serve(args):
    """Run the continuum MCP server (stdio, or Streamable HTTP with --http)."""
    if args.http:
        from continuum.server.http_server import get_or_create_api_key, run_http

        api_key = None if args.no_auth else get_or_create_api_key()
        if api_key:
            print(f"API key: {config.continuum_home() / 'api_key'}", file=sys.stderr)
        asyncio.run(run_http(args.host, args.port, api_key))
        return

    from continuum.server.mcp_server import main

    asyncio.run(main())


def cmd_relay(args):
    """Run the message relay server."""
    from continuum.relay.app import run_relay

    print(f"Relay listening on ws://{args.host}:{args.port}/{{past,future}}", file=sys.stderr)
    asyncio.run(run_relay(args.host, args.port))


def cmd_relay_client(args):
    """Connect to the relay and serve the relay tools over stdio."""
    from continuum.relay.tools import run_relay_client

    role = config.relay_role(args.role)
    asyncio.run(run_relay_client(role, url=args.url))


def cmd_status(args):
    """Show storage path, session and record counts."""
    from continuum.bridge import status

    try:
        info = status()
    except ContinuumError as e:
        _fail(e)
        return

    if args.json:
        print(json.dumps(info, indent=2))
        return
    print(f"Database: {info['db_path']}")
    print(f"Session:  {info['session_id']}")
    for name, count in info["counts"].items():
        print(f"  {name:<18} {count}")


def cmd_retrieve(args):
    """Print the continuity briefing."""
    from continuum.bridge import retrieve

    try:
        result = retrieve(session_id=args.session, include_guidance=not args.json)
    except ContinuumError as e:
        _fail(e)
        return
    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print(result["narrative"])


def cmd_cleanup(args):
    """List truncated and duplicate memories (nothing is deleted)."""
    from continuum.bridge import cleanup

    try:
        report = cleanup(remove_truncated=not args.skip_truncated,
                         deduplicate_by_content=not args.skip_duplicates)
    except ContinuumError as e:
        _fail(e)
        return
    if args.json:
        print(json.dumps(report, indent=2))
        return
    if not report["identified"]:
        print("No truncated or duplicate memories found.")
        return
    print(f"{report['identified']} candidate(s) for review:")
    for item in report["truncated"]:
        print(f"  [truncated] {item['key']}: {item['content']}")
    for group in report["duplicates"]:
        print(f"  [duplicate] keep {group['kept']}; review {', '.join(group['flagged'])}")


def cmd_template(args):
    """Print the transfer protocol template."""
    from continuum.protocol import USAGE_GUIDE, get_protocol_template

    print(USAGE_GUIDE if args.guide else get_protocol_template())


def cmd_endpoints(args):
    """Show the configured outbound endpoints."""
    try:
        endpoints = config.load_endpoints(args.endpoints)
    except ContinuumError as e:
        _fail(e)
        return
    for name, ep in endpoints.items():
        model = f" (default model: {ep.default_model})" if ep.default_model else ""
        print(f"{name}: {ep.url}{model}")


def main():
    parser = argparse.ArgumentParser(
        prog="continuum",
        description="Continuum -- memory continuity for AI agents across sessions",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level to stderr")
    parser.add_argument("--db-path", help="Storage file (default: $CONTINUUM_DB_PATH)")
    parser.add_argument("--session-id", help="Session id (default: $CONTINUUM_SESSION_ID)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio mode, or --http)")
    serve_parser.add_argument("--http", action="store_true", help="Serve over Streamable HTTP instead of stdio")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8088, help="HTTP port (default: 8088)")
    serve_parser.add_argument("--no-auth", action="store_true", help="Disable the API key check")

    relay_parser = subparsers.add_parser("relay", help="Run the message relay server")
    relay_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    relay_parser.add_argument("--port", type=int, default=3001, help="Port (default: 3001)")

    client_parser = subparsers.add_parser("relay-client", help="Serve relay tools over stdio for one role")
    client_parser.add_argument("--role", choices=["past", "future"], help="Role (default: $CONTINUUM_ROLE or past)")
    client_parser.add_argument("--url", help="Relay URL (default: $CONTINUUM_RELAY_URL)")

    status_parser = subparsers.add_parser("status", help="Show storage path and record counts")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    retrieve_parser = subparsers.add_parser("retrieve", help="Print the continuity briefing")
    retrieve_parser.add_argument("--session", help="Session id for the emotional profile")
    retrieve_parser.add_argument("--json", action="store_true", help="Structured output without greeting")

    cleanup_parser = subparsers.add_parser("cleanup", help="List truncated and duplicate memories")
    cleanup_parser.add_argument("--skip-truncated", action="store_true", help="Do not look for truncated records")
    cleanup_parser.add_argument("--skip-duplicates", action="store_true", help="Do not look for duplicates")
    cleanup_parser.add_argument("--json", action="store_true", help="Output as JSON")

    template_parser = subparsers.add_parser("template", help="Print the transfer protocol template")
    template_parser.add_argument("--guide", action="store_true", help="Print the tool usage guide instead")

    endpoints_parser = subparsers.add_parser("endpoints", help="Show configured outbound endpoints")
    endpoints_parser.add_argument("--endpoints", help="Override descriptor list (name=url[:model],...)")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING, stream=sys.stderr)
    # Flags win over the environment; servers and the bridge read config lazily
    if args.db_path:
        os.environ["CONTINUUM_DB_PATH"] = str(config.db_path(args.db_path))
    if args.session_id:
        os.environ["CONTINUUM_SESSION_ID"] = config.session_id(args.session_id)

    commands = {
        "serve": cmd_serve,
        "relay": cmd_relay,
        "relay-client": cmd_relay_client,
        "status": cmd_status,
        "retrieve": cmd_retrieve,
        "cleanup": cmd_cleanup,
        "template": cmd_template,
        "endpoints": cmd_endpoints,
    }

    if args.command in commands:
        commands[args.command](args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
