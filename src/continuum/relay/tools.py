"""Continuum Relay Tools -- per-role MCP stdio server backed by a RelayClient."""

import json
import logging
from typing import Any, Dict, List

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from continuum.protocol import get_protocol_template
from continuum.relay.client import RelayClient
from continuum.server.handlers import mcp_error, mcp_response
from continuum.types import MessageType

logger = logging.getLogger("continuum.relay.tools")


def build_tool_schemas(role: str) -> List[Dict[str, Any]]:
    other = "future" if role == "past" else "past"
    return [
        {
            "name": f"relay_send_{role}",
            "description": f"Send a message from you ({role}) to the {other} session through the relay.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "message_type": {"type": "string", "enum": [t.value for t in MessageType]},
                    "content": {"type": "string", "description": "Message content or transfer data"},
                },
                "required": ["message_type", "content"],
            },
        },
        {
            "name": f"relay_check_{role}",
            "description": f"Read (and clear) messages the {other} session sent to you.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": f"relay_status_{role}",
            "description": "Show your relay connection status.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": f"relay_template_{role}",
            "description": "Get the fillable transfer protocol template.",
            "inputSchema": {"type": "object", "properties": {}},
        },
    ]


def build_handlers(client: RelayClient) -> Dict[str, Any]:
    role = client.role.value

    async def handle_send(arguments: dict) -> dict:
        try:
            result = await client.send(arguments.get("message_type"), arguments.get("content", ""))
        except Exception as e:
            logger.error("relay_send failed: %s", e)
            return mcp_error(str(e))
        if not result["sent"]:
            return mcp_error(result["message"])
        return mcp_response(f"Message sent to {result['to']}.\nType: {result['type']}\nTimestamp: {result['timestamp']}")

    async def handle_check(arguments: dict) -> dict:
        messages = client.check_messages()
        if not messages:
            return mcp_response("No pending messages")
        return mcp_response(json.dumps({"message_count": len(messages), "messages": messages}, indent=2))

    async def handle_status(arguments: dict) -> dict:
        return mcp_response(json.dumps(client.status(), indent=2))

    async def handle_template(arguments: dict) -> dict:
        return mcp_response(get_protocol_template())

    return {
        f"relay_send_{role}": handle_send,
        f"relay_check_{role}": handle_check,
        f"relay_status_{role}": handle_status,
        f"relay_template_{role}": handle_template,
    }


def create_relay_server(client: RelayClient) -> Server:
    """An MCP server exposing the four relay tools for the client's role."""
    role = client.role.value
    schemas = build_tool_schemas(role)
    handlers = build_handlers(client)
    server = Server(f"continuum-relay-{role}")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return [Tool(name=s["name"], description=s["description"], inputSchema=s["inputSchema"]) for s in schemas]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        handler = handlers.get(name)
        if not handler:
            return [TextContent(type="text", text=f"Unknown tool: {name}")]
        result = await handler(arguments or {})
        content_list = result.get("content", [{}])
        text = content_list[0].get("text", str(result)) if content_list else str(result)
        return [TextContent(type="text", text=text)]

    return server


async def run_relay_client(role: str, url: str | None = None) -> None:
    """Connect to the relay, then serve the relay tools over stdio."""
    client = RelayClient(role, url=url)
    connected = await client.start()
    logger.info("Relay client for %s started (connected: %s)", client.role.value, connected)
    server = create_relay_server(client)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await client.close()
