"""Continuum Relay App -- Starlette ASGI app for the message relay.

Routes:
    WS   /{role}             persistent socket for "past" or "future"
    POST /messages/{role}    send a message from ``role`` to the other role
    GET  /messages/{role}    drain ``role``'s queue; ``?wait=<seconds>`` long-polls (max 30)
    GET  /status             live connections and queue lengths per role
    GET  /health
"""

import json
import logging

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from continuum.errors import ValidationError
from continuum.relay.broker import CLOSE_POLICY_VIOLATION, CLOSE_PROTOCOL_ERROR, RelayBroker, parse_role

logger = logging.getLogger("continuum.relay.app")

MAX_WAIT_SECONDS = 30.0


class SocketConnection:
    """Adapts a Starlette WebSocket to the broker's Connection protocol."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, data) -> None:
        await self.websocket.send_json(data)


def create_relay_app(broker: RelayBroker | None = None) -> Starlette:
    """Create the relay ASGI app around ``broker`` (a fresh one by default)."""
    broker = broker or RelayBroker()

    async def relay_socket(websocket: WebSocket):
        await websocket.accept()
        raw_role = websocket.path_params["role"]
        try:
            role = parse_role(raw_role)
        except ValidationError:
            logger.info("Rejected socket with invalid role %r", raw_role)
            await websocket.close(code=CLOSE_PROTOCOL_ERROR, reason="Invalid role")
            return

        conn = SocketConnection(websocket)
        if not broker.connect(role, conn):
            await websocket.close(code=CLOSE_POLICY_VIOLATION,
                                  reason=f"Maximum connections reached for {role.value} role")
            return

        try:
            await broker.replay(role, conn)
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                    await broker.send(role, data.get("type"), data.get("content"))
                except (ValidationError, ValueError, AttributeError) as e:
                    logger.warning("Bad message from %s socket: %s", role.value, e)
                    await websocket.send_json({"error": str(e)})
        except WebSocketDisconnect:
            pass
        finally:
            broker.disconnect(role, conn)

    async def post_message(request: Request):
        try:
            role = parse_role(request.path_params["role"])
            body = await request.json()
            result = await broker.send(role, body.get("type"), body.get("content"))
        except ValidationError as e:
            return JSONResponse(e.to_dict(), status_code=400)
        except (ValueError, AttributeError):
            return JSONResponse(ValidationError("Body must be a JSON object").to_dict(), status_code=400)
        return JSONResponse(result)

    async def get_messages(request: Request):
        try:
            role = parse_role(request.path_params["role"])
        except ValidationError as e:
            return JSONResponse(e.to_dict(), status_code=400)
        try:
            wait = float(request.query_params.get("wait", 0))
        except ValueError:
            wait = 0.0
        wait = max(0.0, min(wait, MAX_WAIT_SECONDS))
        messages = await broker.wait_for_messages(role, wait)
        return JSONResponse({"message_count": len(messages), "messages": messages})

    async def status(request: Request):
        return JSONResponse(broker.status())

    async def health(request: Request):
        return JSONResponse({"status": "ok", "server": "continuum-relay"})

    app = Starlette(
        routes=[
            Route("/health", endpoint=health),
            Route("/status", endpoint=status),
            Route("/messages/{role}", endpoint=post_message, methods=["POST"]),
            Route("/messages/{role}", endpoint=get_messages, methods=["GET"]),
            WebSocketRoute("/{role}", endpoint=relay_socket),
        ],
    )
    app.state.broker = broker
    return app


async def run_relay(host: str, port: int) -> None:
    """Create the relay app and run it under uvicorn."""
    import uvicorn

    app = create_relay_app()
    uv_config = uvicorn.Config(app, host=host, port=port, log_level="info")
    srv = uvicorn.Server(uv_config)
    await srv.serve()
