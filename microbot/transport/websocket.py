"""
WebSocket Transport
===================

A plain JSON-over-WebSocket front door for the agent.

Protocol:
    server -> client on connect
        {"type": "welcome", "message": "...", "clientId": "client_..."}

    client -> server
        {"content": "hello", "user": "u1", "channel": "c1"}

    server -> client
        {"type": "response", "message": "...", "sessionId": "c1:u1", "timestamp": "..."}
        {"type": "error", "message": "Error processing message", "error": "..."}
        {"type": "error", "message": "Invalid message format"}

Each inbound frame is handed to the agent as an independent task, so one
slow turn never blocks the next frame from the same or another client.
"""

import asyncio
import json
import uuid
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from microbot.agent.inbound import InboundMessage
from microbot.utils.logger import Logger, truncate

logger = Logger("WebSocket")

TRANSPORT_TYPE = "websocket"

WELCOME_MESSAGE = "Connected to Microbot WebSocket server"


def new_client_id() -> str:
    return f"client_{uuid.uuid4().hex[:12]}"


class WebSocketTransport:
    """
    WebSocket server that feeds the agent and delivers its replies.

    Example:
        transport = WebSocketTransport(agent, "0.0.0.0", 8080)
        agent.add_sink("websocket", transport)
        await transport.start()
        ...
        await transport.stop()
    """

    def __init__(self, agent, host: str = "0.0.0.0", port: int = 8080):
        """
        Args:
            agent: Anything with `async handle_message(payload)`
            host: Interface to bind
            port: Port to bind
        """
        self.agent = agent
        self.host = host
        self.port = port
        self._clients: dict[str, Any] = {}
        self._tasks: set[asyncio.Task] = set()
        self._server = None

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        self._server = await websockets.serve(self.handle_connection, self.host, self.port)
        logger.info(f"WebSocket server listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        logger.info("WebSocket server stopped")

    async def handle_connection(self, websocket) -> None:
        """Serve one client connection until it closes."""
        client_id = new_client_id()
        self._clients[client_id] = websocket
        logger.info(f"New WebSocket connection: {client_id}")

        try:
            await websocket.send(json.dumps({
                "type": "welcome",
                "message": WELCOME_MESSAGE,
                "clientId": client_id,
            }))

            async for frame in websocket:
                await self.handle_frame(client_id, websocket, frame)

        except ConnectionClosed as e:
            logger.debug(f"Connection {client_id} closed: {e}")
        finally:
            self._clients.pop(client_id, None)
            logger.info(f"WebSocket connection closed: {client_id}")

    async def handle_frame(self, client_id: str, websocket, frame: str | bytes) -> asyncio.Task | None:
        """
        Parse one frame and dispatch it to the agent.

        Returns:
            The dispatch task, or None if the frame was rejected
        """
        try:
            data = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Error parsing WebSocket message from {client_id}", e)
            await websocket.send(json.dumps({"type": "error", "message": "Invalid message format"}))
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object frame from {client_id}")
            await websocket.send(json.dumps({"type": "error", "message": "Invalid message format"}))
            return None

        payload = {**data, "type": TRANSPORT_TYPE, "clientId": client_id}
        logger.info(
            f"Received WebSocket message from {payload.get('user')} in "
            f"{payload.get('channel')}: {truncate(str(payload.get('content', '')), 50)}"
        )

        task = asyncio.create_task(self.agent.handle_message(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def deliver(self, message: InboundMessage, payload: dict[str, Any]) -> None:
        """Send a payload back to the client the message came from."""
        websocket = self._clients.get(message.client_id or "")
        if websocket is None:
            logger.warning(f"Client {message.client_id} not found or not connected")
            return

        try:
            await websocket.send(json.dumps(payload))
            logger.debug(f"Sent {payload.get('type')} to client {message.client_id}")
        except ConnectionClosed:
            logger.warning(f"Client {message.client_id} disconnected before delivery")
