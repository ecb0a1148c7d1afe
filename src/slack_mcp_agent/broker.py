"""
KADI broker connection.

JSON-RPC 2.0 over a single websocket. The connection multiplexes three kinds
of traffic:
- responses to our own requests (matched by JSON-RPC id)
- notifications pushed by the broker, fanned out to subscribers
- requests from the broker for tools this agent registered

Tool invocations may come back inline or as a pending acknowledgment
(`{"status": "pending", "requestId": ...}`); in the latter case the real result
arrives later as a `kadi.ability.response` notification. Correlating the two
is the job of InvocationGateway, not of this class.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from .errors import BrokerError

logger = logging.getLogger(__name__)

# Protocol method names
SESSION_HELLO = "kadi.session.hello"
AGENT_REGISTER = "kadi.agent.register"
ABILITY_REQUEST = "kadi.ability.request"
ABILITY_LIST = "kadi.ability.list"
ABILITY_RESPONSE = "kadi.ability.response"

# Registering one tool moves the client into the broker's "ready" state,
# which is required before remote tools can be invoked.
PLACEHOLDER_TOOL = {
    "name": "placeholder",
    "description": "Placeholder tool",
    "inputSchema": {"type": "object", "properties": {}},
}


@dataclass(frozen=True)
class Notification:
    """A broker-pushed message with no JSON-RPC id."""

    method: str
    correlation_id: str | None = None
    payload: Any = None
    error: dict[str, Any] | None = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "Notification":
        params = message.get("params")
        if not isinstance(params, dict):
            params = {}
        request_id = params.get("requestId")
        error = params.get("error")
        return cls(
            method=str(message.get("method", "")),
            correlation_id=str(request_id) if request_id is not None else None,
            payload=params.get("result"),
            error=error if isinstance(error, dict) else None,
            params=params,
        )


NotificationListener = Callable[[Notification], None]
ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class BrokerConnection:
    """
    Websocket JSON-RPC client for the KADI broker.

    Args:
        url: Broker websocket URL
        agent_name: Name this agent announces to the broker
        request_timeout: Seconds to wait for a JSON-RPC response
        connect: Websocket connect function (swappable for tests)
    """

    def __init__(
        self,
        url: str,
        agent_name: str = "slack-agent",
        request_timeout: float = 30.0,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.url = url
        self.agent_name = agent_name
        self.request_timeout = request_timeout
        self._connect = connect
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._ids = itertools.count(1)
        self._responses: dict[int, asyncio.Future] = {}
        self._listeners: list[NotificationListener] = []
        self._tool_handlers: dict[str, ToolHandler] = {}
        self._server_tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._reader is not None and not self._reader.done()

    async def connect(self) -> None:
        """Open the websocket, start reading and announce this agent."""
        self._ws = await self._connect(self.url)
        self._reader = asyncio.create_task(self._read_loop(), name="broker-reader")
        await self.request(SESSION_HELLO, {"agentName": self.agent_name})
        logger.info("Connected to broker at %s", self.url)

    async def register_tool(self, definition: dict[str, Any], handler: ToolHandler) -> None:
        """Expose a local tool to the broker."""
        self._tool_handlers[definition["name"]] = handler
        await self.request(AGENT_REGISTER, {"tools": [definition]})

    async def register_placeholder(self) -> None:
        async def _noop(_: dict[str, Any]) -> dict[str, Any]:
            return {}

        await self.register_tool(PLACEHOLDER_TOOL, _noop)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Error closing broker socket: %s", e)
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        for task in list(self._server_tasks):
            task.cancel()
        self._fail_outstanding(ConnectionError("broker connection closed"))

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def request(self, method: str, params: dict[str, Any]) -> Any:
        """
        Send a JSON-RPC request and wait for its response.

        Raises:
            ConnectionError: If the socket is not open or closes mid-request
            BrokerError: If the broker answers with an error object
            asyncio.TimeoutError: If no response arrives in time
        """
        if self._ws is None:
            raise ConnectionError("broker connection is not open")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._responses[request_id] = future
        try:
            await self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        finally:
            self._responses.pop(request_id, None)

    async def submit(self, target_agent: str, tool_name: str, tool_input: dict[str, Any]) -> Any:
        """Invoke a remote tool. Returns an inline result or a pending acknowledgment."""
        return await self.request(ABILITY_REQUEST, {
            "targetAgent": target_agent,
            "toolName": tool_name,
            "toolInput": tool_input,
        })

    async def list_tools(self, target_agent: str) -> Any:
        """Ask the broker which tools a target agent exposes."""
        return await self.request(ABILITY_LIST, {"targetAgent": target_agent})

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def subscribe(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: NotificationListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, notification: Notification) -> None:
        """Deliver a notification to every current subscriber."""
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed for %s", notification.method)

    # -------------------------------------------------------------------------
    # Wire handling
    # -------------------------------------------------------------------------

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("broker connection is not open")
        await self._ws.send(json.dumps(message))

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    self.handle_frame(raw)
                except Exception:
                    logger.exception("Failed to handle broker frame")
        except ConnectionClosed as e:
            logger.warning("Broker connection closed: %s", e)
        finally:
            self._fail_outstanding(ConnectionError("broker connection closed"))

    def handle_frame(self, raw: str | bytes) -> None:
        """Route one incoming frame to a waiting request, a listener or a tool handler."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring undecodable broker frame: %r", raw[:200])
            return
        if not isinstance(message, dict):
            return

        method = message.get("method")
        message_id = message.get("id")
        if not isinstance(message_id, (str, int, type(None))):
            logger.warning("Ignoring broker frame with unusable id: %r", message_id)
            return

        if method is None and message_id is not None:
            self._settle_response(message)
        elif method is not None and message_id is not None:
            task = asyncio.create_task(self._serve_request(message))
            self._server_tasks.add(task)
            task.add_done_callback(self._server_tasks.discard)
        elif method is not None:
            self.dispatch(Notification.from_message(message))

    def _settle_response(self, message: dict[str, Any]) -> None:
        future = self._responses.get(message["id"])
        if future is None or future.done():
            return
        error = message.get("error")
        if error is not None:
            future.set_exception(BrokerError.from_payload(error))
        else:
            future.set_result(message.get("result"))

    async def _serve_request(self, message: dict[str, Any]) -> None:
        params = message.get("params")
        if not isinstance(params, dict):
            params = {}
        handler = None
        if message["method"] == ABILITY_REQUEST:
            handler = self._tool_handlers.get(params.get("toolName", ""))

        if handler is None:
            reply = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": -32601, "message": f"Method not found: {message['method']}"},
            }
        else:
            try:
                result = await handler(params.get("toolInput") or {})
                reply = {"jsonrpc": "2.0", "id": message["id"], "result": result}
            except Exception as e:
                reply = {"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32000, "message": str(e)}}

        try:
            await self._send(reply)
        except (ConnectionError, ConnectionClosed) as e:
            logger.warning("Could not answer broker request %s: %s", message["id"], e)

    def _fail_outstanding(self, error: Exception) -> None:
        for future in list(self._responses.values()):
            if not future.done():
                future.set_exception(error)
