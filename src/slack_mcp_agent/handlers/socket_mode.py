"""
Slack Socket Mode receiver.

Opens a websocket URL via apps.connections.open, acknowledges every envelope
as soon as it arrives, and hands Events API payloads to the event handler as
separate tasks so slow tool calls never delay acknowledgments. Reconnects
when Slack sends a `disconnect` envelope or the socket drops.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import websockets

from .slack_web import SlackWebClient

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


class SocketModeClient:
    """
    Receives Slack events over Socket Mode.

    Args:
        web: Web API client used to obtain socket URLs
        app_token: App-level token (xapp-...)
        handler: Coroutine called with each event payload
        reconnect_delay: Seconds to wait before reconnecting
        connect: Websocket connect function (swappable for tests)
    """

    def __init__(
        self,
        web: SlackWebClient,
        app_token: str,
        handler: EventHandler,
        reconnect_delay: float = 2.0,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.web = web
        self.app_token = app_token
        self.handler = handler
        self.reconnect_delay = reconnect_delay
        self._connect = connect
        self._task: asyncio.Task | None = None
        self._event_tasks: set[asyncio.Task] = set()
        self._stopped = True
        self.connected = asyncio.Event()

    async def start(self) -> None:
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name="slack-socket-mode")

    async def _run(self) -> None:
        while not self._stopped:
            try:
                url = await self.web.open_socket_url(self.app_token)
                async with self._connect(url) as ws:
                    async for raw in ws:
                        if await self.handle_frame(ws, raw) == "disconnect":
                            break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Socket Mode connection error: %s: %s", type(e).__name__, e)
            finally:
                self.connected.clear()

            if not self._stopped:
                await asyncio.sleep(self.reconnect_delay)

    async def handle_frame(self, ws: Any, raw: str | bytes) -> str | None:
        """Acknowledge one envelope and dispatch its event. Returns the envelope type."""
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring undecodable Socket Mode frame")
            return None
        if not isinstance(envelope, dict):
            return None

        envelope_id = envelope.get("envelope_id")
        if envelope_id:
            await ws.send(json.dumps({"envelope_id": envelope_id}))

        kind = envelope.get("type")
        if kind == "hello":
            self.connected.set()
            logger.info("Slack Socket Mode connected")
        elif kind == "disconnect":
            logger.info("Slack requested reconnect (%s)", envelope.get("reason", "unknown"))
        elif kind == "events_api":
            event = (envelope.get("payload") or {}).get("event")
            if isinstance(event, dict):
                task = asyncio.create_task(self._handle_event(event))
                self._event_tasks.add(task)
                task.add_done_callback(self._event_tasks.discard)
        return kind

    async def _handle_event(self, event: dict[str, Any]) -> None:
        try:
            await self.handler(event)
        except Exception:
            logger.exception("Unhandled error while processing %s event", event.get("type"))

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        tasks = [t for t in (task, *self._event_tasks) if t is not None]
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
