"""
Invocation gateway for remote MCP tools.

The broker can answer a tool call in two ways:
- inline: the submission response is the result
- pending: the submission response is `{"status": "pending", "requestId": ...}`
  and the result is pushed later as a `kadi.ability.response` notification

Callers just `await gateway.invoke(name, input)` and never see which path
was taken.

Every call is a PendingInvocation holding a future and its own deadline timer.
Calls waiting on a notification are kept in a registry keyed by correlation
id, and one dispatch listener per connection routes notifications into it.
The listener is subscribed before the first submission and removed as soon as
no call is in flight. Ordering per call:

    1. connection check (no connection -> ConnectionUnavailable)
    2. register call (+ subscribe dispatcher)
    3. arm deadline
    4. submit

A notification can in principle beat its own acknowledgment. Such early
notifications are parked briefly and claimed when the acknowledgment lands.
Correlation ids of finished calls are remembered so that late notifications
(after a timeout, say) are dropped instead of parked.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from .broker import ABILITY_RESPONSE, BrokerConnection, Notification
from .errors import BrokerError, ConnectionUnavailable, InvocationTimeout, RemoteError

logger = logging.getLogger(__name__)

PENDING_MARKER_FIELD = "requestId"

DEFAULT_TIMEOUT_SECONDS = 300.0
EARLY_NOTIFICATION_TTL_SECONDS = 30.0
MAX_EARLY_NOTIFICATIONS = 256
MAX_FINISHED_IDS = 1024

ConnectionProvider = Callable[[], BrokerConnection | None]


def correlation_id_of(response: Any) -> str | None:
    """Correlation id carried by a pending acknowledgment, or None for inline results."""
    if isinstance(response, dict) and PENDING_MARKER_FIELD in response:
        value = response[PENDING_MARKER_FIELD]
        return str(value) if value is not None else None
    return None


@dataclass(eq=False)
class PendingInvocation:
    """One in-flight tool call."""

    tool_name: str
    future: asyncio.Future
    connection: BrokerConnection
    deadline: float
    correlation_id: str | None = None
    timer: asyncio.TimerHandle | None = None
    closed: bool = False


class InvocationGateway:
    """
    Submits tool calls through the broker and correlates their results.

    Args:
        connection: The broker connection, or a callable returning the current one
        target_agent: Broker-side name of the tool provider
        timeout_seconds: Deadline for each invocation
        result_method: Notification method that carries pending results
        clock: Seconds clock used to age early notifications
    """

    def __init__(
        self,
        connection: BrokerConnection | ConnectionProvider | None,
        target_agent: str = "upstream:slack",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        result_method: str = ABILITY_RESPONSE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if connection is None:
            self._provider: ConnectionProvider = lambda: None
        elif callable(connection) and not hasattr(connection, "submit"):
            self._provider = connection
        else:
            self._provider = lambda: connection
        self.target_agent = target_agent
        self.timeout_seconds = timeout_seconds
        self.result_method = result_method
        self._clock = clock

        self._unbound: set[PendingInvocation] = set()
        self._by_id: dict[str, PendingInvocation] = {}
        self._subscriptions: dict[BrokerConnection, int] = {}
        self._early: OrderedDict[str, tuple[float, Notification]] = OrderedDict()
        self._finished_ids: OrderedDict[str, None] = OrderedDict()

    @property
    def pending_count(self) -> int:
        """Calls submitted or awaiting submission that have not finished yet."""
        return len(self._unbound) + len(self._by_id)

    async def invoke(self, tool_name: str, tool_input: dict[str, Any]) -> Any:
        """
        Invoke a remote tool and wait for its result.

        Raises:
            ConnectionUnavailable: No live broker connection
            InvocationTimeout: No result before the deadline
            RemoteError: Submission failed, or the broker reported an error
        """
        connection = self._provider()
        if connection is None or not connection.is_connected:
            raise ConnectionUnavailable()

        loop = asyncio.get_running_loop()
        pending = PendingInvocation(
            tool_name=tool_name,
            future=loop.create_future(),
            connection=connection,
            deadline=loop.time() + self.timeout_seconds,
        )
        self._register(pending)
        pending.timer = loop.call_later(self.timeout_seconds, self._expire, pending)

        # The deadline also covers a submission that never returns
        submission = asyncio.ensure_future(self._submit(pending, tool_input))
        try:
            return await pending.future
        finally:
            self._close(pending)
            if not submission.done():
                submission.cancel()

    async def _submit(self, pending: PendingInvocation, tool_input: dict[str, Any]) -> None:
        try:
            ack = await pending.connection.submit(self.target_agent, pending.tool_name, tool_input)
        except Exception as e:
            self._reject(pending, RemoteError(pending.tool_name, e))
            return

        correlation_id = correlation_id_of(ack)
        if correlation_id is None:
            self._resolve(pending, ack)
        else:
            self._bind(pending, correlation_id)

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def _register(self, pending: PendingInvocation) -> None:
        connection = pending.connection
        count = self._subscriptions.get(connection, 0)
        if count == 0:
            connection.subscribe(self._dispatch)
        self._subscriptions[connection] = count + 1
        self._unbound.add(pending)

    def _bind(self, pending: PendingInvocation, correlation_id: str) -> None:
        """Attach the correlation id from the acknowledgment."""
        pending.correlation_id = correlation_id
        self._unbound.discard(pending)
        if pending.future.done():
            # Timed out while the submission was in flight
            self._remember_finished(correlation_id)
            return

        self._prune_early()
        early = self._early.pop(correlation_id, None)
        if early is not None:
            self._settle(pending, early[1])
            return

        self._by_id[correlation_id] = pending
        logger.debug("Waiting for %s result (requestId=%s)", pending.tool_name, correlation_id)

    def _close(self, pending: PendingInvocation) -> None:
        """Tear down a call. Safe to call more than once."""
        if pending.closed:
            return
        pending.closed = True

        if pending.timer is not None:
            pending.timer.cancel()
        if not pending.future.done():
            # Caller went away before any outcome
            pending.future.cancel()
        self._unbound.discard(pending)
        if pending.correlation_id is not None:
            if self._by_id.get(pending.correlation_id) is pending:
                del self._by_id[pending.correlation_id]
            self._remember_finished(pending.correlation_id)

        connection = pending.connection
        count = self._subscriptions.get(connection, 0) - 1
        if count <= 0:
            self._subscriptions.pop(connection, None)
            connection.unsubscribe(self._dispatch)
        else:
            self._subscriptions[connection] = count

        if not self._unbound:
            self._early.clear()

    def _remember_finished(self, correlation_id: str) -> None:
        self._finished_ids[correlation_id] = None
        self._finished_ids.move_to_end(correlation_id)
        while len(self._finished_ids) > MAX_FINISHED_IDS:
            self._finished_ids.popitem(last=False)

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    def _resolve(self, pending: PendingInvocation, result: Any) -> None:
        if not pending.future.done():
            pending.future.set_result(result)

    def _reject(self, pending: PendingInvocation, error: Exception) -> None:
        if not pending.future.done():
            pending.future.set_exception(error)

    def _settle(self, pending: PendingInvocation, notification: Notification) -> None:
        if notification.error is not None and notification.payload is None:
            cause = BrokerError.from_payload(notification.error)
            self._reject(pending, RemoteError(pending.tool_name, cause))
        else:
            self._resolve(pending, notification.payload)
        self._close(pending)

    def _expire(self, pending: PendingInvocation) -> None:
        if not pending.future.done():
            logger.warning("Tool invocation timeout for %s", pending.tool_name)
            self._reject(pending, InvocationTimeout(pending.tool_name, self.timeout_seconds))
        self._close(pending)

    # -------------------------------------------------------------------------
    # Notification dispatch
    # -------------------------------------------------------------------------

    def _dispatch(self, notification: Notification) -> None:
        if notification.method != self.result_method or notification.correlation_id is None:
            return
        correlation_id = notification.correlation_id

        pending = self._by_id.get(correlation_id)
        if pending is not None:
            self._settle(pending, notification)
            return

        if correlation_id in self._finished_ids:
            logger.debug("Dropping late result for finished requestId=%s", correlation_id)
            return

        # Someone may still be waiting for the acknowledgment carrying this id
        if self._unbound:
            self._prune_early()
            self._early[correlation_id] = (self._clock(), notification)
            while len(self._early) > MAX_EARLY_NOTIFICATIONS:
                self._early.popitem(last=False)

    def _prune_early(self) -> None:
        cutoff = self._clock() - EARLY_NOTIFICATION_TTL_SECONDS
        while self._early:
            _, (received_at, _) = next(iter(self._early.items()))
            if received_at >= cutoff:
                break
            self._early.popitem(last=False)
