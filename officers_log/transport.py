"""Participant messaging.

Requests are fire-and-forget.  Correlating a reply with its request is the
caller's job (see ``PendingResponses`` in the orchestrator); the transport
only routes named messages in and out.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from officers_log.errors import TransportUnavailable
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.transport")

RequestHandler = Callable[[dict], Awaitable[Any]]
Responder = Callable[[str, str, dict], Optional[Tuple[str, dict]]]


class Transport(abc.ABC):

    def __init__(self):
        self._handlers: Dict[str, RequestHandler] = {}

    @abc.abstractmethod
    async def send_request(self, target_user_id: str, name: str, payload: dict) -> None:
        """Deliver ``payload`` to one participant. Raises ``TransportUnavailable``."""

    @abc.abstractmethod
    def is_available(self, target_user_id: Optional[str] = None) -> bool:
        ...

    def on_request(self, name: str, handler: RequestHandler) -> None:
        self._handlers[name] = handler

    async def dispatch(self, name: str, payload: dict) -> Any:
        """Route an inbound message to its registered handler."""
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("no handler registered for %s", name, extra={"action": name})
            return None
        return await handler(payload)


class WebSocketTransport(Transport):
    """Sends through the app's ``ConnectionManager``."""

    def __init__(self, manager):
        super().__init__()
        self.manager = manager

    def is_available(self, target_user_id: Optional[str] = None) -> bool:
        return self.manager.is_connected(target_user_id)

    async def send_request(self, target_user_id: str, name: str, payload: dict) -> None:
        message = {"type": name, **payload}
        delivered = await self.manager.send_to_user(target_user_id, message)
        if not delivered:
            raise TransportUnavailable(f"No open connection for user {target_user_id}")
        logger.debug("sent %s", name, extra={"user_id": target_user_id, "action": name})


class LoopbackTransport(Transport):
    """In-process transport for tests and single-table play.

    ``responder(target_user_id, name, payload)`` may return ``(name, reply)``;
    the reply is dispatched back on the running loop as if it came from the
    participant.
    """

    def __init__(self, responder: Optional[Responder] = None, available: bool = True):
        super().__init__()
        self.responder = responder
        self.available = available
        self.sent: List[Tuple[str, str, dict]] = []
        self._tasks: Set[asyncio.Task] = set()

    def is_available(self, target_user_id: Optional[str] = None) -> bool:
        return self.available

    async def send_request(self, target_user_id: str, name: str, payload: dict) -> None:
        if not self.available:
            raise TransportUnavailable("Loopback transport is offline")
        self.sent.append((str(target_user_id), name, payload))
        if self.responder is None:
            return
        reply = self.responder(str(target_user_id), name, payload)
        if inspect.isawaitable(reply):
            reply = await reply
        if not reply:
            return
        reply_name, reply_payload = reply
        task = asyncio.get_running_loop().create_task(self.dispatch(reply_name, reply_payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def sent_named(self, name: str) -> List[Tuple[str, dict]]:
        return [(user, payload) for user, n, payload in self.sent if n == name]
