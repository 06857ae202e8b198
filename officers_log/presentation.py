"""User-facing surfaces: choices, notifications and re-render triggers."""

from __future__ import annotations

import abc
import asyncio
import collections
import uuid
from typing import Deque, Iterable, List, Optional, Tuple

from officers_log.callback_flow.orchestrator import PendingResponses
from officers_log.config import get_settings
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.presentation")

NOTIFY_KINDS = ("info", "warn", "error")


class Presenter(abc.ABC):

    @abc.abstractmethod
    async def present_choice(self, user_id: str, options: dict) -> Optional[dict]:
        """Show a modal choice; ``None`` when the user closes it."""

    @abc.abstractmethod
    async def notify(self, user_id: Optional[str], kind: str, message: str) -> None:
        """``user_id=None`` notifies everyone."""

    @abc.abstractmethod
    async def render(self, actor_id: str) -> None:
        """Ask clients showing ``actor_id`` to repaint. Idempotent."""


class WebSocketPresenter(Presenter):

    def __init__(self, manager, timeout: Optional[float] = None):
        self.manager = manager
        self.timeout = timeout if timeout is not None else get_settings().callback_timeout_seconds
        self.pending = PendingResponses()

    async def present_choice(self, user_id: str, options: dict) -> Optional[dict]:
        request_id = uuid.uuid4().hex
        future = self.pending.register(request_id)
        try:
            delivered = await self.manager.send_to_user(
                user_id, {"type": "choice", "request_id": request_id, "options": options}
            )
            if not delivered:
                return None
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            logger.info("choice timed out", extra={"user_id": user_id, "request_id": request_id})
            return None
        finally:
            self.pending.expire(request_id)

    def resolve_choice(self, request_id: str, selection: Optional[dict]) -> bool:
        return self.pending.resolve(request_id, selection)

    async def notify(self, user_id: Optional[str], kind: str, message: str) -> None:
        payload = {"type": "notification", "kind": kind, "message": message}
        if user_id is None:
            await self.manager.broadcast(payload)
            return
        if not await self.manager.send_to_user(user_id, payload):
            logger.debug("notification dropped, user offline", extra={"user_id": user_id})

    async def render(self, actor_id: str) -> None:
        await self.manager.broadcast({"type": "render", "actor_id": actor_id})


class RecordingPresenter(Presenter):
    """Keeps everything it is asked to show; choices come from a scripted queue."""

    def __init__(self, choices: Iterable[Optional[dict]] = ()):
        self.choices: Deque[Optional[dict]] = collections.deque(choices)
        self.presented: List[Tuple[str, dict]] = []
        self.notifications: List[Tuple[Optional[str], str, str]] = []
        self.renders: List[str] = []

    async def present_choice(self, user_id: str, options: dict) -> Optional[dict]:
        self.presented.append((user_id, options))
        if not self.choices:
            return None
        choice = self.choices.popleft()
        if callable(choice):
            return choice(options)
        return choice

    async def notify(self, user_id: Optional[str], kind: str, message: str) -> None:
        self.notifications.append((user_id, kind, message))

    async def render(self, actor_id: str) -> None:
        self.renders.append(actor_id)

    def messages(self, kind: Optional[str] = None) -> List[str]:
        return [m for _, k, m in self.notifications if kind is None or k == kind]
