"""Per-connection shared state for WebSocket action handlers."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Set

from fastapi import WebSocket

from officers_log.services import Services

# Prompt exchanges outlive the socket that started them; hold them until done
_background: Set[asyncio.Task] = set()


@dataclasses.dataclass
class WsSessionContext:
    """Bundles all per-connection state that action handlers need.

    Created once per WebSocket connection in ``handler.py`` and passed to
    every action handler.
    """
    websocket: WebSocket
    user_id: str
    services: Services
    action: str = ""                # current action name

    def spawn(self, coro) -> asyncio.Task:
        """Run ``coro`` beside the receive loop so replies can still arrive."""
        task = asyncio.ensure_future(coro)
        _background.add(task)
        task.add_done_callback(_background.discard)
        return task
