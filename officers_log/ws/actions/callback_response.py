"""Handle the ``callback-response`` WebSocket action: a player's yes/no to an offer."""

from __future__ import annotations

from officers_log.ws.actions import ActionResult
from officers_log.ws.context import WsSessionContext


async def handle_callback_response(ctx: WsSessionContext, inner_data: dict) -> ActionResult:
    resolved = await ctx.services.transport.dispatch("callback-response", inner_data)
    # Late or duplicate answers are dropped without telling the client
    return ActionResult(ok=bool(resolved))
