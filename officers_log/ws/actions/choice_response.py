"""Handle the ``choice-response`` WebSocket action: a reply to a local choice dialog."""

from __future__ import annotations

from officers_log.ws.actions import ActionResult
from officers_log.ws.context import WsSessionContext


async def handle_choice_response(ctx: WsSessionContext, inner_data: dict) -> ActionResult:
    resolve = getattr(ctx.services.presenter, "resolve_choice", None)
    if resolve is None:
        return ActionResult(ok=False)
    return ActionResult(ok=resolve(inner_data["request_id"], inner_data.get("selection")))
