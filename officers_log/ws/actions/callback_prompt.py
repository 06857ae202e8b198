"""Handle the ``callback-prompt`` WebSocket action: start a callback exchange."""

from __future__ import annotations

from officers_log.utils.logging_config import get_logger
from officers_log.ws.actions import ActionResult
from officers_log.ws.context import WsSessionContext

_logger = get_logger("officers_log.ws.callback_prompt")


async def handle_callback_prompt(ctx: WsSessionContext, inner_data: dict) -> ActionResult:
    orchestrator = ctx.services.orchestrator
    actor_id = inner_data["actor_id"]
    target_user_id = inner_data["target_user_id"]

    if inner_data.get("as_gm"):
        coro = orchestrator.prompt_as_gm(
            actor_id,
            owner_user_id=target_user_id,
            gm_user_id=ctx.user_id,
            default_value_id=inner_data.get("default_value_id", ""),
            default_value_state=inner_data.get("default_value_state", "positive"),
        )
    else:
        coro = orchestrator.request_callback(
            actor_id,
            target_user_id,
            requester_user_id=ctx.user_id,
            default_value_id=inner_data.get("default_value_id", ""),
            default_value_state=inner_data.get("default_value_state", "positive"),
            # Someone prompting on another player's behalf wants to hear why nothing happened
            warn=ctx.user_id != target_user_id,
        )

    # The reply arrives on this same socket, so the exchange can't block the loop
    ctx.spawn(coro)
    _logger.info("callback prompt started", extra={"actor_id": actor_id, "user_id": target_user_id,
                                                    "action": ctx.action})
    return ActionResult(reply={"type": "status", "status": "prompting", "actor_id": actor_id})
