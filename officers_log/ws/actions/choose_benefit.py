"""Handle the ``choose-benefit`` WebSocket action: bind a milestone reward to a log."""

from __future__ import annotations

from officers_log.callback_flow.benefits import bind_milestone_benefit
from officers_log.errors import CallbackRejected, DocumentNotFound
from officers_log.ws.actions import ActionResult
from officers_log.ws.context import WsSessionContext


async def handle_choose_benefit(ctx: WsSessionContext, inner_data: dict) -> ActionResult:
    services = ctx.services
    actor = await services.store.get_actor(inner_data["actor_id"])
    if actor is None:
        raise DocumentNotFound("actor", inner_data["actor_id"])
    try:
        milestone = await bind_milestone_benefit(services.store, actor, inner_data["log_id"], inner_data["benefit"])
    except CallbackRejected as exc:
        await services.presenter.notify(ctx.user_id, "warn", exc.message)
        return ActionResult(ok=False)

    await services.presenter.render(actor.id)
    return ActionResult(reply={
        "type": "milestone",
        "actor_id": actor.id,
        "log_id": inner_data["log_id"],
        "milestone_id": milestone.id,
        "name": milestone.name,
    })
