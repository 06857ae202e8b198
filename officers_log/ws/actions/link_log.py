"""Handle the ``link-log`` WebSocket action: edit a log's callback link by hand."""

from __future__ import annotations

from officers_log.callback_flow.link_controls import link_log_to_chain
from officers_log.errors import CallbackRejected
from officers_log.ws.actions import ActionResult
from officers_log.ws.context import WsSessionContext


async def handle_link_log(ctx: WsSessionContext, inner_data: dict) -> ActionResult:
    services = ctx.services
    try:
        parent = await link_log_to_chain(
            services.store,
            inner_data["actor_id"],
            inner_data["log_id"],
            from_log_id=inner_data.get("from_log_id", ""),
            value_id=inner_data.get("value_id", ""),
        )
    except CallbackRejected as exc:
        await services.presenter.notify(ctx.user_id, "warn", exc.message)
        return ActionResult(ok=False)

    await services.presenter.render(inner_data["actor_id"])
    return ActionResult(reply={"type": "link", "log_id": inner_data["log_id"], "from_log_id": parent})
