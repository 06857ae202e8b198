"""Handle the ``toggle-arc`` WebSocket action: collapse or expand an arc block."""

from __future__ import annotations

from officers_log.ws.actions import ActionResult
from officers_log.ws.context import WsSessionContext


async def handle_toggle_arc(ctx: WsSessionContext, inner_data: dict) -> ActionResult:
    collapse = ctx.services.collapse
    actor_id, arc_id = inner_data["actor_id"], inner_data["arc_id"]
    if inner_data.get("collapsed") is None:
        collapsed = collapse.toggle(actor_id, arc_id)
    else:
        collapsed = bool(inner_data["collapsed"])
        collapse.set_collapsed(actor_id, arc_id, collapsed)
    return ActionResult(reply={"type": "arc-toggle", "actor_id": actor_id, "arc_id": arc_id, "collapsed": collapsed})
