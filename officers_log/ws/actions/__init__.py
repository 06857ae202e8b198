"""WebSocket action dispatch table and result type."""

from __future__ import annotations

import dataclasses
from typing import Any, Awaitable, Callable, Optional

from officers_log.ws.context import WsSessionContext


@dataclasses.dataclass
class ActionResult:
    """Returned by each action handler.

    ``reply`` (when set) is sent back on the socket that issued the action.
    """
    ok: bool = True
    reply: Optional[dict[str, Any]] = None


# Type alias for action handler signatures
ActionHandler = Callable[[WsSessionContext, dict], Awaitable[ActionResult]]


def get_action_dispatch() -> dict[str, ActionHandler]:
    """Build and return the action → handler dispatch table.

    Imports are deferred to avoid circular-import issues and to keep this
    module lightweight at import time.
    """
    from officers_log.ws.actions.callback_prompt import handle_callback_prompt
    from officers_log.ws.actions.callback_response import handle_callback_response
    from officers_log.ws.actions.choice_response import handle_choice_response
    from officers_log.ws.actions.choose_benefit import handle_choose_benefit
    from officers_log.ws.actions.link_log import handle_link_log
    from officers_log.ws.actions.toggle_arc import handle_toggle_arc

    return {
        "callback-prompt": handle_callback_prompt,
        "callback-response": handle_callback_response,
        "choice-response": handle_choice_response,
        "choose-benefit": handle_choose_benefit,
        "link-log": handle_link_log,
        "toggle-arc": handle_toggle_arc,
    }
