"""
WebSocket message validation schemas.

Every inbound WS message must match the ``WsMessage`` envelope.  After the
``action`` field is resolved, the ``payload`` dict is validated against the
action-specific model via ``validate_ws_payload()``.

Outbound messages the orchestrator builds (the callback offer) are modelled
here too, so the client contract lives in one place.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from officers_log.config import get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Hard limits
# ---------------------------------------------------------------------------
MAX_MESSAGE_BYTES = get_settings().max_message_bytes  # reject raw text before JSON parsing

VALUE_STATES = ("positive", "negative", "challenged")

# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------
VALID_ACTIONS = frozenset({
    "callback-prompt", "callback-response", "choice-response",
    "choose-benefit", "link-log", "toggle-arc",
})


class WsMessage(BaseModel):
    """Top-level WebSocket message envelope."""
    action: str = Field(..., description="Action to perform")
    payload: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Per-action payloads
# ---------------------------------------------------------------------------

class CallbackPromptPayload(BaseModel):
    """GM (or the player themselves) asks ``target_user_id`` for a callback."""
    actor_id: str = Field(..., min_length=1, max_length=64)
    target_user_id: str = Field(..., min_length=1, max_length=64)
    default_value_id: str = Field(default="", max_length=64)
    default_value_state: Literal["positive", "negative", "challenged"] = "positive"
    # GM answers on the player's behalf instead of sending the offer
    as_gm: bool = False


class CallbackResponsePayload(BaseModel):
    request_id: str = Field(..., min_length=1, max_length=64)
    action: Literal["yes", "no"]
    actor_id: str = Field(default="", max_length=64)
    log_id: str = Field(default="", max_length=64)
    value_id: str = Field(default="", max_length=64)
    value_state: str = Field(default="positive", max_length=32)


class ChoiceResponsePayload(BaseModel):
    request_id: str = Field(..., min_length=1, max_length=64)
    selection: Optional[Dict[str, Any]] = None


class AppliedBenefit(BaseModel):
    """The reward a player picked for a milestone."""
    applied: bool = True
    action: str = Field(..., min_length=1, max_length=64)
    key: str = Field(default="", max_length=64)
    name: str = Field(default="", max_length=200)
    created_item_id: str = Field(default="", max_length=64)


class ChooseBenefitPayload(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=64)
    log_id: str = Field(..., min_length=1, max_length=64)
    benefit: AppliedBenefit


class LinkLogPayload(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=64)
    log_id: str = Field(..., min_length=1, max_length=64)
    # Empty means "unlink"
    from_log_id: str = Field(default="", max_length=64)
    value_id: str = Field(default="", max_length=64)


class ToggleArcPayload(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=64)
    arc_id: str = Field(..., min_length=1, max_length=64)
    collapsed: Optional[bool] = None


# ---------------------------------------------------------------------------
# Outbound: callback offer
# ---------------------------------------------------------------------------

class InvokedValue(BaseModel):
    id: str
    name: str
    state: str


class OfferLog(BaseModel):
    id: str
    name: str
    invoked: List[InvokedValue] = Field(default_factory=list)
    invoked_ids: List[str] = Field(default_factory=list)
    primary_value_id: str = ""
    is_completed_arc_end: bool = False


class OfferValue(BaseModel):
    id: str
    name: str
    disabled: bool = False


class CallbackOffer(BaseModel):
    request_id: str
    actor_id: str
    target_user_id: str
    logs: List[OfferLog] = Field(default_factory=list)
    values: List[OfferValue] = Field(default_factory=list)
    default_value_id: str = ""
    default_value_state: str = "positive"
    # Logs eligible before any default-value filtering
    eligible_count: int = 0

    @property
    def has_logs(self) -> bool:
        return bool(self.logs)


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------
_ACTION_SCHEMAS: dict[str, type[BaseModel]] = {
    "callback-prompt": CallbackPromptPayload,
    "callback-response": CallbackResponsePayload,
    "choice-response": ChoiceResponsePayload,
    "choose-benefit": ChooseBenefitPayload,
    "link-log": LinkLogPayload,
    "toggle-arc": ToggleArcPayload,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_ws_payload(action: str, raw_payload: dict) -> tuple[bool, dict | str]:
    """
    Validate *raw_payload* against the schema for *action*.

    Returns ``(True, validated_dict)`` on success or
    ``(False, error_message)`` on failure.
    """
    schema = _ACTION_SCHEMAS.get(action)
    if schema is None:
        return False, f"Unknown action: {action}"

    try:
        model = schema(**raw_payload)
        return True, model.model_dump()
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(l) for l in e['loc'])}: {e['msg']}"
            for e in exc.errors()
        )
        logger.info("ws_validation_failed | action=%s | errors=%s", action, errors)
        return False, f"Invalid payload for '{action}': {errors}"
