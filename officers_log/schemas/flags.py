"""
Typed schemas for the per-document flag namespace.

The host stores flags as an untyped key/value bag per document.  Every key
the service reads or writes has a schema here, and all access goes through
``parse_flag()`` / ``dump_flag()`` so the graph engine never sees raw dicts.
Stored values that do not validate are treated as absent.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger("officers_log.schemas.flags")


class FlagModel(BaseModel):
    """Base for structured flags: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


# ---------------------------------------------------------------------------
# Structured flags
# ---------------------------------------------------------------------------

class CallbackLink(FlagModel):
    """Directed edge: the owning log calls back to ``from_log_id`` under ``value_id``."""
    from_log_id: str = Field(default="", alias="fromLogId")
    value_id: str = Field(default="", alias="valueId")
    milestone_id: Optional[str] = Field(default=None, alias="milestoneId")


class ArcInfo(FlagModel):
    """Present only on the log that terminates a completed arc."""
    is_arc: bool = Field(default=False, alias="isArc")
    steps: int = 0
    value_id: str = Field(default="", alias="valueId")
    chain_log_ids: List[str] = Field(default_factory=list, alias="chainLogIds")

    @field_validator("chain_log_ids", mode="before")
    @classmethod
    def _clean_ids(cls, v: Any) -> list:
        if not isinstance(v, (list, tuple)):
            return []
        return [str(x) for x in v if x]


class PendingMilestoneBenefit(FlagModel):
    """Stamped on the current log at commit; consumed when the reward is chosen."""
    milestone_id: Optional[str] = Field(default=None, alias="milestoneId")
    chosen_log_id: str = Field(default="", alias="chosenLogId")
    value_id: str = Field(default="", alias="valueId")
    value_img: str = Field(default="", alias="valueImg")
    arc: Optional[ArcInfo] = None
    benefit_chosen: bool = Field(default=False, alias="benefitChosen")


class MilestoneBenefit(FlagModel):
    """Links a milestone to the item its benefit created."""
    created_item_id: str = Field(default="", alias="createdItemId")
    action: str = ""
    sync_policy: Literal["once", "always"] = Field(default="always", alias="syncPolicy")
    synced_once: bool = Field(default=False, alias="syncedOnce")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

CALLBACK_LINK = "callbackLink"
CALLBACK_LINK_DISABLED = "callbackLinkDisabled"
ARC_INFO = "arcInfo"
PRIMARY_VALUE_ID = "primaryValueId"
PENDING_MILESTONE_BENEFIT = "pendingMilestoneBenefit"
MILESTONE_BENEFIT = "milestoneBenefit"
CALLBACK_VALUE_ID = "callbackValueId"
MILESTONE_ICON_SOURCE_LOG_ID = "milestoneIconSourceLogId"
LOG_USED = "logUsed"
CHALLENGED = "challenged"
MISSION_LOG_SORT_MODE = "missionLogSortMode"

_FLAG_SCHEMAS: Dict[str, TypeAdapter] = {
    CALLBACK_LINK: TypeAdapter(CallbackLink),
    ARC_INFO: TypeAdapter(ArcInfo),
    PENDING_MILESTONE_BENEFIT: TypeAdapter(PendingMilestoneBenefit),
    MILESTONE_BENEFIT: TypeAdapter(MilestoneBenefit),
    CALLBACK_LINK_DISABLED: TypeAdapter(bool),
    LOG_USED: TypeAdapter(bool),
    CHALLENGED: TypeAdapter(bool),
    PRIMARY_VALUE_ID: TypeAdapter(str),
    CALLBACK_VALUE_ID: TypeAdapter(str),
    MILESTONE_ICON_SOURCE_LOG_ID: TypeAdapter(str),
    MISSION_LOG_SORT_MODE: TypeAdapter(str),
}

FLAG_KEYS = frozenset(_FLAG_SCHEMAS)


def parse_flag(key: str, raw: Any) -> Any:
    """
    Validate a stored flag value.

    Returns the typed value, or ``None`` when the flag is unset, unknown
    or malformed.
    """
    if raw is None:
        return None
    adapter = _FLAG_SCHEMAS.get(key)
    if adapter is None:
        logger.debug("unknown flag key %s", key)
        return None
    try:
        return adapter.validate_python(raw)
    except ValidationError as exc:
        logger.warning("malformed flag %s dropped: %s", key, exc.errors()[0].get("msg", ""))
        return None


def dump_flag(key: str, value: Any) -> Any:
    """Serialize a typed flag value into the store's JSON form."""
    if key not in _FLAG_SCHEMAS:
        raise KeyError(f"Unknown flag key: {key}")
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    # Validate plain values against the schema before they hit the store
    validated = _FLAG_SCHEMAS[key].validate_python(value)
    if isinstance(validated, BaseModel):
        return validated.model_dump(by_alias=True)
    return validated
