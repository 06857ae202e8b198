"""Value items: icon ranks, challenged state and per-log value states."""

from __future__ import annotations

from typing import Any, List, Optional

from officers_log.config import get_settings, value_icon_path
from officers_log.documents import ActorDoc, ItemDoc
from officers_log.schemas.flags import CHALLENGED

INVOKED_STATES = ("positive", "negative", "challenged")


def get_value_items(actor: ActorDoc) -> List[ItemDoc]:
    """Values in ``sort`` order, so V1..Vn rank assignment is stable."""
    return sorted(actor.values(), key=lambda v: int(v.sort or 0))


def get_value_icon_for_value_id(actor: ActorDoc, value_id: str) -> Optional[str]:
    """Rank-based icon for a value; ``None`` when the value isn't on the actor.

    Derived from Value order only; never feeds back into primary-value
    resolution.
    """
    vid = str(value_id or "")
    if not vid:
        return None
    cap = get_settings().value_icon_count
    for idx, value in enumerate(get_value_items(actor)):
        if value.id == vid:
            return value_icon_path(min(idx + 1, cap))
    return None


def is_value_challenged(value: Optional[ItemDoc]) -> bool:
    if value is None:
        return False
    if value.system.get("challenged"):
        return True
    # Some sheets model "challenged" as the strike-through toggle
    if value.system.get("used"):
        return True
    return bool(value.get_flag(CHALLENGED))


def normalize_value_state_array(raw: Any) -> List[str]:
    # Older sheets stored a single string instead of a list
    if isinstance(raw, (list, tuple)):
        return [str(v) for v in raw if v]
    if isinstance(raw, str):
        s = raw.strip()
        return [s] if s else []
    return []


def get_value_state_array(log: ItemDoc, value_id: str) -> List[str]:
    states = log.system.get("valueStates") or {}
    arr = normalize_value_state_array(states.get(str(value_id)))
    return arr or ["unused"]


def is_value_invoked_state(state: str) -> bool:
    return state in INVOKED_STATES


def merge_value_state_array(existing_raw: Any, state_to_add: str) -> List[str]:
    nxt = str(state_to_add or "").strip()
    if not nxt or nxt == "unused":
        return ["unused"]
    arr = [s for s in normalize_value_state_array(existing_raw) if s != "unused"]
    if nxt not in arr:
        arr.append(nxt)
    return arr


def invoked_value_ids(log: ItemDoc) -> List[str]:
    """Value ids this log has invoked (positive, negative or challenged)."""
    out = []
    for value_id, raw in (log.system.get("valueStates") or {}).items():
        if any(is_value_invoked_state(s) for s in normalize_value_state_array(raw)):
            out.append(str(value_id))
    return out


async def label_values_on_actor(store, actor: ActorDoc) -> int:
    """Assign V1..Vn icons to the actor's values by rank. Returns the number changed."""
    cap = get_settings().value_icon_count
    changed = 0
    for idx, value in enumerate(get_value_items(actor)):
        img = value_icon_path(min(idx + 1, cap))
        if value.img != img:
            await store.update_item(actor.id, value.id, {"img": img}, render=False)
            changed += 1
    return changed
