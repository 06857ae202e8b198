"""Mission bookkeeping: who is on which log, and who already made a callback."""

from __future__ import annotations

from typing import Any, Dict, Optional

from officers_log.config import get_settings
from officers_log.documents import ItemDoc
from officers_log.schemas.flags import LOG_USED
from officers_log.store.base import DocumentStore
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.mission")

MISSION_LOG_BY_USER = "missionLogByUser"
MISSION_CALLBACK_USED = "missionCallbackUsed"


def is_log_used(item: ItemDoc) -> bool:
    """Resolution order: ``system.used``, world flag ``used``, then module flag ``logUsed``."""
    if "used" in item.system:
        return bool(item.system["used"])
    world_flag = item.get_raw_flag("world", "used")
    if world_flag is not None:
        return bool(world_flag)
    return bool(item.get_flag(LOG_USED))


def log_used_changes(store: DocumentStore, item: ItemDoc) -> Dict[str, Any]:
    """``update_item`` changes that mark ``item`` used, in whichever field it already tracks."""
    if "used" in item.system:
        return {"system.used": True}
    return store.flag_changes("used", True, namespace="world")


async def mark_log_used(store: DocumentStore, actor_id: str, item: ItemDoc) -> None:
    await store.update_item(actor_id, item.id, log_used_changes(store, item))


class MissionTracker:
    """World-setting backed maps keyed by user id."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_mission_log_by_user(self) -> Dict[str, str]:
        return dict(await self.store.get_setting(MISSION_LOG_BY_USER, {}) or {})

    async def get_current_mission_log_id(self, user_id: str) -> Optional[str]:
        return (await self.get_mission_log_by_user()).get(str(user_id))

    async def set_mission_log_for_user(self, user_id: str, log_id: str) -> None:
        def assign(mapping):
            mapping = dict(mapping or {})
            mapping[str(user_id)] = str(log_id)
            return mapping

        await self.store.update_setting(MISSION_LOG_BY_USER, assign, {})

    async def _callback_used_map(self) -> Dict[str, bool]:
        return dict(await self.store.get_setting(MISSION_CALLBACK_USED, {}) or {})

    async def has_used_callback_this_mission(self, user_id: str) -> bool:
        return bool((await self._callback_used_map()).get(str(user_id)))

    async def set_used_callback_this_mission(self, user_id: str, used: bool) -> None:
        def mark(mapping):
            mapping = dict(mapping or {})
            if used:
                mapping[str(user_id)] = True
            else:
                mapping.pop(str(user_id), None)
            return mapping

        # Other actors commit concurrently, so never write back a stale map
        await self.store.update_setting(MISSION_CALLBACK_USED, mark, {})

    async def reset_mission_callbacks(self) -> None:
        await self.store.set_setting(MISSION_CALLBACK_USED, {})
        logger.info("mission callbacks reset")


async def gain_determination(store: DocumentStore, actor) -> bool:
    """+1 determination, capped. Returns True when a write happened."""
    if actor is None or not actor.is_character:
        return False
    prev = int(((actor.system.get("determination") or {}).get("value")) or 0)
    nxt = min(get_settings().determination_max, prev + 1)
    if nxt == prev:
        return False
    await store.update_actor(actor.id, {"system.determination.value": nxt})
    return True


async def spend_determination(store: DocumentStore, actor) -> bool:
    """-1 determination, floored at 0. Returns True when a write happened."""
    if actor is None or not actor.is_character:
        return False
    prev = int(((actor.system.get("determination") or {}).get("value")) or 0)
    nxt = max(0, prev - 1)
    if nxt == prev:
        return False
    await store.update_actor(actor.id, {"system.determination.value": nxt})
    return True
