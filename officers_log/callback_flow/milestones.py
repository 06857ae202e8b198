"""
Milestones and the callback edges they imply.

A milestone records why two (or, for an arc, many) logs are linked.  The
edges it implies are derived by :func:`callback_link_edges` and written by
:func:`write_callback_link`, the same writer the orchestrator uses at
commit time, so regenerating links from a milestone always produces the
edge shape a live callback would have written.
"""
from __future__ import annotations

from typing import List, Optional, Tuple

from officers_log.documents import ActorDoc, ItemDoc
from officers_log.graph.log_graph import CHILD_LETTERS, LogGraph, milestone_child_log_ids, milestone_is_arc
from officers_log.schemas.flags import (
    CALLBACK_LINK,
    CALLBACK_VALUE_ID,
    MILESTONE_BENEFIT,
    MILESTONE_ICON_SOURCE_LOG_ID,
    ArcInfo,
    CallbackLink,
    MilestoneBenefit,
    dump_flag,
)
from officers_log.store.base import DocumentStore
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.callback_flow.milestones")


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------

def callback_link_edges(milestone: ItemDoc) -> List[Tuple[str, str]]:
    """``(log_id, from_log_id)`` pairs a milestone implies.

    Arc milestones chain consecutive children; anything else links
    ``childB`` back to ``childA``.
    """
    if milestone_is_arc(milestone):
        ids = milestone_child_log_ids(milestone)
        return [(ids[i], ids[i - 1]) for i in range(1, len(ids))]
    from_id = str(milestone.system.get("childA") or "")
    log_id = str(milestone.system.get("childB") or "")
    if not from_id or not log_id:
        return []
    return [(log_id, from_id)]


async def write_callback_link(
    store: DocumentStore,
    actor: ActorDoc,
    log_id: str,
    from_log_id: str,
    value_id: str,
    milestone_id: Optional[str] = None,
) -> bool:
    """Set ``log_id``'s callback edge. Returns False when nothing needed writing.

    An empty ``value_id`` keeps the value already on the link; an empty value
    would detach the log from value-specific chains.
    """
    log = actor.get(log_id)
    if log is None or log.type != "log":
        return False

    existing = log.get_flag(CALLBACK_LINK)
    ex_from = existing.from_log_id if existing else ""
    ex_val = existing.value_id if existing else ""
    ex_milestone = existing.milestone_id if existing else None
    next_val = str(value_id or "") or ex_val
    next_from = str(from_log_id or "")

    if milestone_id is None and ex_from == next_from:
        milestone_id = ex_milestone
    if ex_from == next_from and ex_val == next_val and ex_milestone == milestone_id:
        return False

    link = CallbackLink(from_log_id=next_from, value_id=next_val, milestone_id=milestone_id)
    await store.set_flag(actor.id, log.id, CALLBACK_LINK, link)
    return True


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_milestone_item(
    store: DocumentStore,
    actor: ActorDoc,
    chosen_log_id: str,
    current_log_id: str,
    value_img: Optional[str],
    value_id: str,
    arc: Optional[ArcInfo] = None,
    benefit_label: Optional[str] = None,
    benefit: Optional[MilestoneBenefit] = None,
) -> Optional[ItemDoc]:
    """Create the milestone for a callback (or arc) on ``actor``.

    Returns ``None`` when either log is missing.
    """
    if actor is None or not chosen_log_id or not current_log_id or not value_id:
        return None
    chosen = actor.get(chosen_log_id)
    current = actor.get(current_log_id)
    if chosen is None or current is None:
        return None

    system: dict = {}
    arc_chain = list(arc.chain_log_ids) if arc is not None and arc.is_arc else []
    if arc_chain:
        for letter, log_id in zip(CHILD_LETTERS, arc_chain):
            system[f"child{letter}"] = log_id
        system["arc"] = {"isArc": True, "steps": int(arc.steps or len(arc_chain))}
    else:
        system["childA"] = chosen.id
        system["childB"] = current.id
    system["description"] = ""

    module_flags = {CALLBACK_VALUE_ID: value_id}
    if benefit is not None and benefit.created_item_id:
        module_flags[MILESTONE_BENEFIT] = dump_flag(MILESTONE_BENEFIT, benefit)

    label = str(benefit_label or "").strip()
    item_data = {
        "type": "milestone",
        "name": label or f"Callback: {current.name} + {chosen.name}",
        "img": value_img or "",
        "system": system,
        "flags": {store.namespace: module_flags},
    }
    created = await store.create_items(actor.id, [item_data])
    milestone = created[0] if created else None
    if milestone is not None:
        logger.info(
            "milestone created",
            extra={"actor_id": actor.id, "event_type": "milestone_created",
                   "metadata": {"milestone_id": milestone.id, "arc": bool(arc_chain)}},
        )
    return milestone


# ---------------------------------------------------------------------------
# Icons
# ---------------------------------------------------------------------------

def _first_child_log_id(milestone: ItemDoc) -> str:
    if milestone_is_arc(milestone):
        ids = milestone_child_log_ids(milestone)
        return ids[0] if ids else ""
    return str(milestone.system.get("childA") or "")


def milestone_icon_source_log_id(milestone: ItemDoc) -> str:
    return milestone.get_flag(MILESTONE_ICON_SOURCE_LOG_ID) or _first_child_log_id(milestone)


async def sync_milestone_img_from_log(
    store: DocumentStore,
    actor_id: str,
    milestone: ItemDoc,
    log: Optional[ItemDoc],
    set_source_flag: bool = False,
) -> bool:
    """Copy the log's icon onto the milestone. Returns True when the icon changed."""
    if milestone is None or milestone.type != "milestone":
        return False
    if log is None or log.type != "log" or not log.img:
        return False

    changed = milestone.img != log.img
    if changed:
        await store.update_item(actor_id, milestone.id, {"img": log.img})
    if set_source_flag and milestone.get_flag(MILESTONE_ICON_SOURCE_LOG_ID) != log.id:
        await store.set_flag(actor_id, milestone.id, MILESTONE_ICON_SOURCE_LOG_ID, log.id)
    return changed


async def sync_all_milestone_icons(store: DocumentStore, actor: ActorDoc) -> int:
    """Align every milestone's icon with its source log. Returns the number updated."""
    if actor is None or not actor.is_character:
        return 0

    def resolve(log_id: str) -> Optional[ItemDoc]:
        item = actor.get(log_id)
        return item if item is not None and item.type == "log" else None

    updated = 0
    for ms in actor.milestones():
        source = resolve(ms.get_flag(MILESTONE_ICON_SOURCE_LOG_ID) or "") or resolve(_first_child_log_id(ms))
        if source is None or not source.img:
            continue
        if ms.img != source.img:
            await store.update_item(actor.id, ms.id, {"img": source.img}, render=False)
            updated += 1
    return updated


# ---------------------------------------------------------------------------
# Regeneration
# ---------------------------------------------------------------------------

async def sync_callback_links_from_milestone(store: DocumentStore, actor: ActorDoc, milestone: ItemDoc) -> int:
    """Rewrite the callback edges a milestone implies. Returns the number of links written."""
    if actor is None or not actor.is_character:
        return 0
    if milestone is None or milestone.type != "milestone":
        return 0

    source_id = milestone_icon_source_log_id(milestone)
    if source_id:
        await sync_milestone_img_from_log(store, actor.id, milestone, actor.get(source_id))

    # Keep the milestone's value aligned with its first log so its edges stay in that chain
    value_id = milestone.get_flag(CALLBACK_VALUE_ID) or ""
    first = actor.get(_first_child_log_id(milestone))
    if first is not None and first.type == "log":
        primary = LogGraph(actor).primary_value_for(first)
        if primary and primary != value_id:
            await store.set_flag(actor.id, milestone.id, CALLBACK_VALUE_ID, primary)
            value_id = primary

    written = 0
    for log_id, from_log_id in callback_link_edges(milestone):
        if await write_callback_link(store, actor, log_id, from_log_id, value_id):
            written += 1
    if written:
        logger.info("milestone links regenerated",
                    extra={"actor_id": actor.id, "metadata": {"milestone_id": milestone.id, "written": written}})
    return written
