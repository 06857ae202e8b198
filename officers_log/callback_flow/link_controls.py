"""Manual chain editing from the character sheet."""

from __future__ import annotations

import dataclasses
from typing import List, Optional

from officers_log.callback_flow.milestones import write_callback_link
from officers_log.config import get_settings
from officers_log.documents import ActorDoc, ItemDoc
from officers_log.errors import CallbackRejected, DocumentNotFound
from officers_log.graph.arc_chains import compute_best_chain_ending_at, get_callback_edges_for_value
from officers_log.graph.eligibility import is_callback_target_compatible
from officers_log.graph.log_graph import LogGraph, milestone_child_log_ids
from officers_log.mission import is_log_used
from officers_log.schemas.flags import (
    ARC_INFO,
    CALLBACK_LINK,
    CALLBACK_LINK_DISABLED,
    PENDING_MILESTONE_BENEFIT,
    PRIMARY_VALUE_ID,
    ArcInfo,
)
from officers_log.store.base import DocumentStore
from officers_log.utils.logging_config import ActorAdapter, get_logger

_raw_logger = get_logger("officers_log.callback_flow.link_controls")


async def _load(store: DocumentStore, actor_id: str, log_id: str):
    actor = await store.get_actor(actor_id)
    if actor is None:
        raise DocumentNotFound("actor", actor_id)
    log = actor.get(log_id)
    if log is None or log.type != "log":
        raise DocumentNotFound("log", log_id)
    return actor, log


async def sync_log_img_to_value(store: DocumentStore, actor: ActorDoc, log: ItemDoc, value_id: str) -> bool:
    """Log icon follows its value; with no value it goes back to the default icon."""
    if not value_id:
        desired = get_settings().default_log_icon
    else:
        value = actor.get(value_id)
        desired = value.img if value is not None and value.type == "value" else ""
    if not desired or log.img == desired:
        return False
    await store.update_item(actor.id, log.id, {"img": desired})
    return True


async def link_log_to_chain(
    store: DocumentStore,
    actor_id: str,
    log_id: str,
    from_log_id: str = "",
    value_id: str = "",
) -> Optional[str]:
    """Point ``log_id`` at ``from_log_id``, or unlink it when ``from_log_id`` is empty.

    Returns the new parent id (``None`` after an unlink).  Raises
    ``CallbackRejected`` when the target can't be called back to.
    """
    actor, log = await _load(store, actor_id, log_id)
    logger = ActorAdapter(_raw_logger, actor_id=actor.id)
    graph = LogGraph(actor)
    from_log_id = str(from_log_id or "")
    value_id = str(value_id or "")

    existing = log.get_flag(CALLBACK_LINK)
    existing_from = existing.from_log_id if existing else ""

    if from_log_id:
        if from_log_id == log.id:
            raise CallbackRejected("A log cannot call back to itself.", step="link")
        target = actor.get(from_log_id)
        if target is None or target.type != "log":
            raise CallbackRejected("That log no longer exists.", step="link")
        # Re-saving the current selection is always allowed
        if from_log_id != existing_from and is_log_used(target):
            raise CallbackRejected("That log has already been used for a callback.", step="link")
        if not is_callback_target_compatible(
            value_id, graph.primary_value_for(target), graph.is_arc_boundary(target.id)
        ):
            raise CallbackRejected("Cannot call back to a log with a different primary value.", step="link")

    if not from_log_id:
        await store.unset_flag(actor.id, log.id, CALLBACK_LINK)
        # Keep milestone-derived edges from pulling it back into a chain
        await store.set_flag(actor.id, log.id, CALLBACK_LINK_DISABLED, True)
        logger.info("log unlinked", extra={"metadata": {"log_id": log.id}})
    else:
        if log.get_flag(CALLBACK_LINK_DISABLED):
            await store.unset_flag(actor.id, log.id, CALLBACK_LINK_DISABLED)
        await write_callback_link(store, actor, log.id, from_log_id, value_id)
        logger.info("log linked", extra={"metadata": {"log_id": log.id, "from_log_id": from_log_id}})

    await sync_log_img_to_value(store, actor, log, value_id)
    return from_log_id or None


async def set_arc_end(
    store: DocumentStore,
    actor_id: str,
    log_id: str,
    is_arc: bool,
    steps: int = 1,
    value_id: str = "",
) -> Optional[ArcInfo]:
    """Mark or unmark a log as the end of a completed arc by hand.

    The stored chain is recomputed from the current links, excluding logs
    other arcs already consumed.
    """
    actor, log = await _load(store, actor_id, log_id)
    if not is_arc:
        await store.unset_flag(actor.id, log.id, ARC_INFO)
        return None

    existing = log.get_flag(ARC_INFO)
    arc_value_id = value_id or (existing.value_id if existing else "") or LogGraph(actor).primary_value_for(log)
    if not arc_value_id:
        await store.unset_flag(actor.id, log.id, ARC_INFO)
        raise CallbackRejected("Select a Primary Value before marking an Arc end.", step="arc")

    steps = max(1, int(steps or 1))
    disallow = set()
    for other in actor.logs():
        if other.id == log.id:
            continue
        other_arc = other.get_flag(ARC_INFO)
        if other_arc is not None and other_arc.is_arc:
            disallow.update(other_arc.chain_log_ids)
    incoming = get_callback_edges_for_value(actor, arc_value_id)
    full = compute_best_chain_ending_at(incoming, log.id, disallow).chain_log_ids
    arc = ArcInfo(
        is_arc=True,
        steps=steps,
        value_id=arc_value_id,
        chain_log_ids=full[-steps:] if len(full) > steps else full,
    )
    if value_id:
        await store.set_flag(actor.id, log.id, PRIMARY_VALUE_ID, value_id)
    await store.set_flag(actor.id, log.id, ARC_INFO, arc)
    return arc


@dataclasses.dataclass
class DeleteReport:
    log_id: str
    warnings: List[str] = dataclasses.field(default_factory=list)
    deleted: bool = False

    @property
    def has_dangling_edges(self) -> bool:
        return bool(self.warnings)


def find_dangling_references(actor: ActorDoc, log_id: str) -> List[str]:
    """Everything that still points at ``log_id`` and would break on delete."""
    graph = LogGraph(actor)
    log = actor.get(log_id)
    warnings = []
    for child in graph.incoming_children(log_id):
        warnings.append(f'"{child.name}" calls back to this log.')
    link = graph.active_link(log) if log is not None else None
    if link is not None and link.from_log_id in graph.logs_by_id:
        warnings.append(f'This log calls back to "{graph.logs_by_id[link.from_log_id].name}".')
    for ms in actor.milestones():
        if log_id in milestone_child_log_ids(ms):
            warnings.append(f'Milestone "{ms.name}" references this log.')
    for other in actor.logs():
        arc = other.get_flag(ARC_INFO)
        if other.id != log_id and arc is not None and arc.is_arc and log_id in arc.chain_log_ids:
            warnings.append(f'This log is part of the arc ending at "{other.name}".')
        pending = other.get_flag(PENDING_MILESTONE_BENEFIT)
        if pending is not None and not pending.benefit_chosen and pending.chosen_log_id == log_id:
            warnings.append(f'"{other.name}" has an unclaimed milestone benefit for this log.')
    return warnings


async def delete_log_with_warning(store: DocumentStore, actor_id: str, log_id: str,
                                  confirm: bool = False) -> DeleteReport:
    """List what deleting the log would break; delete only when confirmed.

    Deleted ids are never reused, so any edge pointing here stays dangling.
    """
    actor, log = await _load(store, actor_id, log_id)
    report = DeleteReport(log_id=log.id, warnings=find_dangling_references(actor, log.id))
    if not confirm:
        return report
    await store.delete_items(actor.id, [log.id])
    report.deleted = True
    ActorAdapter(_raw_logger, actor_id=actor.id).warning(
        "log deleted", extra={"metadata": {"log_id": log.id, "dangling": len(report.warnings)}}
    )
    return report
