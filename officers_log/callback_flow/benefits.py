"""Milestone rewards: labels, binding a chosen reward, and keeping names in sync."""

from __future__ import annotations

from typing import Optional, Union

from officers_log.callback_flow.milestones import (
    create_milestone_item,
    sync_milestone_img_from_log,
    write_callback_link,
)
from officers_log.documents import ActorDoc, ItemDoc
from officers_log.errors import CallbackRejected
from officers_log.schemas.flags import (
    ARC_INFO,
    CALLBACK_LINK,
    MILESTONE_BENEFIT,
    PENDING_MILESTONE_BENEFIT,
    MilestoneBenefit,
)
from officers_log.schemas.ws_messages import AppliedBenefit
from officers_log.store.base import DocumentStore
from officers_log.utils.logging_config import ActorAdapter, get_logger
from officers_log.values import get_value_icon_for_value_id

_raw_logger = get_logger("officers_log.callback_flow.benefits")

ATTRIBUTE_LABELS = {
    "control": "Control",
    "daring": "Daring",
    "fitness": "Fitness",
    "insight": "Insight",
    "presence": "Presence",
    "reason": "Reason",
}

DISCIPLINE_LABELS = {
    "command": "Command",
    "conn": "Conn",
    "security": "Security",
    "engineering": "Engineering",
    "science": "Science",
    "medicine": "Medicine",
}

# Items whose rename should follow through to the milestone that created them
RENAME_SYNC_TYPES = ("focus", "talent", "value")


def _as_applied(applied: Union[AppliedBenefit, dict, None]) -> Optional[AppliedBenefit]:
    if applied is None:
        return None
    if isinstance(applied, AppliedBenefit):
        return applied
    return AppliedBenefit.model_validate(applied)


def format_benefit_label(applied: Union[AppliedBenefit, dict, None]) -> str:
    """Human-readable milestone name for a chosen reward."""
    benefit = _as_applied(applied)
    if benefit is None or not benefit.applied:
        return ""

    action, key, name = benefit.action, benefit.key, benefit.name
    if action in ("attr", "arcAttr"):
        return f"+1 {ATTRIBUTE_LABELS.get(key, key)}"
    if action in ("disc", "arcDisc"):
        return f"+1 {DISCIPLINE_LABELS.get(key, key)}"
    if action == "focus":
        return f"Focus: {name}" if name else "New Focus"
    if action == "talent":
        return f"Talent: {name}" if name else "New Talent"
    if action == "arcValue":
        return f"Value: {name}" if name else "New Value"
    if action == "arcRemoveTrauma":
        return f"Remove Trauma: {name}" if name else "Remove Trauma"
    return action


def sync_policy_for(action: str) -> str:
    # A new Value is named once; later renames are the player's business
    return "once" if action == "arcValue" else "always"


async def bind_milestone_benefit(
    store: DocumentStore,
    actor: ActorDoc,
    log_id: str,
    applied: Union[AppliedBenefit, dict],
) -> ItemDoc:
    """Finish a log's pending reward: attach (or create) its milestone and name it.

    Raises ``CallbackRejected`` when the log has nothing pending or its
    callback data no longer resolves.
    """
    logger = ActorAdapter(_raw_logger, actor_id=actor.id)
    benefit = _as_applied(applied)
    log = actor.get(log_id)
    if log is None or log.type != "log":
        raise CallbackRejected("That log no longer exists.", step="benefit")

    pending = log.get_flag(PENDING_MILESTONE_BENEFIT)
    if pending is None:
        raise CallbackRejected("This log has no pending milestone benefit.", step="benefit")
    if pending.benefit_chosen:
        raise CallbackRejected("A benefit was already chosen for this log.", step="benefit")
    if not pending.chosen_log_id or not pending.value_id:
        raise CallbackRejected("Missing callback data for this milestone.", step="benefit")

    chosen = actor.get(pending.chosen_log_id)
    chosen_log_id = pending.chosen_log_id
    if chosen is None or chosen.type != "log":
        # The chosen log may have been deleted; the current log's link still knows
        link = log.get_flag(CALLBACK_LINK)
        fallback = actor.get(link.from_log_id) if link else None
        if fallback is None or fallback.type != "log":
            raise CallbackRejected(
                "This callback references a Log that no longer exists. "
                "Please choose a different Log and try again.",
                step="benefit",
            )
        chosen, chosen_log_id = fallback, fallback.id
        pending = pending.model_copy(update={"chosen_log_id": chosen_log_id})
        await store.set_flag(actor.id, log.id, PENDING_MILESTONE_BENEFIT, pending)
        logger.info("pending benefit healed from callback link")

    arc = pending.arc or log.get_flag(ARC_INFO)
    is_arc_benefit = arc is not None and arc.is_arc
    label = format_benefit_label(benefit)
    record = None
    if benefit is not None and benefit.created_item_id:
        record = MilestoneBenefit(
            created_item_id=benefit.created_item_id,
            action=benefit.action,
            sync_policy=sync_policy_for(benefit.action),
            synced_once=False,
        )

    milestone = actor.get(pending.milestone_id) if pending.milestone_id else None
    if milestone is None:
        value_img = pending.value_img or get_value_icon_for_value_id(actor, pending.value_id) or ""
        milestone = await create_milestone_item(
            store,
            actor,
            chosen_log_id=chosen_log_id,
            current_log_id=log.id,
            # Milestone icons follow the log that produced them
            value_img=log.img or value_img,
            value_id=pending.value_id,
            arc=arc if is_arc_benefit else None,
            benefit_label=label,
            benefit=record,
        )
        if milestone is None:
            raise CallbackRejected("Could not create the milestone.", step="benefit")
    elif record is not None:
        await store.set_flag(actor.id, milestone.id, MILESTONE_BENEFIT, record)

    await sync_milestone_img_from_log(store, actor.id, milestone, log, set_source_flag=True)

    if label and milestone.name != label:
        await store.update_item(actor.id, milestone.id, {"name": label})

    await store.set_flag(
        actor.id, log.id, PENDING_MILESTONE_BENEFIT,
        pending.model_copy(update={"milestone_id": milestone.id, "benefit_chosen": True}),
    )

    link = log.get_flag(CALLBACK_LINK)
    if link is not None and link.from_log_id:
        await write_callback_link(store, actor, log.id, link.from_log_id, link.value_id, milestone_id=milestone.id)

    logger.info("milestone benefit bound",
                extra={"event_type": "benefit_bound",
                       "metadata": {"milestone_id": milestone.id, "action": benefit.action if benefit else ""}})
    return milestone


async def sync_milestone_names_for_renamed_item(store: DocumentStore, actor: ActorDoc, item: ItemDoc) -> int:
    """Rename milestones whose benefit created ``item``. Returns the number renamed."""
    if item is None or item.type not in RENAME_SYNC_TYPES:
        return 0

    renamed = 0
    for ms in actor.milestones():
        record = ms.get_flag(MILESTONE_BENEFIT)
        if record is None or record.created_item_id != item.id:
            continue
        if record.sync_policy == "once" and record.synced_once:
            continue

        # Older milestones may lack the action; infer it from the item
        action = record.action or ("arcValue" if item.type == "value" else item.type)
        desired = format_benefit_label(AppliedBenefit(action=action, name=item.name))
        if not desired:
            continue
        if ms.name != desired:
            await store.update_item(actor.id, ms.id, {"name": desired})
            renamed += 1
        if record.sync_policy == "once":
            await store.set_flag(actor.id, ms.id, MILESTONE_BENEFIT, record.model_copy(update={"synced_once": True}))
    return renamed
