"""Builders for actor/item snapshots used across the test modules."""

from officers_log.config import get_settings
from officers_log.documents import ActorDoc, ItemDoc
from officers_log.schemas.flags import (
    ARC_INFO,
    CALLBACK_LINK,
    CALLBACK_LINK_DISABLED,
    CALLBACK_VALUE_ID,
    PRIMARY_VALUE_ID,
    ArcInfo,
    CallbackLink,
    dump_flag,
)

MODULE = get_settings().module_id


def make_log(log_id, t, name=None, parent=None, value_id="", primary=None, arc=None,
             used=None, states=None, img="", disabled=False, sort=0):
    """A log item.  ``parent`` writes a callback link to that log under ``value_id``."""
    flags = {}
    if parent:
        flags[CALLBACK_LINK] = dump_flag(CALLBACK_LINK, CallbackLink(from_log_id=parent, value_id=value_id))
    if primary:
        flags[PRIMARY_VALUE_ID] = primary
    if arc:
        flags[ARC_INFO] = dump_flag(ARC_INFO, ArcInfo(**arc))
    if disabled:
        flags[CALLBACK_LINK_DISABLED] = True
    system = {}
    if used is not None:
        system["used"] = used
    if states:
        system["valueStates"] = dict(states)
    return ItemDoc(
        id=log_id, type="log", name=name or log_id.upper(), img=img, sort=sort,
        created_time=float(t), system=system, flags={MODULE: flags} if flags else {},
    )


def make_value(value_id, name, sort=0, challenged=False, img=""):
    system = {"challenged": True} if challenged else {}
    return ItemDoc(id=value_id, type="value", name=name, sort=sort, img=img, system=system)


def make_milestone(ms_id, children, arc_steps=None, value_id="", name="Milestone"):
    system = {}
    for letter, child in zip("ABCDEFGHIJKLMNOPQRSTUVWXYZ", children):
        system[f"child{letter}"] = child
    if arc_steps is not None:
        system["arc"] = {"isArc": True, "steps": arc_steps}
    flags = {MODULE: {CALLBACK_VALUE_ID: value_id}} if value_id else {}
    return ItemDoc(id=ms_id, type="milestone", name=name, system=system, flags=flags)


def make_actor(*items, actor_id="a1", name="Tuvok", determination=0):
    return ActorDoc(
        id=actor_id,
        name=name,
        system={"determination": {"value": determination}},
        items={item.id: item for item in items},
    )


def chain(value_id, *ids, start=1.0, states=True):
    """Logs linked oldest to newest under one value: ids[i] calls back to ids[i-1]."""
    logs = []
    for idx, log_id in enumerate(ids):
        logs.append(make_log(
            log_id, start + idx,
            parent=ids[idx - 1] if idx else None,
            value_id=value_id,
            primary=value_id,
            states={value_id: ["positive"]} if states else None,
        ))
    return logs
