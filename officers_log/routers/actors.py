"""Character-sheet REST endpoints: log ordering, chain editing, arcs and milestones."""

from __future__ import annotations

import dataclasses
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from officers_log.callback_flow.benefits import bind_milestone_benefit, sync_milestone_names_for_renamed_item
from officers_log.callback_flow.link_controls import delete_log_with_warning, link_log_to_chain, set_arc_end
from officers_log.callback_flow.milestones import sync_all_milestone_icons, sync_callback_links_from_milestone
from officers_log.documents import ActorDoc
from officers_log.errors import CallbackRejected, DocumentNotFound
from officers_log.graph.arc_chains import get_arc_eligibility
from officers_log.graph.log_graph import milestone_child_log_ids, milestone_is_arc
from officers_log.graph.log_sorting import get_sort_mode_for_actor, set_sort_mode_for_actor, sort_logs
from officers_log.mission import is_log_used
from officers_log.schemas.flags import ARC_INFO, CALLBACK_LINK, MILESTONE_BENEFIT, PRIMARY_VALUE_ID, dump_flag
from officers_log.schemas.ws_messages import AppliedBenefit
from officers_log.services import Services, get_services
from officers_log.utils.logging_config import get_logger
from officers_log.values import label_values_on_actor

logger = get_logger("officers_log.routers.actors")

router = APIRouter()


class SortModeRequest(BaseModel):
    mode: str = Field(..., max_length=32)


class LinkRequest(BaseModel):
    # Empty means "unlink"
    from_log_id: str = Field(default="", max_length=64)
    value_id: str = Field(default="", max_length=64)


class ToggleArcRequest(BaseModel):
    collapsed: Optional[bool] = None


class ArcEndRequest(BaseModel):
    is_arc: bool = True
    steps: int = Field(default=1, ge=1, le=26)
    value_id: str = Field(default="", max_length=64)


class RenameRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


async def _require_actor(services: Services, actor_id: str) -> ActorDoc:
    actor = await services.store.get_actor(actor_id)
    if actor is None:
        raise HTTPException(status_code=404, detail="Actor not found")
    return actor


def _log_summary(log) -> dict:
    link = log.get_flag(CALLBACK_LINK)
    arc = log.get_flag(ARC_INFO)
    return {
        "id": log.id,
        "name": log.name,
        "img": log.img,
        "created_time": log.created_time,
        "primary_value_id": log.get_flag(PRIMARY_VALUE_ID) or "",
        "callback_link": dump_flag(CALLBACK_LINK, link) if link else None,
        "arc": dump_flag(ARC_INFO, arc) if arc else None,
        "used": is_log_used(log),
    }


@router.get("/actors/{actor_id}/logs")
async def get_sorted_logs(actor_id: str, mode: Optional[str] = None, services: Services = Depends(get_services)):
    """Logs in display order.  Without ``mode`` the actor's saved preference is used."""
    actor = await _require_actor(services, actor_id)
    result = sort_logs(actor, mode or get_sort_mode_for_actor(actor), services.collapse)
    return {
        "mode": result.mode,
        "ordered_ids": result.ordered_ids,
        "indent_child_ids": sorted(result.indent_child_ids),
        "arc_groups": [dataclasses.asdict(g) for g in result.arc_groups],
        "logs": {log.id: _log_summary(log) for log in actor.logs()},
    }


@router.put("/actors/{actor_id}/sort-mode")
async def put_sort_mode(actor_id: str, request: SortModeRequest, services: Services = Depends(get_services)):
    actor = await _require_actor(services, actor_id)
    mode = await set_sort_mode_for_actor(services.store, actor, request.mode)
    return {"mode": mode}


@router.post("/actors/{actor_id}/logs/{log_id}/link")
async def link_log(actor_id: str, log_id: str, request: LinkRequest, services: Services = Depends(get_services)):
    """Point a log at a parent, or unlink it with an empty ``from_log_id``."""
    try:
        parent = await link_log_to_chain(services.store, actor_id, log_id, request.from_log_id, request.value_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except CallbackRejected as exc:
        raise HTTPException(status_code=409, detail=exc.message)
    await services.presenter.render(actor_id)
    return {"log_id": log_id, "from_log_id": parent}


@router.post("/actors/{actor_id}/arcs/{arc_id}/toggle")
async def toggle_arc(actor_id: str, arc_id: str, request: ToggleArcRequest, services: Services = Depends(get_services)):
    if request.collapsed is None:
        collapsed = services.collapse.toggle(actor_id, arc_id)
    else:
        collapsed = request.collapsed
        services.collapse.set_collapsed(actor_id, arc_id, collapsed)
    return {"arc_id": arc_id, "collapsed": collapsed}


@router.delete("/actors/{actor_id}/logs/{log_id}")
async def delete_log(actor_id: str, log_id: str, confirm: bool = False, services: Services = Depends(get_services)):
    """
    Delete a log.  Without ``confirm`` nothing is deleted; the response lists
    the callback edges that would be left dangling.
    """
    try:
        report = await delete_log_with_warning(services.store, actor_id, log_id, confirm=confirm)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if report.deleted:
        await services.presenter.render(actor_id)
    return dataclasses.asdict(report)


@router.get("/actors/{actor_id}/arc-eligibility")
async def arc_eligibility(actor_id: str, value_id: str, end_log_id: str, services: Services = Depends(get_services)):
    actor = await _require_actor(services, actor_id)
    if actor.get(end_log_id) is None:
        raise HTTPException(status_code=404, detail="Log not found")
    return dataclasses.asdict(get_arc_eligibility(actor, value_id, end_log_id))


@router.put("/actors/{actor_id}/logs/{log_id}/arc")
async def put_arc_end(actor_id: str, log_id: str, request: ArcEndRequest, services: Services = Depends(get_services)):
    """Mark or unmark a log as an arc end by hand."""
    try:
        arc = await set_arc_end(services.store, actor_id, log_id, request.is_arc, request.steps, request.value_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except CallbackRejected as exc:
        raise HTTPException(status_code=409, detail=exc.message)
    await services.presenter.render(actor_id)
    return {"log_id": log_id, "arc": dump_flag(ARC_INFO, arc) if arc else None}


@router.post("/actors/{actor_id}/logs/{log_id}/benefit")
async def choose_benefit(actor_id: str, log_id: str, benefit: AppliedBenefit,
                         services: Services = Depends(get_services)):
    actor = await _require_actor(services, actor_id)
    try:
        milestone = await bind_milestone_benefit(services.store, actor, log_id, benefit)
    except CallbackRejected as exc:
        raise HTTPException(status_code=409, detail=exc.message)
    await services.presenter.render(actor_id)
    return {"milestone_id": milestone.id, "name": milestone.name}


@router.get("/actors/{actor_id}/milestones")
async def list_milestones(actor_id: str, services: Services = Depends(get_services)):
    actor = await _require_actor(services, actor_id)
    milestones = []
    for ms in actor.milestones():
        benefit = ms.get_flag(MILESTONE_BENEFIT)
        milestones.append({
            "id": ms.id,
            "name": ms.name,
            "img": ms.img,
            "is_arc": milestone_is_arc(ms),
            "child_log_ids": milestone_child_log_ids(ms),
            "benefit": dump_flag(MILESTONE_BENEFIT, benefit) if benefit else None,
        })
    return milestones


@router.post("/actors/{actor_id}/milestones/{milestone_id}/sync-links")
async def sync_milestone_links(actor_id: str, milestone_id: str, services: Services = Depends(get_services)):
    """Rewrite the callback links a milestone implies (after its children were edited)."""
    actor = await _require_actor(services, actor_id)
    milestone = actor.get(milestone_id)
    if milestone is None or milestone.type != "milestone":
        raise HTTPException(status_code=404, detail="Milestone not found")
    written = await sync_callback_links_from_milestone(services.store, actor, milestone)
    if written:
        await services.presenter.render(actor_id)
    return {"written": written}


@router.post("/actors/{actor_id}/milestones/sync-icons")
async def sync_milestone_icons(actor_id: str, services: Services = Depends(get_services)):
    actor = await _require_actor(services, actor_id)
    updated = await sync_all_milestone_icons(services.store, actor)
    if updated:
        await services.presenter.render(actor_id)
    return {"updated": updated}


@router.post("/actors/{actor_id}/values/label")
async def label_values(actor_id: str, services: Services = Depends(get_services)):
    """Reassign V1..Vn icons to the character's Values."""
    actor = await _require_actor(services, actor_id)
    changed = await label_values_on_actor(services.store, actor)
    if changed:
        await services.presenter.render(actor_id)
    return {"changed": changed}


@router.patch("/actors/{actor_id}/items/{item_id}")
async def rename_item(actor_id: str, item_id: str, request: RenameRequest, services: Services = Depends(get_services)):
    """Rename an item; milestones whose reward created it follow the new name."""
    actor = await _require_actor(services, actor_id)
    item = actor.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    await services.store.update_item(actor_id, item_id, {"name": request.name})

    fresh = await services.store.get_actor(actor_id)
    renamed = await sync_milestone_names_for_renamed_item(services.store, fresh, fresh.get(item_id))
    logger.info("item renamed", extra={"actor_id": actor_id, "metadata": {"item_id": item_id, "milestones": renamed}})
    return {"id": item_id, "name": request.name, "milestones_renamed": renamed}
