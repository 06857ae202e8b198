"""Mission bookkeeping and callback prompts over REST."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from officers_log.graph.log_graph import LogGraph
from officers_log.services import Services, get_services
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.routers.missions")

router = APIRouter()


class MissionLogRequest(BaseModel):
    log_id: str = Field(..., min_length=1, max_length=64)


class CallbackPromptRequest(BaseModel):
    target_user_id: str = Field(..., min_length=1, max_length=64)
    requester_user_id: str = Field(default="", max_length=64)
    default_value_id: str = Field(default="", max_length=64)
    default_value_state: Literal["positive", "negative", "challenged"] = "positive"
    # The requester answers locally on the target player's behalf
    as_gm: bool = False


@router.get("/missions/logs")
async def get_mission_logs(services: Services = Depends(get_services)):
    return await services.mission.get_mission_log_by_user()


@router.put("/missions/logs/{user_id}")
async def set_mission_log(user_id: str, request: MissionLogRequest, services: Services = Depends(get_services)):
    """Make ``log_id`` the user's current mission log."""
    await services.mission.set_mission_log_for_user(user_id, request.log_id)
    return {"user_id": user_id, "log_id": request.log_id}


@router.get("/missions/callback-used/{user_id}")
async def get_callback_used(user_id: str, services: Services = Depends(get_services)):
    return {"user_id": user_id, "used": await services.mission.has_used_callback_this_mission(user_id)}


@router.post("/missions/reset")
async def reset_mission(services: Services = Depends(get_services)):
    """New mission: every player may make one callback again."""
    await services.mission.reset_mission_callbacks()
    return {"status": "reset"}


@router.get("/actors/{actor_id}/eligible-target")
async def eligible_target(actor_id: str, user_id: str, value_id: str, services: Services = Depends(get_services)):
    """Whether invoking ``value_id`` now would have any log to call back to."""
    actor = await services.store.get_actor(actor_id)
    if actor is None:
        raise HTTPException(status_code=404, detail="Actor not found")
    mission_log_id = await services.mission.get_current_mission_log_id(user_id)
    return {"eligible": LogGraph(actor).has_eligible_callback_target(mission_log_id, value_id)}


@router.post("/actors/{actor_id}/callback-prompt", status_code=202)
async def prompt_callback(actor_id: str, request: CallbackPromptRequest, background_tasks: BackgroundTasks,
                          services: Services = Depends(get_services)):
    """
    Start a callback exchange.  The answer comes back over the WebSocket,
    so the exchange runs after this response is sent.
    """
    actor = await services.store.get_actor(actor_id)
    if actor is None:
        raise HTTPException(status_code=404, detail="Actor not found")

    orchestrator = services.orchestrator
    requester = request.requester_user_id or request.target_user_id
    if request.as_gm:
        background_tasks.add_task(
            orchestrator.prompt_as_gm, actor_id, request.target_user_id, requester,
            request.default_value_id, request.default_value_state,
        )
    else:
        background_tasks.add_task(
            orchestrator.request_callback, actor_id, request.target_user_id, requester,
            request.default_value_id, request.default_value_state,
            requester != request.target_user_id,
        )
    logger.info("callback prompt queued", extra={"actor_id": actor_id, "user_id": request.target_user_id})
    return {"status": "prompting", "actor_id": actor_id, "target_user_id": request.target_user_id}
