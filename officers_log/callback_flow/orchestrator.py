"""
Callback orchestration.

One exchange runs Idle -> Offered -> (Responded | TimedOut) -> Committed or
Rejected:

1. Build an offer of eligible target logs and values for the acting
   character and send it to the participant.
2. Wait for ``yes``/``no``; the offer times out to a silent decline.
3. On ``yes``, re-read the actor and re-validate against live data, then
   apply the writes in three independent groups.

Rejections and failures are reported to the acting user as notifications;
nothing raises out of :meth:`CallbackOrchestrator.request_callback` or
:meth:`CallbackOrchestrator.commit`.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from officers_log.callback_flow.milestones import write_callback_link
from officers_log.config import get_settings
from officers_log.documents import ActorDoc
from officers_log.errors import CallbackRejected, DocumentNotFound, OfficersLogError, TransportUnavailable
from officers_log.graph.arc_chains import build_arc_info, get_arc_eligibility
from officers_log.graph.eligibility import is_callback_target_compatible
from officers_log.graph.log_graph import LogGraph
from officers_log.mission import MissionTracker, gain_determination, is_log_used, log_used_changes
from officers_log.schemas.flags import (
    ARC_INFO,
    PENDING_MILESTONE_BENEFIT,
    PRIMARY_VALUE_ID,
    ArcInfo,
    PendingMilestoneBenefit,
)
from officers_log.schemas.ws_messages import CallbackOffer, InvokedValue, OfferLog, OfferValue
from officers_log.utils.logging_config import ActorAdapter, get_logger
from officers_log.values import (
    INVOKED_STATES,
    get_value_items,
    is_value_challenged,
    is_value_invoked_state,
    merge_value_state_array,
    normalize_value_state_array,
)

_raw_logger = get_logger("officers_log.callback_flow.orchestrator")

CALLBACK_OFFER = "callback-offer"
CALLBACK_RESPONSE = "callback-response"
CALLBACK_REWARD = "callback-reward"

REWARD_TITLE = "Callback"
REWARD_MESSAGE = "You made a callback! You gain 1 Determination. Choose your milestone benefit on the log."


class CallbackState(enum.Enum):
    IDLE = "idle"
    OFFERED = "offered"
    RESPONDED = "responded"
    TIMED_OUT = "timed_out"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclasses.dataclass
class CallbackOutcome:
    state: CallbackState
    message: str = ""
    request_id: Optional[str] = None
    chosen_log_id: Optional[str] = None
    current_log_id: Optional[str] = None
    arc: Optional[ArcInfo] = None
    failed_writes: int = 0

    @property
    def committed(self) -> bool:
        return self.state is CallbackState.COMMITTED


class PendingResponses:
    """Futures awaiting a participant's reply, keyed by request id.

    Bounded: registering past ``limit`` evicts the oldest entry, which then
    resolves as a timeout.
    """

    def __init__(self, limit: int = 256):
        self.limit = limit
        self._futures: Dict[str, asyncio.Future] = {}

    def register(self, request_id: str) -> asyncio.Future:
        if request_id in self._futures:
            raise ValueError(f"Duplicate request id: {request_id}")
        while len(self._futures) >= self.limit:
            oldest = next(iter(self._futures))
            self.resolve(oldest, {"action": "timeout", "request_id": oldest})
            self._futures.pop(oldest, None)
        future = asyncio.get_running_loop().create_future()
        self._futures[request_id] = future
        return future

    def resolve(self, request_id: str, response: Any) -> bool:
        future = self._futures.get(request_id)
        if future is None or future.done():
            return False
        future.set_result(response)
        return True

    def expire(self, request_id: str) -> bool:
        future = self._futures.pop(request_id, None)
        if future is None:
            return False
        if not future.done():
            future.cancel()
        return True

    def __len__(self) -> int:
        return len(self._futures)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._futures


def build_offer(
    actor: ActorDoc,
    target_user_id: str,
    default_value_id: str = "",
    mission_log_id: Optional[str] = None,
    default_value_state: str = "positive",
    request_id: Optional[str] = None,
) -> CallbackOffer:
    """Eligible target logs and selectable values for one callback prompt."""
    graph = LogGraph(actor)
    boundaries = graph.completed_arc_boundary_ids()

    logs: List[OfferLog] = []
    for log in graph.unclaimed_logs(mission_log_id):
        invoked = []
        for value_id, raw in (log.system.get("valueStates") or {}).items():
            states = [s for s in normalize_value_state_array(raw) if is_value_invoked_state(s)]
            if not states:
                continue
            value = actor.get(value_id)
            invoked.append(InvokedValue(
                id=str(value_id),
                name=value.name if value is not None else f"(Missing Value: {value_id})",
                state=states[0],
            ))
        logs.append(OfferLog(
            id=log.id,
            name=log.name,
            invoked=invoked,
            invoked_ids=[v.id for v in invoked],
            primary_value_id=graph.primary_value_for(log),
            is_completed_arc_end=log.id in boundaries,
        ))

    def offers_value(entry: OfferLog, value_id: str) -> bool:
        return value_id in entry.invoked_ids and is_callback_target_compatible(
            value_id, entry.primary_value_id, entry.is_completed_arc_end
        )

    values = [
        OfferValue(id=v.id, name=v.name, disabled=is_value_challenged(v))
        for v in get_value_items(actor)
        if any(offers_value(entry, v.id) for entry in logs)
    ]

    shown = logs
    if default_value_id:
        shown = [entry for entry in logs if offers_value(entry, default_value_id)]

    return CallbackOffer(
        request_id=request_id or uuid.uuid4().hex,
        actor_id=actor.id,
        target_user_id=str(target_user_id),
        logs=shown,
        values=values,
        default_value_id=default_value_id or "",
        default_value_state=default_value_state if default_value_state in INVOKED_STATES else "positive",
        eligible_count=len(logs),
    )


Ask = Callable[[CallbackOffer], Awaitable[Optional[dict]]]


class CallbackOrchestrator:

    def __init__(self, store, transport, presenter, mission: Optional[MissionTracker] = None,
                 timeout: Optional[float] = None):
        settings = get_settings()
        self.store = store
        self.transport = transport
        self.presenter = presenter
        self.mission = mission or MissionTracker(store)
        self.timeout = settings.callback_timeout_seconds if timeout is None else timeout
        self.settle_seconds = settings.render_settle_ms / 1000
        self.pending = PendingResponses()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._background: Set[asyncio.Task] = set()
        transport.on_request(CALLBACK_RESPONSE, self.handle_response)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def request_callback(
        self,
        actor_id: str,
        target_user_id: str,
        requester_user_id: Optional[str] = None,
        default_value_id: str = "",
        default_value_state: str = "positive",
        warn: bool = False,
    ) -> CallbackOutcome:
        """Offer ``target_user_id`` a callback and apply their answer."""
        notify_user = requester_user_id or target_user_id
        return await self._run(
            actor_id, target_user_id, notify_user, self._ask_remote,
            default_value_id=default_value_id,
            default_value_state=default_value_state,
            warn=warn,
        )

    async def prompt_as_gm(
        self,
        actor_id: str,
        owner_user_id: str,
        gm_user_id: str,
        default_value_id: str = "",
        default_value_state: str = "positive",
    ) -> CallbackOutcome:
        """The GM answers the offer locally; results count for the owning player."""

        async def ask_gm(offer: CallbackOffer) -> Optional[dict]:
            selection = await self.presenter.present_choice(gm_user_id, offer.model_dump())
            if selection is None:
                # Closing the dialog is a "no"
                return {"action": "no", "request_id": offer.request_id}
            return {**selection, "request_id": offer.request_id}

        return await self._run(
            actor_id, owner_user_id, gm_user_id, ask_gm,
            default_value_id=default_value_id,
            default_value_state=default_value_state,
            warn=True,
            suppress_reward_errors=True,
        )

    async def handle_response(self, payload: dict) -> bool:
        """Inbound ``callback-response``; unknown or late request ids are ignored."""
        request_id = str(payload.get("request_id") or "")
        resolved = self.pending.resolve(request_id, payload)
        if not resolved:
            _raw_logger.info("ignored response for unknown request", extra={"request_id": request_id})
        return resolved

    # ------------------------------------------------------------------
    # Offer / response
    # ------------------------------------------------------------------

    async def _run(self, actor_id: str, target_user_id: str, notify_user: str, ask: Ask, *,
                   default_value_id: str, default_value_state: str, warn: bool,
                   suppress_reward_errors: bool = False) -> CallbackOutcome:
        logger = ActorAdapter(_raw_logger, actor_id=actor_id)
        try:
            actor = await self.store.get_actor(actor_id)
            if actor is None:
                raise DocumentNotFound("actor", actor_id)

            if await self.mission.has_used_callback_this_mission(target_user_id):
                message = f"{actor.name} already made a callback this mission."
                if warn:
                    await self.presenter.notify(notify_user, "warn", message)
                return CallbackOutcome(CallbackState.IDLE, message=message)

            mission_log_id = await self.mission.get_current_mission_log_id(target_user_id)
            offer = build_offer(
                actor, target_user_id,
                default_value_id=default_value_id,
                mission_log_id=mission_log_id,
                default_value_state=default_value_state,
            )
            if not offer.eligible_count:
                message = f"{actor.name} has no eligible logs to callback to."
                if warn:
                    await self.presenter.notify(notify_user, "warn", message)
                return CallbackOutcome(CallbackState.IDLE, message=message)

            logger.info("callback offered", extra={"request_id": offer.request_id, "user_id": target_user_id,
                                                   "event_type": "callback_offered"})
            try:
                response = await asyncio.wait_for(ask(offer), self.timeout)
            except asyncio.TimeoutError:
                response = {"action": "timeout", "request_id": offer.request_id}
        except TransportUnavailable as exc:
            logger.error("callback prompt could not be delivered: %s", exc)
            await self.presenter.notify(notify_user, "error", "Callback prompt could not be delivered.")
            return CallbackOutcome(CallbackState.REJECTED, message=str(exc))
        except OfficersLogError as exc:
            logger.error("callback prompt failed: %s", exc)
            await self.presenter.notify(notify_user, "error", "Callback prompt failed.")
            return CallbackOutcome(CallbackState.REJECTED, message=str(exc))

        action = (response or {}).get("action")
        if action != "yes":
            if action == "no":
                state, message = CallbackState.RESPONDED, f"{actor.name} skipped the callback."
            else:
                state, message = CallbackState.TIMED_OUT, f"{actor.name} did not respond to the callback prompt."
            await self.presenter.notify(notify_user, "info", message)
            logger.info("callback declined", extra={"request_id": offer.request_id, "action": action or "timeout"})
            return CallbackOutcome(state, message=message, request_id=offer.request_id)

        response = {**response, "actor_id": actor_id}
        return await self.commit(response, target_user_id, notify_user_id=notify_user,
                                 suppress_reward_errors=suppress_reward_errors)

    async def _ask_remote(self, offer: CallbackOffer) -> Optional[dict]:
        if not self.transport.is_available(offer.target_user_id):
            raise TransportUnavailable(f"No channel to user {offer.target_user_id}")
        future = self.pending.register(offer.request_id)
        try:
            await self.transport.send_request(offer.target_user_id, CALLBACK_OFFER, offer.model_dump())
            return await future
        finally:
            self.pending.expire(offer.request_id)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def commit(self, response: dict, target_user_id: str, notify_user_id: Optional[str] = None,
                     suppress_reward_errors: bool = False) -> CallbackOutcome:
        """Validate a ``yes`` against live state and apply it."""
        actor_id = str(response.get("actor_id") or "")
        notify_user = notify_user_id or target_user_id
        logger = ActorAdapter(_raw_logger, actor_id=actor_id)
        request_id = response.get("request_id")

        try:
            async with self._locks[actor_id]:
                outcome = await self._commit_locked(response, target_user_id, logger)
        except CallbackRejected as exc:
            logger.info("callback rejected at %s: %s", exc.step, exc.message,
                        extra={"request_id": request_id, "event_type": "callback_rejected"})
            await self.presenter.notify(notify_user, "warn", exc.message)
            return CallbackOutcome(CallbackState.REJECTED, message=exc.message, request_id=request_id)
        except OfficersLogError as exc:
            logger.error("callback commit failed: %s", exc, extra={"request_id": request_id})
            await self.presenter.notify(notify_user, "error", "The callback could not be saved.")
            return CallbackOutcome(CallbackState.REJECTED, message=str(exc), request_id=request_id)

        outcome.request_id = request_id
        if outcome.failed_writes:
            await self.presenter.notify(notify_user, "error", "Some callback updates failed to save.")
        await self.presenter.notify(notify_user, "info", outcome.message)
        await self.presenter.render(actor_id)
        self._spawn(self._send_reward(target_user_id, suppress_reward_errors))
        return outcome

    async def _commit_locked(self, response: dict, target_user_id: str, logger) -> CallbackOutcome:
        actor_id = str(response.get("actor_id") or "")
        actor = await self.store.get_actor(actor_id)
        if actor is None:
            raise DocumentNotFound("actor", actor_id)
        graph = LogGraph(actor)

        # 1. chosen log and value still exist
        chosen = actor.get(response.get("log_id"))
        if chosen is None or chosen.type != "log":
            raise CallbackRejected("Callback rejected: that log no longer exists.", step="exists")
        value_id = str(response.get("value_id") or "")
        value = actor.get(value_id)
        if value is None or value.type != "value":
            raise CallbackRejected("Callback rejected: that value no longer exists.", step="exists")

        current_id = await self.mission.get_current_mission_log_id(target_user_id)
        current = actor.get(current_id)
        if current is not None and current.type != "log":
            current = None

        # 2. nobody else has claimed the chosen log
        incoming = graph.incoming_children(chosen.id)
        allowed = not incoming or (
            len(incoming) == 1 and current is not None and incoming[0].id == current.id
        )
        if not allowed:
            raise CallbackRejected(
                "Another player already used that log for a callback. Choose another log.", step="claimed"
            )

        # 3. chosen log is on this value's chain (arc ends join any chain)
        is_boundary = graph.is_arc_boundary(chosen.id)
        if not is_callback_target_compatible(value_id, graph.primary_value_for(chosen), is_boundary):
            raise CallbackRejected(
                f"Callback rejected: {chosen.name} is in a different primary-value chain.", step="chain"
            )

        # 4. not spent already
        if is_log_used(chosen):
            raise CallbackRejected("That log has already been used for a callback.", step="used")

        # 5. recognised value state
        value_state = str(response.get("value_state") or "")
        if value_state not in INVOKED_STATES:
            raise CallbackRejected("Callback rejected: unrecognized value state.", step="state")

        value_img = value.img or ""
        failed = 0

        # Group 1: actor-level bookkeeping
        failed += await self._settle("actor", logger, [
            gain_determination(self.store, actor),
            self.mission.set_used_callback_this_mission(target_user_id, True),
        ])

        # Group 2: the chosen log, as one update since every write lands on the same document
        chosen_changes = log_used_changes(self.store, chosen)
        if not chosen.get_flag(PRIMARY_VALUE_ID):
            chosen_changes.update(self.store.flag_changes(PRIMARY_VALUE_ID, value_id))
        # Arc ends keep their own icon
        if value_img and not is_boundary:
            chosen_changes["img"] = value_img
        failed += await self._settle("chosen log", logger, [
            self.store.update_item(actor.id, chosen.id, chosen_changes),
        ])

        arc: Optional[ArcInfo] = None
        if current is not None:
            # Group 3a: the edge first, since arc detection walks the stored links
            failed += await self._settle("link", logger, [
                write_callback_link(self.store, actor, current.id, chosen.id, value_id),
            ])

            live = await self.store.get_actor(actor.id) or actor
            eligibility = get_arc_eligibility(live, value_id, current.id)
            arc = build_arc_info(eligibility, value_id)

            # Group 3b: the current log, also a single update
            existing_states = (current.system.get("valueStates") or {}).get(value_id)
            current_changes = {
                f"system.valueStates.{value_id}": merge_value_state_array(existing_states, value_state),
            }
            current_changes.update(self.store.flag_changes(PRIMARY_VALUE_ID, value_id))
            if arc is not None:
                current_changes.update(self.store.flag_changes(ARC_INFO, arc))
            current_changes.update(self.store.flag_changes(
                PENDING_MILESTONE_BENEFIT,
                PendingMilestoneBenefit(
                    milestone_id=None,
                    chosen_log_id=chosen.id,
                    value_id=value_id,
                    value_img=value_img,
                    arc=arc,
                ),
            ))
            if value_img:
                current_changes["img"] = value_img
            failed += await self._settle("current log", logger, [
                self.store.update_item(actor.id, current.id, current_changes),
            ])
        else:
            logger.warning("no current mission log; callback link not written",
                           extra={"user_id": target_user_id})

        logger.info("callback committed", extra={
            "user_id": target_user_id,
            "event_type": "callback_committed",
            "metadata": {"chosen_log_id": chosen.id, "value_id": value_id, "arc": arc is not None},
        })
        return CallbackOutcome(
            CallbackState.COMMITTED,
            message=f"{actor.name} made a callback ({chosen.name}).",
            chosen_log_id=chosen.id,
            current_log_id=current.id if current is not None else None,
            arc=arc,
            failed_writes=failed,
        )

    @staticmethod
    async def _settle(group: str, logger, writes: List[Awaitable[Any]]) -> int:
        """Run one write group to completion; failures are logged, not raised."""
        results = await asyncio.gather(*writes, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        for exc in failures:
            logger.error("%s write failed: %r", group, exc, extra={"event_type": "write_failed"})
        return len(failures)

    # ------------------------------------------------------------------
    # Reward prompt
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_reward(self, target_user_id: str, suppress_errors: bool) -> None:
        await asyncio.sleep(self.settle_seconds)
        payload = {"target_user_id": target_user_id, "title": REWARD_TITLE, "message": REWARD_MESSAGE}
        try:
            await self.transport.send_request(target_user_id, CALLBACK_REWARD, payload)
        except Exception as exc:
            if suppress_errors:
                _raw_logger.debug("reward prompt not delivered: %r", exc, extra={"user_id": target_user_id})
            else:
                _raw_logger.error("reward prompt not delivered: %r", exc, extra={"user_id": target_user_id})

    async def drain(self) -> None:
        """Wait for background reward prompts; used at shutdown and in tests."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
