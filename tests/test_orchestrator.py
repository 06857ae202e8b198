"""Tests for the callback exchange: offer, response, re-validation and commit writes.

Runs against the in-memory store with a loopback transport so the whole
Idle -> Offered -> Responded -> Committed path executes in-process.
"""

import asyncio

import pytest

from officers_log.callback_flow.orchestrator import (
    CallbackOrchestrator,
    CallbackState,
    PendingResponses,
    build_offer,
)
from officers_log.config import get_settings
from officers_log.mission import MissionTracker, is_log_used
from officers_log.presentation import RecordingPresenter
from officers_log.schemas.flags import (
    ARC_INFO,
    CALLBACK_LINK,
    CallbackLink,
    PENDING_MILESTONE_BENEFIT,
    PRIMARY_VALUE_ID,
)
from officers_log.store.memory import InMemoryDocumentStore
from officers_log.transport import LoopbackTransport

from helpers import chain, make_actor, make_log, make_value

BASE = get_settings().base_arc_length
V1_IMG = "icons/v1.webp"


def _yes(log_id="old", value_id="v1", value_state="positive"):
    """Responder that answers every offer with ``yes``."""
    def responder(user_id, name, payload):
        if name != "callback-offer":
            return None
        return "callback-response", {
            "request_id": payload["request_id"], "action": "yes",
            "log_id": log_id, "value_id": value_id, "value_state": value_state,
        }
    return responder


def _no(user_id, name, payload):
    if name == "callback-offer":
        return "callback-response", {"request_id": payload["request_id"], "action": "no"}
    return None


def _default_actor(**overrides):
    old = overrides.pop("old", None) or make_log("old", 1, primary="v1", states={"v1": ["positive"]})
    return make_actor(
        make_value("v1", "Duty", img=V1_IMG),
        make_value("v2", "Curiosity", sort=1, img="icons/v2.webp"),
        old,
        make_log("cur", 2),
        *overrides.pop("extra", ()),
    )


def _setup(actor=None, responder=None, available=True, choices=(), timeout=2.0, mission_logs=None):
    store = InMemoryDocumentStore([actor or _default_actor()])
    transport = LoopbackTransport(responder=responder, available=available)
    presenter = RecordingPresenter(choices)
    orchestrator = CallbackOrchestrator(store, transport, presenter, timeout=timeout)
    orchestrator.settle_seconds = 0
    return store, transport, presenter, orchestrator, mission_logs or {"u1": "cur"}


async def _set_mission_logs(store, mission_logs):
    tracker = MissionTracker(store)
    for user_id, log_id in mission_logs.items():
        await tracker.set_mission_log_for_user(user_id, log_id)


# ---------------------------------------------------------------------------
# Offer
# ---------------------------------------------------------------------------

class TestBuildOffer:

    def test_lists_unclaimed_logs_and_invoked_values(self):
        actor = _default_actor(extra=[make_log("spent", 3, used=True, states={"v1": ["positive"]})])
        offer = build_offer(actor, "u1", mission_log_id="cur")
        assert [entry.id for entry in offer.logs] == ["old"]
        assert offer.logs[0].invoked_ids == ["v1"]
        assert offer.logs[0].primary_value_id == "v1"
        assert [v.id for v in offer.values] == ["v1"]
        assert offer.eligible_count == 1

    def test_default_value_filters_logs(self):
        actor = _default_actor()
        offer = build_offer(actor, "u1", default_value_id="v2", mission_log_id="cur")
        assert offer.logs == []
        assert offer.eligible_count == 1
        assert offer.has_logs is False

    def test_challenged_values_are_disabled(self):
        actor = make_actor(
            make_value("v1", "Duty", challenged=True),
            make_log("old", 1, states={"v1": ["challenged"]}),
            make_log("cur", 2),
        )
        offer = build_offer(actor, "u1", mission_log_id="cur")
        assert offer.values[0].disabled is True

    def test_invalid_default_state_falls_back_to_positive(self):
        offer = build_offer(_default_actor(), "u1", mission_log_id="cur", default_value_state="unused")
        assert offer.default_value_state == "positive"


# ---------------------------------------------------------------------------
# Full exchange
# ---------------------------------------------------------------------------

class TestCallbackExchange:

    def test_yes_commits_every_write_group(self):
        store, transport, presenter, orchestrator, missions = _setup(responder=_yes())

        async def run():
            await _set_mission_logs(store, missions)
            outcome = await orchestrator.request_callback("a1", "u1")
            await orchestrator.drain()
            return outcome, await store.get_actor("a1"), await orchestrator.mission.has_used_callback_this_mission("u1")

        outcome, actor, used_this_mission = asyncio.run(run())

        assert outcome.state is CallbackState.COMMITTED
        assert outcome.chosen_log_id == "old"
        assert outcome.current_log_id == "cur"
        assert outcome.failed_writes == 0

        # group 1
        assert actor.system["determination"]["value"] == 1
        assert used_this_mission is True
        # group 2
        old = actor.get("old")
        assert is_log_used(old)
        assert old.img == V1_IMG
        # group 3
        cur = actor.get("cur")
        link = cur.get_flag(CALLBACK_LINK)
        assert (link.from_log_id, link.value_id) == ("old", "v1")
        assert cur.get_flag(PRIMARY_VALUE_ID) == "v1"
        assert cur.system["valueStates"]["v1"] == ["positive"]
        assert cur.img == V1_IMG
        pending = cur.get_flag(PENDING_MILESTONE_BENEFIT)
        assert pending.chosen_log_id == "old"
        assert pending.benefit_chosen is False
        assert cur.get_flag(ARC_INFO) is None

        assert "Tuvok made a callback (OLD)." in presenter.messages("info")
        assert presenter.renders == ["a1"]
        rewards = transport.sent_named("callback-reward")
        assert len(rewards) == 1
        assert rewards[0][0] == "u1"
        assert len(orchestrator.pending) == 0

    def test_no_writes_nothing(self):
        store, _, presenter, orchestrator, missions = _setup(responder=_no)

        async def run():
            await _set_mission_logs(store, missions)
            outcome = await orchestrator.request_callback("a1", "u1")
            return outcome, await store.get_actor("a1")

        outcome, actor = asyncio.run(run())
        assert outcome.state is CallbackState.RESPONDED
        assert presenter.messages("info") == ["Tuvok skipped the callback."]
        assert actor.system["determination"]["value"] == 0
        assert actor.get("cur").get_flag(CALLBACK_LINK) is None
        assert not is_log_used(actor.get("old"))

    def test_silence_times_out_as_decline(self):
        store, transport, presenter, orchestrator, missions = _setup(responder=None, timeout=0.05)

        async def run():
            await _set_mission_logs(store, missions)
            return await orchestrator.request_callback("a1", "u1"), await store.get_actor("a1")

        outcome, actor = asyncio.run(run())
        assert outcome.state is CallbackState.TIMED_OUT
        assert presenter.messages("info") == ["Tuvok did not respond to the callback prompt."]
        assert len(transport.sent_named("callback-offer")) == 1
        assert len(orchestrator.pending) == 0
        assert actor.system["determination"]["value"] == 0

    def test_already_used_this_mission_is_idle(self):
        store, transport, presenter, orchestrator, missions = _setup(responder=_yes())

        async def run():
            await _set_mission_logs(store, missions)
            await orchestrator.mission.set_used_callback_this_mission("u1", True)
            return await orchestrator.request_callback("a1", "u1")

        outcome = asyncio.run(run())
        assert outcome.state is CallbackState.IDLE
        assert transport.sent == []
        assert presenter.notifications == []

    def test_no_eligible_logs_warns_when_asked(self):
        actor = make_actor(make_log("cur", 1))
        store, transport, presenter, orchestrator, missions = _setup(actor=actor, responder=_yes())

        async def run():
            await _set_mission_logs(store, missions)
            return await orchestrator.request_callback("a1", "u1", requester_user_id="gm", warn=True)

        outcome = asyncio.run(run())
        assert outcome.state is CallbackState.IDLE
        assert presenter.notifications == [("gm", "warn", "Tuvok has no eligible logs to callback to.")]
        assert transport.sent == []

    def test_unreachable_participant_reports_error(self):
        store, _, presenter, orchestrator, missions = _setup(responder=_yes(), available=False)

        async def run():
            await _set_mission_logs(store, missions)
            return await orchestrator.request_callback("a1", "u1")

        outcome = asyncio.run(run())
        assert outcome.state is CallbackState.REJECTED
        assert presenter.messages("error") == ["Callback prompt could not be delivered."]

    def test_completing_a_chain_creates_an_arc(self):
        prior = [f"l{i}" for i in range(BASE - 1)]
        actor = make_actor(
            make_value("v1", "Duty", img=V1_IMG),
            *chain("v1", *prior),
            make_log("cur", 100),
        )
        store, _, _, orchestrator, missions = _setup(actor=actor, responder=_yes(log_id=prior[-1]))

        async def run():
            await _set_mission_logs(store, missions)
            outcome = await orchestrator.request_callback("a1", "u1")
            await orchestrator.drain()
            return outcome, await store.get_actor("a1")

        outcome, live = asyncio.run(run())
        assert outcome.committed
        arc = live.get("cur").get_flag(ARC_INFO)
        assert arc is not None and arc.is_arc
        assert arc.chain_log_ids == prior + ["cur"]
        assert arc.steps == BASE
        assert live.get("cur").get_flag(PENDING_MILESTONE_BENEFIT).arc.chain_log_ids == prior + ["cur"]

    def test_commit_without_mission_log_skips_link(self):
        store, _, presenter, orchestrator, _ = _setup(responder=_yes())

        async def run():
            outcome = await orchestrator.request_callback("a1", "u1")
            await orchestrator.drain()
            return outcome, await store.get_actor("a1")

        outcome, actor = asyncio.run(run())
        assert outcome.committed
        assert outcome.current_log_id is None
        assert actor.system["determination"]["value"] == 1
        assert is_log_used(actor.get("old"))
        assert all(log.get_flag(CALLBACK_LINK) is None for log in actor.logs())


class TestGmPrompt:

    def test_gm_answers_for_the_player(self):
        choice = {"action": "yes", "log_id": "old", "value_id": "v1", "value_state": "negative"}
        store, transport, presenter, orchestrator, missions = _setup(choices=[choice])

        async def run():
            await _set_mission_logs(store, missions)
            outcome = await orchestrator.prompt_as_gm("a1", owner_user_id="u1", gm_user_id="gm")
            await orchestrator.drain()
            return outcome, await store.get_actor("a1"), await orchestrator.mission.has_used_callback_this_mission("u1")

        outcome, actor, used = asyncio.run(run())
        assert outcome.committed
        assert used is True
        assert presenter.presented[0][0] == "gm"
        assert ("gm", "info", "Tuvok made a callback (OLD).") in presenter.notifications
        assert actor.get("cur").system["valueStates"]["v1"] == ["negative"]
        # The reward still goes to the owning player
        assert [user for user, _ in transport.sent_named("callback-reward")] == ["u1"]

    def test_closing_the_dialog_is_a_no(self):
        store, _, presenter, orchestrator, missions = _setup(choices=[None])

        async def run():
            await _set_mission_logs(store, missions)
            return await orchestrator.prompt_as_gm("a1", owner_user_id="u1", gm_user_id="gm")

        outcome = asyncio.run(run())
        assert outcome.state is CallbackState.RESPONDED
        assert presenter.messages("info") == ["Tuvok skipped the callback."]

    def test_reward_delivery_failure_is_quiet(self):
        choice = {"action": "yes", "log_id": "old", "value_id": "v1", "value_state": "positive"}
        store, transport, presenter, orchestrator, missions = _setup(choices=[choice], available=False)

        async def run():
            await _set_mission_logs(store, missions)
            outcome = await orchestrator.prompt_as_gm("a1", owner_user_id="u1", gm_user_id="gm")
            await orchestrator.drain()
            return outcome

        assert asyncio.run(run()).committed
        assert presenter.messages("error") == []


# ---------------------------------------------------------------------------
# Commit-time re-validation
# ---------------------------------------------------------------------------

class TestCommitValidation:

    def _commit(self, actor, response, missions=None):
        store, _, presenter, orchestrator, missions = _setup(actor=actor, mission_logs=missions)

        async def run():
            await _set_mission_logs(store, missions)
            outcome = await orchestrator.commit({"actor_id": "a1", **response}, "u1")
            return outcome, await store.get_actor("a1")

        outcome, live = asyncio.run(run())
        return outcome, live, presenter

    def _assert_untouched(self, live):
        assert live.system["determination"]["value"] == 0
        assert live.get("cur").get_flag(CALLBACK_LINK) is None

    def test_missing_log(self):
        outcome, live, presenter = self._commit(
            _default_actor(), {"log_id": "gone", "value_id": "v1", "value_state": "positive"})
        assert outcome.state is CallbackState.REJECTED
        assert presenter.messages("warn") == ["Callback rejected: that log no longer exists."]
        self._assert_untouched(live)

    def test_missing_value(self):
        outcome, live, presenter = self._commit(
            _default_actor(), {"log_id": "old", "value_id": "gone", "value_state": "positive"})
        assert presenter.messages("warn") == ["Callback rejected: that value no longer exists."]
        self._assert_untouched(live)

    def test_log_claimed_by_someone_else(self):
        actor = _default_actor(extra=[make_log("other", 3, parent="old", value_id="v1")])
        outcome, live, presenter = self._commit(
            actor, {"log_id": "old", "value_id": "v1", "value_state": "positive"})
        assert outcome.state is CallbackState.REJECTED
        assert presenter.messages("warn") == [
            "Another player already used that log for a callback. Choose another log."
        ]
        self._assert_untouched(live)

    def test_own_existing_link_is_not_a_claim(self):
        actor = make_actor(
            make_value("v1", "Duty"),
            make_log("old", 1, primary="v1"),
            make_log("cur", 2, parent="old", value_id="v1"),
        )
        outcome, _, _ = self._commit(actor, {"log_id": "old", "value_id": "v1", "value_state": "positive"})
        assert outcome.committed

    def test_different_primary_value_chain(self):
        actor = _default_actor(old=make_log("old", 1, primary="v2", states={"v1": ["positive"]}))
        outcome, live, presenter = self._commit(
            actor, {"log_id": "old", "value_id": "v1", "value_state": "positive"})
        assert presenter.messages("warn") == ["Callback rejected: OLD is in a different primary-value chain."]
        self._assert_untouched(live)

    def test_arc_end_accepts_any_value(self):
        arc = {"is_arc": True, "steps": 1, "value_id": "v2", "chain_log_ids": ["old"]}
        actor = _default_actor(old=make_log("old", 1, primary="v2", arc=arc))
        outcome, live, _ = self._commit(actor, {"log_id": "old", "value_id": "v1", "value_state": "positive"})
        assert outcome.committed
        # Arc ends keep their own icon
        assert live.get("old").img == ""

    def test_already_used_log(self):
        actor = _default_actor(old=make_log("old", 1, primary="v1", used=True))
        outcome, live, presenter = self._commit(
            actor, {"log_id": "old", "value_id": "v1", "value_state": "positive"})
        assert presenter.messages("warn") == ["That log has already been used for a callback."]
        self._assert_untouched(live)

    @pytest.mark.parametrize("state", ["unused", "", "heroic"])
    def test_unrecognized_value_state(self, state):
        outcome, live, presenter = self._commit(
            _default_actor(), {"log_id": "old", "value_id": "v1", "value_state": state})
        assert presenter.messages("warn") == ["Callback rejected: unrecognized value state."]
        self._assert_untouched(live)

    def test_determination_is_capped(self):
        actor = _default_actor()
        actor.system["determination"]["value"] = get_settings().determination_max
        outcome, live, _ = self._commit(actor, {"log_id": "old", "value_id": "v1", "value_state": "positive"})
        assert outcome.committed
        assert live.system["determination"]["value"] == get_settings().determination_max


class TestConcurrentCommits:

    def test_two_players_racing_for_one_log(self):
        actor = _default_actor(extra=[make_log("cur2", 3)])
        store, _, presenter, orchestrator, _ = _setup(actor=actor)
        response = {"actor_id": "a1", "log_id": "old", "value_id": "v1", "value_state": "positive"}

        async def run():
            await _set_mission_logs(store, {"u1": "cur", "u2": "cur2"})
            return await asyncio.gather(
                orchestrator.commit(dict(response), "u1"),
                orchestrator.commit(dict(response), "u2"),
            )

        outcomes = asyncio.run(run())
        assert sorted(o.state.value for o in outcomes) == ["committed", "rejected"]

    def test_race_between_offer_and_answer(self):
        """Another player claims the log while this one is still deciding."""
        actor = _default_actor(extra=[make_log("cur2", 3)])
        store = InMemoryDocumentStore([actor])

        async def responder(user_id, name, payload):
            if name != "callback-offer":
                return None
            await store.set_flag("a1", "cur2", CALLBACK_LINK, CallbackLink(from_log_id="old", value_id="v1"))
            return _yes()(user_id, name, payload)

        presenter = RecordingPresenter()
        orchestrator = CallbackOrchestrator(store, LoopbackTransport(responder), presenter, timeout=2.0)

        async def run():
            await _set_mission_logs(store, {"u1": "cur"})
            return await orchestrator.request_callback("a1", "u1")

        outcome = asyncio.run(run())
        assert outcome.state is CallbackState.REJECTED
        assert presenter.messages("warn") == [
            "Another player already used that log for a callback. Choose another log."
        ]


class TestPendingResponses:

    def test_unknown_request_is_ignored(self):
        _, _, _, orchestrator, _ = _setup()
        assert asyncio.run(orchestrator.handle_response({"request_id": "nope", "action": "yes"})) is False

    def test_eviction_resolves_oldest_as_timeout(self):
        async def run():
            pending = PendingResponses(limit=2)
            first = pending.register("r1")
            pending.register("r2")
            pending.register("r3")
            return first.result(), len(pending), "r1" in pending

        result, size, still_there = asyncio.run(run())
        assert result["action"] == "timeout"
        assert size == 2
        assert still_there is False

    def test_duplicate_id_rejected(self):
        async def run():
            pending = PendingResponses()
            pending.register("r1")
            with pytest.raises(ValueError):
                pending.register("r1")

        asyncio.run(run())

    def test_resolve_once(self):
        async def run():
            pending = PendingResponses()
            future = pending.register("r1")
            assert pending.resolve("r1", {"action": "yes"}) is True
            assert pending.resolve("r1", {"action": "no"}) is False
            return future.result()

        assert asyncio.run(run()) == {"action": "yes"}
