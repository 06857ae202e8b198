"""Tests for mission bookkeeping: per-user maps, used-log marking and determination."""

import asyncio

from officers_log.mission import (
    MissionTracker,
    gain_determination,
    is_log_used,
    log_used_changes,
    mark_log_used,
    spend_determination,
)
from officers_log.store.memory import InMemoryDocumentStore

from helpers import make_actor, make_log


def _store(*items, determination=0):
    return InMemoryDocumentStore([make_actor(*items, determination=determination)])


class TestMissionTracker:

    def test_concurrent_marks_for_different_users_are_all_kept(self):
        store = _store()
        tracker = MissionTracker(store)
        users = [f"u{i}" for i in range(6)]

        async def run():
            await asyncio.gather(*(tracker.set_used_callback_this_mission(u, True) for u in users))
            return [await tracker.has_used_callback_this_mission(u) for u in users]

        assert asyncio.run(run()) == [True] * len(users)

    def test_clearing_one_user_leaves_the_others(self):
        tracker = MissionTracker(_store())

        async def run():
            await tracker.set_used_callback_this_mission("u1", True)
            await tracker.set_used_callback_this_mission("u2", True)
            await tracker.set_used_callback_this_mission("u1", False)
            return (await tracker.has_used_callback_this_mission("u1"),
                    await tracker.has_used_callback_this_mission("u2"))

        assert asyncio.run(run()) == (False, True)

    def test_reset_clears_every_mark(self):
        tracker = MissionTracker(_store())

        async def run():
            await tracker.set_used_callback_this_mission("u1", True)
            await tracker.reset_mission_callbacks()
            return await tracker.has_used_callback_this_mission("u1")

        assert asyncio.run(run()) is False

    def test_mission_logs_are_kept_per_user(self):
        tracker = MissionTracker(_store())

        async def run():
            await asyncio.gather(
                tracker.set_mission_log_for_user("u1", "a"),
                tracker.set_mission_log_for_user("u2", "b"),
            )
            return await tracker.get_mission_log_by_user()

        assert asyncio.run(run()) == {"u1": "a", "u2": "b"}

    def test_update_setting_hands_out_copies(self):
        store = _store()

        async def run():
            seen = []

            def append(items):
                seen.append(items)
                return items + ["x"]

            returned = await store.update_setting("list", append, [])
            returned.append("mutated")
            return seen, await store.get_setting("list")

        seen, stored = asyncio.run(run())
        assert seen == [[]]
        assert stored == ["x"]


class TestUsedLogs:

    def test_world_flag_when_log_has_no_used_field(self):
        log = make_log("a", 1)
        store = _store(log)
        changes = log_used_changes(store, log)
        assert changes == {"flags.world.used": True}

        async def run():
            await mark_log_used(store, "a1", log)
            return await store.get_actor("a1")

        assert is_log_used(asyncio.run(run()).get("a"))

    def test_system_field_wins_when_present(self):
        log = make_log("a", 1, used=False)
        store = _store(log)
        assert log_used_changes(store, log) == {"system.used": True}


class TestDetermination:

    def test_gain_then_spend(self):
        store = _store(determination=0)

        async def run():
            gained = await gain_determination(store, await store.get_actor("a1"))
            spent = await spend_determination(store, await store.get_actor("a1"))
            floor = await spend_determination(store, await store.get_actor("a1"))
            return gained, spent, floor, await store.get_actor("a1")

        gained, spent, floor, actor = asyncio.run(run())
        assert (gained, spent, floor) == (True, True, False)
        assert actor.system["determination"]["value"] == 0
