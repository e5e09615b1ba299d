import pathlib
import sys
from datetime import date

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from goal_engine.core.errors import GoalStoreError, ToggleWriteError  # noqa: E402
from goal_engine.engine.tracker import CompletionTracker  # noqa: E402
from goal_engine.schemas.goal import InstanceKey  # noqa: E402
from goal_engine.store.memory import InMemoryGoalStore  # noqa: E402

DAY = date(2024, 3, 15)


class CountingStore(InMemoryGoalStore):
    def __init__(self) -> None:
        super().__init__()
        self.completion_reads = 0

    async def list_completions(self, user_id, dates):
        self.completion_reads += 1
        return await super().list_completions(user_id, dates)


class BrokenStore(InMemoryGoalStore):
    async def insert_completion(self, user_id, goal_id, day, index):
        raise GoalStoreError("backend unavailable")


@pytest.mark.asyncio
async def test_toggle_true_twice_is_idempotent():
    store = InMemoryGoalStore()
    tracker = CompletionTracker(store, "user-1")
    await tracker.toggle("g1", 0, DAY, True)
    once = await tracker.load_completed([DAY])
    await tracker.toggle("g1", 0, DAY, True)
    twice = await tracker.load_completed([DAY])
    assert once == twice == {InstanceKey("g1", DAY, 0)}
    assert len(await store.list_completions("user-1", [DAY])) == 1


@pytest.mark.asyncio
async def test_toggle_round_trip_removes_key():
    store = InMemoryGoalStore()
    tracker = CompletionTracker(store, "user-1")
    await tracker.toggle("g1", 1, DAY, True)
    await tracker.toggle("g1", 1, DAY, False)
    await tracker.toggle("g1", 1, DAY, False)
    assert InstanceKey("g1", DAY, 1) not in await tracker.load_completed([DAY])


@pytest.mark.asyncio
async def test_load_completed_uses_one_read_for_the_range():
    store = CountingStore()
    await store.insert_completion("user-1", "g1", date(2024, 3, 11), 0)
    await store.insert_completion("user-1", "g1", date(2024, 3, 17), 0)
    await store.insert_completion("user-2", "g1", date(2024, 3, 12), 0)
    tracker = CompletionTracker(store, "user-1")
    week = [date(2024, 3, day) for day in range(11, 18)]
    loaded = await tracker.load_completed(week)
    assert store.completion_reads == 1
    assert {key.date.day for key in loaded} == {11, 17}


@pytest.mark.asyncio
async def test_load_replaces_optimistic_guess():
    store = InMemoryGoalStore()
    tracker = CompletionTracker(store, "user-1")
    key = InstanceKey("g1", DAY, 0)
    tracker.mark(key, True)
    assert tracker.is_completed(key)
    await tracker.load_completed([DAY])
    assert not tracker.is_completed(key)


@pytest.mark.asyncio
async def test_failed_write_raises_toggle_error():
    tracker = CompletionTracker(BrokenStore(), "user-1")
    with pytest.raises(ToggleWriteError) as info:
        await tracker.toggle("g1", 0, DAY, True)
    assert info.value.key == "g1__2024-03-15__0"
    assert not tracker.is_completed(InstanceKey("g1", DAY, 0))
