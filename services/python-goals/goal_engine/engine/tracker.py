import logging
from datetime import date
from typing import Iterable, Set

from ..core.errors import ToggleWriteError
from ..schemas.goal import InstanceKey
from ..store.base import GoalStore

logger = logging.getLogger(__name__)


class CompletionTracker:
    """
    Per-session map of completed instance keys.

    Presence of a key means a completion record exists (or was optimistically
    assumed to). `load_completed` always replaces local state for the dates it
    covers, so the latest successful load wins over any earlier guess.
    """

    def __init__(self, store: GoalStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id
        self._completed: Set[InstanceKey] = set()

    async def load_completed(self, dates: Iterable[date]) -> Set[InstanceKey]:
        days = sorted(set(dates))
        if not days:
            return set()
        records = await self.store.list_completions(self.user_id, days)
        wanted = set(days)
        loaded: Set[InstanceKey] = set()
        for record in records:
            try:
                key = InstanceKey(
                    goal_id=record.goal_id,
                    date=date.fromisoformat(record.completion_date[:10]),
                    index=int(record.instance_index),
                )
            except (TypeError, ValueError) as error:
                logger.warning("Ignoring malformed completion record %s: %s", record.id, error)
                continue
            if key.date in wanted:
                loaded.add(key)
        self._completed = {key for key in self._completed if key.date not in wanted} | loaded
        logger.debug("Loaded %d completion(s) over %d day(s) for %s", len(loaded), len(days), self.user_id)
        return set(loaded)

    def is_completed(self, key: InstanceKey) -> bool:
        return key in self._completed

    def mark(self, key: InstanceKey, completed: bool) -> None:
        """Local-only flip, applied before the write resolves."""
        if completed:
            self._completed.add(key)
        else:
            self._completed.discard(key)

    def snapshot(self) -> Set[InstanceKey]:
        return set(self._completed)

    def forget_goal(self, goal_id: str) -> None:
        self._completed = {key for key in self._completed if key.goal_id != goal_id}

    async def toggle(self, goal_id: str, index: int, day: date, completed: bool) -> None:
        """Insert-if-absent when `completed`, delete-if-present otherwise. Safe to repeat."""
        key = InstanceKey(goal_id=goal_id, date=day, index=index)
        try:
            if completed:
                await self.store.insert_completion(self.user_id, goal_id, day, index)
            else:
                await self.store.delete_completion(self.user_id, goal_id, day, index)
        except Exception as error:  # pylint: disable=broad-except
            logger.error("Completion write failed for %s: %s", key.as_id(), error)
            raise ToggleWriteError(key.as_id(), f"Completion write failed: {error}.") from error
        self.mark(key, completed)
