import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import yaml
from pydantic import ValidationError

from ..core.errors import GoalNotFoundError, GoalStoreError
from ..schemas.goal import ChangeEvent, CompletionRecord, GoalDefinition
from ..utils.nanoid import nanoid
from .base import GoalStore
from .feed import ChangeFeed

logger = logging.getLogger(__name__)

CompletionKey = Tuple[str, str, str, int]


class InMemoryGoalStore(GoalStore):
    """GoalStore kept in process memory. Rows are stored as plain dicts, like the hosted tables."""

    def __init__(self) -> None:
        self._goals: Dict[str, Dict[str, Any]] = {}
        self._completions: Dict[CompletionKey, Dict[str, Any]] = {}
        self._feeds: List[ChangeFeed] = []
        self._lock = asyncio.Lock()
        self._last_created: Optional[datetime] = None

    def _next_timestamp(self) -> str:
        now = datetime.now(timezone.utc)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now.isoformat()

    def _publish(self, table: str, kind: str, user_id: str, record: Dict[str, Any]) -> None:
        event = ChangeEvent(table=table, kind=kind, user_id=user_id, record=dict(record))
        for feed in list(self._feeds):
            if feed.table == table and feed.user_id == user_id:
                feed.publish(event)

    def _parse_goal(self, row: Dict[str, Any]) -> Optional[GoalDefinition]:
        try:
            return GoalDefinition.model_validate(row)
        except ValidationError as error:
            logger.warning("Skipping malformed goal row %s: %s", row.get("id"), error)
            return None

    def _validate_row(self, row: Dict[str, Any]) -> GoalDefinition:
        # A row that fails validation is never written.
        try:
            return GoalDefinition.model_validate(row)
        except ValidationError as error:
            raise GoalStoreError(f"Goal '{row.get('id')}' failed validation: {error}") from error

    async def list_goals(self, user_id: str) -> List[GoalDefinition]:
        async with self._lock:
            rows = [dict(row) for row in self._goals.values() if row.get("user_id") == user_id]
        goals: List[GoalDefinition] = []
        for row in rows:
            goal = self._parse_goal(row)
            if goal is not None:
                goals.append(goal)
        return goals

    async def get_goal(self, goal_id: str) -> Optional[GoalDefinition]:
        async with self._lock:
            row = self._goals.get(goal_id)
            row = dict(row) if row else None
        return self._parse_goal(row) if row else None

    async def create_goal(self, user_id: str, fields: Dict[str, Any]) -> GoalDefinition:
        async with self._lock:
            goal_id = fields.get("id") or nanoid()
            if goal_id in self._goals:
                raise GoalStoreError(f"Goal '{goal_id}' already exists")
            order_index = fields.get("order_index")
            if order_index is None:
                existing = [
                    row.get("order_index")
                    for row in self._goals.values()
                    if row.get("user_id") == user_id and isinstance(row.get("order_index"), int)
                ]
                order_index = max(existing) + 1 if existing else 0
            timestamp = self._next_timestamp()
            row = {
                "completed": False,
                "remaining": 1,
                **fields,
                "id": goal_id,
                "user_id": user_id,
                "order_index": order_index,
                "created_at": fields.get("created_at") or timestamp,
                "updated_at": timestamp,
            }
            goal = self._validate_row(row)
            self._goals[goal_id] = row
            self._publish("goals", "insert", user_id, row)
        return goal

    async def update_goal(self, goal_id: str, fields: Dict[str, Any]) -> GoalDefinition:
        async with self._lock:
            existing = self._goals.get(goal_id)
            if not existing:
                raise GoalNotFoundError(goal_id)
            updated = {**existing, **fields, "id": goal_id, "user_id": existing["user_id"], "updated_at": self._next_timestamp()}
            goal = self._validate_row(updated)
            self._goals[goal_id] = updated
            self._publish("goals", "update", updated["user_id"], updated)
        return goal

    async def delete_goal(self, goal_id: str) -> None:
        async with self._lock:
            row = self._goals.pop(goal_id, None)
            if row is None:
                return
            dropped = [key for key in self._completions if key[1] == goal_id]
            for key in dropped:
                record = self._completions.pop(key)
                self._publish("goal_completions", "delete", record["user_id"], record)
            self._publish("goals", "delete", row["user_id"], row)

    async def update_goal_order(self, goal_id: str, order_index: int) -> None:
        await self.update_goal(goal_id, {"order_index": order_index})

    async def list_completions(self, user_id: str, dates: Iterable[date]) -> List[CompletionRecord]:
        wanted: Set[str] = {day.isoformat() for day in dates}
        async with self._lock:
            rows = [
                dict(row)
                for key, row in self._completions.items()
                if key[0] == user_id and key[2] in wanted
            ]
        return [CompletionRecord.model_validate(row) for row in rows]

    async def insert_completion(self, user_id: str, goal_id: str, day: date, index: int) -> None:
        key = (user_id, goal_id, day.isoformat(), index)
        async with self._lock:
            if key in self._completions:
                return
            record = {
                "id": nanoid(),
                "user_id": user_id,
                "goal_id": goal_id,
                "completion_date": day.isoformat(),
                "instance_index": index,
                "created_at": self._next_timestamp(),
            }
            self._completions[key] = record
            self._publish("goal_completions", "insert", user_id, record)

    async def delete_completion(self, user_id: str, goal_id: str, day: date, index: int) -> None:
        key = (user_id, goal_id, day.isoformat(), index)
        async with self._lock:
            record = self._completions.pop(key, None)
            if record is None:
                return
            self._publish("goal_completions", "delete", user_id, record)

    def subscribe(self, table: str, user_id: str) -> ChangeFeed:
        feed = ChangeFeed(table, user_id, on_close=self._unsubscribe)
        self._feeds.append(feed)
        return feed

    def _unsubscribe(self, feed: ChangeFeed) -> None:
        if feed in self._feeds:
            self._feeds.remove(feed)


def load_seed_goals(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """
    Read a YAML seed file of the shape:

        user-1:
          - text: Attend a meeting
            goal_type: week
            remaining: 2

    Returns goal field dicts per user id.
    """
    content = Path(path).read_text(encoding="utf-8")
    parsed = yaml.safe_load(content) or {}
    if not isinstance(parsed, dict):
        raise ValueError("Seed file did not produce a mapping of user ids to goals")
    seeds: Dict[str, List[Dict[str, Any]]] = {}
    for user_id, goals in parsed.items():
        if not isinstance(goals, list):
            raise ValueError(f"Seed goals for '{user_id}' must be a list")
        seeds[str(user_id)] = [dict(goal) for goal in goals if isinstance(goal, dict)]
    return seeds


async def seed_store(store: GoalStore, path: Path) -> int:
    count = 0
    for user_id, goals in load_seed_goals(path).items():
        for fields in goals:
            if fields.get("target_date") is not None:
                fields["target_date"] = str(fields["target_date"])
            await store.create_goal(user_id, fields)
            count += 1
    logger.info("Seeded %d goal(s) from %s", count, path)
    return count
