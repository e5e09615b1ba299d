from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from ..schemas.goal import CompletionRecord, GoalDefinition
from .feed import ChangeFeed


class GoalStore(ABC):
    """Durable storage of goal definitions and completion records, plus a change feed."""

    @abstractmethod
    async def list_goals(self, user_id: str) -> List[GoalDefinition]:
        """All goal definitions for a user. Rows that fail validation are skipped."""

    @abstractmethod
    async def get_goal(self, goal_id: str) -> Optional[GoalDefinition]:
        pass

    @abstractmethod
    async def create_goal(self, user_id: str, fields: Dict[str, Any]) -> GoalDefinition:
        pass

    @abstractmethod
    async def update_goal(self, goal_id: str, fields: Dict[str, Any]) -> GoalDefinition:
        pass

    @abstractmethod
    async def delete_goal(self, goal_id: str) -> None:
        """Hard delete; the goal's completion records go with it."""

    @abstractmethod
    async def update_goal_order(self, goal_id: str, order_index: int) -> None:
        pass

    @abstractmethod
    async def list_completions(self, user_id: str, dates: Iterable[date]) -> List[CompletionRecord]:
        """Completion records on any of `dates`, in a single read."""

    @abstractmethod
    async def insert_completion(self, user_id: str, goal_id: str, day: date, index: int) -> None:
        """Insert if absent."""

    @abstractmethod
    async def delete_completion(self, user_id: str, goal_id: str, day: date, index: int) -> None:
        """Delete if present."""

    @abstractmethod
    def subscribe(self, table: str, user_id: str) -> ChangeFeed:
        pass
