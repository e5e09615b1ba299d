"""
Two-phase manual reordering of goal definitions.

    CLEAN --begin/move--> DIRTY --commit--> CLEAN
                                --cancel--> CLEAN

Gestures only touch the in-memory order. Nothing is written until commit.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.errors import ReorderCommitError, ReorderError
from ..schemas.goal import GoalDefinition
from ..store.base import GoalStore
from .recurrence import sort_goals

logger = logging.getLogger(__name__)


class OrderState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"


class OrderStagingController:
    def __init__(self, store: GoalStore) -> None:
        self.store = store
        self.state = OrderState.CLEAN
        self._goals: Dict[str, GoalDefinition] = {}
        self._order: List[str] = []
        self._original: Optional[List[Tuple[str, Optional[int]]]] = None
        self._context: Optional[str] = None
        self._staged: List[str] = []
        self.deferred_remote_order = False

    @property
    def context(self) -> Optional[str]:
        return self._context

    @property
    def staged_ids(self) -> List[str]:
        return list(self._staged)

    def ordered_goals(self) -> List[GoalDefinition]:
        return [self._goals[goal_id] for goal_id in self._order]

    def get(self, goal_id: str) -> Optional[GoalDefinition]:
        return self._goals.get(goal_id)

    def replace(self, goal: GoalDefinition) -> None:
        """Swap in new content for a known goal, keeping its local order_index."""
        local = self._goals.get(goal.id)
        if local is None:
            return
        self._goals[goal.id] = goal.model_copy(update={"order_index": local.order_index})

    def load(self, goals: List[GoalDefinition]) -> None:
        """
        Adopt a fresh goal list from the store.

        While DIRTY, content changes are merged but the staged order and local
        order_index values are kept; remote order changes wait until the stage
        is resolved.
        """
        if self.state == OrderState.CLEAN:
            self._goals = {goal.id: goal for goal in goals}
            self._order = [goal.id for goal in sort_goals(goals)]
            return

        incoming = {goal.id: goal for goal in goals}
        merged: Dict[str, GoalDefinition] = {}
        for goal_id, goal in incoming.items():
            local = self._goals.get(goal_id)
            if local is None:
                merged[goal_id] = goal
                continue
            if goal.order_index != local.order_index:
                self.deferred_remote_order = True
            merged[goal_id] = goal.model_copy(update={"order_index": local.order_index})
        kept = [goal_id for goal_id in self._order if goal_id in incoming]
        added = [goal.id for goal in sort_goals([incoming[i] for i in incoming if i not in self._goals])]
        self._goals = merged
        self._staged = [goal_id for goal_id in self._staged if goal_id in incoming]
        if self._original is not None:
            self._original = [(goal_id, idx) for goal_id, idx in self._original if goal_id in incoming]
        self._order = kept + added

    def begin(self, context: str, visible_ids: Iterable[str]) -> None:
        if self.state == OrderState.DIRTY:
            if context != self._context:
                raise ReorderError(f"A reorder of '{self._context}' is already staged")
            return
        visible = set(visible_ids)
        self._original = [(goal_id, self._goals[goal_id].order_index) for goal_id in self._order]
        self._context = context
        self._staged = [goal_id for goal_id in self._order if goal_id in visible]
        self.state = OrderState.DIRTY
        logger.debug("Reorder staged for %s with %d goal(s)", context, len(self._staged))

    def move(self, from_index: int, to_index: int) -> List[str]:
        if self.state != OrderState.DIRTY:
            raise ReorderError("No reorder in progress")
        size = len(self._staged)
        if not (0 <= from_index < size) or not (0 <= to_index < size):
            raise ReorderError(f"Move {from_index} -> {to_index} is out of range for {size} goal(s)")
        goal_id = self._staged.pop(from_index)
        self._staged.insert(to_index, goal_id)
        staged = set(self._staged)
        self._order = self._staged + [other for other in self._order if other not in staged]
        return list(self._staged)

    def position_of(self, goal_id: str) -> int:
        try:
            return self._staged.index(goal_id)
        except ValueError:
            raise ReorderError(f"Goal '{goal_id}' is not part of the staged reorder") from None

    def _reset(self) -> None:
        self.state = OrderState.CLEAN
        self._original = None
        self._context = None
        self._staged = []
        self.deferred_remote_order = False

    async def commit(self) -> List[str]:
        if self.state != OrderState.DIRTY:
            raise ReorderError("No reorder in progress")
        staged = set(self._staged)
        plan = self._staged + [goal_id for goal_id in self._order if goal_id not in staged]
        results = await asyncio.gather(
            *(self.store.update_goal_order(goal_id, position) for position, goal_id in enumerate(plan)),
            return_exceptions=True,
        )
        failures: Dict[str, BaseException] = {}
        for position, (goal_id, result) in enumerate(zip(plan, results)):
            if isinstance(result, BaseException):
                failures[goal_id] = result
                continue
            self._goals[goal_id] = self._goals[goal_id].model_copy(update={"order_index": position})
        self._reset()
        if failures:
            logger.error("Order commit failed for %d of %d goal(s)", len(failures), len(plan))
            raise ReorderCommitError(failures)
        logger.info("Committed order for %d goal(s)", len(plan))
        return plan

    def cancel(self) -> bool:
        """Drop the staged order. Returns False when nothing was staged."""
        if self.state != OrderState.DIRTY:
            return False
        original = self._original or []
        restored: List[str] = []
        for goal_id, order_index in original:
            if goal_id in self._goals:
                self._goals[goal_id] = self._goals[goal_id].model_copy(update={"order_index": order_index})
                restored.append(goal_id)
        seen = set(restored)
        self._order = restored + [goal_id for goal_id in self._order if goal_id not in seen]
        self._reset()
        return True
