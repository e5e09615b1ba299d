from datetime import date
from typing import AbstractSet, Dict, List, Optional

from ..schemas.goal import ContextProgress, GoalDefinition, GoalProgress, InstanceKey, OccurrenceInstance
from .periods import RELEVANT_TYPES, context_dates
from .recurrence import expand


def select_goals(goals: List[GoalDefinition], context: str) -> List[GoalDefinition]:
    relevant = RELEVANT_TYPES.get(context)
    if relevant is None:
        raise ValueError(f"Unknown context: {context!r}")
    return [goal for goal in goals if goal.goal_type in relevant]


def build_view(
    goals: List[GoalDefinition],
    context: str,
    today: date,
    completed: AbstractSet[InstanceKey],
    ordered: bool = False,
) -> List[OccurrenceInstance]:
    selected = select_goals(goals, context)
    return expand(selected, context_dates(context, today), completed, ordered=ordered)


def instances_of(instances: List[OccurrenceInstance], goal_id: str) -> List[OccurrenceInstance]:
    return [instance for instance in instances if instance.goal_id == goal_id]


def goal_fully_completed(instances: List[OccurrenceInstance], goal_id: str) -> Optional[bool]:
    """True when every instance of the goal is done, None when the goal has no instances here."""
    own = instances_of(instances, goal_id)
    if not own:
        return None
    return all(instance.completed for instance in own)


def _percentage(completed: int, total: int) -> int:
    return round(completed / total * 100) if total else 0


def summarize_progress(context: str, instances: List[OccurrenceInstance]) -> ContextProgress:
    grouped: Dict[str, GoalProgress] = {}
    for instance in instances:
        entry = grouped.get(instance.goal_id)
        if entry is None:
            entry = GoalProgress(goal_id=instance.goal_id, text=instance.text, total=0, completed=0, percentage=0)
            grouped[instance.goal_id] = entry
        entry.total += 1
        if instance.completed:
            entry.completed += 1
    for entry in grouped.values():
        entry.percentage = _percentage(entry.completed, entry.total)
    total = len(instances)
    done = len([instance for instance in instances if instance.completed])
    return ContextProgress(
        context=context,
        total=total,
        completed=done,
        percentage=_percentage(done, total),
        goals=list(grouped.values()),
    )
