"""
Recurrence expansion: goal definitions -> dated occurrence instances.

Instances are rebuilt on every read; only their completion is persisted,
keyed by (goal_id, date, index).
"""

import logging
from datetime import date
from typing import AbstractSet, Dict, List, Tuple

from ..core.time_utils import date_span, parse_iso_date
from ..schemas.goal import GOAL_TYPES, PERIODIC_TYPES, GoalDefinition, InstanceKey, OccurrenceInstance
from .periods import PERIOD_GOAL_TYPES, period_bounds, periodic_day

logger = logging.getLogger(__name__)


def goal_sort_key(goal: GoalDefinition) -> Tuple[int, int, str, str]:
    # Goals without an order_index sort after every ordered goal.
    if goal.order_index is None:
        return (1, 0, goal.created_at, goal.id)
    return (0, goal.order_index, goal.created_at, goal.id)


def sort_goals(goals: List[GoalDefinition]) -> List[GoalDefinition]:
    return sorted(goals, key=goal_sort_key)


def _instance(goal: GoalDefinition, day: date, index: int, completion_dates: List[date], period: Tuple[date, date]) -> OccurrenceInstance:
    key = InstanceKey(goal_id=goal.id, date=day, index=index)
    return OccurrenceInstance(
        id=key.as_id(),
        goal_id=goal.id,
        date=day,
        index=index,
        text=goal.text,
        goal_type=goal.goal_type,
        completed=bool(completion_dates),
        period_start=period[0],
        period_end=period[1],
        completion_dates=completion_dates,
    )


def _daily(goal: GoalDefinition, days: List[date], completed: AbstractSet[InstanceKey]) -> List[OccurrenceInstance]:
    instances: List[OccurrenceInstance] = []
    for day in days:
        for index in range(goal.remaining):
            done = [day] if InstanceKey(goal.id, day, index) in completed else []
            instances.append(_instance(goal, day, index, done, (day, day)))
    return instances


def _per_period(goal: GoalDefinition, dates: List[date], completed: AbstractSet[InstanceKey]) -> List[OccurrenceInstance]:
    periods: Dict[date, date] = {}
    for day in dates:
        start, end = period_bounds(goal.goal_type, day)
        periods.setdefault(start, end)
    instances: List[OccurrenceInstance] = []
    for start, end in periods.items():
        span = date_span(start, end)
        for index in range(goal.remaining):
            done = [day for day in span if InstanceKey(goal.id, day, index) in completed]
            instances.append(_instance(goal, start, index, done, (start, end)))
    return instances


def _onetime(goal: GoalDefinition, dates: List[date], completed: AbstractSet[InstanceKey]) -> List[OccurrenceInstance]:
    target = parse_iso_date(goal.target_date)
    if target is None:
        raise ValueError("onetime goal has no target_date")
    if target not in dates:
        return []
    done = [target] if InstanceKey(goal.id, target, 0) in completed else []
    return [_instance(goal, target, 0, done, (target, target))]


def _periodic(goal: GoalDefinition, dates: List[date], completed: AbstractSet[InstanceKey]) -> List[OccurrenceInstance]:
    if goal.periodic_type not in PERIODIC_TYPES:
        raise ValueError(f"periodic goal has invalid periodic_type {goal.periodic_type!r}")
    matching = [day for day in dates if day.day == periodic_day(goal.periodic_type, day)]
    return _daily(goal, matching, completed)


def expand_goal(goal: GoalDefinition, dates: List[date], completed: AbstractSet[InstanceKey]) -> List[OccurrenceInstance]:
    if goal.goal_type not in GOAL_TYPES:
        raise ValueError(f"unknown goal_type {goal.goal_type!r}")
    if goal.goal_type == "onetime":
        return _onetime(goal, dates, completed)
    if goal.remaining < 1:
        raise ValueError(f"remaining must be >= 1, got {goal.remaining}")
    if goal.goal_type == "periodic":
        return _periodic(goal, dates, completed)
    if goal.goal_type in PERIOD_GOAL_TYPES:
        return _per_period(goal, dates, completed)
    return _daily(goal, dates, completed)


def expand(
    goals: List[GoalDefinition],
    dates: List[date],
    completed: AbstractSet[InstanceKey],
    ordered: bool = False,
) -> List[OccurrenceInstance]:
    """
    Expand `goals` over `dates`.

    Output is grouped by goal (order_index order unless `ordered` says the
    caller already arranged the goals), then by date, then by index. A goal
    that cannot be expanded is logged and skipped.
    """
    source = goals if ordered else sort_goals(goals)
    instances: List[OccurrenceInstance] = []
    for goal in source:
        try:
            produced = expand_goal(goal, dates, completed)
        except (ValueError, TypeError) as error:
            logger.warning("Skipping goal %s during expansion: %s", goal.id, error)
            continue
        produced.sort(key=lambda instance: (instance.date, instance.index))
        instances.extend(produced)
    return instances
