from datetime import date
from typing import Dict, FrozenSet, List, Tuple

from ..core.time_utils import date_span, first_of_month, last_of_month, monday_of, sunday_of

# Goal types shown in each context. Longer periods include the shorter ones.
TODAY_TYPES: FrozenSet[str] = frozenset({"today", "always", "periodic", "onetime"})
WEEK_TYPES: FrozenSet[str] = TODAY_TYPES | {"week"}
MONTH_TYPES: FrozenSet[str] = WEEK_TYPES | {"month"}
ONETIME_TYPES: FrozenSet[str] = frozenset({"onetime"})

RELEVANT_TYPES: Dict[str, FrozenSet[str]] = {
    "today": TODAY_TYPES,
    "week": WEEK_TYPES,
    "month": MONTH_TYPES,
    "onetime": ONETIME_TYPES,
}

PERIOD_GOAL_TYPES = ("week", "month")


def context_dates(context: str, today: date) -> List[date]:
    if context in ("today", "onetime"):
        return [today]
    if context == "week":
        return date_span(monday_of(today), sunday_of(today))
    if context == "month":
        return date_span(today, last_of_month(today))
    raise ValueError(f"Unknown context: {context!r}")


def period_bounds(goal_type: str, day: date) -> Tuple[date, date]:
    """The span a completion of a period goal counts for."""
    if goal_type == "week":
        return monday_of(day), sunday_of(day)
    if goal_type == "month":
        return first_of_month(day), last_of_month(day)
    return day, day


def load_range(context: str, dates: List[date]) -> List[date]:
    """Dates whose completion records are needed to evaluate `context` over `dates`."""
    if not dates:
        return []
    start, end = dates[0], dates[-1]
    relevant = RELEVANT_TYPES.get(context, frozenset())
    for goal_type in PERIOD_GOAL_TYPES:
        if goal_type in relevant:
            start = min(start, period_bounds(goal_type, dates[0])[0])
            end = max(end, period_bounds(goal_type, dates[-1])[1])
    return date_span(start, end)


def periodic_day(periodic_type: str, day: date) -> int:
    if periodic_type == "start_of_month":
        return 1
    if periodic_type == "mid_month":
        return 15
    if periodic_type == "end_of_month":
        return last_of_month(day).day
    raise ValueError(f"Unknown periodic type: {periodic_type!r}")
