import pathlib
import sys
from datetime import date

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from goal_engine.core.time_utils import date_span  # noqa: E402
from goal_engine.engine.aggregator import build_view, goal_fully_completed, select_goals, summarize_progress  # noqa: E402
from goal_engine.engine.periods import context_dates, load_range  # noqa: E402
from goal_engine.engine.recurrence import expand  # noqa: E402
from goal_engine.schemas.goal import GoalDefinition, InstanceKey  # noqa: E402


def make_goal(goal_id, goal_type, remaining=1, order_index=None, **extra):
    return GoalDefinition(
        id=goal_id,
        user_id="user-1",
        text=f"goal {goal_id}",
        goal_type=goal_type,
        remaining=remaining,
        order_index=order_index,
        created_at=f"2024-01-01T00:00:0{goal_id[-1]}",
        **extra,
    )


WEEK = date_span(date(2024, 3, 11), date(2024, 3, 17))


def test_daily_goal_repeats_per_day_with_per_day_index():
    goal = make_goal("g1", "today", remaining=2, order_index=0)
    instances = expand([goal], WEEK, set())
    assert len(instances) == 14
    assert [i.index for i in instances[:4]] == [0, 1, 0, 1]
    assert instances[0].date == date(2024, 3, 11)
    assert instances[-1].id == "g1__2024-03-17__1"
    assert not any(i.completed for i in instances)


def test_week_goal_emits_remaining_instances_for_whole_week():
    goal = make_goal("g1", "week", remaining=2, order_index=0)
    completed = {InstanceKey("g1", date(2024, 3, 13), 0)}
    instances = expand([goal], WEEK, completed)
    assert len(instances) == 2
    assert all(i.date == date(2024, 3, 11) for i in instances)
    assert instances[0].completed and instances[0].completion_dates == [date(2024, 3, 13)]
    assert not instances[1].completed
    assert instances[0].period_end == date(2024, 3, 17)


def test_week_goal_in_month_dates_groups_by_week():
    goal = make_goal("g1", "week", remaining=1, order_index=0)
    dates = date_span(date(2024, 3, 13), date(2024, 3, 31))
    instances = expand([goal], dates, set())
    assert [i.date for i in instances] == [date(2024, 3, 11), date(2024, 3, 18), date(2024, 3, 25)]


def test_month_goal_counts_completion_from_earlier_in_month():
    goal = make_goal("g1", "month", remaining=1, order_index=0)
    dates = date_span(date(2024, 3, 10), date(2024, 3, 31))
    instances = expand([goal], dates, {InstanceKey("g1", date(2024, 3, 3), 0)})
    assert len(instances) == 1
    assert instances[0].date == date(2024, 3, 1)
    assert instances[0].completed


def test_periodic_goals_only_on_their_day():
    february = date_span(date(2024, 2, 1), date(2024, 2, 29))
    goals = [
        make_goal("g1", "periodic", order_index=0, periodic_type="start_of_month"),
        make_goal("g2", "periodic", order_index=1, periodic_type="mid_month"),
        make_goal("g3", "periodic", order_index=2, periodic_type="end_of_month"),
    ]
    instances = expand(goals, february, set())
    assert [(i.goal_id, i.date.day) for i in instances] == [("g1", 1), ("g2", 15), ("g3", 29)]


def test_onetime_goal_only_on_target_date():
    goal = make_goal("g1", "onetime", remaining=3, order_index=0, target_date="2024-03-15")
    assert len(expand([goal], WEEK, set())) == 1
    assert expand([goal], date_span(date(2024, 3, 18), date(2024, 3, 24)), set()) == []


def test_malformed_goals_are_skipped_not_the_batch():
    goals = [
        make_goal("g1", "onetime", order_index=0),
        make_goal("g2", "onetime", order_index=1, target_date="not-a-date"),
        make_goal("g3", "periodic", order_index=2),
        make_goal("g4", "yearly", order_index=3),
        make_goal("g5", "today", remaining=0, order_index=4),
        make_goal("g6", "always", order_index=5),
    ]
    instances = expand(goals, [date(2024, 3, 15)], set())
    assert [i.goal_id for i in instances] == ["g6"]


def test_instances_follow_order_index_with_unordered_goals_last():
    goals = [
        make_goal("g1", "always", order_index=None),
        make_goal("g2", "always", order_index=5),
        make_goal("g3", "always", order_index=1),
    ]
    instances = expand(goals, [date(2024, 3, 15)], set())
    assert [i.goal_id for i in instances] == ["g3", "g2", "g1"]


def test_context_selection_is_cumulative():
    goals = [make_goal(f"g{n}", goal_type, order_index=n) for n, goal_type in enumerate(["today", "week", "month", "always", "onetime", "periodic"])]
    assert {g.goal_type for g in select_goals(goals, "today")} == {"today", "always", "periodic", "onetime"}
    assert {g.goal_type for g in select_goals(goals, "week")} == {"today", "always", "periodic", "onetime", "week"}
    assert len(select_goals(goals, "month")) == 6
    assert [g.goal_type for g in select_goals(goals, "onetime")] == ["onetime"]


def test_context_dates_and_load_range():
    friday = date(2024, 3, 15)
    assert context_dates("today", friday) == [friday]
    assert context_dates("week", friday) == WEEK
    month = context_dates("month", friday)
    assert month[0] == friday and month[-1] == date(2024, 3, 31)
    february = context_dates("month", date(2024, 2, 9))
    widened = load_range("month", february)
    assert widened[0] == date(2024, 2, 1)
    # The last week of February 2024 runs into March.
    assert widened[-1] == date(2024, 3, 3)
    assert load_range("week", context_dates("week", friday)) == WEEK


def test_view_summary_and_progress():
    goals = [make_goal(f"g{n}", "always", order_index=n) for n in range(1, 4)]
    friday = date(2024, 3, 15)
    view = build_view(goals, "today", friday, {InstanceKey("g2", friday, 0)})
    assert goal_fully_completed(view, "g2") is True
    assert goal_fully_completed(view, "g1") is False
    assert goal_fully_completed(view, "missing") is None
    progress = summarize_progress("today", view)
    assert (progress.completed, progress.total, progress.percentage) == (1, 3, 33)
    assert [g.percentage for g in progress.goals] == [0, 100, 0]


def test_instance_key_string_form():
    key = InstanceKey.parse("abc__2024-03-15__2")
    assert key == InstanceKey("abc", date(2024, 3, 15), 2)
    assert key.as_id() == "abc__2024-03-15__2"
