import asyncio
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import GoalNotFoundError, InvalidGoalError, ToggleWriteError
from ..core.time_utils import local_today
from ..schemas.goal import (
    CONTEXTS,
    GOAL_TYPES,
    ChangeEvent,
    ContextProgress,
    GoalCreate,
    GoalDefinition,
    GoalUpdate,
    InstanceKey,
    OccurrenceInstance,
)
from ..store.base import GoalStore
from ..store.feed import ChangeFeed
from .aggregator import build_view, goal_fully_completed, summarize_progress
from .ordering import OrderStagingController, OrderState
from .periods import context_dates, load_range
from .tracker import CompletionTracker

logger = logging.getLogger(__name__)

Listener = Callable[[str, List[OccurrenceInstance]], None]
Write = Tuple[InstanceKey, bool]

# Fields a goal row cannot hold as null.
REQUIRED_GOAL_FIELDS = ("text", "goal_type", "remaining")


def _check_context(context: str) -> str:
    if context not in CONTEXTS:
        raise ValueError(f"Unknown context: {context!r}")
    return context


def _normalize_goal_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    goal_type = fields.get("goal_type")
    if goal_type == "onetime":
        if not fields.get("target_date"):
            raise InvalidGoalError("onetime goals need a target_date")
        fields["remaining"] = 1
    if goal_type == "periodic" and not fields.get("periodic_type"):
        raise InvalidGoalError("periodic goals need a periodic_type")
    if goal_type != "periodic":
        fields["periodic_type"] = None
    if goal_type != "onetime":
        fields["target_date"] = None
    if isinstance(fields.get("target_date"), date):
        fields["target_date"] = fields["target_date"].isoformat()
    return fields


class GoalSession:
    """
    Goal engine state for one user session.

    Holds the completion tracker and the order controller, caches every view
    that has been opened, and keeps those views in sync with the store's
    change feed.
    """

    def __init__(self, store: GoalStore, user_id: str, today_fn: Optional[Callable[[], date]] = None) -> None:
        self.store = store
        self.user_id = user_id
        self.tracker = CompletionTracker(store, user_id)
        self.ordering = OrderStagingController(store)
        self._today_fn = today_fn or (lambda: local_today(settings.timezone))
        self._views: Dict[str, List[OccurrenceInstance]] = {}
        self._goals_loaded = False
        self._listeners: Set[Listener] = set()
        self._feeds: List[ChangeFeed] = [
            store.subscribe("goal_completions", user_id),
            store.subscribe("goals", user_id),
        ]
        self._channel: Optional["asyncio.Queue[ChangeEvent]"] = None
        self._tasks: List["asyncio.Task[None]"] = []

    def today(self) -> date:
        return self._today_fn()

    # Views

    async def refresh_goals(self) -> None:
        goals = await self.store.list_goals(self.user_id)
        self.ordering.load(goals)
        self._goals_loaded = True

    async def _ensure_goals(self) -> None:
        if not self._goals_loaded:
            await self.refresh_goals()

    def _range(self, context: str) -> List[date]:
        return load_range(context, context_dates(context, self.today()))

    def _open_range(self) -> List[date]:
        days: Set[date] = set()
        for context in self._views:
            days.update(self._range(context))
        return sorted(days)

    def _render(self, context: str) -> List[OccurrenceInstance]:
        return build_view(self.ordering.ordered_goals(), context, self.today(), self.tracker.snapshot(), ordered=True)

    def _rerender(self) -> None:
        for context in list(self._views):
            self._views[context] = self._render(context)

    async def get_view(self, context: str) -> List[OccurrenceInstance]:
        _check_context(context)
        await self._ensure_goals()
        await self.tracker.load_completed(self._range(context))
        view = self._render(context)
        self._views[context] = view
        return list(view)

    async def get_progress(self, context: str) -> ContextProgress:
        view = await self.get_view(context)
        return summarize_progress(context, view)

    # Completion

    async def _locate(self, key: InstanceKey) -> Tuple[OccurrenceInstance, str]:
        wanted = key.as_id()
        for context, view in self._views.items():
            for instance in view:
                if instance.id == wanted:
                    return instance, context
        # Contexts nobody opened are rendered for the lookup but not cached.
        for context in CONTEXTS:
            if context in self._views:
                continue
            await self.tracker.load_completed(self._range(context))
            for instance in self._render(context):
                if instance.id == wanted:
                    return instance, context
        raise GoalNotFoundError(wanted, "Occurrence not found.")

    def _plan_writes(self, instance: OccurrenceInstance, completed: bool) -> List[Write]:
        if not instance.spans_period():
            return [(instance.key, completed)]
        if completed:
            if instance.completion_dates:
                return []
            today = self.today()
            day = today if instance.period_start <= today <= instance.period_end else instance.period_start
            return [(InstanceKey(instance.goal_id, day, instance.index), True)]
        return [(InstanceKey(instance.goal_id, day, instance.index), False) for day in instance.completion_dates]

    async def toggle_instance(self, key: InstanceKey, completed: Optional[bool] = None) -> OccurrenceInstance:
        """
        Flip (or set) one occurrence.

        The flip is applied to the open views before the write is issued. If the
        write fails, state is re-derived from a fresh load rather than reverted,
        and ToggleWriteError is raised.
        """
        await self._ensure_goals()
        instance, source_context = await self._locate(key)
        target = (not instance.completed) if completed is None else completed
        writes = self._plan_writes(instance, target)

        for write_key, flag in writes:
            self.tracker.mark(write_key, flag)
        self._rerender()
        self._notify()

        try:
            for write_key, flag in writes:
                await self.tracker.toggle(write_key.goal_id, write_key.index, write_key.date, flag)
        except ToggleWriteError:
            await self._resync(self._range(source_context))
            raise

        await self._write_back_summary(instance.goal_id, source_context)
        return self._find(instance.id, source_context) or instance

    def _view_of(self, context: str) -> List[OccurrenceInstance]:
        view = self._views.get(context)
        return view if view is not None else self._render(context)

    def _find(self, instance_id: str, context: str) -> Optional[OccurrenceInstance]:
        for instance in self._view_of(context):
            if instance.id == instance_id:
                return instance
        return None

    async def _resync(self, extra: Optional[List[date]] = None) -> None:
        days = set(self._open_range())
        days.update(extra or [])
        await self.tracker.load_completed(days)
        self._rerender()
        self._notify()

    async def _write_back_summary(self, goal_id: str, source_context: str) -> None:
        summary = goal_fully_completed(self._view_of("today"), goal_id)
        if summary is None:
            summary = goal_fully_completed(self._view_of(source_context), goal_id)
        goal = self.ordering.get(goal_id)
        if summary is None or goal is None or goal.completed == summary:
            return
        try:
            updated = await self.store.update_goal(goal_id, {"completed": summary})
        except Exception as error:  # pylint: disable=broad-except
            # The flag is a derived convenience; the next toggle recomputes it.
            logger.error("Could not store completed=%s for goal %s: %s", summary, goal_id, error)
            return
        self.ordering.replace(updated)

    # Reordering

    @property
    def reorder_state(self) -> OrderState:
        return self.ordering.state

    async def begin_reorder(self, context: str) -> List[str]:
        _check_context(context)
        view = self._views.get(context)
        if view is None:
            view = await self.get_view(context)
        visible: List[str] = []
        for instance in view:
            if instance.goal_id not in visible:
                visible.append(instance.goal_id)
        self.ordering.begin(context, visible)
        return self.ordering.staged_ids

    def move_goal(self, from_index: int, to_index: int) -> List[str]:
        staged = self.ordering.move(from_index, to_index)
        self._rerender()
        self._notify()
        return staged

    async def commit_reorder(self) -> List[str]:
        try:
            return await self.ordering.commit()
        finally:
            await self.refresh_goals()
            self._rerender()
            self._notify()

    async def cancel_reorder(self) -> bool:
        cancelled = self.ordering.cancel()
        if cancelled:
            # Picks up any remote order change deferred while the stage was open.
            await self.refresh_goals()
            self._rerender()
            self._notify()
        return cancelled

    # Planning

    async def list_goals(self, goal_type: Optional[str] = None) -> List[GoalDefinition]:
        await self._ensure_goals()
        goals = self.ordering.ordered_goals()
        if goal_type:
            goals = [goal for goal in goals if goal.goal_type == goal_type]
        return goals

    async def get_goal(self, goal_id: str) -> GoalDefinition:
        await self._ensure_goals()
        goal = self.ordering.get(goal_id)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        return goal

    async def goal_sections(self) -> Dict[str, List[GoalDefinition]]:
        goals = await self.list_goals()
        return {goal_type: [goal for goal in goals if goal.goal_type == goal_type] for goal_type in GOAL_TYPES}

    async def _owned_goal(self, goal_id: str) -> GoalDefinition:
        goal = await self.store.get_goal(goal_id)
        if goal is None or goal.user_id != self.user_id:
            raise GoalNotFoundError(goal_id)
        return goal

    async def _after_goal_write(self) -> None:
        await self.refresh_goals()
        self._rerender()
        self._notify()

    async def create_goal(self, payload: Dict[str, Any]) -> GoalDefinition:
        try:
            data = GoalCreate.model_validate(payload)
        except ValidationError as error:
            raise InvalidGoalError(str(error)) from error
        fields = _normalize_goal_fields(data.model_dump())
        goal = await self.store.create_goal(self.user_id, fields)
        logger.info("Created %s goal %s for %s", goal.goal_type, goal.id, self.user_id)
        await self._after_goal_write()
        return goal

    async def update_goal(self, goal_id: str, payload: Dict[str, Any]) -> GoalDefinition:
        existing = await self._owned_goal(goal_id)
        try:
            data = GoalUpdate.model_validate(payload)
        except ValidationError as error:
            raise InvalidGoalError(str(error)) from error
        patch = data.model_dump(exclude_unset=True)
        for field in REQUIRED_GOAL_FIELDS:
            if field in patch and patch[field] is None:
                raise InvalidGoalError(f"{field} cannot be null")
        merged = {**existing.model_dump(), **patch}
        normalized = _normalize_goal_fields(merged)
        for field in ("remaining", "target_date", "periodic_type"):
            if field in patch or normalized.get(field) != getattr(existing, field):
                patch[field] = normalized[field]
        goal = await self.store.update_goal(goal_id, patch)
        await self._after_goal_write()
        return goal

    async def delete_goal(self, goal_id: str) -> None:
        await self._owned_goal(goal_id)
        await self.store.delete_goal(goal_id)
        self.tracker.forget_goal(goal_id)
        logger.info("Deleted goal %s for %s", goal_id, self.user_id)
        await self._after_goal_write()

    # Subscribers and change feed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        for context, view in list(self._views.items()):
            for listener in list(self._listeners):
                try:
                    listener(context, list(view))
                except Exception:  # pylint: disable=broad-except
                    logger.exception("View listener failed for %s", context)

    async def reconcile(self, events: List[ChangeEvent]) -> None:
        """Re-derive every open view after remote (or local) changes."""
        if not events:
            return
        if any(event.table == "goals" for event in events):
            await self.refresh_goals()
        if self._views:
            await self.tracker.load_completed(self._open_range())
        self._rerender()
        self._notify()
        logger.debug("Reconciled %d change event(s) for %s", len(events), self.user_id)

    async def process_pending(self) -> int:
        """Drain queued change events without waiting and reconcile once."""
        events: List[ChangeEvent] = []
        for feed in self._feeds:
            events.extend(feed.drain())
        if self._channel is not None:
            while not self._channel.empty():
                events.append(self._channel.get_nowait())
        await self.reconcile(events)
        return len(events)

    async def _pump(self, feed: ChangeFeed, channel: "asyncio.Queue[ChangeEvent]") -> None:
        async for event in feed:
            channel.put_nowait(event)

    async def _reconcile_loop(self, channel: "asyncio.Queue[ChangeEvent]") -> None:
        while True:
            events = [await channel.get()]
            while not channel.empty():
                events.append(channel.get_nowait())
            try:
                await self.reconcile(events)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Reconciliation failed for %s", self.user_id)

    def start(self) -> None:
        if self._tasks:
            return
        channel: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()
        self._channel = channel
        self._tasks = [asyncio.create_task(self._pump(feed, channel)) for feed in self._feeds]
        self._tasks.append(asyncio.create_task(self._reconcile_loop(channel)))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._channel = None

    def close(self) -> None:
        for feed in self._feeds:
            feed.close()
        self._listeners.clear()
