from collections import OrderedDict

from ..core.config import settings
from ..store.base import GoalStore
from ..store.memory import InMemoryGoalStore
from .session import GoalSession

_store: GoalStore = InMemoryGoalStore()
_sessions: "OrderedDict[str, GoalSession]" = OrderedDict()


def get_store() -> GoalStore:
    return _store


def get_session(user_id: str) -> GoalSession:
    session = _sessions.get(user_id)
    if session is not None:
        _sessions.move_to_end(user_id)
        return session
    session = GoalSession(_store, user_id)
    _sessions[user_id] = session
    while len(_sessions) > max(settings.max_sessions, 1):
        _, evicted = _sessions.popitem(last=False)
        evicted.close()
    return session


def reset_sessions() -> None:
    for session in _sessions.values():
        session.close()
    _sessions.clear()
