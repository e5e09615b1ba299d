from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from ..core.config import settings
from ..core.errors import (
    GoalEngineError,
    GoalNotFoundError,
    GoalStoreError,
    InvalidGoalError,
    ReorderCommitError,
    ReorderError,
    ToggleWriteError,
)
from ..core.time_utils import parse_iso_date
from ..engine.registry import get_session
from ..engine.session import GoalSession
from ..schemas.goal import InstanceKey

router = APIRouter(prefix="", tags=["goals"])


def _http_error(error: Exception) -> HTTPException:
    if isinstance(error, GoalNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidGoalError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, ReorderCommitError):
        return HTTPException(status_code=502, detail={"message": str(error), "failedIds": error.failed_ids})
    if isinstance(error, ReorderError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (ToggleWriteError, GoalStoreError)):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


async def _session(user_id: Optional[str]) -> GoalSession:
    session = get_session(user_id or settings.default_user_id)
    await session.process_pending()
    return session


def _instance_key(body: Dict[str, Any]) -> InstanceKey:
    raw = body.get("key") or body.get("instanceId")
    if raw:
        return InstanceKey.parse(str(raw))
    goal_id = body.get("goalId")
    day = parse_iso_date(body.get("date"))
    if not goal_id or day is None:
        raise ValueError("key or goalId and date required")
    return InstanceKey(goal_id=goal_id, date=day, index=int(body.get("index") or 0))


@router.get("/views/{context}")
async def get_view(context: str, user_id: Optional[str] = Query(None, alias="userId")) -> Any:
    try:
        session = await _session(user_id)
        return await session.get_view(context)
    except (GoalEngineError, ValueError) as error:
        raise _http_error(error) from error


@router.post("/views/toggle")
async def toggle_instance(body: Dict[str, Any]) -> Any:
    try:
        session = await _session(body.get("userId"))
        key = _instance_key(body)
        completed = body.get("completed")
        return await session.toggle_instance(key, None if completed is None else bool(completed))
    except (GoalEngineError, ValueError) as error:
        raise _http_error(error) from error


@router.get("/progress/{context}")
async def get_progress(context: str, user_id: Optional[str] = Query(None, alias="userId")) -> Any:
    try:
        session = await _session(user_id)
        return await session.get_progress(context)
    except (GoalEngineError, ValueError) as error:
        raise _http_error(error) from error


@router.get("/reorder/state")
async def reorder_state(user_id: Optional[str] = Query(None, alias="userId")) -> Dict[str, Any]:
    try:
        session = await _session(user_id)
    except (GoalEngineError, ValueError) as error:
        raise _http_error(error) from error
    return {
        "state": session.reorder_state.value,
        "context": session.ordering.context,
        "staged": session.ordering.staged_ids,
    }


@router.post("/reorder/{operation}")
async def reorder(operation: str, body: Dict[str, Any]) -> Any:
    try:
        session = await _session(body.get("userId"))
        if operation == "begin":
            context = body.get("context")
            if not context:
                raise HTTPException(status_code=400, detail="context required")
            return {"staged": await session.begin_reorder(context)}
        if operation == "move":
            if "to" not in body:
                raise HTTPException(status_code=400, detail="to required")
            if body.get("goalId"):
                source = session.ordering.position_of(body["goalId"])
            elif "from" in body:
                source = int(body["from"])
            else:
                raise HTTPException(status_code=400, detail="from or goalId required")
            return {"staged": session.move_goal(source, int(body["to"]))}
        if operation == "commit":
            return {"order": await session.commit_reorder()}
        if operation == "cancel":
            return {"cancelled": await session.cancel_reorder()}
    except (GoalEngineError, ValueError) as error:
        raise _http_error(error) from error
    raise HTTPException(status_code=400, detail="Unsupported operation")


@router.post("/goals")
async def goals(body: Dict[str, Any]) -> Any:
    op = body.get("operation") or "list"
    try:
        session = await _session(body.get("userId"))
        if op == "create":
            return await session.create_goal(body.get("params") or {})
        if op == "list":
            return await session.list_goals(body.get("goalType"))
        if op == "sections":
            return await session.goal_sections()
        goal_id = body.get("goalId") or body.get("id")
        if op in ("get", "update", "delete") and not goal_id:
            raise HTTPException(status_code=400, detail="goalId required")
        if op == "get":
            return await session.get_goal(goal_id)
        if op == "update":
            return await session.update_goal(goal_id, body.get("updates") or {})
        if op == "delete":
            await session.delete_goal(goal_id)
            return {"status": "deleted"}
    except (GoalEngineError, ValueError) as error:
        raise _http_error(error) from error
    raise HTTPException(status_code=400, detail="Unsupported operation")
