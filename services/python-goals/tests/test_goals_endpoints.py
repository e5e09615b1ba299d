import asyncio
import pathlib
import sys
from datetime import date

from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from goal_engine.core.errors import GoalStoreError  # noqa: E402
from goal_engine.engine import registry  # noqa: E402
from goal_engine.main import app  # noqa: E402
from goal_engine.store.memory import InMemoryGoalStore  # noqa: E402


client = TestClient(app)


def create_goal(user_id, text, **params):
    res = client.post("/goals", json={"operation": "create", "userId": user_id, "params": {"text": text, **params}})
    assert res.status_code == 200
    return res.json()


def test_health():
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_view_toggle_and_progress():
    user = "user-view-toggle"
    goals = [create_goal(user, f"Goal {n}", goal_type="always") for n in range(1, 4)]

    res = client.get("/views/today", params={"userId": user})
    assert res.status_code == 200
    view = res.json()
    assert [item["goal_id"] for item in view] == [goal["id"] for goal in goals]
    assert not any(item["completed"] for item in view)

    res = client.post("/views/toggle", json={"userId": user, "key": view[1]["id"]})
    assert res.status_code == 200
    assert res.json()["completed"] is True

    res = client.get("/progress/today", params={"userId": user})
    data = res.json()
    assert (data["completed"], data["total"], data["percentage"]) == (1, 3, 33)

    res = client.post("/goals", json={"operation": "get", "userId": user, "goalId": goals[1]["id"]})
    assert res.json()["completed"] is True

    res = client.post(
        "/views/toggle",
        json={"userId": user, "goalId": goals[1]["id"], "date": view[1]["date"], "index": 0, "completed": False},
    )
    assert res.status_code == 200
    assert res.json()["completed"] is False


def test_reorder_flow():
    user = "user-reorder"
    ids = [create_goal(user, name, goal_type="always")["id"] for name in ("A", "B", "C")]

    res = client.post("/reorder/begin", json={"userId": user, "context": "today"})
    assert res.json() == {"staged": ids}
    res = client.post("/reorder/move", json={"userId": user, "from": 0, "to": 2})
    assert res.json() == {"staged": [ids[1], ids[2], ids[0]]}

    state = client.get("/reorder/state", params={"userId": user}).json()
    assert state == {"state": "dirty", "context": "today", "staged": [ids[1], ids[2], ids[0]]}

    res = client.post("/reorder/cancel", json={"userId": user})
    assert res.json() == {"cancelled": True}
    listed = client.post("/goals", json={"operation": "list", "userId": user}).json()
    assert [goal["id"] for goal in listed] == ids

    client.post("/reorder/begin", json={"userId": user, "context": "today"})
    client.post("/reorder/move", json={"userId": user, "goalId": ids[2], "to": 0})
    res = client.post("/reorder/commit", json={"userId": user})
    assert res.status_code == 200
    assert res.json() == {"order": [ids[2], ids[0], ids[1]]}

    view = client.get("/views/today", params={"userId": user}).json()
    assert [item["goal_id"] for item in view] == [ids[2], ids[0], ids[1]]
    assert client.get("/reorder/state", params={"userId": user}).json()["state"] == "clean"


def test_error_mapping():
    user = "user-errors"
    create_goal(user, "Stretch", goal_type="always")

    assert client.get("/views/yearly", params={"userId": user}).status_code == 400
    res = client.post("/views/toggle", json={"userId": user, "key": "missing__2024-03-15__0"})
    assert res.status_code == 404
    res = client.post("/views/toggle", json={"userId": user, "key": "not-a-key"})
    assert res.status_code == 400
    res = client.post("/reorder/move", json={"userId": user, "from": 0, "to": 1})
    assert res.status_code == 409
    res = client.post("/reorder/commit", json={"userId": user})
    assert res.status_code == 409
    res = client.post("/goals", json={"operation": "create", "userId": user, "params": {"text": "Trip", "goal_type": "onetime"}})
    assert res.status_code == 422
    res = client.post("/goals", json={"operation": "archive", "userId": user})
    assert res.status_code == 400


def test_goal_crud_and_sections():
    user = "user-crud"
    goal = create_goal(user, "Read", goal_type="week", remaining=2)
    trip = create_goal(user, "Trip", goal_type="onetime", target_date="2030-01-05")
    assert trip["target_date"] == "2030-01-05"
    assert trip["remaining"] == 1

    res = client.post("/goals", json={"operation": "update", "userId": user, "goalId": goal["id"], "updates": {"text": "Read two chapters"}})
    assert res.status_code == 200
    assert res.json()["text"] == "Read two chapters"

    sections = client.post("/goals", json={"operation": "sections", "userId": user}).json()
    assert [g["id"] for g in sections["week"]] == [goal["id"]]
    assert [g["id"] for g in sections["onetime"]] == [trip["id"]]
    assert sections["today"] == []

    week = client.get("/views/week", params={"userId": user}).json()
    assert len([item for item in week if item["goal_id"] == goal["id"]]) == 2

    res = client.post("/goals", json={"operation": "delete", "userId": user, "goalId": goal["id"]})
    assert res.json() == {"status": "deleted"}
    res = client.post("/goals", json={"operation": "get", "userId": user, "goalId": goal["id"]})
    assert res.status_code == 404
    listed = client.post("/goals", json={"operation": "list", "userId": user, "goalType": "onetime"}).json()
    assert [g["id"] for g in listed] == [trip["id"]]


def test_null_remaining_is_rejected():
    user = "user-null-update"
    goal = create_goal(user, "Walk", goal_type="today", remaining=2)
    res = client.post("/goals", json={"operation": "update", "userId": user, "goalId": goal["id"], "updates": {"remaining": None}})
    assert res.status_code == 422
    stored = client.post("/goals", json={"operation": "get", "userId": user, "goalId": goal["id"]}).json()
    assert stored["remaining"] == 2
    view = client.get("/views/today", params={"userId": user}).json()
    assert len(view) == 2


class FlakyReadStore(InMemoryGoalStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False

    async def list_completions(self, user_id, dates):
        if self.fail_reads:
            raise GoalStoreError("read timed out")
        return await super().list_completions(user_id, dates)


def test_reconcile_failure_maps_to_store_error(monkeypatch):
    store = FlakyReadStore()
    monkeypatch.setattr(registry, "_store", store)
    user = "user-flaky-reconcile"
    goal = create_goal(user, "Stretch", goal_type="always")
    view = client.get("/views/today", params={"userId": user}).json()

    asyncio.run(store.insert_completion(user, goal["id"], date.fromisoformat(view[0]["date"]), 0))
    store.fail_reads = True
    res = client.get("/reorder/state", params={"userId": user})
    assert res.status_code == 502
