from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

GoalType = Literal["today", "week", "month", "always", "onetime", "periodic"]
PeriodicType = Literal["start_of_month", "mid_month", "end_of_month"]
Context = Literal["today", "week", "month", "onetime"]
ChangeTable = Literal["goals", "goal_completions"]
ChangeKind = Literal["insert", "update", "delete"]

GOAL_TYPES = ("today", "week", "month", "always", "onetime", "periodic")
PERIODIC_TYPES = ("start_of_month", "mid_month", "end_of_month")
CONTEXTS = ("today", "week", "month", "onetime")


class GoalDefinition(BaseModel):
    id: str
    user_id: str
    text: str
    # Kept as plain strings so one bad row can be skipped during expansion.
    goal_type: str
    remaining: int = 1
    target_date: Optional[str] = None
    periodic_type: Optional[str] = None
    order_index: Optional[int] = None
    completed: bool = False
    description: Optional[str] = None
    link: Optional[str] = None
    notes: Optional[str] = None
    instructions: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


class GoalCreate(BaseModel):
    text: str = Field(min_length=1)
    goal_type: GoalType = "today"
    remaining: int = Field(default=1, ge=1)
    target_date: Optional[date] = None
    periodic_type: Optional[PeriodicType] = None
    order_index: Optional[int] = None
    description: Optional[str] = None
    link: Optional[str] = None
    notes: Optional[str] = None
    instructions: Optional[str] = None


class GoalUpdate(BaseModel):
    text: Optional[str] = Field(default=None, min_length=1)
    goal_type: Optional[GoalType] = None
    remaining: Optional[int] = Field(default=None, ge=1)
    target_date: Optional[date] = None
    periodic_type: Optional[PeriodicType] = None
    description: Optional[str] = None
    link: Optional[str] = None
    notes: Optional[str] = None
    instructions: Optional[str] = None


class CompletionRecord(BaseModel):
    id: str
    user_id: str
    goal_id: str
    completion_date: str
    instance_index: int = 0
    created_at: Optional[str] = None


@dataclass(frozen=True)
class InstanceKey:
    goal_id: str
    date: date
    index: int

    def as_id(self) -> str:
        return f"{self.goal_id}__{self.date.isoformat()}__{self.index}"

    @classmethod
    def parse(cls, raw: str) -> "InstanceKey":
        parts = raw.rsplit("__", 2)
        if len(parts) != 3:
            raise ValueError(f"Malformed instance key: {raw!r}")
        goal_id, day, index = parts
        return cls(goal_id=goal_id, date=date.fromisoformat(day), index=int(index))


class OccurrenceInstance(BaseModel):
    id: str
    goal_id: str
    date: date
    index: int
    text: str
    goal_type: str
    completed: bool = False
    period_start: date
    period_end: date
    completion_dates: List[date] = Field(default_factory=list)

    @property
    def key(self) -> InstanceKey:
        return InstanceKey(goal_id=self.goal_id, date=self.date, index=self.index)

    def spans_period(self) -> bool:
        return self.period_start != self.period_end


class ChangeEvent(BaseModel):
    table: ChangeTable
    kind: ChangeKind
    user_id: str
    record: Dict[str, Any] = Field(default_factory=dict)


class GoalProgress(BaseModel):
    goal_id: str
    text: str
    total: int
    completed: int
    percentage: int


class ContextProgress(BaseModel):
    context: Context
    total: int
    completed: int
    percentage: int
    goals: List[GoalProgress]
