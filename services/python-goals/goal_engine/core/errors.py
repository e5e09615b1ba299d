"""
Exception hierarchy for the goal engine.

Every failure here is scoped to the user action that triggered it; callers
decide whether to retry, re-sync or surface the error.
"""

from typing import Dict, List, Optional


class GoalEngineError(Exception):
    """Base class for all goal engine errors."""

    def __init__(self, message: str = "Goal engine error."):
        super().__init__(message)


class GoalStoreError(GoalEngineError):
    """Raised when the backing goal store rejects or fails an operation."""

    def __init__(self, message: str = "Goal store error."):
        super().__init__(message)


class GoalNotFoundError(GoalEngineError):
    def __init__(self, goal_id: str, message: str = "Goal not found."):
        self.goal_id = goal_id
        super().__init__(f"{message} Goal ID: '{goal_id}'")


class InvalidGoalError(GoalEngineError):
    """Raised when a goal payload fails validation on create or update."""

    def __init__(self, message: str = "Invalid goal."):
        super().__init__(message)


class ToggleWriteError(GoalEngineError):
    """
    Raised when a completion write fails after the optimistic flip.
    The session has already re-synced from the store when this is raised.
    """

    def __init__(self, key: str, message: str = "Completion write failed."):
        self.key = key
        super().__init__(f"{message} Instance: '{key}'")


class ReorderError(GoalEngineError):
    """Raised for reorder operations issued in the wrong state or with bad positions."""

    def __init__(self, message: str = "Invalid reorder operation."):
        super().__init__(message)


class ReorderCommitError(GoalEngineError):
    """
    Aggregate error for a partially failed order commit.
    Successful writes are not rolled back.
    """

    def __init__(self, failures: Dict[str, BaseException], message: Optional[str] = None):
        self.failures = failures
        self.failed_ids: List[str] = list(failures)
        super().__init__(message or f"Order commit failed for {len(failures)} goal(s): {', '.join(self.failed_ids)}")
