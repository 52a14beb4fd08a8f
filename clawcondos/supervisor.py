"""
Retry/failure handling for tasks whose agent session ended.

A session that ends while its task is still in-progress either hands the
task back to the pending pool (retry) or, once the goal's retry budget is
spent, marks it failed for a human to look at.
"""

from dataclasses import dataclass
from typing import Optional

from . import ui
from .errors import ValidationError
from .events import EventBus, TaskFailed, TaskRetried
from .models import Document, Goal, TaskStatus

AGENT_FAILED = "Agent failed while working on task"
AGENT_ENDED = "Agent ended without completing task"
RETRIES_EXHAUSTED = "Max retries exhausted: agent ended without completing task"

# Statuses a kill resets back to pending
RESETTABLE_STATUSES = {TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED, TaskStatus.WAITING}


def collect_goal_session_keys(goal: Goal) -> list[str]:
    """Every session ever linked to the goal plus live task bindings, de-duplicated."""
    keys = list(goal.sessions)
    for task in goal.tasks:
        if task.session_key:
            keys.append(task.session_key)
    return list(dict.fromkeys(keys))


def collect_condo_session_keys(document: Document, condo_id: str) -> list[str]:
    keys = [key for key, cid in document.session_condo_index.items() if cid == condo_id]
    condo = document.get_condo(condo_id)
    if condo and condo.pm_session:
        keys.append(condo.pm_session)
    for goal in document.goals_for_condo(condo_id):
        keys.extend(collect_goal_session_keys(goal))
    return list(dict.fromkeys(keys))


@dataclass
class SupervisorOutcome:
    action: str  # completed | retried | failed | no-action | unknown-session
    session_key: str
    goal_id: Optional[str] = None
    task_id: Optional[str] = None
    retry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "sessionKey": self.session_key,
            "goalId": self.goal_id,
            "taskId": self.task_id,
            "retryCount": self.retry_count,
        }


class RetrySupervisor:
    def __init__(self, store, bus: EventBus, cascade=None):
        self.store = store
        self.bus = bus
        self.cascade = cascade

    def agent_ended(self, session_key: str, success: Optional[bool] = None) -> SupervisorOutcome:
        """
        React to the gateway reporting that a session ended.

        Args:
            session_key: The session that ended
            success: False when the agent reported an explicit failure,
                True or None for an ordinary (possibly silent) end
        """
        if not session_key:
            raise ValidationError("sessionKey is required")

        event = None
        with self.store.transaction() as document:
            goal, task = document.task_for_session(session_key)
            if task is None:
                ui.debug(f"agent_end for unknown session {session_key}")
                return SupervisorOutcome("unknown-session", session_key)

            outcome = SupervisorOutcome(
                "no-action", session_key, goal.id, task.id, task.retry_count
            )
            if task.status == TaskStatus.DONE:
                outcome.action = "completed"
            elif task.status == TaskStatus.IN_PROGRESS and task.session_key == session_key:
                max_retries = goal.effective_max_retries
                if task.retry_count < max_retries:
                    error = AGENT_FAILED if success is False else AGENT_ENDED
                    task.requeue(error=error, count_retry=True)
                    goal.touch()
                    outcome.action = "retried"
                    event = TaskRetried(goal.id, task.id, task.retry_count, max_retries, error)
                else:
                    task.fail(RETRIES_EXHAUSTED)
                    goal.touch()
                    outcome.action = "failed"
                    event = TaskFailed(goal.id, task.id, task.retry_count, RETRIES_EXHAUSTED)
                outcome.retry_count = task.retry_count

        if isinstance(event, TaskRetried):
            ui.print_retry(event.task_id, event.retry_count, event.max_retries, event.error)
        elif isinstance(event, TaskFailed):
            ui.print_task_failed(event.task_id, event.error)
        # Only a retry or a failure changes what can run next
        if event is not None:
            self.bus.publish(event)
            if self.cascade is not None:
                self.cascade.session_ended(outcome.goal_id, retry_count=outcome.retry_count)
        return outcome

    def reset_goal_sessions(self, goal_id: str) -> int:
        """
        Release every live session binding in a goal without counting a retry.

        Used after the sessions were killed on purpose. Done tasks keep their
        state. Returns the number of tasks reset.
        """
        return self.release_goal(goal_id)[0]

    def reset_condo_sessions(self, condo_id: str) -> int:
        return self.release_condo(condo_id)[0]

    def release_goal(self, goal_id: str) -> tuple[int, list[str]]:
        """
        Reset a goal's tasks and return (reset count, session keys to abort).

        The keys are read in the same transaction as the reset, so no session
        bound before the reset escapes the abort.
        """
        if not goal_id:
            raise ValidationError("goalId is required")
        with self.store.transaction() as document:
            goal = document.get_goal(goal_id)
            if goal is None:
                raise ValidationError("Goal not found")
            keys = collect_goal_session_keys(goal)
            return self._reset(goal), keys

    def release_condo(self, condo_id: str) -> tuple[int, list[str]]:
        if not condo_id:
            raise ValidationError("condoId is required")
        with self.store.transaction() as document:
            if document.get_condo(condo_id) is None:
                raise ValidationError("Condo not found")
            keys = collect_condo_session_keys(document, condo_id)
            return sum(self._reset(goal) for goal in document.goals_for_condo(condo_id)), keys

    @staticmethod
    def _reset(goal) -> int:
        reset = 0
        for task in goal.tasks:
            if task.status in RESETTABLE_STATUSES and task.session_key:
                task.requeue(count_retry=False)
                reset += 1
        if reset:
            goal.touch()
        return reset
