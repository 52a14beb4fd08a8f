"""
Cascade: chain kickoffs as tasks and goals complete.

Completion and session-end events don't spawn anything inline. They
schedule a short-delayed run for the goal, which re-runs kickoff for
newly unblocked tasks or, once the goal is done, kicks off the next phase
of goals in the same condo.
"""

import threading
from typing import Optional

from . import ui
from .errors import ValidationError
from .events import EventBus, GoalCompleted
from .kickoff import KickoffEngine, KickoffResult
from .models import now_ms
from .resolver import phase_candidates
from .scheduler import Job, Scheduler

DEFAULT_CASCADE_DELAY = 0.5
DEFAULT_RETRY_BACKOFF = 2.0


class CascadeScheduler:
    def __init__(
        self,
        store,
        kickoff: KickoffEngine,
        scheduler: Scheduler,
        bus: EventBus,
        delay_seconds: float = DEFAULT_CASCADE_DELAY,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF,
    ):
        self.store = store
        self.kickoff = kickoff
        self.scheduler = scheduler
        self.bus = bus
        self.delay_seconds = delay_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self._lock = threading.Lock()
        self._pending: dict[str, Job] = {}

    def task_completed(self, goal_id: str, task_id: Optional[str] = None) -> Optional[Job]:
        ui.debug(f"cascade queued for {goal_id} after {task_id or 'task'} completed")
        return self._schedule(goal_id, self.delay_seconds)

    def session_ended(self, goal_id: Optional[str], retry_count: int = 0) -> Optional[Job]:
        """Queue a cascade after a session end. Retries back off linearly."""
        delay = self.delay_seconds + self.retry_backoff_seconds * max(0, retry_count)
        return self._schedule(goal_id, delay)

    def _schedule(self, goal_id: Optional[str], delay: float) -> Optional[Job]:
        if not goal_id:
            return None
        with self._lock:
            job = self._pending.get(goal_id)
            if job is not None and job.active:
                return job
            job = self.scheduler.call_later(delay, self._run_job, goal_id)
            self._pending[goal_id] = job
            return job

    def cancel(self, goal_id: str) -> bool:
        with self._lock:
            job = self._pending.pop(goal_id, None)
        if job is None or not job.active:
            return False
        job.cancel()
        return True

    def _run_job(self, goal_id: str):
        with self._lock:
            self._pending.pop(goal_id, None)
        try:
            self.run(goal_id)
        except Exception as e:
            ui.print_cascade_error(goal_id, e)

    def run(self, goal_id: str) -> list[KickoffResult]:
        """Run the cascade for one goal now. Returns the kickoffs it performed."""
        document = self.store.load()
        goal = document.get_goal(goal_id)
        if goal is None:
            raise ValidationError(f"Goal {goal_id} not found")

        if not goal.is_complete:
            return [self.kickoff.kickoff(goal_id)]

        newly_completed = False
        with self.store.transaction() as document:
            goal = document.get_goal(goal_id)
            if goal.completed_at_ms is None:
                goal.completed_at_ms = now_ms()
                goal.touch()
                newly_completed = True
            siblings = document.goals_for_condo(goal.condo_id)

        if newly_completed:
            ui.console.print(f"[{ui.GOLD}]★ Goal {goal.title} ({goal.id}) complete[/]")
            self.bus.publish(GoalCompleted(goal.id, goal.condo_id, goal.phase))

        if goal.phase is None:
            return []

        results = []
        for candidate in phase_candidates(siblings, after_phase=goal.phase):
            ui.debug(f"phase cascade: {goal.id} (phase {goal.phase}) → {candidate.id} (phase {candidate.phase})")
            results.append(self.kickoff.kickoff(candidate.id, first_time_only=True))
        return results
