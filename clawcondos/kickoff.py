"""
Kickoff: move a goal's eligible tasks to in-progress and start their sessions.

The state change is persisted before any session is requested, so a second
kickoff racing with a slow spawn sees the tasks as already taken.
"""

from dataclasses import dataclass, field
from typing import Callable

from . import ui
from .context import build_task_context
from .errors import ValidationError
from .events import EventBus, GoalKickedOff
from .models import now_ms
from .resolver import eligible_tasks
from .roles import DEFAULT_AGENT, build_session_key, resolve_agent
from .sessions import SessionSpawner
from .store import Store


@dataclass
class SpawnedSession:
    task_id: str
    session_key: str
    agent_id: str
    started: bool = False
    error: str = None

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "sessionKey": self.session_key,
            "agentId": self.agent_id,
            "started": self.started,
            "error": self.error,
        }


@dataclass
class KickoffResult:
    goal_id: str
    condo_id: str = ""
    spawned_sessions: list[SpawnedSession] = field(default_factory=list)

    @property
    def task_ids(self) -> list[str]:
        return [s.task_id for s in self.spawned_sessions]

    def to_dict(self) -> dict:
        return {
            "goalId": self.goal_id,
            "spawnedSessions": [s.to_dict() for s in self.spawned_sessions],
        }


class KickoffEngine:
    def __init__(
        self,
        store: Store,
        spawner: SessionSpawner,
        bus: EventBus,
        context_builder: Callable = build_task_context,
    ):
        self.store = store
        self.spawner = spawner
        self.bus = bus
        self.context_builder = context_builder

    def kickoff(self, goal_id: str, first_time_only: bool = False) -> KickoffResult:
        """
        Spawn sessions for every task of the goal that is eligible right now.

        Only tasks transitioned by this call are returned; calling it again
        with nothing completed in between spawns nothing. With
        first_time_only, a goal that was kicked off before is left alone.
        """
        if not goal_id:
            raise ValidationError("goalId is required")

        launches = []
        with self.store.transaction() as document:
            goal = document.get_goal(goal_id)
            if goal is None:
                raise ValidationError(f"Goal {goal_id} not found")
            result = KickoffResult(goal_id=goal.id, condo_id=goal.condo_id)
            if first_time_only and goal.kicked_off_at_ms is not None:
                ui.debug(f"kickoff {goal_id}: already kicked off, skipping")
                return result

            condo = document.get_condo(goal.condo_id)
            for task in eligible_tasks(goal):
                agent_id = resolve_agent(document, task.assigned_agent) or DEFAULT_AGENT
                session_key = build_session_key(agent_id, "subagent", self.store.new_id("task"))
                task.start(session_key)
                document.index_session(session_key, goal, task)
                context = self.context_builder(task, goal, condo, agent_id)
                launches.append((SpawnedSession(task.id, session_key, agent_id), context))

            if launches:
                if goal.kicked_off_at_ms is None:
                    goal.kicked_off_at_ms = now_ms()
                goal.touch()

        for spawned, context in launches:
            try:
                self.spawner.start_session(spawned.session_key, context)
                spawned.started = True
            except Exception as e:
                spawned.error = str(e)
                ui.print_spawn_failed(spawned.task_id, spawned.session_key, e)
            result.spawned_sessions.append(spawned)

        if launches:
            self._record_spawn_outcomes(goal_id, result.spawned_sessions)
            self.bus.publish(GoalKickedOff(
                goal_id=result.goal_id,
                condo_id=result.condo_id,
                spawned=[s.to_dict() for s in result.spawned_sessions],
            ))

        ui.print_kickoff(goal_id, result.spawned_sessions)
        return result

    def _record_spawn_outcomes(self, goal_id: str, spawned_sessions: list[SpawnedSession]):
        with self.store.transaction() as document:
            goal = document.get_goal(goal_id)
            if goal is None:
                return
            for spawned in spawned_sessions:
                task = goal.get_task(spawned.task_id)
                # The session may already have ended and the task moved on
                if task is None or task.session_key != spawned.session_key:
                    continue
                if spawned.started:
                    task.mark_session_started()
                else:
                    task.last_error = f"Session start failed: {spawned.error}"
                    task.touch()
