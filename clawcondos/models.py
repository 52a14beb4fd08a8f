"""Core data models for clawcondos."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


def now_ms() -> int:
    return int(time.time() * 1000)


class TaskStatus(str, Enum):
    PENDING = "pending"          # Waiting for dependencies or a kickoff
    IN_PROGRESS = "in-progress"  # Bound to an agent session
    BLOCKED = "blocked"          # Agent reported it can't proceed
    WAITING = "waiting"          # Agent is waiting on input
    DONE = "done"                # Finished
    FAILED = "failed"            # Retries exhausted, needs a human


# Statuses that hold a goal open
OPEN_STATUSES = {TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED, TaskStatus.WAITING}


class AutonomyMode(str, Enum):
    FULL = "full"                # Agent works through without check-ins
    PLAN = "plan"                # Agent proposes a plan before acting
    STEP = "step"                # Agent checks in after each step
    SUPERVISED = "supervised"    # Every action needs approval


DEFAULT_MAX_RETRIES = 1


@dataclass
class Task:
    id: str
    text: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    depends_on: list[str] = field(default_factory=list)
    session_key: Optional[str] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    assigned_agent: str = ""  # Role name or agent id, resolved at kickoff
    summary: str = ""
    started_at_ms: Optional[int] = None
    created_at_ms: int = field(default_factory=now_ms)
    updated_at_ms: int = field(default_factory=now_ms)

    def touch(self):
        self.updated_at_ms = now_ms()

    def start(self, session_key: str):
        """Bind a session and move pending -> in-progress."""
        if self.status != TaskStatus.PENDING:
            raise ValueError(f"Task {self.id} is {self.status.value}, only pending tasks can start")
        self.status = TaskStatus.IN_PROGRESS
        self.session_key = session_key
        self.started_at_ms = None
        self.touch()

    def mark_session_started(self):
        self.started_at_ms = now_ms()
        self.touch()

    def complete(self, summary: str = None):
        self.status = TaskStatus.DONE
        self.session_key = None
        self.last_error = None
        if summary:
            self.summary = summary
        self.touch()

    def requeue(self, error: Optional[str] = None, count_retry: bool = True):
        """Release the session and put the task back in the pending pool."""
        self.status = TaskStatus.PENDING
        self.session_key = None
        self.started_at_ms = None
        if count_retry:
            self.retry_count += 1
        if error is not None:
            self.last_error = error
        self.touch()

    def fail(self, error: str):
        self.status = TaskStatus.FAILED
        self.session_key = None
        self.started_at_ms = None
        self.last_error = error
        self.touch()

    def set_status(self, status: TaskStatus):
        """Record an agent status report that keeps the session binding."""
        self.status = status
        self.touch()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "description": self.description,
            "status": self.status.value,
            "dependsOn": self.depends_on,
            "sessionKey": self.session_key,
            "retryCount": self.retry_count,
            "lastError": self.last_error,
            "assignedAgent": self.assigned_agent,
            "summary": self.summary,
            "startedAtMs": self.started_at_ms,
            "createdAtMs": self.created_at_ms,
            "updatedAtMs": self.updated_at_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        created = data.get("createdAtMs") or now_ms()
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            description=data.get("description") or "",
            status=TaskStatus(data.get("status", "pending")),
            depends_on=list(data.get("dependsOn") or []),
            session_key=data.get("sessionKey"),
            retry_count=data.get("retryCount") or 0,
            last_error=data.get("lastError"),
            assigned_agent=data.get("assignedAgent") or "",
            summary=data.get("summary") or "",
            started_at_ms=data.get("startedAtMs"),
            created_at_ms=created,
            updated_at_ms=data.get("updatedAtMs") or created,
        )


@dataclass
class Goal:
    """
    An ordered task list inside a condo.

    Task order is declaration order and breaks ties when several tasks
    become eligible at once. `phase` orders goals within a condo for
    staged cascades; goals without a phase are only kicked off by hand.
    """
    id: str
    condo_id: str
    title: str
    description: str = ""
    tasks: list[Task] = field(default_factory=list)
    phase: Optional[int] = None
    max_retries: Optional[int] = None
    autonomy_mode: AutonomyMode = AutonomyMode.FULL
    sessions: list[str] = field(default_factory=list)  # Every session key ever bound here
    kicked_off_at_ms: Optional[int] = None
    completed_at_ms: Optional[int] = None
    created_at_ms: int = field(default_factory=now_ms)
    updated_at_ms: int = field(default_factory=now_ms)

    @property
    def is_complete(self) -> bool:
        return all(t.status == TaskStatus.DONE for t in self.tasks)

    @property
    def status(self) -> str:
        if self.is_complete:
            return "done"
        if any(t.status == TaskStatus.FAILED for t in self.tasks):
            return "failed"
        return "active"

    @property
    def effective_max_retries(self) -> int:
        if self.max_retries is None:
            return DEFAULT_MAX_RETRIES
        return self.max_retries

    @property
    def progress(self) -> dict:
        total = len(self.tasks)
        done = sum(1 for t in self.tasks if t.status == TaskStatus.DONE)
        return {
            "total": total,
            "done": done,
            "percent": round(done / total * 100) if total else 100,
        }

    def touch(self):
        self.updated_at_ms = now_ms()

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def add_task(self, task: Task) -> Task:
        if self.get_task(task.id):
            raise ValueError(f"Task {task.id} already exists in goal {self.id}")
        self.tasks.append(task)
        self.completed_at_ms = None
        self.touch()
        return task

    def bind_session(self, session_key: str):
        if session_key not in self.sessions:
            self.sessions.append(session_key)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "condoId": self.condo_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "phase": self.phase,
            "maxRetries": self.max_retries,
            "autonomyMode": self.autonomy_mode.value,
            "sessions": self.sessions,
            "kickedOffAtMs": self.kicked_off_at_ms,
            "completedAtMs": self.completed_at_ms,
            "createdAtMs": self.created_at_ms,
            "updatedAtMs": self.updated_at_ms,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Goal":
        created = data.get("createdAtMs") or now_ms()
        return cls(
            id=data["id"],
            condo_id=data.get("condoId") or "",
            title=data.get("title", ""),
            description=data.get("description") or "",
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            phase=data.get("phase"),
            max_retries=data.get("maxRetries"),
            autonomy_mode=AutonomyMode(data.get("autonomyMode") or "full"),
            sessions=list(data.get("sessions") or []),
            kicked_off_at_ms=data.get("kickedOffAtMs"),
            completed_at_ms=data.get("completedAtMs"),
            created_at_ms=created,
            updated_at_ms=data.get("updatedAtMs") or created,
        )


@dataclass
class Condo:
    """Top-level project container that groups goals."""
    id: str
    name: str
    description: str = ""
    pm_session: Optional[str] = None
    created_at_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "pmSession": self.pm_session,
            "createdAtMs": self.created_at_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Condo":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description") or "",
            pm_session=data.get("pmSession"),
            created_at_ms=data.get("createdAtMs") or now_ms(),
        )


@dataclass
class Document:
    """The whole store payload, loaded and saved as one unit."""
    version: int = 0
    condos: list[Condo] = field(default_factory=list)
    goals: list[Goal] = field(default_factory=list)
    session_index: dict[str, dict] = field(default_factory=dict)        # sessionKey -> {goalId, taskId}
    session_condo_index: dict[str, str] = field(default_factory=dict)   # sessionKey -> condoId
    config: dict = field(default_factory=dict)

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        for goal in self.goals:
            if goal.id == goal_id:
                return goal
        return None

    def get_condo(self, condo_id: str) -> Optional[Condo]:
        for condo in self.condos:
            if condo.id == condo_id:
                return condo
        return None

    def goals_for_condo(self, condo_id: str) -> list[Goal]:
        return [g for g in self.goals if g.condo_id == condo_id]

    def find_task(self, task_id: str) -> tuple[Optional[Goal], Optional[Task]]:
        for goal in self.goals:
            task = goal.get_task(task_id)
            if task:
                return goal, task
        return None, None

    def task_for_session(self, session_key: str) -> tuple[Optional[Goal], Optional[Task]]:
        link = self.session_index.get(session_key)
        if link:
            goal = self.get_goal(link.get("goalId"))
            if goal:
                return goal, goal.get_task(link.get("taskId"))
        # Fall back to scanning live bindings
        for goal in self.goals:
            for task in goal.tasks:
                if task.session_key == session_key:
                    return goal, task
        return None, None

    def index_session(self, session_key: str, goal: Goal, task: Task):
        self.session_index[session_key] = {"goalId": goal.id, "taskId": task.id}
        goal.bind_session(session_key)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "condos": [c.to_dict() for c in self.condos],
            "goals": [g.to_dict() for g in self.goals],
            "sessionIndex": self.session_index,
            "sessionCondoIndex": self.session_condo_index,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        data = data or {}
        return cls(
            version=data.get("version") or 0,
            condos=[Condo.from_dict(c) for c in data.get("condos") or []],
            goals=[Goal.from_dict(g) for g in data.get("goals") or []],
            session_index=dict(data.get("sessionIndex") or {}),
            session_condo_index=dict(data.get("sessionCondoIndex") or {}),
            config=dict(data.get("config") or {}),
        )
