"""
Typed lifecycle events and their delivery.

Events are plain dataclasses with an explicit payload. The EventBus hands
them to in-process listeners; the EventBroadcaster forwards them to
connected websocket clients. Delivery is fire-and-forget: the core never
waits on, or fails because of, a listener.
"""

import asyncio
import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Optional, Set

from . import ui


@dataclass
class Event:
    name: ClassVar[str] = "event"

    def payload(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {"event": self.name, **self.payload()}


@dataclass
class TaskRetried(Event):
    name: ClassVar[str] = "task.retry"
    goal_id: str
    task_id: str
    retry_count: int
    max_retries: int
    error: str

    def payload(self) -> dict:
        return {
            "goalId": self.goal_id,
            "taskId": self.task_id,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "error": self.error,
        }


@dataclass
class TaskFailed(Event):
    name: ClassVar[str] = "task.failed"
    goal_id: str
    task_id: str
    retry_count: int
    error: str

    def payload(self) -> dict:
        return {
            "goalId": self.goal_id,
            "taskId": self.task_id,
            "retryCount": self.retry_count,
            "error": self.error,
        }


@dataclass
class GoalKickedOff(Event):
    name: ClassVar[str] = "goal.kickoff"
    goal_id: str
    condo_id: str
    spawned: list[dict] = field(default_factory=list)  # [{taskId, sessionKey, agentId}]

    def payload(self) -> dict:
        return {
            "goalId": self.goal_id,
            "condoId": self.condo_id,
            "spawnedSessions": self.spawned,
        }


@dataclass
class GoalTaskCompleted(Event):
    name: ClassVar[str] = "goal.task_completed"
    goal_id: str
    task_id: str
    summary: str
    done: int
    total: int
    goal_complete: bool

    def payload(self) -> dict:
        return {
            "goalId": self.goal_id,
            "taskId": self.task_id,
            "summary": self.summary,
            "progress": {"done": self.done, "total": self.total},
            "goalComplete": self.goal_complete,
        }


@dataclass
class GoalCompleted(Event):
    name: ClassVar[str] = "goal.completed"
    goal_id: str
    condo_id: str
    phase: Optional[int] = None

    def payload(self) -> dict:
        return {"goalId": self.goal_id, "condoId": self.condo_id, "phase": self.phase}


@dataclass
class RolesUpdated(Event):
    name: ClassVar[str] = "roles.updated"
    role: str
    agent_id: Optional[str] = None  # None when the mapping was removed
    previous_agent: Optional[str] = None

    def payload(self) -> dict:
        return {"role": self.role, "agentId": self.agent_id, "previousAgent": self.previous_agent}


Listener = Callable[[Event], None]


class EventBus:
    """Observer registry. Listeners subscribe to one event type or to all."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: list[tuple[Optional[type], Listener]] = []

    def subscribe(self, callback: Listener, event_type: Optional[type] = None) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        entry = (event_type, callback)
        with self._lock:
            self._listeners.append(entry)

        def unsubscribe():
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return unsubscribe

    def publish(self, event: Event):
        with self._lock:
            listeners = list(self._listeners)
        for event_type, callback in listeners:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                callback(event)
            except Exception as e:
                ui.print_listener_error(event.name, e)


class RecordingListener:
    """Collects every event it sees. Handy for tests and the CLI summary."""

    def __init__(self):
        self.events: list[Event] = []

    def __call__(self, event: Event):
        self.events.append(event)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


class EventBroadcaster:
    """
    Forwards bus events to connected websocket clients.

    Disabled until enable() is called with the server's event loop. Safe to
    publish from any thread; sends are scheduled onto that loop.
    """

    def __init__(self):
        self._enabled = False
        self._clients: Set[Any] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def enable(self, loop: asyncio.AbstractEventLoop):
        self._enabled = True
        self._loop = loop

    def disable(self):
        self._enabled = False
        self._clients.clear()
        self._loop = None

    def add_client(self, client: Any):
        self._clients.add(client)

    def remove_client(self, client: Any):
        self._clients.discard(client)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(self.emit)

    def emit(self, event: Event):
        if not self._enabled or not self._clients or not self._loop:
            return

        message = json.dumps({
            "type": "event",
            "event": event.name,
            "timestamp": time.time(),
            "data": event.payload(),
        })

        for client in list(self._clients):
            try:
                asyncio.run_coroutine_threadsafe(client.send(message), self._loop)
            except Exception:
                # Loop closed or client gone
                self._clients.discard(client)
