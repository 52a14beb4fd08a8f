"""Shared fixtures: an in-memory runtime with a mock spawner and a manual clock."""

import pytest

from clawcondos.events import RecordingListener
from clawcondos.models import Condo, Goal, Task, TaskStatus
from clawcondos.runtime import Runtime
from clawcondos.scheduler import ManualScheduler
from clawcondos.sessions import MockSessionSpawner
from clawcondos.store import MemoryStore


@pytest.fixture
def spawner():
    return MockSessionSpawner()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def runtime(store, spawner, scheduler):
    rt = Runtime(store, spawner, scheduler=scheduler)
    yield rt
    rt.shutdown()


@pytest.fixture
def events(runtime):
    listener = RecordingListener()
    runtime.bus.subscribe(listener)
    return listener


@pytest.fixture
def seed(store):
    """Insert condos and goals into the store. Returns the saved goals."""
    def _seed(*goals, condo_id="condo_1"):
        with store.transaction() as document:
            if document.get_condo(condo_id) is None:
                document.condos.append(Condo(id=condo_id, name="Test Condo"))
            for goal in goals:
                document.goals.append(goal)
        return goals
    return _seed


def make_goal(goal_id="goal_1", tasks=None, condo_id="condo_1", **kwargs) -> Goal:
    return Goal(id=goal_id, condo_id=condo_id, title=f"Goal {goal_id}", tasks=tasks or [], **kwargs)


def make_task(task_id, depends_on=None, status=TaskStatus.PENDING, **kwargs) -> Task:
    return Task(id=task_id, text=f"Do {task_id}", depends_on=depends_on or [], status=status, **kwargs)
