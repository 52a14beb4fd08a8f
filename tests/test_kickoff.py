"""Tests for the kickoff engine."""

import pytest

from clawcondos.errors import ValidationError
from clawcondos.events import GoalKickedOff
from clawcondos.models import TaskStatus
from conftest import make_goal, make_task


def test_kickoff_spawns_only_unblocked_tasks(runtime, seed, spawner, store):
    seed(make_goal(tasks=[make_task("t1"), make_task("t2", depends_on=["t1"])]))

    result = runtime.kickoff.kickoff("goal_1")

    assert result.task_ids == ["t1"]
    goal = store.load().get_goal("goal_1")
    assert goal.get_task("t1").status == TaskStatus.IN_PROGRESS
    assert goal.get_task("t1").session_key == result.spawned_sessions[0].session_key
    assert goal.get_task("t2").status == TaskStatus.PENDING
    assert spawner.started_keys == [result.spawned_sessions[0].session_key]


def test_kickoff_is_idempotent(runtime, seed, spawner):
    """Second kickoff with no completions in between spawns nothing."""
    seed(make_goal(tasks=[make_task("t1"), make_task("t2")]))

    first = runtime.kickoff.kickoff("goal_1")
    second = runtime.kickoff.kickoff("goal_1")

    assert first.task_ids == ["t1", "t2"]
    assert second.spawned_sessions == []
    assert len(spawner.started) == 2


def test_session_is_bound_and_saved_before_spawn(runtime, seed, store):
    """The spawner must already see the task in-progress in the store."""
    seed(make_goal(tasks=[make_task("t1")]))
    seen = {}

    def start_session(session_key, context):
        task = store.load().get_goal("goal_1").get_task("t1")
        seen["status"] = task.status
        seen["key"] = task.session_key

    runtime.spawner.start_session = start_session
    result = runtime.kickoff.kickoff("goal_1")

    assert seen["status"] == TaskStatus.IN_PROGRESS
    assert seen["key"] == result.spawned_sessions[0].session_key


def test_concurrent_kickoff_during_slow_spawn_spawns_nothing_new(runtime, seed):
    """A kickoff re-entering while the first one's spawn is in flight sees zero eligible tasks."""
    seed(make_goal(tasks=[make_task("t1")]))
    nested = []

    def start_session(session_key, context):
        if not nested:
            nested.append(runtime.kickoff.kickoff("goal_1"))

    runtime.spawner.start_session = start_session
    outer = runtime.kickoff.kickoff("goal_1")

    assert outer.task_ids == ["t1"]
    assert nested[0].spawned_sessions == []


def test_spawn_failure_leaves_task_in_progress(runtime, seed, spawner, store):
    seed(make_goal(tasks=[make_task("t1")]))
    spawner.fail_all = True

    result = runtime.kickoff.kickoff("goal_1")

    spawned = result.spawned_sessions[0]
    assert not spawned.started
    assert "mock refused" in spawned.error
    task = store.load().get_goal("goal_1").get_task("t1")
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.session_key == spawned.session_key
    assert task.retry_count == 0
    assert "Session start failed" in task.last_error
    assert task.started_at_ms is None


def test_successful_spawn_is_marked_started(runtime, seed, store):
    seed(make_goal(tasks=[make_task("t1")]))

    runtime.kickoff.kickoff("goal_1")

    assert store.load().get_goal("goal_1").get_task("t1").started_at_ms is not None


def test_one_failed_spawn_does_not_stop_the_others(runtime, seed, spawner, store):
    seed(make_goal(tasks=[make_task("t1"), make_task("t2")]))
    original = spawner.start_session
    calls = []

    def flaky(session_key, context):
        calls.append(session_key)
        if len(calls) == 1:
            raise RuntimeError("gateway hiccup")
        original(session_key, context)

    spawner.start_session = flaky
    result = runtime.kickoff.kickoff("goal_1")

    assert [s.started for s in result.spawned_sessions] == [False, True]
    goal = store.load().get_goal("goal_1")
    assert all(t.status == TaskStatus.IN_PROGRESS for t in goal.tasks)


def test_kickoff_records_session_index_and_marker(runtime, seed, store):
    seed(make_goal(tasks=[make_task("t1")]))

    result = runtime.kickoff.kickoff("goal_1")

    document = store.load()
    key = result.spawned_sessions[0].session_key
    assert document.session_index[key] == {"goalId": "goal_1", "taskId": "t1"}
    assert key in document.get_goal("goal_1").sessions
    assert document.get_goal("goal_1").kicked_off_at_ms is not None


def test_session_key_uses_resolved_agent(runtime, seed):
    seed(make_goal(tasks=[make_task("t1", assigned_agent="backend"), make_task("t2")]))

    result = runtime.kickoff.kickoff("goal_1")

    keys = [s.session_key for s in result.spawned_sessions]
    assert keys[0].startswith("agent:backend:subagent:")
    assert keys[1].startswith("agent:main:subagent:")


def test_context_is_forwarded_to_spawner(runtime, seed, spawner):
    seed(make_goal(tasks=[make_task("t1", description="details", assigned_agent="designer")]))

    runtime.kickoff.kickoff("goal_1")

    _, context = spawner.started[0]
    assert context["taskId"] == "t1"
    assert context["description"] == "details"
    assert context["goalTitle"] == "Goal goal_1"
    assert context["assignedRole"] == "designer"
    assert context["autonomyMode"] == "full"
    assert "Do t1" in context["prompt"]


def test_kickoff_event_lists_exactly_spawned_tasks(runtime, seed, events):
    seed(make_goal(tasks=[make_task("t1"), make_task("t2", depends_on=["t1"])]))

    runtime.kickoff.kickoff("goal_1")
    runtime.kickoff.kickoff("goal_1")

    kickoffs = events.of_type(GoalKickedOff)
    assert len(kickoffs) == 1
    assert [s["taskId"] for s in kickoffs[0].spawned] == ["t1"]


def test_first_time_only_skips_goals_already_kicked_off(runtime, seed, store):
    seed(make_goal(tasks=[make_task("t1"), make_task("t2", depends_on=["t1"])]))
    runtime.kickoff.kickoff("goal_1")
    with store.transaction() as document:
        document.get_goal("goal_1").get_task("t1").complete()

    result = runtime.kickoff.kickoff("goal_1", first_time_only=True)

    assert result.spawned_sessions == []


def test_kickoff_unknown_goal_raises(runtime):
    with pytest.raises(ValidationError):
        runtime.kickoff.kickoff("nope")
    with pytest.raises(ValidationError):
        runtime.kickoff.kickoff("")
