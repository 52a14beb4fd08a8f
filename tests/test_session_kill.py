"""Tests for killing every session of a goal or condo."""

from clawcondos.handlers import create_handlers
from clawcondos.supervisor import collect_condo_session_keys, collect_goal_session_keys
from clawcondos.models import Condo, Document, TaskStatus
from conftest import make_goal, make_task


def test_collect_goal_session_keys_dedupes():
    goal = make_goal(tasks=[
        make_task("t1", session_key="session:c", status=TaskStatus.IN_PROGRESS),
        make_task("t2"),
        make_task("t3", session_key="session:a", status=TaskStatus.BLOCKED),
    ])
    goal.sessions = ["session:a", "session:b"]

    assert collect_goal_session_keys(goal) == ["session:a", "session:b", "session:c"]


def test_collect_condo_session_keys_stays_inside_condo():
    document = Document(
        condos=[Condo(id="condo_1", name="One"), Condo(id="condo_2", name="Two")],
        goals=[
            make_goal("g1", condo_id="condo_1", tasks=[
                make_task("t1", session_key="sk:task1", status=TaskStatus.IN_PROGRESS),
            ]),
            make_goal("g2", condo_id="condo_2"),
        ],
        session_condo_index={"sk:pm": "condo_1", "sk:other": "condo_2"},
    )
    document.goals[0].sessions = ["sk:goal1"]
    document.goals[1].sessions = ["sk:goal2"]

    keys = collect_condo_session_keys(document, "condo_1")

    assert set(keys) == {"sk:pm", "sk:goal1", "sk:task1"}


def test_kill_for_goal_resets_only_in_progress(runtime, seed, store, spawner):
    """Scenario: one in-progress and one done task -> only the in-progress one resets."""
    seed(make_goal(tasks=[make_task("t1"), make_task("t2")]))
    handlers = create_handlers(runtime)
    handlers["goals.kickoff"]({"goalId": "goal_1"})
    handlers["goal_update"]({"taskId": "t2", "status": "done"})
    done_before = store.load().get_goal("goal_1").get_task("t2").to_dict()

    result = handlers["sessions.killForGoal"]({"goalId": "goal_1"})

    assert result["ok"]
    assert result["total"] == 2
    assert result["aborted"] == 2
    assert result["reset"] == 1
    goal = store.load().get_goal("goal_1")
    assert goal.get_task("t1").status == TaskStatus.PENDING
    assert goal.get_task("t1").session_key is None
    assert goal.get_task("t1").retry_count == 0
    assert goal.get_task("t2").to_dict() == done_before
    assert len(spawner.aborted) == 2


def test_kill_cancels_pending_cascade(runtime, seed, store, scheduler):
    seed(make_goal(tasks=[make_task("t1"), make_task("t2"), make_task("t3", depends_on=["t1"])]))
    handlers = create_handlers(runtime)
    handlers["goals.kickoff"]({"goalId": "goal_1"})
    handlers["goal_update"]({"taskId": "t1", "status": "done"})

    handlers["sessions.killForGoal"]({"goalId": "goal_1"})
    scheduler.run_all()

    goal = store.load().get_goal("goal_1")
    assert goal.get_task("t2").status == TaskStatus.PENDING
    assert goal.get_task("t3").status == TaskStatus.PENDING


def test_kill_survives_abort_failures(runtime, seed, store, spawner):
    seed(make_goal(tasks=[make_task("t1")]))
    handlers = create_handlers(runtime)
    key = handlers["goals.kickoff"]({"goalId": "goal_1"})["spawnedSessions"][0]["sessionKey"]
    spawner.abort_failures.add(key)

    result = handlers["sessions.killForGoal"]({"goalId": "goal_1"})

    assert result["ok"]
    assert result["aborted"] == 0
    assert result["failures"][0]["sessionKey"] == key
    assert store.load().get_goal("goal_1").get_task("t1").status == TaskStatus.PENDING


def test_session_end_after_kill_is_ignored(runtime, seed, store, spawner, scheduler):
    seed(make_goal(tasks=[make_task("t1")]))
    handlers = create_handlers(runtime)
    key = handlers["goals.kickoff"]({"goalId": "goal_1"})["spawnedSessions"][0]["sessionKey"]
    handlers["sessions.killForGoal"]({"goalId": "goal_1"})

    result = handlers["agent_end"]({"sessionKey": key, "success": False})
    scheduler.run_all()

    assert result["action"] == "no-action"
    task = store.load().get_goal("goal_1").get_task("t1")
    assert task.status == TaskStatus.PENDING
    assert task.session_key is None
    assert task.retry_count == 0
    assert spawner.started_keys == [key]


def test_kill_aborts_session_bound_while_killing(runtime, seed, store, spawner):
    seed(make_goal(tasks=[make_task("t1")]))
    handlers = create_handlers(runtime)
    handlers["goals.kickoff"]({"goalId": "goal_1"})
    handlers["goals.addTask"]({"goalId": "goal_1", "id": "t2", "text": "Late arrival"})
    cancel = runtime.cascade.cancel

    def cancel_then_kickoff(goal_id):
        # A cascade that was already running binds t2 before the reset
        cancelled = cancel(goal_id)
        runtime.kickoff.kickoff(goal_id)
        return cancelled

    runtime.cascade.cancel = cancel_then_kickoff
    late_key = None

    def remember(session_key, context):
        nonlocal late_key
        if context["taskId"] == "t2":
            late_key = session_key

    spawner.start_session = remember
    result = handlers["sessions.killForGoal"]({"goalId": "goal_1"})

    assert late_key is not None
    assert late_key in spawner.aborted
    assert result["total"] == 2
    assert result["reset"] == 2
    assert store.load().get_goal("goal_1").get_task("t2").session_key is None


def test_kill_for_unknown_goal(runtime):
    result = create_handlers(runtime)["sessions.killForGoal"]({"goalId": "nonexistent"})

    assert result == {"ok": False, "error": "Goal not found"}


def test_kill_for_condo_covers_every_goal(runtime, seed, store, spawner):
    seed(
        make_goal("g1", tasks=[make_task("a")]),
        make_goal("g2", tasks=[make_task("b")]),
    )
    with store.transaction() as document:
        document.session_condo_index["sk:pm"] = "condo_1"
    handlers = create_handlers(runtime)
    handlers["goals.kickoff"]({"goalId": "g1"})
    handlers["goals.kickoff"]({"goalId": "g2"})

    result = handlers["sessions.killForCondo"]({"condoId": "condo_1"})

    assert result["ok"]
    assert result["total"] == 3
    assert result["aborted"] == 3
    assert result["reset"] == 2
    assert "sk:pm" in spawner.aborted
    document = store.load()
    assert all(t.status == TaskStatus.PENDING for g in document.goals for t in g.tasks)


def test_list_for_condo(runtime, seed, store):
    seed(make_goal("g1", tasks=[make_task("t1"), make_task("t2", depends_on=["t1"])]))
    with store.transaction() as document:
        document.session_condo_index["sk:pm"] = "condo_1"
    handlers = create_handlers(runtime)
    handlers["goals.kickoff"]({"goalId": "g1"})

    result = handlers["sessions.listForCondo"]({"condoId": "condo_1"})

    assert result["ok"]
    assert result["count"] == 2
    task_entry = next(s for s in result["sessions"] if s.get("taskId") == "t1")
    assert task_entry["taskStatus"] == "in-progress"
    assert any(s["sessionKey"] == "sk:pm" for s in result["sessions"])
