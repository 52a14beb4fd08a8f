"""Dependency resolution for tasks within a goal, and phase ordering across goals."""

from .models import Goal, Task, TaskStatus


def eligible_tasks(goal: Goal) -> list[Task]:
    """
    Tasks that can be spawned right now, in declaration order.

    A task is eligible when it is pending and every id in its dependsOn list
    names a done task in the same goal. Unknown ids never count as done.
    """
    done_ids = {t.id for t in goal.tasks if t.status == TaskStatus.DONE}
    return [
        task for task in goal.tasks
        if task.status == TaskStatus.PENDING
        and all(dep in done_ids for dep in task.depends_on)
    ]


def dependency_waves(goal: Goal) -> tuple[list[list[Task]], list[Task]]:
    """
    Group the goal's unfinished tasks into execution waves.
    Tasks in the same wave can run in parallel.

    Returns (waves, unschedulable). Tasks caught in a cycle or depending on
    an unknown id end up in unschedulable.
    """
    waves = []
    completed_ids = {t.id for t in goal.tasks if t.status == TaskStatus.DONE}
    remaining = [t for t in goal.tasks if t.status != TaskStatus.DONE]

    while remaining:
        wave = [t for t in remaining if all(dep in completed_ids for dep in t.depends_on)]
        if not wave:
            break

        waves.append(wave)
        for task in wave:
            completed_ids.add(task.id)
            remaining.remove(task)

    return waves, remaining


def phase_candidates(goals: list[Goal], after_phase: int = None) -> list[Goal]:
    """
    Goals of one condo that the phase cascade may kick off.

    A goal qualifies once it has a phase, is not complete itself, and every
    goal with a strictly lower phase is complete. Goals without a phase are
    neither candidates nor blockers. With after_phase set, only goals in a
    later phase are considered.
    """
    phased = [g for g in goals if g.phase is not None]
    candidates = []
    for goal in phased:
        if goal.is_complete:
            continue
        if after_phase is not None and goal.phase <= after_phase:
            continue
        earlier = [g for g in phased if g.phase < goal.phase]
        if all(g.is_complete for g in earlier):
            candidates.append(goal)
    return sorted(candidates, key=lambda g: g.phase)
