"""Builds the payload handed to a freshly spawned task session."""

from typing import Optional

from .models import Condo, Goal, Task, TaskStatus


def get_task_prompt(task: Task, goal: Goal, condo: Optional[Condo] = None) -> str:
    """Render the task assignment as markdown for the agent."""
    lines = []
    if condo:
        lines.append(f"# Condo: {condo.name}")
    lines.append(f"## Goal: {goal.title}")
    if goal.description:
        lines.append(goal.description)
    lines.append("")
    lines.append("## Tasks")
    for t in goal.tasks:
        mark = "x" if t.status == TaskStatus.DONE else " "
        you = "  <- your task" if t.id == task.id else ""
        lines.append(f"- [{mark}] {t.text}{you}")

    if task.depends_on:
        lines.append("")
        lines.append("## Dependencies")
        for dep_id in task.depends_on:
            dep = goal.get_task(dep_id)
            if dep:
                summary = f" ({dep.summary})" if dep.summary else ""
                lines.append(f"  - [{dep.status.value}] {dep_id}: {dep.text}{summary}")

    lines.append("")
    lines.append("## Your Assignment")
    lines.append(task.text)
    if task.description:
        lines.append("")
        lines.append(task.description)
    if task.last_error:
        lines.append("")
        lines.append(f"Previous attempt ended early: {task.last_error}")

    lines.append("")
    lines.append(f"Autonomy: {goal.autonomy_mode.value}")
    lines.append(
        f"When finished, call goal_update with taskId={task.id} and status=done, "
        f"including a short summary."
    )
    return "\n".join(lines)


def build_task_context(task: Task, goal: Goal, condo: Optional[Condo], agent_id: str) -> dict:
    """Opaque payload forwarded verbatim to the session spawner."""
    return {
        "taskId": task.id,
        "text": task.text,
        "description": task.description,
        "goalId": goal.id,
        "goalTitle": goal.title,
        "goalDescription": goal.description,
        "condoId": goal.condo_id,
        "condoName": condo.name if condo else None,
        "autonomyMode": goal.autonomy_mode.value,
        "assignedRole": task.assigned_agent or None,
        "agentId": agent_id,
        "retryCount": task.retry_count,
        "dependencies": [
            {"taskId": d.id, "status": d.status.value, "summary": d.summary}
            for d in (goal.get_task(dep_id) for dep_id in task.depends_on)
            if d is not None
        ],
        "prompt": get_task_prompt(task, goal, condo),
    }
