"""
RPC method table.

Every method takes a params dict and returns a dict. Nothing raises across
this boundary: errors come back as {"ok": False, "error": message}.
"""

import os
from functools import wraps
from typing import Callable, Optional

from . import ui
from .errors import ClawCondosError, ValidationError
from .events import GoalTaskCompleted, RolesUpdated
from .models import AutonomyMode, Condo, Goal, Task, TaskStatus, DEFAULT_MAX_RETRIES, now_ms
from .roles import (
    DEFAULT_PM_SESSION,
    get_agent_for_role,
    get_agent_label,
    get_default_roles,
    get_pm_session,
    list_agents,
    list_role_assignments,
)
from .supervisor import collect_condo_session_keys

# Statuses an agent or operator may report through goal_update
UPDATE_STATUSES = {"done", "in-progress", "blocked", "waiting", "pending"}

# Free-form settings config.set may write besides pmSession and agentRoles
CONFIG_FIELDS = {"defaultModel", "defaultAutonomy", "notifyOnComplete", "notifyOnBlocked"}


def rpc_method(name: str):
    """Convert any exception into a structured error response."""
    def decorator(fn: Callable[[dict], dict]) -> Callable[[dict], dict]:
        @wraps(fn)
        def wrapper(params: Optional[dict] = None) -> dict:
            try:
                result = fn(params or {})
            except ClawCondosError as e:
                ui.print_rpc_error(name, str(e))
                return {"ok": False, "error": str(e)}
            except Exception as e:
                ui.console.print(f"[{ui.ERROR}]{name} crashed: {e}[/]")
                return {"ok": False, "error": f"Internal error: {e}"}
            return {"ok": True, **result}
        wrapper.rpc_name = name
        return wrapper
    return decorator


def _require(params: dict, key: str) -> str:
    value = params.get(key)
    if value is None or value == "":
        raise ValidationError(f"{key} is required")
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _optional_int(params: dict, key: str) -> Optional[int]:
    value = params.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    return value


def _parse_task(store, spec) -> Task:
    if isinstance(spec, str):
        spec = {"text": spec}
    if not isinstance(spec, dict) or not spec.get("text"):
        raise ValidationError("each task needs text")
    depends_on = spec.get("dependsOn") or []
    if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
        raise ValidationError("dependsOn must be a list of task ids")
    return Task(
        id=spec.get("id") or store.new_id("task"),
        text=spec["text"],
        description=spec.get("description") or "",
        depends_on=list(depends_on),
        assigned_agent=spec.get("assignedAgent") or "",
    )


def create_handlers(runtime) -> dict[str, Callable[[dict], dict]]:
    store = runtime.store
    defaults = runtime.config.goals

    def abort_all(keys: list[str]) -> tuple[int, list[dict]]:
        aborted, failures = 0, []
        for key in keys:
            try:
                runtime.spawner.abort_session(key)
                aborted += 1
            except Exception as e:
                failures.append({"sessionKey": key, "error": str(e)})
        return aborted, failures

    @rpc_method("condos.create")
    def condos_create(params):
        name = _require(params, "name")
        with store.transaction() as document:
            condo = Condo(
                id=params.get("id") or store.new_id("condo"),
                name=name,
                description=params.get("description") or "",
                pm_session=params.get("pmSession"),
            )
            if document.get_condo(condo.id):
                raise ValidationError(f"Condo {condo.id} already exists")
            document.condos.append(condo)
            if condo.pm_session:
                document.session_condo_index[condo.pm_session] = condo.id
        return {"condo": condo.to_dict()}

    @rpc_method("condos.list")
    def condos_list(params):
        document = store.load()
        return {"condos": [c.to_dict() for c in document.condos]}

    @rpc_method("goals.create")
    def goals_create(params):
        condo_id = _require(params, "condoId")
        title = _require(params, "title")
        phase = _optional_int(params, "phase")
        max_retries = _optional_int(params, "maxRetries")
        if max_retries is not None and max_retries < 0:
            raise ValidationError("maxRetries must not be negative")
        if max_retries is None and defaults.max_retries != DEFAULT_MAX_RETRIES:
            max_retries = defaults.max_retries
        try:
            autonomy = AutonomyMode(params.get("autonomyMode") or defaults.autonomy_mode)
        except ValueError:
            raise ValidationError(f"Unknown autonomyMode: {params.get('autonomyMode')}")

        with store.transaction() as document:
            if document.get_condo(condo_id) is None:
                raise ValidationError("Condo not found")
            goal = Goal(
                id=params.get("id") or store.new_id("goal"),
                condo_id=condo_id,
                title=title,
                description=params.get("description") or "",
                phase=phase,
                max_retries=max_retries,
                autonomy_mode=autonomy,
            )
            if document.get_goal(goal.id):
                raise ValidationError(f"Goal {goal.id} already exists")
            for spec in params.get("tasks") or []:
                try:
                    goal.add_task(_parse_task(store, spec))
                except ValueError as e:
                    raise ValidationError(str(e)) from e
            document.goals.append(goal)
        return {"goal": goal.to_dict()}

    @rpc_method("goals.addTask")
    def goals_add_task(params):
        goal_id = _require(params, "goalId")
        task = _parse_task(store, params)
        with store.transaction() as document:
            goal = document.get_goal(goal_id)
            if goal is None:
                raise ValidationError("Goal not found")
            try:
                goal.add_task(task)
            except ValueError as e:
                raise ValidationError(str(e)) from e
        return {"task": task.to_dict()}

    @rpc_method("goals.get")
    def goals_get(params):
        goal_id = _require(params, "goalId")
        goal = store.load().get_goal(goal_id)
        if goal is None:
            raise ValidationError("Goal not found")
        return {"goal": goal.to_dict()}

    @rpc_method("goals.list")
    def goals_list(params):
        document = store.load()
        goals = document.goals
        if params.get("condoId"):
            goals = document.goals_for_condo(params["condoId"])
        return {"goals": [g.to_dict() for g in goals]}

    @rpc_method("goals.kickoff")
    def goals_kickoff(params):
        goal_id = _require(params, "goalId")
        return runtime.kickoff.kickoff(goal_id).to_dict()

    @rpc_method("goal_update")
    def goal_update(params):
        task_id = _require(params, "taskId")
        status = _require(params, "status")
        if status not in UPDATE_STATUSES:
            raise ValidationError(
                f"status must be one of {', '.join(sorted(UPDATE_STATUSES))}"
            )
        summary = params.get("summary") or ""
        goal_id = params.get("goalId")

        completed_event = None
        requeued = False
        with store.transaction() as document:
            if goal_id:
                goal = document.get_goal(goal_id)
                if goal is None:
                    raise ValidationError("Goal not found")
                task = goal.get_task(task_id)
            else:
                goal, task = document.find_task(task_id)
            if task is None:
                raise ValidationError("Task not found")

            previous = task.status
            if status == "done":
                if previous != TaskStatus.DONE:
                    task.complete(summary)
                    goal.touch()
                    progress = goal.progress
                    completed_event = GoalTaskCompleted(
                        goal.id, task.id, summary, progress["done"], progress["total"], goal.is_complete
                    )
            elif status == "pending":
                if previous == TaskStatus.DONE:
                    raise ValidationError("Task is already done")
                if previous != TaskStatus.PENDING:
                    task.requeue(count_retry=False)
                    goal.touch()
                    requeued = True
            else:
                if previous in (TaskStatus.DONE, TaskStatus.FAILED, TaskStatus.PENDING):
                    raise ValidationError(
                        f"Cannot report {status} for a {previous.value} task"
                    )
                task.set_status(TaskStatus(status))
                if summary:
                    task.summary = summary
                goal.touch()
            result = {"goalId": goal.id, "task": task.to_dict()}

        if completed_event is not None:
            ui.print_task_complete(task_id, completed_event.goal_complete)
            runtime.bus.publish(completed_event)
            runtime.cascade.task_completed(completed_event.goal_id, task_id)
        elif requeued:
            runtime.cascade.session_ended(result["goalId"])
        return result

    @rpc_method("agent_end")
    def agent_end(params):
        session_key = _require(params, "sessionKey")
        success = params.get("success")
        if success is not None and not isinstance(success, bool):
            raise ValidationError("success must be a boolean")
        return runtime.supervisor.agent_ended(session_key, success).to_dict()

    @rpc_method("sessions.killForGoal")
    def kill_for_goal(params):
        goal_id = _require(params, "goalId")
        if store.load().get_goal(goal_id) is None:
            raise ValidationError("Goal not found")
        runtime.cascade.cancel(goal_id)
        reset, keys = runtime.supervisor.release_goal(goal_id)
        aborted, failures = abort_all(keys)
        ui.print_kill_summary(f"goal {goal_id}", len(keys), aborted, reset)
        return {"goalId": goal_id, "total": len(keys), "aborted": aborted, "failures": failures, "reset": reset}

    @rpc_method("sessions.killForCondo")
    def kill_for_condo(params):
        condo_id = _require(params, "condoId")
        document = store.load()
        if document.get_condo(condo_id) is None:
            raise ValidationError("Condo not found")
        for goal in document.goals_for_condo(condo_id):
            runtime.cascade.cancel(goal.id)
        reset, keys = runtime.supervisor.release_condo(condo_id)
        aborted, failures = abort_all(keys)
        ui.print_kill_summary(f"condo {condo_id}", len(keys), aborted, reset)
        return {"condoId": condo_id, "total": len(keys), "aborted": aborted, "failures": failures, "reset": reset}

    @rpc_method("sessions.listForCondo")
    def list_for_condo(params):
        condo_id = _require(params, "condoId")
        document = store.load()
        if document.get_condo(condo_id) is None:
            raise ValidationError("Condo not found")
        sessions = []
        for goal in document.goals_for_condo(condo_id):
            for task in goal.tasks:
                if task.session_key:
                    sessions.append({
                        "sessionKey": task.session_key,
                        "goalId": goal.id,
                        "goalTitle": goal.title,
                        "taskId": task.id,
                        "taskText": task.text,
                        "taskStatus": task.status.value,
                    })
        for key in collect_condo_session_keys(document, condo_id):
            if key in document.session_condo_index or key == get_pm_session(document, condo_id):
                if not any(s["sessionKey"] == key for s in sessions):
                    sessions.append({"sessionKey": key, "kind": "pm"})
        return {"condoId": condo_id, "sessions": sessions, "count": len(sessions)}

    def set_role(document, role: str, agent_id: Optional[str]) -> Optional[RolesUpdated]:
        """Map or unmap a role inside a transaction. Returns the event to publish, if any."""
        roles = document.config.setdefault("agentRoles", {})
        previous = roles.get(role)
        if agent_id:
            roles[role] = agent_id
        else:
            roles.pop(role, None)
        if not roles:
            del document.config["agentRoles"]
        if previous == agent_id:
            return None
        document.config["updatedAtMs"] = now_ms()
        return RolesUpdated(role, agent_id, previous)

    def publish_role_events(events: list):
        for event in events:
            ui.print_role_updated(event.role, event.agent_id)
            runtime.bus.publish(event)

    @rpc_method("roles.assign")
    def roles_assign(params):
        agent_id = _require(params, "agentId")
        role = _require(params, "role").lower()
        with store.transaction() as document:
            event = set_role(document, role, agent_id)
            label = get_agent_label(document, agent_id)
        publish_role_events([event] if event else [])
        return {"role": role, "agentId": agent_id, **label}

    @rpc_method("roles.unassign")
    def roles_unassign(params):
        role = _require(params, "role").lower()
        with store.transaction() as document:
            previous = (document.config.get("agentRoles") or {}).get(role)
            event = set_role(document, role, None) if previous else None
        publish_role_events([event] if event else [])
        result = {"role": role, "previousAgent": previous}
        if previous is None:
            result["note"] = "Role was not assigned"
        return result

    @rpc_method("roles.list")
    def roles_list(params):
        document = store.load()
        return {"agents": list_agents(document), "roles": list_role_assignments(document)}

    @rpc_method("roles.setLabel")
    def roles_set_label(params):
        agent_id = _require(params, "agentId")
        emoji = params.get("emoji")
        name = params.get("name")
        if not emoji and not name:
            raise ValidationError("emoji or name is required")
        with store.transaction() as document:
            labels = document.config.setdefault("agentLabels", {})
            entry = labels.setdefault(agent_id, {})
            if emoji:
                entry["emoji"] = emoji
            if name:
                entry["name"] = name
            document.config["updatedAtMs"] = now_ms()
            label = get_agent_label(document, agent_id)
        return {"agentId": agent_id, **label}

    @rpc_method("config.get")
    def config_get(params):
        document = store.load()
        config = dict(document.config)
        config["agentRoles"] = config.get("agentRoles") or {}
        defaults = get_default_roles()
        default_pm = os.environ.get("CLAWCONDOS_PM_SESSION") or DEFAULT_PM_SESSION
        return {
            "config": config,
            "defaults": {"agentRoles": defaults, "pmSession": default_pm},
            "effective": {
                "agentRoles": {**defaults, **config["agentRoles"]},
                "pmSession": get_pm_session(document),
            },
        }

    @rpc_method("config.set")
    def config_set(params):
        unknown = set(params) - CONFIG_FIELDS - {"pmSession", "agentRoles"}
        if unknown:
            raise ValidationError(f"Unknown config field(s): {', '.join(sorted(unknown))}")
        agent_roles = params.get("agentRoles")
        if agent_roles is not None and not isinstance(agent_roles, dict):
            raise ValidationError("agentRoles must be an object")
        pm_session = params.get("pmSession")
        if pm_session is not None and not isinstance(pm_session, str):
            raise ValidationError("pmSession must be a string")

        events = []
        with store.transaction() as document:
            config = document.config
            if "pmSession" in params:
                if pm_session:
                    config["pmSession"] = pm_session
                else:
                    config.pop("pmSession", None)
            for role, agent_id in (agent_roles or {}).items():
                if agent_id is not None and not isinstance(agent_id, str):
                    raise ValidationError(f"agentRoles.{role} must be a string")
                event = set_role(document, role.lower(), agent_id or None)
                if event:
                    events.append(event)
            for key in CONFIG_FIELDS & set(params):
                if params[key] is None:
                    config.pop(key, None)
                else:
                    config[key] = params[key]
            config["updatedAtMs"] = now_ms()
            result = {"config": dict(config)}
        publish_role_events(events)
        return result

    @rpc_method("config.getRole")
    def config_get_role(params):
        role = _require(params, "role").lower()
        document = store.load()
        return {"role": role, **list_role_assignments(document).get(role, {
            "agentId": get_agent_for_role(document, role),
            "configured": None,
            "default": role,
        })}

    @rpc_method("config.listRoles")
    def config_list_roles(params):
        return {"roles": list_role_assignments(store.load())}

    methods = [
        condos_create, condos_list,
        goals_create, goals_add_task, goals_get, goals_list, goals_kickoff,
        goal_update, agent_end,
        kill_for_goal, kill_for_condo, list_for_condo,
        roles_assign, roles_unassign, roles_list, roles_set_label,
        config_get, config_set, config_get_role, config_list_roles,
    ]
    return {m.rpc_name: m for m in methods}
