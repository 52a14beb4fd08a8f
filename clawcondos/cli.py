"""CLI interface for clawcondos."""

import json
from pathlib import Path
from typing import Optional

import typer

from . import ui
from .config import DEFAULT_CONFIG_FILE, ClawCondosConfig, load_config
from .errors import ConfigError
from .handlers import create_handlers
from .resolver import dependency_waves
from .runtime import build_runtime
from .scheduler import ManualScheduler
from .sessions import MockSessionSpawner


app = typer.Typer(
    name="clawcondos",
    help="Goal and task orchestration for agent gateway sessions",
    no_args_is_help=True,
)

STATE = {"config": None, "dry_run": False, "json": False}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, "--config", help=f"Config file (default: nearest {DEFAULT_CONFIG_FILE})"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Don't contact the gateway; sessions are only recorded"),
    as_json: bool = typer.Option(False, "--json", help="Print raw RPC results as JSON"),
):
    ui.set_verbose(verbose)
    STATE["config"] = config
    STATE["dry_run"] = dry_run
    STATE["json"] = as_json


def get_config() -> ClawCondosConfig:
    try:
        return load_config(STATE["config"])
    except ConfigError as e:
        ui.console.print(f"[{ui.ERROR}]{e}[/]")
        raise typer.Exit(1)


def call(method: str, params: dict) -> dict:
    """
    Run one RPC method in-process, then let any cascade it queued finish.

    One-shot commands use a manual scheduler so deferred kickoffs still
    happen before the process exits.
    """
    config = get_config()
    spawner = MockSessionSpawner() if STATE["dry_run"] else None
    runtime = build_runtime(config, spawner=spawner, scheduler=ManualScheduler())
    try:
        result = create_handlers(runtime)[method](params)
        runtime.drain()
    finally:
        runtime.shutdown()

    if STATE["json"]:
        ui.console.print_json(json.dumps(result))
    if not result.get("ok"):
        if not STATE["json"]:
            ui.console.print(f"[{ui.ERROR}]{result.get('error')}[/]")
        raise typer.Exit(1)
    return result


def _echo(message: str):
    if not STATE["json"]:
        ui.console.print(message)


# ============================================================================
# COMMANDS
# ============================================================================

@app.command()
def init(
    directory: Path = typer.Argument(Path("."), help="Where to write the config"),
    store: str = typer.Option(".clawcondos.json", "--store", help="Store file (.json or .yaml)"),
    gateway_url: str = typer.Option("ws://127.0.0.1:18789", "--gateway-url", help="Gateway websocket URL"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
):
    """Write a starter config file."""
    import yaml

    config_file = directory / DEFAULT_CONFIG_FILE
    if config_file.exists() and not force:
        ui.console.print(f"[{ui.ERROR}]{config_file} already exists. Use --force to overwrite.[/]")
        raise typer.Exit(1)

    config = ClawCondosConfig()
    config.store.path = store
    config.gateway.url = gateway_url
    directory.mkdir(parents=True, exist_ok=True)
    config_file.write_text(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))
    ui.console.print(f"[{ui.SUCCESS}]Wrote {config_file}[/]")


@app.command()
def condo(
    name: str = typer.Argument(..., help="Condo name"),
    description: str = typer.Option("", "--description", "-d"),
    pm_session: Optional[str] = typer.Option(None, "--pm-session", help="PM session key for this condo"),
):
    """Create a condo."""
    result = call("condos.create", {"name": name, "description": description, "pmSession": pm_session})
    _echo(f"[{ui.SUCCESS}]Created condo[/] [{ui.WHITE}]{result['condo']['id']}[/]")


@app.command()
def goal(
    condo_id: str = typer.Argument(..., help="Condo the goal belongs to"),
    title: str = typer.Argument(..., help="Goal title"),
    description: str = typer.Option("", "--description", "-d"),
    phase: Optional[int] = typer.Option(None, "--phase", help="Phase for staged cascades"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Auto-retries per task (default 1)"),
    autonomy: Optional[str] = typer.Option(None, "--autonomy", help="full, plan, step or supervised"),
    task: Optional[list[str]] = typer.Option(None, "--task", "-t", help="Initial task text. Can repeat."),
):
    """Create a goal, optionally with tasks."""
    params = {
        "condoId": condo_id,
        "title": title,
        "description": description,
        "phase": phase,
        "maxRetries": max_retries,
        "autonomyMode": autonomy,
        "tasks": task or [],
    }
    result = call("goals.create", params)
    _echo(f"[{ui.SUCCESS}]Created goal[/] [{ui.WHITE}]{result['goal']['id']}[/] ({len(result['goal']['tasks'])} tasks)")


@app.command("task")
def add_task(
    goal_id: str = typer.Argument(..., help="Goal to add the task to"),
    text: str = typer.Argument(..., help="What the task is"),
    description: str = typer.Option("", "--description", "-d"),
    depends_on: Optional[list[str]] = typer.Option(None, "--depends-on", help="Task id this depends on. Can repeat."),
    agent: str = typer.Option("", "--agent", "-a", help="Role or agent id"),
    task_id: Optional[str] = typer.Option(None, "--id", help="Explicit task id"),
):
    """Append a task to a goal."""
    params = {
        "goalId": goal_id,
        "text": text,
        "description": description,
        "dependsOn": depends_on or [],
        "assignedAgent": agent,
        "id": task_id,
    }
    result = call("goals.addTask", params)
    _echo(f"[{ui.SUCCESS}]Added task[/] [{ui.WHITE}]{result['task']['id']}[/]")


@app.command()
def kickoff(goal_id: str = typer.Argument(..., help="Goal to start")):
    """Start sessions for every eligible task in a goal."""
    result = call("goals.kickoff", {"goalId": goal_id})
    if not result["spawnedSessions"]:
        _echo(f"[{ui.DIM}]Nothing to start: no pending task has its dependencies done[/]")


@app.command()
def update(
    task_id: str = typer.Argument(..., help="Task to update"),
    status: str = typer.Argument(..., help="done, in-progress, blocked, waiting or pending"),
    summary: str = typer.Option("", "--summary", "-s"),
    goal_id: Optional[str] = typer.Option(None, "--goal", help="Goal id, if task ids are ambiguous"),
):
    """Report a task status (what an agent's goal_update call does)."""
    call("goal_update", {"taskId": task_id, "status": status, "summary": summary, "goalId": goal_id})


@app.command("agent-end")
def agent_end(
    session_key: str = typer.Argument(..., help="Session that ended"),
    failed: bool = typer.Option(False, "--failed", help="The agent reported failure"),
):
    """Feed a session-ended notification to the retry supervisor."""
    result = call("agent_end", {"sessionKey": session_key, "success": False if failed else None})
    _echo(f"[{ui.DIM}]{result['action']}[/]")


@app.command("kill-goal")
def kill_goal(goal_id: str = typer.Argument(...)):
    """Abort every session of a goal and reset its in-flight tasks."""
    call("sessions.killForGoal", {"goalId": goal_id})


@app.command("kill-condo")
def kill_condo(condo_id: str = typer.Argument(...)):
    """Abort every session in a condo and reset its in-flight tasks."""
    call("sessions.killForCondo", {"condoId": condo_id})


@app.command()
def status(condo_id: Optional[str] = typer.Argument(None, help="Only show this condo")):
    """Show goals and their tasks."""
    from .store import JsonStore

    config = get_config()
    store = JsonStore(config.store.path)
    if not store.exists():
        ui.console.print(f"[{ui.ERROR}]No store at {config.store.path}. Create a condo first.[/]")
        raise typer.Exit(1)
    document = store.load()

    condos = document.condos
    if condo_id:
        condos = [c for c in condos if c.id == condo_id]
        if not condos:
            ui.console.print(f"[{ui.ERROR}]Condo not found: {condo_id}[/]")
            raise typer.Exit(1)

    if STATE["json"]:
        ui.console.print_json(json.dumps({
            "condos": [c.to_dict() for c in condos],
            "goals": [g.to_dict() for c in condos for g in document.goals_for_condo(c.id)],
        }))
        return

    for c in condos:
        ui.print_header(f"{c.name} ({c.id})")
        goals = sorted(
            document.goals_for_condo(c.id),
            key=lambda g: (g.phase is None, g.phase or 0, g.created_at_ms),
        )
        if not goals:
            ui.console.print(f"[{ui.DIM}]  no goals yet[/]")
        for g in goals:
            waves, unschedulable = dependency_waves(g)
            ui.console.print(ui.render_goal_table(g, waves))
            if unschedulable:
                ids = ", ".join(t.id for t in unschedulable)
                ui.console.print(f"[{ui.WARN}]  Can never start (cycle or unknown dependency): {ids}[/]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port", "-p"),
):
    """Serve the RPC methods over websockets, with live cascades."""
    from .server import RpcServer

    config = get_config()
    spawner = MockSessionSpawner() if STATE["dry_run"] else None
    runtime = build_runtime(config, spawner=spawner)
    server = RpcServer(runtime, host=host or config.server.host, port=port or config.server.port)
    server.run_forever()


if __name__ == "__main__":
    app()
