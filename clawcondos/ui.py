"""
Console output for clawcondos.

Every operator-facing line (kickoffs, retries, failures, stuck spawns)
goes through the rich console here.
"""

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.box import ROUNDED

# Palette
PURPLE = "#7b2cbf"
MAGENTA = "#e040fb"
HOT_PINK = "#ff006e"
CYAN = "#00ffff"
GOLD = "#ffd700"
WHITE = "#ffffff"
DIM = "#6b5b7d"
SUCCESS = "#00ff9f"
ERROR = "#ff4757"
WARN = "#ffd93d"

console = Console()

VERBOSE = False

STATUS_STYLES = {
    "pending": DIM,
    "in-progress": CYAN,
    "blocked": WARN,
    "waiting": GOLD,
    "done": SUCCESS,
    "failed": ERROR,
}

STATUS_ICONS = {
    "pending": "○",
    "in-progress": "◐",
    "blocked": "⊘",
    "waiting": "…",
    "done": "●",
    "failed": "✗",
}


def set_verbose(verbose: bool):
    global VERBOSE
    VERBOSE = verbose


def debug(message: str):
    """Only shown with --verbose."""
    if VERBOSE:
        console.print(f"[{DIM}]{message}[/]")


def print_header(text: str, style: str = MAGENTA):
    console.print()
    header = Text()
    header.append("▓▒░ ", style=PURPLE)
    header.append(text, style=f"bold {style}")
    header.append(" ░▒▓", style=PURPLE)
    console.print(header)


def print_kickoff(goal_id: str, spawned: list):
    if not spawned:
        debug(f"kickoff {goal_id}: nothing eligible")
        return
    console.print(f"[{CYAN}]▶ Kicked off {len(spawned)} task(s) in {goal_id}[/]")
    for s in spawned:
        console.print(f"  [{DIM}]{s.task_id} → {s.session_key}[/]")


def print_spawn_failed(task_id: str, session_key: str, error: Exception):
    console.print(
        f"[{WARN}]⚠ Session start failed for {task_id} ({session_key}): {error}[/]\n"
        f"  [{DIM}]Task stays in-progress until the session ends or is killed[/]"
    )


def print_retry(task_id: str, retry_count: int, max_retries: int, error: str):
    console.print(f"[{WARN}]↻ Retrying {task_id} ({retry_count}/{max_retries}): {error}[/]")


def print_task_failed(task_id: str, error: str):
    console.print(f"[{ERROR}]✗ {task_id} failed permanently: {error}[/]")


def print_task_complete(task_id: str, goal_complete: bool = False):
    suffix = f" [{GOLD}](goal complete)[/]" if goal_complete else ""
    console.print(f"[{SUCCESS}]✓[/] [{WHITE}]{task_id}[/]{suffix}")


def print_cascade_error(goal_id: str, error: Exception):
    console.print(f"[{ERROR}]Cascade for {goal_id} failed: {error}[/]")


def print_listener_error(event_name: str, error: Exception):
    console.print(f"[{WARN}]Listener for {event_name} raised: {error}[/]")


def print_rpc_error(method: str, error: str):
    debug(f"{method} → error: {error}")


def print_role_updated(role: str, agent_id: str = None):
    target = agent_id or "(default)"
    console.print(f"[{MAGENTA}]◆ Role {role} → {target}[/]")


def print_kill_summary(scope: str, total: int, aborted: int, reset: int):
    console.print(
        f"[{HOT_PINK}]■ {scope}:[/] aborted {aborted}/{total} session(s), reset {reset} task(s)"
    )


def render_goal_table(goal, waves=None) -> Table:
    progress = goal.progress
    phase = f" · phase {goal.phase}" if goal.phase is not None else ""
    table = Table(
        title=f"{goal.title} [{DIM}]({goal.id}{phase} · {progress['done']}/{progress['total']})[/]",
        box=ROUNDED,
        border_style=PURPLE,
        title_justify="left",
    )
    table.add_column("Task", style=WHITE)
    table.add_column("Status")
    table.add_column("Depends on", style=DIM)
    table.add_column("Session", style=DIM)
    table.add_column("Retries", justify="right")
    table.add_column("Wave", justify="right", style=DIM)

    wave_of = {}
    for idx, wave in enumerate(waves or [], start=1):
        for task in wave:
            wave_of[task.id] = idx

    for task in goal.tasks:
        status = task.status.value
        style = STATUS_STYLES.get(status, WHITE)
        label = f"[{style}]{STATUS_ICONS.get(status, '?')} {status}[/]"
        if task.last_error and status != "done":
            label += f"\n[{DIM}]{task.last_error}[/]"
        table.add_row(
            f"{task.id}\n[{DIM}]{task.text}[/]",
            label,
            ", ".join(task.depends_on) or "-",
            task.session_key or "-",
            str(task.retry_count),
            str(wave_of.get(task.id, "-")),
        )
    return table
