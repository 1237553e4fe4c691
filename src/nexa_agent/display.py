# display.py
# All terminal output for the agent console.
#
# This module owns presentation entirely. The driver and engine never format
# strings. They report events to a TurnObserver, and ConsoleObserver maps
# those events onto the named functions here.
#
# Colour language:
#   cyan: user input / status changes
#   blue: agent messages
#   magenta: tool calls
#   yellow: running actions
#   green: completed actions and steps
#   red: failures

import json

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from nexa_agent.models import (
    ActionType,
    AgentStatus,
    ChatSession,
    FileArtifact,
    Message,
    PlanAction,
    PlanStep,
    Role,
    RunStatus,
    StepStatus,
    ToolCall,
    WebContent,
)
from nexa_agent.observer import TurnObserver

console = Console()

_STEP_ICONS = {
    StepStatus.PENDING: "[dim]○[/dim]",
    StepStatus.ACTIVE: "[bold yellow]◉[/bold yellow]",
    StepStatus.COMPLETED: "[bold green]✓[/bold green]",
    StepStatus.FAILED: "[bold red]✗[/bold red]",
}

_ACTION_STYLE = {
    RunStatus.RUNNING: "yellow",
    RunStatus.COMPLETED: "green",
    RunStatus.FAILED: "red",
}

_ACTION_PREFIX = {
    ActionType.COMMAND: "$",
    ActionType.FILE: "▤",
    ActionType.INFO: "i",
    ActionType.OUTPUT: "›",
}

_TOOL_BLURB = {
    "web_search": "Searching the web…",
    "visit_page": "Accessing URL…",
    "write_code": "Executing code…",
    "create_plan": "Drafting plan…",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    """Truncate `value` and escape it for use inside markup."""
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


# ---------------------------------------------------------------------------
# Session entry
# ---------------------------------------------------------------------------


def banner(model: str, session_name: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Nexa Agent Console[/bold cyan]\n"
            "[dim]Plan · Execute · Verify[/dim]\n\n"
            f"[dim]Model   :[/dim] [white]{escape(model)}[/white]\n"
            f"[dim]Session :[/dim] [white]{escape(session_name)}[/white]\n\n"
            "[dim]/new  /sessions  /load <id>  /rename <name>  /fav  /delete <id>  /plan  /view  /quit[/dim]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def prompt_received(prompt: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(prompt)}[/white]",
            title=_label("USER", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


def agent_message(content: str) -> None:
    console.print()
    console.print(
        Panel(
            Markdown(content),
            title=_label("AGENT", "blue"),
            border_style="blue",
            padding=(0, 2),
        )
    )


def status_changed(old: AgentStatus, new: AgentStatus) -> None:
    console.print(f"[dim cyan]  {old.value} → {new.value}[/dim cyan]")


def history(messages: list[Message]) -> None:
    for message in messages:
        if message.role is Role.USER:
            prompt_received(message.content)
        else:
            agent_message(message.content)


# ---------------------------------------------------------------------------
# Plan display
# ---------------------------------------------------------------------------


def plan_table(steps: list[PlanStep]) -> None:
    if not steps:
        console.print("[dim]  No plan yet.[/dim]")
        return

    done = sum(1 for s in steps if s.status is StepStatus.COMPLETED)
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("#", justify="center", width=4)
    table.add_column("", justify="center", width=3)
    table.add_column("Step", style="bold white", width=24)
    table.add_column("Description", style="white")
    table.add_column("Actions", justify="right", style="dim", width=8)

    for index, step in enumerate(steps):
        table.add_row(
            str(index + 1),
            _STEP_ICONS[step.status],
            escape(step.title),
            _mono(step.description, 60),
            str(len(step.actions)),
        )

    console.print()
    console.print(
        Panel(
            table,
            title=_label("PLAN", "cyan"),
            subtitle=f"[dim]{done}/{len(steps)} Steps[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


def action_logged(step_index: int, action: PlanAction) -> None:
    style = _ACTION_STYLE[action.status]
    prefix = _ACTION_PREFIX[action.type]
    console.print(
        f"  [dim]step {step_index + 1}[/dim]  [{style}]{prefix} {_mono(action.content, 100)}[/{style}]"
    )


def step_finished(step_index: int, steps: list[PlanStep]) -> None:
    step = steps[step_index]
    console.print(f"  {_STEP_ICONS[step.status]} [bold]{escape(step.title)}[/bold] [dim]{step.status.value}[/dim]")


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def tool_started(call: ToolCall) -> None:
    console.print()
    console.print(
        f"  [magenta]Tool[/magenta]  [bold white]{escape(call.tool_name)}[/bold white]"
        f"  [dim]{_mono(json.dumps(call.args, ensure_ascii=False), 80)}[/dim]"
    )
    console.print(f"  [dim magenta]{_TOOL_BLURB.get(call.tool_name, 'Processing…')}[/dim magenta]")


def tool_finished(call: ToolCall) -> None:
    if call.status is RunStatus.COMPLETED:
        console.print(f"  [bold green]✓[/bold green] [dim]{escape(call.tool_name)} done[/dim]")
        return
    error = call.result.get("error") if isinstance(call.result, dict) else None
    console.print(f"  [bold red]✗[/bold red] [dim]{escape(call.tool_name)}: {escape(str(error or 'failed'))}[/dim]")


def web_content(page: WebContent) -> None:
    console.print()
    console.print(
        Panel(
            Markdown(page.content),
            title=_label("BROWSER", "magenta"),
            subtitle=f"[dim]{page.url}[/dim]",
            border_style="magenta",
            padding=(0, 2),
        )
    )


def file_artifact(artifact: FileArtifact) -> None:
    console.print()
    console.print(
        Panel(
            Syntax(artifact.content, artifact.language, line_numbers=True),
            title=_label(artifact.name, "magenta"),
            border_style="magenta",
            padding=(0, 1),
        )
    )


def viewer_revealed() -> None:
    console.print("  [dim magenta]▸ viewer opened[/dim magenta]")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def session_list(sessions: list[ChatSession], current_id: str | None) -> None:
    if not sessions:
        console.print("[dim]  No saved sessions.[/dim]")
        return

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("", width=2)
    table.add_column("ID", style="dim", width=14)
    table.add_column("Name", style="white")
    table.add_column("Messages", justify="right", style="dim", width=9)

    for session in sessions:
        marker = "[bold cyan]›[/bold cyan]" if session.id == current_id else ""
        star = "[yellow]★[/yellow] " if session.is_favorite else ""
        table.add_row(marker, session.id, f"{star}{escape(session.name)}", str(len(session.messages)))

    console.print(table)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def notice(text: str) -> None:
    console.print(f"[dim]  {escape(text)}[/dim]")


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Observer
# ---------------------------------------------------------------------------


class ConsoleObserver(TurnObserver):
    """Renders turn events as they happen."""

    def __init__(self, verbose_status: bool = False) -> None:
        self._verbose_status = verbose_status

    def status_changed(self, old: AgentStatus, new: AgentStatus) -> None:
        if self._verbose_status:
            status_changed(old, new)

    def message_appended(self, message: Message) -> None:
        if message.role is Role.AGENT:
            agent_message(message.content)

    def plan_replaced(self, steps: list[PlanStep]) -> None:
        plan_table(steps)

    def action_logged(self, step_index: int, action: PlanAction) -> None:
        action_logged(step_index, action)

    def step_finished(self, step_index: int, steps: list[PlanStep]) -> None:
        step_finished(step_index, steps)

    def tool_started(self, call: ToolCall) -> None:
        tool_started(call)

    def tool_finished(self, call: ToolCall) -> None:
        tool_finished(call)

    def viewer_revealed(self) -> None:
        viewer_revealed()
