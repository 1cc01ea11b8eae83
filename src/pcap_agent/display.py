# display.py
# All terminal output for the investigation CLI.
#
# This module owns presentation entirely. The planner and executor never
# format strings for the terminal. They publish events, and ConsolePrinter
# renders them. Swap this file to change the entire UI.
#
# Colour language:
#   cyan: session / routing events
#   blue: planner output
#   magenta: executor steps and their findings
#   green: reports and success
#   red: failures and halts

import threading

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from pcap_agent.events import Event, EventChannel, EventType
from pcap_agent.ledger import SessionSummary

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def banner(model: str, pcap_path: str, session_id: str, rounds: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]PCAP Investigation Agent[/bold cyan]\n"
            "[dim]Plan → step-by-step execution → report, one round per question[/dim]\n\n"
            f"[dim]Model   :[/dim] [white]{escape(model)}[/white]\n"
            f"[dim]Capture :[/dim] [white]{escape(pcap_path)}[/white]\n"
            f"[dim]Session :[/dim] [white]{escape(session_id)}[/white]"
            + (f" [dim](resumed, {rounds} round(s) so far)[/dim]" if rounds else ""),
            border_style="cyan",
            padding=(1, 4),
        )
    )
    console.print("[dim]  Type a question about the capture. 'quit' ends the session.[/dim]")


def sessions_table(sessions: list[SessionSummary]) -> None:
    if not sessions:
        console.print("[dim]No sessions recorded yet.[/dim]")
        return
    table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan", padding=(0, 1))
    table.add_column("Session", style="bold white")
    table.add_column("Rounds", justify="center", width=8)
    table.add_column("Updated", style="dim")
    table.add_column("Capture", style="white")
    for s in sessions:
        table.add_row(escape(s.id), str(s.rounds), s.updated_at, escape(s.pcap_path))
    console.print(table)


def prompt_received(query: str, round_num: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]ROUND {round_num}[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(query)}[/white]",
            title=_label("USER QUERY", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Event rendering
# ---------------------------------------------------------------------------


def plan_created(data: dict) -> None:
    console.print()
    table = Table(box=box.SIMPLE_HEAVY, border_style="blue", header_style="bold blue", padding=(0, 1))
    table.add_column("ID", justify="center", width=4)
    table.add_column("Intent", style="white")
    for step in data.get("steps", []):
        table.add_row(str(step["step_id"]), escape(step["intent"]))
    console.print(
        Panel(
            table,
            title=_label(f"PLAN: {data.get('total_steps', 0)} STEP(S)", "blue"),
            subtitle=f"[dim]{escape(_mono(data.get('thought', ''), 100))}[/dim]",
            border_style="blue",
            padding=(0, 1),
        )
    )


def step_started(data: dict) -> None:
    tag = "FINAL" if data.get("final") else "STEP"
    console.print()
    console.print(
        f"[bold magenta]  {tag} {data['step_id']}/{data['total_steps']}[/bold magenta]"
        f"  [white]{escape(data['intent'])}[/white]"
    )


def step_findings(data: dict) -> None:
    if data.get("actions"):
        console.print(f"  [magenta]Actions [/magenta] [dim white]{escape(_mono(data['actions'], 200))}[/dim white]")
    if data.get("findings"):
        console.print(f"  [magenta]Findings[/magenta] [white]{escape(_mono(data['findings'], 300))}[/white]")


def failure(data: dict) -> None:
    step = f" (step {data['step_id']})" if data.get("step_id") is not None else ""
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(data.get('message', ''))}[/bold white]",
            title=_label(f"{data.get('phase', 'error').upper()} ERROR{step}", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def report_generated(data: dict) -> None:
    console.print(
        f"  [green]Report ready[/green] [dim]{data['content_length']} chars, "
        f"{data['total_steps']} step(s), {data['duration_ms']}ms[/dim]"
    )


def info(data: dict) -> None:
    console.print(f"  [dim]{escape(data.get('message', ''))}[/dim]")


_RENDERERS = {
    EventType.PLAN_CREATED: plan_created,
    EventType.STEP_STARTED: step_started,
    EventType.STEP_FINDINGS: step_findings,
    EventType.STEP_ERROR: failure,
    EventType.PLAN_ERROR: failure,
    EventType.REPORT_GENERATED: report_generated,
    EventType.INFO: info,
}


def render(event: Event) -> None:
    renderer = _RENDERERS.get(event.type)
    if renderer is not None:
        renderer(event.data)


class ConsolePrinter:
    """Renders channel events on a background thread until the channel closes."""

    def __init__(self) -> None:
        self._thread: threading.Thread | None = None

    def start(self, channel: EventChannel) -> None:
        sub = channel.subscribe()
        self._thread = threading.Thread(target=self._drain, args=(sub,), name="console-printer", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @staticmethod
    def _drain(sub) -> None:
        for event in sub:
            render(event)


# ---------------------------------------------------------------------------
# Round result
# ---------------------------------------------------------------------------


def final_report(report: str) -> None:
    console.print()
    console.print(
        Panel(
            Markdown(report),
            title=_label("REPORT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def ledger_warning(reason: str) -> None:
    console.print(
        f"[bold yellow]  Report not saved to the session ledger:[/bold yellow] [white]{escape(reason)}[/white]"
    )


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
