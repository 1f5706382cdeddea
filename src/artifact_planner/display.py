# display.py
# Terminal output for the planner CLI.
#
# Library modules never print; run.py calls the named functions here.
#
# Colour language:
#   cyan    - requests and routing
#   blue    - the proposed plan
#   yellow  - warnings and clarification questions
#   red     - resolution and upstream failures

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from artifact_planner.models import OrchestratorPlanProposal, PlanTask

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


def _task_summary(task: PlanTask) -> str:
    if task.kind == "subagent":
        return f"subagent → {task.agent_id}"
    if task.kind == "write-section":
        return f"write-section → {task.section}"
    if task.kind == "skill":
        return f"skill → {task.operation}"
    return task.kind


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def banner(model: str, tool_count: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Artifact Planner[/bold cyan]\n"
            "[dim]Request → validated plan graph[/dim]\n\n"
            f"[dim]Model :[/dim] [white]{model}[/white]\n"
            f"[dim]Tools :[/dim] [white]{tool_count}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def request_received(message: str, title: str = "USER REQUEST") -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(message)}[/white]",
            title=_label(title, "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Proposal
# ---------------------------------------------------------------------------


def proposal(result: OrchestratorPlanProposal) -> None:
    plan = result.plan
    console.print()

    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="blue",
        show_header=True,
        header_style="bold blue",
        padding=(0, 1),
    )
    table.add_column("ID", width=8)
    table.add_column("Tool", style="bold white", width=26)
    table.add_column("Task", style="dim white", width=36)
    table.add_column("Depends on", width=14)
    table.add_column("Step", style="white")

    for step in result.steps:
        node = plan.nodes.get(step.id)
        table.add_row(
            step.id,
            step.tool_id,
            _task_summary(node.task) if node else step.tool_type,
            ", ".join(step.depends_on) or "[dim]-[/dim]",
            f"{escape(step.label)}\n[dim]{escape(_mono(step.rationale, 160))}[/dim]",
        )

    console.print(
        Panel(
            table if result.steps else "[dim]No steps proposed.[/dim]",
            title=_label(f"PLAN {plan.id}", "blue"),
            subtitle=(
                f"[dim]Target: {result.target_artifact}  ·  "
                f"Confidence: {result.confidence:.2f}  ·  "
                f"Entry: {plan.entry_id or '-'}[/dim]"
            ),
            border_style="blue",
            padding=(0, 1),
        )
    )
    console.print(f"[dim]  {escape(result.overall_rationale)}[/dim]")

    if result.warnings:
        warnings(result.warnings)
    if result.suggested_clarifications:
        clarifications(result.suggested_clarifications)
    console.print()


def warnings(items: list[str]) -> None:
    console.print()
    for item in items:
        console.print(_label("WARNING", "yellow"), f"[yellow] {escape(item)}[/yellow]")


def clarifications(questions: list[str]) -> None:
    console.print()
    body = "\n".join(f"[white]{i}.[/white] {escape(q)}" for i, q in enumerate(questions, start=1))
    console.print(
        Panel(
            body,
            title=_label("CLARIFICATIONS", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def resolution_failed(reason: str, errors: list[str] | None = None) -> None:
    console.print()
    body = f"[bold red]{escape(reason)}[/bold red]"
    if errors:
        body += "\n\n" + "\n".join(f"[white]• {escape(error)}[/white]" for error in errors)
    console.print(
        Panel(
            body,
            title=_label("PLAN REJECTED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


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
