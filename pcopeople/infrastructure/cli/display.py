import logging
from typing import Any, Dict, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pcopeople.domain.models.batch import BatchSummary
from pcopeople.domain.models.matching import MatchCandidate
from pcopeople.domain.models.resources import Resource

logger = logging.getLogger(__name__)


def _full_name(person: Resource) -> str:
    name = person.get("name")
    if name:
        return str(name)
    parts = [person.get("first_name"), person.get("last_name")]
    return " ".join(str(p) for p in parts if p) or "(no name)"


def _describe_result_data(data: Any) -> str:
    if isinstance(data, Resource):
        return f"{data.type} {data.id}"
    if data is None:
        return ""
    return str(data)


class ConsoleDisplay:
    """Console output for the CLI, rendered with rich."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    @console.setter
    def console(self, value: Console) -> None:
        self._console = value

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message.

        Args:
            info_message: The informational message to display.
        """
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_person(self, person: Resource, title: str = "Person") -> None:
        """Displays one person's id, name and a few contact attributes."""
        table = Table(show_header=False, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Field", style="bold cyan")
        table.add_column("Value")
        table.add_row("ID", str(person.id))
        table.add_row("Name", _full_name(person))
        for attribute in ("birthdate", "status", "membership"):
            value = person.get(attribute)
            if value:
                table.add_row(attribute.capitalize(), str(value))
        self.console.print(Panel(table, title=f"[bold cyan]{title}[/bold cyan]", border_style="cyan", box=SIMPLE))

    def display_matches(self, candidates: List[MatchCandidate], title: str = "Matches") -> None:
        """Displays ranked match candidates as a table."""
        if not candidates:
            self.display_info("No matching people found.")
            return

        table = Table(title=title, show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", justify="right", style="dim")
        table.add_column("ID", style="bold")
        table.add_column("Name")
        table.add_column("Score", justify="right")
        table.add_column("Reason", style="italic")
        for rank, candidate in enumerate(candidates, start=1):
            score_style = "green" if candidate.score >= 0.8 else "yellow" if candidate.score >= 0.5 else "red"
            table.add_row(
                str(rank),
                str(candidate.person.id),
                _full_name(candidate.person),
                f"[{score_style}]{candidate.score:.2f}[/{score_style}]",
                candidate.reason,
            )
        self.console.print(table)

    def display_batch_summary(self, summary: BatchSummary) -> None:
        """Displays per-operation results followed by the batch totals."""
        table = Table(title="Batch Results", show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", justify="right", style="dim")
        table.add_column("Operation")
        table.add_column("Status")
        table.add_column("Details")
        for result in summary.results:
            op_label = result.operation.id or result.operation.type
            if result.success:
                status, details = "[green]ok[/green]", _describe_result_data(result.data)
            else:
                status, details = "[red]failed[/red]", str(result.error)
            table.add_row(str(result.index), f"{op_label} ({result.operation.type})", status, details)
        self.console.print(table)

        totals = (
            f"Total: {summary.total}  Succeeded: {summary.successful}  Failed: {summary.failed}  "
            f"Success rate: {summary.success_rate:.1%}  Duration: {summary.duration_ms:.0f}ms"
        )
        style = "green" if summary.failed == 0 else "yellow"
        self.console.print(Panel(Text(totals), border_style=style, box=SIMPLE, padding=(0, 1)))

    def display_metrics(self, metrics: Dict[str, Dict[str, float]]) -> None:
        """Displays per-request latency metrics."""
        if not metrics:
            self.display_info("No requests recorded.")
            return
        table = Table(title="Request Metrics", show_header=True, box=SIMPLE, border_style="cyan", padding=(0, 1))
        table.add_column("Request")
        table.add_column("Count", justify="right")
        table.add_column("Avg (ms)", justify="right")
        table.add_column("Min (ms)", justify="right")
        table.add_column("Max (ms)", justify="right")
        table.add_column("Error rate", justify="right")
        for key, values in sorted(metrics.items()):
            table.add_row(
                key,
                str(int(values.get("count", 0))),
                f"{values.get('average_time', 0.0):.1f}",
                f"{values.get('min_time', 0.0):.1f}",
                f"{values.get('max_time', 0.0):.1f}",
                f"{values.get('error_rate', 0.0):.0%}",
            )
        self.console.print(table)
