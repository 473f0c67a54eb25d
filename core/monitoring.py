"""Rich console summary of a solve session."""

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.orchestrator import PageState

STATUS_STYLES = {
    "SOLVED": "green",
    "SOLVING": "yellow",
    "WAITING": "cyan",
    "READY": "cyan",
    "IDLE": "dim",
    "FATAL": "red",
}


class SessionSummary:
    """Render the per-widget outcome table printed by the CLI."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def render_widget_table(self, rows: List[Dict[str, Any]]) -> Table:
        """Render one row per widget seen on the page.

        Args:
            rows: Output of :meth:`PageState.summary`.

        Returns:
            Rich Table with widget status, attempts and last error.
        """
        table = Table(title="Challenge Widgets", box=box.ROUNDED)
        table.add_column("Widget", style="cyan", no_wrap=True)
        table.add_column("Status", justify="center")
        table.add_column("Attempts", justify="right")
        table.add_column("Stabilization", justify="right")
        table.add_column("Last Error")

        for row in rows:
            status = row["status"]
            table.add_row(
                row["kind"],
                Text(status, style=STATUS_STYLES.get(status, "white")),
                f"{row['attempts']}/{row['max_attempts']}",
                str(row["stabilization_attempts"]),
                row["last_error"] or "-",
            )
        return table

    def render_overview_panel(self, state: PageState, url: str, elapsed: float) -> Panel:
        text = Text()
        text.append("URL: ", style="bold")
        text.append(f"{url}\n")
        text.append("Result: ", style="bold")
        if state.solved:
            text.append("solved", style="green")
        elif state.widgets:
            text.append("unsolved", style="red")
        else:
            text.append("no challenge detected", style="yellow")
        text.append(f"\nPolls: {state.ticks}  Elapsed: {elapsed:.1f}s")
        return Panel(text, title="Session", border_style="cyan")

    def display(self, state: PageState, url: str, elapsed: float) -> None:
        self.console.print(self.render_overview_panel(state, url, elapsed))
        rows = state.summary()
        if rows:
            self.console.print(self.render_widget_table(rows))
