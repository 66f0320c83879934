import json
import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from portalcli.domain.events.api_events import TelemetryEvent
from portalcli.domain.interfaces.user_interface import UserInterface
from portalcli.domain.models.auth import Principal
from portalcli.domain.models.call import Page

logger = logging.getLogger(__name__)

# Columns shown for a listing when items are objects; remaining keys are dropped
MAX_TABLE_COLUMNS = 6


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_output(self, output: Any, **kwargs: Any) -> None:
        """Renders a call payload as highlighted JSON inside a panel.

        Args:
            output: JSON-compatible payload.
            **kwargs: Additional arguments including:
                - title: Panel title (default: "Response")
                - degraded: Mark the payload as substituted mock data
        """
        title = kwargs.get("title", "Response")
        degraded = kwargs.get("degraded", False)
        if degraded:
            title = f"{title} [yellow](mock data)[/yellow]"

        if isinstance(output, str):
            body: Any = Text(output)
        else:
            body = JSON(json.dumps(output, default=str))

        self.console.print(Panel(
            body,
            title=f"[bold]{title}[/bold]",
            subtitle=f"[dim]{datetime.now().strftime('%H:%M:%S')}[/dim]",
            border_style="yellow" if degraded else "green",
            box=ROUNDED,
            padding=(0, 1),
        ))

    def display_page(self, page: Page, degraded: bool = False) -> None:
        """Renders one page of a listing as a table."""
        items: List[Any] = page.items
        caption = f"page {page.page} · {len(items)} of {page.total_items} items · {page.total_pages} pages"
        if degraded:
            caption += " · mock data"

        table = Table(box=SIMPLE, caption=caption, show_lines=False)
        if items and all(isinstance(item, dict) for item in items):
            columns = list(dict.fromkeys(k for item in items for k in item))[:MAX_TABLE_COLUMNS]
            for column in columns:
                table.add_column(str(column), overflow="fold")
            for item in items:
                table.add_row(*(self._cell(item.get(column)) for column in columns))
        else:
            table.add_column("value")
            for item in items:
                table.add_row(self._cell(item))
        self.console.print(table)

    def display_principal(self, principal: Principal) -> None:
        table = Table(box=SIMPLE, show_header=False)
        table.add_column("field", style="bold cyan")
        table.add_column("value")
        table.add_row("id", principal.id)
        table.add_row("name", principal.name)
        table.add_row("email", principal.email or "-")
        table.add_row("roles", ", ".join(principal.roles))
        table.add_row("permissions", ", ".join(principal.permissions) or "-")
        self.console.print(Panel(table, title="[bold]Current user[/bold]", box=ROUNDED))

    def display_telemetry(self, events: Iterable[TelemetryEvent]) -> None:
        table = Table(title="Recent requests", box=SIMPLE)
        for column in ("time", "method", "endpoint", "status", "ms", "result"):
            table.add_column(column)
        for event in events:
            if event.degraded:
                result = "[yellow]mock[/yellow]"
            elif event.success:
                result = "[green]ok[/green]"
            else:
                result = f"[red]{event.error or 'failed'}[/red]"
            table.add_row(
                datetime.fromtimestamp(event.timestamp).strftime("%H:%M:%S"),
                event.method,
                event.endpoint,
                str(event.status) if event.status is not None else "-",
                f"{event.duration_ms:.0f}",
                result,
            )
        self.console.print(table)

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

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.debug(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return "-"
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return str(value)
