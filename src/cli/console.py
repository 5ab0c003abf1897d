"""Rich output helpers for the directive-engine CLI.

Usage:
    from cli.console import console, create_table, print_warning, styled_status

    print_warning("Returned fallback context")
    table = create_table("Health")
    table.add_row("providers", styled_status("degraded"))
    console.print(table)
"""

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

console = Console()

# Health and check statuses → Rich color
STATUS_STYLES = {
    "healthy": "green",
    "valid": "green",
    "degraded": "yellow",
    "empty": "yellow",
    "unhealthy": "red",
    "unavailable": "red",
    "invalid": "red",
    "missing": "red",
}


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error line prefixed with a red cross."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_panel(title: str, content: str, style: str = "blue") -> None:
    """Print content inside a titled box (used for query diagnostics)."""
    console.print(Panel(content, title=title, border_style=style))


def print_markdown(text: str) -> None:
    """Render a context block as markdown."""
    console.print(Markdown(text))


def create_table(title: str = "") -> Table:
    return Table(title=title or None)


def styled_status(status: str | None) -> str:
    """Wrap a health status in its color markup."""
    if status is None:
        return "[dim]unknown[/dim]"
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"
