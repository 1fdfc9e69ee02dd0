"""Shared UI components for the sqlgate CLI."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

theme = Theme(
    {
        "info": "dim cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "tip": "blue",
        "link": "underline blue",
        "heading": "bold cyan",
    }
)

console = Console(theme=theme)
error_console = Console(theme=theme, stderr=True)


def print_banner(*, mcp_url: str, control_token: str, config_path: Path, connection: str) -> None:
    """Print the startup banner with endpoint details."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bold white", justify="right")
    table.add_column("Value", style="cyan")

    table.add_row("MCP endpoint", mcp_url)
    table.add_row("Control token", control_token)
    table.add_row("Connection", connection)
    table.add_row("Config", str(config_path))

    console.print(
        Panel(table, title="[bold]sqlgate bridge[/bold]", border_style="dim white", padding=(1, 1))
    )
    console.print(
        "  [dim]UI calls /api/* with 'Authorization: Bearer <control token>'. "
        "Press Ctrl-C to stop.[/dim]"
    )
    console.print()


def print_approval_request(*, run_id: str, approval_id: str, query: str) -> None:
    console.print(
        Panel(
            Syntax(query, "sql", word_wrap=True),
            title=f"[bold yellow]Write approval requested[/bold yellow] [dim]{approval_id}[/dim]",
            subtitle=f"[dim]run {run_id}[/dim]",
            border_style="yellow",
        )
    )


def print_error(title: str, message: str, tip: str | None = None) -> None:
    """Print a styled error message with an optional actionable tip."""
    content = Text()
    content.append(f"{message}\n", style="white")

    if tip:
        content.append("\nTip: ", style="bold blue")
        content.append(tip, style="blue")

    error_console.print(
        Panel(
            content,
            title=f"[bold red]Error: {title}[/bold red]",
            border_style="red",
            padding=(1, 1),
        )
    )


def print_success(message: str) -> None:
    console.print(f"[bold green]✓[/bold green] {message}")
