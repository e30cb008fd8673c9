"""Shared rich console for banners and summaries."""

from rich.console import Console
from rich.panel import Panel

console = Console()


def section(title: str) -> None:
    """Print a section banner."""
    console.print()
    console.print(Panel.fit(f"[bold cyan]{title}[/bold cyan]"))
