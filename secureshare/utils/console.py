import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}", style="red")


def print_warning(message: str) -> None:
    console.print(f"[yellow]![/yellow] {message}", style="yellow")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def _format_time(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "never"


def create_secrets_table(secrets: list[Any]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")

    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Type", style="blue")
    table.add_column("Views", justify="right", style="yellow")
    table.add_column("Expires", style="dim")
    table.add_column("Flags", style="magenta")

    for secret in secrets:
        views = str(secret.current_views)
        if secret.max_views is not None:
            views = f"{views}/{secret.max_views}"

        flags = []
        if secret.has_password:
            flags.append("password")
        if secret.delete_after_view:
            flags.append("one-time")
        if secret.is_public:
            flags.append("public")

        table.add_row(
            secret.id,
            secret.title,
            secret.content_type.value,
            views,
            _format_time(secret.expires_at),
            ", ".join(flags),
        )

    return table


def create_activity_table(entries: list[Any]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")

    table.add_column("When", style="cyan")
    table.add_column("Secret")
    table.add_column("IP", style="blue")
    table.add_column("User Agent", style="dim")

    for entry in entries:
        table.add_row(
            entry.accessed_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.secret_title or entry.secret_id,
            entry.ip_address or "",
            entry.user_agent or "",
        )

    return table


def create_shares_table(shares: list[Any]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")

    table.add_column("Secret", style="cyan")
    table.add_column("Title")
    table.add_column("Shared With")
    table.add_column("Permission", style="yellow")
    table.add_column("Shared", style="dim")

    for share in shares:
        table.add_row(
            share.secret_id,
            share.secret.title if share.secret else "",
            share.email,
            share.permission.value,
            _format_time(share.shared_at),
        )

    return table


def print_panel(title: str, content: str, style: str = "blue") -> None:
    panel = Panel(content, title=title, border_style=style)
    console.print(panel)
