"""Main CLI entry point for the chat session gateway."""

import typer
from rich.console import Console

from chat_gateway.cli.commands import agents
from chat_gateway.cli.commands.serve import serve_command
from chat_gateway.cli.commands.sessions import sessions_command
from chat_gateway.cli.commands.status import status_command

app = typer.Typer(
    name="chat-gateway",
    help="Chat session gateway - session lifecycle and auto-replies",
    no_args_is_help=True,
    add_completion=False,
)
console = Console()

app.command("serve")(serve_command)
app.command("status")(status_command)
app.command("sessions")(sessions_command)
app.add_typer(agents.app, name="agents")


def main() -> None:
    """Entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        raise typer.Exit(130)


if __name__ == "__main__":
    main()
