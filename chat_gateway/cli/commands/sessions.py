"""List sessions stored in the gateway database."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from chat_gateway.cli.commands import default_db_path
from chat_gateway.cli.output import format_error, format_table, json_output
from chat_gateway.cli.output.formatters import format_status
from chat_gateway.state import DatabaseManager, Session, SessionRepository

console = Console()


async def _list_sessions(db_path: Path, owner_id: Optional[str]) -> list[Session]:
    db = DatabaseManager(db_path)
    await db.initialize()
    async with db.connection() as conn:
        repo = SessionRepository(conn)
        sessions = await repo.list_by_owner(owner_id) if owner_id else await repo.list_all()
    await db.close()
    return sessions


def sessions_command(
    owner_id: str = typer.Option(None, "--owner", "-o", help="Filter by owner"),
    db_path: Path = typer.Option(None, "--db", help="Database path (default: $DB_PATH)"),
    json_flag: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List chat sessions."""
    path = db_path or default_db_path()
    try:
        sessions = asyncio.run(_list_sessions(path, owner_id))
    except Exception as e:
        format_error(console, f"Failed to list sessions: {e}")
        raise typer.Exit(code=1)

    if json_flag:
        json_output(console, sessions)
        return

    if not sessions:
        console.print("No sessions found.")
        return

    rows = [
        (
            s.id[:8] + "...",
            s.name,
            s.owner_id,
            format_status(s.status.value),
            s.phone_number or "-",
            s.last_activity.strftime("%Y-%m-%d %H:%M") if s.last_activity else "-",
        )
        for s in sessions
    ]
    format_table(console, "Sessions", ["ID", "Name", "Owner", "Status", "Phone", "Last Activity"], rows)
