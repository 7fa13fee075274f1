"""Show database and session status."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console

from chat_gateway.cli.commands import default_db_path
from chat_gateway.cli.output import format_error, format_key_value, format_table, json_output
from chat_gateway.state import AgentRepository, DatabaseManager, SessionRepository, SessionStatus

console = Console()


async def _get_status(db_path: Path) -> dict:
    db = DatabaseManager(db_path)
    await db.initialize()
    async with db.connection() as conn:
        sessions = await SessionRepository(conn).list_all()
        agents = await AgentRepository(conn).list_all()
    await db.close()

    counts = {s.value: 0 for s in SessionStatus}
    owners = set()
    for session in sessions:
        counts[session.status.value] += 1
        owners.add(session.owner_id)
    return {
        "db_path": str(db_path),
        "session_count": len(sessions),
        "owner_count": len(owners),
        "agent_count": len(agents),
        "active_agents": sum(1 for a in agents if a.is_active),
        "sessions_by_status": counts,
    }


def status_command(
    db_path: Path = typer.Option(None, "--db", help="Database path (default: $DB_PATH)"),
    json_flag: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show session and agent counts from the gateway database."""
    path = db_path or default_db_path()
    if not path.exists():
        format_error(console, f"Database not found: {path}", hint="Start the server once with 'chat-gateway serve'")
        raise typer.Exit(code=1)
    try:
        status = asyncio.run(_get_status(path))
    except Exception as e:
        format_error(console, f"Failed to get status: {e}")
        raise typer.Exit(code=1)

    if json_flag:
        json_output(console, status)
        return

    console.print("[bold]Gateway Status[/bold]")
    console.print()
    format_key_value(console, {
        "Database": status["db_path"],
        "Sessions": status["session_count"],
        "Owners": status["owner_count"],
        "Agents": f"{status['active_agents']} active / {status['agent_count']} total",
    })
    console.print()
    rows = [(name, str(count)) for name, count in status["sessions_by_status"].items()]
    format_table(console, "Sessions by Status", ["Status", "Count"], rows)
