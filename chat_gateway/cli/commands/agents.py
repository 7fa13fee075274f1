"""Manage auto-reply agents."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from chat_gateway.autoreply.directory import AgentDirectory
from chat_gateway.cli.commands import default_db_path
from chat_gateway.cli.output import format_error, format_success, format_table, json_output
from chat_gateway.state import Agent, DatabaseManager, QAPair, Trigger, TriggerType

console = Console()

app = typer.Typer(help="Manage auto-reply agents", no_args_is_help=True)


async def _with_directory(db_path: Path, action):
    db = DatabaseManager(db_path)
    await db.initialize()
    try:
        return await action(AgentDirectory(db))
    finally:
        await db.close()


def _parse_qa(raw: str) -> QAPair:
    question, sep, answer = raw.partition("=")
    if not sep or not question.strip():
        raise typer.BadParameter(f"Expected 'question=answer', got {raw!r}")
    return QAPair(question=question.strip(), answer=answer.strip())


@app.command("list")
def list_agents(
    owner_id: str = typer.Option(None, "--owner", "-o", help="Owner scope (shared agents always shown)"),
    active_only: bool = typer.Option(False, "--active", help="Only active agents"),
    db_path: Path = typer.Option(None, "--db", help="Database path (default: $DB_PATH)"),
    json_flag: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List agents visible to an owner."""
    path = db_path or default_db_path()
    try:
        agents: list[Agent] = asyncio.run(
            _with_directory(path, lambda d: d.list_for_owner(owner_id, active_only=active_only))
        )
    except Exception as e:
        format_error(console, f"Failed to list agents: {e}")
        raise typer.Exit(code=1)

    if json_flag:
        json_output(console, agents)
        return
    if not agents:
        console.print("No agents found.")
        return
    rows = [
        (
            a.id[:8] + "...",
            a.name,
            a.owner_id or "(shared)",
            "Yes" if a.is_active else "No",
            ", ".join(t.keyword for t in a.triggers) or "-",
            str(a.usage_count),
        )
        for a in agents
    ]
    format_table(console, "Agents", ["ID", "Name", "Owner", "Active", "Triggers", "Uses"], rows)


@app.command("add")
def add_agent(
    name: str = typer.Option(..., "--name", "-n", help="Agent name"),
    prompt: str = typer.Option(..., "--prompt", "-p", help="Prompt sent to the text generator"),
    trigger: Optional[list[str]] = typer.Option(None, "--trigger", "-t", help="Trigger keyword (repeatable)"),
    exact: bool = typer.Option(False, "--exact", help="Triggers must match whole words"),
    qa: Optional[list[str]] = typer.Option(None, "--qa", help="Q&A pair as 'question=answer' (repeatable)"),
    owner_id: str = typer.Option(None, "--owner", "-o", help="Owner id (omit for a shared agent)"),
    inactive: bool = typer.Option(False, "--inactive", help="Create disabled"),
    db_path: Path = typer.Option(None, "--db", help="Database path (default: $DB_PATH)"),
    json_flag: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Add an agent to the directory."""
    trigger_type = TriggerType.EXACT if exact else TriggerType.CONTAINS
    triggers = tuple(Trigger(keyword=k.strip(), type=trigger_type) for k in trigger or [] if k.strip())
    qa_pairs = tuple(_parse_qa(item) for item in qa or [])
    path = db_path or default_db_path()
    try:
        agent = asyncio.run(
            _with_directory(
                path,
                lambda d: d.create(
                    name=name,
                    prompt=prompt,
                    owner_id=owner_id,
                    triggers=triggers,
                    qa_pairs=qa_pairs,
                    is_active=not inactive,
                ),
            )
        )
    except Exception as e:
        format_error(console, f"Failed to add agent: {e}")
        raise typer.Exit(code=1)

    if json_flag:
        json_output(console, agent)
        return
    format_success(console, f"Created agent {agent.name} ({agent.id})")
