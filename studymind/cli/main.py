"""StudyMind CLI main entry point using Typer."""

import asyncio
import logging
from pathlib import Path
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="studymind",
    help="Chat with your study library.",
    no_args_is_help=True,
)
console = Console()


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_time=False)],
    )


@app.command()
def init(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Initialize StudyMind: create tables and a default config."""
    _setup_logging(verbose)

    async def _init():
        from studymind.storage.db import close_db, init_db

        console.print("[bold]Welcome to StudyMind[/bold]", style="green")

        config_dir = Path.home() / ".config/studymind"
        config_dir.mkdir(parents=True, exist_ok=True)
        console.print(f"  Config dir: {config_dir}")

        console.print("  Initializing database...")
        try:
            await init_db()
        finally:
            await close_db()
        console.print("  Database ready.")

        config_path = config_dir / "config.toml"
        if not config_path.exists():
            config_path.write_text(
                "[general]\n"
                'db_url = "postgresql+asyncpg://localhost/studymind"\n'
                'log_level = "INFO"\n\n'
                "[anthropic]\n"
                '# api_key = ""  # Or set ANTHROPIC_API_KEY env var\n'
                'model = "claude-haiku-4-5-20251001"\n\n'
                "[storage]\n"
                '# url = ""  # Or set SUPABASE_URL env var\n'
                'bucket = "studymind"\n\n'
                "[tools]\n"
                'tools_url = "http://localhost:8000/tools"\n\n'
                "[chat]\n"
                "summary_window = 10\n\n"
                "[raw_storage]\n"
                "store_ai_conversations = true\n"
            )
            console.print(f"  Config written: {config_path}")

        console.print("\n[bold green]StudyMind initialized![/bold green]")
        console.print("\nNext step: [cyan]studymind chat USER_ID SESSION_UID \"create a folder called Biology\"[/cyan]")

    asyncio.run(_init())


@app.command()
def chat(
    user_id: int = typer.Argument(help="Owner of the library"),
    session_uid: UUID = typer.Argument(help="Chat session uid (new or existing)"),
    message: str = typer.Argument(help="Your message"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Send one message and print the assistant's reply."""
    _setup_logging(verbose)

    async def _chat():
        from studymind.errors import StudyMindError
        from studymind.processing.markers import KIND_CREATED, parse_markers, strip_markers
        from studymind.processing.orchestrator import run_chat_turn
        from studymind.processing.state import ConversationTurn
        from studymind.storage.db import close_db, get_session
        from studymind.storage.library import get_chat_session, list_messages

        try:
            async with get_session() as session:
                history = []
                existing = await get_chat_session(session, user_id, session_uid)
                if existing is not None:
                    history = [
                        ConversationTurn(role=m.role, message=m.message)
                        for m in await list_messages(session, existing.id)
                    ]

                result = await run_chat_turn(
                    session,
                    user_id=user_id,
                    session_uid=str(session_uid),
                    message=message,
                    history=history,
                )
        except StudyMindError as e:
            console.print(f"[red]{e.message}[/red] ({e.category})")
            raise typer.Exit(1)
        finally:
            await close_db()

        reply = result.assistant_message.message
        console.print(f"\n[bold]{result.chat_session.title}[/bold]\n")
        console.print(strip_markers(reply))

        created = parse_markers(reply, kinds=(KIND_CREATED,))
        if created:
            table = Table(title="Created")
            table.add_column("Name", style="cyan")
            table.add_column("Type", style="green")
            table.add_column("UID", style="dim")
            for marker in created:
                table.add_row(marker.name, marker.type, marker.uid)
            console.print(table)

    asyncio.run(_chat())


@app.command()
def sessions(
    user_id: int = typer.Argument(help="Owner of the sessions"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by title"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """List active chat sessions."""
    _setup_logging(verbose)

    async def _sessions():
        from studymind.storage.db import close_db, get_session
        from studymind.storage.library import list_chat_sessions

        try:
            async with get_session() as session:
                chats = await list_chat_sessions(session, user_id, search=search)
        finally:
            await close_db()

        if not chats:
            console.print("[dim]No chat sessions.[/dim]")
            return

        table = Table(title="Chat Sessions")
        table.add_column("UID", style="dim")
        table.add_column("Title", style="cyan")
        table.add_column("Last message", style="green")
        for c in chats:
            last = c.last_message_at.strftime("%Y-%m-%d %H:%M") if c.last_message_at else "never"
            table.add_row(str(c.uid), c.title, last)
        console.print(table)

    asyncio.run(_sessions())


@app.command()
def history(
    user_id: int = typer.Argument(help="Owner of the session"),
    session_uid: UUID = typer.Argument(help="Chat session uid"),
    calls: bool = typer.Option(False, "--calls", help="Also show the AI calls made for this session"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Print the turns of one chat session."""
    _setup_logging(verbose)

    async def _history():
        from studymind.storage.db import close_db, get_session
        from studymind.storage.library import get_chat_session, list_messages
        from studymind.storage.raw import get_ai_conversations

        try:
            async with get_session() as session:
                chat_session = await get_chat_session(session, user_id, session_uid)
                if chat_session is None:
                    console.print(f"[red]Chat session not found: {session_uid}[/red]")
                    raise typer.Exit(1)
                messages = await list_messages(session, chat_session.id)
                ai_calls = await get_ai_conversations(session, str(session_uid)) if calls else []
        finally:
            await close_db()

        console.print(f"\n[bold]{chat_session.title}[/bold]")
        if chat_session.summary:
            console.print(f"[dim]{chat_session.summary}[/dim]")
        for m in messages:
            style = "cyan" if m.role == "USER" else "green"
            console.print(f"\n[{style}]{m.role}[/{style}]")
            console.print(m.message)

        if ai_calls:
            table = Table(title="AI Calls")
            table.add_column("Type", style="cyan")
            table.add_column("Tokens in/out", justify="right")
            table.add_column("Cost", justify="right")
            table.add_column("Latency", justify="right")
            for c in ai_calls:
                table.add_row(
                    c.session_type,
                    f"{c.input_tokens or 0}/{c.output_tokens or 0}",
                    f"${c.cost_usd or 0:.4f}",
                    f"{c.latency_ms or 0}ms",
                )
            console.print(table)

    asyncio.run(_history())


@app.command()
def index(
    user_id: int = typer.Argument(help="Owner of the document"),
    item_uid: UUID = typer.Argument(help="DOCUMENT library item uid"),
    text_file: Path = typer.Argument(help="Plain-text extract of the document", exists=True, dir_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Index a document's text so chat can search it."""
    _setup_logging(verbose)

    async def _index():
        from studymind.storage.db import close_db, get_session
        from studymind.storage.library import get_item_by_uid
        from studymind.storage.vectors import get_vector_store

        try:
            async with get_session() as session:
                item = await get_item_by_uid(session, user_id, item_uid)
        finally:
            await close_db()

        if item is None or item.type != "DOCUMENT":
            console.print(f"[red]No active DOCUMENT with uid {item_uid}[/red]")
            raise typer.Exit(1)

        store = get_vector_store()
        store.delete_item(item.id)
        count = store.add_document_chunks(
            item.id,
            user_id,
            text_file.read_text(encoding="utf-8", errors="replace"),
            metadata={"name": item.name, "uid": str(item.uid)},
        )
        console.print(f"  Indexed [cyan]{item.name}[/cyan]: {count} chunks")

    asyncio.run(_index())


@app.command()
def download(
    file_path: str = typer.Argument(help="Stored object path (metadata filePath)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to write the file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Download a generated file from object storage."""
    _setup_logging(verbose)

    async def _download():
        from studymind.errors import StudyMindError
        from studymind.storage.objects import get_object_storage

        try:
            data = await get_object_storage().download(file_path)
        except StudyMindError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(1)

        target = output or Path(Path(file_path).name)
        target.write_bytes(data)
        console.print(f"  Saved {len(data)} bytes to {target}")

    asyncio.run(_download())


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8080, "--port", "-p"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run the HTTP API."""
    _setup_logging(verbose)

    import uvicorn

    from studymind.api.routes import app as api_app

    uvicorn.run(api_app, host=host, port=port, log_level="debug" if verbose else "info")


def main():
    """Entry point for the studymind CLI."""
    app()


if __name__ == "__main__":
    main()
