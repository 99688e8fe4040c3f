"""Main CLI application using Typer."""
import asyncio

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..chat import ChatSession, extract_thinking
from ..llm import InferenceError
from ..logging_config import setup_logging
from ..store import Conversation, MessageRole, StoreError
from .callbacks import ConsoleCallback
from .providers import get_client, get_default_model, get_log_level, get_store, store_location

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="ollachat",
    help="Chat with models served by a local Ollama server",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

CHAT_HELP = "Commands: /new, /models, /model NAME, /retry, /exit"


def _resolve_conversation(conversations: list[Conversation], ref: str) -> Conversation:
    """Find a conversation by full id or unique id prefix."""
    ref = ref.strip().lower()
    matches = [c for c in conversations if str(c.id).startswith(ref)]
    if not matches:
        raise ValueError(f"No conversation matches '{ref}'")
    if len(matches) > 1:
        raise ValueError(f"'{ref}' matches {len(matches)} conversations; use more characters")
    return matches[0]


def _print_conversation(conversation: Conversation) -> None:
    """Render a stored conversation, dimming reasoning segments."""
    console.print(Panel(
        f"{escape(conversation.display_title)}\n[dim]{conversation.id} - {conversation.model or 'no model'}[/dim]",
        border_style="cyan",
    ))
    for message in conversation.messages:
        if message.role is MessageRole.ASSISTANT:
            console.print("[bold magenta]assistant[/]")
            split = extract_thinking(message.content)
            if split.reasoning:
                console.print(split.reasoning, style="dim", markup=False, highlight=False)
            console.print(split.answer, markup=False, highlight=False)
        else:
            console.print(f"[bold cyan]{message.role.value}[/]")
            console.print(message.content, markup=False, highlight=False)
        console.print()


@app.callback()
def main(
    log_level: str = typer.Option(
        None,
        "--log-level",
        "-L",
        help="Log level: debug, info, warning, error (default: OLLACHAT_LOG_LEVEL or warning)"
    )
):
    """Configure logging for every command."""
    setup_logging(log_level or get_log_level())


@app.command()
def models():
    """List the models available on the Ollama server."""
    async def _models():
        client = get_client()

        try:
            names = await client.list_models()
        except InferenceError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await client.close()

        if not names:
            console.print("[yellow]No models installed. Pull one with: ollachat pull <name>[/yellow]")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("#", style="dim", width=4)
        table.add_column("Model", style="cyan")
        for i, name in enumerate(names, 1):
            table.add_row(str(i), name)
        console.print(table)

    asyncio.run(_models())


@app.command()
def pull(
    name: str = typer.Argument(..., help="Model to pull, e.g. llama3.2:3b")
):
    """Download a model onto the Ollama server."""
    async def _pull():
        client = get_client()

        try:
            with console.status(f"Pulling {name}..."):
                status = await client.pull_model(name)
            console.print(f"[green]Pulled {escape(name)}: {escape(status)}[/green]")
        except InferenceError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await client.close()

    asyncio.run(_pull())


@app.command()
def conversations():
    """List saved conversations, most recent first."""
    async def _conversations():
        store = get_store(console)

        try:
            await store.connect()
            saved = await store.load()
        except StoreError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

        if not saved:
            console.print("[yellow]No saved conversations[/yellow]")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim", width=10)
        table.add_column("Title", style="cyan")
        table.add_column("Messages", style="green", width=8)
        table.add_column("Model", style="yellow")
        table.add_column("Created", style="dim")

        for conversation in saved:
            table.add_row(
                str(conversation.id)[:8],
                conversation.display_title,
                str(len(conversation.messages)),
                conversation.model or "-",
                conversation.created_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    asyncio.run(_conversations())


@app.command()
def show(
    conversation_id: str = typer.Argument(..., help="Conversation id or unique prefix")
):
    """Print a saved conversation."""
    async def _show():
        store = get_store(console)

        try:
            await store.connect()
            conversation = _resolve_conversation(await store.load(), conversation_id)
        except (StoreError, ValueError) as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

        _print_conversation(conversation)

    asyncio.run(_show())


@app.command()
def rename(
    conversation_id: str = typer.Argument(..., help="Conversation id or unique prefix"),
    title: str = typer.Argument(..., help="New title (empty string clears it)")
):
    """Rename a saved conversation."""
    async def _rename():
        store = get_store(console)

        try:
            await store.connect()
            conversation = _resolve_conversation(await store.load(), conversation_id)
            renamed = conversation.with_title(title)
            await store.upsert(renamed)
            console.print(f"[green]Renamed to: {escape(renamed.display_title)}[/green]")
        except (StoreError, ValueError) as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_rename())


@app.command()
def delete(
    conversation_id: str = typer.Argument(..., help="Conversation id or unique prefix"),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt"
    )
):
    """Delete a saved conversation."""
    async def _delete():
        store = get_store(console)

        try:
            await store.connect()
            conversation = _resolve_conversation(await store.load(), conversation_id)

            if not yes:
                confirm = typer.confirm(f"Delete '{conversation.display_title}'?")
                if not confirm:
                    console.print("[dim]Aborted.[/dim]")
                    return

            await store.remove(conversation.id)
            console.print(f"[green]Deleted {conversation.id}[/green]")
        except (StoreError, ValueError) as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_delete())


@app.command()
def chat(
    conversation_id: str = typer.Option(
        None,
        "--conversation",
        "-c",
        help="Continue a saved conversation (id or unique prefix)"
    ),
    model: str = typer.Option(
        None,
        "--model",
        "-m",
        help="Model to chat with (default: OLLAMA_MODEL or the first installed model)"
    ),
    new: bool = typer.Option(
        False,
        "--new",
        "-n",
        help="Start a new conversation instead of continuing the most recent one"
    )
):
    """Interactive chat with a local model."""
    async def _chat():
        store = get_store(console)
        client = get_client()
        session = ChatSession(client, store, model=model or get_default_model())
        callback = ConsoleCallback(console)
        session.subscribe(callback)

        try:
            await store.connect()
            await session.start()

            if model:
                session.select_model(model)

            if conversation_id:
                target = _resolve_conversation(session.conversations, conversation_id)
                session.select_conversation(target.id)
            elif new or session.selected_conversation is None:
                await session.new_conversation()

            callback.follow(session.selected_conversation_id)
            current = session.selected_conversation
            if current is not None and current.messages:
                _print_conversation(current)

            console.print(f"[dim]Model: {session.selected_model or 'none'} | {CHAT_HELP}[/dim]\n")

            while True:
                try:
                    line = await asyncio.to_thread(console.input, "[bold cyan]you[/] > ")
                except (EOFError, KeyboardInterrupt):
                    console.print()
                    break

                command = line.strip()
                if command in ("/exit", "/quit"):
                    break
                if command == "/new":
                    await session.new_conversation()
                    callback.follow(session.selected_conversation_id)
                    console.print("[dim]Started a new conversation[/dim]")
                    continue
                if command in ("/models", "/retry"):
                    names = await session.load_models()
                    if names:
                        console.print(f"[dim]Models: {', '.join(names)}[/dim]")
                    continue
                if command.startswith("/model "):
                    session.select_model(command.split(maxsplit=1)[1])
                    console.print(f"[dim]Model: {session.selected_model}[/dim]")
                    continue

                task = await session.send_message(line)
                if task is not None:
                    await task

        except (StoreError, ValueError) as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await session.close()
            await store.disconnect()
            await client.close()

    asyncio.run(_chat())


@app.command()
def health():
    """Check the Ollama server and the conversation store."""
    async def _health():
        all_healthy = True

        client = get_client()
        try:
            if await client.health_check():
                console.print("[green]+[/green] Ollama server: OK")
            else:
                console.print("[red]x[/red] Ollama server: UNREACHABLE")
                all_healthy = False
        finally:
            await client.close()

        store = get_store(console)
        try:
            await store.connect()
            saved = await store.load()
            console.print(
                f"[green]+[/green] Conversation store ({store.backend_type}): "
                f"{len(saved)} conversation(s) at {store_location(store)}"
            )
        except StoreError as e:
            console.print(f"[red]x[/red] Conversation store: FAILED ({escape(str(e))})")
            all_healthy = False
        finally:
            await store.disconnect()

        if not all_healthy:
            raise typer.Exit(code=1)

    asyncio.run(_health())
