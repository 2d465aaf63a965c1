"""CLI entry point.

Provides the command-line interface with commands for:
- chat: Interactive streaming chat about a problem
- version: Show version information
"""

# Configure logging early before other imports
import codoc.logging_config  # noqa: F401

import asyncio
from typing import Annotated

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from codoc import __version__
from codoc.chatbot.models import ConversationSession, ConversationStatus, MessageRole
from codoc.ratelimit import RateLimitGovernor

app = typer.Typer(
    name="codoc",
    help="Codoc learning assistant - streaming problem chatbot",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def render_rate_limit_notice(governor: RateLimitGovernor) -> bool:
    """Render the app-wide rate-limit notice.

    Returns:
        True if the user chose to retry (the governor is cleared), False to quit.
    """
    state = governor.get()
    retry_hint = f"\nRetry after: {state.retry_at:%H:%M:%S}" if state.retry_at else ""
    console.print(
        Panel(
            "[bold]Too many requests[/bold]\n"
            f"Please try again in a moment.{retry_hint}",
            title="⏳ Rate limited",
            border_style="yellow",
        )
    )
    if Confirm.ask("Retry now?", default=True):
        governor.clear()
        return True
    return False


class _StreamPrinter:
    """Prints the pending assistant message as the store updates it."""

    def __init__(self, problem_key: str):
        self.problem_key = problem_key
        self._target_id: str | None = None
        self._printed = ""

    def __call__(self, key: str, session: ConversationSession | None) -> None:
        if key != self.problem_key or session is None:
            return
        target_id = session.pending_assistant_message_id
        if target_id is not None and target_id != self._target_id:
            self._target_id = target_id
            self._printed = ""
            console.print("[bold green]Codoc:[/bold green] ", end="")
        if self._target_id is None:
            return
        message = session.find_message(self._target_id)
        content = message.content if message else ""
        if content.startswith(self._printed):
            console.print(content[len(self._printed) :], end="", markup=False, highlight=False)
        elif content:
            console.print()
            console.print(content, end="", markup=False, highlight=False)
        self._printed = content
        if target_id is None:
            console.print()
            self._target_id = None


@app.command()
def chat(
    problem_id: Annotated[str, typer.Argument(help="Problem to study")],
    message: Annotated[
        str | None,
        typer.Argument(help="Initial message (or leave empty for interactive mode)"),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", "-t", help="Bearer token (defaults to API_TOKEN)"),
    ] = None,
) -> None:
    """Interactive chat with the Codoc tutor about a problem.

    Examples:
        codoc chat 42 "The problem is about splitting a bill"
        codoc chat 42  # Interactive mode
    """
    asyncio.run(_chat_interactive(problem_id, message, token))


async def _chat_interactive(problem_id: str, initial_message: str | None, token: str | None) -> None:
    """Run interactive chat session."""
    from codoc.api.client import ChatbotClient
    from codoc.chatbot.conversation import ChatbotEngine
    from codoc.chatbot.store import SessionStore
    from codoc.settings import get_settings

    settings = get_settings()
    if token is None and settings.api_token is not None:
        token = settings.api_token.get_secret_value()

    governor = RateLimitGovernor()
    client = ChatbotClient(
        settings.api_base_url,
        governor=governor,
        token_supplier=lambda: token,
        timeout=settings.request_timeout,
    )
    store = SessionStore()
    engine = ChatbotEngine(client, store, settings=settings)

    console.print(
        Panel(
            f"[bold blue]Problem {problem_id}[/bold blue]\n\n"
            "Type [cyan]'exit'[/cyan] or [cyan]'quit'[/cyan] to end.",
            title="🧠 Codoc Chatbot",
            border_style="blue",
        )
    )

    engine.navigate(problem_id)
    session = engine.open(problem_id)
    for intro in session.messages:
        console.print("[bold green]Codoc:[/bold green]")
        console.print(Markdown(intro.content))

    unsubscribe = store.subscribe(_StreamPrinter(str(problem_id)))
    pending = initial_message
    try:
        while True:
            if governor.is_limited and not render_rate_limit_notice(governor):
                break

            if pending is None:
                try:
                    pending = Prompt.ask("\n[bold cyan]You[/bold cyan]")
                except (KeyboardInterrupt, EOFError):
                    break
            user_input, pending = pending.strip(), None
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                console.print("[dim]Ending conversation.[/dim]")
                break

            engine.set_draft(problem_id, user_input)
            await engine.send(problem_id)
            await engine.wait(problem_id)

            session = store.get(problem_id)
            if session and session.status is ConversationStatus.FAILED and session.last_error:
                console.print(f"[red]{session.last_error}[/red]")
            if session:
                last = session.messages[-1] if session.messages else None
                if last and last.role is MessageRole.ASSISTANT and last.meta and last.meta.show_summary_cta:
                    console.print("[yellow]📋 Ready for the problem summary card.[/yellow]")
    finally:
        unsubscribe()
        engine.navigate(None)
        await engine.shutdown()

    console.print("\n[dim]Chat session ended.[/dim]")


@app.command()
def version() -> None:
    """Show Codoc version information."""
    console.print(
        Panel(
            f"[bold]Codoc[/bold] v{__version__}\nStreaming problem chatbot",
            title="🧠 Version",
            border_style="blue",
        )
    )


# Entry point for: python -m codoc.cli.main
if __name__ == "__main__":
    app()
