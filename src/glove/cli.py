"""Command-line interface: interactive REPL or a single headless request."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, List, Optional, Set

from pydantic import BaseModel, Field
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import __version__
from .config import Config
from .display import DisplayManager, DisplaySlot
from .errors import AbortError, GloveError
from .executor import PERMISSION_RENDERER
from .glove import Glove
from .logger import get_logger

log = get_logger("cli")


class AskUserInput(BaseModel):
    question: str = Field(description="The question to show the user")


async def ask_user(params: AskUserInput, display: DisplayManager) -> dict:
    """Ask the person at the terminal a question and wait for the answer."""
    answer = await display.push_and_wait("ask_user", {"question": params.question})
    return {"answer": answer}


class ConsoleSubscriber:
    """Streams model output and tool outcomes to the console."""

    def __init__(self, console: Console):
        self.console = console
        self.streamed = False

    def record(self, event_type: str, data: Any) -> None:
        if event_type == "text_delta":
            self.streamed = True
            self.console.print(data.get("text", ""), end="", markup=False, highlight=False)
        elif event_type == "tool_use":
            self.console.print(f"\n[cyan]> {data.get('name')}[/cyan]")
        elif event_type == "tool_use_result":
            status = data["result"]["status"]
            color = {"success": "green", "error": "red", "aborted": "yellow"}.get(status, "white")
            detail = data["result"].get("message") or ""
            self.console.print(f"[{color}]  {data['tool_name']}: {status}[/{color}] [dim]{detail}[/dim]")


class SlotResolver:
    """Answers pending display slots by prompting on the terminal.

    Prompts run in a worker thread; the answer is handed back through
    ``DisplayManager.resolve``, which is safe to call from any thread.
    """

    def __init__(self, display: DisplayManager, console: Console):
        self.display = display
        self.console = console
        self._handled: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        display.subscribe(self._on_stack)

    def _on_stack(self, stack: List[DisplaySlot]) -> None:
        for slot in stack:
            if slot.id in self._handled or not self.display.is_pending(slot.id):
                continue
            self._handled.add(slot.id)
            task = asyncio.get_running_loop().create_task(self._answer(slot))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _answer(self, slot: DisplaySlot) -> None:
        value = await asyncio.to_thread(self._ask, slot)
        self.display.resolve(slot.id, value)

    def _ask(self, slot: DisplaySlot) -> Any:
        data = slot.data or {}
        if slot.renderer == PERMISSION_RENDERER:
            self.console.print(Panel(
                f"Tool [bold]{data.get('tool_name')}[/bold] wants to run with:\n{data.get('tool_input')}",
                title="Permission",
                border_style="yellow",
            ))
            return Confirm.ask("Allow?", console=self.console)
        if slot.renderer == "ask_user":
            return Prompt.ask(f"\n[bold magenta]{data.get('question', '?')}[/bold magenta]", console=self.console)
        return Prompt.ask(f"\n[{slot.renderer}] {data}", console=self.console)


class InterruptGuard:
    """Turns Ctrl+C during a request into ``Glove.abort``.

    A second Ctrl+C within the same request raises ``KeyboardInterrupt``.
    The previous SIGINT handler is restored on exit.
    """

    def __init__(self, glove: Glove):
        self.glove = glove
        self.interrupted = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._original_sigint = None

    def __enter__(self) -> "InterruptGuard":
        self._loop = asyncio.get_running_loop()
        self.interrupted = False
        self._original_sigint = signal.signal(signal.SIGINT, self._sigint_handler)
        return self

    def _sigint_handler(self, signum, frame) -> None:
        if self.interrupted:
            raise KeyboardInterrupt()
        self.interrupted = True
        log.info("ctrl-c: aborting current request")
        self._loop.call_soon_threadsafe(self.glove.abort, "ctrl-c")

    def __exit__(self, *exc) -> None:
        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)
            self._original_sigint = None


def build_session(config: Config, console: Console) -> Glove:
    glove = Glove(
        model=config.create_adapter(),
        system_prompt=config.system_prompt,
        max_retries=config.max_retries,
        max_turns=config.max_turns,
        token_limit=config.token_limit,
    )
    glove.fold(
        "ask_user",
        "Ask the user a question and wait for the answer.",
        AskUserInput,
        ask_user,
    )
    glove.add_subscriber(ConsoleSubscriber(console))
    SlotResolver(glove.display, console)
    return glove.build()


class InteractiveSession:
    """REPL driving one glove session."""

    def __init__(self, config: Config, console: Optional[Console] = None):
        self.config = config
        self.console = console or Console()
        self.glove: Optional[Glove] = None

    def _show_welcome(self) -> None:
        self.console.print()
        self.console.print(Panel.fit(
            f"[bold blue]glove {__version__}[/bold blue]\n"
            f"Provider: [cyan]{self.config.provider}[/cyan]  Model: [cyan]{self.config.model or 'default'}[/cyan]",
            border_style="blue",
        ))
        self.console.print("[dim]Commands: /help, /stats, /tasks, /exit[/dim]")
        self.console.print()

    def _show_help(self) -> None:
        self.console.print(Panel(
            "/stats  tool call statistics\n"
            "/tasks  current task list\n"
            "/exit   leave the session",
            title="Help",
            border_style="cyan",
        ))

    def _show_stats(self) -> None:
        summary = self.glove.metrics.summary()
        table = Table(title="Tool calls")
        for column in ("tool", "calls", "errors", "aborted", "avg ms"):
            table.add_column(column)
        for name, stats in summary["per_tool"].items():
            table.add_row(name, str(stats["count"]), str(stats["errors"]), str(stats["aborted"]),
                          f"{stats['avg_ms']:.1f}")
        self.console.print(table)

    async def _show_tasks(self) -> None:
        tasks = await self.glove.context.get_tasks()
        if not tasks:
            self.console.print("[dim]No tasks.[/dim]")
            return
        for t in tasks:
            self.console.print(f"  [{t.status}] {t.content}")

    async def run(self) -> None:
        self.glove = build_session(self.config, self.console)
        self._show_welcome()
        try:
            while True:
                try:
                    user_input = (await asyncio.to_thread(Prompt.ask, "[bold]You[/bold]", console=self.console)).strip()
                except (KeyboardInterrupt, EOFError):
                    self.console.print("\n[dim]Goodbye![/dim]")
                    break

                if not user_input:
                    continue
                if user_input.startswith("/"):
                    cmd = user_input.lower()
                    if cmd in ("/exit", "/quit", "/q"):
                        self.console.print("[dim]Goodbye![/dim]")
                        break
                    elif cmd == "/help":
                        self._show_help()
                    elif cmd == "/stats":
                        self._show_stats()
                    elif cmd == "/tasks":
                        await self._show_tasks()
                    else:
                        self.console.print(f"[yellow]Unknown command: {cmd}[/yellow]")
                    continue

                try:
                    with InterruptGuard(self.glove):
                        await self.glove.process_request(user_input)
                except AbortError:
                    self.console.print("\n[yellow]Aborted.[/yellow]")
                except GloveError as e:
                    log.error("request failed: %s", e)
                    self.console.print(f"\n[red]Error: {e}[/red]")
                self.console.print()
        finally:
            await self.glove.aclose()


async def _run_once(config: Config, message: str, console: Console) -> int:
    glove = build_session(config, console)
    subscriber = next(s for s in glove.events.subscribers if isinstance(s, ConsoleSubscriber))
    try:
        with InterruptGuard(glove):
            result = await glove.process_request(message)
    except GloveError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await glove.aclose()
    if subscriber.streamed:
        console.print()
    else:
        console.print(Panel(result.text or "(no response)", title="Response", border_style="green"))
    return 0


def _load_config(args: argparse.Namespace) -> Config:
    config = Config.from_env(Path(args.env))
    if args.provider:
        config.provider = args.provider
    if args.model:
        config.model = args.model
    if args.no_stream:
        config.stream = False
    return config


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run a glove agent session in the terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  glove
  glove --provider openai --model gpt-4.1-mini
  glove -m "Plan a three day trip to Lisbon"

The log is written to .glove_output/glove.log (override with GLOVE_LOG_DIR).
        """,
    )
    parser.add_argument("-m", "--message", type=str, help="Run a single request and exit")
    parser.add_argument("--provider", type=str, help="Provider id (anthropic, openai, openrouter, ...)")
    parser.add_argument("--model", type=str, help="Model name (default: provider default)")
    parser.add_argument("--no-stream", action="store_true", help="Disable streaming responses")
    parser.add_argument("-e", "--env", type=str, default=".env", help="Path to .env file (default: .env)")
    parser.add_argument("--version", action="version", version=f"glove {__version__}")
    args = parser.parse_args()

    config = _load_config(args)
    try:
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    console = Console()
    if args.message:
        sys.exit(asyncio.run(_run_once(config, args.message, console)))
    asyncio.run(InteractiveSession(config, console).run())


if __name__ == "__main__":
    main()
