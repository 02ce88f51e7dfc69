"""CLI - Interactive chat with a tool-using agent."""

import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory

from .config import EngineSettings, load_raw_config, settings_from_dict
from .config_validator import Severity, has_errors, validate_config
from .core.loop import AgentLoop, format_output
from .core.options import OUTPUT_FORMATS
from .errors import AgentError, describe_failure
from .observability import LOG_FORMAT, AgentObserver
from .pause import PauseResumeRegistry
from .runner import run_with_human_input
from .tools import AskHumanTool, CalculatorTool


console = Console()


def print_banner():
    """Print welcome banner."""
    banner = """
╔═══════════════════════════════════════════════════════════╗
║                     🤖 Agent Loop                          ║
║          Tool-using assistant with human-in-the-loop       ║
╠═══════════════════════════════════════════════════════════╣
║  Commands:                                                ║
║    /help     - Show this help message                     ║
║    /reset    - Reset conversation                         ║
║    /stats    - Show session statistics                    ║
║    /quit     - Exit                                       ║
╚═══════════════════════════════════════════════════════════╝
"""
    console.print(banner, style="cyan")


def print_help():
    """Print help message."""
    help_text = """
## Available Commands

| Command | Description |
|---------|-------------|
| `/help` | Show this help message |
| `/reset` | Reset conversation history |
| `/stats` | Show model, tool and token statistics |
| `/format <fmt>` | Output format: text, json or full |
| `/quit` or `/exit` | Exit |

## Example Prompts

- "What is (17 * 23) ^ 2?"
- "Help me plan a trip" (the agent may ask you follow-up questions)
"""
    console.print(Markdown(help_text))


class ChatSession:
    """State of one interactive chat: the agent loop and its settings."""

    def __init__(self, loop: AgentLoop, settings: EngineSettings, session_id: str = "cli", output_format: str = "text"):
        self.loop = loop
        self.settings = settings
        self.session_id = session_id
        self.output_format = output_format
        self.turns = 0

    async def ask(self, message: str):
        """Run one user turn, prompting the human whenever the agent pauses."""
        options = self.settings.agent.run_options(
            message,
            session_id=self.session_id,
            human_timeout_seconds=self.settings.pause.human_timeout_seconds,
        )
        result = await run_with_human_input(self.loop, options, on_question=self._answer_question)
        self.turns += 1
        return format_output(result, self.output_format)

    async def _answer_question(self, execution_id: str, result) -> None:
        console.print(Panel(result.response, title="❓ The agent needs your input", style="yellow"))
        answer = await asyncio.get_running_loop().run_in_executor(None, lambda: input("💬 Your answer: "))
        registry = self.loop.pause_registry
        if answer.strip():
            registry.resume_with_response(execution_id, answer.strip())
        else:
            registry.cancel_execution(execution_id, "No answer given")

    async def reset(self) -> None:
        if self.loop.memory is not None:
            await self.loop.memory.clear(self.session_id)
        if self.loop.observer is not None:
            self.loop.observer.clear()
        self.turns = 0


async def handle_command(command: str, chat: ChatSession) -> bool:
    """Handle special commands. Returns True if should continue, False to exit."""
    parts = command.strip().split()
    cmd = parts[0].lower() if parts else ""

    if cmd in ["/quit", "/exit", "/q"]:
        console.print("\n👋 Goodbye!", style="yellow")
        return False

    elif cmd == "/help":
        print_help()

    elif cmd == "/reset":
        await chat.reset()
        console.print("🔄 Conversation reset.", style="green")

    elif cmd == "/stats":
        observer = chat.loop.observer
        stats = observer.get_session_stats() if observer else {}
        table = Table(title="📊 Session Statistics")
        table.add_column("Metric")
        table.add_column("Value", justify="right")
        table.add_row("turns", str(chat.turns))
        for key, value in stats.items():
            table.add_row(key, f"{value:.0f}" if isinstance(value, float) else str(value))
        console.print(table)

    elif cmd == "/format":
        if len(parts) != 2 or parts[1] not in OUTPUT_FORMATS:
            console.print(f"Usage: /format <{'|'.join(OUTPUT_FORMATS)}>", style="red")
        elif parts[1] == "structured":
            console.print("Structured output needs a schema; use the HTTP API for structured runs.", style="red")
        else:
            chat.output_format = parts[1]
            console.print(f"Output format set to {parts[1]}.", style="green")

    else:
        console.print(f"Unknown command: {command}. Type /help for available commands.", style="red")

    return True


def print_response(output) -> None:
    console.print("\n🤖 Assistant:", style="bold green")
    if isinstance(output, str):
        console.print(Markdown(output))
    else:
        console.print_json(data=output)


async def run_interactive(chat: ChatSession):
    """Run interactive chat loop."""
    history_file = Path.home() / ".agentloop_history"
    session = PromptSession(history=FileHistory(str(history_file)))

    print_banner()

    while True:
        try:
            user_input = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: session.prompt("\n📝 You: "),
            )

            user_input = user_input.strip()

            if not user_input:
                continue

            if user_input.startswith("/"):
                should_continue = await handle_command(user_input, chat)
                if not should_continue:
                    break
                continue

            console.print("\n🤔 Thinking...", style="dim")

            try:
                print_response(await chat.ask(user_input))
            except AgentError as e:
                console.print(f"\n❌ {describe_failure(e)}", style="red")

        except KeyboardInterrupt:
            console.print("\n\n👋 Goodbye!", style="yellow")
            break
        except EOFError:
            console.print("\n👋 Goodbye!", style="yellow")
            break


def build_chat(settings: EngineSettings, session_id: str = "cli", output_format: str = "text", verbose: bool = False) -> ChatSession:
    observer = AgentObserver(agent_id="cli", verbose=verbose)
    loop = AgentLoop(
        settings.model.create(),
        tools=[CalculatorTool(), AskHumanTool(timeout_seconds=settings.pause.human_timeout_seconds)],
        memory=settings.agent.build_memory(),
        observer=observer,
        retry_config=settings.retry,
        pause_registry=PauseResumeRegistry(),
    )
    return ChatSession(loop, settings, session_id=session_id, output_format=output_format)


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Agent Loop - tool-using assistant with human-in-the-loop pauses"
    )
    parser.add_argument(
        "--config", "-c",
        default="config/config.local.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--prompt", "-p",
        help="Run a single prompt and exit (non-interactive mode)",
    )
    parser.add_argument(
        "--session", "-s",
        default="cli",
        help="Memory session id (default: cli)",
    )
    parser.add_argument(
        "--format", "-f",
        default="text",
        choices=[f for f in OUTPUT_FORMATS if f != "structured"],
        help="Output format",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output (log every model and tool call)",
    )

    args = parser.parse_args()

    try:
        raw = load_raw_config(args.config)
    except FileNotFoundError:
        console.print(f"⚠️ Config file not found: {args.config}", style="yellow")
        console.print("Using default configuration. Set OPENAI_API_KEY environment variable.", style="dim")
        raw = {"model": {"api_key": "${OPENAI_API_KEY}"}}

    issues = validate_config(raw)
    for issue in issues:
        style = "red" if issue.severity is Severity.ERROR else "yellow"
        console.print(f"[{issue.severity.value}] {issue.field}: {issue.message}", style=style)
    if has_errors(issues):
        sys.exit(1)

    settings = settings_from_dict(raw)
    logging.basicConfig(level=logging.DEBUG if args.verbose else settings.log_level, format=LOG_FORMAT)

    try:
        chat = build_chat(settings, session_id=args.session, output_format=args.format, verbose=args.verbose)
    except ValueError as e:
        console.print(f"❌ {e}", style="red")
        sys.exit(1)

    if args.prompt:
        async def run_once():
            try:
                print_response(await chat.ask(args.prompt))
            except AgentError as e:
                console.print(f"❌ {describe_failure(e)}", style="red")
                sys.exit(1)

        asyncio.run(run_once())
    else:
        asyncio.run(run_interactive(chat))


if __name__ == "__main__":
    main()
