"""Command-line interface: run a transcript (or a batch of chats) through the driver."""

import argparse
import asyncio
import importlib
import json
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel

from .analysis import process_chats
from .config import Config
from .driver import ConversationDriver, RunResult
from .errors import TokenSourceFailure
from .events import ConsoleRenderer, SSEWriter
from .logger import get_logger, init_logging
from .messages import dump_messages, load_transcript, save_transcript
from .streaming_client import ChatCompletionsClient
from .token_source import ScriptedModel, load_script
from .tools.metrics import ToolMetrics
from .tools.registry import ToolContext, ToolRegistry

log = get_logger("cli")


def load_tools(module_names) -> ToolRegistry:
    """Build a registry from modules exposing ``register(registry)``."""
    registry = ToolRegistry()
    for name in module_names or []:
        module = importlib.import_module(name)
        register = getattr(module, "register", None)
        if register is None:
            raise ValueError(f"Tool module {name!r} has no register(registry) function")
        register(registry)
        log.info("Loaded tools from %s: %s", name, ", ".join(registry.names()))
    return registry


def read_instruction(args: argparse.Namespace) -> str:
    if args.instruction_file:
        return Path(args.instruction_file).read_text(encoding="utf-8")
    return args.instruction or ""


def load_config(args: argparse.Namespace) -> Config:
    env_path = Path(args.env)
    config = Config.from_env(env_path) if env_path.exists() else Config.from_env()
    if args.step_limit is not None:
        config.step_limit = args.step_limit
    if args.no_early_exit:
        config.early_exit = False
    return config


def make_sink(args: argparse.Namespace, console: Console):
    if args.format == "sse":
        def write(text: str) -> None:
            sys.stdout.write(text)
            sys.stdout.flush()
        return SSEWriter(write)
    return ConsoleRenderer(console, show_thinking=not args.quiet)


def make_model(args: argparse.Namespace, config: Config):
    """Scripted model for --script, the configured endpoint otherwise."""
    if args.script:
        data = json.loads(Path(args.script).read_text(encoding="utf-8"))
        return ScriptedModel(load_script(data), cancellable=config.early_exit)
    config.validate()
    return ChatCompletionsClient.from_config(config)


async def _run_transcript(args: argparse.Namespace, config: Config, console: Console) -> Optional[RunResult]:
    messages = load_transcript(args.transcript)
    registry = load_tools(args.tools)
    metrics = ToolMetrics()
    model = make_model(args, config)
    driver = ConversationDriver.from_config(config, model, registry, sink=make_sink(args, console), metrics=metrics)
    context = ToolContext(user_id=args.user_id, conversation_id=args.conversation_id)
    try:
        return await driver.run(messages, read_instruction(args), context=context, timeout=args.timeout)
    except TokenSourceFailure as e:
        if args.output:
            save_transcript(e.messages, args.output)
        raise
    finally:
        if isinstance(model, ChatCompletionsClient):
            await model.aclose()
        log.info("Tool metrics: %s", json.dumps(metrics.summary()))


def run_command(args: argparse.Namespace) -> int:
    console = Console(stderr=args.format == "sse")
    try:
        config = load_config(args)
        config.validate(require_endpoint=False)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1

    try:
        result = asyncio.run(_run_transcript(args, config, console))
    except (ValueError, ImportError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1
    except OSError as e:
        console.print(f"[red]Cannot read input: {rich_escape(str(e))}[/red]")
        return 1
    except TokenSourceFailure as e:
        console.print(f"[red]Model stream failed: {e}[/red]")
        return 2

    if args.output:
        save_transcript(result.messages, args.output)
    elif args.format == "human":
        console.print(Panel(dump_messages(result.messages), title="Transcript", border_style="cyan"))
    if args.format == "human":
        console.print(
            f"[dim]stop_reason={result.stop_reason} turns={result.turns} steps={result.step_count}[/dim]"
        )
    return 0


async def _analyze(args: argparse.Namespace, config: Config, console: Console) -> Any:
    chats_path = Path(args.chats)
    data = json.loads(chats_path.read_text(encoding="utf-8"))
    chats = data.get("chats", []) if isinstance(data, dict) else data
    registry = load_tools(args.tools)
    model = make_model(args, config)
    driver = ConversationDriver.from_config(config, model, registry, sink=make_sink(args, console))
    instruction = read_instruction(args)
    processed = {}

    def on_processed(chat, result):
        processed[chat.get("id")] = dict(chat, analysis=[m.to_dict() for m in result.messages])

    try:
        await process_chats(driver, chats, lambda chat: instruction, on_processed)
    finally:
        if isinstance(model, ChatCompletionsClient):
            await model.aclose()
    return [processed.get(chat.get("id"), chat) for chat in chats]


def analyze_command(args: argparse.Namespace) -> int:
    console = Console(stderr=args.format == "sse")
    try:
        config = load_config(args)
        config.validate(require_endpoint=False)
        chats = asyncio.run(_analyze(args, config, console))
    except (ValueError, ImportError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1
    except OSError as e:
        console.print(f"[red]Cannot read input: {rich_escape(str(e))}[/red]")
        return 1

    output = Path(args.output) if args.output else Path(args.chats)
    output.write_text(json.dumps(chats, indent=2, ensure_ascii=False), encoding="utf-8")
    return 0


def _add_common(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--instruction", type=str, help="System instruction text")
    group.add_argument("--instruction-file", type=str, help="Read the system instruction from a file")
    parser.add_argument("--script", type=str,
                        help="JSON file of canned model turns to replay instead of calling the endpoint")
    parser.add_argument("--tools", action="append", metavar="MODULE",
                        help="Module exposing register(registry); may be repeated")
    parser.add_argument("--step-limit", type=int, default=None,
                        help="Maximum regular turns before a final answer is demanded (default: 150)")
    parser.add_argument("--no-early-exit", action="store_true",
                        help="Read every model message to the end before dispatching tools")
    parser.add_argument("--format", choices=["human", "sse"], default="human",
                        help="Event output format (default: human)")
    parser.add_argument("--output", type=str, help="Where to write the resulting JSON")
    parser.add_argument("-q", "--quiet", action="store_true", help="Hide thinking events")
    parser.add_argument("-e", "--env", type=str, default=".env", help="Path to .env file (default: .env)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="collegebot",
        description="Streaming conversation engine for the college-planning assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Continue a saved conversation against the configured endpoint
  collegebot run chat.json --instruction-file prompt.txt --tools myproject.tools

  # Replay canned model output offline, streaming SSE frames to stdout
  collegebot run chat.json --script turns.json --format sse

  # Analyse every unprocessed chat in a file
  collegebot analyze chats.json --instruction-file enrich.txt
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a transcript through the conversation driver")
    run.add_argument("transcript", help="JSON message list to start from")
    run.add_argument("--timeout", type=float, default=None, help="Abort the run after this many seconds")
    run.add_argument("--user-id", type=str, default=None, help="User id passed to tool handlers")
    run.add_argument("--conversation-id", type=str, default=None, help="Conversation id passed to tool handlers")
    _add_common(run)
    run.set_defaults(func=run_command)

    analyze = sub.add_parser("analyze", help="Process every unprocessed chat in a chats file")
    analyze.add_argument("chats", help="JSON list of chats (or {\"chats\": [...]})")
    _add_common(analyze)
    analyze.set_defaults(func=analyze_command)
    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    init_logging()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
