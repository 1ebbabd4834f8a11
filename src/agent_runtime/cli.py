"""
Command-line interface for Agent-Runtime.
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

import structlog
from sqlalchemy.engine import make_url

from .config import Settings, get_settings
from .conversation import (
    ConversationCompressor,
    ConversationManager,
    InMemorySessionStorage,
    SessionStorage,
    SessionTreeNode,
    SQLSessionStorage,
)
from .errors import AgentError

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="agent-runtime",
        description="Agent-Runtime - durable conversations for tool-using LLM agents",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sessions_parser = subparsers.add_parser("sessions", help="Manage stored sessions")
    sessions_subparsers = sessions_parser.add_subparsers(dest="sessions_command")

    list_parser = sessions_subparsers.add_parser("list", help="List sessions, newest first")
    list_parser.add_argument("--sort-by", choices=["last_active_at", "created_at"], default="last_active_at")
    list_parser.add_argument("--limit", type=int, default=None)
    list_parser.add_argument("--offset", type=int, default=0)

    tree_parser = sessions_subparsers.add_parser("tree", help="Show the fork tree")
    tree_parser.add_argument("root_id", nargs="?", default=None, help="Only show this session's subtree")

    show_parser = sessions_subparsers.add_parser("show", help="Show a session's items")
    show_parser.add_argument("session_id")

    fork_parser = sessions_subparsers.add_parser("fork", help="Fork a session")
    fork_parser.add_argument("session_id")
    fork_parser.add_argument("--at", type=int, default=None, help="Keep items before this index")

    delete_parser = sessions_subparsers.add_parser("delete", help="Delete a session")
    delete_parser.add_argument("session_id")

    compress_parser = sessions_subparsers.add_parser("compress", help="Compress a session now")
    compress_parser.add_argument("session_id")

    chat_parser = subparsers.add_parser("chat", help="Send a message to the agent")
    chat_parser.add_argument("message")
    chat_parser.add_argument("--session", dest="session_id", default=None, help="Continue this session")
    chat_parser.add_argument("--provider", default=None, help="Override the default provider")

    subparsers.add_parser("config", help="Show configuration")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        if args.command == "sessions":
            if args.sessions_command is None:
                sessions_parser.print_help()
            else:
                asyncio.run(run_sessions_command(args))
        elif args.command == "chat":
            asyncio.run(run_chat(args.message, args.session_id, args.provider))
        elif args.command == "config":
            show_config()
        else:
            parser.print_help()
    except AgentError as e:
        logger.error("Command failed", command=args.command, error=str(e), code=e.code.value)
        sys.exit(1)


async def create_storage(settings: Settings) -> SessionStorage:
    """Create the configured storage backend."""
    if settings.storage_backend == "memory":
        return InMemorySessionStorage()

    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return await SQLSessionStorage.create(settings.database_url)


def create_manager(storage: SessionStorage, settings: Settings, with_compressor: bool = True) -> ConversationManager:
    """Wire a ConversationManager, with a compressor when one can be built."""
    compressor = None
    compression_config = settings.get_compression_config()
    if with_compressor and compression_config.enabled:
        from .llm import create_llm

        compressor = ConversationCompressor(create_llm(settings=settings), compression_config)

    return ConversationManager(storage, compressor=compressor, cache_size=settings.session_cache_size)


async def close_storage(storage: SessionStorage) -> None:
    if isinstance(storage, SQLSessionStorage):
        await storage.close()


def format_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def print_tree(nodes: list[SessionTreeNode], depth: int = 0) -> None:
    for node in nodes:
        summary = node.session
        fork = f" @{summary.fork_at_item_index}" if summary.fork_at_item_index is not None else ""
        print(f"{'  ' * depth}- {summary.id}{fork} ({summary.item_count} items) {summary.preview}")
        print_tree(node.children, depth + 1)


async def run_sessions_command(args: argparse.Namespace) -> None:
    """Dispatch ``sessions`` subcommands."""
    settings = get_settings()
    storage = await create_storage(settings)
    manager = create_manager(storage, settings, with_compressor=args.sessions_command == "compress")

    try:
        command = args.sessions_command

        if command == "list":
            summaries = await manager.list_sessions(sort_by=args.sort_by, limit=args.limit, offset=args.offset)
            if not summaries:
                print("No sessions found.")
                return

            print(f"\n{'ID':<38} {'Items':<7} {'Last active':<21} {'Preview'}")
            print("-" * 100)
            for s in summaries:
                print(f"{s.id:<38} {s.item_count:<7} {format_timestamp(s.last_active_at):<21} {s.preview}")

        elif command == "tree":
            nodes = await manager.get_session_tree(args.root_id)
            if not nodes:
                print("No sessions found.")
                return
            print_tree(nodes)

        elif command == "show":
            session = await manager.get_session(args.session_id)
            if session is None:
                print(f"Session not found: {args.session_id}")
                return

            print(f"\nSession {session.id}")
            fork_info = session.get_fork_info()
            if fork_info["parent_session_id"]:
                print(f"  Forked from {fork_info['parent_session_id']} at item {fork_info['fork_at_item_index']}")
            if session.last_summary:
                print(f"  Summary: {session.last_summary}")
            print()
            for index, item in enumerate(session.get_items()):
                if item.type == "message":
                    print(f"[{index}] {item.role}: {item.content}")
                elif item.type == "tool_call":
                    print(f"[{index}] tool_call {item.name} ({item.call_id}): {item.arguments}")
                else:
                    print(f"[{index}] tool_result {item.name} ({item.call_id}): {item.output}")

        elif command == "fork":
            forked = await manager.fork_session(args.session_id, args.at)
            print(f"Forked {args.session_id} -> {forked.id} ({forked.item_count} items)")

        elif command == "delete":
            await manager.delete_session(args.session_id)
            print(f"Deleted {args.session_id}")

        elif command == "compress":
            outcome = await manager.compress_session(args.session_id)
            if outcome.compressed:
                print(f"Compressed {args.session_id}")
                print(f"Summary: {outcome.summary}")
            else:
                print(f"Nothing to compress in {args.session_id}")
    finally:
        await close_storage(storage)


async def run_chat(message: str, session_id: str | None, provider: str | None) -> None:
    """Run one agent execution, streaming text to stdout."""
    from .agent import Agent, ContentDelta, ExecutionComplete, SessionCreated, ToolCallError, ToolCallStart
    from .conversation import SessionConfig
    from .llm import create_llm
    from .tools import ToolRegistry

    settings = get_settings()
    storage = await create_storage(settings)
    manager = create_manager(storage, settings)

    llm = create_llm(settings.get_llm_config(provider))
    agent = Agent(
        llm=llm,
        tool_registry=ToolRegistry(),
        conversation_manager=manager,
        system_prompt=settings.system_prompt or None,
        max_turns=settings.max_turns,
    )

    try:
        if session_id is None and settings.system_prompt:
            session = await manager.create_session(SessionConfig(system_prompt=settings.system_prompt))
            session_id = session.id
            print(f"Session: {session_id}")

        async for event in agent.chat(message, session_id=session_id):
            if isinstance(event, SessionCreated):
                print(f"Session: {event.session_id}")
            elif isinstance(event, ContentDelta):
                print(event.delta, end="", flush=True)
            elif isinstance(event, ToolCallStart):
                print(f"\n[tool] {event.tool_name}", flush=True)
            elif isinstance(event, ToolCallError):
                print(f"\n[tool error] {event.tool_name}: {event.error}", flush=True)
            elif isinstance(event, ExecutionComplete):
                print()
                logger.info(
                    "Execution complete",
                    turns=event.metrics.turn_count,
                    tokens=event.metrics.tokens_used,
                    max_turns_reached=event.max_turns_reached,
                )
    finally:
        await close_storage(storage)


def show_config() -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    llm_config = settings.get_llm_config()

    print("\n=== Agent-Runtime Configuration ===\n")

    print("LLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Model: {llm_config.model}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nStorage:")
    print(f"  Backend: {settings.storage_backend}")
    print(f"  URL: {settings.database_url}")
    print(f"  Cache Size: {settings.session_cache_size}")

    print("\nAgent:")
    print(f"  Max Turns: {settings.max_turns}")
    print(f"  System Prompt: {settings.system_prompt or '(none)'}")

    print("\nCompression:")
    print(f"  Enabled: {settings.compression_enabled}")
    print(f"  Summarize After Items: {settings.summarize_after_items}")
    print(f"  Keep Recent Items: {settings.keep_recent_items}")
    print(f"  Max Summary Length: {settings.max_summary_length}")
    print(f"  Token Watermark: {settings.token_watermark or '(off)'}")
    print(f"  Protect Recent Messages: {settings.protect_recent_messages or '(off)'}")


if __name__ == "__main__":
    main()
