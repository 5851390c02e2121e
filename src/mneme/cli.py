"""Command-line interface for Mneme.

Provides an interactive chat and subcommands for auditing a user's memory:
listing, searching, adding, updating and deleting facts, and health checks.
"""

import argparse
import asyncio
import json
import sys

from groq import AsyncGroq

from .agent import ChatSession, SessionConfig
from .config import MemorySettings
from .errors import ConfigurationError, MnemeError
from .logging import configure_logger
from .memory import Fact, MemoryManager

BANNER = """
Mneme chat. Your facts are remembered across sessions.

Commands:
  /exit, /quit  - Exit (stores a conversation summary)
  /reset        - Summarize and start a fresh session
  /help         - Show this help
"""


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def _print_facts(facts: list[Fact]) -> None:
    print(f"\n{'ID':<10} {'Type':<16} {'Key':<22} {'Value':<40} Created")
    print("-" * 110)
    for fact in facts:
        print(
            f"{fact.id[:8]:<10} {fact.type.value:<16} {_truncate(fact.key, 22):<22} "
            f"{_truncate(fact.value, 40):<40} {fact.timestamp[:19]}"
        )


def _get_manager(settings: MemorySettings, with_llm: bool = False) -> MemoryManager:
    """Create a MemoryManager from settings; extraction needs an LLM client."""
    client = AsyncGroq(api_key=settings.groq_api_key) if with_llm else None
    return MemoryManager.from_settings(settings, llm_client=client)


async def cmd_list(manager: MemoryManager, args: argparse.Namespace) -> int:
    """List a user's facts."""
    facts = await manager.list_all(args.user, args.limit, latest_only=args.latest)
    if not facts:
        print(f"No facts stored for {args.user}.")
        return 0

    _print_facts(facts)
    print(f"\nTotal: {len(facts)} fact(s)")
    return 0


async def cmd_search(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Show the context a query would retrieve."""
    context = await manager.retrieve_context(args.query, args.user, args.limit)
    if not context.facts:
        print("No relevant facts found.")
        return 0

    print(context.context_text)
    print(f"\n{len(context.facts)} fact(s) above the relevance threshold")
    return 0


async def cmd_remember(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Store a fact directly."""
    try:
        fact = await manager.remember(args.user, args.type, args.key, args.value)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(f"Stored {fact.type.value} fact {fact.id}: {fact.text}")
    return 0


async def cmd_update(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Replace the value stored under a key."""
    fact = await manager.update_fact(args.user, args.key, args.value, args.type)
    print(f"Updated {fact.key}: {fact.value}")
    return 0


async def cmd_delete(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Delete a fact by id."""
    if await manager.delete_fact(args.user, args.fact_id):
        print(f"Deleted fact {args.fact_id}")
        return 0
    print(f"Error: Fact '{args.fact_id}' not found for {args.user}.")
    return 1


async def cmd_audit(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Summarize a user's memory by fact type."""
    report = await manager.audit(args.user)
    if args.json:
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return 0

    print(f"\nMemory audit for {report['user_id']}")
    print("-" * 40)
    for group in report["facts_by_type"]:
        print(f"{group['type']:<20} {group['count']}")
    print(f"\nTotal: {report['total_facts']} fact(s)")
    return 0


async def cmd_health(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Check the embedder and the vector store."""
    report = await manager.health()
    for service, status in report["services"].items():
        print(f"{service:<14} {status}")
    print(f"\nStatus: {report['status']}")
    return 0 if report["status"] == "healthy" else 1


async def cmd_chat(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Interactive chat with memory."""
    settings: MemorySettings = args.settings
    if not settings.groq_api_key:
        print("Error: GROQ_API_KEY environment variable not set")
        print("Please set it in your .env file or environment")
        return 1

    await manager.open()
    session = ChatSession(
        manager,
        args.user,
        SessionConfig.from_settings(settings),
        groq_client=AsyncGroq(api_key=settings.groq_api_key),
    )
    restored = await session.restore()

    print(BANNER)
    print(f"User: {args.user} ({restored} recent fact(s) loaded)\n")

    while True:
        try:
            user_input = input("you> ").strip()
        except (KeyboardInterrupt, EOFError):
            print()
            user_input = "/exit"

        if not user_input:
            continue

        command = user_input.lower()
        if command in ("/exit", "/quit", "exit", "quit"):
            summary = await session.on_session_end()
            if summary:
                print("Conversation summary saved.")
            print("Goodbye!")
            return 0
        if command == "/reset":
            await session.on_session_end()
            print("Session reset.")
            continue
        if command == "/help":
            print(BANNER)
            continue

        try:
            result = await session.run(user_input)
        except Exception as e:
            print(f"\nError: {e}")
            continue

        print("\n" + "-" * 40)
        print(result.response)
        print("-" * 40)


def _add_user_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-u", "--user",
        help="User id (defaults to DEFAULT_USER_ID)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="mneme",
        description="Chat with long-term memory and audit stored facts",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat")
    _add_user_argument(chat_parser)

    list_parser = subparsers.add_parser("list", help="List a user's facts")
    _add_user_argument(list_parser)
    list_parser.add_argument(
        "-n", "--limit", type=int, default=1000, help="Show at most the newest N facts"
    )
    list_parser.add_argument(
        "--latest",
        action="store_true",
        help="Only show the most recent value per key",
    )

    search_parser = subparsers.add_parser("search", help="Show context retrieved for a query")
    _add_user_argument(search_parser)
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument("-n", "--limit", type=int, help="Maximum facts")

    remember_parser = subparsers.add_parser("remember", help="Store a fact directly")
    _add_user_argument(remember_parser)
    remember_parser.add_argument("type", help="Fact type, e.g. preference")
    remember_parser.add_argument("key", help="Fact key, e.g. favoriteColor")
    remember_parser.add_argument("value", help="Fact value")

    update_parser = subparsers.add_parser("update", help="Replace the value of a key")
    _add_user_argument(update_parser)
    update_parser.add_argument("key", help="Fact key")
    update_parser.add_argument("value", help="New value")
    update_parser.add_argument("-t", "--type", help="Fact type (keeps the old one by default)")

    delete_parser = subparsers.add_parser("delete", help="Delete a fact by id")
    _add_user_argument(delete_parser)
    delete_parser.add_argument("fact_id", help="Id of the fact to delete")

    audit_parser = subparsers.add_parser("audit", help="Summarize a user's memory")
    _add_user_argument(audit_parser)
    audit_parser.add_argument("--json", action="store_true", help="Print the full report as JSON")

    subparsers.add_parser("health", help="Check embedding and vector store health")

    return parser


COMMANDS = {
    "chat": cmd_chat,
    "list": cmd_list,
    "search": cmd_search,
    "remember": cmd_remember,
    "update": cmd_update,
    "delete": cmd_delete,
    "audit": cmd_audit,
    "health": cmd_health,
}


async def _run(handler, manager: MemoryManager, args: argparse.Namespace) -> int:
    try:
        return await handler(manager, args)
    finally:
        await manager.close()


def run_cli(
    argv: list[str] | None = None,
    manager: MemoryManager | None = None,
    settings: MemorySettings | None = None,
) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.
        manager: Optional pre-built manager, used by tests.
        settings: Optional settings, read from the environment if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        settings = settings or MemorySettings.from_env()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}")
        return 2

    configure_logger(settings.log_dir)
    args.settings = settings
    if getattr(args, "user", None) is None:
        args.user = settings.default_user_id

    manager = manager or _get_manager(settings, with_llm=args.command == "chat")

    try:
        return asyncio.run(_run(handler, manager, args))
    except ConfigurationError as e:
        print(f"Error: configuration: {e}")
        return 2
    except MnemeError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run_cli())
