"""CLI entry point — quick interaction with study conversations via Rich console.

Usage:
  python cli.py chat --topic "School uniforms" --standpoint supporting --strategy suggestion
  python cli.py chat --study-id P-042 --topic "Four-day work week"
  python cli.py chat --conversation <id>           # Resume a saved conversation
  python cli.py prompt --phase memo --topic "Nuclear energy"
  python cli.py list                               # Saved conversations
  python cli.py show <id>                          # Conversation transcript
  python cli.py share <id> --owner me              # Publish a shared link
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config.settings import Settings
from conversation.commands import ChatMode
from conversation.context_builder import build_system_prompt
from core.errors import ConfigurationLocked
from core.models import Conversation, Phase, Role, Standpoint, Strategy
from core.token_tracker import TokenTracker
from study.orchestrator import ChatOrchestrator

console = Console()

ROLE_STYLES = {
    Role.USER: "bold cyan",
    Role.ASSISTANT: "bold green",
    Role.SYSTEM: "bold yellow",
}


async def get_orchestrator(settings: Settings) -> ChatOrchestrator:
    """Bootstrap orchestrator with saved conversations loaded."""
    orch = ChatOrchestrator.from_settings(settings)
    await orch.start()
    return orch


def find_conversation(orch: ChatOrchestrator, prefix: str) -> Conversation | None:
    """Find a conversation by id or unique id prefix."""
    exact = orch.store.get(prefix)
    if exact is not None:
        return exact
    matches = [c for cid, c in orch.store.conversations.items() if cid.startswith(prefix)]
    return matches[0] if len(matches) == 1 else None


def print_message(message) -> None:
    style = ROLE_STYLES.get(message.role, "bold")
    console.print(f"[{style}]{message.sender}:[/] {message.text}")
    if message.follow_ups:
        for question in message.follow_ups:
            console.print(f"  [dim]? {question}[/]")


async def cmd_chat(args, settings: Settings) -> None:
    """Interactive chat in a dialogue (or memo) conversation."""
    orch = await get_orchestrator(settings)

    if args.conversation:
        conversation = find_conversation(orch, args.conversation)
        if conversation is None:
            console.print(f"[red]Conversation not found: {args.conversation}[/]")
            await orch.stop()
            return
    else:
        conversation = orch.new_conversation(phase=Phase(args.phase), study_id=args.study_id)
        try:
            if args.study_id and args.topic and not (args.standpoint or args.strategy):
                orch.select_topic(conversation.id, args.topic)
            elif args.topic or args.standpoint or args.strategy:
                orch.bind_config(conversation.id, args.topic, args.standpoint, args.strategy)
        except ConfigurationLocked as e:
            console.print(f"[red]{e}[/]")

    mode = ChatMode.parse(args.mode) or orch.chat_mode
    cid = conversation.id
    config = conversation.config

    console.print(Panel(
        f"{conversation.phase.value} · topic: {config.topic or '-'}\n"
        f"[dim]standpoint={config.standpoint.value} strategy={config.strategy.value} mode={mode.value}[/]",
        title=f"Conversation {cid[:8]}",
        border_style="green",
    ))
    if not conversation.messages:
        console.print(f"[bold green]Bot:[/] {orch.state.initial_greeting(cid)}\n")
    else:
        for message in conversation.messages:
            print_message(message)
    console.print("[dim]Type /memo to open the paired memo, /quit to leave.[/]\n")

    while True:
        try:
            user_input = Prompt.ask("[bold cyan]You[/]")
        except (KeyboardInterrupt, EOFError):
            break

        text = user_input.strip()
        if text.lower() in ("quit", "exit", "/q", "/quit"):
            break
        if not text:
            continue

        if text == "/memo":
            try:
                memo = orch.spawn_memo(cid)
            except ValueError as e:
                console.print(f"[red]{e}[/]")
                continue
            console.print(f"[magenta]Memo {memo.id[:8]} paired ({orch.display_mode(cid).value} view)[/]")
            console.print(f"[bold green]Bot:[/] {orch.state.initial_greeting(memo.id)}\n")
            cid = memo.id
            continue

        before = len(orch.store.require(cid).messages)
        try:
            with console.status("Thinking..."):
                result = await orch.send_user_message(cid, text, mode)
        except Exception as e:
            console.print(f"[red]Error: {e}[/]")
            continue

        if result is not None and result.error:
            console.print(f"[red]Turn {result.outcome.value}: {result.error}[/]")
        for message in orch.store.require(cid).messages[before:]:
            if message.role != Role.USER:
                print_message(message)
        console.print()

    await orch.stop()
    console.print(f"[dim]{TokenTracker().summary()}[/]")
    console.print("[dim]Conversation ended.[/]")


async def cmd_prompt(args, settings: Settings) -> None:
    """Preview the composed system prompt for a configuration."""
    text = build_system_prompt(
        Phase(args.phase),
        topic=args.topic,
        standpoint=Standpoint.parse(args.standpoint),
        strategy=Strategy.parse(args.strategy),
    )
    console.print(Panel(text, title=f"System prompt ({args.phase})", border_style="yellow"))


async def cmd_list(args, settings: Settings) -> None:
    """List saved conversations."""
    orch = await get_orchestrator(settings)

    table = Table(title="Conversations")
    table.add_column("Id", style="bold")
    table.add_column("Phase")
    table.add_column("Title")
    table.add_column("Standpoint")
    table.add_column("Strategy")
    table.add_column("Messages", justify="right")
    table.add_column("Paired")

    for conversation in orch.store.conversations.values():
        paired = conversation.paired_memo_id or conversation.paired_dialogue_id
        table.add_row(
            conversation.id[:8],
            conversation.phase.value,
            conversation.title or conversation.topic or "-",
            conversation.standpoint.value,
            conversation.strategy.value,
            str(len(conversation.messages)),
            paired[:8] if paired else "-",
        )

    console.print(table)
    await orch.stop()


async def cmd_show(args, settings: Settings) -> None:
    """Show a conversation transcript."""
    orch = await get_orchestrator(settings)

    conversation = find_conversation(orch, args.conversation)
    if conversation is None:
        console.print(f"[red]Conversation not found: {args.conversation}[/]")
        await orch.stop()
        return

    console.print(Panel(
        f"topic: {conversation.topic or '-'}\n"
        f"standpoint={conversation.standpoint.value} strategy={conversation.strategy.value}",
        title=conversation.title or f"Conversation {conversation.id[:8]}",
        border_style="cyan",
    ))
    if conversation.initial_system_message and args.system:
        console.print(Panel(conversation.initial_system_message, title="Initial system message", border_style="yellow"))
    for message in conversation.messages:
        print_message(message)
        if message.retrieved_context:
            console.print(f"  [dim]({len(message.retrieved_context)} retrieved snippets)[/]")

    await orch.stop()


async def cmd_share(args, settings: Settings) -> None:
    """Publish a conversation snapshot as a shared link."""
    orch = await get_orchestrator(settings)

    conversation = find_conversation(orch, args.conversation)
    if conversation is None:
        console.print(f"[red]Conversation not found: {args.conversation}[/]")
        await orch.stop()
        return

    link = await orch.share_conversation(conversation.id, args.owner)
    console.print(Panel(
        f"object id: {link.object_id}\n"
        f"deletion key: {link.deletion_key}\n"
        f"expires: {link.expires_at or 'never'}",
        title="Shared",
        border_style="magenta",
    ))
    await orch.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Persuasion Chat CLI",
        prog="python cli.py",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    phases = [p.value for p in Phase]
    standpoints = [s.value for s in Standpoint if s != Standpoint.UNSET]
    strategies = [s.value for s in Strategy if s != Strategy.UNSET]

    # chat
    p_chat = subparsers.add_parser("chat", help="Interactive conversation")
    p_chat.add_argument("--conversation", help="Resume a saved conversation by id")
    p_chat.add_argument("--phase", choices=phases, default=Phase.DIALOGUE.value)
    p_chat.add_argument("--study-id", help="Study participant id")
    p_chat.add_argument("--topic", help="Conversation topic")
    p_chat.add_argument("--standpoint", choices=standpoints)
    p_chat.add_argument("--strategy", choices=strategies)
    p_chat.add_argument("--mode", choices=[m.value for m in ChatMode], help="Chat mode")

    # prompt
    p_prompt = subparsers.add_parser("prompt", help="Preview a composed system prompt")
    p_prompt.add_argument("--phase", choices=phases, default=Phase.DIALOGUE.value)
    p_prompt.add_argument("--topic")
    p_prompt.add_argument("--standpoint", choices=standpoints)
    p_prompt.add_argument("--strategy", choices=strategies)

    # list
    subparsers.add_parser("list", help="List conversations")

    # show
    p_show = subparsers.add_parser("show", help="Conversation transcript")
    p_show.add_argument("conversation", help="Conversation id (or prefix)")
    p_show.add_argument("--system", action="store_true", help="Include the initial system message")

    # share
    p_share = subparsers.add_parser("share", help="Publish a shared link")
    p_share.add_argument("conversation", help="Conversation id (or prefix)")
    p_share.add_argument("--owner", default="cli", help="Owner id of the link")

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    Path(settings.LOG_PATH).parent.mkdir(parents=True, exist_ok=True)
    Path(settings.DB_PATH).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.FileHandler(settings.LOG_PATH, encoding="utf-8"),
        ],
    )

    if args.command is None:
        parser.print_help()
        return

    if args.command == "chat" and not settings.ANTHROPIC_API_KEY:
        console.print("[red]ERROR: ANTHROPIC_API_KEY not found in .env file.[/]")
        console.print("Please create a .env file: ANTHROPIC_API_KEY=sk-...")
        sys.exit(1)

    cmd_map = {
        "chat": cmd_chat,
        "prompt": cmd_prompt,
        "list": cmd_list,
        "show": cmd_show,
        "share": cmd_share,
    }

    handler = cmd_map.get(args.command)
    if handler:
        asyncio.run(handler(args, settings))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
