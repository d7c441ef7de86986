"""
Command line entry point

    python -m observer watch --tab-id 7 --snapshot page.json
    python -m observer manual --tab-id 7 solution.py
    python -m observer chat --tab-id 7 "Why does my loop time out?"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from models.chat import ChatHistoryItem
from models.settings import PersonaMode

from .bus_client import DEFAULT_BASE_URL, BusClient, BusError
from .chat_client import ChatChannelClient, ChatPanelState
from .publisher import ContextPublisher
from .runner import SnapshotFileSource, TabObserver


async def _watch(args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    async with BusClient(args.url, tab_id=args.tab_id) as bus:
        observer = TabObserver(bus, SnapshotFileSource(args.snapshot), args.tab_id)
        await observer.run(stop)
    return 0


async def _manual(args: argparse.Namespace) -> int:
    code = await asyncio.to_thread(Path(args.file).read_text, encoding="utf-8")
    async with BusClient(args.url, tab_id=args.tab_id) as bus:
        publisher = ContextPublisher(bus)
        if not await publisher.set_manual(code, language=args.language):
            print("Nothing to publish: the file is empty.", file=sys.stderr)
            return 1
    print(f"Published manual snapshot for tab {args.tab_id}")
    return 0


async def _chat(args: argparse.Namespace) -> int:
    async with BusClient(args.url, tab_id=args.tab_id) as bus:
        response = await bus.request({"type": "GET_CHAT_HISTORY", "tabId": args.tab_id})
    history = [ChatHistoryItem.model_validate(item) for item in response.get("history") or []]
    panel = ChatPanelState(args.tab_id, history)

    persona = PersonaMode(args.persona) if args.persona else None
    async with ChatChannelClient(args.url) as channel:
        async for event in channel.run_turn(panel, args.text, persona_mode=persona):
            if event.chunk:
                print(event.chunk, end="", flush=True)
    print()
    if panel.status_type == "error":
        print(panel.status_text, file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="observer", description="Tab observer for the problem coach")
    parser.add_argument(
        "--url",
        default=os.environ.get("PROBLEM_COACH_URL", DEFAULT_BASE_URL),
        help="Coordinator base URL (default: %(default)s)",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: %(default)s)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_watch = sub.add_parser("watch", help="Publish context and code from a page snapshot file")
    p_watch.add_argument("--tab-id", type=int, required=True)
    p_watch.add_argument("--snapshot", type=Path, required=True, help="JSON file written by the page bridge")

    p_manual = sub.add_parser("manual", help="Publish a file as the tab's manual code snapshot")
    p_manual.add_argument("--tab-id", type=int, required=True)
    p_manual.add_argument("--language", default=None)
    p_manual.add_argument("file", type=Path)

    p_chat = sub.add_parser("chat", help="Send one message and stream the reply")
    p_chat.add_argument("--tab-id", type=int, required=True)
    p_chat.add_argument("--persona", choices=[mode.value for mode in PersonaMode], default=None)
    p_chat.add_argument("text")

    return parser


COMMANDS = {"watch": _watch, "manual": _manual, "chat": _chat}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(COMMANDS[args.command](args))
    except BusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
