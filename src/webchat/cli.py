"""Terminal front end for the chat engine.

Usage:
    webchat                              # Interactive mode
    webchat "What are your opening hours?"  # One-shot message
    webchat --new "Hello"                # Drop the saved session first
    webchat --endpoint https://chat.example.com/api "Hi"
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from .config import ServiceSettings, Settings, load_config
from .engine import ChatEngine
from .logging_config import configure_logging
from .models import Message, MessageStatus

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_TIMEOUT = 2
EXIT_CONFIG_ERROR = 3


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="webchat",
        description="Chat with a remote assistant session from the terminal.",
    )
    parser.add_argument(
        "message",
        nargs="?",
        help="Message to send (one-shot mode). Omit for the interactive prompt.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the YAML config (default: config/webchat.yaml).",
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help="Chat service base URL, overrides the config file.",
    )
    parser.add_argument(
        "--new",
        action="store_true",
        help="Forget the saved session and start a new conversation.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="Seconds to wait for the agent per message (default: 120).",
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return _build_parser().parse_args(argv)


def format_message(message: Message, tool_placeholder: str) -> Optional[str]:
    """Render one message as a terminal line, or None if there is nothing to show."""
    if message.is_tool_placeholder:
        return f"[agent] {tool_placeholder}"
    text = message.content.strip()
    if not text:
        return None
    if message.is_error:
        return f"[error] {text}"
    if message.is_user:
        suffix = " (not sent)" if message.status is MessageStatus.FAILED else ""
        return f"[user] {text}{suffix}"
    return f"[agent] {text}"


def print_reply(engine: ChatEngine) -> None:
    """Print everything after the last user message."""
    messages = engine.messages
    start = 0
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].is_user:
            start = index + 1
            break
    for message in messages[start:]:
        line = format_message(message, engine.tool_placeholder_text)
        if line:
            print(line, flush=True)


def print_transcript(engine: ChatEngine) -> None:
    for message in engine.messages:
        line = format_message(message, engine.tool_placeholder_text)
        if line:
            print(line, flush=True)


async def wait_for_agent(engine: ChatEngine, timeout: float) -> bool:
    """Wait until the engine stops awaiting the agent.

    Returns:
        False if the timeout elapsed first.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while engine.awaiting_agent:
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.1)
    return True


async def send_and_wait(engine: ChatEngine, text: str, timeout: float) -> int:
    """Send one message and print the reply once the agent has finished."""
    if not await engine.send(text):
        print("[error] Message could not be sent", file=sys.stderr)
        return EXIT_ERROR
    if not await wait_for_agent(engine, timeout):
        print_reply(engine)
        print("[error] Timed out waiting for the agent", file=sys.stderr)
        return EXIT_TIMEOUT
    print_reply(engine)
    return EXIT_SUCCESS


async def run(settings: Settings, message: Optional[str], new: bool, timeout: float) -> int:
    """Run one-shot or interactive mode against a configured engine."""
    engine = ChatEngine(settings)
    try:
        if new:
            engine.reset_conversation()
        elif await engine.start():
            print_transcript(engine)

        if message is not None:
            return await send_and_wait(engine, message, timeout)

        exit_code = EXIT_SUCCESS
        while True:
            print("> ", end="", flush=True)
            raw = await asyncio.to_thread(sys.stdin.readline)
            if not raw:
                break
            text = raw.strip()
            if text in ("/quit", "/exit"):
                break
            if text == "/new":
                engine.reset_conversation()
                print("[info] Started a new conversation", flush=True)
                continue
            if text:
                exit_code = await send_and_wait(engine, text, timeout)
        return exit_code
    finally:
        await engine.close()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = load_config(config_path=args.config)
    except Exception as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    if args.endpoint:
        service = ServiceSettings(**{**settings.service.model_dump(), "endpoint": args.endpoint})
        settings = settings.model_copy(update={"service": service})

    if not settings.service.is_configured:
        print("Error: No chat service endpoint configured", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    log_file = Path(settings.logging.file) if settings.logging.file else None
    configure_logging(settings.logging.level, log_file, settings.logging.max_bytes)

    try:
        exit_code = asyncio.run(run(settings, args.message, args.new, args.timeout))
    except KeyboardInterrupt:
        exit_code = EXIT_SUCCESS
    sys.exit(exit_code)
