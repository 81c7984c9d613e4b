"""Command line entry points: run the websocket relay or replay a transcript."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Iterable, TextIO

from aiohttp import web

from .bot import PartyBot
from .config import BotConfig, load_config_from_env
from .durations import _now_ms
from .karma import KarmaEngine
from .lines import LineDirectory
from .messages import Message, User
from .ws_transport import create_app


def simulate(
    frames: Iterable[dict],
    output: TextIO,
    *,
    config: BotConfig | None = None,
    karma_log_path: str | None = None,
    now_func=_now_ms,
) -> PartyBot:
    """Feed inbound message frames to an in-memory bot and emit what it sends.

    Each frame is ``{"from": ..., "to": ..., "content": ...}``; ``to``
    defaults to the configured bot name. Every outbound message is written to
    ``output`` as one JSON line.
    """

    config = config or BotConfig()
    directory = LineDirectory(now_func=now_func)
    karma = KarmaEngine(karma_log_path, config.karma_blacklist)
    karma.recover()

    def send(message: Message) -> None:
        record = {"from": message.sender.name, "to": message.recipient.name, "content": message.content}
        output.write(json.dumps(record) + "\n")

    bot = PartyBot(directory, karma, send, administrators=config.administrators, now_func=now_func)
    try:
        for frame in frames:
            sender = frame.get("from")
            content = frame.get("content")
            if not isinstance(sender, str) or not isinstance(content, str):
                raise ValueError(f"unsupported frame: {frame!r}")
            recipient = frame.get("to") or config.bot_name
            bot.handle_message(Message(sender=User(sender), recipient=User(recipient), content=content))
    finally:
        karma.close()
    return bot


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _config_from_args(args: argparse.Namespace) -> BotConfig:
    return load_config_from_env().override(
        bot_name=getattr(args, "bot_name", None),
        state_path=getattr(args, "state", None),
        karma_log_path=getattr(args, "karma_log", None),
        save_interval_s=getattr(args, "save_interval", None),
    )


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    simulate(frames, output, config=_config_from_args(args), karma_log_path=args.karma_log)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    app = create_app(config=_config_from_args(args), heartbeat_s=args.heartbeat)
    web.run_app(app, host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Party line chat relay")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay inbound messages through an in-memory bot")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )
    simulate_parser.add_argument("--bot-name", default=None, help="Address inbound frames are sent to")
    simulate_parser.add_argument("--karma-log", default=None, help="Karma log to replay and append to")

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp websocket relay")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument("--heartbeat", type=float, default=30.0, help="Seconds between websocket pings")
    serve_parser.add_argument("--bot-name", default=None, help="Default bot address for new sessions")
    serve_parser.add_argument("--state", default=None, help="Path to the membership snapshot")
    serve_parser.add_argument("--karma-log", default=None, help="Path to the karma log")
    serve_parser.add_argument("--save-interval", type=int, default=None, help="Seconds between snapshots")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    return _run_serve(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
