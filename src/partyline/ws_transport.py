from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from aiohttp import WSMsgType, web

from .bot import PartyBot
from .config import BotConfig
from .karma import KarmaEngine
from .lines import LineDirectory
from .messages import Message, User
from .snapshot import SnapshotStore, StateSaver, load_directory

logger = logging.getLogger(__name__)

OUTBOUND_QUEUE_SIZE = 1000


class ConnectionHub:
    """Maps user handles to their open websocket outbound queues."""

    def __init__(self) -> None:
        self._queues: Dict[str, List[asyncio.Queue]] = {}

    def register(self, user_name: str, queue: asyncio.Queue) -> None:
        self._queues.setdefault(user_name, []).append(queue)

    def unregister(self, user_name: str, queue: asyncio.Queue) -> None:
        queues = self._queues.get(user_name)
        if not queues:
            return
        try:
            queues.remove(queue)
        except ValueError:
            return
        if not queues:
            self._queues.pop(user_name, None)

    def is_connected(self, user_name: str) -> bool:
        return bool(self._queues.get(user_name))

    def deliver(self, message: Message) -> None:
        frame = {
            "v": 1,
            "t": "message",
            "body": {
                "from": message.sender.name,
                "to": message.recipient.name,
                "content": message.content,
            },
        }
        for queue in list(self._queues.get(message.recipient.name, [])):
            try:
                queue.put_nowait(frame)
            except asyncio.QueueFull:
                logger.warning("dropping message for %s: outbound queue full", message.recipient.name)


class Runtime:
    def __init__(
        self,
        *,
        config: BotConfig,
        directory: LineDirectory,
        karma: KarmaEngine,
        saver: StateSaver,
        connections: ConnectionHub,
        bot: PartyBot,
    ) -> None:
        self.config = config
        self.directory = directory
        self.karma = karma
        self.saver = saver
        self.connections = connections
        self.bot = bot


RUNTIME_KEY = web.AppKey("runtime", Runtime)
WS_CONFIG_KEY = web.AppKey("ws_config", dict)


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def _error_frame(code: str, message: str, *, request_id: str | None = None) -> dict[str, Any]:
    return {"v": 1, "t": "error", "id": request_id, "body": {"code": code, "message": message}}


def build_runtime(config: BotConfig) -> Runtime:
    store = SnapshotStore(config.state_path)
    directory = load_directory(store)
    karma = KarmaEngine(config.karma_log_path, config.karma_blacklist)
    karma.recover()
    saver = StateSaver(directory, store, config.save_interval_s)
    connections = ConnectionHub()
    bot = PartyBot(
        directory,
        karma,
        connections.deliver,
        administrators=config.administrators,
        saver=saver,
    )
    return Runtime(
        config=config,
        directory=directory,
        karma=karma,
        saver=saver,
        connections=connections,
        bot=bot,
    )


def create_app(
    *,
    config: BotConfig | None = None,
    heartbeat_s: float = 30.0,
    max_msg_size: int = 65_536,
    start_saver: bool = True,
) -> web.Application:
    runtime = build_runtime(config or BotConfig())
    app = web.Application()
    app[RUNTIME_KEY] = runtime
    app[WS_CONFIG_KEY] = {"heartbeat_s": heartbeat_s, "max_msg_size": max_msg_size}
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/v1/ws", websocket_handler)

    async def start_state_saver(_: web.Application) -> None:
        if start_saver:
            runtime.saver.start()

    async def stop_state_saver(_: web.Application) -> None:
        await runtime.saver.stop(final_save=True)
        runtime.karma.close()

    app.on_startup.append(start_state_saver)
    app.on_cleanup.append(stop_state_saver)
    return app


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    runtime = request.app[RUNTIME_KEY]
    ws_config = request.app[WS_CONFIG_KEY]

    ws = web.WebSocketResponse(heartbeat=ws_config["heartbeat_s"], max_msg_size=ws_config["max_msg_size"])
    await ws.prepare(request)

    outbound: asyncio.Queue = asyncio.Queue(maxsize=OUTBOUND_QUEUE_SIZE)

    async def writer() -> None:
        try:
            while True:
                frame = await outbound.get()
                if frame is None:
                    break
                await ws.send_json(frame)
        except asyncio.CancelledError:
            return
        except ConnectionResetError:
            return

    first_msg = await ws.receive()
    if first_msg.type != WSMsgType.TEXT:
        await ws.close(code=1002, message=b"invalid handshake")
        return ws
    try:
        payload = first_msg.json()
    except ValueError:
        await ws.close(code=1002, message=b"invalid json")
        return ws

    if not isinstance(payload, dict):
        await ws.close(code=1002, message=b"invalid handshake")
        return ws
    body = payload.get("body")
    if not isinstance(body, dict):
        body = {}
    if payload.get("v") != 1 or payload.get("t") != "session.start":
        await ws.send_json(_error_frame("invalid_request", "first frame must start session", request_id=payload.get("id")))
        await ws.close()
        return ws
    user_name = body.get("user")
    bot_name = body.get("bot") or runtime.config.bot_name
    if not isinstance(user_name, str) or not user_name.strip() or not isinstance(bot_name, str):
        await ws.send_json(_error_frame("invalid_request", "user required", request_id=payload.get("id")))
        await ws.close()
        return ws

    user = User(user_name.strip())
    bot_user = User(bot_name)
    runtime.connections.register(user.name, outbound)
    writer_task = asyncio.create_task(writer())
    try:
        await ws.send_json(
            {"v": 1, "t": "session.ready", "id": payload.get("id"), "body": {"user": user.name, "bot": bot_user.name}}
        )
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except ValueError:
                    await ws.send_json(_error_frame("invalid_request", "malformed json"))
                    continue

                if not isinstance(frame, dict) or frame.get("v") != 1:
                    await ws.send_json(_error_frame("invalid_request", "unsupported version", request_id=None))
                    continue

                frame_type = frame.get("t")
                body = frame.get("body")
                if not isinstance(body, dict):
                    body = {}
                if frame_type == "ping":
                    await ws.send_json({"v": 1, "t": "pong", "id": frame.get("id")})
                elif frame_type == "message":
                    content = body.get("content")
                    if not isinstance(content, str):
                        await ws.send_json(_error_frame("invalid_request", "content required", request_id=frame.get("id")))
                        continue
                    runtime.bot.handle_message(Message(sender=user, recipient=bot_user, content=content))
                else:
                    await ws.send_json(_error_frame("invalid_request", "unknown frame type", request_id=frame.get("id")))
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        runtime.connections.unregister(user.name, outbound)
        writer_task.cancel()
        await asyncio.gather(writer_task, return_exceptions=True)

    return ws
