from __future__ import annotations

import logging
from typing import Iterable

from .broadcast import BroadcastEngine, SendMessage
from .commands import COMMAND_PREFIX, CommandContext, CommandDispatcher, CommandResult, build_dispatcher
from .durations import _now_ms
from .handlers import MessageHandlerChain, default_chain
from .karma import KarmaEngine
from .lines import LineDirectory, PartyLine, Subscriber
from .messages import Message
from .snapshot import StateSaver

logger = logging.getLogger(__name__)

NOT_IN_LINE = (
    "you are not in a party chat, type '" + COMMAND_PREFIX + "join <line> [password]' to join one or '"
    + COMMAND_PREFIX + "commands' for help"
)


class PartyBot:
    """Routes each inbound message to a command or to the handler chain."""

    def __init__(
        self,
        directory: LineDirectory,
        karma: KarmaEngine,
        send_message: SendMessage,
        *,
        administrators: Iterable[str] = (),
        saver: StateSaver | None = None,
        dispatcher: CommandDispatcher | None = None,
        chain: MessageHandlerChain | None = None,
        now_func=_now_ms,
    ) -> None:
        self.directory = directory
        self.karma = karma
        self.saver = saver
        self.administrators = frozenset(administrators)
        self.dispatcher = dispatcher or build_dispatcher()
        self.chain = chain or default_chain(karma)
        self._send = send_message
        self._now = now_func
        self.broadcaster = BroadcastEngine(send_message, now_func=now_func)

    def handle_message(self, message: Message) -> None:
        try:
            self._handle(message)
        except Exception:
            logger.exception("failed to handle message from %s", message.sender.name)

    def _handle(self, message: Message) -> None:
        now_ms = self._now()
        subscriber = self.directory.subscriber_for(message.sender)
        if subscriber is not None:
            subscriber.record_activity(message.content, now_ms)

        ctx = CommandContext(
            directory=self.directory,
            karma=self.karma,
            user=message.sender,
            subscriber=subscriber,
            now_ms=now_ms,
            bot_screen_name=message.recipient.name,
            administrators=self.administrators,
            save_state=self.save_state,
            dispatcher=self.dispatcher,
        )
        result = self.dispatcher.dispatch(ctx, message.content)
        if result is not None:
            self._apply(message, result)
            return

        line = self.directory.active_line(message.sender)
        subscriber = line.member(message.sender) if line is not None else None
        if line is None or subscriber is None:
            self.reply(message, NOT_IN_LINE)
            return
        self.chain.handle(message, subscriber, line, self)

    def _apply(self, message: Message, result: CommandResult) -> None:
        if result.reply:
            self.reply(message, result.reply)
        for announcement in result.announcements:
            self.broadcast(announcement.exclude, announcement.line, announcement.text, is_system=True)

    def reply(self, in_reply_to: Message, text: str) -> None:
        self._send(in_reply_to.reply(text))

    def broadcast(
        self,
        subscriber: Subscriber | None,
        line: PartyLine,
        content: str,
        is_system: bool = False,
    ) -> int:
        return self.broadcaster.broadcast(subscriber, line, content, is_system)

    def announce(self, line: PartyLine | None, text: str) -> int:
        return self.broadcaster.announce(line, text)

    def save_state(self) -> bool:
        if self.saver is None:
            return False
        return self.saver.run()
