from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable, List, Sequence

from .errors import PatternError
from .karma import INVALID_PATTERN, KarmaEngine
from .lines import PartyLine, Subscriber
from .messages import Message

if TYPE_CHECKING:  # pragma: no cover
    from .bot import PartyBot

logger = logging.getLogger(__name__)

KARMA_RE = re.compile(r"(\S+)(\+\+|--)\W*(\w*.*)", re.DOTALL)
SEARCH_REPLACE_RE = re.compile(r"s/((?:[^/\\]|\\.)+)/((?:[^/\\]|\\.)*)/(g?)", re.DOTALL)


class MessageHandler(ABC):
    """Strategy for non-command content; the chain applies the first match."""

    @abstractmethod
    def can_handle(self, message: Message) -> bool:
        ...

    def should_broadcast_original_message(self) -> bool:
        return False

    @abstractmethod
    def handle(self, message: Message, subscriber: Subscriber, line: PartyLine, bot: PartyBot) -> None:
        ...


class KarmaMessageHandler(MessageHandler):
    """Turns ``target++ reason`` into a score change instead of relaying it."""

    def __init__(self, karma: KarmaEngine) -> None:
        self._karma = karma

    def can_handle(self, message: Message) -> bool:
        return KARMA_RE.fullmatch(message.content.strip()) is not None

    def handle(self, message, subscriber, line, bot):
        match = KARMA_RE.fullmatch(message.content.strip())
        if match is None:
            return
        target, op, reason = match.group(1), match.group(2), match.group(3)
        sign = 1 if op == "++" else -1
        result = self._karma.adjust(message.sender.name, line.name, target, reason, sign)
        if result is None:
            return
        bot.reply(message, result)
        bot.broadcast(subscriber, line, result, is_system=True)


class SearchReplaceMessageHandler(MessageHandler):
    """``s/pattern/replacement/[g]`` corrects the sender's last message."""

    def can_handle(self, message: Message) -> bool:
        return SEARCH_REPLACE_RE.fullmatch(message.content.strip()) is not None

    def handle(self, message, subscriber, line, bot):
        match = SEARCH_REPLACE_RE.fullmatch(message.content.strip())
        if match is None:
            return
        previous = subscriber.last_message
        if previous is None:
            bot.reply(message, "nothing to correct")
            return
        pattern, replacement, flags = match.group(1), match.group(2), match.group(3)
        try:
            corrected = self.rewrite(previous, pattern, replacement, replace_all=flags == "g")
        except PatternError as exc:
            bot.reply(message, str(exc))
            return
        if corrected is None:
            bot.reply(message, f"no match for {pattern}")
            return
        subscriber.remember(corrected)
        bot.broadcast(subscriber, line, corrected)

    @staticmethod
    def rewrite(text: str, pattern: str, replacement: str, *, replace_all: bool = False) -> str | None:
        """Return ``text`` with ``pattern`` replaced, or None if it does not occur."""

        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise PatternError(INVALID_PATTERN) from exc
        replacement = replacement.replace("\\/", "/")
        try:
            corrected, count = compiled.subn(lambda _: replacement, text, count=0 if replace_all else 1)
        except re.error as exc:
            raise PatternError(INVALID_PATTERN) from exc
        if count == 0:
            return None
        return corrected


class BroadcastMessageHandler(MessageHandler):
    """Catch-all: relays the message verbatim."""

    def can_handle(self, message: Message) -> bool:
        return True

    def should_broadcast_original_message(self) -> bool:
        return True

    def handle(self, message, subscriber, line, bot):
        subscriber.remember(message.content)


class MessageHandlerChain:
    def __init__(self, handlers: Iterable[MessageHandler]) -> None:
        self._handlers: List[MessageHandler] = list(handlers)

    @property
    def handlers(self) -> Sequence[MessageHandler]:
        return tuple(self._handlers)

    def select(self, message: Message) -> MessageHandler | None:
        for handler in self._handlers:
            if handler.can_handle(message):
                return handler
        return None

    def handle(self, message: Message, subscriber: Subscriber, line: PartyLine, bot: PartyBot) -> MessageHandler | None:
        handler = self.select(message)
        if handler is None:
            return None
        if handler.should_broadcast_original_message():
            bot.broadcast(subscriber, line, message.content)
        handler.handle(message, subscriber, line, bot)
        return handler


def default_chain(karma: KarmaEngine) -> MessageHandlerChain:
    return MessageHandlerChain(
        [
            KarmaMessageHandler(karma),
            SearchReplaceMessageHandler(),
            BroadcastMessageHandler(),
        ]
    )
