from __future__ import annotations

import logging
from typing import Callable

from .durations import _now_ms
from .lines import PartyLine, Subscriber
from .messages import Message, User

logger = logging.getLogger(__name__)

MESSAGE_FORMAT = "[{name}] {content}"

SendMessage = Callable[[Message], None]


class BroadcastEngine:
    """Fans a message out to every eligible member of a party line.

    The sender and snoozing members are skipped; messages for snoozing
    members are dropped rather than queued.
    """

    def __init__(self, send_message: SendMessage, *, now_func=_now_ms) -> None:
        self._send = send_message
        self._now = now_func

    @staticmethod
    def persona_for(line: PartyLine, listener: Subscriber) -> User:
        return User(listener.bot_screen_name or line.name)

    def broadcast(
        self,
        sender: Subscriber | None,
        line: PartyLine,
        content: str,
        is_system: bool = False,
    ) -> int:
        if not is_system and sender is not None:
            content = MESSAGE_FORMAT.format(name=sender.display_name, content=content)

        now_ms = self._now()
        delivered = 0
        for listener in line.members():
            if listener is sender:
                continue
            if listener.is_snoozing(now_ms):
                continue
            message = Message(sender=self.persona_for(line, listener), recipient=listener.user, content=content)
            try:
                self._send(message)
            except Exception:
                logger.exception("failed to deliver to %s on #%s", listener.user.name, line.name)
                continue
            delivered += 1
        return delivered

    def announce(self, line: PartyLine | None, text: str) -> int:
        if line is None:
            return 0
        return self.broadcast(None, line, text, True)
