from __future__ import annotations

from typing import List

from partyline.bot import PartyBot
from partyline.karma import KarmaEngine
from partyline.lines import LineDirectory
from partyline.messages import Message, User

BOT_NAME = "partychat"


class FakeClock:
    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)

    def now(self) -> int:
        return self.now_ms


class BotHarness:
    """A bot wired to an in-memory outbox and a fake clock."""

    def __init__(self, *, karma: KarmaEngine | None = None, administrators=(), saver=None) -> None:
        self.clock = FakeClock()
        self.outbox: List[Message] = []
        self.directory = LineDirectory(now_func=self.clock.now)
        self.karma = karma or KarmaEngine()
        self.bot = PartyBot(
            self.directory,
            self.karma,
            self.outbox.append,
            administrators=administrators,
            saver=saver,
            now_func=self.clock.now,
        )

    def send(self, sender: str, content: str) -> None:
        self.bot.handle_message(Message(sender=User(sender), recipient=User(BOT_NAME), content=content))

    def received(self, user: str) -> List[str]:
        return [message.content for message in self.outbox if message.recipient.name == user]

    def clear(self) -> None:
        self.outbox.clear()
