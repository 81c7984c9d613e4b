from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class User:
    """An identity on the messaging network, keyed by its handle."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Message:
    sender: User
    recipient: User
    content: str

    def reply(self, content: str) -> Message:
        """Return a message travelling back to the sender from the same address."""

        return Message(sender=self.recipient, recipient=self.sender, content=content)
