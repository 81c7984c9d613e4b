"""Party line relay core: rooms, commands, fan-out and karma."""

from .bot import PartyBot
from .broadcast import BroadcastEngine
from .commands import CommandDispatcher, CommandResult
from .karma import KarmaEngine
from .lines import LineDirectory, PartyLine, Subscriber
from .messages import Message, User
from .snapshot import SnapshotStore, StateSaver

__all__ = [
    "PartyBot",
    "BroadcastEngine",
    "CommandDispatcher",
    "CommandResult",
    "KarmaEngine",
    "LineDirectory",
    "PartyLine",
    "Subscriber",
    "Message",
    "User",
    "SnapshotStore",
    "StateSaver",
]
