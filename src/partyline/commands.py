"""Slash commands understood by the party line bot.

A line is a command when it starts with ``/``. The keyword selects exactly
one entry of an ordered command table; the rest of the line must then match
that command's argument grammar. Commands never fan messages out
themselves: they return a :class:`CommandResult` whose announcements the
bot broadcasts.

    "/join work secret al"
        -> JoinCommand, match groups line="work" password="secret" alias="al"
        -> CommandResult(reply="you have joined ...", announcements=[...])

    "/frobnicate"
        -> "'/frobnicate' is not a recognized command, type '/commands' ..."
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .durations import parse_duration, pretty_duration
from .errors import NotFoundError, PartyLineError, ValidationError
from .karma import KarmaEngine
from .lines import LineDirectory, PartyLine, Subscriber
from .messages import User

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "/"
HELP_COMMAND = "/commands"
UNKNOWN_COMMAND = (
    "'{word}' is not a recognized command, type '" + HELP_COMMAND + "' for a list of possible commands "
    "and their uses."
)
NO_SUBSCRIBER = "No such alias or name: {name}"
SUB_STATUS_ONLINE = "you are currently in party chat #{line} as {name}"
SUB_STATUS_OFFLINE = "you are not in a party chat"


@dataclass
class Announcement:
    """A system line to broadcast to ``line``, skipping ``exclude``."""

    line: PartyLine
    text: str
    exclude: Subscriber | None = None


@dataclass
class CommandResult:
    command: str
    reply: str | None = None
    announcements: List[Announcement] = field(default_factory=list)


@dataclass
class CommandContext:
    """Everything a command may read or mutate while handling one message."""

    directory: LineDirectory
    karma: KarmaEngine
    user: User
    subscriber: Subscriber | None
    now_ms: int
    bot_screen_name: str | None = None
    administrators: frozenset[str] = frozenset()
    save_state: Callable[[], bool] | None = None
    dispatcher: Optional["CommandDispatcher"] = None

    def require_line(self) -> tuple[PartyLine, Subscriber]:
        line = self.directory.active_line(self.user)
        subscriber = line.member(self.user) if line is not None else None
        if line is None or subscriber is None:
            raise NotFoundError(SUB_STATUS_OFFLINE)
        return line, subscriber


class Command(ABC):
    name: str = ""
    aliases: tuple[str, ...] = ()
    usage: str = ""
    args_pattern: re.Pattern[str] = re.compile(r"")

    @property
    def keywords(self) -> tuple[str, ...]:
        return (self.name,) + tuple(self.aliases)

    @abstractmethod
    def execute(self, ctx: CommandContext, args: re.Match[str]) -> CommandResult | None:
        ...


class CommandDispatcher:
    """Ordered table of commands and the router that picks one for a line."""

    def __init__(self, commands: Iterable[Command] = ()) -> None:
        self._commands: List[Command] = []
        for command in commands:
            self.register(command)

    def register(self, command: Command) -> None:
        taken = {keyword for existing in self._commands for keyword in existing.keywords}
        for keyword in command.keywords:
            if keyword in taken:
                raise ValueError(f"Command name collision: '{keyword}' is already registered")
        self._commands.append(command)

    @staticmethod
    def is_command(content: str) -> bool:
        return content.strip().startswith(COMMAND_PREFIX)

    def find(self, keyword: str) -> Command | None:
        keyword = keyword.lower()
        for command in self._commands:
            if keyword in command.keywords:
                return command
        return None

    def dispatch(self, ctx: CommandContext, content: str) -> CommandResult | None:
        """Run ``content`` as a command, or return None when it is not one.

        User-facing failures become the reply text; they never escape.
        """

        stripped = content.strip()
        if not stripped.startswith(COMMAND_PREFIX):
            return None

        parts = stripped[len(COMMAND_PREFIX) :].split(None, 1)
        keyword = parts[0] if parts else ""
        args = parts[1].strip() if len(parts) > 1 else ""

        command = self.find(keyword)
        if command is None:
            return CommandResult(command="", reply=UNKNOWN_COMMAND.format(word=COMMAND_PREFIX + keyword))

        try:
            match = command.args_pattern.fullmatch(args)
            if match is None:
                raise ValidationError(f"usage: {command.usage}")
            return command.execute(ctx, match) or CommandResult(command=command.name)
        except (PartyLineError, PermissionError) as exc:
            logger.debug("/%s from %s failed: %s", command.name, ctx.user.name, exc)
            return CommandResult(command=command.name, reply=str(exc))

    def list_commands(self) -> List[tuple[str, str]]:
        return [(command.name, command.usage) for command in self._commands]


class HelpCommand(Command):
    name = "commands"
    aliases = ("help",)
    usage = "/commands - list the available commands"

    def execute(self, ctx, args):
        dispatcher = ctx.dispatcher
        if dispatcher is None:
            return CommandResult(command=self.name, reply=self.usage)
        listing = "\n".join(usage for _, usage in dispatcher.list_commands())
        return CommandResult(command=self.name, reply=f"available commands:\n{listing}")


class JoinCommand(Command):
    name = "join"
    aliases = ("start",)
    usage = "/join <line> [password] [alias] - join a party chat, creating it if needed"
    args_pattern = re.compile(r"#?(?P<line>[^\s#]\S*)(?:\s+(?P<password>\S+))?(?:\s+(?P<alias>\S+))?")

    def execute(self, ctx, args):
        result = ctx.directory.start_or_join(
            args["line"],
            args["password"] or "",
            ctx.user,
            args["alias"],
            bot_screen_name=ctx.bot_screen_name,
            now_ms=ctx.now_ms,
        )
        subscriber = result.subscriber
        line = result.line
        if result.already_member:
            return CommandResult(
                command=self.name,
                reply=f"you are already in party chat #{line.name} as {subscriber.display_name}",
            )

        announcements: List[Announcement] = []
        if result.previous_line is not None and result.previous_subscriber is not None:
            announcements.append(
                Announcement(result.previous_line, f"{result.previous_subscriber.display_name} has left the chat")
            )
        announcements.append(Announcement(line, f"{subscriber.display_name} has joined the chat", subscriber))
        verb = "created and joined" if result.created else "joined"
        return CommandResult(
            command=self.name,
            reply=f"you have {verb} party chat #{line.name} as {subscriber.display_name}",
            announcements=announcements,
        )


class LeaveCommand(Command):
    name = "leave"
    aliases = ("exit",)
    usage = "/leave - leave your current party chat"

    def execute(self, ctx, args):
        ctx.require_line()
        left = ctx.directory.leave(ctx.user)
        if left is None:
            raise NotFoundError(SUB_STATUS_OFFLINE)
        line, subscriber = left
        return CommandResult(
            command=self.name,
            reply=f"you have left party chat #{line.name}",
            announcements=[Announcement(line, f"{subscriber.display_name} has left the chat")],
        )


class AliasCommand(Command):
    name = "alias"
    usage = "/alias <name> - change the name others see you as"
    args_pattern = re.compile(r"(?P<alias>\S+)")

    def execute(self, ctx, args):
        line, subscriber = ctx.require_line()
        previous = ctx.directory.set_alias(subscriber, args["alias"])
        return CommandResult(
            command=self.name,
            reply=f"you are now known as {subscriber.display_name}",
            announcements=[Announcement(line, f"{previous} is now known as {subscriber.display_name}", subscriber)],
        )


class ListCommand(Command):
    name = "list"
    aliases = ("names",)
    usage = "/list - show who is in your party chat"

    def execute(self, ctx, args):
        line, _ = ctx.require_line()
        rows = []
        for member in sorted(line.members(), key=lambda m: m.display_name.lower()):
            row = member.user.name
            if member.alias:
                row = f"{member.alias} ({member.user.name})"
            if member.is_snoozing(ctx.now_ms):
                row += " [snoozing]"
            rows.append(f"  {row}")
        return CommandResult(command=self.name, reply=f"members of #{line.name}:\n" + "\n".join(rows))


class WhoisCommand(Command):
    name = "whois"
    usage = "/whois <alias or name> - show details about a member"
    args_pattern = re.compile(r"(?P<name>\S+)")

    def execute(self, ctx, args):
        line, _ = ctx.require_line()
        name = args["name"]
        found = ctx.directory.resolve_subscriber(line, name)
        if found is None:
            return CommandResult(command=self.name, reply=NO_SUBSCRIBER.format(name=name))
        return CommandResult(command=self.name, reply=self.describe(found, ctx.now_ms))

    @staticmethod
    def describe(subscriber: Subscriber, now_ms: int) -> str:
        parts = [subscriber.user.name]
        if subscriber.alias is not None:
            parts[0] += f" ({subscriber.alias})"
        if subscriber.join_time_ms > 0:
            parts.append(f"Member for {pretty_duration(now_ms - subscriber.join_time_ms)}")
        if subscriber.last_activity_ms > 0:
            parts.append(f"Last seen {pretty_duration(now_ms - subscriber.last_activity_ms)} ago")
        if subscriber.message_count > 0:
            parts.append(f"Total messages: {subscriber.message_count}")
        if subscriber.word_count > 0:
            parts.append(f"Approximate words: {subscriber.word_count}")
        if subscriber.is_snoozing(now_ms):
            parts.append(f"Snoozing for {pretty_duration(subscriber.snooze_until_ms - now_ms)}")
        return "\n".join(parts)


class StatusCommand(Command):
    name = "status"
    usage = "/status - show which party chat you are in"

    def execute(self, ctx, args):
        line = ctx.directory.active_line(ctx.user)
        subscriber = line.member(ctx.user) if line is not None else None
        if line is None or subscriber is None:
            return CommandResult(command=self.name, reply=SUB_STATUS_OFFLINE)
        return CommandResult(
            command=self.name,
            reply=SUB_STATUS_ONLINE.format(line=line.name, name=subscriber.display_name),
        )


class SnoozeCommand(Command):
    name = "snooze"
    usage = "/snooze <duration>|off - stop receiving messages for a while (e.g. 30m, 2h, 1d)"
    args_pattern = re.compile(r"(?P<duration>\S+)?")

    def execute(self, ctx, args):
        line, subscriber = ctx.require_line()
        duration = args["duration"]
        if duration is None:
            if subscriber.is_snoozing(ctx.now_ms):
                remaining = pretty_duration(subscriber.snooze_until_ms - ctx.now_ms)
                return CommandResult(command=self.name, reply=f"snoozing for {remaining}")
            return CommandResult(command=self.name, reply="you are not snoozing")

        if duration.lower() == "off":
            duration_ms = 0
        else:
            duration_ms = parse_duration(duration)
        if duration_ms <= 0:
            subscriber.snooze(None)
            return CommandResult(
                command=self.name,
                reply="you are no longer snoozing",
                announcements=[Announcement(line, f"{subscriber.display_name} is back", subscriber)],
            )

        subscriber.snooze(ctx.now_ms + duration_ms)
        pretty = pretty_duration(duration_ms)
        return CommandResult(
            command=self.name,
            reply=f"snoozing for {pretty}",
            announcements=[Announcement(line, f"{subscriber.display_name} is snoozing for {pretty}", subscriber)],
        )


class ScoresCommand(Command):
    name = "scores"
    aliases = ("score",)
    usage = "/scores [regex] - show karma scores in this party chat"
    args_pattern = re.compile(r"(?P<pattern>.+)?", re.DOTALL)
    show_reasons = False

    def execute(self, ctx, args):
        line, _ = ctx.require_line()
        reply = ctx.karma.query(line.name, args["pattern"], self.show_reasons)
        return CommandResult(command=self.name, reply=reply)


class ReasonsCommand(ScoresCommand):
    name = "reasons"
    aliases = ()
    usage = "/reasons [regex] - show karma scores with who changed them and why"
    show_reasons = True


class SaveStateCommand(Command):
    name = "savestate"
    usage = "/savestate - write the current state to disk (administrators only)"

    def execute(self, ctx, args):
        if ctx.user.name not in ctx.administrators:
            raise PermissionError("authorized personnel only")
        if ctx.save_state is None or not ctx.save_state():
            return CommandResult(command=self.name, reply="unable to save state")
        return CommandResult(command=self.name, reply="state saved")


def default_commands() -> List[Command]:
    return [
        HelpCommand(),
        JoinCommand(),
        LeaveCommand(),
        AliasCommand(),
        ListCommand(),
        WhoisCommand(),
        StatusCommand(),
        SnoozeCommand(),
        ScoresCommand(),
        ReasonsCommand(),
        SaveStateCommand(),
    ]


def build_dispatcher() -> CommandDispatcher:
    return CommandDispatcher(default_commands())
