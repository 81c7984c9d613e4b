from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .durations import _now_ms
from .errors import AuthenticationError, ValidationError
from .messages import User

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass(eq=False)
class Subscriber:
    """A user's membership in one party line."""

    user: User
    alias: str | None = None
    bot_screen_name: str | None = None
    join_time_ms: int = 0
    last_activity_ms: int = 0
    snooze_until_ms: int | None = None
    message_count: int = 0
    word_count: int = 0
    last_message: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def display_name(self) -> str:
        return self.alias or self.user.name

    def is_snoozing(self, now_ms: int | None = None) -> bool:
        if self.snooze_until_ms is None:
            return False
        now_ms = _now_ms() if now_ms is None else now_ms
        return self.snooze_until_ms > now_ms

    def snooze(self, until_ms: int | None) -> None:
        with self._lock:
            self.snooze_until_ms = until_ms

    def record_activity(self, content: str, now_ms: int) -> None:
        with self._lock:
            self.last_activity_ms = now_ms
            self.message_count += 1
            self.word_count += len(content.split())

    def remember(self, content: str) -> None:
        with self._lock:
            self.last_message = content

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "user": self.user.name,
                "alias": self.alias,
                "bot_screen_name": self.bot_screen_name,
                "join_time_ms": self.join_time_ms,
                "last_activity_ms": self.last_activity_ms,
                "snooze_until_ms": self.snooze_until_ms,
                "message_count": self.message_count,
                "word_count": self.word_count,
                "last_message": self.last_message,
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Subscriber:
        snooze_until = data.get("snooze_until_ms")
        return cls(
            user=User(str(data["user"])),
            alias=data.get("alias"),
            bot_screen_name=data.get("bot_screen_name"),
            join_time_ms=int(data.get("join_time_ms", 0)),
            last_activity_ms=int(data.get("last_activity_ms", 0)),
            snooze_until_ms=None if snooze_until is None else int(snooze_until),
            message_count=int(data.get("message_count", 0)),
            word_count=int(data.get("word_count", 0)),
            last_message=data.get("last_message"),
        )


class PartyLine:
    """A named, password protected room and its current members."""

    def __init__(self, name: str, password: str) -> None:
        self.name = name
        self.password = password
        self._members: Dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"PartyLine(name={self.name!r}, members={len(self)})"

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def members(self) -> List[Subscriber]:
        """Return a point-in-time copy of the member list."""

        with self._lock:
            return list(self._members.values())

    def member(self, user: User) -> Subscriber | None:
        with self._lock:
            return self._members.get(user.name)

    def _add(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._members[subscriber.user.name] = subscriber

    def _remove(self, user: User) -> Subscriber | None:
        with self._lock:
            return self._members.pop(user.name, None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "password": self.password,
            "subscribers": [subscriber.to_dict() for subscriber in self.members()],
        }


@dataclass
class JoinResult:
    subscriber: Subscriber
    line: PartyLine
    created: bool
    already_member: bool = False
    previous_line: PartyLine | None = None
    previous_subscriber: Subscriber | None = None


class LineDirectory:
    """Registry of party lines and of which line each user belongs to.

    A user is a member of at most one line. All mutations of the two maps
    happen under one re-entrant lock; a line's member table additionally has
    its own lock so broadcasts can copy it without touching the registry.
    """

    def __init__(self, *, now_func=_now_ms) -> None:
        self._now = now_func
        self._lines: Dict[str, PartyLine] = {}
        self._active: Dict[str, str] = {}
        self._lock = threading.RLock()

    def start_or_join(
        self,
        line_name: str,
        password: str,
        user: User,
        alias: str | None = None,
        *,
        bot_screen_name: str | None = None,
        now_ms: int | None = None,
    ) -> JoinResult:
        now_ms = self._now() if now_ms is None else now_ms
        with self._lock:
            line = self._lines.get(line_name)
            created = line is None
            if line is None:
                line = PartyLine(line_name, password)
            elif line.password != password:
                raise AuthenticationError(f"wrong password for #{line_name}")

            self._check_name(line, user)
            if alias is not None:
                self._check_alias(line, user, alias)

            existing = line.member(user)
            if existing is not None:
                if alias is not None:
                    existing.alias = alias
                return JoinResult(subscriber=existing, line=line, created=False, already_member=True)

            if created:
                self._lines[line_name] = line
                logger.info("created party line #%s", line_name)

            previous_line = None
            previous_subscriber = None
            left = self._leave_locked(user)
            if left is not None:
                previous_line, previous_subscriber = left

            subscriber = Subscriber(
                user=user,
                alias=alias,
                bot_screen_name=bot_screen_name,
                join_time_ms=now_ms,
                last_activity_ms=now_ms,
            )
            line._add(subscriber)
            self._active[user.name] = line_name
            logger.info("%s joined #%s", user.name, line_name)
            return JoinResult(
                subscriber=subscriber,
                line=line,
                created=created,
                previous_line=previous_line,
                previous_subscriber=previous_subscriber,
            )

    def leave(self, user: User) -> tuple[PartyLine, Subscriber] | None:
        with self._lock:
            return self._leave_locked(user)

    def _leave_locked(self, user: User) -> tuple[PartyLine, Subscriber] | None:
        line_name = self._active.pop(user.name, None)
        if line_name is None:
            return None
        line = self._lines.get(line_name)
        if line is None:
            return None
        subscriber = line._remove(user)
        if subscriber is None:
            return None
        logger.info("%s left #%s", user.name, line_name)
        return line, subscriber

    def active_line(self, user: User) -> PartyLine | None:
        with self._lock:
            line_name = self._active.get(user.name)
            if line_name is None:
                return None
            return self._lines.get(line_name)

    def subscriber_for(self, user: User) -> Subscriber | None:
        line = self.active_line(user)
        if line is None:
            return None
        return line.member(user)

    def get_line(self, line_name: str) -> PartyLine | None:
        with self._lock:
            return self._lines.get(line_name)

    def lines(self) -> List[PartyLine]:
        with self._lock:
            return list(self._lines.values())

    @staticmethod
    def resolve_subscriber(line: PartyLine, alias_or_name: str) -> Subscriber | None:
        """Find a member whose alias or user name equals ``alias_or_name``.

        Both kinds of match are checked for each member in turn, so when an
        alias and another member's user name collide the winner is whichever
        member is encountered first.
        """

        for subscriber in line.members():
            if alias_or_name == subscriber.alias or alias_or_name == subscriber.user.name:
                return subscriber
        return None

    def set_alias(self, subscriber: Subscriber, alias: str) -> str | None:
        """Change ``subscriber``'s alias and return the previous display name."""

        with self._lock:
            line = self.active_line(subscriber.user)
            if line is None or line.member(subscriber.user) is not subscriber:
                raise ValidationError("you are not in a party chat")
            self._check_alias(line, subscriber.user, alias)
            previous = subscriber.display_name
            subscriber.alias = alias
            return previous

    @staticmethod
    def _check_name(line: PartyLine, user: User) -> None:
        for other in line.members():
            if other.user != user and other.alias == user.name:
                raise ValidationError(f"name already in use as an alias: {user.name}")

    @staticmethod
    def _check_alias(line: PartyLine, user: User, alias: str) -> None:
        for other in line.members():
            if other.user == user:
                continue
            if alias == other.alias or alias == other.user.name:
                raise ValidationError(f"alias already in use: {alias}")

    def snapshot(self) -> Dict[str, Any]:
        """Copy the full membership state; the lock is held only for the copy."""

        with self._lock:
            lines = [line.to_dict() for line in self._lines.values()]
        return {"version": SNAPSHOT_VERSION, "lines": lines}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        version = snapshot.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"unsupported snapshot version: {version}")
        lines: Dict[str, PartyLine] = {}
        active: Dict[str, str] = {}
        for line_data in snapshot.get("lines", []):
            line = PartyLine(str(line_data["name"]), str(line_data.get("password", "")))
            if line.name in lines:
                raise ValueError(f"duplicate line in snapshot: {line.name}")
            for subscriber_data in line_data.get("subscribers", []):
                subscriber = Subscriber.from_dict(subscriber_data)
                # Keep the at-most-one-line rule even for hand-edited snapshots.
                previous = active.get(subscriber.user.name)
                if previous is not None and previous != line.name:
                    lines[previous]._remove(subscriber.user)
                line._add(subscriber)
                active[subscriber.user.name] = line.name
            lines[line.name] = line
        with self._lock:
            self._lines = lines
            self._active = active

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any] | None, *, now_func=_now_ms) -> LineDirectory:
        directory = cls(now_func=now_func)
        if snapshot:
            directory.restore(snapshot)
        return directory
