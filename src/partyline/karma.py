from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, TextIO

from .errors import PatternError, PersistenceError

logger = logging.getLogger(__name__)

LOG_DELIMITER = "\t"
LOG_FIELDS = 5
NO_SCORES = "no scores found"
INVALID_PATTERN = "invalid pattern"

_INC_FORMAT = "woot! {target} -> {score}{reason}"
_DEC_FORMAT = "ouch! {target} -> {score}{reason}"
_OP_FORMAT = "  {kind} by {sender}{reason}"


def _format_reason(reason: str | None) -> str:
    return f" ({reason})" if reason else ""


def _sanitize(value: str | None) -> str:
    if not value:
        return ""
    return value.replace("\r", " ").replace("\n", " ").replace("\t", " ")


def _clean_reason(reason: str | None) -> str | None:
    if reason is None or not reason.strip():
        return None
    return reason


def _parse_record(raw: bytes) -> List[str] | None:
    """Split one log line into its fields, or None if it is torn or corrupt."""

    try:
        line = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None
    fields = line.rstrip("\r\n").split(LOG_DELIMITER)
    if len(fields) != LOG_FIELDS or fields[-1] not in ("+", "-"):
        return None
    return fields


@dataclass(frozen=True)
class Op:
    sender: str
    reason: str | None
    sign: int

    @property
    def is_increment(self) -> bool:
        return self.sign > 0

    def describe(self) -> str:
        kind = "increment" if self.is_increment else "decrement"
        return _OP_FORMAT.format(kind=kind, sender=self.sender, reason=_format_reason(self.reason))


@dataclass
class Score:
    target: str
    score: int = 0
    ops: List[Op] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def apply(self, op: Op) -> str:
        self.score += op.sign
        self.ops.append(op)
        template = _INC_FORMAT if op.is_increment else _DEC_FORMAT
        return template.format(target=self.target, score=self.score, reason=_format_reason(op.reason))


class KarmaEngine:
    """Per-room scoreboard whose every change is first appended to a log.

    Log records are ``sender, room, target, reason, +|-`` separated by tabs,
    one per line. Replaying the log from empty state rebuilds the scoreboard.
    """

    def __init__(self, log_path: str | Path | None = None, blacklist: Iterable[str] = ()) -> None:
        self._log_path = Path(log_path) if log_path is not None else None
        self._blacklist = frozenset(blacklist)
        self._rooms: Dict[str, Dict[str, Score]] = {}
        self._room_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._log_lock = threading.Lock()
        self._log_file: TextIO | None = None

    @property
    def blacklist(self) -> frozenset[str]:
        return self._blacklist

    def recover(self) -> int:
        """Replay the log, then open it for appending. Returns the records applied."""

        if self._log_path is None:
            return 0
        applied = 0
        terminated = True
        try:
            if self._log_path.exists():
                with self._log_path.open("rb") as handle:
                    for line_no, raw in enumerate(handle, start=1):
                        terminated = raw.endswith(b"\n")
                        fields = _parse_record(raw)
                        if fields is None:
                            logger.warning("skipping malformed karma record %s:%d", self._log_path, line_no)
                            continue
                        sender, room, target, reason, sign = fields
                        if self._update(sender, room, target, reason, 1 if sign == "+" else -1) is not None:
                            applied += 1
            else:
                self._log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = self._log_path.open("a", encoding="utf-8")
            if not terminated:
                # a torn tail must not swallow the next record
                self._log_file.write("\n")
                self._log_file.flush()
        except OSError as exc:
            logger.exception("unable to open karma log %s", self._log_path)
            raise PersistenceError(f"unable to open karma log {self._log_path}") from exc
        logger.info("replayed %d karma records from %s", applied, self._log_path)
        return applied

    def close(self) -> None:
        with self._log_lock:
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None

    def increment(self, sender: str, room: str, target: str, reason: str | None = None) -> str | None:
        return self.adjust(sender, room, target, reason, 1)

    def decrement(self, sender: str, room: str, target: str, reason: str | None = None) -> str | None:
        return self.adjust(sender, room, target, reason, -1)

    def adjust(self, sender: str, room: str, target: str, reason: str | None, sign: int) -> str | None:
        sender, room, target, reason = (_sanitize(value) for value in (sender, room, target, reason))
        return self._update(sender, room, target, reason, 1 if sign > 0 else -1, log=True)

    def _update(
        self, sender: str, room: str, target: str, reason: str | None, sign: int, *, log: bool = False
    ) -> str | None:
        if target in self._blacklist:
            return None
        score = self._score_for(room, target)
        with score.lock:
            if log:
                try:
                    self._append_record(sender, room, target, reason, sign)
                except PersistenceError:
                    logger.exception("karma change for %s in #%s was not logged", target, room)
            return score.apply(Op(sender=sender, reason=_clean_reason(reason), sign=sign))

    def _append_record(self, sender: str, room: str, target: str, reason: str | None, sign: int) -> None:
        record = LOG_DELIMITER.join(
            [sender, room, target, reason or "", "+" if sign > 0 else "-"]
        )
        with self._log_lock:
            if self._log_file is None:
                return
            try:
                self._log_file.write(record + "\n")
                self._log_file.flush()
            except OSError as exc:
                raise PersistenceError(f"failed to append to {self._log_path}") from exc

    def _room(self, room: str) -> tuple[Dict[str, Score], threading.Lock]:
        with self._lock:
            scores = self._rooms.get(room)
            if scores is None:
                scores = {}
                self._rooms[room] = scores
                self._room_locks[room] = threading.Lock()
            return scores, self._room_locks[room]

    def _score_for(self, room: str, target: str) -> Score:
        scores, room_lock = self._room(room)
        with room_lock:
            score = scores.get(target)
            if score is None:
                score = Score(target)
                scores[target] = score
            return score

    def score(self, room: str, target: str) -> int:
        with self._lock:
            scores = self._rooms.get(room)
            room_lock = self._room_locks.get(room)
        if scores is None or room_lock is None:
            return 0
        with room_lock:
            score = scores.get(target)
        return 0 if score is None else score.score

    def rooms(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def scores(self, room: str) -> List[Score]:
        with self._lock:
            scores = self._rooms.get(room)
            room_lock = self._room_locks.get(room)
        if scores is None or room_lock is None:
            return []
        with room_lock:
            return list(scores.values())

    def query(self, room: str, pattern: str | None = None, show_reasons: bool = False) -> str:
        candidates = self.scores(room)
        if pattern:
            try:
                compiled = re.compile(pattern)
            except re.error as exc:
                raise PatternError(INVALID_PATTERN) from exc
            candidates = [score for score in candidates if compiled.fullmatch(score.target)]

        lines: List[str] = []
        for score in sorted(candidates, key=lambda item: item.score):
            with score.lock:
                lines.append(f"{score.target}:{score.score}")
                if show_reasons:
                    lines.extend(op.describe() for op in score.ops)

        if not lines:
            return NO_SCORES
        return "\n".join(lines)

