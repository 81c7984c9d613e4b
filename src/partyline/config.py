from __future__ import annotations

import os
from dataclasses import dataclass, replace

from .snapshot import DEFAULT_SAVE_INTERVAL_S


@dataclass(frozen=True)
class BotConfig:
    bot_name: str = "partychat"
    state_path: str = "state.json"
    karma_log_path: str = "ppblog"
    save_interval_s: int = DEFAULT_SAVE_INTERVAL_S
    administrators: frozenset[str] = frozenset()
    karma_blacklist: frozenset[str] = frozenset()

    def override(self, **changes) -> BotConfig:
        """Return a copy with every non-None keyword applied."""

        return replace(self, **{key: value for key, value in changes.items() if value is not None})


def _parse_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_csv(name: str) -> frozenset[str]:
    raw = os.environ.get(name)
    if not raw:
        return frozenset()
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


def load_config_from_env() -> BotConfig:
    defaults = BotConfig()
    return BotConfig(
        bot_name=_parse_str("PARTYLINE_BOT_NAME", defaults.bot_name),
        state_path=_parse_str("PARTYLINE_STATE_PATH", defaults.state_path),
        karma_log_path=_parse_str("PARTYLINE_KARMA_LOG", defaults.karma_log_path),
        save_interval_s=_parse_positive_int("PARTYLINE_SAVE_INTERVAL_S", defaults.save_interval_s),
        administrators=_parse_csv("PARTYLINE_ADMINS"),
        karma_blacklist=_parse_csv("PARTYLINE_KARMA_BLACKLIST"),
    )
