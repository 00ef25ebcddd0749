from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Sequence, Tuple

from .mentions import DEFAULT_CHARACTER_LIMIT

logger = logging.getLogger("streambot.config")

ENV_PREFIX = "STREAMBOT_"
DEFAULT_DELAY_RANGE = (1, 6)


@dataclass(frozen=True)
class BotConfig:
    username: str
    consumer_key: str = ""
    consumer_secret: str = ""
    access_token: str = ""
    access_token_secret: str = ""
    blacklist: Sequence[str] = field(default_factory=tuple)
    delay_range: Tuple[int, int] = DEFAULT_DELAY_RANGE
    character_limit: int = DEFAULT_CHARACTER_LIMIT

    def missing_credentials(self) -> list[str]:
        names = ["consumer_key", "consumer_secret", "access_token", "access_token_secret"]
        return [name for name in names if not getattr(self, name)]


def load_bot_config(environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX) -> BotConfig:
    env = os.environ if environ is None else environ

    def get(name: str, default: str = "") -> str:
        return env.get(f"{prefix}{name}", default).strip()

    blacklist = tuple(name.strip().lstrip("@") for name in get("BLACKLIST").split(",") if name.strip())
    delay_min = _int_setting(get("DELAY_MIN"), DEFAULT_DELAY_RANGE[0], f"{prefix}DELAY_MIN")
    delay_max = _int_setting(get("DELAY_MAX"), DEFAULT_DELAY_RANGE[1], f"{prefix}DELAY_MAX")
    if delay_max < delay_min:
        logger.warning("%sDELAY_MAX is below %sDELAY_MIN; using %s for both.", prefix, prefix, delay_min)
        delay_max = delay_min
    return BotConfig(
        username=get("USERNAME"),
        consumer_key=get("CONSUMER_KEY"),
        consumer_secret=get("CONSUMER_SECRET"),
        access_token=get("ACCESS_TOKEN"),
        access_token_secret=get("ACCESS_TOKEN_SECRET"),
        blacklist=blacklist,
        delay_range=(delay_min, delay_max),
        character_limit=_int_setting(
            get("CHARACTER_LIMIT"), DEFAULT_CHARACTER_LIMIT, f"{prefix}CHARACTER_LIMIT"
        ),
    )


def _int_setting(raw: str, default: int, name: str) -> int:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using %s.", name, raw, default)
        return default
    if value < 0:
        logger.warning("Negative %s=%r; using %s.", name, raw, default)
        return default
    return value
