from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import IO, Iterator

from .bot import Bot
from .config import load_bot_config
from .dispatcher import EventCategory
from .errors import ConfigurationError
from .models import StreamEvent, parse_event
from .platform import LocalPlatformClient

logger = logging.getLogger("streambot.replay")


def read_events(handle: IO[str]) -> Iterator[StreamEvent]:
    """Yield parsed events from a JSON-lines stream, skipping unreadable lines."""
    for line_number, line in enumerate(handle, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield parse_event(json.loads(line))
        except ValueError as exc:
            logger.warning("Skipping line %s: %s", line_number, exc)


def build_replay_bot() -> Bot:
    config = load_bot_config()
    bot = Bot(config, LocalPlatformClient(config.username))
    bot.on(EventCategory.STARTUP, lambda: bot.log("startup"))
    bot.on(EventCategory.MENTION, lambda post: bot.log("would reply with prefix %r", bot.meta(post).reply_prefix))
    bot.on(EventCategory.DIRECT_MESSAGE, lambda message: bot.log("would answer DM %s", message.id))
    bot.on(EventCategory.FOLLOW, lambda user: bot.log("would follow back @%s", user.screen_name))
    return bot


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a JSON-lines event stream through a bot.")
    parser.add_argument("--input", default="-", help="Path to the JSON-lines stream, or - for stdin.")
    parser.add_argument("--verbose", action="store_true", help="Log debug output.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    bot = build_replay_bot()
    try:
        bot.prepare()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    if args.input == "-":
        bot.start(read_events(sys.stdin))
    else:
        with Path(args.input).open(encoding="utf-8") as handle:
            bot.start(read_events(handle))
    bot.shutdown()


if __name__ == "__main__":
    main()
