from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .conversation import Conversation
from .models import MentionEntity, Post

DEFAULT_CHARACTER_LIMIT = 280

# Second-hand mentions: quoted text and "RT @", "via @", "by @", "from @" attributions.
_ATTRIBUTION_PATTERN = re.compile(r"([`'‘’\"“”]|RT|via|by|from)\s*@", re.IGNORECASE)


@dataclass(frozen=True)
class MentionMeta:
    mentions: Tuple[str, ...]
    reply_mentions: Tuple[str, ...]
    reply_prefix: str
    limit: int
    mentionless: str
    addressed_to_me: bool


def build_meta(
    bot_username: str,
    post: Post,
    conversation: Conversation,
    character_limit: int = DEFAULT_CHARACTER_LIMIT,
) -> MentionMeta:
    """Work out who a reply to ``post`` should address and whether it talks to the bot."""
    mentions = tuple(entity.screen_name for entity in post.mentions)
    bot_name = bot_username.lower()

    candidates = [
        name
        for name in mentions
        if name.lower() != bot_name and conversation.can_address(name)
    ]
    reply_mentions = _dedupe([post.user.screen_name, *candidates])
    reply_prefix = "".join(f"@{name} " for name in reply_mentions)
    text = post.text or ""

    return MentionMeta(
        mentions=mentions,
        reply_mentions=reply_mentions,
        reply_prefix=reply_prefix,
        limit=character_limit - len(reply_prefix),
        mentionless=strip_mentions(text, post.mentions),
        addressed_to_me=_addresses_bot(bot_name, mentions, post, text),
    )


def strip_mentions(text: str, entities: Sequence[MentionEntity]) -> str:
    # Last span first so earlier offsets stay valid.
    stripped = text
    for entity in sorted(entities, key=lambda item: item.indices[0], reverse=True):
        start, end = entity.indices
        if not 0 <= start <= end <= len(stripped):
            continue
        stripped = stripped[:start] + stripped[end:].strip()
    return stripped.strip()


def _addresses_bot(bot_name: str, mentions: Sequence[str], post: Post, text: str) -> bool:
    if bot_name not in {name.lower() for name in mentions}:
        return False
    if post.is_retweet:
        return False
    return _ATTRIBUTION_PATTERN.search(text) is None


def _dedupe(names: Sequence[str]) -> Tuple[str, ...]:
    seen: set[str] = set()
    unique: List[str] = []
    for name in names:
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(name)
    return tuple(unique)
