from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional

from .conversation import ConversationTracker
from .mentions import DEFAULT_CHARACTER_LIMIT, MentionMeta, build_meta
from .models import (
    ActivityNotice,
    ConnectionNotice,
    DeletionNotice,
    DirectMessage,
    FollowNotice,
    Post,
)

logger = logging.getLogger("streambot.dispatcher")

DEFAULT_SEEN_CAPACITY = 10_000


class EventCategory(str, Enum):
    STARTUP = "startup"
    MENTION = "mention"
    TIMELINE = "timeline"
    DIRECT_MESSAGE = "direct_message"
    FOLLOW = "follow"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


# Categories that carry a handler. DUPLICATE and IGNORED never fire one.
HANDLED_CATEGORIES = frozenset(
    {
        EventCategory.STARTUP,
        EventCategory.MENTION,
        EventCategory.TIMELINE,
        EventCategory.DIRECT_MESSAGE,
        EventCategory.FOLLOW,
    }
)


@dataclass(frozen=True)
class DispatchResult:
    category: EventCategory
    meta: Optional[MentionMeta] = None


class SeenIds:
    """Bounded record of post ids already dispatched, oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_SEEN_CAPACITY) -> None:
        self.capacity = max(capacity, 1)
        self._ids: OrderedDict[int, bool] = OrderedDict()

    def __contains__(self, post_id: int) -> bool:
        return post_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, post_id: int) -> None:
        self._ids[post_id] = True
        self._ids.move_to_end(post_id)
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)


class EventDispatcher:
    def __init__(
        self,
        username: Callable[[], str],
        tracker: ConversationTracker,
        handlers: Mapping[EventCategory, Callable[..., object]] | None = None,
        *,
        blacklisted: Callable[[str], bool] | None = None,
        block: Callable[[str], object] | None = None,
        character_limit: int = DEFAULT_CHARACTER_LIMIT,
        seen_capacity: int = DEFAULT_SEEN_CAPACITY,
    ) -> None:
        self._username = username
        self.tracker = tracker
        self.handlers: dict[EventCategory, Callable[..., object]] = {}
        for category, handler in (handlers or {}).items():
            self.register(category, handler)
        self._blacklisted = blacklisted
        self._block = block
        self.character_limit = character_limit
        self.seen = SeenIds(seen_capacity)

    def register(self, category: EventCategory, handler: Callable[..., object]) -> None:
        category = EventCategory(category)
        if category not in HANDLED_CATEGORIES:
            raise ValueError(f"no handler can be registered for {category.value!r}")
        self.handlers[category] = handler

    def meta(self, post: Post) -> MentionMeta:
        conversation = self.tracker.resolve(post)
        return build_meta(self._username(), post, conversation, self.character_limit)

    def dispatch(self, event: object) -> DispatchResult:
        username = self._username()

        if isinstance(event, ConnectionNotice):
            self._log(username, "Online!")
            return self._fire(EventCategory.STARTUP)

        if isinstance(event, DirectMessage):
            if _same_user(event.sender.screen_name, username):
                return DispatchResult(EventCategory.IGNORED)
            self._log(username, "DM from @%s: %s", event.sender.screen_name, event.text)
            return self._fire(EventCategory.DIRECT_MESSAGE, event)

        if isinstance(event, FollowNotice):
            if _same_user(event.source.screen_name, username):
                return DispatchResult(EventCategory.IGNORED)
            self._log(username, "Followed by @%s", event.source.screen_name)
            return self._fire(EventCategory.FOLLOW, event.source)

        if isinstance(event, Post):
            return self._dispatch_post(username, event)

        if isinstance(event, (DeletionNotice, ActivityNotice)):
            return DispatchResult(EventCategory.IGNORED)

        self._log(username, "Unhandled stream item: %r", event)
        return DispatchResult(EventCategory.IGNORED)

    def _dispatch_post(self, username: str, post: Post) -> DispatchResult:
        if not post.text:
            return DispatchResult(EventCategory.IGNORED)
        author = post.user.screen_name
        if _same_user(author, username):
            return DispatchResult(EventCategory.IGNORED)

        if self._blacklisted is not None and self._blacklisted(author):
            self._log(username, "Blocking blacklisted user @%s", author)
            if self._block is not None:
                self._block(author)

        if post.id in self.seen:
            self._log(username, "Not firing event for duplicate post %s", post.id)
            return DispatchResult(EventCategory.DUPLICATE)
        self.seen.add(post.id)

        meta = self.meta(post)
        if meta.addressed_to_me:
            self._log(username, "Mention from @%s: %s", author, post.text)
            self.tracker.resolve(post).add(post)
            return self._fire(EventCategory.MENTION, post, meta=meta)
        return self._fire(EventCategory.TIMELINE, post, meta=meta)

    def _fire(self, category: EventCategory, *args: object, meta: MentionMeta | None = None) -> DispatchResult:
        handler = self.handlers.get(category)
        if handler is not None:
            handler(*args)
        return DispatchResult(category, meta)

    @staticmethod
    def _log(username: str, message: str, *args: object) -> None:
        logger.info("@%s: " + message, username, *args)


def _same_user(left: str, right: str) -> bool:
    return left.lower() == right.lower()
