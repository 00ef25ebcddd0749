from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Protocol, Tuple

from .errors import AlreadyActedError
from .models import DirectMessage, Post, User

logger = logging.getLogger("streambot.platform")

LOCAL_PLATFORM_NAME = "local-stub"


class PlatformClient(Protocol):
    def post(self, text: str, options: Mapping[str, Any] | None = None) -> Post:
        ...

    def reply(self, text: str, parent_id: int, options: Mapping[str, Any] | None = None) -> Post:
        ...

    def favorite(self, post_id: int) -> None:
        ...

    def retweet(self, post_id: int) -> None:
        ...

    def follow(self, user: str) -> None:
        ...

    def unfollow(self, user: str) -> None:
        ...

    def block(self, user: str) -> None:
        ...

    def send_direct_message(
        self,
        recipient: str,
        text: str,
        options: Mapping[str, Any] | None = None,
    ) -> DirectMessage:
        ...

    def upload_media(self, data: bytes, options: Mapping[str, Any] | None = None) -> str:
        ...

    def current_identity(self) -> str:
        ...


class LocalPlatformClient:
    """Offline platform that records every call and hands out sequential ids.

    Favoriting or retweeting the same post twice raises ``AlreadyActedError``,
    the way the live platform refuses repeated actions.
    """

    name = LOCAL_PLATFORM_NAME

    def __init__(self, username: str, first_id: int = 1) -> None:
        self.username = username
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self._ids = itertools.count(first_id)
        self._favorited: set[int] = set()
        self._retweeted: set[int] = set()
        self._lock = threading.Lock()

    def post(self, text: str, options: Mapping[str, Any] | None = None) -> Post:
        self._record("post", text, dict(options or {}))
        return self._make_post(text, None)

    def reply(self, text: str, parent_id: int, options: Mapping[str, Any] | None = None) -> Post:
        self._record("reply", text, parent_id, dict(options or {}))
        return self._make_post(text, parent_id)

    def favorite(self, post_id: int) -> None:
        self._record("favorite", post_id)
        with self._lock:
            if post_id in self._favorited:
                raise AlreadyActedError(f"post {post_id} is already favorited")
            self._favorited.add(post_id)

    def retweet(self, post_id: int) -> None:
        self._record("retweet", post_id)
        with self._lock:
            if post_id in self._retweeted:
                raise AlreadyActedError(f"post {post_id} is already retweeted")
            self._retweeted.add(post_id)

    def follow(self, user: str) -> None:
        self._record("follow", user)

    def unfollow(self, user: str) -> None:
        self._record("unfollow", user)

    def block(self, user: str) -> None:
        self._record("block", user)

    def send_direct_message(
        self,
        recipient: str,
        text: str,
        options: Mapping[str, Any] | None = None,
    ) -> DirectMessage:
        self._record("send_direct_message", recipient, text, dict(options or {}))
        return DirectMessage(
            id=self._next_id(),
            sender=User(screen_name=self.username),
            recipient=User(screen_name=recipient),
            text=text,
        )

    def upload_media(self, data: bytes, options: Mapping[str, Any] | None = None) -> str:
        self._record("upload_media", len(data), dict(options or {}))
        return str(self._next_id())

    def current_identity(self) -> str:
        return self.username

    def calls_named(self, name: str) -> List[Tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    def _make_post(self, text: str, parent_id: Optional[int]) -> Post:
        return Post(
            id=self._next_id(),
            user=User(screen_name=self.username),
            text=text,
            created_at=datetime.now(timezone.utc),
            in_reply_to_id=parent_id,
        )

    def _next_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def _record(self, name: str, *args: Any) -> None:
        logger.debug("%s %s%r", self.name, name, args)
        with self._lock:
            self.calls.append((name, args))
