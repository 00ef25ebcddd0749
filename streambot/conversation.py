from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List

from .models import Post

CONVERSATION_TTL_SECONDS = 3600
BURST_WINDOW_SECONDS = 30
RECENT_PARTICIPANT_WINDOW = 4
BOT_NAME_MARKER = "ebooks"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation:
    """A single reply tree of posts, as observed from the stream."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock
        self.posts: List[Post] = []
        self.last_update = clock()

    def add(self, post: Post) -> None:
        self.posts.append(post)
        self.last_update = max(self.last_update, self._clock())

    def is_bot_suspect(self, username: str) -> bool:
        """Guess whether a participant is automated from its name and posting rate."""
        if BOT_NAME_MARKER in username.lower():
            return True
        user_posts = self._posts_by(username)
        if len(user_posts) > 2:
            burst = user_posts[-1].created_at - user_posts[-3].created_at
            if burst.total_seconds() < BURST_WINDOW_SECONDS:
                return True
        return False

    def can_address(self, username: str) -> bool:
        # Long-silent participants drop out of the reply prefix.
        if len(self.posts) <= RECENT_PARTICIPANT_WINDOW:
            return True
        recent = self.posts[-RECENT_PARTICIPANT_WINDOW:]
        lowered = username.lower()
        return any(post.user.screen_name.lower() == lowered for post in recent)

    def _posts_by(self, username: str) -> List[Post]:
        lowered = username.lower()
        return [post for post in self.posts if post.user.screen_name.lower() == lowered]


class ConversationTracker:
    def __init__(self, clock: Clock = _utcnow, ttl_seconds: float = CONVERSATION_TTL_SECONDS) -> None:
        self._clock = clock
        self.ttl_seconds = ttl_seconds
        self.conversations: Dict[int, Conversation] = {}
        self._lock = threading.RLock()

    def resolve(self, post: Post) -> Conversation:
        """Find or create the conversation for ``post`` and expire idle ones."""
        with self._lock:
            conversation = None
            if post.in_reply_to_id is not None:
                conversation = self.conversations.get(post.in_reply_to_id)
            if conversation is None:
                conversation = self.conversations.get(post.id)
            if conversation is None:
                conversation = Conversation(clock=self._clock)

            if post.in_reply_to_id is not None:
                self.conversations[post.in_reply_to_id] = conversation
            self.conversations[post.id] = conversation

            self._expire(conversation)
            return conversation

    def live_conversations(self) -> List[Conversation]:
        with self._lock:
            unique: Dict[int, Conversation] = {id(conv): conv for conv in self.conversations.values()}
            return list(unique.values())

    def _expire(self, current: Conversation) -> None:
        now = self._clock()
        stale_keys = [
            key
            for key, conversation in self.conversations.items()
            if conversation is not current
            and (now - conversation.last_update).total_seconds() > self.ttl_seconds
        ]
        for key in stale_keys:
            del self.conversations[key]
