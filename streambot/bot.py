from __future__ import annotations

import logging
import random
import threading
import time
from datetime import timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from apscheduler.schedulers.background import BackgroundScheduler

from .config import BotConfig
from .conversation import Conversation, ConversationTracker
from .dispatcher import DispatchResult, EventCategory, EventDispatcher
from .errors import AlreadyActedError, ConfigurationError
from .mentions import MentionMeta
from .models import DirectMessage, Post
from .platform import PlatformClient
from .uploader import MediaUploader

logger = logging.getLogger("streambot.bot")

Delay = Union[int, float, range, tuple]


class Bot:
    def __init__(
        self,
        config: BotConfig,
        client: PlatformClient,
        *,
        handlers: Mapping[EventCategory, Callable[..., object]] | None = None,
        tracker: ConversationTracker | None = None,
        uploader: MediaUploader | None = None,
    ) -> None:
        self.config = config
        self.username = config.username
        self.client = client
        self.blacklist = list(config.blacklist)
        self.delay_range: Delay = config.delay_range
        self.tracker = tracker or ConversationTracker()
        self.uploader = uploader or MediaUploader()
        self.dispatcher = EventDispatcher(
            lambda: self.username,
            self.tracker,
            handlers,
            blacklisted=self.blacklisted,
            block=self.block,
            character_limit=config.character_limit,
        )
        self._scheduler: BackgroundScheduler | None = None
        self._dispatch_lock = threading.Lock()

    def log(self, message: str, *args: object) -> None:
        logger.info("@%s: " + message, self.username, *args)

    def on(self, category: EventCategory, handler: Callable[..., object]) -> None:
        self.dispatcher.register(category, handler)

    def prepare(self) -> None:
        """Check identity and credentials before the stream is opened."""
        if not self.username:
            raise ConfigurationError("bot username cannot be empty")
        missing = self.config.missing_credentials()
        if missing:
            raise ConfigurationError(f"@{self.username} is missing credentials: {', '.join(missing)}")

        real_name = self.client.current_identity()
        if real_name != self.username:
            self.log("connected to @%s -- please update config to match the account name", real_name)
            self.username = real_name

    def start(self, stream: Iterable[object]) -> None:
        self.log("starting event stream")
        for event in stream:
            self.receive_event(event)

    def receive_event(self, event: object) -> DispatchResult:
        # One event at a time per bot, whichever thread delivers it.
        with self._dispatch_lock:
            return self.dispatcher.dispatch(event)

    def conversation(self, post: Post) -> Conversation:
        return self.tracker.resolve(post)

    def meta(self, post: Post) -> MentionMeta:
        return self.dispatcher.meta(post)

    def blacklisted(self, username: str) -> bool:
        lowered = username.lower()
        return any(name.lower() == lowered for name in self.blacklist)

    def reply(self, event: Post | DirectMessage, text: str, **options: Any) -> Optional[Post | DirectMessage]:
        """Reply to a post with its reply prefix, or answer a direct message.

        Returns ``None`` without sending when the author looks like another bot.
        """
        if isinstance(event, DirectMessage):
            self.log("Sending DM to @%s: %s", event.sender.screen_name, text)
            return self.client.send_direct_message(event.sender.screen_name, text, options)
        if isinstance(event, Post):
            meta = self.meta(event)
            author = event.user.screen_name
            if self.conversation(event).is_bot_suspect(author):
                self.log("Not replying to suspected bot @%s", author)
                return None
            self.log("Replying to @%s with: %s", author, meta.reply_prefix + text)
            sent = self.client.reply(meta.reply_prefix + text, event.id, options)
            self.conversation(sent).add(sent)
            return sent
        raise TypeError(f"Don't know how to reply to a {type(event).__name__}")

    def favorite(self, post: Post) -> None:
        self.log("Favoriting @%s: %s", post.user.screen_name, post.text)
        try:
            self.client.favorite(post.id)
        except AlreadyActedError:
            self.log("Already favorited: @%s: %s", post.user.screen_name, post.text)

    def retweet(self, post: Post) -> None:
        self.log("Retweeting @%s: %s", post.user.screen_name, post.text)
        try:
            self.client.retweet(post.id)
        except AlreadyActedError:
            self.log("Already retweeted: @%s: %s", post.user.screen_name, post.text)

    def follow(self, user: str) -> None:
        self.log("Following @%s", user)
        self.client.follow(user)

    def unfollow(self, user: str) -> None:
        self.log("Unfollowing @%s", user)
        self.client.unfollow(user)

    def block(self, user: str) -> None:
        self.log("Blocking @%s", user)
        self.client.block(user)

    def tweet(self, text: str, **options: Any) -> Post:
        self.log("Tweeting '%s'", text)
        return self.client.post(text, options)

    def pictweet(
        self,
        text: str,
        items: object,
        tweet_options: Mapping[str, Any] | None = None,
        upload_options: Mapping[str, Any] | None = None,
        edit_fn: Callable[..., object] | None = None,
    ) -> Post:
        """Tweet with up to four images; the first ones to upload are attached."""
        options = dict(tweet_options or {})
        options.update(
            self.uploader.process(self.client, items, upload_options, edit_fn, label=self.username)
        )
        return self.tweet(text, **options)

    def delay(self, duration: Delay | None = None, callback: Callable[[], object] | None = None) -> object:
        seconds = _sample_delay(self.delay_range if duration is None else duration)
        time.sleep(seconds)
        if callback is not None:
            return callback()
        return None

    @property
    def scheduler(self) -> BackgroundScheduler:
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(timezone=timezone.utc)
            self._scheduler.start()
        return self._scheduler

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)


def _sample_delay(duration: Delay) -> float:
    if isinstance(duration, range):
        return float(random.choice(duration)) if len(duration) else 0.0
    if isinstance(duration, (tuple, list)):
        low, high = duration
        return random.uniform(float(low), float(high))
    return float(duration)
