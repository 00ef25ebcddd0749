from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _assume_utc(value: datetime) -> datetime:
    # Stream timestamps without an offset are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(BaseModel):
    id: Optional[int] = None
    screen_name: str


class MentionEntity(BaseModel):
    screen_name: str
    indices: tuple[int, int]


class Post(BaseModel):
    id: int
    user: User
    text: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    in_reply_to_id: Optional[int] = None
    mentions: List[MentionEntity] = Field(default_factory=list)
    retweeted_id: Optional[int] = None

    @field_validator("created_at")
    @classmethod
    def created_at_as_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)

    @property
    def is_retweet(self) -> bool:
        return self.retweeted_id is not None


class DirectMessage(BaseModel):
    id: int
    sender: User
    recipient: Optional[User] = None
    text: str
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("created_at")
    @classmethod
    def created_at_as_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)


class FollowNotice(BaseModel):
    source: User
    target: Optional[User] = None


class DeletionNotice(BaseModel):
    id: int
    user_id: Optional[int] = None


class ActivityNotice(BaseModel):
    name: str
    source: Optional[User] = None
    target: Optional[User] = None


class ConnectionNotice(BaseModel):
    friends: List[int] = Field(default_factory=list)


class UnknownEvent(BaseModel):
    payload: Any = None


StreamEvent = Union[
    Post,
    DirectMessage,
    FollowNotice,
    DeletionNotice,
    ActivityNotice,
    ConnectionNotice,
    UnknownEvent,
]

_EVENT_TYPES = {
    "post": Post,
    "direct_message": DirectMessage,
    "delete": DeletionNotice,
}


def parse_event(payload: object) -> StreamEvent:
    """Turn one decoded stream item into a typed event.

    A JSON array is the friend list sent when the connection opens. Objects are
    selected by their ``type`` field; ``event`` items named ``follow`` become
    follow notices and any other activity is kept as an ``ActivityNotice``.
    """
    if isinstance(payload, list):
        return ConnectionNotice.model_validate({"friends": payload})
    if not isinstance(payload, dict):
        return UnknownEvent(payload=payload)
    kind = payload.get("type")
    body = {key: value for key, value in payload.items() if key != "type"}
    if kind == "event":
        if body.get("name") == "follow":
            return FollowNotice.model_validate(body)
        return ActivityNotice.model_validate(body)
    model = _EVENT_TYPES.get(str(kind))
    if model is None:
        return UnknownEvent(payload=payload)
    return model.model_validate(body)
