"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any wire format. Inbound messages are immutable once built; the
router never mutates them, handlers only produce replies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple


class MessageType(str, Enum):
    """Inbound message type discriminator sent by the platform."""

    TEXT = "text"
    EVENT = "event"
    POSITION = "position"
    VOICE = "voice"
    IMAGE = "image"
    MENTION = "mention"


class EventType(str, Enum):
    """Sub-types carried by ``event`` messages."""

    FOLLOW = "follow"
    UNFOLLOW = "unfollow"
    SCAN = "scan"
    SCAN_FOLLOW = "scan_follow"
    CLICK = "click"
    VIEW = "view"


class ReplyType(str, Enum):
    """Passive reply types accepted by the platform."""

    TEXT = "text"
    ARTICLES = "articles"
    POSITION = "position"


@dataclass(frozen=True)
class EventData:
    """Event payload: the sub-type and the key configured on the menu/QR code."""

    sub_type: Optional[str] = None
    key: Optional[str] = None


@dataclass(frozen=True)
class LocationInfo:
    """Location shared by a fan."""

    longitude: Optional[str] = None
    latitude: Optional[str] = None
    scale: Optional[str] = None
    label: Optional[str] = None
    poi_name: Optional[str] = None


@dataclass(frozen=True)
class InboundMessage:
    """Decoded inbound message handed to the router."""

    sender_id: str
    receiver_id: str
    created_at: str
    msg_type: str
    text: Optional[str] = None
    event_data: Optional[EventData] = None
    location: Optional[LocationInfo] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        # Freeze the decoded payload too, so handlers cannot mutate shared input.
        object.__setattr__(self, "raw", MappingProxyType(dict(self.raw)))

    @property
    def event(self) -> Optional[str]:
        return self.event_data.sub_type if self.event_data else None

    @property
    def event_key(self) -> Optional[str]:
        return self.event_data.key if self.event_data else None


@dataclass(frozen=True)
class Article:
    """Single entry of an ``articles`` reply."""

    display_name: str
    summary: str = ""
    image: str = ""
    url: str = ""


@dataclass(frozen=True)
class ReplyMessage:
    """Reply produced by a handler chain and returned by the router."""

    msg_type: str
    sender_id: str
    receiver_id: str
    text: Optional[str] = None
    articles: Tuple[Article, ...] = ()
    longitude: Optional[str] = None
    latitude: Optional[str] = None
    result: bool = True

    @classmethod
    def text_reply(cls, message: InboundMessage, text: str) -> "ReplyMessage":
        """Build a text reply addressed back to the sender of ``message``."""

        return cls(
            msg_type=ReplyType.TEXT.value,
            sender_id=message.receiver_id,
            receiver_id=message.sender_id,
            text=text,
        )

    @classmethod
    def articles_reply(cls, message: InboundMessage, articles: Tuple[Article, ...]) -> "ReplyMessage":
        return cls(
            msg_type=ReplyType.ARTICLES.value,
            sender_id=message.receiver_id,
            receiver_id=message.sender_id,
            articles=tuple(articles),
        )

    @classmethod
    def position_reply(cls, message: InboundMessage, longitude: str, latitude: str) -> "ReplyMessage":
        return cls(
            msg_type=ReplyType.POSITION.value,
            sender_id=message.receiver_id,
            receiver_id=message.sender_id,
            longitude=longitude,
            latitude=latitude,
        )
