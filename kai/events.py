from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Union


class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    STICKER = "sticker"
    QUOTED = "quoted"
    UNSUPPORTED = "unsupported"


MEDIA_KINDS = (ContentKind.IMAGE, ContentKind.VIDEO, ContentKind.AUDIO, ContentKind.STICKER)


@dataclass(frozen=True)
class TextContent:
    text: str
    kind: ContentKind = field(default=ContentKind.TEXT, init=False)


@dataclass(frozen=True)
class MediaContent:
    """Media held by the transport; ``ref`` is whatever the adapter needs to download it."""

    kind: ContentKind
    ref: Any
    caption: str = ""
    mimetype: Optional[str] = None
    ptt: bool = False
    gif_playback: bool = False
    view_once: bool = False


@dataclass(frozen=True)
class UnsupportedContent:
    type_name: str = "unknown"
    kind: ContentKind = field(default=ContentKind.UNSUPPORTED, init=False)


@dataclass(frozen=True)
class QuotedContent:
    """A text reply carrying the message it quotes."""

    text: str
    quoted: "Content"
    quoted_participant: Optional[str] = None
    kind: ContentKind = field(default=ContentKind.QUOTED, init=False)


Content = Union[TextContent, MediaContent, QuotedContent, UnsupportedContent]


@dataclass(frozen=True)
class MessageRef:
    conversation_id: str
    message_id: str
    from_me: bool = False
    participant: Optional[str] = None


@dataclass(frozen=True)
class InboundEvent:
    conversation_id: str
    participant_id: Optional[str]
    is_self: bool
    content: Content
    message_id: str = ""
    is_group: bool = False
    is_broadcast: bool = False
    timestamp: Optional[float] = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def body(self) -> str:
        if isinstance(self.content, (TextContent, QuotedContent)):
            return self.content.text or ""
        return ""

    @property
    def quoted(self) -> Optional[QuotedContent]:
        return self.content if isinstance(self.content, QuotedContent) else None

    @property
    def ref(self) -> MessageRef:
        return MessageRef(
            conversation_id=self.conversation_id,
            message_id=self.message_id,
            from_me=self.is_self,
            participant=self.participant_id,
        )

    @property
    def sender_hint(self) -> str:
        """Identity to mention when replying; not authorization-grade."""
        return self.participant_id or self.conversation_id


@dataclass
class OutboundMessage:
    text: str = ""
    media: Optional[bytes] = None
    media_kind: Optional[ContentKind] = None
    mimetype: Optional[str] = None
    ptt: bool = False
    gif_playback: bool = False
    mentions: List[str] = field(default_factory=list)

    @property
    def has_media(self) -> bool:
        return self.media is not None and self.media_kind is not None

    @classmethod
    def plain(cls, text: str, *, mentions: Optional[List[str]] = None) -> "OutboundMessage":
        return cls(text=text, mentions=list(mentions or []))

    @classmethod
    def with_media(
        cls,
        kind: ContentKind,
        data: bytes,
        *,
        caption: str = "",
        mimetype: Optional[str] = None,
        ptt: bool = False,
        gif_playback: bool = False,
        mentions: Optional[List[str]] = None,
    ) -> "OutboundMessage":
        return cls(
            text=caption,
            media=data,
            media_kind=kind,
            mimetype=mimetype,
            ptt=ptt,
            gif_playback=gif_playback,
            mentions=list(mentions or []),
        )


@dataclass(frozen=True)
class Participant:
    id: str
    real_id: Optional[str] = None
    is_admin: bool = False


@dataclass
class GroupMetadata:
    group_id: str
    subject: str = ""
    participants: List[Participant] = field(default_factory=list)
