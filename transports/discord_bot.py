import io
import logging
import mimetypes
import re
from typing import List, Optional, Sequence

import discord

from kai.events import (
    ContentKind,
    GroupMetadata,
    InboundEvent,
    MediaContent,
    MessageRef,
    OutboundMessage,
    Participant,
    QuotedContent,
    TextContent,
    UnsupportedContent,
)
from kai.identity import number_part
from kai.transport import Transport

log = logging.getLogger(__name__)

DOMAIN = "discord"


def identity_of(native_id) -> str:
    return f"{native_id}@{DOMAIN}"


def native_id(identity: str) -> int:
    number = number_part(identity)
    if number is None:
        raise ValueError(f"not a discord identity: {identity!r}")
    return int(number)


def _media_kind(content_type: str) -> Optional[ContentKind]:
    if content_type.startswith("image/"):
        return ContentKind.IMAGE
    if content_type.startswith("video/"):
        return ContentKind.VIDEO
    if content_type.startswith("audio/"):
        return ContentKind.AUDIO
    return None


def content_of(message) -> object:
    if message is None or getattr(message, "author", None) is None:
        return UnsupportedContent("missing")
    text = getattr(message, "content", None) or ""
    attachments = getattr(message, "attachments", None) or []
    if attachments:
        attachment = attachments[0]
        content_type = attachment.content_type or mimetypes.guess_type(attachment.filename)[0] or ""
        kind = _media_kind(content_type)
        if kind is None:
            return UnsupportedContent("document")
        flags = getattr(message, "flags", None)
        return MediaContent(
            kind,
            attachment,
            caption=text,
            mimetype=content_type or None,
            ptt=kind is ContentKind.AUDIO and bool(getattr(flags, "voice", False)),
            view_once=attachment.is_spoiler(),
        )
    stickers = getattr(message, "stickers", None) or []
    if stickers:
        return MediaContent(ContentKind.STICKER, stickers[0], mimetype="image/png")
    if text:
        return TextContent(text)
    return UnsupportedContent("unknown")


def event_from_message(message, own_id: Optional[int]) -> InboundEvent:
    author = message.author
    is_self = own_id is not None and author.id == own_id
    is_group = message.guild is not None
    if is_group:
        conversation_id = identity_of(message.channel.id)
    else:
        # direct messages are addressed by the other user's id
        recipient = getattr(message.channel, "recipient", None) if is_self else None
        conversation_id = identity_of((recipient or author).id)
    content = content_of(message)
    reference = getattr(message, "reference", None)
    resolved = getattr(reference, "resolved", None) if reference is not None else None
    if resolved is not None and isinstance(content, TextContent):
        resolved_author = getattr(resolved, "author", None)
        content = QuotedContent(
            text=content.text,
            quoted=content_of(resolved),
            quoted_participant=identity_of(resolved_author.id) if resolved_author else None,
        )
    created = getattr(message, "created_at", None)
    return InboundEvent(
        conversation_id=conversation_id,
        participant_id=identity_of(author.id) if is_group else None,
        is_self=is_self,
        content=content,
        message_id=str(message.id),
        is_group=is_group,
        timestamp=created.timestamp() if created else None,
        raw=message,
    )


def render_mentions(text: str, mentions: Sequence[str]) -> str:
    """Turn ``@<id>`` tokens into discord mentions; the rest go into a trailing spoiler."""
    body = text or ""
    hidden = []
    for identity in mentions:
        number = number_part(identity)
        if not number:
            continue
        pattern = re.compile(rf"@{re.escape(number)}(?!\d)")
        if pattern.search(body):
            body = pattern.sub(f"<@{number}>", body)
        else:
            hidden.append(f"<@{number}>")
    if hidden:
        body = f"{body}\n||{' '.join(hidden)}||"
    return body


def _filename(message: OutboundMessage) -> str:
    if message.media_kind is ContentKind.STICKER:
        return "sticker.png"
    extension = mimetypes.guess_extension(message.mimetype or "") or {
        ContentKind.IMAGE: ".jpg",
        ContentKind.VIDEO: ".mp4",
        ContentKind.AUDIO: ".ogg",
    }.get(message.media_kind, ".bin")
    return f"{message.media_kind.value}{extension}"


class _Client(discord.Client):
    def __init__(self, transport: "DiscordTransport"):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(intents=intents)
        self.transport = transport

    async def on_ready(self):
        log.info("Discord bot ready as %s", self.user)
        await self.transport.agent.on_connection_open(identity_of(self.user.id))

    async def on_message(self, message: discord.Message):
        own_id = self.user.id if self.user else None
        await self.transport.agent.on_inbound_message(event_from_message(message, own_id))

    async def on_member_join(self, member: discord.Member):
        await self.transport.refresh_guild(member.guild)

    async def on_member_remove(self, member: discord.Member):
        await self.transport.refresh_guild(member.guild)

    async def on_guild_channel_update(self, before, after):
        if isinstance(after, discord.TextChannel):
            await self.transport.agent.on_group_metadata_changed(identity_of(after.id))


class DiscordTransport(Transport):
    platform = "discord"
    identity_domain = DOMAIN
    bot_account = True

    def __init__(self, token: str):
        self.token = token
        self.client = _Client(self)

    async def refresh_guild(self, guild) -> None:
        for channel in guild.text_channels:
            await self.agent.on_group_metadata_changed(identity_of(channel.id))

    async def _messageable(self, conversation_id: str):
        snowflake = native_id(conversation_id)
        channel = self.client.get_channel(snowflake)
        if channel is not None:
            return channel
        user = self.client.get_user(snowflake) or await self.client.fetch_user(snowflake)
        return user.dm_channel or await user.create_dm()

    async def send_message(self, conversation_id: str, message: OutboundMessage) -> None:
        target = await self._messageable(conversation_id)
        text = render_mentions(message.text, message.mentions) if message.mentions else message.text
        if not message.has_media:
            await target.send(text)
            return
        attachment = discord.File(io.BytesIO(message.media), filename=_filename(message))
        await target.send(text or None, file=attachment)

    async def send_reaction(self, ref: MessageRef, glyph: str) -> None:
        target = await self._messageable(ref.conversation_id)
        await target.get_partial_message(int(ref.message_id)).add_reaction(glyph)

    async def query_group_metadata(self, group_id: str) -> GroupMetadata:
        snowflake = native_id(group_id)
        channel = self.client.get_channel(snowflake) or await self.client.fetch_channel(snowflake)
        members = getattr(channel, "members", None)
        if members is None:
            raise ValueError(f"{group_id} is not a guild text channel")
        participants: List[Participant] = [
            Participant(
                identity_of(member.id),
                is_admin=channel.permissions_for(member).administrator,
            )
            for member in members
            if not member.bot
        ]
        return GroupMetadata(group_id=group_id, subject=channel.name, participants=participants)

    async def list_groups(self) -> List[str]:
        return [
            identity_of(channel.id)
            for guild in self.client.guilds
            for channel in guild.text_channels
        ]

    async def download_media(self, media: MediaContent) -> bytes:
        return await media.ref.read()

    async def send_presence(self) -> None:
        await self.client.change_presence(status=discord.Status.online)

    async def display_name(self, identity: str) -> str:
        user = self.client.get_user(native_id(identity))
        return user.display_name if user else ""

    async def start(self):
        try:
            await self.client.start(self.token)
        finally:
            await self.client.close()

    async def stop(self):
        await self.client.close()
