import asyncio
import html
import logging
import re
from typing import Dict, List, Optional, Sequence, Set

import aiohttp
from telegram import ReactionTypeEmoji, Update
from telegram.constants import ChatType, ParseMode
from telegram.ext import (
    Application,
    ChatMemberHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

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

DOMAIN = "telegram"
GROUP_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP)
# the placeholder user Telegram puts on messages from anonymous group admins
GROUP_ANONYMOUS_BOT_ID = 1087968824

# new messages and channel posts only; edits must not run a command again
INBOUND_MESSAGES = filters.UpdateType.MESSAGE | filters.UpdateType.CHANNEL_POST


def identity_of(native_id) -> str:
    return f"{native_id}@{DOMAIN}"


def anonymous_identity(chat_id, signature: Optional[str] = None) -> str:
    """Identity of an anonymous admin, keyed by the group and the admin's custom title."""
    tag = re.sub(r"[\s:@]+", "_", signature.strip()) if signature else ""
    return f"{chat_id}.{tag}@anon" if tag else f"{chat_id}@anon"


def is_anonymous_admin(message) -> bool:
    user = getattr(message, "from_user", None)
    sender_chat = getattr(message, "sender_chat", None)
    return (
        user is not None
        and user.id == GROUP_ANONYMOUS_BOT_ID
        and sender_chat is not None
        and sender_chat.id == message.chat.id
    )


def admin_participants(chat_id, admins) -> List[Participant]:
    """Administrators as participants; anonymous ones carry their real id for the alias cache."""
    anonymous: Dict[str, List] = {}
    for member in admins:
        if getattr(member, "is_anonymous", False):
            key = anonymous_identity(chat_id, getattr(member, "custom_title", None))
            anonymous.setdefault(key, []).append(member)
    participants: List[Participant] = []
    for member in admins:
        real = identity_of(member.user.id)
        if getattr(member, "is_anonymous", False):
            key = anonymous_identity(chat_id, getattr(member, "custom_title", None))
            # two anonymous admins sharing a title cannot be told apart
            if len(anonymous[key]) == 1:
                participants.append(Participant(key, real_id=real, is_admin=True))
                continue
        participants.append(Participant(real, is_admin=True))
    return participants


def native_id(identity: str) -> int:
    number = number_part(identity)
    if number is None:
        raise ValueError(f"not a telegram identity: {identity!r}")
    return int(number)


def content_of(message) -> object:
    """Map a telegram message (or the message it replies to) onto a content variant."""
    if message is None:
        return UnsupportedContent("missing")
    caption = getattr(message, "caption", None) or ""
    spoiler = bool(getattr(message, "has_media_spoiler", False))
    if getattr(message, "photo", None):
        return MediaContent(
            ContentKind.IMAGE,
            message.photo[-1].file_id,
            caption=caption,
            mimetype="image/jpeg",
            view_once=spoiler,
        )
    if getattr(message, "animation", None):
        return MediaContent(
            ContentKind.VIDEO,
            message.animation.file_id,
            caption=caption,
            mimetype=message.animation.mime_type or "video/mp4",
            gif_playback=True,
            view_once=spoiler,
        )
    if getattr(message, "video", None):
        return MediaContent(
            ContentKind.VIDEO,
            message.video.file_id,
            caption=caption,
            mimetype=message.video.mime_type or "video/mp4",
            view_once=spoiler,
        )
    if getattr(message, "voice", None):
        return MediaContent(
            ContentKind.AUDIO,
            message.voice.file_id,
            mimetype=message.voice.mime_type or "audio/ogg",
            ptt=True,
        )
    if getattr(message, "audio", None):
        return MediaContent(
            ContentKind.AUDIO,
            message.audio.file_id,
            caption=caption,
            mimetype=message.audio.mime_type or "audio/mpeg",
        )
    if getattr(message, "sticker", None):
        return MediaContent(ContentKind.STICKER, message.sticker.file_id, mimetype="image/webp")
    if getattr(message, "text", None):
        return TextContent(message.text)
    return UnsupportedContent(_type_name(message))


def _type_name(message) -> str:
    for name in ("document", "contact", "location", "poll", "venue", "video_note", "dice"):
        if getattr(message, name, None):
            return name
    return "unknown"


def event_from_message(message, bot_id: Optional[int]) -> InboundEvent:
    chat = message.chat
    user = getattr(message, "from_user", None)
    is_group = chat.type in GROUP_TYPES
    content = content_of(message)
    reply = getattr(message, "reply_to_message", None)
    if reply is not None and isinstance(content, TextContent):
        reply_user = getattr(reply, "from_user", None)
        content = QuotedContent(
            text=content.text,
            quoted=content_of(reply),
            quoted_participant=identity_of(reply_user.id) if reply_user else None,
        )
    participant = None
    if is_group and is_anonymous_admin(message):
        participant = anonymous_identity(chat.id, getattr(message, "author_signature", None))
    elif is_group and user is not None:
        participant = identity_of(user.id)
    date = getattr(message, "date", None)
    return InboundEvent(
        conversation_id=identity_of(chat.id),
        participant_id=participant,
        is_self=user is not None and bot_id is not None and user.id == bot_id,
        content=content,
        message_id=str(message.message_id),
        is_group=is_group,
        is_broadcast=chat.type == ChatType.CHANNEL,
        timestamp=date.timestamp() if date else None,
        raw=message,
    )


def render_mentions(text: str, mentions: Sequence[str]) -> str:
    """HTML body with mentions linked; mentions absent from the text become invisible links."""
    body = html.escape(text or "")
    hidden = []
    for identity in mentions:
        number = number_part(identity)
        if not number:
            continue
        pattern = re.compile(rf"@{re.escape(number)}(?!\d)")
        if pattern.search(body):
            body = pattern.sub(f'<a href="tg://user?id={number}">@{number}</a>', body)
        else:
            hidden.append(f'<a href="tg://user?id={number}">\u200b</a>')
    return body + "".join(hidden)


class TelegramTransport(Transport):
    platform = "telegram"
    identity_domain = DOMAIN
    bot_account = True

    def __init__(self, token: str, *, download_timeout: float = 30.0):
        self.application = Application.builder().token(token).build()
        self.download_timeout = download_timeout
        self._register_handlers()
        self._stop_event = asyncio.Event()
        self._groups: Set[int] = set()
        self._members: Dict[int, Set[int]] = {}
        self._names: Dict[str, str] = {}

    @property
    def bot(self):
        return self.application.bot

    def _register_handlers(self):
        self.application.add_handler(MessageHandler(INBOUND_MESSAGES, self.handle_message))
        self.application.add_handler(
            ChatMemberHandler(self.handle_chat_member, ChatMemberHandler.ANY_CHAT_MEMBER)
        )

    def _remember(self, message) -> None:
        chat = message.chat
        user = getattr(message, "from_user", None)
        if user is not None and user.id == GROUP_ANONYMOUS_BOT_ID:
            user = None
        if user is not None:
            self._names[identity_of(user.id)] = user.full_name or user.username or str(user.id)
        if chat.type in GROUP_TYPES:
            self._groups.add(chat.id)
            if user is not None:
                self._members.setdefault(chat.id, set()).add(user.id)

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        if message is None or message.chat is None:
            return
        self._remember(message)
        if message.new_chat_members or message.left_chat_member or message.new_chat_title:
            await self.agent.on_group_metadata_changed(identity_of(message.chat.id))
            return
        event = event_from_message(message, self.bot.id)
        await self.agent.on_inbound_message(event)
        if is_anonymous_admin(message) and event.participant_id not in self.agent.identities:
            await self.agent.on_group_metadata_changed(event.conversation_id)

    async def handle_chat_member(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        change = update.chat_member or update.my_chat_member
        if change is None:
            return
        chat = change.chat
        if chat.type in GROUP_TYPES:
            self._groups.add(chat.id)
            self._members.setdefault(chat.id, set()).add(change.new_chat_member.user.id)
            await self.agent.on_group_metadata_changed(identity_of(chat.id))

    async def send_message(self, conversation_id: str, message: OutboundMessage) -> None:
        chat_id = native_id(conversation_id)
        text = render_mentions(message.text, message.mentions) if message.mentions else message.text
        parse_mode = ParseMode.HTML if message.mentions else None
        if not message.has_media:
            await self.bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode)
            return
        kind = message.media_kind
        caption = text or None
        if kind is ContentKind.IMAGE:
            await self.bot.send_photo(chat_id=chat_id, photo=message.media, caption=caption, parse_mode=parse_mode)
        elif kind is ContentKind.VIDEO and message.gif_playback:
            await self.bot.send_animation(chat_id=chat_id, animation=message.media, caption=caption, parse_mode=parse_mode)
        elif kind is ContentKind.VIDEO:
            await self.bot.send_video(chat_id=chat_id, video=message.media, caption=caption, parse_mode=parse_mode)
        elif kind is ContentKind.AUDIO and message.ptt:
            await self.bot.send_voice(chat_id=chat_id, voice=message.media, caption=caption, parse_mode=parse_mode)
        elif kind is ContentKind.AUDIO:
            await self.bot.send_audio(chat_id=chat_id, audio=message.media, caption=caption, parse_mode=parse_mode)
        elif kind is ContentKind.STICKER:
            await self.bot.send_sticker(chat_id=chat_id, sticker=message.media)
        else:
            raise ValueError(f"cannot send media of kind {kind}")

    async def send_reaction(self, ref: MessageRef, glyph: str) -> None:
        await self.bot.set_message_reaction(
            chat_id=native_id(ref.conversation_id),
            message_id=int(ref.message_id),
            reaction=[ReactionTypeEmoji(glyph)],
        )

    async def query_group_metadata(self, group_id: str) -> GroupMetadata:
        chat_id = native_id(group_id)
        chat = await self.bot.get_chat(chat_id)
        admins = await self.bot.get_chat_administrators(chat_id)
        participants = admin_participants(chat_id, admins)
        seen = {member.user.id for member in admins}
        for user_id in sorted(self._members.get(chat_id, ())):
            if user_id not in seen:
                participants.append(Participant(identity_of(user_id)))
        return GroupMetadata(group_id=group_id, subject=chat.title or "", participants=participants)

    async def list_groups(self) -> List[str]:
        return [identity_of(chat_id) for chat_id in sorted(self._groups)]

    async def download_media(self, media: MediaContent) -> bytes:
        tg_file = await self.bot.get_file(media.ref)
        timeout = aiohttp.ClientTimeout(total=self.download_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(tg_file.file_path) as resp:
                resp.raise_for_status()
                return await resp.read()

    async def display_name(self, identity: str) -> str:
        return self._names.get(identity, "")

    async def start(self):
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        try:
            await self.agent.on_connection_open(identity_of(self.bot.id))
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()

    async def stop(self):
        self._stop_event.set()
