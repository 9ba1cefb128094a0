import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from kai.agent import Agent
from kai.config import Settings
from kai.events import (
    GroupMetadata,
    InboundEvent,
    MediaContent,
    MessageRef,
    OutboundMessage,
    TextContent,
)
from kai.transport import Transport

OWNER = "1111@chat"
STRANGER = "2222@chat"


class FakeTransport(Transport):
    """Records every primitive call; failures are switched on per test."""

    platform = "fake"
    identity_domain = "chat"

    def __init__(self) -> None:
        self.sent: List[Tuple[str, OutboundMessage]] = []
        self.reactions: List[Tuple[MessageRef, str]] = []
        self.metadata_queries: List[str] = []
        self.read: List[MessageRef] = []
        self.groups: Dict[str, GroupMetadata] = {}
        self.media: Dict[str, bytes] = {}
        self.names: Dict[str, str] = {}
        self.presence_calls = 0
        self.fail_send = False
        self.fail_reaction = False
        self.fail_presence = False
        self.fail_read = False
        self.fail_metadata = False
        self.metadata_gate: Optional[asyncio.Event] = None

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_message(self, conversation_id: str, message: OutboundMessage) -> None:
        if self.fail_send:
            raise ConnectionError("send failed")
        self.sent.append((conversation_id, message))

    async def send_reaction(self, ref: MessageRef, glyph: str) -> None:
        if self.fail_reaction:
            raise ConnectionError("reaction failed")
        self.reactions.append((ref, glyph))

    async def query_group_metadata(self, group_id: str) -> GroupMetadata:
        self.metadata_queries.append(group_id)
        if self.metadata_gate is not None:
            await self.metadata_gate.wait()
        if self.fail_metadata:
            raise ConnectionError("metadata unavailable")
        return self.groups[group_id]

    async def list_groups(self) -> List[str]:
        return list(self.groups)

    async def download_media(self, media: MediaContent) -> bytes:
        return self.media[media.ref]

    async def read_messages(self, refs) -> None:
        if self.fail_read:
            raise ConnectionError("read failed")
        self.read.extend(refs)

    async def send_presence(self) -> None:
        self.presence_calls += 1
        if self.fail_presence:
            raise ConnectionError("presence failed")

    async def display_name(self, identity: str) -> str:
        return self.names.get(identity, "")

    def texts(self, conversation_id: Optional[str] = None) -> List[str]:
        return [m.text for c, m in self.sent if conversation_id is None or c == conversation_id]


def make_event(
    text: str = "",
    *,
    sender: str = STRANGER,
    group: Optional[str] = None,
    is_self: bool = False,
    content=None,
    message_id: str = "m1",
    broadcast: bool = False,
) -> InboundEvent:
    return InboundEvent(
        conversation_id=group or sender,
        participant_id=sender if group else None,
        is_self=is_self,
        content=content if content is not None else TextContent(text),
        message_id=message_id,
        is_group=group is not None,
        is_broadcast=broadcast,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        transport="telegram",
        token="token",
        owner="1111",
        settings_path=tmp_path / "settings.json",
        auth_dir=tmp_path / "auth_info",
        assets_dir=tmp_path / "assets",
        presence_interval=0.01,
    )


@pytest.fixture
def agent(transport, settings):
    kai = Agent(transport, settings)
    kai.start_dispatch()
    return kai
