"""
Base class for messaging transports.

The agent only talks to the transport through these primitives; adapters
translate native updates into InboundEvent and call back into the agent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Sequence

from .events import GroupMetadata, MediaContent, MessageRef, OutboundMessage

if TYPE_CHECKING:  # pragma: no cover
    from .agent import Agent


class Transport(ABC):
    platform: str = "unknown"
    identity_domain: str = ""
    # bot accounts are never adopted as the default owner
    bot_account: bool = False

    def bind(self, agent: "Agent") -> None:
        self.agent = agent

    @abstractmethod
    async def start(self) -> None:
        """Connect and deliver inbound events until stop() is called."""

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def send_message(self, conversation_id: str, message: OutboundMessage) -> None:
        pass

    @abstractmethod
    async def send_reaction(self, ref: MessageRef, glyph: str) -> None:
        pass

    @abstractmethod
    async def query_group_metadata(self, group_id: str) -> GroupMetadata:
        pass

    @abstractmethod
    async def list_groups(self) -> List[str]:
        pass

    @abstractmethod
    async def download_media(self, media: MediaContent) -> bytes:
        pass

    async def read_messages(self, refs: Sequence[MessageRef]) -> None:
        """Mark messages as seen. Platforms without read receipts ignore this."""

    async def send_presence(self) -> None:
        """Refresh online presence. Platforms without presence ignore this."""

    async def display_name(self, identity: str) -> str:
        return ""
