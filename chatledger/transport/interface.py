"""
Chat Transport Interface

What the core needs from a chat client: plain replies, replies offering
an exclusive choice (inline buttons or equivalent), and in-place edits
of a message sent earlier. The inbound side is two pydantic models; the
client adapter builds them from whatever its platform delivers.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from chatledger.models.ledger import ChatIdentity


class Choice(BaseModel):
    """One option of an exclusive choice."""

    label: str = Field(..., description="Text shown to the user")
    data: str = Field(..., description="Opaque payload returned when chosen")


class InboundMessage(BaseModel):
    """A text message received from a chat."""

    model_config = ConfigDict(str_strip_whitespace=True)

    chat_id: int
    is_group_chat: bool = False
    user_external_id: int
    display_name: str = ""
    chat_title: Optional[str] = None
    text: str
    message_id: Optional[int] = None

    @property
    def identity(self) -> ChatIdentity:
        return ChatIdentity(
            chat_id=self.chat_id,
            is_group_chat=self.is_group_chat,
            user_external_id=self.user_external_id,
            display_name=self.display_name,
            chat_title=self.chat_title,
        )


class InboundChoice(BaseModel):
    """A choice the user picked on a message we sent."""

    chat_id: int
    is_group_chat: bool = False
    user_external_id: int
    display_name: str = ""
    chat_title: Optional[str] = None
    data: str
    message_id: Optional[int] = Field(
        default=None,
        description="The message carrying the choice"
    )

    @property
    def identity(self) -> ChatIdentity:
        return ChatIdentity(
            chat_id=self.chat_id,
            is_group_chat=self.is_group_chat,
            user_external_id=self.user_external_id,
            display_name=self.display_name,
            chat_title=self.chat_title,
        )


class ChatTransportInterface(ABC):

    @abstractmethod
    async def send_message(self, chat_id: int, text: str) -> int:
        """
        Send a plain reply.

        Returns:
            Id of the sent message
        """
        pass

    @abstractmethod
    async def send_choices(self, chat_id: int, text: str, choices: list[Choice]) -> int:
        """Send a reply offering an exclusive choice; returns the message id."""
        pass

    @abstractmethod
    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        choices: Optional[list[Choice]] = None,
    ) -> None:
        """Replace the text (and choices; None removes them) of a sent message."""
        pass


class TransportError(Exception):
    """The chat client failed to deliver a message."""
    pass
