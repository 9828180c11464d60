"""
Interface for the WhatsApp automation client.
The browser-driven implementation and the test fakes conform to this interface.
The rest of the app works with these normalized types and never touches the
automation layer's own objects.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol, Union

USER_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"

TARGET_CLOSED_SIGNATURES = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
)


def normalize_number(number: str) -> str:
    """Lead key for a phone number: no WhatsApp suffix, no leading '+'."""
    return number.strip().split("@", 1)[0].lstrip("+")


def to_chat_id(number: str) -> str:
    return f"{normalize_number(number)}{USER_SUFFIX}"


def is_target_closed(error: BaseException | str | None) -> bool:
    """True for the transport-level failure that needs a full client recreation."""
    if error is None:
        return False
    if isinstance(error, BaseException) and type(error).__name__ == "TargetClosedError":
        return True
    text = str(error).lower()
    return any(sig in text for sig in TARGET_CLOSED_SIGNATURES)


@dataclass
class Label:
    id: str
    name: str


@dataclass
class Contact:
    id: str  # serialized chat id, e.g. 5511999999999@c.us
    number: str
    name: str | None = None
    pushname: str | None = None
    labels: list[str] = field(default_factory=list)  # label ids

    @property
    def display_name(self) -> str | None:
        return self.name or self.pushname


@dataclass
class Chat:
    id: str
    name: str | None = None
    is_group: bool = False
    labels: list[str] = field(default_factory=list)  # label names


@dataclass
class IncomingMessage:
    """Inbound chat message, normalized."""
    message_id: str
    sender_id: str
    body: str
    is_group: bool = False
    timestamp: str | None = None


# --- Events ---

@dataclass
class QrReceived:
    qr: str


@dataclass
class Ready:
    pass


@dataclass
class AuthFailure:
    message: str


@dataclass
class Disconnected:
    reason: str


@dataclass
class ClientError:
    error: BaseException


@dataclass
class MessageReceived:
    message: IncomingMessage


@dataclass
class ContactChanged:
    contact: Contact


@dataclass
class GroupUpdated:
    chat_id: str


ClientEvent = Union[
    QrReceived, Ready, AuthFailure, Disconnected, ClientError,
    MessageReceived, ContactChanged, GroupUpdated,
]

EventListener = Callable[[ClientEvent], Awaitable[None]]


class WhatsAppClient(Protocol):
    """Interface of the automation client owned by the ConnectionSupervisor."""

    def add_listener(self, listener: EventListener) -> None:
        ...

    def remove_all_listeners(self) -> None:
        ...

    async def initialize(self) -> None:
        """Start the session. Progress is reported through events."""
        ...

    async def destroy(self) -> None:
        """Tear down the session and release the browser."""
        ...

    async def get_contact_by_id(self, contact_id: str) -> Contact | None:
        ...

    async def get_chat_by_id(self, chat_id: str) -> Chat | None:
        ...

    async def get_group_participants(self, chat_id: str) -> list[str]:
        """Serialized contact ids of the group members."""
        ...

    async def get_labels(self) -> list[Label]:
        """Full WhatsApp Business label catalog."""
        ...
