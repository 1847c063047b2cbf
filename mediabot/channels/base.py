"""Base channel interface: inbound messages and the outbound chat transport."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine
from uuid import uuid4

from ..utils.logging import get_logger

logger = get_logger(__name__)


class MessageType(str, Enum):
    """Types of messages."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    FILE = "file"
    LOCATION = "location"
    SYSTEM = "system"


@dataclass
class Attachment:
    """Media attachment in a message."""

    type: MessageType
    url: str | None = None
    mime_type: str | None = None
    filename: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
    """A message from a channel."""

    id: str = field(default_factory=lambda: str(uuid4()))
    channel: str = ""
    chat_id: str = ""
    user_id: str = ""
    user_name: str | None = None
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    attachments: list[Attachment] = field(default_factory=list)
    reply_to: str | None = None
    quoted_text: str | None = None
    is_group: bool = False
    from_me: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: Any = None  # Original message from the platform

    def has_attachments(self) -> bool:
        """Check if message has attachments."""
        return len(self.attachments) > 0

    def get_attachment_by_type(self, attachment_type: MessageType) -> Attachment | None:
        """Get first attachment of a specific type."""
        for attachment in self.attachments:
            if attachment.type == attachment_type:
                return attachment
        return None


# Type for message handler callbacks
MessageHandler = Callable[[Message], Coroutine[Any, Any, None]]


class ChatTransport(ABC):
    """
    Outbound side of a chat platform.

    Every send returns the platform message id (or None when the platform
    does not report one) and raises on delivery failure.
    """

    @abstractmethod
    async def send_text(self, chat_id: str, text: str, quoted_id: str | None = None) -> str | None:
        pass

    @abstractmethod
    async def send_image(
        self,
        chat_id: str,
        url: str,
        caption: str | None = None,
        quoted_id: str | None = None,
    ) -> str | None:
        pass

    @abstractmethod
    async def send_video(
        self,
        chat_id: str,
        url: str,
        caption: str | None = None,
        quoted_id: str | None = None,
    ) -> str | None:
        pass

    @abstractmethod
    async def send_audio(self, chat_id: str, url: str, quoted_id: str | None = None) -> str | None:
        pass

    @abstractmethod
    async def send_poll(
        self,
        chat_id: str,
        question: str,
        options: list[str],
        quoted_id: str | None = None,
    ) -> str | None:
        pass

    @abstractmethod
    async def send_location(
        self,
        chat_id: str,
        latitude: float,
        longitude: float,
        description: str | None = None,
        quoted_id: str | None = None,
    ) -> str | None:
        pass


class BaseChannel(ChatTransport):
    """
    Abstract base class for messaging channels.

    A channel is a chat transport that also listens for inbound messages
    and dispatches them to registered handlers. Messages the account sent
    itself go to the echo handlers instead.
    """

    def __init__(self, name: str) -> None:
        """
        Initialize the channel.

        Args:
            name: Unique name for this channel
        """
        self.name = name
        self._connected = False
        self._message_handlers: list[MessageHandler] = []
        self._echo_handlers: list[MessageHandler] = []
        self._dispatch_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_connected(self) -> bool:
        """Check if the channel is connected."""
        return self._connected

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler for inbound messages."""
        self._message_handlers.append(handler)

    def on_echo(self, handler: MessageHandler) -> None:
        """Register a handler for messages sent from the bot's own account."""
        self._echo_handlers.append(handler)

    def _spawn_dispatch(self, message: Message) -> None:
        """Dispatch a message in its own task; the listener does not wait for it."""
        task = asyncio.create_task(self._dispatch_message(message))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._on_dispatch_done)

    def _on_dispatch_done(self, task: "asyncio.Task[None]") -> None:
        self._dispatch_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Message dispatch failed", channel=self.name, error=str(task.exception()))

    async def wait_for_dispatches(self) -> None:
        """Wait until every in-flight message has been handled."""
        while self._dispatch_tasks:
            await asyncio.wait(set(self._dispatch_tasks))

    async def _cancel_dispatches(self) -> None:
        tasks = set(self._dispatch_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
            logger.info("In-flight messages cancelled", channel=self.name, count=len(tasks))

    async def _dispatch_message(self, message: Message) -> None:
        """
        Dispatch a message to all registered handlers.

        Handler errors are logged and do not stop the remaining handlers.
        """
        handlers = self._echo_handlers if message.from_me else self._message_handlers
        if not handlers:
            logger.warning(
                "No handlers registered, message dropped",
                channel=self.name,
                sender=message.user_id,
                from_me=message.from_me,
            )
            return

        for handler in handlers:
            try:
                await handler(message)
            except Exception as e:
                logger.error(
                    "Error in message handler",
                    channel=self.name,
                    error=str(e),
                    exc_info=True,
                )

    @abstractmethod
    async def start(self) -> None:
        """Start the channel and begin listening for messages."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel and clean up resources."""
        pass

    async def send_typing_indicator(self, chat_id: str) -> None:
        """
        Send a typing indicator to show the bot is working.

        Default implementation does nothing. Override if channel supports it.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} connected={self._connected}>"
