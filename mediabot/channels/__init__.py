"""Communication channels for Mediabot."""

from .base import Attachment, BaseChannel, ChatTransport, Message, MessageType

__all__ = ["Attachment", "BaseChannel", "ChatTransport", "Message", "MessageType"]
