"""Request context for binding the in-flight chat to log lines."""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

import structlog

chat_id_context: ContextVar[str] = ContextVar("chat_id", default="")


def get_chat_id() -> str:
    """Get the chat id of the request being handled."""
    return chat_id_context.get() or ""


@contextmanager
def bind_request(chat_id: str, **extra: str) -> Iterator[None]:
    """Bind chat id (and extra fields) for every log line emitted inside the block."""
    token = chat_id_context.set(chat_id or "")
    with structlog.contextvars.bound_contextvars(chat_id=chat_id, **extra):
        try:
            yield
        finally:
            chat_id_context.reset(token)
