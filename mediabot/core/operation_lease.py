"""Per-chat "bot operation in progress" leases."""

import time
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Lease:
    chat_id: str
    token: str
    expires_at: float


class OperationLeaseStore:
    """
    Keyed store of chat id to lease token with expiry.

    A lease marks that the bot is producing a reply for a chat. It never
    blocks a new request: acquiring for a chat that already holds a lease
    replaces it. The inbound path consults ``is_active`` to tell the bot's
    own echoed messages apart from new ones.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._leases: dict[str, Lease] = {}

    def acquire(self, chat_id: str, ttl_seconds: float | None = None) -> Lease:
        previous = self.holder(chat_id)
        if previous is not None:
            logger.info("Replacing active lease", chat_id=chat_id)
        lease = Lease(
            chat_id=chat_id,
            token=uuid4().hex,
            expires_at=self._clock() + (ttl_seconds or self.ttl_seconds),
        )
        self._leases[chat_id] = lease
        return lease

    def holder(self, chat_id: str) -> Lease | None:
        """The current unexpired lease for a chat, if any."""
        lease = self._leases.get(chat_id)
        if lease is None:
            return None
        if lease.expires_at <= self._clock():
            del self._leases[chat_id]
            return None
        return lease

    def is_active(self, chat_id: str) -> bool:
        return self.holder(chat_id) is not None

    def release(self, lease: Lease) -> bool:
        """
        Release a lease.

        Returns False when the lease was already replaced or expired; a
        newer lease for the same chat is left in place.
        """
        current = self._leases.get(lease.chat_id)
        if current is None or current.token != lease.token:
            return False
        del self._leases[lease.chat_id]
        return current.expires_at > self._clock()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [chat_id for chat_id, lease in self._leases.items() if lease.expires_at <= now]
        for chat_id in expired:
            del self._leases[chat_id]
        return len(expired)
