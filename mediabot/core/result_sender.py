"""Pushes assembled emissions through the chat transport."""

from typing import TYPE_CHECKING

from ..utils.logging import get_logger
from .errors import DownstreamTransportFailure
from .response_assembly import Emission, EmissionKind

if TYPE_CHECKING:
    from ..channels.base import ChatTransport

logger = get_logger(__name__)


class ResultSender:
    """
    Sends emissions in the order given.

    A failed emission does not stop the rest. Only the first delivered
    emission quotes the user's message.
    """

    def __init__(self, transport: "ChatTransport") -> None:
        self.transport = transport

    async def send(
        self,
        chat_id: str,
        emissions: list[Emission],
        quoted_id: str | None = None,
    ) -> list[str | None]:
        """
        Send every emission, one message id (or None) per emission.

        Raises ``DownstreamTransportFailure`` naming every failed kind once
        all emissions were attempted.
        """
        message_ids: list[str | None] = []
        delivered: list[Emission] = []
        failed: list[str] = []
        first_error: Exception | None = None
        for emission in emissions:
            quote = None if delivered else quoted_id
            try:
                message_ids.append(await self._send_one(chat_id, emission, quote))
            except Exception as e:
                logger.error("Failed to send emission", kind=emission.kind.value, error=str(e))
                message_ids.append(None)
                failed.append(emission.kind.value)
                first_error = first_error or e
                continue
            delivered.append(emission)

        if failed:
            raise DownstreamTransportFailure(failed, chat_id, first_error, delivered) from first_error
        logger.debug("Reply sent", kinds=[e.kind.value for e in emissions])
        return message_ids

    async def _send_one(self, chat_id: str, emission: Emission, quoted_id: str | None) -> str | None:
        transport = self.transport
        if emission.kind is EmissionKind.LOCATION:
            return await transport.send_location(
                chat_id, emission.latitude, emission.longitude, emission.text, quoted_id=quoted_id
            )
        if emission.kind is EmissionKind.POLL:
            return await transport.send_poll(
                chat_id, emission.poll.question, list(emission.poll.options), quoted_id=quoted_id
            )
        if emission.kind is EmissionKind.IMAGE:
            return await transport.send_image(chat_id, emission.url, emission.text, quoted_id=quoted_id)
        if emission.kind is EmissionKind.VIDEO:
            return await transport.send_video(chat_id, emission.url, emission.text, quoted_id=quoted_id)
        if emission.kind is EmissionKind.AUDIO:
            return await transport.send_audio(chat_id, emission.url, quoted_id=quoted_id)
        return await transport.send_text(chat_id, emission.text or "", quoted_id=quoted_id)
