"""WhatsApp channel using whatsapp-web.js Node.js bridge."""

import asyncio
import os
import re
from collections import deque
from typing import Any

import aiohttp
import orjson

from ..core.models import NormalizedRequest
from ..utils.config import WhatsAppChannelConfig, get_settings
from ..utils.logging import get_logger
from .base import Attachment, BaseChannel, Message, MessageType

logger = get_logger(__name__)

_HEBREW_RE = re.compile(r"[\u0590-\u05FF]")

SENT_ID_LIMIT = 1000


def normalize_number(value: str) -> str:
    """Digits of a WhatsApp id: no + prefix, no device or @c.us suffix."""
    return value.strip().lstrip("+").split("@")[0].split(":")[0]


class WhatsAppChannel(BaseChannel):
    """
    WhatsApp channel using whatsapp-web.js via a Node.js bridge.

    The bridge runs as a separate Node.js process and communicates
    via HTTP/WebSocket for real-time messaging.

    Features:
    - Text, image, video, audio, poll and location messages
    - Quoted replies
    - Group chat support
    - Allowlist and per-number media/voice restrictions
    """

    def __init__(self, config: WhatsAppChannelConfig | None = None) -> None:
        super().__init__("whatsapp")
        self.config = config or get_settings().channels.whatsapp
        # Allow env var overrides for Docker networking
        self.bridge_host = os.environ.get("WHATSAPP_BRIDGE_HOST") or self.config.bridge_host
        self.bridge_port = int(os.environ.get("WHATSAPP_BRIDGE_PORT", 0)) or self.config.bridge_port

        self._base_url = f"http://{self.bridge_host}:{self.bridge_port}"
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._session: aiohttp.ClientSession | None = None
        self._listen_task: asyncio.Task[None] | None = None

        # Allowlist: only process messages from these numbers (empty = allow all)
        self._allowed_numbers = {normalize_number(n) for n in self.config.allowed_numbers if n.strip()}
        self._media_denied = {normalize_number(n) for n in self.config.media_creation_denied if n.strip()}
        self._voice_denied = {normalize_number(n) for n in self.config.voice_denied if n.strip()}
        if self._allowed_numbers:
            logger.info("WhatsApp allowlist active", allowed=sorted(self._allowed_numbers))

        # Ids of messages we sent, oldest first, to drop their echoes
        self._sent_message_ids: set[str] = set()
        self._sent_order: deque[str] = deque()

    async def start(self) -> None:
        """Start the WhatsApp channel."""
        if self._connected:
            return

        if not await self._check_bridge():
            raise RuntimeError(f"WhatsApp bridge not reachable at {self._base_url}")

        self._session = aiohttp.ClientSession()

        # Try WebSocket first for real-time messages, fall back to polling
        try:
            self._ws = await self._session.ws_connect(
                f"ws://{self.bridge_host}:{self.bridge_port}/ws",
                timeout=aiohttp.ClientTimeout(total=5),
            )
            self._listen_task = asyncio.create_task(self._listen_messages())
            self._connected = True
            logger.info("WhatsApp channel connected via WebSocket")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("WebSocket connection failed, falling back to polling", error=str(e))
            self._connected = True
            self._listen_task = asyncio.create_task(self._poll_messages())
            logger.info("WhatsApp channel connected via polling")

    async def stop(self) -> None:
        """Stop the WhatsApp channel."""
        if not self._connected:
            return

        self._connected = False
        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass

        await self._cancel_dispatches()

        if self._ws:
            await self._ws.close()

        if self._session:
            await self._session.close()

        logger.info("WhatsApp channel stopped")

    async def _check_bridge(self) -> bool:
        """Check if the bridge is running."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"{self._base_url}/status", timeout=aiohttp.ClientTimeout(total=5)) as resp:
                    return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    async def _listen_messages(self) -> None:
        """Listen for incoming messages from the bridge via WebSocket."""
        if not self._ws:
            return

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = orjson.loads(msg.data)
                    except orjson.JSONDecodeError:
                        logger.warning("Invalid JSON from bridge")
                        continue
                    await self._handle_bridge_message(data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("WebSocket error", error=str(self._ws.exception()))
                    break
        except aiohttp.ClientError as e:
            logger.error("WebSocket listener error, switching to polling", error=str(e))
            self._ws = None
            self._listen_task = asyncio.create_task(self._poll_messages())

    async def _poll_messages(self) -> None:
        """Poll the bridge for new messages via HTTP (fallback when WebSocket unavailable)."""
        logger.info("Starting HTTP message polling for WhatsApp bridge")
        last_seen_id: str | None = None

        while self._connected and self._session:
            try:
                async with self._session.get(
                    f"{self._base_url}/messages",
                    timeout=aiohttp.ClientTimeout(total=5),
                ) as resp:
                    if resp.status == 200:
                        data = await resp.json()
                        messages = data if isinstance(data, list) else data.get("messages", [])
                        for msg_data in messages:
                            msg_id = _serialized_id(msg_data.get("id"))
                            if last_seen_id and msg_id == last_seen_id:
                                continue
                            await self._handle_bridge_message({
                                "type": "message",
                                "message": msg_data,
                                "from": msg_data.get("from", {}),
                                "chatId": msg_data.get("chatId", ""),
                                "isGroup": msg_data.get("isGroup", False),
                            })
                        if messages:
                            last_seen_id = _serialized_id(messages[-1].get("id"))
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug("Poll error (will retry)", error=str(e))

            await asyncio.sleep(2)

    def _is_number_allowed(self, sender_id: str) -> bool:
        """Check if a sender is in the allowlist. Empty allowlist = allow all."""
        if not self._allowed_numbers:
            return True
        return normalize_number(sender_id) in self._allowed_numbers

    async def _handle_bridge_message(self, data: dict[str, Any]) -> None:
        """Handle an event from the bridge."""
        event_type = data.get("type")

        if event_type == "message":
            msg_data = data.get("message", {})

            # Messages this process sent come back through message_create
            msg_serialized = _serialized_id(msg_data.get("id"))
            if msg_serialized and msg_serialized in self._sent_message_ids:
                self._sent_message_ids.discard(msg_serialized)
                return

            from_info = data.get("from", {})
            sender_id = from_info.get("id", "") if isinstance(from_info, dict) else str(from_info)
            if not msg_data.get("fromMe", False) and not self._is_number_allowed(sender_id):
                logger.warning("WhatsApp message blocked by allowlist", sender=sender_id)
                return

            message = self._build_message(data)
            logger.info(
                "WhatsApp message accepted",
                sender=sender_id,
                from_me=message.from_me,
                chat_id=message.chat_id,
                body_preview=message.content[:60],
            )
            self._spawn_dispatch(message)

        elif event_type == "qr":
            logger.info("WhatsApp QR code received. Scan to authenticate.", qr_url=self.get_qr_code_url())

        elif event_type == "ready":
            logger.info("WhatsApp client ready")

        elif event_type == "authenticated":
            logger.info("WhatsApp authenticated")

    def _build_message(self, data: dict[str, Any]) -> Message:
        """Build a Message from bridge data."""
        msg_data = data.get("message", {})
        from_info = data.get("from", {})
        if not isinstance(from_info, dict):
            from_info = {"id": str(from_info)}

        msg_type = MessageType.TEXT
        attachments = []

        if msg_data.get("hasMedia"):
            media_type = msg_data.get("type", "")
            if "image" in media_type:
                msg_type = MessageType.IMAGE
            elif "audio" in media_type or "ptt" in media_type:
                msg_type = MessageType.AUDIO
            elif "video" in media_type:
                msg_type = MessageType.VIDEO
            else:
                msg_type = MessageType.FILE

            attachments.append(
                Attachment(
                    type=msg_type,
                    url=msg_data.get("mediaUrl"),
                    mime_type=msg_data.get("mimetype"),
                    filename=msg_data.get("filename"),
                    metadata={"is_voice": msg_data.get("isVoice", False)},
                )
            )

        return Message(
            id=_serialized_id(msg_data.get("id")),
            channel=self.name,
            chat_id=data.get("chatId") or from_info.get("id", ""),
            user_id=from_info.get("id", ""),
            user_name=from_info.get("pushname") or from_info.get("name"),
            content=msg_data.get("body", "") or "",
            message_type=msg_type,
            attachments=attachments,
            reply_to=msg_data.get("quotedMsgId"),
            quoted_text=msg_data.get("quotedBody"),
            is_group=bool(data.get("isGroup", False)),
            from_me=bool(msg_data.get("fromMe", False)),
            metadata={"timestamp": msg_data.get("timestamp")},
            raw=data,
        )

    def to_request(self, message: Message) -> NormalizedRequest:
        """Convert an inbound message into the orchestrator's request shape."""
        sender = normalize_number(message.user_id)
        image = message.get_attachment_by_type(MessageType.IMAGE)
        video = message.get_attachment_by_type(MessageType.VIDEO)
        audio = message.get_attachment_by_type(MessageType.AUDIO)
        return NormalizedRequest(
            chat_id=message.chat_id,
            user_text=message.content,
            image_url=image.url if image else None,
            video_url=video.url if video else None,
            audio_url=audio.url if audio else None,
            quoted_context=message.quoted_text,
            chat_type="group" if message.is_group else "private",
            language="he" if _HEBREW_RE.search(message.content) else get_settings().app.default_language,
            sender_id=message.user_id,
            sender_name=message.user_name or "",
            message_id=message.id or None,
            media_creation_allowed=sender not in self._media_denied,
            voice_allowed=sender not in self._voice_denied,
            received_at=message.timestamp,
        )

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> str | None:
        """POST to the bridge. Raises on transport or HTTP errors."""
        if not self._session:
            raise RuntimeError("WhatsApp channel is not started")

        async with self._session.post(f"{self._base_url}/{endpoint}", json=payload) as resp:
            if resp.status != 200:
                body = await resp.text()
                logger.error("WhatsApp bridge rejected request", endpoint=endpoint, status=resp.status, body=body[:200])
                raise RuntimeError(f"WhatsApp bridge returned {resp.status} for /{endpoint}")
            result = await resp.json()

        msg_id = result.get("messageId") if isinstance(result, dict) else None
        if msg_id:
            self._remember_sent(msg_id)
        logger.info("WhatsApp message sent", endpoint=endpoint, chat_id=payload.get("chatId"), message_id=msg_id)
        return msg_id

    def _remember_sent(self, msg_id: str) -> None:
        """Track an id so its echo via message_create is skipped; keeps the newest ids only."""
        self._sent_message_ids.add(msg_id)
        self._sent_order.append(msg_id)
        while len(self._sent_order) > SENT_ID_LIMIT:
            self._sent_message_ids.discard(self._sent_order.popleft())

    @staticmethod
    def _with_quote(payload: dict[str, Any], quoted_id: str | None) -> dict[str, Any]:
        if quoted_id:
            payload["quotedMessageId"] = quoted_id
        return payload

    async def send_text(self, chat_id: str, text: str, quoted_id: str | None = None) -> str | None:
        return await self._post("send", self._with_quote({"chatId": chat_id, "content": text}, quoted_id))

    async def send_image(
        self,
        chat_id: str,
        url: str,
        caption: str | None = None,
        quoted_id: str | None = None,
    ) -> str | None:
        payload = {"chatId": chat_id, "content": caption or "", "mediaUrl": url, "mediaType": "image"}
        return await self._post("send", self._with_quote(payload, quoted_id))

    async def send_video(
        self,
        chat_id: str,
        url: str,
        caption: str | None = None,
        quoted_id: str | None = None,
    ) -> str | None:
        payload = {"chatId": chat_id, "content": caption or "", "mediaUrl": url, "mediaType": "video"}
        return await self._post("send", self._with_quote(payload, quoted_id))

    async def send_audio(self, chat_id: str, url: str, quoted_id: str | None = None) -> str | None:
        payload = {"chatId": chat_id, "content": "", "mediaUrl": url, "mediaType": "audio", "sendAsVoice": True}
        return await self._post("send", self._with_quote(payload, quoted_id))

    async def send_poll(
        self,
        chat_id: str,
        question: str,
        options: list[str],
        quoted_id: str | None = None,
    ) -> str | None:
        payload = {"chatId": chat_id, "question": question, "options": options}
        return await self._post("poll", self._with_quote(payload, quoted_id))

    async def send_location(
        self,
        chat_id: str,
        latitude: float,
        longitude: float,
        description: str | None = None,
        quoted_id: str | None = None,
    ) -> str | None:
        payload = {"chatId": chat_id, "latitude": latitude, "longitude": longitude, "description": description or ""}
        return await self._post("location", self._with_quote(payload, quoted_id))

    async def send_typing_indicator(self, chat_id: str) -> None:
        """Send typing indicator."""
        if not self._session:
            return

        try:
            async with self._session.post(f"{self._base_url}/typing", json={"chatId": chat_id, "typing": True}):
                pass
        except aiohttp.ClientError as e:
            logger.debug("Typing indicator failed", error=str(e))

    def get_qr_code_url(self) -> str:
        """Get URL to view QR code for authentication."""
        return f"{self._base_url}/qr"


def _serialized_id(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("_serialized") or value.get("id", "") or ""
    return str(value) if value else ""
