"""Tests for the WhatsApp channel's message mapping (no bridge needed)."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from mediabot.channels.base import MessageType
from mediabot.channels.whatsapp import SENT_ID_LIMIT, WhatsAppChannel, normalize_number
from mediabot.utils.config import WhatsAppChannelConfig


def _bridge_event(body="hello", sender="972501234567@c.us", msg_id="in-1", **message):
    return {
        "type": "message",
        "chatId": sender,
        "from": {"id": sender, "pushname": "Dana"},
        "message": {"id": {"_serialized": msg_id}, "body": body, **message},
    }


@pytest.fixture
def channel(monkeypatch):
    monkeypatch.delenv("WHATSAPP_BRIDGE_HOST", raising=False)
    monkeypatch.delenv("WHATSAPP_BRIDGE_PORT", raising=False)
    return WhatsAppChannel(WhatsAppChannelConfig(
        allowed_numbers=["+972501234567", "15550001111"],
        media_creation_denied=["15550001111"],
        voice_denied=["+15550001111"],
    ))


def test_normalize_number():
    assert normalize_number("+972501234567") == "972501234567"
    assert normalize_number("972501234567@c.us") == "972501234567"
    assert normalize_number("972501234567:12@s.whatsapp.net") == "972501234567"


def test_build_message_with_image(channel):
    message = channel._build_message(_bridge_event(
        body="make it move",
        hasMedia=True,
        type="image",
        mediaUrl="https://bridge/media/1.jpg",
        mimetype="image/jpeg",
        quotedBody="earlier text",
    ))
    assert message.id == "in-1"
    assert message.message_type is MessageType.IMAGE
    assert message.get_attachment_by_type(MessageType.IMAGE).url == "https://bridge/media/1.jpg"
    assert message.user_name == "Dana"
    assert message.quoted_text == "earlier text"
    assert not message.from_me


def test_to_request_detects_hebrew_and_permissions(channel):
    message = channel._build_message(_bridge_event(body="צור תמונה של חתול", sender="15550001111@c.us"))
    request = channel.to_request(message)

    assert request.language == "he"
    assert request.chat_id == "15550001111@c.us"
    assert request.message_id == "in-1"
    assert not request.media_creation_allowed
    assert not request.voice_allowed
    assert request.chat_type == "private"


def test_to_request_voice_note(channel):
    message = channel._build_message(_bridge_event(
        body="", hasMedia=True, type="ptt", mediaUrl="https://bridge/media/2.ogg", isVoice=True
    ))
    request = channel.to_request(message)
    assert request.audio_url == "https://bridge/media/2.ogg"
    assert request.media_creation_allowed
    assert request.has_media


@pytest.mark.asyncio
async def test_allowlist_blocks_unknown_sender(channel):
    handler = AsyncMock()
    channel.on_message(handler)
    await channel._handle_bridge_message(_bridge_event(sender="449999999999@c.us"))
    await channel.wait_for_dispatches()
    handler.assert_not_awaited()

    await channel._handle_bridge_message(_bridge_event())
    await channel.wait_for_dispatches()
    handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_own_messages_go_to_echo_handlers(channel):
    inbound, echo = AsyncMock(), AsyncMock()
    channel.on_message(inbound)
    channel.on_echo(echo)

    channel._remember_sent("out-1")
    await channel._handle_bridge_message(_bridge_event(msg_id="out-1", fromMe=True))
    await channel.wait_for_dispatches()
    echo.assert_not_awaited()
    assert "out-1" not in channel._sent_message_ids

    await channel._handle_bridge_message(_bridge_event(msg_id="out-2", fromMe=True, sender="123@c.us"))
    await channel.wait_for_dispatches()
    echo.assert_awaited_once()
    inbound.assert_not_awaited()


def test_sent_ids_keep_only_the_newest(channel):
    for n in range(SENT_ID_LIMIT + 5):
        channel._remember_sent(f"out-{n}")
    assert len(channel._sent_message_ids) == SENT_ID_LIMIT
    assert "out-0" not in channel._sent_message_ids
    assert f"out-{SENT_ID_LIMIT + 4}" in channel._sent_message_ids


@pytest.mark.asyncio
async def test_handler_errors_do_not_propagate(channel):
    failing = AsyncMock(side_effect=RuntimeError("boom"))
    second = AsyncMock()
    channel.on_message(failing)
    channel.on_message(second)
    await channel._handle_bridge_message(_bridge_event())
    await channel.wait_for_dispatches()
    second.assert_awaited_once()


@pytest.mark.asyncio
async def test_slow_request_does_not_block_other_chats(channel):
    release = asyncio.Event()
    started: list[str] = []
    finished: list[str] = []

    async def handler(message):
        started.append(message.content)
        if message.content == "A":
            await release.wait()
        finished.append(message.content)

    channel.on_message(handler)
    await channel._handle_bridge_message(_bridge_event(body="A", msg_id="in-a"))
    await channel._handle_bridge_message(_bridge_event(body="B", msg_id="in-b", sender="15550001111@c.us"))
    await channel._handle_bridge_message(_bridge_event(body="A2", msg_id="in-a2"))
    for _ in range(3):
        await asyncio.sleep(0)

    assert started == ["A", "B", "A2"]
    assert finished == ["B", "A2"]

    release.set()
    await channel.wait_for_dispatches()
    assert finished == ["B", "A2", "A"]
    assert not channel._dispatch_tasks


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_messages(channel):
    never = asyncio.Event()
    cancelled = []

    async def handler(message):
        try:
            await never.wait()
        except asyncio.CancelledError:
            cancelled.append(message.id)
            raise

    channel.on_message(handler)
    channel._connected = True
    await channel._handle_bridge_message(_bridge_event())
    await asyncio.sleep(0)

    await channel.stop()

    assert cancelled == ["in-1"]
    assert not channel._dispatch_tasks


@pytest.mark.asyncio
async def test_send_poll_payload(channel, monkeypatch):
    post = AsyncMock(return_value="out-7")
    monkeypatch.setattr(channel, "_post", post)

    message_id = await channel.send_poll("chat-1", "Lunch?", ["Pizza", "Sushi"], quoted_id="in-1")

    assert message_id == "out-7"
    post.assert_awaited_once_with(
        "poll",
        {"chatId": "chat-1", "question": "Lunch?", "options": ["Pizza", "Sushi"], "quotedMessageId": "in-1"},
    )


@pytest.mark.asyncio
async def test_send_audio_as_voice(channel, monkeypatch):
    post = AsyncMock(return_value=None)
    monkeypatch.setattr(channel, "_post", post)
    await channel.send_audio("chat-1", "https://cdn/a.mp3")
    endpoint, payload = post.await_args.args
    assert endpoint == "send"
    assert payload["sendAsVoice"] is True
    assert "quotedMessageId" not in payload


@pytest.mark.asyncio
async def test_send_before_start_raises(channel):
    with pytest.raises(RuntimeError):
        await channel.send_text("chat-1", "hi")
