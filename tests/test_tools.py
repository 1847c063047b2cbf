"""Tests for the builtin toolsets, executed through the registry."""

from datetime import datetime, timezone

import pytest

from mediabot.core.errors import ErrorCode
from mediabot.core.stores import (
    HistoryEntry,
    InMemoryCommandStore,
    InMemoryConversationHistory,
    InMemoryPreferenceStore,
    LastCommand,
)
from mediabot.tools.base import ExecutionContext
from mediabot.tools.builtin.interaction import poll_options
from mediabot.tools.builtin.retry import next_providers, simplify_prompt
from mediabot.tools.builtin.search import search_result

from fakes import FakeLLM, FakeProvider, FakeTransport, make_hub, reply


@pytest.mark.asyncio
async def test_create_image_denied_without_permission(registry, context_factory):
    hub = make_hub(FakeProvider("gemini", body={"url": "https://cdn/a.png"}))
    context = context_factory(hub=hub, media_creation_allowed=False)
    result = await registry.execute("create_image", {"prompt": "cat"}, context)
    assert not result.success
    assert result.error_code is ErrorCode.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_create_image_rejects_video_provider(registry, context_factory):
    kling = FakeProvider("kling", body={"url": "https://cdn/v.mp4"})
    context = context_factory(hub=make_hub(kling))
    result = await registry.execute("create_image", {"prompt": "cat", "provider": "kling"}, context)

    assert not result.success
    assert result.error_code is ErrorCode.PROVIDER_MISMATCH
    assert "Kling" in result.error
    assert kling.calls == []


@pytest.mark.asyncio
async def test_explicit_provider_failure_reports_only_that_provider(registry, context_factory, transport):
    gemini = FakeProvider("gemini", body={"url": "https://cdn/a.png"})
    grok = FakeProvider("grok", error="content rejected")
    context = context_factory(hub=make_hub(gemini, grok))
    result = await registry.execute("create_image", {"prompt": "cat", "provider": "grok"}, context)

    assert not result.success
    assert result.error == "Grok failed: content rejected"
    assert gemini.calls == []
    assert result.errors_already_sent
    assert transport.texts == ["❌ Grok failed: content rejected"]


@pytest.mark.asyncio
async def test_explicit_provider_failure_not_flagged_when_push_fails(registry, request_factory):
    transport = FakeTransport(fail_on={"text"})
    context = ExecutionContext(
        request=request_factory(),
        transport=transport,
        providers=make_hub(FakeProvider("grok", error="content rejected")),
        registry=registry,
        send_acks=False,
    )
    result = await registry.execute("create_image", {"prompt": "cat", "provider": "grok"}, context)
    assert not result.success
    assert not result.errors_already_sent


@pytest.mark.asyncio
async def test_image_to_video_uses_last_created_image(registry, context_factory):
    veo = FakeProvider("veo3", body={"url": "https://cdn/v.mp4"})
    context = context_factory(hub=make_hub(veo, video=["veo3"]))
    context.previous_assets = {"image": ["https://cdn/old.png", "https://cdn/latest.png"]}
    result = await registry.execute("image_to_video", {"prompt": "slow zoom"}, context)

    assert result.success
    assert result.video_url == "https://cdn/v.mp4"
    assert veo.calls == [("image-to-video", {"prompt": "slow zoom", "image_url": "https://cdn/latest.png"})]


@pytest.mark.asyncio
async def test_image_to_video_without_image(registry, context_factory):
    context = context_factory(hub=make_hub(FakeProvider("veo3")))
    result = await registry.execute("image_to_video", {}, context)
    assert result.error_code is ErrorCode.REQUIRED_PARAMETER_MISSING


@pytest.mark.asyncio
async def test_edit_image_uses_attachment(registry, context_factory):
    gemini = FakeProvider("gemini", body={"url": "https://cdn/edited.png", "description": "Now with a hat"})
    context = context_factory(hub=make_hub(gemini, image=["gemini"]), image_url="https://cdn/in.jpg")
    result = await registry.execute("edit_image", {"prompt": "add a hat"}, context)

    assert result.image_url == "https://cdn/edited.png"
    assert result.image_caption == "Now with a hat"
    assert gemini.calls == [("edit-image", {"prompt": "add a hat", "image_url": "https://cdn/in.jpg"})]


@pytest.mark.asyncio
async def test_text_to_speech_denied_without_voice_permission(registry, context_factory):
    context = context_factory(hub=make_hub(FakeProvider("elevenlabs")), voice_allowed=False)
    result = await registry.execute("text_to_speech", {"text": "hi"}, context)
    assert result.error_code is ErrorCode.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_create_sound_effect_uses_sound_providers(registry, context_factory):
    elevenlabs = FakeProvider("elevenlabs", body={"url": "https://cdn/boom.mp3"})
    context = context_factory(hub=make_hub(elevenlabs))
    result = await registry.execute("create_sound_effect", {"description": "thunder"}, context)
    assert result.audio_url == "https://cdn/boom.mp3"
    assert elevenlabs.calls[0][0] == "sound-effect"


@pytest.mark.asyncio
async def test_translate_and_speak_falls_back_to_text(registry, context_factory, transport):
    llm = FakeLLM([reply("Hola amigos")])
    context = context_factory(hub=make_hub(FakeProvider("elevenlabs", error="voice service down")), llm=llm)
    result = await registry.execute("translate_and_speak", {"text": "Hi friends", "target_language": "Spanish"}, context)

    assert result.success
    assert result.text_only
    assert result.data == "Hola amigos"
    assert result.errors_already_sent
    assert transport.texts == ["❌ ElevenLabs failed: voice service down"]


@pytest.mark.asyncio
async def test_transcribe_attached_audio(registry, context_factory):
    gemini = FakeProvider("gemini", body={"text": "see you at noon"})
    context = context_factory(hub=make_hub(gemini), audio_url="https://cdn/voice.ogg")
    result = await registry.execute("transcribe_audio", {}, context)
    assert result.data == "see you at noon"
    assert gemini.calls == [("transcribe", {"audio_url": "https://cdn/voice.ogg"})]


def test_search_result_lists_sources():
    result = search_result({
        "answer": "Paris is the capital of France.",
        "sources": [{"title": "Wiki", "url": "https://en.wikipedia.org/wiki/Paris"}, {"title": "No url"}],
    })
    assert result.data == "Paris is the capital of France.\n\n• Wiki: https://en.wikipedia.org/wiki/Paris"
    assert not search_result({}).success


def test_poll_options_normalized():
    assert poll_options(" red, blue,red ,\ngreen ") == ["red", "blue", "green"]
    assert poll_options(["a", "", 3]) == ["a", "3"]


@pytest.mark.asyncio
async def test_create_poll(registry, context_factory):
    context = context_factory()
    ok = await registry.execute("create_poll", {"question": "Lunch?", "options": ["Pizza", "Sushi"]}, context)
    too_few = await registry.execute("create_poll", {"question": "Lunch?", "options": ["Pizza", "Pizza"]}, context)
    many = await registry.execute("create_poll", {"question": "N?", "options": [str(n) for n in range(20)]}, context)

    assert ok.poll.question == "Lunch?"
    assert ok.poll.options == ("Pizza", "Sushi")
    assert not too_few.success
    assert len(many.poll.options) == 12


@pytest.mark.asyncio
async def test_send_location_from_model_answer(registry, context_factory):
    llm = FakeLLM([reply('```json\n{"name": "Bled", "latitude": 46.36, "longitude": 14.09, "description": "Lake"}\n```')])
    context = context_factory(llm=llm)
    result = await registry.execute("send_location", {"region": "Slovenia"}, context)

    assert (result.latitude, result.longitude) == (46.36, 14.09)
    assert result.location_info == "Bled - Lake"
    assert "in Slovenia" in llm.calls[0]["messages"][0].content


@pytest.mark.asyncio
async def test_send_location_rejects_bad_coordinates(registry, context_factory):
    result = await registry.execute("send_location", {"latitude": 120, "longitude": 10}, context_factory())
    assert not result.success


@pytest.mark.asyncio
async def test_chat_summary_reads_history(registry, context_factory):
    history = InMemoryConversationHistory()
    stamp = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    await history.add("chat-1", HistoryEntry("user", "I love pizza", stamp, {"sender_name": "Dana"}))
    await history.add("chat-1", HistoryEntry("assistant", "Pizza it is", stamp))
    llm = FakeLLM([reply("Dana wants pizza")])
    context = context_factory(llm=llm)
    context.history_store = history

    result = await registry.execute("chat_summary", {}, context)

    assert result.data == "Dana wants pizza"
    prompt = llm.calls[0]["messages"][0].content
    assert "[09:30] Dana: I love pizza" in prompt
    assert "[09:30] Bot: Pizza it is" in prompt


@pytest.mark.asyncio
async def test_chat_history_empty(registry, context_factory):
    context = context_factory()
    context.history_store = InMemoryConversationHistory()
    result = await registry.execute("get_chat_history", {}, context)
    assert not result.success


@pytest.mark.asyncio
async def test_preferences_saved_and_read(registry, context_factory):
    context = context_factory()
    context.preference_store = InMemoryPreferenceStore()
    await registry.execute("save_user_preference", {"key": "style", "value": "watercolor"}, context)
    result = await registry.execute("get_long_term_memory", {}, context)
    assert result.data == "Saved preferences:\n• style: watercolor"


@pytest.mark.asyncio
async def test_analyze_image_from_history(registry, context_factory):
    history = InMemoryConversationHistory()
    await history.add("chat-1", HistoryEntry("user", "look", metadata={"image_url": "https://cdn/old.jpg"}))
    await history.add("chat-1", HistoryEntry("user", "and this", metadata={"image_url": "https://cdn/new.jpg"}))
    gemini = FakeProvider("gemini", body={"text": "A dog on a beach"})
    context = context_factory(hub=make_hub(gemini))
    context.history_store = history

    result = await registry.execute("analyze_image_from_history", {"question": "What animal?"}, context)

    assert result.data == "A dog on a beach"
    operation, payload = gemini.calls[0]
    assert operation == "analyze-image"
    assert payload["image_url"] == "https://cdn/new.jpg"


@pytest.mark.asyncio
async def test_retry_with_other_provider_and_modifications(registry, context_factory):
    openai = FakeProvider("openai", body={"url": "https://cdn/retry.png"})
    context = context_factory(hub=make_hub(FakeProvider("gemini"), openai))
    context.command_store = InMemoryCommandStore()
    await context.command_store.save("chat-1", LastCommand("create_image", {"prompt": "a cat", "provider": "gemini"}))

    result = await registry.execute(
        "retry_last_command", {"provider": "openai", "modifications": "in watercolor"}, context
    )

    assert result.image_url == "https://cdn/retry.png"
    assert openai.calls == [("image", {"prompt": "a cat, in watercolor"})]


@pytest.mark.asyncio
async def test_retry_without_previous_command(registry, context_factory):
    context = context_factory()
    context.command_store = InMemoryCommandStore()
    result = await registry.execute("retry_last_command", {}, context)
    assert result.error == "There is no previous command to retry"


def test_next_providers_start_after_the_last_tried():
    assert next_providers(["veo3", "sora", "kling", "runway"], ["veo3", "kling"]) == ["runway", "sora"]
    assert next_providers(["gemini", "openai"], []) == ["gemini", "openai"]


def test_simplify_prompt_drops_style_clause():
    assert simplify_prompt("a cat in the style of Van Gogh, sitting on a roof") == "a cat sitting on a roof"
    assert simplify_prompt("a cat") == "a cat"


@pytest.mark.asyncio
async def test_smart_fallback_moves_to_untried_providers(registry, context_factory):
    gemini = FakeProvider("gemini", body={"url": "https://cdn/gemini.png"})
    openai = FakeProvider("openai", error="rate limited")
    grok = FakeProvider("grok", body={"url": "https://cdn/grok.png"})
    context = context_factory(hub=make_hub(gemini, openai, grok))

    result = await registry.execute(
        "smart_execute_with_fallback",
        {
            "task_type": "image_creation",
            "original_prompt": "a red fox",
            "failure_reason": "timeout",
            "providers_tried": "gemini",
        },
        context,
    )

    assert result.success
    assert result.image_url == "https://cdn/grok.png"
    assert result.provider_used == "grok"
    assert gemini.calls == []
    assert openai.calls == [("image", {"prompt": "a red fox"})]


@pytest.mark.asyncio
async def test_smart_fallback_simplifies_prompt_when_all_providers_were_tried(registry, context_factory):
    gemini = FakeProvider("gemini", body={"url": "https://cdn/simple.png"})
    context = context_factory(hub=make_hub(gemini, FakeProvider("openai"), FakeProvider("grok")))

    result = await registry.execute(
        "smart_execute_with_fallback",
        {
            "task_type": "image_creation",
            "original_prompt": "a cat in the style of Van Gogh, sitting on a roof",
            "failure_reason": "content policy",
            "providers_tried": "Gemini, ChatGPT, grok",
        },
        context,
    )

    assert result.image_url == "https://cdn/simple.png"
    assert gemini.calls == [("image", {"prompt": "a cat sitting on a roof"})]


@pytest.mark.asyncio
async def test_smart_fallback_failure_is_pushed_once(registry, context_factory, transport):
    hub = make_hub(
        FakeProvider("gemini", error="busy"),
        FakeProvider("openai", error="rate limited"),
        FakeProvider("grok", error="content rejected"),
    )
    context = context_factory(hub=hub)

    result = await registry.execute(
        "smart_execute_with_fallback",
        {"task_type": "image_creation", "original_prompt": "a cat", "failure_reason": "busy", "providers_tried": "gemini"},
        context,
    )

    assert not result.success
    assert result.error_code is ErrorCode.ALL_PROVIDERS_FAILED
    assert result.error == "All providers failed to create the image:\n• OpenAI: rate limited\n• Grok: content rejected"
    assert result.errors_already_sent
    assert transport.texts == [f"❌ {result.error}"]


@pytest.mark.asyncio
async def test_smart_fallback_for_audio_needs_voice_permission(registry, context_factory):
    elevenlabs = FakeProvider("elevenlabs", body={"url": "https://cdn/a.mp3"})
    context = context_factory(hub=make_hub(elevenlabs), voice_allowed=False)

    result = await registry.execute(
        "smart_execute_with_fallback",
        {"task_type": "audio_creation", "original_prompt": "hello there", "failure_reason": "timeout"},
        context,
    )

    assert result.error_code is ErrorCode.PERMISSION_DENIED
    assert elevenlabs.calls == []


@pytest.mark.asyncio
async def test_retry_with_different_provider_skips_avoided_one(registry, context_factory):
    gemini = FakeProvider("gemini", body={"url": "https://cdn/gemini.png"})
    openai = FakeProvider("openai", body={"url": "https://cdn/openai.png"})
    context = context_factory(hub=make_hub(gemini, openai))

    result = await registry.execute(
        "retry_with_different_provider",
        {"task_type": "image", "original_prompt": "a red fox", "avoid_provider": "Gemini"},
        context,
    )

    assert result.image_url == "https://cdn/openai.png"
    assert result.provider_used == "openai"
    assert gemini.calls == []
