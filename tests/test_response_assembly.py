"""Tests for reply assembly and narrative suppression."""

from mediabot.core.models import AggregateResult, Poll, ToolResult
from mediabot.core.response_assembly import (
    GENERIC_FAILURE_NOTICE,
    EmissionKind,
    ResponseAssembler,
    Suppression,
)
from mediabot.core.text_rules import TextPredicates

POLL = Poll(question="Best cat name?", options=("Tom", "Luna"))


def _aggregate(*results, texts=()):
    aggregate = AggregateResult()
    for tool, result in results:
        aggregate.absorb(tool, result)
    for text in texts:
        aggregate.add_text(text)
    return aggregate


def _kinds(emissions):
    return [e.kind for e in emissions]


def test_image_and_poll_with_sequence_phrasing_keeps_everything():
    aggregate = _aggregate(
        ("create_image", ToolResult.ok(image_url="https://cdn/cat.png", image_caption="A fluffy cat")),
        ("create_poll", ToolResult.ok(poll=POLL)),
        texts=["Image created: a cat. Poll sent too"],
    )
    emissions = ResponseAssembler().assemble(aggregate, "create an image of a cat, then send a poll about cats")

    assert _kinds(emissions) == [EmissionKind.POLL, EmissionKind.IMAGE, EmissionKind.TEXT]
    assert emissions[1].text == "A fluffy cat"


def test_intermediate_output_description_suppressed_without_sequence_phrasing():
    aggregate = _aggregate(
        ("create_image", ToolResult.ok(image_url="https://cdn/cat.png", image_caption="A fluffy cat")),
        ("create_poll", ToolResult.ok(poll=POLL)),
        texts=["Image created: a cat. Poll sent too"],
    )
    assembler = ResponseAssembler()
    assert assembler.text_suppression(aggregate, "a cat image with a poll") is Suppression.PIPELINE
    assert _kinds(assembler.assemble(aggregate, "a cat image with a poll")) == [EmissionKind.POLL, EmissionKind.IMAGE]


def test_summary_feeding_poll_emits_only_poll():
    aggregate = _aggregate(
        ("chat_summary", ToolResult.ok("Summary: the chat was about pizza and movies")),
        ("create_poll", ToolResult.ok(poll=POLL)),
        texts=["Summary: the chat was about pizza and movies"],
    )
    emissions = ResponseAssembler().assemble(aggregate, "summarize this chat and turn it into a poll")

    assert _kinds(emissions) == [EmissionKind.POLL]
    assert emissions[0].poll == POLL


def test_narrative_equal_to_caption_is_suppressed():
    aggregate = _aggregate(
        ("create_image", ToolResult.ok(image_url="https://cdn/cat.png", image_caption="A cat on a sofa")),
        texts=["A cat on a sofa"],
    )
    assembler = ResponseAssembler()
    emissions = assembler.assemble(aggregate, "draw a cat")

    assert _kinds(emissions) == [EmissionKind.IMAGE]
    assert emissions[0].text == "A cat on a sofa"
    assert assembler.text_suppression(aggregate) is Suppression.DUPLICATE_CAPTION


def test_narrative_becomes_caption_when_none_given():
    aggregate = _aggregate(
        ("create_image", ToolResult.ok(image_url="https://cdn/cat.png")),
        texts=["A ginger cat napping in the sun"],
    )
    emissions = ResponseAssembler().assemble(aggregate, "draw a cat")
    assert _kinds(emissions) == [EmissionKind.IMAGE]
    assert emissions[0].text == "A ginger cat napping in the sun"


def test_generic_success_is_neither_caption_nor_text():
    aggregate = _aggregate(
        ("create_image", ToolResult.ok(image_url="https://cdn/cat.png")),
        texts=["✅ Image created successfully!"],
    )
    emissions = ResponseAssembler().assemble(aggregate)
    assert _kinds(emissions) == [EmissionKind.IMAGE]
    assert emissions[0].text is None


def test_apology_next_to_output_is_suppressed():
    aggregate = _aggregate(
        ("create_image", ToolResult.ok(image_url="https://cdn/dog.png")),
        texts=["Sorry for the mistake, here is a new image of a dog"],
    )
    assembler = ResponseAssembler()
    emissions = assembler.assemble(aggregate)

    assert assembler.text_suppression(aggregate) is Suppression.APOLOGY
    assert _kinds(emissions) == [EmissionKind.IMAGE]
    assert emissions[0].text is None


def test_location_suppresses_narrative():
    aggregate = _aggregate(
        ("send_location", ToolResult.ok(latitude=46.05, longitude=14.5, location_info="Ljubljana")),
        texts=["Here is a lovely spot in Slovenia"],
    )
    emissions = ResponseAssembler().assemble(aggregate)
    assert _kinds(emissions) == [EmissionKind.LOCATION]
    assert (emissions[0].latitude, emissions[0].longitude, emissions[0].text) == (46.05, 14.5, "Ljubljana")


def test_audio_suppresses_narrative():
    aggregate = _aggregate(
        ("create_music", ToolResult.ok(audio_url="https://cdn/song.mp3")),
        texts=["Here's your song about summer"],
    )
    assert _kinds(ResponseAssembler().assemble(aggregate)) == [EmissionKind.AUDIO]


def test_emission_order_is_fixed():
    aggregate = _aggregate(
        ("create_music", ToolResult.ok(audio_url="https://cdn/song.mp3")),
        ("create_video", ToolResult.ok(video_url="https://cdn/v.mp4")),
        ("create_image", ToolResult.ok(image_url="https://cdn/i.png")),
        ("create_poll", ToolResult.ok(poll=POLL)),
        ("send_location", ToolResult.ok(latitude=1.0, longitude=2.0)),
    )
    assert _kinds(ResponseAssembler().assemble(aggregate)) == [
        EmissionKind.LOCATION,
        EmissionKind.POLL,
        EmissionKind.IMAGE,
        EmissionKind.VIDEO,
        EmissionKind.AUDIO,
    ]


def test_search_answer_keeps_links():
    aggregate = _aggregate(
        ("search_web", ToolResult.ok("Found it: https://example.com/article")),
        texts=["Found it: https://example.com/article"],
    )
    emissions = ResponseAssembler().assemble(aggregate, "search for the article")
    assert _kinds(emissions) == [EmissionKind.TEXT]
    assert "https://example.com/article" in emissions[0].text


def test_plain_text_reply_drops_urls():
    aggregate = _aggregate(texts=["See https://example.com for more"])
    emissions = ResponseAssembler().assemble(aggregate)
    assert emissions[0].text == "See for more"


def test_failure_notice_uses_unsent_error():
    aggregate = _aggregate(("create_video", ToolResult.fail("Kling failed: server busy")))
    emissions = ResponseAssembler().assemble(aggregate)
    assert len(emissions) == 1
    assert emissions[0].is_failure_notice
    assert emissions[0].text == "Kling failed: server busy"


def test_failure_notice_generic_when_error_already_sent():
    aggregate = _aggregate(("create_video", ToolResult.fail("Kling failed", errors_already_sent=True)))
    emissions = ResponseAssembler().assemble(aggregate)
    assert emissions[0].text == GENERIC_FAILURE_NOTICE


def test_narrative_repeating_a_delivered_error_is_suppressed():
    aggregate = _aggregate(
        ("create_image", ToolResult.fail("Grok failed: content policy", errors_already_sent=True)),
        texts=["Sorry, Grok failed to create the image: content policy."],
    )
    assembler = ResponseAssembler()
    assert assembler.text_suppression(aggregate) is Suppression.ERROR_ALREADY_SENT

    emissions = assembler.assemble(aggregate)
    assert len(emissions) == 1
    assert emissions[0].is_failure_notice
    assert emissions[0].text == GENERIC_FAILURE_NOTICE


def test_narrative_kept_when_a_failure_was_not_delivered():
    aggregate = _aggregate(
        ("create_image", ToolResult.fail("Grok failed", errors_already_sent=True)),
        ("create_video", ToolResult.fail("Missing prompt")),
        texts=["I need a prompt for the video."],
    )
    assert ResponseAssembler().text_suppression(aggregate) is None


def test_narrative_kept_next_to_a_successful_step():
    aggregate = _aggregate(
        ("create_image", ToolResult.fail("Grok failed", errors_already_sent=True)),
        ("search_web", ToolResult.ok("Paris is the capital of France.")),
        texts=["Paris is the capital of France."],
    )
    assert ResponseAssembler().text_suppression(aggregate) is None


def test_never_returns_empty_list():
    emissions = ResponseAssembler().assemble(AggregateResult())
    assert len(emissions) == 1
    assert emissions[0].text == GENERIC_FAILURE_NOTICE


def test_predicates_are_pluggable():
    """A custom apology classifier changes the verdict without touching the assembler."""
    aggregate = _aggregate(
        ("create_image", ToolResult.ok(image_url="https://cdn/cat.png", image_caption="A cat")),
        texts=["Oops, let me try that again with a different style"],
    )
    predicates = TextPredicates(is_apology=lambda text: text.lower().startswith("oops"))
    assert ResponseAssembler(predicates).text_suppression(aggregate) is Suppression.APOLOGY
    assert ResponseAssembler().text_suppression(aggregate) is None


def test_second_image_dropped_unless_chained():
    aggregate = AggregateResult()
    aggregate.absorb("create_image", ToolResult.ok(image_url="https://cdn/1.png"))
    dropped = aggregate.absorb("create_image", ToolResult.ok(image_url="https://cdn/2.png"))
    assert dropped == ["image"]
    assert aggregate.image_url == "https://cdn/1.png"

    aggregate.absorb("edit_image", ToolResult.ok(image_url="https://cdn/3.png"), frozenset({"image"}))
    assert aggregate.image_url == "https://cdn/3.png"
