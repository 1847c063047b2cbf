"""
Response assembly: decide what reaches the user after all steps ran.

The assembler is a pure function of the aggregate result and the user's
text. It emits at most one item per kind, always in the order
location, poll, image, video, audio, text, and never returns an empty list.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from ..utils.logging import get_logger
from ..utils.text import clean_agent_text, clean_media_description
from .models import AggregateResult, Poll
from .pipeline import DATA_TOOLS, OUTPUT_TOOLS, is_intermediate_pipeline_text
from .text_rules import TextPredicates

logger = get_logger(__name__)

GENERIC_FAILURE_NOTICE = "Could not complete the request, please try again."

# Tools whose narrative legitimately carries links
LINK_TOOLS = frozenset({"search_web"})


class EmissionKind(str, Enum):
    LOCATION = "location"
    POLL = "poll"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"


EMISSION_ORDER: tuple[EmissionKind, ...] = tuple(EmissionKind)


class Suppression(str, Enum):
    """Why narrative text was withheld."""

    LOCATION = "location"
    APOLOGY = "apology"
    DUPLICATE_CAPTION = "duplicate_caption"
    AUDIO = "audio"
    PIPELINE = "pipeline"
    ERROR_ALREADY_SENT = "error_already_sent"


@dataclass(frozen=True)
class Emission:
    """One outbound item."""

    kind: EmissionKind
    text: str | None = None  # message body, media caption or location description
    url: str | None = None
    poll: Poll | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_failure_notice: bool = False


@dataclass(frozen=True)
class _Captions:
    image: str
    video: str


class ResponseAssembler:
    """Renders an aggregate result into the final ordered emission list."""

    def __init__(
        self,
        predicates: TextPredicates | None = None,
        data_tools: Iterable[str] = DATA_TOOLS,
        output_tools: Iterable[str] = OUTPUT_TOOLS,
    ) -> None:
        self.predicates = predicates or TextPredicates()
        self.data_tools = frozenset(data_tools)
        self.output_tools = frozenset(output_tools)

    def assemble(self, aggregate: AggregateResult, user_text: str = "") -> list[Emission]:
        captions = self._captions(aggregate)
        emissions: list[Emission] = []

        if aggregate.has_location:
            emissions.append(Emission(
                EmissionKind.LOCATION,
                text=aggregate.location_info,
                latitude=aggregate.latitude,
                longitude=aggregate.longitude,
            ))
        if aggregate.poll is not None:
            emissions.append(Emission(EmissionKind.POLL, poll=aggregate.poll))
        if aggregate.image_url:
            emissions.append(Emission(EmissionKind.IMAGE, url=aggregate.image_url, text=captions.image or None))
        if aggregate.video_url:
            emissions.append(Emission(EmissionKind.VIDEO, url=aggregate.video_url, text=captions.video or None))
        if aggregate.audio_url:
            emissions.append(Emission(EmissionKind.AUDIO, url=aggregate.audio_url))

        suppression = self.text_suppression(aggregate, user_text, captions)
        if suppression is not None:
            logger.debug("Narrative suppressed", reason=suppression.value, tools=aggregate.tools_used)
        else:
            keep_urls = any(tool in LINK_TOOLS for tool in aggregate.tools_used)
            text = clean_agent_text(aggregate.text, keep_urls=keep_urls)
            if text:
                emissions.append(Emission(EmissionKind.TEXT, text=text))

        if not emissions:
            emissions.append(self._failure_notice(aggregate))

        return emissions

    def text_suppression(
        self,
        aggregate: AggregateResult,
        user_text: str = "",
        captions: _Captions | None = None,
    ) -> Suppression | None:
        """
        First matching suppression rule for the narrative, or None to emit it.

        Rules in precedence order: failures the chat has already seen,
        location, apology next to produced output, caption duplicate or
        generic success next to image/video, audio, pipeline-intermediate
        data.
        """
        text = aggregate.text
        if not text.strip():
            return None
        captions = captions or self._captions(aggregate)
        cleaned = clean_media_description(text)

        if aggregate.failures_all_sent:
            return Suppression.ERROR_ALREADY_SENT

        if aggregate.has_location:
            return Suppression.LOCATION

        if aggregate.has_output and self.predicates.is_apology(cleaned or text):
            return Suppression.APOLOGY

        if aggregate.image_url:
            if self.predicates.is_generic_success(cleaned, "image") or (cleaned and cleaned == captions.image):
                return Suppression.DUPLICATE_CAPTION
        if aggregate.video_url:
            if self.predicates.is_generic_success(cleaned, "video") or (cleaned and cleaned == captions.video):
                return Suppression.DUPLICATE_CAPTION
        if (aggregate.image_url or aggregate.video_url) and not cleaned:
            # Nothing left once media markers are stripped
            return Suppression.DUPLICATE_CAPTION

        if aggregate.audio_url:
            return Suppression.AUDIO

        if is_intermediate_pipeline_text(
            aggregate,
            text,
            user_text,
            self.predicates,
            data_tools=self.data_tools,
            output_tools=self.output_tools,
        ):
            return Suppression.PIPELINE

        return None

    def _captions(self, aggregate: AggregateResult) -> _Captions:
        """
        Captions attached to image and video messages.

        An explicit caption wins. Otherwise the narrative becomes the caption
        of the first visual medium, unless it is a bare success phrase
        or an apology.
        """
        narrative = aggregate.text
        narrative_used = False

        image_caption = clean_media_description(aggregate.image_caption)
        if aggregate.image_url and not image_caption and narrative.strip():
            candidate = clean_media_description(narrative)
            if candidate and not self._bare_narrative(candidate, "image"):
                image_caption = candidate
                narrative_used = True

        video_caption = clean_media_description(aggregate.video_caption)
        if aggregate.video_url and not video_caption and not narrative_used and narrative.strip():
            candidate = clean_media_description(narrative)
            if candidate and not self._bare_narrative(candidate, "video"):
                video_caption = candidate

        return _Captions(image=image_caption, video=video_caption)

    def _bare_narrative(self, text: str, kind: str) -> bool:
        return self.predicates.is_generic_success(text, kind) or self.predicates.is_apology(text)

    @staticmethod
    def _failure_notice(aggregate: AggregateResult) -> Emission:
        if aggregate.error and not aggregate.errors_already_sent:
            message = clean_agent_text(aggregate.error, keep_urls=True) or GENERIC_FAILURE_NOTICE
        else:
            message = GENERIC_FAILURE_NOTICE
        logger.warning("Nothing to send, emitting failure notice", error=aggregate.error)
        return Emission(EmissionKind.TEXT, text=message, is_failure_notice=True)
