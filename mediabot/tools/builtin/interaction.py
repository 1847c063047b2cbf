"""Poll and location tools."""

from typing import Any

import orjson

from ...core.models import Poll, ToolResult
from ...core.planner import repair
from ...utils.logging import get_logger
from ..base import CATEGORY_OUTPUT, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import ask_llm

logger = get_logger(__name__)

MIN_POLL_OPTIONS = 2
MAX_POLL_OPTIONS = 12

LOCATION_PROMPT = """Pick one real, interesting place {where}.
Answer with JSON only: {{"name": "...", "latitude": 0.0, "longitude": 0.0, "description": "one short sentence"}}"""


def poll_options(raw: Any) -> list[str]:
    """Normalize poll options: strings, trimmed, unique, in order."""
    if isinstance(raw, str):
        raw = raw.replace("\n", ",").split(",")
    options: list[str] = []
    for option in raw or []:
        text = str(option).strip()
        if text and text not in options:
            options.append(text)
    return options


class InteractionToolset(BaseToolset):
    """Toolset for WhatsApp-native interactive messages."""

    name = "interaction"
    description = "Polls and locations"

    def _register_tools(self) -> None:
        """Register interaction tools."""
        self.declare(
            name="create_poll",
            description="Create a poll with a question and answer options",
            handler=self._create_poll,
            parameters={
                "question": ParameterSpec(required=True, description="Poll question"),
                "options": ParameterSpec(
                    type="array",
                    required=True,
                    description=f"Between {MIN_POLL_OPTIONS} and {MAX_POLL_OPTIONS} answer options",
                ),
            },
            category=CATEGORY_OUTPUT,
        )

        self.declare(
            name="send_location",
            description="Send a map location, either exact coordinates or a place in a region",
            handler=self._send_location,
            parameters={
                "region": ParameterSpec(description="Country, city or area to pick a place in"),
                "latitude": ParameterSpec(type="number", description="Exact latitude"),
                "longitude": ParameterSpec(type="number", description="Exact longitude"),
            },
            history=HistoryPolicy(ignore=True, reason="Location request is self-contained"),
            category=CATEGORY_OUTPUT,
        )

    async def _create_poll(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        question = str(self.require(args, "create_poll", "question")).strip()
        options = poll_options(self.require(args, "create_poll", "options"))
        if len(options) < MIN_POLL_OPTIONS:
            return ToolResult.fail(f"A poll needs at least {MIN_POLL_OPTIONS} different options")
        if len(options) > MAX_POLL_OPTIONS:
            logger.info("Poll options truncated", given=len(options))
            options = options[:MAX_POLL_OPTIONS]
        return ToolResult.ok(poll=Poll(question=question, options=tuple(options)))

    async def _send_location(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        latitude = args.get("latitude")
        longitude = args.get("longitude")
        if latitude is not None and longitude is not None:
            return self._location(float(latitude), float(longitude), args.get("region"))

        region = (args.get("region") or "").strip()
        where = f"in {region}" if region else "anywhere in the world"
        answer = await ask_llm(context, LOCATION_PROMPT.format(where=where), temperature=0.9)
        repaired = repair(answer)
        if repaired is None:
            return ToolResult.fail(f"Could not find a location {where}")
        try:
            place = orjson.loads(repaired)
            latitude, longitude = float(place["latitude"]), float(place["longitude"])
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Unusable location answer", answer=answer[:200])
            return ToolResult.fail(f"Could not find a location {where}")

        info = " - ".join(part for part in (place.get("name"), place.get("description")) if part)
        return self._location(latitude, longitude, info or region or None)

    @staticmethod
    def _location(latitude: float, longitude: float, info: str | None) -> ToolResult:
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            return ToolResult.fail("Coordinates are out of range")
        return ToolResult.ok(latitude=latitude, longitude=longitude, location_info=info)
