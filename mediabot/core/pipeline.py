"""Detection of pipeline-intermediate narrative text."""

from typing import Iterable

from ..utils.logging import get_logger
from .models import AggregateResult
from .text_rules import TextPredicates

logger = get_logger(__name__)

# Tools whose output is data feeding a later tool
DATA_TOOLS: frozenset[str] = frozenset({
    "get_chat_history",
    "chat_summary",
    "search_web",
    "translate_text",
    "get_long_term_memory",
    "analyze_image_from_history",
    "transcribe_audio",
})

# Tools that produce a final deliverable
OUTPUT_TOOLS: frozenset[str] = frozenset({
    "create_image",
    "edit_image",
    "create_video",
    "image_to_video",
    "edit_video",
    "create_poll",
    "send_location",
    "create_music",
    "create_sound_effect",
    "text_to_speech",
    "translate_and_speak",
    "smart_execute_with_fallback",
    "retry_with_different_provider",
})


def last_output_tool(tools_used: list[str], output_tools: Iterable[str] = OUTPUT_TOOLS) -> str | None:
    outputs = set(output_tools)
    for tool in reversed(tools_used):
        if tool in outputs:
            return tool
    return None


def is_intermediate_pipeline_text(
    aggregate: AggregateResult,
    text: str,
    user_text: str,
    predicates: TextPredicates,
    data_tools: Iterable[str] = DATA_TOOLS,
    output_tools: Iterable[str] = OUTPUT_TOOLS,
) -> bool:
    """
    True when ``text`` is an intermediate artifact of a data-to-output pipeline.

    A data tool must run before the final output tool, and the text must
    look like that data tool's output. A text that merely describes an
    earlier output artifact (image created, then animated) also counts.
    Users asking for two separate deliverables disable the check.
    """
    tools_used = aggregate.tools_used
    if not tools_used or not text.strip():
        return False
    if not aggregate.has_output:
        return False
    if predicates.requests_separate_outputs(user_text or ""):
        logger.debug("Separate deliverables requested, keeping narrative")
        return False

    data = set(data_tools)
    outputs = set(output_tools)
    final_tool = last_output_tool(tools_used, outputs)
    if final_tool is None:
        return False
    final_index = len(tools_used) - 1 - tools_used[::-1].index(final_tool)

    earlier = tools_used[:final_index]
    data_used = [t for t in earlier if t in data]
    intermediate_outputs = [t for t in earlier if t in outputs and t != final_tool]

    if data_used and predicates.looks_like_data_output(text, data_used):
        logger.debug("Suppressing data tool output", data_tools=data_used, final_tool=final_tool)
        return True

    if intermediate_outputs and predicates.describes_intermediate_output(text):
        logger.debug("Suppressing intermediate output", tools=intermediate_outputs, final_tool=final_tool)
        return True

    return False
