"""
Multi-step planner.

Asks the LLM to decompose a request into ordered tool steps. The model's
JSON is unreliable (flattened step arrays, truncation, stray ellipses), so
every repair heuristic lives in the pure ``repair`` function and the
rest of the system only ever sees a valid plan or no plan.
"""

import re
from typing import TYPE_CHECKING, Any

import orjson

from ..utils.config import PlannerConfig, get_settings
from ..utils.logging import get_logger
from .errors import PlanParseFailure
from .llm_router import LLMMessage
from .models import MultiStepPlan, NormalizedRequest, PlanStep
from .prompts import MEDIA_MARKERS, multi_step_planner_prompt

if TYPE_CHECKING:
    from ..tools.registry import ToolRegistry
    from .llm_router import LLMRouter

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FLAT_STEPS_RE = re.compile(r'"steps"\s*:\s*\[\s*"stepNumber"')
_STEPS_OPEN_RE = re.compile(r'"steps"\s*:\s*\[\s*')
_STEP_BOUNDARY_RE = re.compile(r',\s*"stepNumber"')
_ELLIPSIS_RE = re.compile(r"\.\.\.|…")
_DANGLING_COMMA_RE = re.compile(r",\s*([}\]])")
_TRAILING_COMMA_RE = re.compile(r",\s*$")

_CLOSERS = {"{": "}", "[": "]"}


def _parses(text: str) -> bool:
    try:
        orjson.loads(text)
    except orjson.JSONDecodeError:
        return False
    return True


def _scan(text: str, start: int = 0) -> tuple[int | None, list[str], bool]:
    """
    Walk JSON-ish text from ``start`` tracking nesting outside of strings.

    Returns (index where depth returns to zero or None, open stack at the
    end, whether the text ended inside a string).
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif char in "}]":
            if stack and _CLOSERS[stack[-1]] == char:
                stack.pop()
                if not stack:
                    return index, [], False
    return None, stack, in_string


def _outermost_object(text: str) -> str | None:
    """The outermost ``{...}`` span, or the open tail when it never closes."""
    start = text.find("{")
    if start < 0:
        return None
    end, _, _ = _scan(text, start)
    if end is None:
        return text[start:].rstrip()
    return text[start:end + 1]


def _wrap_flat_steps(text: str) -> str:
    """
    Rewrap a steps array emitted as bare key/value pairs.

    ``"steps": ["stepNumber": 1, "tool": "a", "stepNumber": 2, ...]`` gets
    one object per step, split at each ``"stepNumber"`` key.
    """
    opening = _STEPS_OPEN_RE.search(text)
    if not opening:
        return text
    body_start = opening.end()

    # Find where the steps array ends: its own "]" or the enclosing "}"
    depth = 0
    in_string = False
    escaped = False
    body_end = len(text)
    terminator = ""
    for index in range(body_start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            if depth == 0:
                body_end = index
                terminator = char
                break
            depth -= 1

    body = _TRAILING_COMMA_RE.sub("", text[body_start:body_end].rstrip())
    body = _STEP_BOUNDARY_RE.sub('}, {"stepNumber"', body)
    rebuilt = '"steps": [{' + body
    if terminator == "]":
        rebuilt += "}"
    elif terminator == "}":
        rebuilt += "}]"
        # A lone "}" right before "]" was meant to close the last step
        stray = re.match(r"\s*\]", text[body_end + 1:])
        if stray:
            body_end += 1 + stray.end()
    return text[:opening.start()] + rebuilt + text[body_end:]


def repair(raw: str | None) -> str | None:
    """
    Turn raw planner output into parseable JSON text.

    Returns None when no JSON object can be recovered. Text that already
    parses is returned unchanged (after fence stripping and isolation).
    """
    if not raw or not raw.strip():
        return None

    text = _FENCE_RE.sub("", raw).strip()
    candidate = _outermost_object(text)
    if candidate is None:
        return None
    if _parses(candidate):
        return candidate

    if _FLAT_STEPS_RE.search(candidate):
        logger.debug("Repairing flattened steps array")
        candidate = _wrap_flat_steps(candidate)

    truncated = "..." in candidate or "…" in candidate or not candidate.rstrip().endswith("}")
    candidate = _ELLIPSIS_RE.sub("", candidate)
    if truncated:
        candidate = _TRAILING_COMMA_RE.sub("", candidate.rstrip())
        _, stack, in_string = _scan(candidate)
        if in_string:
            candidate += '"'
        candidate += "".join(_CLOSERS[opener] for opener in reversed(stack))

    return _DANGLING_COMMA_RE.sub(r"\1", candidate)


def parse_plan_json(raw: str | None) -> dict[str, Any]:
    """Repair and parse planner output. Raises ``PlanParseFailure``."""
    repaired = repair(raw)
    if repaired is None:
        raise PlanParseFailure("No JSON object in planner output")
    try:
        data = orjson.loads(repaired)
    except orjson.JSONDecodeError as e:
        raise PlanParseFailure(f"Planner JSON unrecoverable: {e}") from e
    if not isinstance(data, dict):
        raise PlanParseFailure("Planner output is not a JSON object")
    return data


def normalize_step(step: Any, index: int) -> PlanStep:
    """Fill defaults for one step; explicit values are kept as given."""
    data = step if isinstance(step, dict) else {}

    step_number = data.get("stepNumber")
    if isinstance(step_number, bool) or not isinstance(step_number, (int, float)) or step_number < 1:
        step_number = index + 1

    tool = data.get("tool")
    tool = tool.strip() if isinstance(tool, str) and tool.strip() else None

    action = data.get("action")
    action = action if isinstance(action, str) and action.strip() else f"Step {index + 1}"

    parameters = data.get("parameters")
    parameters = parameters if isinstance(parameters, dict) else {}

    return PlanStep(step_number=int(step_number), tool=tool, action=action, parameters=parameters)


def normalize_plan(data: dict[str, Any]) -> MultiStepPlan:
    """Validate a parsed plan. Fewer than two steps means single-step."""
    steps = data.get("steps")
    if data.get("isMultiStep") is True and isinstance(steps, list) and len(steps) > 1:
        normalized = [normalize_step(step, index) for index, step in enumerate(steps)]
        reasoning = data.get("reasoning")
        return MultiStepPlan(
            is_multi_step=True,
            steps=normalized,
            reasoning=reasoning if isinstance(reasoning, str) else "",
        )
    return MultiStepPlan.single()


def planner_input(request: NormalizedRequest) -> str:
    """User text prefixed with markers for attached media."""
    prefix = ""
    if request.image_url:
        prefix = MEDIA_MARKERS["image"] + " "
    elif request.video_url:
        prefix = MEDIA_MARKERS["video"] + " "
    elif request.audio_url:
        prefix = MEDIA_MARKERS["audio"] + " "
    return prefix + (request.user_text or "")


class PlanCompiler:
    """Compiles a free-text request into a multi-step plan."""

    def __init__(
        self,
        llm: "LLMRouter",
        registry: "ToolRegistry",
        config: PlannerConfig | None = None,
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.config = config or get_settings().planner

    async def plan_multi_step_execution(self, request: str) -> MultiStepPlan:
        """
        Plan a request. Never raises.

        Planner or parse failures come back as ``MultiStepPlan(fallback=True)``
        so the caller degrades to single-step dispatch.
        """
        if len(request.strip()) < self.config.min_request_length:
            return MultiStepPlan.single()

        prompt = multi_step_planner_prompt(request, self.registry.declarations())
        try:
            response = await self.llm.generate(
                [LLMMessage(role="user", content=prompt)],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except Exception as e:
            logger.warning("Planner LLM call failed", error=str(e))
            return MultiStepPlan.single(fallback=True)

        if not response.content or not response.content.strip():
            logger.warning("Planner returned no content")
            return MultiStepPlan.single(fallback=True)

        try:
            plan = normalize_plan(parse_plan_json(response.content))
        except PlanParseFailure as e:
            logger.warning("Planner output unrecoverable", error=e.message, raw=response.content[:500])
            return MultiStepPlan.single(fallback=True)

        if plan.is_multi_step:
            logger.info(
                "Multi-step plan generated",
                step_count=len(plan.steps),
                tools=[step.tool for step in plan.steps],
            )
        else:
            logger.debug("Single-step request detected")
        return plan
