"""Prompt templates for the planner and the agent loop."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..tools.base import ToolDeclaration

MEDIA_MARKERS = {
    "image": "[Image attached]",
    "video": "[Video attached]",
    "audio": "[Audio attached]",
}

AGENT_SYSTEM_PROMPT = """You are a helpful WhatsApp assistant that can create and edit media, search the web,
run polls, send locations and remember user preferences.

Rules:
- Use a tool whenever the user asks for something a tool can do. Never describe a tool call instead of making it.
- Call each tool at most once per request unless the user explicitly asks for several results.
- Never include raw media URLs in your reply; media is delivered separately.
- Only pass a provider argument when the user named a provider.
- If a tool fails, explain the failure briefly; do not apologise when a tool succeeded.
- A tool result with errors_already_sent means the user has already seen that error; do not repeat it.
- Reply in the user's language ({language}). Keep replies short."""


def format_tools_compact(declarations: list["ToolDeclaration"]) -> str:
    """One line per tool: name(params) - description."""
    lines = []
    for declaration in sorted(declarations, key=lambda d: d.name):
        params = ", ".join(
            f"{name}{'' if spec.required else '?'}" for name, spec in declaration.parameters.items()
        )
        lines.append(f"• {declaration.name}({params}) - {declaration.description}")
    return "\n".join(lines)


def multi_step_planner_prompt(user_request: str, declarations: list["ToolDeclaration"]) -> str:
    return f"""Analyze if this request needs multiple SEQUENTIAL steps.

REQUEST: "{user_request}"

RULES:
• SINGLE-STEP = ONE action only
• MULTI-STEP = 2+ DIFFERENT actions that must be executed in sequence

Media context:
• "{MEDIA_MARKERS['image']}" prefix = the user attached an image
• "{MEDIA_MARKERS['video']}" prefix = the user attached a video
• "{MEDIA_MARKERS['audio']}" prefix = the user attached audio
• Image attached + "animate"/"make a video" → SINGLE image_to_video (NOT create_video)
• Image attached + "edit" → SINGLE edit_image; video attached + "edit" → SINGLE edit_video
• Audio attached with no other request → SINGLE transcribe_audio
• "create image of X with OpenAI" → SINGLE create_image with a provider parameter, NOT retry
• "write a song" → SINGLE text response (no tool); "create a song"/"make music" → SINGLE create_music

Only plan MULTI-STEP for an explicit sequence:
• Sequence words: "and then", "after that", "then"
• Several different verbs that need different tools
• A data step feeding an output step ("summarize the chat and make a poll from it")

AVAILABLE TOOLS (exact names):
{format_tools_compact(declarations)}

OUTPUT (strict JSON only):

SINGLE: {{"isMultiStep":false}}

MULTI: {{
  "isMultiStep":true,
  "steps":[
    {{"stepNumber":1,"tool":"send_location","action":"send a location in Slovenia","parameters":{{"region":"Slovenia"}}}},
    {{"stepNumber":2,"tool":"create_image","action":"create an image of lightning","parameters":{{"prompt":"lightning"}}}}
  ],
  "reasoning":"Has the sequence word 'and then'"
}}

Each step MUST include stepNumber, tool, action, parameters.
If no tool is needed for a step, use {{"tool":null,"action":"tell a joke","parameters":{{}}}}.

Return COMPLETE JSON only. NO markdown. NO "..."."""


def step_prompt(
    action: str,
    previous: list[tuple[int, str, list[str]]],
    tool: str | None = None,
    parameters: dict[str, Any] | None = None,
) -> str:
    """
    Focused prompt for one plan step.

    ``previous`` holds (step number, text, produced media kinds) for the
    steps that already ran.
    """
    lines: list[str] = []
    if previous:
        lines.append("CONTEXT from previous steps:")
        for number, text, media in previous:
            entry = f"Step {number}: {text[:200]}" if text else f"Step {number}:"
            entry += "".join(f" [Created {kind}]" for kind in media)
            lines.append(entry)
        lines.append("")
    lines.append(f"CURRENT TASK: {action}")
    if tool:
        lines.append(f"Tool: {tool}")
    if parameters:
        lines.append("Parameters: " + ", ".join(f"{k}: {v}" for k, v in parameters.items()))
    return "\n".join(lines)
