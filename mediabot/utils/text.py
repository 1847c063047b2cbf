"""Text cleaning for captions and narrative replies."""

import re

import orjson

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`[^`]*`")
_FENCE_LINE_RE = re.compile(r"^\s*`+\s*|\s*`+\s*$", re.MULTILINE)
_MULTI_WHITESPACE_RE = re.compile(r"\s{2,}")

URL_RE = re.compile(r"https?://[^\s]+", re.IGNORECASE)
_MD_LINK_RE = re.compile(r"\[[^\]]*?\]\(https?://[^)]+\)")
_GENERIC_TAGS_RE = re.compile(r"\[(image|video|audio|תמונה|וידאו|אודיו|media)\]", re.IGNORECASE)
_TAG_WITH_ID_RE = re.compile(
    r"\[(image|video|audio|imageUrl|videoUrl|audioUrl|image_url|video_url|audio_url|image_id|video_id|audio_id)"
    r"(:|=)\s*[^\]]*\]?",
    re.IGNORECASE,
)
_BRACE_TAG_RE = re.compile(r"\{(imageUrl|videoUrl|audioUrl|taskId)(:|=)\s*[^}]*\}?", re.IGNORECASE)
_STATUS_TAGS_RE = re.compile(r"\[(Image|Video|Audio|Voice message)\s+(sent|created)\]", re.IGNORECASE)
_LINK_PLACEHOLDERS_RE = re.compile(r"\[(Video|Audio|Image|Music|File|Link|קישור|לינק)[^\]]*\]", re.IGNORECASE)
_TOOL_RESULT_RE = re.compile(
    r"(audioUrl|imageUrl|videoUrl|image_url|video_url|audio_url):\s*https?://[^\s\]]+", re.IGNORECASE
)
_TASK_ID_RE = re.compile(r"taskId:\s*[\"']?[a-f0-9-]+[\"']?", re.IGNORECASE)
_TRUNCATED_KEYS_RE = re.compile(r"\{(imageUrl|videoUrl|audioUrl|taskId):\s*[\"']?$", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[.)},;:-]+$")
_LEADING_PUNCT_RE = re.compile(r"^[,.)},;:-]+")
_HAS_WORD_RE = re.compile(r"[\w\u0590-\u05FF]")

_PLACEHOLDER_PATTERNS = (
    _TOOL_RESULT_RE,
    _GENERIC_TAGS_RE,
    _TAG_WITH_ID_RE,
    _BRACE_TAG_RE,
    _STATUS_TAGS_RE,
    _LINK_PLACEHOLDERS_RE,
    _TASK_ID_RE,
    _TRUNCATED_KEYS_RE,
)

# Field names tried, in order, when a model answers with a bare JSON object
_JSON_CONTENT_FIELDS = ("answer", "text", "message", "content", "description", "data")


def clean_markdown(text: str | None) -> str:
    """Remove code blocks, inline code and stray fences."""
    if not text:
        return ""
    cleaned = _CODE_BLOCK_RE.sub("", text)
    cleaned = _INLINE_CODE_RE.sub("", cleaned)
    return _FENCE_LINE_RE.sub("", cleaned).strip()


def strip_placeholders(text: str | None) -> str:
    """Remove media placeholders and leaked tool-result keys, keep everything else."""
    if not text:
        return ""
    cleaned = text
    for pattern in _PLACEHOLDER_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def clean_media_description(text: str | None, preserve_links: bool = False) -> str:
    """
    Reduce text to a caption suitable for a media message.

    Returns an empty string when nothing meaningful is left.
    """
    if not text:
        return ""

    cleaned = clean_markdown(text)
    if not preserve_links:
        cleaned = _MD_LINK_RE.sub("", cleaned)
    cleaned = strip_placeholders(cleaned)
    if not preserve_links:
        cleaned = URL_RE.sub("", cleaned)

    cleaned = cleaned.replace("✅", "").replace("[", "").replace("]", "")
    cleaned = _TRAILING_PUNCT_RE.sub("", cleaned.strip())
    cleaned = _LEADING_PUNCT_RE.sub("", cleaned)
    cleaned = _MULTI_WHITESPACE_RE.sub(" ", cleaned).strip()

    if len(cleaned) < 3 or not _HAS_WORD_RE.search(cleaned):
        return ""
    return cleaned


def clean_agent_text(text: str | None, keep_urls: bool = False) -> str:
    """Clean a narrative reply before it is sent as a text message."""
    if not text:
        return ""
    cleaned = strip_placeholders(clean_json_wrapper(text))
    if not keep_urls:
        cleaned = URL_RE.sub("", cleaned)
    cleaned = re.sub(r"\n\s*\[\s*$", "", cleaned)
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    return cleaned.strip()


def clean_json_wrapper(text: str | None) -> str:
    """Unwrap a reply that came back as a (possibly fenced) JSON object."""
    if not text:
        return ""
    cleaned = text.strip()
    fenced = re.match(r"^```(?:json)?\s*([\s\S]*?)\s*```$", cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    if not cleaned.startswith("{"):
        return cleaned

    try:
        parsed = orjson.loads(cleaned)
    except orjson.JSONDecodeError:
        return cleaned
    if isinstance(parsed, dict):
        for field_name in _JSON_CONTENT_FIELDS:
            value = parsed.get(field_name)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return cleaned
