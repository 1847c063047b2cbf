"""
Pluggable text classifiers used by response assembly.

Every classifier is a plain ``str -> bool`` predicate. The defaults cover
English and Hebrew phrasing; callers (and tests) can swap any of them
without touching the assembly state machine.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable

Predicate = Callable[[str], bool]


def pattern_predicate(*patterns: str, min_length: int = 0) -> Predicate:
    """Build a predicate that is true when any pattern matches (case-insensitive)."""
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]

    def predicate(text: str) -> bool:
        if not text:
            return False
        if min_length and len(text) <= min_length:
            return False
        return any(p.search(text) for p in compiled)

    return predicate


def never(_text: str) -> bool:
    return False


_SUCCESS_TAIL = r"\s*[.!]*\s*$"

GENERIC_SUCCESS_PATTERNS: dict[str, tuple[str, ...]] = {
    "any": (
        r"^\s*✅?\s*(?:successfully created|created successfully|done)" + _SUCCESS_TAIL,
        r"^\s*✅?\s*נוצר(?:ה)?\s+בהצלחה" + _SUCCESS_TAIL,
    ),
    "image": (
        r"^\s*✅?\s*(?:the\s+|your\s+)?image\s+(?:was\s+|has been\s+)?(?:created|generated|edited)(?:\s+successfully)?"
        + _SUCCESS_TAIL,
        r"^\s*✅?\s*here(?:'s| is) (?:the|your) image" + _SUCCESS_TAIL,
        r"^\s*✅?\s*(?:ה)?תמונה\s+נוצרה(?:\s+בהצלחה)?" + _SUCCESS_TAIL,
    ),
    "video": (
        r"^\s*✅?\s*(?:the\s+|your\s+)?video\s+(?:was\s+|has been\s+)?(?:created|generated|edited)(?:\s+successfully)?"
        + _SUCCESS_TAIL,
        r"^\s*✅?\s*here(?:'s| is) (?:the|your) video" + _SUCCESS_TAIL,
        r"^\s*✅?\s*(?:ה)?וידאו\s+נוצר(?:\s+בהצלחה)?" + _SUCCESS_TAIL,
    ),
}

APOLOGY_PATTERNS: tuple[str, ...] = (
    r"sorry (?:for|about) (?:the|my) (?:error|mistake|confusion)",
    r"apologi[sz]e for",
    r"here(?:'s| is) a new (?:image|video|picture)",
    r"(?:מצטער|מצטערת|סליחה|מתנצל|מתנצלת)\s+על\s+הטעות",
    r"הנה תמונה חדשה",
)

_THEN = r"(?:ואז|אחר כך|אחרי זה|and then|after that|\bthen\b)"
_VERB = r"(?:שלח|צור|create|send|make)"

SEPARATE_COMMAND_PATTERNS: tuple[str, ...] = (
    rf"(?:ואז|אחר כך|אחרי זה|and then|after that|and also|וגם)\s+{_VERB}",
    rf"{_VERB}.*?{_THEN}.*?{_VERB}",
    r"(?:תמונה|image).*?(?:ואז|אחר כך|and then|\bthen\b).*?(?:סקר|poll|מיקום|location)",
    r"(?:סקר|poll).*?(?:ואז|אחר כך|and then|\bthen\b).*?(?:תמונה|image|מיקום|location)",
)

DATA_OUTPUT_PATTERNS: dict[str, tuple[str, ...]] = {
    "get_chat_history": (
        r"(?:היסטוריית|היסטוריה|הודעות|שיחה|conversation|history|messages|הודעה|message)",
        r"(?:\[message|\[הודעה)",
    ),
    "chat_summary": (
        r"(?:סיכום|summary|תקציר)",
        r"(?:נושאים|topics|key points)",
    ),
    "search_web": (
        r"(?:תוצאות|results|קישורים|links|found)",
        r"https?://",
    ),
    "translate_text": (r"(?:תרגום|translation|תרגמתי|translated)",),
    "get_long_term_memory": (r"(?:העדפות|preferences|סיכומים|summaries)",),
    "transcribe_audio": (r"(?:תמלול|transcription|transcribed)",),
    "analyze_image_from_history": (r"(?:the image shows|בתמונה|in the image)",),
}

# Generic structured-data indicators, only trusted on longer texts
GENERIC_DATA_PATTERNS: tuple[str, ...] = (
    r"(?:\[|\]|הודעות|messages|תוצאות|results|קישורים|links)",
    r"(?:https?://|www\.)",
    r"(?:מצאתי|found|נמצא|located|תוצאות|results)",
)
GENERIC_DATA_MIN_LENGTH = 100

INTERMEDIATE_OUTPUT_PATTERNS: tuple[str, ...] = (
    r"(?:תמונה נוצרה|image created|תמונה של|image of)",
    r"(?:✅.*תמונה|✅.*image)",
)


@dataclass
class TextPredicates:
    """The classifier set consulted by the response assembler."""

    is_apology: Predicate = field(default_factory=lambda: pattern_predicate(*APOLOGY_PATTERNS))
    generic_success: dict[str, Predicate] = field(
        default_factory=lambda: {kind: pattern_predicate(*p) for kind, p in GENERIC_SUCCESS_PATTERNS.items()}
    )
    requests_separate_outputs: Predicate = field(
        default_factory=lambda: pattern_predicate(*SEPARATE_COMMAND_PATTERNS)
    )
    data_output: dict[str, Predicate] = field(
        default_factory=lambda: {tool: pattern_predicate(*p) for tool, p in DATA_OUTPUT_PATTERNS.items()}
    )
    generic_data_output: Predicate = field(
        default_factory=lambda: pattern_predicate(*GENERIC_DATA_PATTERNS, min_length=GENERIC_DATA_MIN_LENGTH)
    )
    describes_intermediate_output: Predicate = field(
        default_factory=lambda: pattern_predicate(*INTERMEDIATE_OUTPUT_PATTERNS)
    )

    def is_generic_success(self, text: str | None, kind: str | None = None) -> bool:
        """True for a bare "created successfully" style message, optionally for one media kind."""
        if not text or not text.strip():
            return False
        if self.generic_success.get("any", never)(text):
            return True
        if kind:
            return self.generic_success.get(kind, never)(text)
        return False

    def looks_like_data_output(self, text: str, data_tools: Iterable[str]) -> bool:
        """True when text reads like the raw output of one of the given data tools."""
        if not text:
            return False
        for tool in data_tools:
            if self.data_output.get(tool, never)(text):
                return True
        return self.generic_data_output(text)
