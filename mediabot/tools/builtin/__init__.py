"""Built-in toolsets for Mediabot."""

from .analysis import AnalysisToolset
from .audio import AudioToolset
from .context import ContextToolset
from .creation import CreationToolset
from .editing import EditingToolset
from .interaction import InteractionToolset
from .language import LanguageToolset
from .retry import RetryToolset
from .search import SearchToolset

__all__ = [
    "AnalysisToolset",
    "AudioToolset",
    "ContextToolset",
    "CreationToolset",
    "EditingToolset",
    "InteractionToolset",
    "LanguageToolset",
    "RetryToolset",
    "SearchToolset",
]
