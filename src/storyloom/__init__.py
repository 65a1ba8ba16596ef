"""StoryLoom: interactive co-writing against an OpenAI-compatible endpoint.

The package keeps an ever-growing story inside a bounded context window by
folding older turns into a running summary, and decodes the endpoint's
streamed deltas.

Typical usage
-------------
from storyloom import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .config import Settings, load_config, load_settings
from .context import build_context
from .conversation import Conversation, ConversationState, PersonaContext, Role, Turn
from .errors import (
    ChunkParseError,
    ConfigurationError,
    ResponseShapeError,
    StoryLoomError,
    SummarizationError,
    TransportError,
    UpstreamError,
)
from .llm import CompletionClient
from .scheduler import FoldState, SummarizationScheduler
from .stream import ErrorFragment, iter_text_deltas
from .summarizer import LlmSummarizer

__all__ = [
    "create_app",
    "__version__",
    "get_version",
    "Settings",
    "load_config",
    "load_settings",
    "build_context",
    "Conversation",
    "ConversationState",
    "PersonaContext",
    "Role",
    "Turn",
    "StoryLoomError",
    "ConfigurationError",
    "TransportError",
    "UpstreamError",
    "ResponseShapeError",
    "ChunkParseError",
    "SummarizationError",
    "CompletionClient",
    "FoldState",
    "SummarizationScheduler",
    "ErrorFragment",
    "iter_text_deltas",
    "LlmSummarizer",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    This forwards to :func:`storyloom.server.create_app`; FastAPI is only
    imported when an app is actually requested.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
