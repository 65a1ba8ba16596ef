"""Error taxonomy shared by the completion client, summarizer and server."""

from __future__ import annotations


class StoryLoomError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(StoryLoomError):
    """Endpoint URL or credential is missing or the config file is unusable."""


class TransportError(StoryLoomError):
    """The request never produced an HTTP response (DNS, connect, timeout...)."""


class UpstreamError(StoryLoomError):
    """The generation endpoint answered with a non-success status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"API Error: {status} - {body}")
        self.status = status
        self.body = body


class ResponseShapeError(StoryLoomError):
    """A success response that does not carry the expected message field."""


class ChunkParseError(StoryLoomError):
    """One streamed line could not be decoded. Never escapes a stream."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"{reason}: {line[:200]!r}")
        self.line = line
        self.reason = reason


class SummarizationError(StoryLoomError):
    """A fold that had to succeed did not; the story was left as it was."""
