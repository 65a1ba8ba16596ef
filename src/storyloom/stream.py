"""Decoder for the chat-completions server-sent event stream.

Each useful line looks like::

    data: {"choices":[{"delta":{"content":"Hi"}}]}

and the stream is closed by ``data: [DONE]``.
"""
from __future__ import annotations

import json
import logging
from typing import Callable, Iterable, Iterator, Optional, Union

from .errors import ChunkParseError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_TOKEN = "[DONE]"


class ErrorFragment(str):
    """A synthetic fragment that reports a failure instead of model text."""


def error_fragment(message: str) -> ErrorFragment:
    return ErrorFragment(f"[Error: {message}]")


def interrupted_fragment() -> ErrorFragment:
    """Empty marker for a stream cut off after text was shown; displays as nothing."""
    return ErrorFragment("")


def _delta_content(payload: str) -> Optional[str]:
    """Return ``choices[0].delta.content`` or None; raise ChunkParseError on bad shape."""
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ChunkParseError(payload, f"invalid JSON ({e.msg})") from e

    if not isinstance(obj, dict):
        raise ChunkParseError(payload, "payload is not an object")
    choices = obj.get("choices")
    if not isinstance(choices, list):
        raise ChunkParseError(payload, "missing 'choices' list")
    if not choices:
        # usage/keep-alive chunks carry no choices
        return None
    first = choices[0]
    delta = first.get("delta") if isinstance(first, dict) else None
    if not isinstance(delta, dict):
        raise ChunkParseError(payload, "missing 'delta' object")
    content = delta.get("content")
    if content is None:
        return None
    if not isinstance(content, str):
        raise ChunkParseError(payload, "'content' is not a string")
    return content


def iter_text_deltas(
    lines: Iterable[Union[str, bytes]],
    *,
    on_error: Optional[Callable[[ChunkParseError], None]] = None,
) -> Iterator[str]:
    """Yield text fragments from raw event-stream lines, in arrival order.

    Stops at the terminator token or when ``lines`` is exhausted. A line that
    cannot be decoded is reported through the log and ``on_error`` and then
    skipped; it never ends the stream.
    """
    for raw in lines:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        if not line or not line.strip():
            continue
        if not line.startswith(DATA_PREFIX):
            continue

        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_TOKEN:
            logger.debug("Stream completed [DONE].")
            return

        try:
            content = _delta_content(payload)
        except ChunkParseError as e:
            logger.warning("Skipping unreadable stream chunk: %s", e)
            if on_error is not None:
                on_error(e)
            continue

        if content:
            yield content
