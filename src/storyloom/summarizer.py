"""Incremental story summarization backed by one completion call."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from .conversation import Role, Turn
from .errors import ResponseShapeError
from .llm import CompletionClient
from .prompts import DEFAULT_LANGUAGE, summarize_prompt

logger = logging.getLogger(__name__)


class Summarizer(Protocol):
    def update(self, existing_summary: str, new_text: str) -> str:
        ...


class LlmSummarizer:
    """Merge ``new_text`` into ``existing_summary`` via the generation endpoint.

    Client errors propagate unchanged; the scheduler decides what to do.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        language: str = DEFAULT_LANGUAGE,
    ) -> None:
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.language = language

    def update(self, existing_summary: str, new_text: str) -> str:
        prompt = summarize_prompt(new_text, existing_summary, self.language)
        result = self.client.complete(
            [Turn(Role.USER, prompt)],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        ).strip()
        if not result:
            raise ResponseShapeError("Summarizer returned an empty summary")
        logger.info("Summary updated (%d -> %d chars)", len(existing_summary or ""), len(result))
        return result
