"""Decides when to fold older turns into the running summary, and folds them."""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional, Sequence

from .conversation import Conversation, ConversationState, Turn
from .errors import StoryLoomError
from .summarizer import Summarizer

logger = logging.getLogger(__name__)


class FoldState(str, Enum):
    IDLE = "idle"
    FOLDING = "folding"


def render_turns(turns: Sequence[Turn]) -> str:
    return "\n".join(f"{t.role.value}: {t.content}" for t in turns)


class SummarizationScheduler:
    """Folds ``turns[fold_boundary:len - keep_count]`` once unfolded history
    exceeds ``2 * max_turns`` raw turns.

    Folding is best-effort: a summarizer failure leaves the conversation
    untouched and the next appended turn re-checks the threshold. At most one
    fold runs at a time; a trigger that arrives mid-fold is ignored.
    """

    def __init__(self, summarizer: Summarizer, *, max_turns: int = 10, keep_count: int = 4) -> None:
        if not isinstance(max_turns, int) or max_turns < 0:
            raise ValueError(f"max_turns must be a non-negative int, got {max_turns!r}")
        if not isinstance(keep_count, int) or keep_count < 0:
            raise ValueError(f"keep_count must be a non-negative int, got {keep_count!r}")
        self.summarizer = summarizer
        self.max_turns = max_turns
        self.keep_count = keep_count
        self._lock = threading.Lock()
        self._state = FoldState.IDLE

    @property
    def state(self) -> FoldState:
        return self._state

    def should_fold(self, conversation: Conversation) -> bool:
        return conversation.unfolded_count > 2 * self.max_turns

    def maybe_fold(self, state: ConversationState) -> bool:
        """Run after every append. Returns True when a fold was applied."""
        if not self.should_fold(state.conversation):
            return False
        logger.info(
            "Unfolded turns (%d) exceeded limit (%d). Summarizing...",
            state.conversation.unfolded_count,
            2 * self.max_turns,
        )
        return self.fold(state)

    def fold(self, state: ConversationState, keep_count: Optional[int] = None) -> bool:
        """Fold everything except the newest ``keep_count`` turns."""
        if not self._lock.acquire(blocking=False):
            logger.debug("Fold already in flight; skipping trigger.")
            return False
        self._state = FoldState.FOLDING
        try:
            return self._fold(state, self.keep_count if keep_count is None else keep_count)
        finally:
            self._state = FoldState.IDLE
            self._lock.release()

    def _fold(self, state: ConversationState, keep_count: int) -> bool:
        conv = state.conversation
        start = conv.fold_boundary
        end_index = len(conv.turns) - keep_count
        if end_index <= start:
            return False

        text = render_turns(conv.turns[start:end_index])
        try:
            summary = self.summarizer.update(conv.summary, text)
        except StoryLoomError as e:
            logger.warning("Fold of turns [%d:%d] failed, will retry on next turn: %s", start, end_index, e)
            return False

        if state.conversation is not conv:
            logger.warning("Conversation replaced during fold; discarding summary.")
            return False
        state.apply_fold(summary, end_index)
        logger.info("Summarized %d turns. New fold boundary: %d", end_index - start, end_index)
        return True
