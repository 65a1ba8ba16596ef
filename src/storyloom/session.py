"""The one active co-writing session: state, persistence, folding and generation."""
from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .config import Settings
from .context import build_context
from .conversation import Conversation, ConversationState, PersonaContext, Role, Turn
from .errors import ConfigurationError, SummarizationError
from .llm import CompletionClient
from .memory import SaveStore
from .prompts import enhance_prompt, suggestions_prompt
from .scheduler import SummarizationScheduler
from .stream import ErrorFragment
from .summarizer import LlmSummarizer, Summarizer

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3


def parse_suggestions(text: str) -> List[str]:
    """Read the suggestion list from a model reply.

    Expects a JSON array of strings; tolerates markdown fences and falls back
    to one suggestion per non-empty line.
    """
    raw = "\n".join(ln for ln in (text or "").strip().splitlines() if not ln.strip().startswith("```"))
    start, end = raw.find("["), raw.rfind("]")
    if start != -1 and end > start:
        try:
            items = json.loads(raw[start:end + 1])
            if isinstance(items, list):
                out = [str(i).strip() for i in items if str(i).strip()]
                return out[:MAX_SUGGESTIONS]
        except json.JSONDecodeError:
            logger.debug("Suggestion reply is not a JSON array; falling back to lines.")
    lines = [ln.strip().lstrip("-*0123456789.) ").strip() for ln in raw.splitlines()]
    return [ln for ln in lines if ln][:MAX_SUGGESTIONS]


class StorySession:
    """Wires conversation state, the save store, the scheduler and the client.

    Every state change is persisted through the change signal. Each
    mutation runs under one lock, and a non-streaming :meth:`reply` holds it
    for the whole exchange. A streamed reply only locks its two appends, so
    callers must not run another exchange while one is streaming.
    """

    def __init__(
        self,
        settings: Settings,
        client: CompletionClient,
        store: SaveStore,
        *,
        summarizer: Optional[Summarizer] = None,
        scheduler: Optional[SummarizationScheduler] = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.store = store
        self._restore_settings()
        self.summarizer = summarizer or LlmSummarizer(client, language=settings.language)
        self.scheduler = scheduler or SummarizationScheduler(
            self.summarizer,
            max_turns=settings.max_history_turns,
            keep_count=settings.fold_keep_count,
        )
        self.state = ConversationState()
        self.persona = PersonaContext()
        self.save_name = ""
        self._lock = threading.RLock()
        self.state.subscribe(self._persist)

    @property
    def conversation(self) -> Conversation:
        return self.state.conversation

    # --------- persistence ----------
    def _persist(self, conversation: Conversation) -> None:
        if not self.save_name:
            logger.error("No save name specified. Cannot save state.")
            return
        try:
            self.store.save(self.save_name, conversation, self.persona)
        except OSError:
            logger.exception("Failed to save current state to %s", self.save_name)

    def _restore_settings(self) -> None:
        saved = self.store.load_user_settings()
        if not saved:
            return
        try:
            self.settings.update(saved)
        except ConfigurationError as e:
            logger.warning("Ignoring saved user settings: %s", e)
            return
        logger.info("Applied saved user settings (%s).", ", ".join(sorted(saved)))

    def update_settings(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Change model settings at runtime and remember them for the next start.

        The client and summarizer read the shared :class:`Settings` on every
        call; the fold threshold is pushed to the scheduler here.
        """
        with self._lock:
            self.settings.update(values)
            self.scheduler.max_turns = self.settings.max_history_turns
            self.store.save_user_settings(self.settings.user_settings())
            logger.info("Settings updated: %s", ", ".join(sorted(values)))
            return self.settings.redacted()

    def start_new(self, seed_summary: str = "", *, carry_over: bool = False) -> Conversation:
        """Begin a new story in a fresh save slot.

        With ``carry_over`` the current story is folded completely first and
        its summary seeds the new one; the persona is kept. Otherwise the
        persona is cleared for the user to fill in again.

        Raises SummarizationError when ``carry_over`` is set and the fold does
        not go through; the current story then stays active and untouched.
        """
        with self._lock:
            if carry_over:
                if self.conversation.unfolded_count:
                    self.scheduler.fold(self.state, keep_count=0)
                if self.conversation.unfolded_count:
                    raise SummarizationError(
                        "Could not summarize the current story; it was kept unchanged."
                    )
                seed_summary = seed_summary or self.conversation.summary
            else:
                self.persona = PersonaContext()
            self.save_name = self.store.new_save_name()
            self.store.last_save_name = self.save_name
            logger.info("Starting new conversation in save %s", self.save_name)
            return self.state.start_new_conversation(seed_summary)

    def load(self, name: str) -> Conversation:
        with self._lock:
            conversation, persona = self.store.load(name)
            self.save_name = name
            self.persona = persona
            self.store.last_save_name = name
            self.state.replace(conversation)
            return conversation

    def load_latest(self) -> Conversation:
        last = self.store.last_save_name
        if last and self.store.exists(last):
            return self.load(last)
        if last:
            logger.info("Last save %r not found on disk. Starting new conversation.", last)
        else:
            logger.info("No last save recorded. Starting new conversation.")
        return self.start_new()

    def update_persona(self, background: str, protagonist: str) -> None:
        with self._lock:
            self.persona = PersonaContext(background=background, protagonist=protagonist)
            self._persist(self.conversation)

    def update_title(self, title: str) -> None:
        with self._lock:
            self.state.update_title(title)

    # --------- turns ----------
    def add_user_turn(self, text: str) -> None:
        with self._lock:
            self.state.add_user_turn(text)
            self.scheduler.maybe_fold(self.state)

    def add_assistant_turn(self, text: str) -> None:
        with self._lock:
            self.state.add_assistant_turn(text)
            self.scheduler.maybe_fold(self.state)

    def context(self, action_hint: Optional[str] = None) -> List[Turn]:
        with self._lock:
            return build_context(
                self.conversation,
                self.persona,
                action_hint=action_hint,
                language=self.settings.language,
            )

    # --------- generation ----------
    def reply(self, text: str, action_hint: Optional[str] = None) -> str:
        with self._lock:
            self.add_user_turn(text)
            answer = self.client.complete(self.context(action_hint))
            self.add_assistant_turn(answer)
            return answer

    def stream_reply(self, text: str, action_hint: Optional[str] = None) -> Iterator[str]:
        """Stream the continuation; the assistant turn is recorded once the
        stream has been fully read without an error fragment."""
        self.add_user_turn(text)
        parts: List[str] = []
        failed = False
        fragments = self.client.stream_complete(self.context(action_hint))
        try:
            for fragment in fragments:
                if isinstance(fragment, ErrorFragment):
                    failed = True
                else:
                    parts.append(fragment)
                yield fragment
        finally:
            # Releases the HTTP response when the caller stops early.
            fragments.close()
        if failed:
            logger.warning("Stream reported an error; assistant turn not recorded.")
            return
        self.add_assistant_turn("".join(parts))

    def enhance(self, text: str, kind: str) -> str:
        logger.info("Enhancing text [%s]...", kind)
        prompt = enhance_prompt(text, kind, self.settings.language)
        return self.client.complete([Turn(Role.USER, prompt)]).strip() or text

    def suggest_actions(self, action_hint: Optional[str] = None) -> List[str]:
        turns = self.context(action_hint)
        turns.append(Turn(Role.USER, suggestions_prompt(action_hint, self.settings.language)))
        return parse_suggestions(self.client.complete(turns))

    def test_connection(self) -> str:
        return self.client.test_connection()
