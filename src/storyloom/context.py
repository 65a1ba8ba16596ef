"""Build the outbound message list for the next generation call."""
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from .conversation import Conversation, PersonaContext, Role, Turn
from .prompts import DEFAULT_LANGUAGE, build_system_prompt

# Rough heuristic, not a tokenizer.
CHARS_PER_TOKEN = 4
PER_MESSAGE_OVERHEAD = 4

PromptBuilder = Callable[..., str]


def build_context(
    conversation: Conversation,
    persona: PersonaContext,
    *,
    action_hint: Optional[str] = None,
    language: str = DEFAULT_LANGUAGE,
    prompt_builder: PromptBuilder = build_system_prompt,
) -> List[Turn]:
    """Return ``[system] + turns[fold_boundary:]``.

    Turns before the fold boundary only reach the model through the summary
    embedded in the system turn, so the output grows with unfolded turns only.
    """
    system = Turn(
        role=Role.SYSTEM,
        content=prompt_builder(
            persona.background,
            persona.protagonist,
            conversation.summary,
            action_hint=action_hint,
            language=language,
        ),
    )
    return [system] + list(conversation.turns[conversation.fold_boundary:])


def to_messages(turns: Iterable[Turn]) -> List[Dict[str, str]]:
    return [t.to_dict() for t in turns]


def estimate_tokens(turns: Iterable[Turn]) -> int:
    return sum(len(t.content) // CHARS_PER_TOKEN + PER_MESSAGE_OVERHEAD for t in turns)
