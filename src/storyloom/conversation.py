"""Conversation record and the single-writer state holder around it."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One message in the dialogue. Never modified after it is appended."""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        return cls(role=Role(str(data.get("role", "user"))), content=str(data.get("content") or ""))


@dataclass
class PersonaContext:
    """World background and protagonist, owned by the caller."""

    background: str = ""
    protagonist: str = ""

    @property
    def is_ready(self) -> bool:
        return bool(self.background.strip()) and bool(self.protagonist.strip())

    def to_dict(self) -> Dict[str, str]:
        return {"background": self.background, "protagonist": self.protagonist}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonaContext":
        return cls(
            background=str(data.get("background") or ""),
            protagonist=str(data.get("protagonist") or ""),
        )


@dataclass
class Conversation:
    """All turns of one story plus the running summary.

    ``turns[:fold_boundary]`` are represented by ``summary`` when talking to
    the model but stay here for display; nothing is ever deleted.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str = "New Story"
    created_at: datetime = field(default_factory=datetime.now)
    summary: str = ""
    fold_boundary: int = 0
    turns: List[Turn] = field(default_factory=list)

    @property
    def unfolded_count(self) -> int:
        return len(self.turns) - self.fold_boundary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "summary": self.summary,
            "fold_boundary": self.fold_boundary,
            "turns": [t.to_dict() for t in self.turns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        turns = [Turn.from_dict(t) for t in data.get("turns") or [] if isinstance(t, dict)]
        try:
            created = datetime.fromisoformat(str(data["created_at"]))
        except (KeyError, ValueError):
            created = datetime.now()
        boundary = int(data.get("fold_boundary") or 0)
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            title=str(data.get("title") or "New Story"),
            created_at=created,
            summary=str(data.get("summary") or ""),
            fold_boundary=min(max(boundary, 0), len(turns)),
            turns=turns,
        )


Listener = Callable[[Conversation], None]


class ConversationState:
    """Holds the active :class:`Conversation` and announces every change.

    Callers must not mutate one instance from several threads at once; the
    session serialises access.
    """

    def __init__(self, conversation: Conversation | None = None) -> None:
        self.conversation = conversation or Conversation()
        self._listeners: List[Listener] = []

    # --------- change signal ----------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.conversation)
            except Exception:
                logger.exception("Conversation listener %r failed", listener)

    # --------- mutations ----------
    def add_user_turn(self, text: str) -> None:
        self._append(Role.USER, text)

    def add_assistant_turn(self, text: str) -> None:
        self._append(Role.ASSISTANT, text)

    def _append(self, role: Role, text: str) -> None:
        if text is None:
            raise TypeError("turn content must not be None")
        content = str(text)
        self.conversation.turns.append(Turn(role=role, content=content))
        logger.info("Appended %s turn (%d chars), total %d", role.value, len(content), len(self.conversation.turns))
        self._notify()

    def start_new_conversation(self, seed_summary: str = "") -> Conversation:
        self.conversation = Conversation(summary=seed_summary or "")
        logger.info("Started conversation %s (seeded=%s)", self.conversation.id, bool(seed_summary))
        self._notify()
        return self.conversation

    def replace(self, conversation: Conversation) -> None:
        self.conversation = conversation
        self._notify()

    def update_title(self, title: str) -> None:
        self.conversation.title = title
        self._notify()

    def apply_fold(self, summary: str, end_index: int) -> None:
        """Install a new summary covering ``turns[:end_index]``."""
        conv = self.conversation
        if end_index < conv.fold_boundary or end_index > len(conv.turns):
            raise ValueError(
                f"fold end {end_index} outside [{conv.fold_boundary}, {len(conv.turns)}]"
            )
        conv.summary = summary
        conv.fold_boundary = end_index
        self._notify()
