"""Disk-based save slots for conversations and world settings (thread-safe, atomic)."""
from __future__ import annotations

import io
import json
import logging
import os
import re
import shutil
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from .conversation import Conversation, PersonaContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHAT_FILE = "chat.json"
WORLD_FILE = "world.json"
STATE_FILE = "state.json"
SETTINGS_FILE = "settings.json"


# -----------------------------
# Helpers
# -----------------------------
def _safe_name(name: str) -> str:
    # Keep it readable but filesystem-safe.
    s = re.sub(r"[^\w.\-@]+", "_", name.strip() or "default")
    s = s.lstrip(".") or "default"
    return s[:128]  # avoid absurdly long filenames


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, obj: Any) -> None:
    _atomic_write_text(path, json.dumps(obj, ensure_ascii=False, indent=2))


# -----------------------------
# SaveStore
# -----------------------------
class SaveStore:
    """JSON-based save slots, one directory per story.

    Layout:
        root/
          state.json               # {"last_save_name": ...}
          settings.json            # user-edited model settings
          <save>/chat.json         # Conversation record
          <save>/world.json        # {"background": ..., "protagonist": ...}
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # --------- paths ----------
    def _save_dir(self, name: str) -> Path:
        return self.root / _safe_name(name)

    def _state_path(self) -> Path:
        return self.root / STATE_FILE

    # --------- core API ----------
    def new_save_name(self, now: Optional[datetime] = None) -> str:
        """Return an unused ``Save_YYYYmmdd_HHMMSS`` name."""
        base = f"Save_{(now or datetime.now()):%Y%m%d_%H%M%S}"
        name, n = base, 1
        while self._save_dir(name).exists():
            n += 1
            name = f"{base}_{n}"
        return name

    def exists(self, name: str) -> bool:
        return bool(name) and self._save_dir(name).is_dir()

    def save(self, name: str, conversation: Conversation, persona: PersonaContext) -> None:
        if not name or not name.strip():
            raise ValueError("save name must not be empty")
        with self._lock:
            d = self._save_dir(name)
            _write_json(d / CHAT_FILE, conversation.to_dict())
            _write_json(d / WORLD_FILE, persona.to_dict())
        logger.debug("Saved state to %s", name)

    def load(self, name: str) -> Tuple[Conversation, PersonaContext]:
        """Load a save slot. Missing files yield fresh records; a missing slot raises."""
        d = self._save_dir(name)
        if not d.is_dir():
            raise FileNotFoundError(f"Save not found: {name}")
        with self._lock:
            conversation = self._load_part(d / CHAT_FILE, Conversation.from_dict) or Conversation()
            persona = self._load_part(d / WORLD_FILE, PersonaContext.from_dict) or PersonaContext()
        logger.info("Loaded save %s (%d turns)", name, len(conversation.turns))
        return conversation, persona

    def list_saves(self) -> List[str]:
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def delete(self, name: str) -> bool:
        d = self._save_dir(name)
        with self._lock:
            if not d.is_dir():
                return False
            shutil.rmtree(d)
            if self.last_save_name == name:
                self.last_save_name = ""
        return True

    # --------- last save pointer ----------
    @property
    def last_save_name(self) -> str:
        path = self._state_path()
        if not path.exists():
            return ""
        try:
            data = _read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable %s: %s", path, e)
            return ""
        return str(data.get("last_save_name") or "") if isinstance(data, dict) else ""

    @last_save_name.setter
    def last_save_name(self, name: str) -> None:
        with self._lock:
            _write_json(self._state_path(), {"last_save_name": name or ""})

    # --------- user settings ----------
    def load_user_settings(self) -> Dict[str, Any]:
        path = self.root / SETTINGS_FILE
        if not path.exists():
            return {}
        try:
            data = _read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable %s: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save_user_settings(self, values: Dict[str, Any]) -> None:
        with self._lock:
            _write_json(self.root / SETTINGS_FILE, values)

    # --------- convenience ----------
    def export_text(self, name: str, limit_chars: int = 8000) -> str:
        """Export a human-readable text of the story (summary + all turns)."""
        conversation, persona = self.load(name)
        buf = io.StringIO()
        buf.write(f"=== {conversation.title} ===\n")
        if persona.background.strip():
            buf.write(f"[background] {persona.background.strip()}\n")
        if persona.protagonist.strip():
            buf.write(f"[protagonist] {persona.protagonist.strip()}\n")
        if conversation.summary.strip():
            buf.write("\n=== SUMMARY ===\n")
            buf.write(conversation.summary.strip() + "\n")
        buf.write("\n")
        for t in conversation.turns:
            content = t.content.strip()
            if content:
                buf.write(f"{t.role.value}: {content}\n")
        return buf.getvalue()[:limit_chars]

    # --------- internals ----------
    def _load_part(self, path: Path, parse: Callable[[dict], T]) -> Optional[T]:
        if not path.exists():
            return None
        try:
            data = _read_json(path)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            return parse(data)
        except (ValueError, TypeError) as e:
            # Corruption fallback: keep a backup and start fresh.
            bad = path.with_suffix(".corrupt.json")
            logger.error("Corrupt save file %s (%s); moved to %s", path, e, bad.name)
            try:
                path.replace(bad)
            except OSError:
                logger.exception("Could not move corrupt file %s aside", path)
            return None
