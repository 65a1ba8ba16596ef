from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from storyloom.conversation import Conversation, ConversationState, PersonaContext, Role
from storyloom.memory import SaveStore


def _story() -> Conversation:
    state = ConversationState()
    state.add_user_turn("I light the lamp.")
    state.add_assistant_turn("Shadows retreat into the corners.")
    state.add_user_turn("I read the letter.")
    state.apply_fold("Mara lit the lamp.", 2)
    state.update_title("The Letter")
    return state.conversation


def test_save_load_roundtrip(tmp_path: Path):
    store = SaveStore(str(tmp_path))
    conv = _story()
    persona = PersonaContext("A lighthouse.", "Mara, the keeper.")

    store.save("Save_1", conv, persona)
    loaded, loaded_persona = store.load("Save_1")

    assert loaded.to_dict() == conv.to_dict()
    assert loaded.turns[1].role is Role.ASSISTANT
    assert loaded_persona == persona
    assert (tmp_path / "Save_1" / "chat.json").exists()
    assert (tmp_path / "Save_1" / "world.json").exists()


def test_load_missing_slot_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        SaveStore(str(tmp_path)).load("nope")


def test_save_requires_a_name(tmp_path: Path):
    with pytest.raises(ValueError):
        SaveStore(str(tmp_path)).save("  ", Conversation(), PersonaContext())


def test_missing_parts_load_as_fresh_records(tmp_path: Path):
    (tmp_path / "Empty").mkdir()
    conv, persona = SaveStore(str(tmp_path)).load("Empty")
    assert conv.turns == []
    assert persona == PersonaContext()


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        "[1, 2, 3]",
        json.dumps({"turns": [{"role": "narrator", "content": "x"}]}),
    ],
)
def test_corrupt_chat_file_is_moved_aside(tmp_path: Path, payload: str):
    store = SaveStore(str(tmp_path))
    store.save("S", _story(), PersonaContext("bg", "hero"))
    chat = tmp_path / "S" / "chat.json"
    chat.write_text(payload, encoding="utf-8")

    conv, persona = store.load("S")

    assert conv.turns == []
    assert persona.background == "bg"
    assert not chat.exists()
    assert (tmp_path / "S" / "chat.corrupt.json").read_text(encoding="utf-8") == payload


def test_last_save_name_pointer(tmp_path: Path):
    store = SaveStore(str(tmp_path))
    assert store.last_save_name == ""
    store.last_save_name = "Save_A"
    assert SaveStore(str(tmp_path)).last_save_name == "Save_A"

    (tmp_path / "state.json").write_text("garbage", encoding="utf-8")
    assert store.last_save_name == ""


def test_new_save_name_avoids_existing_slots(tmp_path: Path):
    store = SaveStore(str(tmp_path))
    now = datetime(2024, 5, 1, 12, 30, 15)
    first = store.new_save_name(now)
    assert first == "Save_20240501_123015"

    store.save(first, Conversation(), PersonaContext())
    assert store.new_save_name(now) == "Save_20240501_123015_2"


def test_list_and_delete(tmp_path: Path):
    store = SaveStore(str(tmp_path))
    store.save("B", Conversation(), PersonaContext())
    store.save("A", Conversation(), PersonaContext())
    store.last_save_name = "A"

    assert store.list_saves() == ["A", "B"]
    assert store.delete("A") is True
    assert store.delete("A") is False
    assert store.list_saves() == ["B"]
    assert store.last_save_name == ""


def test_unsafe_names_stay_inside_root(tmp_path: Path):
    store = SaveStore(str(tmp_path))
    store.save("../escape", Conversation(), PersonaContext())
    assert store.exists("../escape")
    assert not (tmp_path.parent / "escape").exists()
    assert all(p.parent == tmp_path for p in tmp_path.iterdir())


def test_export_text(tmp_path: Path):
    store = SaveStore(str(tmp_path))
    store.save("S", _story(), PersonaContext("A lighthouse.", "Mara."))

    text = store.export_text("S")

    assert text.startswith("=== The Letter ===\n")
    assert "[background] A lighthouse." in text
    assert "=== SUMMARY ===\nMara lit the lamp.\n" in text
    assert "assistant: Shadows retreat into the corners.\n" in text
    assert text.rstrip().endswith("user: I read the letter.")
    assert len(store.export_text("S", limit_chars=10)) == 10
