"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from storyloom.config import Settings  # noqa: E402
from storyloom.errors import UpstreamError  # noqa: E402
from storyloom.llm import CompletionClient  # noqa: E402


def sse_line(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


def sse_body(*contents: str, done: bool = True) -> bytes:
    lines = [sse_line(c) for c in contents]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


def completion_body(content: Optional[str]) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class FakeSummarizer:
    """Records every call; optionally fails the first ``fail_times`` calls."""

    def __init__(self, fail_times: int = 0) -> None:
        self.calls: List[tuple[str, str]] = []
        self.fail_times = fail_times

    def update(self, existing_summary: str, new_text: str) -> str:
        self.calls.append((existing_summary, new_text))
        if len(self.calls) <= self.fail_times:
            raise UpstreamError(503, "summarizer unavailable")
        return f"summary#{len(self.calls)}"


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for save slots during tests."""
    d = tmp_path / "saves"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    import os

    for var in list(os.environ):
        if var == "STORYLOOM_CONFIG" or var.startswith("STORYLOOM__"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def settings(tmp_data_dir: Path) -> Settings:
    return Settings(
        api_url="https://llm.test/v1",
        api_key="sk-test",
        model_name="test-model",
        data_dir=str(tmp_data_dir),
        max_history_turns=10,
        fold_keep_count=4,
        language="English",
    )


@pytest.fixture
def make_client(settings: Settings) -> Callable[..., CompletionClient]:
    """Build a CompletionClient whose HTTP traffic goes to ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], cfg: Optional[Settings] = None) -> CompletionClient:
        http = httpx.Client(transport=httpx.MockTransport(handler))
        return CompletionClient(cfg or settings, http_client=http)

    return _make
