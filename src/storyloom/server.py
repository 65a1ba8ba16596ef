"""FastAPI application exposing the co-writing session."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel, Field

from .config import Settings, load_config
from .context import estimate_tokens, to_messages
from .errors import (
    ConfigurationError,
    ResponseShapeError,
    StoryLoomError,
    SummarizationError,
    TransportError,
    UpstreamError,
)
from .llm import CompletionClient
from .memory import SaveStore
from .session import StorySession

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    action_hint: Optional[str] = Field(default=None, description="Speak / Think / Action")
    stream: bool = Field(default=False)


class ChatResponse(BaseModel):
    response: str
    fold_boundary: int
    turns: int


class NewSessionRequest(BaseModel):
    seed_summary: str = ""
    carry_over: bool = False


class LoadSessionRequest(BaseModel):
    name: str = Field(..., min_length=1)


class PersonaRequest(BaseModel):
    background: str = ""
    protagonist: str = ""


class TitleRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class EnhanceRequest(BaseModel):
    text: str = Field(..., min_length=1)
    kind: str = Field(default="Background")


class SuggestionsRequest(BaseModel):
    action_hint: Optional[str] = None


class ConfigUpdateRequest(BaseModel):
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    model_name: Optional[str] = Field(default=None, min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    max_history_turns: Optional[int] = Field(default=None, ge=0)


# -----------------------------
# Utilities
# -----------------------------
_STATUS_BY_ERROR = (
    (ConfigurationError, 503),
    (UpstreamError, 502),
    (ResponseShapeError, 502),
    (SummarizationError, 502),
    (TransportError, 504),
)


def _http_error(e: StoryLoomError) -> HTTPException:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(e, cls):
            return HTTPException(status_code=status, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _session_view(session: StorySession) -> Dict[str, Any]:
    conv = session.conversation
    return {
        "save_name": session.save_name,
        "conversation": conv.to_dict(),
        "persona": session.persona.to_dict(),
        "persona_ready": session.persona.is_ready,
        "unfolded_turns": conv.unfolded_count,
        "context_tokens": estimate_tokens(session.context()),
        "fold_state": session.scheduler.state.value,
    }


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    client: Optional[CompletionClient] = None,
    store: Optional[SaveStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_config(load_config(config_path))

    # Services
    client = client or CompletionClient(settings)
    store = store or SaveStore(settings.data_dir)
    session = StorySession(settings, client, store)
    session.load_latest()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        client.close()

    app = FastAPI(title="StoryLoom", version="0.1.0", lifespan=lifespan)
    app.state.session = session
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "model_configured": settings.is_model_configured,
            "save_name": session.save_name,
            "data_dir": str(store.root),
        }

    @app.get("/config")
    def get_config() -> JSONResponse:
        return JSONResponse(settings.redacted())

    @app.put("/config")
    def put_config(req: ConfigUpdateRequest) -> JSONResponse:
        values = req.model_dump(exclude_none=True)
        if not values:
            raise HTTPException(status_code=400, detail="No settings given.")
        try:
            return JSONResponse(session.update_settings(values))
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/session")
    def get_session() -> Dict[str, Any]:
        return _session_view(session)

    @app.get("/context")
    def get_context(action_hint: Optional[str] = None) -> List[Dict[str, str]]:
        return to_messages(session.context(action_hint))

    @app.post("/session/new")
    def new_session(req: NewSessionRequest) -> Dict[str, Any]:
        try:
            session.start_new(req.seed_summary, carry_over=req.carry_over)
        except StoryLoomError as e:
            raise _http_error(e)
        return _session_view(session)

    @app.post("/session/load")
    def load_session(req: LoadSessionRequest) -> Dict[str, Any]:
        try:
            session.load(req.name)
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail=f"Save not found: {req.name}")
        return _session_view(session)

    @app.get("/saves")
    def list_saves() -> Dict[str, Any]:
        return {"saves": store.list_saves(), "current": session.save_name}

    @app.put("/persona")
    def put_persona(req: PersonaRequest) -> Dict[str, Any]:
        session.update_persona(req.background, req.protagonist)
        return {"persona": session.persona.to_dict(), "persona_ready": session.persona.is_ready}

    @app.put("/title")
    def put_title(req: TitleRequest) -> Dict[str, str]:
        session.update_title(req.title)
        return {"title": session.conversation.title}

    @app.post("/chat", response_model=ChatResponse)
    def chat(req: ChatRequest):
        msg = (req.message or "").strip()
        if not msg:
            raise HTTPException(status_code=400, detail="Message cannot be empty.")

        if req.stream:
            return StreamingResponse(session.stream_reply(msg, req.action_hint), media_type="text/plain")

        try:
            text = session.reply(msg, req.action_hint)
        except StoryLoomError as e:
            raise _http_error(e)
        conv = session.conversation
        return ChatResponse(response=text, fold_boundary=conv.fold_boundary, turns=len(conv.turns))

    @app.post("/enhance")
    def enhance(req: EnhanceRequest) -> Dict[str, str]:
        try:
            return {"text": session.enhance(req.text, req.kind)}
        except StoryLoomError as e:
            raise _http_error(e)

    @app.post("/suggestions")
    def suggestions(req: SuggestionsRequest) -> Dict[str, List[str]]:
        try:
            return {"suggestions": session.suggest_actions(req.action_hint)}
        except StoryLoomError as e:
            raise _http_error(e)

    @app.post("/test-connection")
    def test_connection() -> Dict[str, str]:
        try:
            return {"response": session.test_connection()}
        except StoryLoomError as e:
            raise _http_error(e)

    @app.get("/export", response_class=PlainTextResponse)
    def export(limit_chars: int = Query(8000, ge=1)) -> str:
        try:
            return store.export_text(session.save_name, limit_chars=limit_chars)
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail=f"Save not found: {session.save_name}")

    return app
