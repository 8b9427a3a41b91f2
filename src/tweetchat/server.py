"""FastAPI application: chat persistence endpoint and streamed tweet generation."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import TokenAuthenticator, User, require_user
from .config import load_config
from .errors import RecordFormatError, StorageError, UpstreamError
from .llm import Audience, CompletionModel, Goal, PromptSpec, Tone, create_model, relay
from .records import ChatRecord, ChatRepository, Message
from .storage import ObjectStore, create_store

logger = logging.getLogger(__name__)

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


# -----------------------------
# Pydantic request models
# -----------------------------
class ChatActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    chat_data: Optional[Dict[str, Any]] = Field(default=None, alias="chatData")


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    tone: Optional[Tone] = None
    goal: Optional[Goal] = None
    audience: Optional[Audience] = None
    conversation_history: Optional[List[Message]] = Field(default=None, alias="conversationHistory")

    def to_spec(self) -> PromptSpec:
        return PromptSpec(
            prompt=(self.prompt or "").strip(),
            tone=self.tone,
            goal=self.goal,
            audience=self.audience,
            conversation_history=list(self.conversation_history or []),
        )


# -----------------------------
# Utilities
# -----------------------------
def _error(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid request body")

    @app.exception_handler(StorageError)
    @app.exception_handler(RecordFormatError)
    async def upstream_error(request: Request, exc: Exception) -> JSONResponse:
        # Detail stays in the log; the caller gets a generic message.
        logger.error("Chat storage failure on %s: %s", request.url.path, exc, exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    model: Optional[CompletionModel] = None,
    store: Optional[ObjectStore] = None,
    authenticator: Optional[TokenAuthenticator] = None,
) -> FastAPI:
    cfg = load_config(config_path)

    # CORS
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    # Services
    if model is None:
        model = create_model(cfg)
    if store is None:
        store = create_store(cfg)
    if authenticator is None:
        authenticator = TokenAuthenticator.from_config(cfg)
    repo = ChatRepository(store)
    history_window = int(cfg.get("llm", {}).get("history_window", 4))

    app = FastAPI(title="TweetChat Server", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.authenticator = authenticator
    app.state.repo = repo
    app.state.model = model
    _install_error_handlers(app)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "storage": type(store).__name__,
            "model": getattr(model, "model_name", type(model).__name__),
        }

    @app.post("/api/chat")
    def chat(req: ChatActionRequest, user: User = Depends(require_user)):
        if req.action == "save":
            if not req.chat_id or req.chat_data is None:
                return _error(status.HTTP_400_BAD_REQUEST, "chatId and chatData are required")
            try:
                record = ChatRecord.model_validate(req.chat_data)
                repo.save(user.id, req.chat_id, record)
            except (ValidationError, ValueError):
                return _error(status.HTTP_400_BAD_REQUEST, "Invalid chatData or chatId")
            return {"success": True}

        if req.action == "get":
            if not req.chat_id:
                return _error(status.HTTP_400_BAD_REQUEST, "chatId is required")
            try:
                record = repo.load(user.id, req.chat_id)
            except ValueError:
                return _error(status.HTTP_400_BAD_REQUEST, "Invalid chatId")
            return {"data": record.to_wire() if record is not None else None}

        if req.action == "list":
            return {"chatIds": repo.list_ids(user.id)}

        return _error(status.HTTP_400_BAD_REQUEST, "Invalid action")

    @app.post("/api/generate")
    async def generate(req: GenerateRequest, user: User = Depends(require_user)):
        spec = req.to_spec()
        if not spec.prompt:
            return _error(status.HTTP_400_BAD_REQUEST, "Prompt is required")

        fragments = relay(model, spec, history_window=history_window)

        # Pull the first fragment before committing to a 200 so that a provider
        # failure up front becomes an error response, not an empty stream.
        try:
            first: Optional[str] = await anext(fragments)
        except StopAsyncIteration:
            first = None
        except UpstreamError:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate response")

        logger.info("Streaming tweet for user %s", user.id)

        async def body():
            if first is None:
                return
            yield first.encode("utf-8")
            # An UpstreamError raised here aborts the response mid-body.
            async for fragment in fragments:
                yield fragment.encode("utf-8")

        return StreamingResponse(body(), media_type="text/event-stream", headers=STREAM_HEADERS)

    return app
