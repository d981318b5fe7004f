"""FastAPI application serving the media wall and its small JSON API."""

from __future__ import annotations

import asyncio
import contextvars
import functools
import json
import logging
import math
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import AppConfig
from ..services.corpus import ExistentialTexts, ImplementedWorkCorpus
from ..services.events import emit_suggestion_event
from ..services.ledger import ClientMetadata, LedgerWriteError, LikeEntry, LikesLedger
from ..services.resolver import PathOutsideRootError, list_media, resolve_within
from ..services.suggestions import (
    AlreadyImplementedError,
    CooldownActiveError,
    CooldownTracker,
    DuplicateSuggestionError,
    InvalidSuggestionError,
    SuggestionBacklog,
    SuggestionEntry,
    sanitize_suggestion,
)
from .media import serve_file, serve_media

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)

LIKES_BODY_LIMIT = 8 * 1024
SUGGESTION_BODY_LIMIT = 2 * 1024
PLAYER_HEADER = "x-requested-with"
PLAYER_HEADER_VALUE = "MediaWallPlayer"
_API_PREFIX = "/api/"
_INDEX_DOCUMENT = "index.html"


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "mediawall_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the request correlation id into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra or {})
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        request_id = _REQUEST_ID_VAR.get()
        if request_id:
            extra.setdefault("request_id", request_id)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and echo it back."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        token = _REQUEST_ID_VAR.set(request_id)
        started = time.perf_counter()
        status_holder: Dict[str, int] = {}

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            LOGGER.debug(
                "%s %s -> %s (%.1f ms)",
                scope.get("method"),
                scope.get("path"),
                status_holder.get("status", "-"),
                (time.perf_counter() - started) * 1000.0,
            )
            _REQUEST_ID_VAR.reset(token)


async def _run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run *func* in the default executor, preserving the request context."""

    loop = asyncio.get_running_loop()
    context = contextvars.copy_context()
    return await loop.run_in_executor(None, functools.partial(context.run, func, *args))


def client_identifier(request: Request) -> str:
    """Return the first ``X-Forwarded-For`` hop, else the socket address."""

    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",", 1)[0].strip()
    if first_hop:
        return first_hop
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


async def read_limited_body(request: Request, limit: int) -> bytes:
    """Return the request body, raising 413 as soon as it exceeds *limit* bytes."""

    declared = request.headers.get("content-length")
    if declared and declared.strip().isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail="Payload too large", headers={"Connection": "close"})

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise HTTPException(status_code=413, detail="Payload too large", headers={"Connection": "close"})
    return bytes(body)


class SuggestionPayload(BaseModel):
    suggestion: str


def parse_json_body(raw: bytes, model: Type[ModelT]) -> ModelT:
    """Validate a JSON request body against *model*, raising 400 on failure."""

    try:
        return model.model_validate_json(raw)
    except ValidationError as error:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from error


def _serialize_suggestions(entries: List[SuggestionEntry]) -> List[Dict[str, str]]:
    return [entry.to_dict() for entry in entries]


def create_app(
    config: AppConfig,
    *,
    likes: Optional[LikesLedger] = None,
    backlog: Optional[SuggestionBacklog] = None,
    cooldown: Optional[CooldownTracker] = None,
    texts: Optional[ExistentialTexts] = None,
) -> FastAPI:
    """Return a configured FastAPI application.

    Stateful collaborators can be injected; otherwise they are built from
    *config* and live for as long as the returned application.
    """

    app = FastAPI(
        title="Media Wall",
        description="Looping media wall with likes and visitor suggestions",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(RequestContextMiddleware)

    if likes is None:
        likes = LikesLedger(config.likes_file)
    if backlog is None:
        corpus = ImplementedWorkCorpus(config.history_file, config.report_file)
        backlog = SuggestionBacklog(config.suggestions_file, corpus)
    if cooldown is None:
        cooldown = CooldownTracker()
    if texts is None:
        texts = ExistentialTexts(config.existential_texts_file)

    app.state.config = config
    app.state.likes = likes
    app.state.backlog = backlog
    app.state.cooldown = cooldown
    app.state.texts = texts

    media_root = config.media_root
    public_root = config.public_root

    @app.exception_handler(StarletteHTTPException)
    async def _render_http_error(request: Request, error: StarletteHTTPException) -> Response:
        detail = error.detail if isinstance(error.detail, str) else json.dumps(error.detail)
        headers = dict(error.headers or {})
        if request.url.path.startswith(_API_PREFIX):
            return JSONResponse({"error": detail}, status_code=error.status_code, headers=headers)
        return PlainTextResponse(detail, status_code=error.status_code, headers=headers)

    @app.exception_handler(Exception)
    async def _render_unexpected_error(request: Request, error: Exception) -> Response:
        LOGGER.exception(
            "Unhandled error while serving %s %s",
            request.method,
            request.url.path,
            exc_info=error,
        )
        if request.url.path.startswith(_API_PREFIX):
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        return PlainTextResponse("Internal server error", status_code=500)

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "ok"

    @app.get("/api/videos")
    async def list_videos() -> JSONResponse:
        entries = await _run_blocking(list_media, media_root)
        return JSONResponse(
            [entry.to_dict() for entry in entries],
            headers={"Cache-Control": "no-store"},
        )

    async def _record_like(request: Request) -> JSONResponse:
        raw = await read_limited_body(request, LIKES_BODY_LIMIT)
        metadata = parse_json_body(raw, ClientMetadata) if raw.strip() else ClientMetadata()
        entry = LikeEntry.build(
            ip=client_identifier(request),
            user_agent=request.headers.get("user-agent"),
            metadata=metadata,
        )
        try:
            total = await _run_blocking(likes.record, entry)
        except LedgerWriteError as error:
            LOGGER.exception("Failed to record like")
            raise HTTPException(status_code=500, detail="Failed to record like") from error
        return JSONResponse({"total": total}, status_code=status.HTTP_201_CREATED)

    @app.api_route("/api/likes", methods=["GET", "POST"])
    async def likes_endpoint(request: Request) -> JSONResponse:
        if request.method == "POST":
            return await _record_like(request)
        total = await _run_blocking(likes.total)
        return JSONResponse({"total": total}, headers={"Cache-Control": "no-store"})

    async def _submit_suggestion(request: Request) -> JSONResponse:
        raw = await read_limited_body(request, SUGGESTION_BODY_LIMIT)
        payload = parse_json_body(raw, SuggestionPayload)
        try:
            text = sanitize_suggestion(payload.suggestion)
        except InvalidSuggestionError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        client_id = client_identifier(request)

        try:
            cooldown.reserve(client_id)
        except CooldownActiveError as error:
            emit_suggestion_event("cooldown", context={"client": client_id})
            raise HTTPException(
                status_code=429,
                detail="Please wait before sending another suggestion",
                headers={"Retry-After": str(max(1, math.ceil(error.retry_after)))},
            ) from error

        try:
            entries = await _run_blocking(backlog.submit, text)
        except AlreadyImplementedError as error:
            return JSONResponse(
                {"message": str(error), "suggestions": _serialize_suggestions(error.suggestions)},
                status_code=status.HTTP_200_OK,
            )
        except DuplicateSuggestionError as error:
            raise HTTPException(status_code=409, detail=str(error)) from error
        except InvalidSuggestionError as error:
            cooldown.release(client_id)
            raise HTTPException(status_code=400, detail=str(error)) from error
        except LedgerWriteError as error:
            cooldown.release(client_id)
            LOGGER.exception("Failed to store suggestion")
            raise HTTPException(status_code=500, detail="Failed to store suggestion") from error
        except Exception:
            cooldown.release(client_id)
            raise

        return JSONResponse(
            {"suggestions": _serialize_suggestions(entries)},
            status_code=status.HTTP_201_CREATED,
        )

    @app.api_route("/api/suggestions", methods=["GET", "POST"])
    async def suggestions_endpoint(request: Request) -> JSONResponse:
        if request.method == "POST":
            return await _submit_suggestion(request)
        try:
            entries = await _run_blocking(backlog.list)
        except LedgerWriteError as error:
            LOGGER.exception("Failed to update suggestions")
            raise HTTPException(status_code=500, detail="Failed to load suggestions") from error
        return JSONResponse(
            {"suggestions": _serialize_suggestions(entries)},
            headers={"Cache-Control": "no-store"},
        )

    @app.post("/api/existential-texts")
    async def post_existential_texts(request: Request) -> JSONResponse:
        if request.headers.get(PLAYER_HEADER) != PLAYER_HEADER_VALUE:
            raise HTTPException(status_code=403, detail="Forbidden")
        values = await _run_blocking(texts.texts)
        return JSONResponse({"texts": values}, headers={"Cache-Control": "no-store"})

    @app.get("/videos/{name:path}")
    async def get_media(name: str, request: Request) -> Response:
        try:
            target = resolve_within(media_root, name)
        except PathOutsideRootError as error:
            LOGGER.warning("Refused media path outside root: %r", name)
            raise HTTPException(status_code=403, detail="Forbidden") from error
        return await serve_media(target, request_headers=request.headers)

    async def _serve_public(requested: str, request: Request) -> Response:
        if requested.startswith(_API_PREFIX.strip("/") + "/") or requested == _API_PREFIX.strip("/"):
            raise HTTPException(status_code=404, detail="Not found")
        try:
            target = resolve_within(public_root, requested or _INDEX_DOCUMENT)
        except PathOutsideRootError as error:
            LOGGER.warning("Refused static path outside root: %r", requested)
            raise HTTPException(status_code=403, detail="Forbidden") from error
        return await serve_file(target, request_headers=request.headers, asset_class="static")

    @app.get("/")
    async def index(request: Request) -> Response:
        return await _serve_public(_INDEX_DOCUMENT, request)

    @app.get("/{requested:path}")
    async def static_asset(requested: str, request: Request) -> Response:
        return await _serve_public(requested, request)

    return app


__all__ = [
    "ContextualLoggerAdapter",
    "LIKES_BODY_LIMIT",
    "PLAYER_HEADER",
    "PLAYER_HEADER_VALUE",
    "RequestContextMiddleware",
    "SUGGESTION_BODY_LIMIT",
    "client_identifier",
    "create_app",
    "SuggestionPayload",
    "parse_json_body",
    "read_limited_body",
]
