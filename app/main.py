from fastapi import Depends, FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, Response
from starlette.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import json
import logging
import os
import time

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.auth.tokens import issue_guest_token, require_user
from app.config import Settings, load_settings
from app.crypto import build_cipher
from app.errors import AuthError, CipherError, ServiceError, ValidationError
from app.metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL
from app.middleware.request_id import RequestIdMiddleware
from app.providers.base import ModelClient
from app.providers.factory import get_model_client
from app.relay import MessageRelay
from app.store.base import TranscriptStore
from app.store.factory import get_transcript_store

logger = logging.getLogger("support_chat.api")


def configure_logging(level_name: str) -> None:
    # Ensure our application loggers emit under Uvicorn:
    # - honor LOG_LEVEL (default INFO)
    # - attach a StreamHandler if none present
    # - disable propagate to avoid duplicate logs with Uvicorn root handlers
    lvl = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    root = logging.getLogger("support_chat")
    root.setLevel(lvl)
    if not root.handlers:
        h = logging.StreamHandler()
        h.setLevel(lvl)
        h.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(h)
    root.propagate = False


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


def _server_error(request: Request, exc: Exception) -> JSONResponse:
    settings: Settings = request.app.state.settings
    detail = str(exc) or "Server error"
    if settings.is_production:
        body: Dict[str, Any] = {"error": "Server error"}
    else:
        body = {"error": detail, "details": detail}
    return JSONResponse(body, status_code=500)


def create_app(
    settings: Optional[Settings] = None,
    *,
    model_client: Optional[ModelClient] = None,
    store: Optional[TranscriptStore] = None,
) -> FastAPI:
    """Build the chat API. Collaborators are created from ``settings`` unless injected."""
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    transcript_store = store or get_transcript_store(settings)
    client = model_client or get_model_client(settings)
    cipher = build_cipher(settings.encryption_key, settings.is_production)
    relay = MessageRelay(transcript_store, client, cipher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(json.dumps({
            "event": "startup",
            "environment": settings.environment,
            "provider": client.provider_name,
            "model": client.model,
            "region": settings.aws_region,
            "store": transcript_store.backend_name,
        }))
        try:
            yield
        finally:
            # Pending bot-turn writes still get their chance to land
            await relay.writer.drain()
            await transcript_store.close()

    app = FastAPI(
        title="Support Chat API",
        description="Authenticated chat relay with encrypted transcripts and a hosted model backend.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.relay = relay
    app.state.store = transcript_store
    app.state.cipher = cipher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
        allow_credentials=False,
    )
    app.add_middleware(RequestIdMiddleware)

    # HTTP metrics middleware
    @app.middleware("http")
    async def _http_metrics_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        method = request.method
        path = request.url.path
        status_code = 500
        try:
            response = await call_next(request)
            status_code = getattr(response, "status_code", 500)
            return response
        finally:
            status_class = f"{status_code // 100}xx"
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse({"msg": str(exc)}, status_code=400)

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError):
        return JSONResponse({"msg": str(exc)}, status_code=401)

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        logger.error(json.dumps({
            "event": "service_error",
            "type": type(exc).__name__,
            "error": str(exc),
            "path": request.url.path,
            "requestId": _request_id(request),
        }))
        return _server_error(request, exc)

    _register_routes(app)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )
        openapi_schema["tags"] = [
            {"name": "meta", "description": "Service metadata and liveness"},
            {"name": "auth", "description": "Guest credentials"},
            {"name": "chat", "description": "Chat relay and transcript history"},
        ]
        openapi_schema["servers"] = [
            {"url": "http://localhost:8000", "description": "Local dev"}
        ]
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[assignment]
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/auth/guest", tags=["auth"], description="Issue a short-lived bearer credential for a guest user.")
    async def auth_guest(request: Request):
        settings: Settings = request.app.state.settings
        token, user_id = issue_guest_token(settings)
        logger.info(json.dumps({"event": "guest_token_issued", "userId": user_id, "requestId": _request_id(request)}))
        return {"token": token, "userId": user_id, "expiresIn": settings.token_ttl_seconds}

    @app.post("/api/chat", tags=["chat"], description="Relay one user message to the model and return its reply.")
    async def send_message(request: Request, user_id: str = Depends(require_user)):
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        message = payload.get("message") if isinstance(payload, dict) else None
        if not isinstance(message, str):
            message = None

        relay: MessageRelay = request.app.state.relay
        try:
            result = await relay.handle(user_id, message, request_id=_request_id(request))
        except ValidationError:
            raise
        except Exception as e:
            logger.error(json.dumps({
                "event": "chat_send_error",
                "type": type(e).__name__,
                "error": str(e),
                "userId": user_id,
                "requestId": _request_id(request),
            }))
            return _server_error(request, e)
        return {"reply": result.reply, "model": result.model}

    @app.get("/api/chat/history", tags=["chat"], description="Return the caller's decrypted transcript in creation order.")
    async def chat_history(request: Request, limit: Optional[int] = None, user_id: str = Depends(require_user)):
        store: TranscriptStore = request.app.state.store
        cipher = request.app.state.cipher
        records = await store.list_for_user(user_id, limit=limit)
        messages: List[Dict[str, Any]] = []
        for rec in records:
            try:
                text = cipher.decrypt(rec.message)
            except CipherError:
                logger.warning(json.dumps({"event": "history_decrypt_skipped", "userId": user_id, "recordId": rec.id}))
                continue
            messages.append({
                "message": text,
                "isUser": rec.is_user,
                "createdAt": rec.created_at.isoformat(),
            })
        return {"messages": messages}

    @app.delete("/api/chat/history", tags=["chat"], description="Delete the caller's stored transcript.")
    async def delete_history(request: Request, user_id: str = Depends(require_user)):
        store: TranscriptStore = request.app.state.store
        deleted = await store.delete_for_user(user_id)
        logger.info(json.dumps({"event": "history_deleted", "userId": user_id, "count": deleted}))
        return {"deleted": deleted}


app = create_app()


def run() -> None:
    """Serve the module-level app with uvicorn (HOST/PORT env, default 0.0.0.0:8000)."""
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0"
    try:
        port = int(os.getenv("PORT", "8000"))
    except ValueError:
        port = 8000
    uvicorn.run(app, host=host, port=port, log_level=app.state.settings.log_level.lower())


if __name__ == "__main__":
    run()
