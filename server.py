# server.py - FastAPI widget chat gateway
import asyncio
import secrets
from contextlib import asynccontextmanager, suppress
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError

from analytics.rollup import run_rollup
from cache.config_cache import ChatbotNotFoundError
from config import (
    ADMIN_API_KEY,
    ANALYTICS_HISTORY_DAYS,
    ANALYTICS_ROLLUP_INTERVAL_SECONDS,
    CORS_ORIGINS,
    MAX_CONVERSATION_SESSIONS,
    MAX_MESSAGE_LENGTH,
    SESSION_EXPIRY_CHECK_SECONDS,
    SESSION_INACTIVITY_TIMEOUT_SECONDS,
)
from services import Services, build_services
from sessions.coordinator import ROLE_BOT, ROLE_USER, SessionNotFoundError
from storage.kv_store import DatabaseStore
from utils.logger import get_server_logger
from utils.rate_limiter import get_client_ip, rate_limited
from utils.validators import validate_chatbot_id, validate_color, validate_message, validate_session_id

logger = get_server_logger()

WIDGET_SCRIPT = Path(__file__).resolve().parent / "static" / "widget.js"


# Request/Response Models
class ChatRequest(BaseModel):
    chatbotId: str
    message: str
    sessionId: Optional[str] = None

    @field_validator("chatbotId")
    @classmethod
    def validate_chatbot(cls, v):
        return validate_chatbot_id(v)

    @field_validator("message")
    @classmethod
    def validate_text(cls, v):
        return validate_message(v)

    @field_validator("sessionId")
    @classmethod
    def validate_session(cls, v):
        if v is None or not v.strip():
            return None
        return validate_session_id(v)


class ChatResponse(BaseModel):
    response: str
    sessionId: str


class FeedbackRequest(BaseModel):
    sessionId: str
    rating: int = Field(ge=0, le=5)

    @field_validator("sessionId")
    @classmethod
    def validate_session(cls, v):
        return validate_session_id(v)


class FeedbackResponse(BaseModel):
    message: str
    sessionId: str
    rated: bool


class ChatbotUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    color: Optional[str] = None
    welcomeMessage: Optional[str] = Field(default=None, max_length=1000)
    isDeployed: Optional[bool] = None

    @field_validator("color")
    @classmethod
    def validate_hex_color(cls, v):
        return validate_color(v) if v is not None else v


async def _maintenance_loop(services: Services, interval: float, stop: asyncio.Event):
    """Periodically roll up yesterday's analytics and purge expired shared KV rows until stop is set."""
    while True:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval)
        if stop.is_set():
            return
        try:
            await asyncio.to_thread(run_rollup, services.session_factory)
            if isinstance(services.kv_store, DatabaseStore):
                purged = await asyncio.to_thread(services.kv_store.purge_expired)
                logger.info(f"Purged {purged} expired KV entries")
        except Exception:
            logger.exception("Maintenance run failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup lifecycle handler."""
    logger.info("Widget chat gateway starting...")
    if app.state.services is None:
        app.state.services = build_services()

    task = None
    stop = asyncio.Event()
    interval = app.state.rollup_interval
    if interval > 0:
        task = asyncio.create_task(_maintenance_loop(app.state.services, interval, stop))
    app.state.maintenance_task = task

    yield

    if task is not None:
        # Let a rollup already in its worker thread finish before the engine goes away
        stop.set()
        await task
    app.state.services.engine.dispose()
    logger.info("Widget chat gateway shutting down...")


def _services(req: Request) -> Services:
    return req.app.state.services


def require_admin(req: Request) -> None:
    """Guard for internal endpoints: X-Admin-Key must match the configured key."""
    expected = req.app.state.admin_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Internal API is disabled")
    provided = req.headers.get("X-Admin-Key", "")
    if not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid admin key")


public = APIRouter()
internal = APIRouter(prefix="/internal", dependencies=[Depends(require_admin)])


# Routes
@public.get("/")
async def root():
    return {"message": "Widget Chat Gateway", "version": "1.0.0"}


@public.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "running", "message": "Widget chat gateway is running"}


@public.get("/limits")
def get_limits(req: Request):
    """Get current API limits and configuration."""
    services = _services(req)
    return {
        "input_limits": {"max_message_length": MAX_MESSAGE_LENGTH},
        "rate_limits": {
            route_class: {"requests_per_window": limit, "window_seconds": window}
            for route_class, (limit, window) in services.rate_limiter.limits.items()
        },
        "cache": {"config_ttl_seconds": services.config_cache.ttl_seconds},
        "sessions": {
            "inactivity_timeout_seconds": SESSION_INACTIVITY_TIMEOUT_SECONDS,
            "expiry_check_seconds": SESSION_EXPIRY_CHECK_SECONDS,
        },
    }


@public.get("/widget.js", dependencies=[Depends(rate_limited("static"))])
def widget_script():
    """Serve the embeddable widget."""
    return FileResponse(
        WIDGET_SCRIPT,
        media_type="application/javascript",
        headers={"Cache-Control": "public, max-age=3600, s-maxage=86400"},
    )


@public.get("/public/chatbots/{chatbot_id}", dependencies=[Depends(rate_limited("config"))])
def public_config(chatbot_id: str, req: Request):
    """Public display config for a deployed chatbot, served through the config cache."""
    try:
        chatbot_id = validate_chatbot_id(chatbot_id)
        config = _services(req).config_cache.get(chatbot_id)
    except (ValueError, ChatbotNotFoundError):
        raise HTTPException(status_code=404, detail="Not found")
    except Exception:
        logger.exception(f"[{chatbot_id}] Error loading public config")
        raise HTTPException(status_code=500, detail="Failed to load config")

    ttl = _services(req).config_cache.ttl_seconds
    return JSONResponse(config.to_response(), headers={"Cache-Control": f"public, max-age={ttl}"})


@public.post("/api/chat", response_model=ChatResponse, dependencies=[Depends(rate_limited("chat"))])
def chat(request: ChatRequest, req: Request):
    """Answer a widget message, creating or resuming its session."""
    services = _services(req)
    chatbot_id = request.chatbotId

    try:
        session_id = services.sessions.resume_or_start(
            chatbot_id,
            request.sessionId,
            ip_address=get_client_ip(req),
            user_agent=req.headers.get("User-Agent"),
        )
        logger.info(f"[{session_id}] POST /api/chat - Message: {request.message[:50]}...")

        services.sessions.append_message(session_id, chatbot_id, ROLE_USER, request.message)
        reply = services.pipeline.reply(chatbot_id, request.message)
        services.sessions.append_message(
            session_id, chatbot_id, ROLE_BOT, reply.text, response_time_ms=reply.response_time_ms
        )

        return ChatResponse(response=reply.text, sessionId=session_id)
    except Exception:
        logger.exception(f"[{chatbot_id}] Unexpected error processing chat message")
        raise HTTPException(status_code=500, detail="Failed to process chat message")


@public.post("/api/chat/feedback", response_model=FeedbackResponse, dependencies=[Depends(rate_limited("feedback"))])
def feedback(request: FeedbackRequest, req: Request):
    """End a session, storing the rating when it is 1-5 (0 = closed without rating)."""
    session_id = request.sessionId
    logger.info(f"[{session_id}] POST /api/chat/feedback - Rating: {request.rating}")

    try:
        _services(req).sessions.end_session(session_id, request.rating)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except SQLAlchemyError as e:
        # Best-effort: the widget moves on regardless
        logger.error(f"[{session_id}] Failed to record feedback: {e}")

    return FeedbackResponse(message="Feedback received", sessionId=session_id, rated=request.rating > 0)


@internal.put("/chatbots/{chatbot_id}")
def update_chatbot(chatbot_id: str, request: ChatbotUpdateRequest, req: Request):
    """Update public fields; the cached config is invalidated once the write commits."""
    record = _services(req).chatbots.update_public_config(
        chatbot_id,
        name=request.name,
        color=request.color,
        welcome_message=request.welcomeMessage,
        is_deployed=request.isDeployed,
    )
    if record is None:
        raise HTTPException(status_code=404, detail="Chatbot not found")
    return {
        "id": record.id,
        "name": record.name,
        "color": record.color,
        "welcomeMessage": record.welcome_message,
        "isDeployed": record.deployed,
    }


@internal.get("/chatbots/{chatbot_id}/analytics")
def chatbot_analytics(chatbot_id: str, req: Request, days: int = ANALYTICS_HISTORY_DAYS):
    analytics = _services(req).analytics
    return {
        "realTimeStats": analytics.live_stats(chatbot_id),
        "history": analytics.history(chatbot_id, days),
    }


@internal.get("/chatbots/{chatbot_id}/conversations")
def chatbot_conversations(chatbot_id: str, req: Request, limit: int = MAX_CONVERSATION_SESSIONS):
    limit = max(1, min(limit, MAX_CONVERSATION_SESSIONS))
    return {"conversations": _services(req).sessions.list_conversations(chatbot_id, limit)}


@internal.post("/analytics/rollup")
def analytics_rollup(req: Request, day: Optional[str] = None):
    try:
        target = date.fromisoformat(day) if day else None
    except ValueError:
        raise HTTPException(status_code=400, detail="day must be YYYY-MM-DD")
    written = run_rollup(_services(req).session_factory, target)
    return {"message": "Rollup completed", "chatbots": written}


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures as 400 with readable messages."""
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages) or "Invalid request"})


def create_app(
    services: Optional[Services] = None,
    admin_api_key: str = ADMIN_API_KEY,
    rollup_interval: float = ANALYTICS_ROLLUP_INTERVAL_SECONDS,
) -> FastAPI:
    """Build the app; services are created at startup unless injected."""
    app = FastAPI(
        title="Widget Chat Gateway",
        description="Public chat, feedback and config endpoints for embeddable chat widgets",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.admin_api_key = admin_api_key
    app.state.rollup_interval = rollup_interval
    app.state.maintenance_task = None

    # Widget routes are embedded on arbitrary sites
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(public)
    app.include_router(internal)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3001)
