"""FastAPI chat server for the PayanaOverseas lead-qualification agent.

Provides the realtime WebSocket endpoint, a thin REST adapter for
turn-by-turn input, and read-only retrieval endpoints.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from payanaagent.config import (
    FlowConfigError,
    Settings,
    load_flow_config,
    load_settings,
    messaging_from_config,
)
from payanaagent.coordinator import SessionCoordinator, session_state, session_stats
from payanaagent.db import Database, MockDatabase, RepositoryError
from payanaagent.dispatcher import RETRY_TEXT, Dispatcher
from payanaagent.graph import build_graph
from payanaagent.logging_setup import configure_logging
from payanaagent.notifier import LogNotifier, SmtpNotifier
from payanaagent.realtime import RealtimeChannel, make_event
from payanaagent.scheduler import AsyncioScheduler

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Client event models
# ---------------------------------------------------------------------------

class ClientEvent(BaseModel):
    type: str
    payload: dict = {}


class SessionPayload(BaseModel):
    sessionId: str


class InputPayload(SessionPayload):
    text: str
    step: int | None = None


class OptionPayload(SessionPayload):
    value: str
    step: int | None = None


class UploadPayload(SessionPayload):
    fileName: str
    data: str = ""


class TypingPayload(SessionPayload):
    pass


# ---------------------------------------------------------------------------
# REST models
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    session_id: str
    message: str


class ChatResponse(BaseModel):
    session_id: str
    accepted: bool
    error: str | None = None
    state: dict
    messages: list[dict]


class WebSocketConnection:
    """Adapts a FastAPI WebSocket to the channel's Connection protocol."""

    def __init__(self, websocket: WebSocket):
        self.connection_id = uuid.uuid4().hex
        self._websocket = websocket

    async def send(self, event: dict) -> None:
        await self._websocket.send_json(event)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def _load_messaging(settings: Settings) -> tuple[dict | None, dict]:
    try:
        config = load_flow_config(settings.flow_id)
    except FlowConfigError:
        logger.warning("Flow config %s not loaded; using built-in messaging", settings.flow_id, exc_info=True)
        return None, {}
    return messaging_from_config(config), config.get("notifications", {})


def _build_services(services: dict | None, settings: Settings) -> dict:
    services = dict(services or {})
    messaging, notifications = _load_messaging(settings)
    services.setdefault("messaging", messaging)

    if "repository" not in services:
        if settings.database_url:
            services["repository"] = Database(settings.database_url)
        else:
            logger.warning("DATABASE_URL not set; sessions are kept in memory")
            services["repository"] = MockDatabase()

    if "notifier" not in services:
        if settings.smtp_host:
            services["notifier"] = SmtpNotifier(
                host=settings.smtp_host,
                port=settings.smtp_port,
                user=settings.smtp_user,
                password=settings.smtp_password,
                admin_email=settings.admin_email or notifications.get("admin_email"),
                subjects=notifications.get("subjects"),
                cc_applicant=notifications.get("cc_applicant", True),
                use_tls=settings.smtp_use_tls,
            )
        else:
            services["notifier"] = LogNotifier()

    services.setdefault("scheduler", AsyncioScheduler())
    return services


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    services: dict | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Dict with repository, notifier, scheduler and messaging
            for dependency injection. Missing entries are built from settings.
        settings: Runtime settings. Defaults to load_settings().
    """
    settings = settings or load_settings()
    services = _build_services(services, settings)

    # Build graph (for validation)
    build_graph()

    repository = services["repository"]
    scheduler = services["scheduler"]
    channel = RealtimeChannel(scheduler, typing_timeout=settings.typing_timeout)
    dispatcher = Dispatcher(
        repository,
        services["notifier"],
        channel,
        scheduler,
        notifier_timeout=settings.notifier_timeout,
    )
    coordinator = SessionCoordinator(repository, dispatcher, channel, services["messaging"])

    app = FastAPI(title="PayanaOverseas Chat")
    app.state.settings = settings
    app.state.coordinator = coordinator

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )

    async def handle_event(connection: WebSocketConnection, event: ClientEvent) -> None:
        cid = connection.connection_id
        if event.type == "join":
            p = SessionPayload.model_validate(event.payload)
            await coordinator.handle_join(p.sessionId, connection)
        elif event.type == "submitInput":
            p = InputPayload.model_validate(event.payload)
            await coordinator.handle_input(p.sessionId, cid, p.text, step=p.step)
        elif event.type == "selectOption":
            p = OptionPayload.model_validate(event.payload)
            await coordinator.handle_option(p.sessionId, cid, p.value, step=p.step)
        elif event.type == "uploadFile":
            p = UploadPayload.model_validate(event.payload)
            data = base64.b64decode(p.data, validate=True) if p.data else b""
            await coordinator.handle_upload(p.sessionId, cid, p.fileName, data)
        elif event.type == "leave":
            p = SessionPayload.model_validate(event.payload)
            await coordinator.handle_leave(p.sessionId, cid)
        elif event.type in ("typingStart", "typingStop"):
            p = TypingPayload.model_validate(event.payload)
            await channel.set_typing(p.sessionId, cid, event.type == "typingStart")
        else:
            raise ValueError(f"Unknown event type: {event.type}")

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        connection = WebSocketConnection(websocket)
        logger.info("Connection %s opened", connection.connection_id)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    event = ClientEvent.model_validate(json.loads(raw))
                    await handle_event(connection, event)
                except (json.JSONDecodeError, ValidationError, ValueError, binascii.Error) as e:
                    logger.info("Malformed event from %s: %s", connection.connection_id, e)
                    await connection.send(make_event("error", reason="Malformed event"))
                except RepositoryError:
                    logger.exception("Repository failure handling event from %s", connection.connection_id)
                    await connection.send(make_event("error", reason=RETRY_TEXT))
        except WebSocketDisconnect:
            logger.info("Connection %s closed", connection.connection_id)
        finally:
            await coordinator.handle_disconnect(connection.connection_id)

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(req: ChatRequest):
        if not req.message.strip():
            raise HTTPException(status_code=400, detail="Message is empty")
        try:
            await coordinator.open_session(req.session_id)
            outcome = await coordinator.handle_input(req.session_id, "rest", req.message)
            session = await repository.get_session(req.session_id)
            messages = await repository.list_messages(req.session_id)
        except RepositoryError:
            logger.exception("Repository failure handling chat for %s", req.session_id)
            raise HTTPException(status_code=503, detail=RETRY_TEXT)
        if outcome is None or session is None:
            raise HTTPException(status_code=503, detail=RETRY_TEXT)

        return ChatResponse(
            session_id=req.session_id,
            accepted=outcome.accepted,
            error=outcome.error_text,
            state=session_state(session),
            messages=[m.to_dict() for m in messages],
        )

    @app.get("/health")
    async def health():
        try:
            database = await repository.ping()
        except RepositoryError:
            database = False
        return {
            "status": "ok" if database else "degraded",
            "database": database,
            "connections": channel.connection_count,
        }

    @app.get("/api/conversations")
    async def conversations():
        try:
            sessions = await repository.list_sessions(limit=20)
        except RepositoryError:
            raise HTTPException(status_code=503, detail=RETRY_TEXT)
        return {"conversations": [s.to_dict() for s in sessions]}

    @app.get("/api/messages/{session_id}")
    async def messages(session_id: str):
        try:
            session = await repository.get_session(session_id)
            if session is None:
                raise HTTPException(status_code=404, detail="Session not found")
            transcript = await repository.list_messages(session_id)
        except RepositoryError:
            raise HTTPException(status_code=503, detail=RETRY_TEXT)
        return {
            "session": session.to_dict(),
            "messages": [m.to_dict() for m in transcript],
        }

    @app.get("/api/sessions/{session_id}/stats")
    async def stats(session_id: str):
        try:
            session = await repository.get_session(session_id)
            if session is None:
                raise HTTPException(status_code=404, detail="Session not found")
            transcript = await repository.list_messages(session_id)
        except RepositoryError:
            raise HTTPException(status_code=503, detail=RETRY_TEXT)
        return session_stats(session, transcript)

    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
