from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ticketsync.api.dependencies.auth import caller_id_from_headers, topics_denied_to
from ticketsync.api.routes import notifications as notifications_routes
from ticketsync.api.routes import tickets as tickets_routes
from ticketsync.api.routes import webhooks as webhooks_routes
from ticketsync.core.config import get_settings
from ticketsync.core.database import db
from ticketsync.core.logging import configure_logging, log_info, log_warning
from ticketsync.security.request_logger import RequestLoggingMiddleware
from ticketsync.services.realtime import realtime_publisher
from ticketsync.services.redis import close_redis_client

configure_logging()
settings = get_settings()

tags_metadata = [
    {
        "name": "Tickets",
        "description": "Ticket lifecycle with auto-assignment, audit trail and tracker synchronisation.",
    },
    {
        "name": "Notifications",
        "description": "Per-user notification inbox.",
    },
    {
        "name": "Tracker Webhooks",
        "description": "Inbound Azure DevOps work item events.",
    },
]

app = FastAPI(
    title=settings.app_name,
    description="Ticket lifecycle service kept in sync with Azure DevOps work items.",
    openapi_tags=tags_metadata,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.allowed_origins] or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware, exempt_paths=("/health",))

app.include_router(tickets_routes.router)
app.include_router(notifications_routes.router)
app.include_router(webhooks_routes.router)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log_warning("Rejected malformed request", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.websocket("/ws/realtime")
async def realtime_updates(
    websocket: WebSocket,
    topics: str = Query(default="tickets"),
) -> None:
    """Stream events for the comma separated ``topics`` (``tickets``, ``ticket_{id}``, ``user_{id}``).

    ``user_{id}`` topics are only open to the caller named in the identity header.
    """

    requested = topics.split(",")
    denied = topics_denied_to(caller_id_from_headers(websocket.headers), requested)
    if denied:
        log_warning("Rejected realtime subscription", topics=",".join(denied))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await realtime_publisher.connect(websocket, requested)
    try:
        while True:
            # Consume client frames so disconnects are noticed promptly.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await realtime_publisher.disconnect(websocket)


@app.on_event("startup")
async def on_startup() -> None:
    await db.connect()
    await db.run_migrations()
    realtime_publisher.start_relay()
    log_info("Application started", environment=settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await realtime_publisher.stop_relay()
    await close_redis_client()
    await db.disconnect()
    log_info("Application shutdown")


@app.get("/health")
async def health_check():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
