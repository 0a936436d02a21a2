"""Azure DevOps service hook endpoints.

``ticket/created``, ``ticket/updated`` and ``ticket/deleted`` receive the
``workitem.*`` events. Events triggered by this service's own writes are
acknowledged with 200 and otherwise ignored.
"""
from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from ticketsync.api.dependencies.auth import require_webhook_credentials
from ticketsync.api.dependencies.database import require_database
from ticketsync.api.dependencies.services import get_webhook_adapter
from ticketsync.api.errors import to_http_exception
from ticketsync.core.errors import TicketSyncError
from ticketsync.core.logging import log_info, log_warning
from ticketsync.schemas.webhooks import WebhookOutcome, WorkItemEvent
from ticketsync.services.webhook_sync import WebhookResult, WebhookStatus, WebhookSyncAdapter

router = APIRouter(
    prefix="/api/webhook/ticket",
    tags=["Tracker Webhooks"],
    dependencies=[Depends(require_webhook_credentials)],
)

_STATUS_CODES = {
    WebhookStatus.IGNORED: status.HTTP_200_OK,
    WebhookStatus.CREATED: status.HTTP_201_CREATED,
    WebhookStatus.UPDATED: status.HTTP_204_NO_CONTENT,
    WebhookStatus.DELETED: status.HTTP_204_NO_CONTENT,
}


async def _dispatch(
    kind: str,
    event: WorkItemEvent,
    handler: Callable[[WorkItemEvent], Awaitable[WebhookResult]],
) -> Response:
    log_info("Tracker webhook received", kind=kind, event_type=event.event_type or "unknown")
    try:
        result = await handler(event)
    except TicketSyncError as exc:
        log_warning("Tracker webhook rejected", kind=kind, error=exc.message or str(exc))
        raise to_http_exception(exc) from exc
    status_code = _STATUS_CODES[result.status]
    if status_code == status.HTTP_204_NO_CONTENT:
        return Response(status_code=status_code)
    outcome = WebhookOutcome(status=result.status.value, ticket_id=result.ticket_id)
    return JSONResponse(status_code=status_code, content=outcome.model_dump())


@router.post("/created", response_model=WebhookOutcome, status_code=status.HTTP_201_CREATED)
async def work_item_created(
    event: WorkItemEvent,
    _: None = Depends(require_database),
    adapter: WebhookSyncAdapter = Depends(get_webhook_adapter),
) -> Response:
    return await _dispatch("created", event, adapter.handle_created)


@router.post("/updated", status_code=status.HTTP_204_NO_CONTENT)
async def work_item_updated(
    event: WorkItemEvent,
    _: None = Depends(require_database),
    adapter: WebhookSyncAdapter = Depends(get_webhook_adapter),
) -> Response:
    return await _dispatch("updated", event, adapter.handle_updated)


@router.post("/deleted", status_code=status.HTTP_204_NO_CONTENT)
async def work_item_deleted(
    event: WorkItemEvent,
    _: None = Depends(require_database),
    adapter: WebhookSyncAdapter = Depends(get_webhook_adapter),
) -> Response:
    return await _dispatch("deleted", event, adapter.handle_deleted)
