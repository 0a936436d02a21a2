from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ticketsync.api.dependencies.auth import (
    get_current_user,
    is_staff,
    require_operator_or_admin,
)
from ticketsync.api.dependencies.database import require_database
from ticketsync.api.dependencies.services import get_lifecycle_service, get_reply_service
from ticketsync.api.errors import to_http_exception
from ticketsync.core.errors import TicketSyncError
from ticketsync.repositories import edits as edits_repo
from ticketsync.repositories import tickets as tickets_repo
from ticketsync.schemas.enums import Status
from ticketsync.schemas.notifications import EditResponse
from ticketsync.schemas.replies import ReplyCreateRequest, ReplyResponse
from ticketsync.schemas.tickets import (
    TicketCreateRequest,
    TicketListResponse,
    TicketResponse,
    TicketUpdateRequest,
    changes_from_request,
    draft_from_request,
    ticket_to_response,
)
from ticketsync.services.replies import ReplyService
from ticketsync.services.tickets import TicketLifecycleService

router = APIRouter(prefix="/api/tickets", tags=["Tickets"])

TRACKER_SYNC_HEADER = "X-Tracker-Sync"


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    status_filter: Optional[Status] = Query(default=None, alias="status"),
    platform_id: Optional[int] = Query(default=None, ge=1),
    operator_user_id: Optional[int] = Query(default=None, ge=1),
    creator_user_id: Optional[int] = Query(default=None, ge=1),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
) -> TicketListResponse:
    if not is_staff(current_user):
        # Plain users only see their own tickets.
        creator_user_id = current_user["id"]
    records = await tickets_repo.list_tickets(
        status=status_filter,
        platform_id=platform_id,
        operator_user_id=operator_user_id,
        creator_user_id=creator_user_id,
        limit=limit,
        offset=offset,
    )
    items = [ticket_to_response(record) for record in records]
    return TicketListResponse(items=items, total=len(items))


async def _get_visible_ticket(ticket_id: int, current_user: dict) -> dict:
    ticket = await tickets_repo.get_ticket(ticket_id)
    if not ticket:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    if not is_staff(current_user) and ticket["creator_user_id"] != current_user["id"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return ticket


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: int,
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
) -> TicketResponse:
    return ticket_to_response(await _get_visible_ticket(ticket_id, current_user))


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    response: Response,
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
) -> TicketResponse:
    draft = draft_from_request(payload, creator_user_id=current_user["id"])
    try:
        result = await service.create_ticket(draft)
    except TicketSyncError as exc:
        raise to_http_exception(exc) from exc
    response.headers[TRACKER_SYNC_HEADER] = result.tracker_sync.value
    return ticket_to_response(result.ticket, tracker_sync=result.tracker_sync.value)


@router.put("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_ticket(
    ticket_id: int,
    payload: TicketUpdateRequest,
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
) -> Response:
    if payload.requester != current_user["id"] and not is_staff(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Requester must be the authenticated user",
        )
    try:
        result = await service.update_ticket(
            ticket_id,
            changes_from_request(payload),
            payload.requester,
            expected_version=payload.version,
        )
    except TicketSyncError as exc:
        raise to_http_exception(exc) from exc
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers={TRACKER_SYNC_HEADER: result.tracker_sync.value},
    )


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(
    ticket_id: int,
    _: None = Depends(require_database),
    __: dict = Depends(require_operator_or_admin),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
) -> Response:
    try:
        result = await service.delete_ticket(ticket_id)
    except TicketSyncError as exc:
        raise to_http_exception(exc) from exc
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers={TRACKER_SYNC_HEADER: result.tracker_sync.value},
    )


@router.get("/{ticket_id}/edits", response_model=list[EditResponse])
async def list_ticket_edits(
    ticket_id: int,
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
) -> list[EditResponse]:
    await _get_visible_ticket(ticket_id, current_user)
    records = await edits_repo.list_edits_for_ticket(ticket_id)
    return [EditResponse.model_validate(record) for record in records]


@router.get("/{ticket_id}/replies", response_model=list[ReplyResponse])
async def list_ticket_replies(
    ticket_id: int,
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
    service: ReplyService = Depends(get_reply_service),
) -> list[ReplyResponse]:
    await _get_visible_ticket(ticket_id, current_user)
    try:
        records = await service.list_replies(ticket_id)
    except TicketSyncError as exc:
        raise to_http_exception(exc) from exc
    return [ReplyResponse.model_validate(record) for record in records]


@router.post(
    "/{ticket_id}/replies",
    response_model=ReplyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_ticket_reply(
    ticket_id: int,
    payload: ReplyCreateRequest,
    response: Response,
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
    service: ReplyService = Depends(get_reply_service),
) -> ReplyResponse:
    await _get_visible_ticket(ticket_id, current_user)
    try:
        reply, tracker_sync = await service.create_reply(
            ticket_id, current_user["id"], payload.message
        )
    except TicketSyncError as exc:
        raise to_http_exception(exc) from exc
    response.headers[TRACKER_SYNC_HEADER] = tracker_sync.value
    return ReplyResponse(**reply, tracker_sync=tracker_sync.value)
