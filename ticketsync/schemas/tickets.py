from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import Priority, Status, TicketType


@dataclass(slots=True)
class TicketDraft:
    """Values needed to open a ticket, independent of where the request came from."""

    ticket_type: TicketType
    title: str
    description: str
    priority: Priority
    platform_id: int
    creator_user_id: int
    work_item_id: int | None = None


@dataclass(slots=True)
class TicketChanges:
    """Full replacement of a ticket's editable fields.

    ``operator_user_id`` of ``None`` means the ticket has no operator after the
    update, so the lifecycle service treats it as an unassignment.
    """

    ticket_type: TicketType
    title: str
    description: str
    priority: Priority
    status: Status
    platform_id: int
    operator_user_id: int | None = None


class TicketCreateRequest(BaseModel):
    ticket_type: TicketType = TicketType.BUG
    title: str = Field(..., min_length=1, max_length=50)
    description: str = Field(default="", max_length=5000)
    priority: Priority = Priority.LOW
    platform_id: int = Field(..., ge=1)

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _reject_requester(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "requester" in data:
            raise ValueError("requester must not be supplied when creating a ticket")
        return data


class TicketUpdateRequest(BaseModel):
    ticket_type: TicketType
    title: str = Field(..., min_length=1, max_length=50)
    description: str = Field(default="", max_length=5000)
    priority: Priority
    status: Status
    platform_id: int = Field(..., ge=1)
    operator_user_id: Optional[int] = Field(default=None, ge=1)
    requester: int = Field(..., ge=1, description="Identifier of the user performing the edit.")
    version: Optional[int] = Field(
        default=None,
        ge=1,
        description="Concurrency token read by the client; stale values are rejected with 409.",
    )


class TicketResponse(BaseModel):
    id: int
    ticket_type: TicketType
    title: str
    description: str
    priority: Priority
    status: Status
    work_item_id: Optional[int] = None
    platform_id: int
    creator_user_id: int
    operator_user_id: Optional[int] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tracker_sync: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TicketListResponse(BaseModel):
    items: list[TicketResponse]
    total: int


def draft_from_request(payload: TicketCreateRequest, *, creator_user_id: int) -> TicketDraft:
    return TicketDraft(
        ticket_type=payload.ticket_type,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        platform_id=payload.platform_id,
        creator_user_id=creator_user_id,
    )


def changes_from_request(payload: TicketUpdateRequest) -> TicketChanges:
    return TicketChanges(
        ticket_type=payload.ticket_type,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        status=payload.status,
        platform_id=payload.platform_id,
        operator_user_id=payload.operator_user_id,
    )


def ticket_to_response(
    record: Mapping[str, Any], *, tracker_sync: str | None = None
) -> TicketResponse:
    return TicketResponse(
        id=record["id"],
        ticket_type=record["ticket_type"],
        title=record["title"],
        description=record.get("description") or "",
        priority=record["priority"],
        status=record["status"],
        work_item_id=record.get("work_item_id"),
        platform_id=record["platform_id"],
        creator_user_id=record["creator_user_id"],
        operator_user_id=record.get("operator_user_id"),
        version=record["version"],
        created_at=record.get("created_at"),
        updated_at=record.get("updated_at"),
        tracker_sync=tracker_sync,
    )
