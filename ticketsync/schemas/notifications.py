from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict


class UserNotificationResponse(BaseModel):
    id: int
    notification_id: int
    receiver_user_id: int
    is_read: bool
    message: str
    ticket_id: int
    user_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EditResponse(BaseModel):
    id: int
    ticket_id: int
    user_id: int
    description: str
    old_status: str
    new_status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


def user_notification_to_response(record: Mapping[str, Any]) -> UserNotificationResponse:
    return UserNotificationResponse(
        id=record["id"],
        notification_id=record["notification_id"],
        receiver_user_id=record["receiver_user_id"],
        is_read=bool(record.get("is_read")),
        message=record["message"],
        ticket_id=record["ticket_id"],
        user_id=record["user_id"],
        created_at=record.get("created_at"),
    )
