from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ticketsync.api.dependencies.auth import get_current_user
from ticketsync.api.dependencies.database import require_database
from ticketsync.repositories import notifications as notifications_repo
from ticketsync.schemas.notifications import (
    UserNotificationResponse,
    user_notification_to_response,
)
from ticketsync.services.notifications import USER_NOTIFICATION_UPDATED
from ticketsync.services.realtime import realtime_publisher, user_topic

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("", response_model=list[UserNotificationResponse])
async def list_my_notifications(
    unread_only: bool = Query(default=False),
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
) -> list[UserNotificationResponse]:
    records = await notifications_repo.list_user_notifications_for_receiver(
        current_user["id"], unread_only=unread_only
    )
    return [user_notification_to_response(record) for record in records]


@router.put("/{user_notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_notification_read(
    user_notification_id: int,
    _: None = Depends(require_database),
    current_user: dict = Depends(get_current_user),
) -> Response:
    record = await notifications_repo.get_user_notification(user_notification_id)
    if not record or record["receiver_user_id"] != current_user["id"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if not record["is_read"]:
        await notifications_repo.mark_user_notification_read(user_notification_id)
        await realtime_publisher.publish(
            user_topic(current_user["id"]),
            USER_NOTIFICATION_UPDATED,
            {"id": user_notification_id, "is_read": True},
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
