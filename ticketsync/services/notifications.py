"""Notification fan-out for ticket creation, edits and operator changes.

A :class:`Notification` row names the *actor* of a change; one
``user_notifications`` row is written per recipient. Message values are keys the
clients translate.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from ticketsync.core.logging import log_info
from ticketsync.repositories import notifications as notifications_repo
from ticketsync.services.assignment import AutoAssignmentEngine
from ticketsync.services.realtime import realtime_publisher, user_topic

TICKET_CREATED = "TICKET_CREATED_NOTIFICATION"
TICKET_ASSIGNED_TO_YOU_BY_SYSTEM = "TICKET_ASSIGNED_TO_YOU_BY_SYSTEM_NOTIFICATION"
TICKET_ASSIGNED = "TICKET_ASSIGNED_NOTIFICATION"
TICKET_EDITED = "TICKET_EDITED_NOTIFICATION"
TICKET_ASSIGNED_TO_YOU = "TICKET_ASSIGNED_TO_YOU_NOTIFICATION"
TICKET_UNASSIGNED = "TICKET_UNASSIGNED_NOTIFICATION"

USER_NOTIFICATION_CREATED = "UserNotificationCreated"
USER_NOTIFICATION_UPDATED = "UserNotificationUpdated"
USER_NOTIFICATION_DELETED = "UserNotificationDeleted"


def _ids(pool: Iterable[Mapping[str, Any]]) -> list[int]:
    return [int(member["id"]) for member in pool]


class NotificationDispatcher:
    def __init__(
        self,
        *,
        engine: AutoAssignmentEngine | None = None,
        notifications=notifications_repo,
        publisher=realtime_publisher,
    ) -> None:
        self._engine = engine or AutoAssignmentEngine()
        self._notifications = notifications
        self._publisher = publisher

    async def _notify(
        self,
        *,
        ticket_id: int,
        actor_id: int,
        message: str,
        receivers: Iterable[int],
    ) -> dict[str, Any]:
        notification = await self._notifications.create_notification(
            ticket_id=ticket_id, user_id=actor_id, message=message
        )
        delivered: list[int] = []
        for receiver in receivers:
            if not receiver or receiver in delivered:
                continue
            user_notification = await self._notifications.create_user_notification(
                notification_id=notification["id"], receiver_user_id=receiver
            )
            delivered.append(receiver)
            await self._publisher.publish(
                user_topic(receiver),
                USER_NOTIFICATION_CREATED,
                {
                    "id": user_notification["id"],
                    "notification_id": notification["id"],
                    "ticket_id": ticket_id,
                    "message": message,
                },
            )
        log_info(
            "Notification dispatched",
            ticket_id=ticket_id,
            notification_id=notification["id"],
            notification_message=message,
            receivers=len(delivered),
        )
        return notification

    async def create_creation_notifications(self, ticket: Mapping[str, Any]) -> int | None:
        """Notify about a new ticket and return the operator chosen for it, if any."""

        ticket_id = int(ticket["id"])
        creator_id = int(ticket["creator_user_id"])
        pool = await self._engine.operator_pool()
        operator_id = await self._engine.recommend(int(ticket["platform_id"]), pool)

        if operator_id is None:
            await self._notify(
                ticket_id=ticket_id,
                actor_id=creator_id,
                message=TICKET_CREATED,
                receivers=_ids(pool),
            )
            return None

        await self._notify(
            ticket_id=ticket_id,
            actor_id=creator_id,
            message=TICKET_CREATED,
            receivers=[operator_id],
        )
        await self._notify(
            ticket_id=ticket_id,
            actor_id=operator_id,
            message=TICKET_ASSIGNED_TO_YOU_BY_SYSTEM,
            receivers=[operator_id],
        )
        await self._notify(
            ticket_id=ticket_id,
            actor_id=operator_id,
            message=TICKET_ASSIGNED,
            receivers=[creator_id],
        )
        return operator_id

    async def create_edit_notifications(
        self, ticket: Mapping[str, Any], editor_id: int
    ) -> None:
        creator_id = int(ticket["creator_user_id"])
        operator_id = ticket.get("operator_user_id")

        if editor_id == creator_id:
            if operator_id:
                receivers = [operator_id]
            else:
                receivers = _ids(await self._engine.operator_pool())
        elif operator_id and editor_id == operator_id:
            receivers = [creator_id]
        elif operator_id:
            receivers = [creator_id, operator_id]
        else:
            receivers = [creator_id, *_ids(await self._engine.operator_pool())]

        await self._notify(
            ticket_id=int(ticket["id"]),
            actor_id=editor_id,
            message=TICKET_EDITED,
            receivers=receivers,
        )

    async def create_operator_edit_notifications(
        self,
        ticket: Mapping[str, Any],
        editor_id: int,
        previous_operator_id: int | None,
    ) -> None:
        ticket_id = int(ticket["id"])
        creator_id = int(ticket["creator_user_id"])
        operator_id = ticket.get("operator_user_id")

        if not operator_id:
            pool = await self._engine.operator_pool()
            await self._notify(
                ticket_id=ticket_id,
                actor_id=editor_id,
                message=TICKET_UNASSIGNED,
                receivers=[creator_id, *_ids(pool)],
            )
            return

        await self._notify(
            ticket_id=ticket_id,
            actor_id=operator_id,
            message=TICKET_ASSIGNED_TO_YOU,
            receivers=[operator_id],
        )
        receivers = [creator_id]
        if previous_operator_id:
            receivers.append(previous_operator_id)
        await self._notify(
            ticket_id=ticket_id,
            actor_id=operator_id,
            message=TICKET_ASSIGNED,
            receivers=receivers,
        )
