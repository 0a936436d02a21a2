"""Ticket lifecycle orchestration shared by the REST API and the tracker webhooks."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ticketsync.core.errors import ConflictError, NotFoundError, ValidationError
from ticketsync.core.logging import log_audit_event, log_error, log_info, log_warning
from ticketsync.repositories import notifications as notifications_repo
from ticketsync.repositories import platforms as platforms_repo
from ticketsync.repositories import tickets as tickets_repo
from ticketsync.repositories import users as users_repo
from ticketsync.schemas.enums import STAFF_TYPES, Status, UserType
from ticketsync.schemas.tickets import TicketChanges, TicketDraft
from ticketsync.services.assignment import AutoAssignmentEngine
from ticketsync.services.concurrency import ConcurrencyGuard, UpdateStatus
from ticketsync.services.edits import EditRecorder
from ticketsync.services.notifications import USER_NOTIFICATION_DELETED, NotificationDispatcher
from ticketsync.services.realtime import TICKETS_TOPIC, realtime_publisher, user_topic
from ticketsync.services.tracker import (
    AzureDevOpsClient,
    TrackerAPIError,
    TrackerConfigurationError,
)

TICKET_CREATED_EVENT = "TicketCreated"
TICKET_UPDATED_EVENT = "TicketUpdated"
TICKET_DELETED_EVENT = "TicketDeleted"


class TrackerSync(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class LifecycleResult:
    ticket: dict[str, Any]
    tracker_sync: TrackerSync = TrackerSync.SKIPPED


def reconcile_status(status: Status | str, operator_user_id: int | None) -> Status:
    """Keep status and operator consistent.

    Losing the operator sends an open ticket back to ``Unassigned``; gaining one
    moves an ``Unassigned`` ticket to ``WaitingOperator``.
    """
    status = Status(status)
    if not operator_user_id:
        return status if status is Status.CLOSED else Status.UNASSIGNED
    if status is Status.UNASSIGNED:
        return Status.WAITING_OPERATOR
    return status


class TicketLifecycleService:
    def __init__(
        self,
        *,
        tickets=tickets_repo,
        users=users_repo,
        platforms=platforms_repo,
        notifications=notifications_repo,
        guard: ConcurrencyGuard | None = None,
        dispatcher: NotificationDispatcher | None = None,
        edits: EditRecorder | None = None,
        tracker: AzureDevOpsClient | None = None,
        publisher=realtime_publisher,
    ) -> None:
        self._tickets = tickets
        self._users = users
        self._platforms = platforms
        self._notifications = notifications
        self._guard = guard or ConcurrencyGuard(tickets)
        self._dispatcher = dispatcher or NotificationDispatcher(
            engine=AutoAssignmentEngine(tickets=tickets, users=users, platforms=platforms),
            notifications=notifications,
            publisher=publisher,
        )
        self._edits = edits or EditRecorder()
        self._tracker = tracker or AzureDevOpsClient()
        self._publisher = publisher

    async def _require_platform(self, platform_id: int) -> dict[str, Any]:
        platform = await self._platforms.get_platform(platform_id)
        if not platform:
            raise ValidationError(f"Platform {platform_id} does not exist")
        return platform

    async def _require_user(self, user_id: int, *, role: str) -> dict[str, Any]:
        user = await self._users.get_user_by_id(user_id)
        if not user:
            raise ValidationError(f"{role} {user_id} does not exist")
        return user

    async def _require_operator(self, user_id: int) -> dict[str, Any]:
        user = await self._require_user(user_id, role="Operator")
        if UserType(user["user_type"]) not in STAFF_TYPES:
            raise ValidationError(f"User {user_id} cannot be assigned tickets")
        return user

    async def _publish_ticket(self, event: str, ticket: dict[str, Any]) -> None:
        await self._publisher.publish(
            TICKETS_TOPIC,
            event,
            {
                "id": ticket["id"],
                "status": getattr(ticket.get("status"), "value", ticket.get("status")),
                "operator_user_id": ticket.get("operator_user_id"),
                "version": ticket.get("version"),
            },
        )

    async def create_ticket(self, draft: TicketDraft, *, sync_tracker: bool = True) -> LifecycleResult:
        await self._require_platform(draft.platform_id)
        await self._require_user(draft.creator_user_id, role="Creator")

        ticket = await self._tickets.create_ticket(
            ticket_type=draft.ticket_type,
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            status=Status.UNASSIGNED,
            platform_id=draft.platform_id,
            creator_user_id=draft.creator_user_id,
            operator_user_id=None,
            work_item_id=draft.work_item_id,
        )

        operator_id = await self._dispatcher.create_creation_notifications(ticket)
        if operator_id:
            outcome = await self._guard.update(
                ticket["id"],
                ticket["version"],
                operator_user_id=operator_id,
                status=Status.WAITING_OPERATOR,
            )
            if outcome.succeeded:
                ticket = outcome.ticket
            else:
                log_warning(
                    "Auto-assignment skipped; ticket changed concurrently",
                    ticket_id=ticket["id"],
                    outcome=outcome.status.value,
                )
                if outcome.status is UpdateStatus.NOT_FOUND:
                    raise NotFoundError(f"Ticket {ticket['id']} was deleted during creation")
                operator_id = None
                ticket = outcome.ticket or ticket

        await self._edits.record_creation(ticket, draft.creator_user_id, operator_id)

        tracker_sync = TrackerSync.SKIPPED
        if sync_tracker:
            ticket, tracker_sync = await self._push_new_work_item(ticket)

        await self._publish_ticket(TICKET_CREATED_EVENT, ticket)
        log_audit_event(
            "TICKET",
            "create",
            user_id=draft.creator_user_id,
            entity_type="ticket",
            entity_id=ticket["id"],
            operator_user_id=ticket.get("operator_user_id"),
            tracker_sync=tracker_sync.value,
        )
        return LifecycleResult(ticket=ticket, tracker_sync=tracker_sync)

    async def _push_new_work_item(
        self, ticket: dict[str, Any]
    ) -> tuple[dict[str, Any], TrackerSync]:
        if not self._tracker.is_configured():
            return ticket, TrackerSync.SKIPPED
        try:
            platform = await self._require_platform(ticket["platform_id"])
            operator = None
            if ticket.get("operator_user_id"):
                operator = await self._users.get_user_by_id(ticket["operator_user_id"])
            work_item_id = await self._tracker.create_work_item(
                ticket, project=platform["name"], operator=operator
            )
        except TrackerConfigurationError:
            return ticket, TrackerSync.SKIPPED
        except TrackerAPIError as exc:
            log_error("Unable to create work item", ticket_id=ticket["id"], error=str(exc))
            return ticket, TrackerSync.FAILED

        outcome = await self._guard.update(
            ticket["id"], ticket["version"], work_item_id=work_item_id
        )
        if not outcome.succeeded:
            log_error(
                "Unable to link work item to ticket",
                ticket_id=ticket["id"],
                work_item_id=work_item_id,
                outcome=outcome.status.value,
            )
            return outcome.ticket or ticket, TrackerSync.FAILED
        return outcome.ticket, TrackerSync.OK

    async def update_ticket(
        self,
        ticket_id: int,
        changes: TicketChanges,
        requester_id: int,
        *,
        expected_version: int | None = None,
        sync_tracker: bool = True,
    ) -> LifecycleResult:
        if not requester_id:
            raise ValidationError("A requester is required to update a ticket")
        current = await self._tickets.get_ticket(ticket_id)
        if not current:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        await self._require_user(requester_id, role="Requester")
        await self._require_platform(changes.platform_id)
        operator = None
        if changes.operator_user_id:
            operator = await self._require_operator(changes.operator_user_id)

        old_status = Status(current["status"])
        old_operator_id = current.get("operator_user_id")
        new_status = reconcile_status(changes.status, changes.operator_user_id)
        version = expected_version if expected_version is not None else current["version"]

        outcome = await self._guard.update(
            ticket_id,
            version,
            ticket_type=changes.ticket_type,
            title=changes.title,
            description=changes.description,
            priority=changes.priority,
            status=new_status,
            platform_id=changes.platform_id,
            operator_user_id=changes.operator_user_id or None,
        )
        if outcome.status is UpdateStatus.NOT_FOUND:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        if outcome.status is UpdateStatus.CONFLICT:
            raise ConflictError(f"Ticket {ticket_id} was modified by another request")
        ticket = outcome.ticket

        await self._dispatcher.create_edit_notifications(ticket, requester_id)
        await self._edits.record_edit(ticket, requester_id, old_status)
        operator_changed = old_operator_id != ticket.get("operator_user_id")
        if operator_changed:
            await self._dispatcher.create_operator_edit_notifications(
                ticket, requester_id, old_operator_id
            )
            await self._edits.record_operator_edit(ticket, requester_id, old_status)

        tracker_sync = TrackerSync.SKIPPED
        if sync_tracker:
            tracker_sync = await self._push_work_item_update(ticket, operator, operator_changed)

        await self._publish_ticket(TICKET_UPDATED_EVENT, ticket)
        log_audit_event(
            "TICKET",
            "update",
            user_id=requester_id,
            entity_type="ticket",
            entity_id=ticket_id,
            old_status=old_status.value,
            new_status=new_status.value,
            operator_changed=operator_changed,
            tracker_sync=tracker_sync.value,
        )
        return LifecycleResult(ticket=ticket, tracker_sync=tracker_sync)

    async def _push_work_item_update(
        self,
        ticket: dict[str, Any],
        operator: dict[str, Any] | None,
        operator_changed: bool,
    ) -> TrackerSync:
        work_item_id = ticket.get("work_item_id")
        if not work_item_id or not self._tracker.is_configured():
            return TrackerSync.SKIPPED
        try:
            platform = await self._require_platform(ticket["platform_id"])
            await self._tracker.update_work_item(ticket, project=platform["name"])
            if operator_changed:
                await self._tracker.update_work_item_operator(work_item_id, operator)
        except TrackerConfigurationError:
            return TrackerSync.SKIPPED
        except TrackerAPIError as exc:
            log_error(
                "Unable to update work item",
                ticket_id=ticket["id"],
                work_item_id=work_item_id,
                error=str(exc),
            )
            return TrackerSync.FAILED
        return TrackerSync.OK

    async def delete_ticket(self, ticket_id: int, *, sync_tracker: bool = True) -> LifecycleResult:
        ticket = await self._tickets.get_ticket(ticket_id)
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        user_notifications = await self._notifications.list_user_notifications_for_ticket(ticket_id)

        if not await self._tickets.delete_ticket(ticket_id):
            raise NotFoundError(f"Ticket {ticket_id} not found")
        log_info("Ticket deleted", ticket_id=ticket_id)

        tracker_sync = TrackerSync.SKIPPED
        work_item_id = ticket.get("work_item_id")
        if sync_tracker and work_item_id and self._tracker.is_configured():
            try:
                await self._tracker.delete_work_item(work_item_id)
                tracker_sync = TrackerSync.OK
            except TrackerConfigurationError:
                tracker_sync = TrackerSync.SKIPPED
            except TrackerAPIError as exc:
                log_error(
                    "Unable to delete work item",
                    ticket_id=ticket_id,
                    work_item_id=work_item_id,
                    error=str(exc),
                )
                tracker_sync = TrackerSync.FAILED

        await self._publish_ticket(TICKET_DELETED_EVENT, ticket)
        for user_notification in user_notifications:
            await self._publisher.publish(
                user_topic(user_notification["receiver_user_id"]),
                USER_NOTIFICATION_DELETED,
                {"id": user_notification["id"], "ticket_id": ticket_id},
            )
        log_audit_event(
            "TICKET",
            "delete",
            entity_type="ticket",
            entity_id=ticket_id,
            tracker_sync=tracker_sync.value,
        )
        return LifecycleResult(ticket=ticket, tracker_sync=tracker_sync)


lifecycle_service = TicketLifecycleService()
